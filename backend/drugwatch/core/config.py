from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings."""

    # App
    APP_NAME: str = "DrugWatch Inspections"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Firebase (identity provider + realtime database)
    FIREBASE_PROJECT_ID: str | None = None
    FIREBASE_DATABASE_URL: str | None = None
    GOOGLE_APPLICATION_CREDENTIALS: str | None = None
    STORE_BACKEND: str = "firebase"  # "firebase" or "memory"
    STORE_WRITE_TIMEOUT_SECONDS: float = 20.0
    MIGRATE_TIMESTAMPS_ON_STARTUP: bool = True

    # SMS gateway (server-side only)
    YOOLA_SMS_API_KEY: str | None = None
    YOOLA_SMS_API_URL: str = "https://yoolasms.com/api/v1/send"
    SMS_TIMEOUT_SECONDS: float = 15.0
    PHONE_COUNTRY_CODE: str = "256"

    # Lifecycle
    REMINDER_AFTER_DAYS: int = 100
    REMINDER_SWEEP_MINUTES: int = 60
    ENABLE_SCHEDULER: bool = False
    REQUIRE_TYPED_CONFIRMATION: bool = True

    # Listings
    PAGE_SIZE: int = 20
    DOC_NO_PREFIX: str = "INS"
    ALLOWED_ROLES: str = "admin,inspector"

    class Config:
        env_file = ".env"
        extra = "ignore"

    @property
    def allowed_roles(self) -> tuple[str, ...]:
        return tuple(r.strip() for r in self.ALLOWED_ROLES.split(",") if r.strip())


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
