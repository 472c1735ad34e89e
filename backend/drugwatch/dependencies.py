"""Dependency injection helpers for FastAPI."""

import asyncio
import logging
from functools import lru_cache
from typing import Optional

from fastapi import Depends, HTTPException, status

from drugwatch.core.config import settings
from drugwatch.core.firebase_auth import FirebaseUser, init_firebase, require_firebase_auth
from drugwatch.services.inspections import InspectionService
from drugwatch.services.lifecycle import ImpoundmentLifecycle
from drugwatch.services.outbox import NotificationOutbox
from drugwatch.services.record_store import FirebaseRecordStore, InMemoryRecordStore, RecordStore
from drugwatch.services.sms_gateway import SmsNotifier, YoolaSmsGateway

logger = logging.getLogger(__name__)

ROLES_PATH = "roles"


@lru_cache()
def get_store() -> RecordStore:
    if settings.STORE_BACKEND == "memory":
        logger.warning("[STORE] Using the in-memory store; data is lost on restart")
        return InMemoryRecordStore()
    return FirebaseRecordStore(init_firebase())


@lru_cache()
def get_gateway() -> YoolaSmsGateway:
    return YoolaSmsGateway()


def get_notifier(gateway: YoolaSmsGateway = Depends(get_gateway)) -> SmsNotifier:
    return SmsNotifier(gateway)


def get_outbox(
    store: RecordStore = Depends(get_store),
    notifier: SmsNotifier = Depends(get_notifier),
) -> NotificationOutbox:
    return NotificationOutbox(store, notifier)


@lru_cache()
def shared_lifecycle(store: RecordStore, gateway: YoolaSmsGateway) -> ImpoundmentLifecycle:
    # One instance per store; it holds the in-process reminder guard.
    notifier = SmsNotifier(gateway)
    return ImpoundmentLifecycle(store, notifier, NotificationOutbox(store, notifier))


def get_lifecycle(
    store: RecordStore = Depends(get_store),
    gateway: YoolaSmsGateway = Depends(get_gateway),
) -> ImpoundmentLifecycle:
    return shared_lifecycle(store, gateway)


def get_inspection_service(
    store: RecordStore = Depends(get_store),
    outbox: NotificationOutbox = Depends(get_outbox),
) -> InspectionService:
    return InspectionService(store, outbox)


# ============ Roles ============

async def get_user_role(
    user: FirebaseUser = Depends(require_firebase_auth),
    store: RecordStore = Depends(get_store),
) -> Optional[str]:
    """Role from ``roles/{uid}``; None when unassigned or deactivated."""
    entry = await asyncio.to_thread(store.get, f"{ROLES_PATH}/{user.uid}")
    if not isinstance(entry, dict) or entry.get("active") is False:
        return None
    return entry.get("role")


def require_role(*allowed_roles: str):
    """
    Dependency that requires the user to have one of the specified roles.

    Usage:
        @router.post("/reminders/run")
        async def run(user: FirebaseUser = Depends(require_role("admin"))):
            ...
    """
    async def role_checker(
        user: FirebaseUser = Depends(require_firebase_auth),
        role: Optional[str] = Depends(get_user_role),
    ) -> FirebaseUser:
        if role not in allowed_roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required role: {', '.join(allowed_roles)}",
            )
        return user

    return role_checker


async def require_staff(
    user: FirebaseUser = Depends(require_firebase_auth),
    role: Optional[str] = Depends(get_user_role),
) -> FirebaseUser:
    """Any active portal role listed in ``ALLOWED_ROLES``."""
    if role not in settings.allowed_roles:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Your account is not enabled for the inspection portal.",
        )
    return user
