"""
DrugWatch - SMS Gateway Bridge

Relays messages to the Yoola SMS provider. The API key lives only in
server settings and is attached here, never returned to callers.

- One POST per call, no retry, no queue
- Sending twice sends twice (billable); callers must not retry blindly
"""

import logging
from typing import Any, Optional

import httpx
from pydantic import BaseModel

from drugwatch.core.config import settings
from drugwatch.core.exceptions import GatewayMisconfigured, NotificationError
from drugwatch.services.phone import normalize_phones, split_phones

logger = logging.getLogger(__name__)


class SmsDeliveryResult(BaseModel):
    """Upstream response, passed through as-is."""
    ok: bool
    status: int
    data: Any = None


class YoolaSmsGateway:
    """Bridge to the Yoola SMS HTTP API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key if api_key is not None else settings.YOOLA_SMS_API_KEY
        self.api_url = api_url or settings.YOOLA_SMS_API_URL
        self.timeout = timeout or settings.SMS_TIMEOUT_SECONDS
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def send(self, recipients: str, message: str) -> SmsDeliveryResult:
        """Send ``message`` to a comma-separated recipient list."""
        if not self.configured:
            raise GatewayMisconfigured("Server is missing YOOLA_SMS_API_KEY.")

        phone = ",".join(split_phones(recipients))
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                response = await client.post(
                    self.api_url,
                    json={"phone": phone, "message": message, "api_key": self.api_key},
                )
        except httpx.HTTPError as e:
            logger.error(f"[SMS] Gateway error: {e}")
            raise NotificationError(f"SMS gateway unreachable: {e}")

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.is_success:
            logger.info(f"[SMS] Sent to {len(phone.split(','))} recipient(s): {response.status_code}")
        else:
            logger.warning(f"[SMS] Upstream rejected: {response.status_code} {response.text[:200]}")

        return SmsDeliveryResult(ok=response.is_success, status=response.status_code, data=data)


class SmsNotifier:
    """Normalizes recipients and treats any non-ok upstream answer as a failure."""

    def __init__(self, gateway: YoolaSmsGateway, country_code: Optional[str] = None):
        self.gateway = gateway
        self.country_code = country_code or settings.PHONE_COUNTRY_CODE

    async def notify(self, recipients: str, message: str) -> SmsDeliveryResult:
        to = normalize_phones(recipients, self.country_code)
        if not to:
            raise NotificationError("No recipient phone number.")
        try:
            result = await self.gateway.send(to, message)
        except GatewayMisconfigured as e:
            raise NotificationError(e.message)
        if not result.ok:
            raise NotificationError(f"SMS failed ({result.status})")
        return result
