"""SMS relay router.

The only path from the web client to the paid SMS provider. The provider
key is attached server-side; callers must present a verified session.
"""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from drugwatch.core.exceptions import GatewayMisconfigured
from drugwatch.core.firebase_auth import FirebaseUser
from drugwatch.dependencies import get_gateway, require_staff
from drugwatch.schemas.sms import SmsRequest
from drugwatch.services.sms_gateway import YoolaSmsGateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["sms"])


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"ok": False, "error": message})


@router.post(
    "/sms",
    openapi_extra={
        "requestBody": {
            "required": True,
            "content": {"application/json": {"schema": SmsRequest.model_json_schema()}},
        }
    },
)
async def relay_sms(
    http_request: Request,
    gateway: YoolaSmsGateway = Depends(get_gateway),
    user: FirebaseUser = Depends(require_staff),
):
    """
    Forward one message to the provider.

    The HTTP status mirrors the provider's answer. Each call sends once;
    there is no retry here. The body is parsed here rather than by FastAPI
    so a malformed body still answers ``{"ok": false, "error": ...}``.
    """
    if not gateway.configured:
        return _error(500, "Server is missing YOOLA_SMS_API_KEY.")

    try:
        request = SmsRequest.model_validate_json(await http_request.body())
    except ValidationError as e:
        logger.warning(f"[SMS] Rejected malformed body from {user.uid}: {e.error_count()} error(s)")
        return _error(400, "Request body must be JSON with text fields phone and message.")

    phone = (request.phone or "").strip()
    message = (request.message or "").strip()
    if not phone:
        return _error(400, "Phone is required.")
    if not message:
        return _error(400, "Message is required.")

    try:
        result = await gateway.send(phone, message)
    except GatewayMisconfigured as e:
        return _error(500, e.message)
    except Exception as e:
        logger.exception(f"[SMS] Relay failed for {user.uid}")
        return _error(500, getattr(e, "message", None) or str(e) or "SMS relay failed.")

    return JSONResponse(status_code=result.status, content=result.model_dump())
