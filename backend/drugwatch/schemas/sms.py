from typing import Any, Optional

from pydantic import BaseModel


class SmsRequest(BaseModel):
    """Body of ``POST /api/sms``. Both fields are checked by the route."""
    phone: Optional[str] = None
    message: Optional[str] = None


class SmsRelayResponse(BaseModel):
    ok: bool
    status: int
    data: Any = None
