"""Notification outbox router.

Lists SMS messages that could not be delivered after their record was
saved, and resends them one explicit attempt at a time.
"""

import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, Query

from drugwatch.core.firebase_auth import FirebaseUser
from drugwatch.dependencies import get_outbox, require_staff
from drugwatch.services.outbox import NotificationOutbox, PendingNotification

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=list[PendingNotification])
async def list_pending(
    record_id: Optional[str] = Query(None),
    outbox: NotificationOutbox = Depends(get_outbox),
    user: FirebaseUser = Depends(require_staff),
):
    return await asyncio.to_thread(outbox.pending, record_id)


@router.post("/{notification_id}/resend", response_model=PendingNotification)
async def resend(
    notification_id: str,
    outbox: NotificationOutbox = Depends(get_outbox),
    user: FirebaseUser = Depends(require_staff),
):
    """
    Try once more to deliver a queued SMS.

    Sends are billable and not idempotent; a failed attempt answers 502
    and stays pending.
    """
    return await outbox.resend(notification_id)
