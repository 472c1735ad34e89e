"""
DrugWatch - Notification Outbox

Second step of every persist-then-notify transition. When an SMS cannot be
delivered after the record was committed, the message is kept under
``notifications/{id}`` so staff can resend it later. Nothing is retried
automatically: each resend is one explicit attempt.
"""

import logging
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from drugwatch.core.exceptions import DrugWatchError, NotificationError, RecordNotFound
from drugwatch.models.inspection import now_millis
from drugwatch.services.record_store import RecordStore, run_write
from drugwatch.services.sms_gateway import SmsNotifier

logger = logging.getLogger(__name__)

OUTBOX_PATH = "notifications"


class NotificationKind(str, Enum):
    IMPOUNDED = "impounded"
    IN_STORE = "in_store"
    RELEASED = "released"
    REMINDER = "reminder"


class NotificationStatus(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"


class PendingNotification(BaseModel):
    id: str = ""
    record_id: str = Field(alias="recordId")
    kind: NotificationKind
    recipients: str
    message: str
    status: NotificationStatus = NotificationStatus.PENDING
    attempts: int = 0
    last_error: Optional[str] = Field(None, alias="lastError")
    created_at: int = Field(alias="createdAt")
    sent_at: Optional[int] = Field(None, alias="sentAt")

    class Config:
        populate_by_name = True


class DeliveryAttempt(BaseModel):
    """Outcome of the notify step of a transition."""
    notified: bool = False
    warning: Optional[str] = None
    notification_id: Optional[str] = None


class NotificationOutbox:
    """Records undelivered notifications and resends them on request."""

    def __init__(self, store: RecordStore, notifier: SmsNotifier):
        self.store = store
        self.notifier = notifier

    async def enqueue(
        self,
        record_id: str,
        kind: NotificationKind,
        recipients: str,
        message: str,
        error: Optional[str] = None,
    ) -> str:
        entry = {
            "recordId": record_id,
            "kind": kind.value,
            "recipients": recipients,
            "message": message,
            "status": NotificationStatus.PENDING.value,
            "attempts": 1,
            "lastError": error,
            "createdAt": now_millis(),
        }
        notification_id = await run_write(self.store.push, OUTBOX_PATH, {k: v for k, v in entry.items() if v is not None})
        logger.info(f"[OUTBOX] Queued {kind.value} notification {notification_id} for {record_id}")
        return notification_id

    def get(self, notification_id: str) -> PendingNotification:
        data = self.store.get(f"{OUTBOX_PATH}/{notification_id}")
        if not data:
            raise RecordNotFound(f"Notification {notification_id} not found.")
        return PendingNotification.model_validate({**data, "id": notification_id})

    def pending(self, record_id: Optional[str] = None) -> list[PendingNotification]:
        rows = self.store.snapshot(OUTBOX_PATH, order_by="createdAt")
        items = [PendingNotification.model_validate({**value, "id": key}) for key, value in rows]
        return [
            n for n in items
            if n.status == NotificationStatus.PENDING and (record_id is None or n.record_id == record_id)
        ]

    async def resend(self, notification_id: str) -> PendingNotification:
        """One delivery attempt. Raises ``NotificationError`` if it fails again."""
        notification = self.get(notification_id)
        if notification.status == NotificationStatus.SENT:
            return notification

        path = f"{OUTBOX_PATH}/{notification_id}"
        try:
            await self.notifier.notify(notification.recipients, notification.message)
        except NotificationError as e:
            await run_write(
                self.store.update,
                path,
                {"attempts": notification.attempts + 1, "lastError": e.message},
            )
            logger.warning(f"[OUTBOX] Resend of {notification_id} failed: {e.message}")
            raise

        await run_write(
            self.store.update,
            path,
            {
                "status": NotificationStatus.SENT.value,
                "attempts": notification.attempts + 1,
                "sentAt": now_millis(),
                "lastError": None,
            },
        )
        logger.info(f"[OUTBOX] Resent {notification_id}")
        return self.get(notification_id)

    async def deliver(
        self,
        record_id: str,
        kind: NotificationKind,
        recipients: str,
        message: str,
    ) -> DeliveryAttempt:
        """Send now; on failure keep the message here and return a warning."""
        try:
            await self.notifier.notify(recipients, message)
            return DeliveryAttempt(notified=True)
        except NotificationError as e:
            error = e.message
        logger.warning(f"[OUTBOX] {kind.value} SMS for {record_id} failed: {error}")
        attempt = DeliveryAttempt(
            warning=f"Saved successfully, but the SMS could not be sent ({error}). It can be resent later."
        )
        try:
            attempt.notification_id = await self.enqueue(record_id, kind, recipients, message, error=error)
        except DrugWatchError as queue_error:
            logger.error(f"[OUTBOX] Could not queue {kind.value} SMS for {record_id}: {queue_error.message}")
        return attempt
