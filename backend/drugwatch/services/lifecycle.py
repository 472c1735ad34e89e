"""DrugWatch Impoundment Lifecycle

State Flow:
NOT_IN_STORE -> IN_STORE -> RELEASED
IN_STORE -> IN_STORE (automatic overdue reminder, once per record)
RELEASED is terminal; every attempted transition out of it is rejected.

Every transition persists first and notifies second. A store failure
aborts the transition; an SMS failure does not. The undelivered message
goes to the notification outbox and the caller gets a warning.
"""

import asyncio
import logging
from typing import Callable, Optional

from pydantic import BaseModel

from drugwatch.core.config import settings
from drugwatch.core.exceptions import DrugWatchError, RecordNotFound, TransitionRejected
from drugwatch.core.firebase_auth import FirebaseUser
from drugwatch.models.inspection import (
    BoxStatus,
    Completion,
    ImpoundmentBlock,
    InspectionRecord,
    ReleaseRecord,
    now_millis,
)
from drugwatch.services import messages
from drugwatch.services.outbox import NotificationKind, NotificationOutbox
from drugwatch.services.record_store import RecordStore, run_write
from drugwatch.services.release_form import ReleaseForm, validate_release_form
from drugwatch.services.sms_gateway import SmsNotifier

logger = logging.getLogger(__name__)

SUBMISSIONS_PATH = "submissions"
DAY_MS = 24 * 60 * 60 * 1000


class TransitionOutcome(BaseModel):
    """Result of a committed transition."""
    record: InspectionRecord
    previous_status: BoxStatus
    status: BoxStatus
    notified: bool = False
    warning: Optional[str] = None
    notification_id: Optional[str] = None


class ReminderReport(BaseModel):
    checked: int = 0
    sent: list[str] = []
    failed: list[str] = []
    skipped: list[str] = []


def completion_for(remaining: int) -> Completion:
    return Completion.COMPLETED if remaining == 0 else Completion.PENDING_REVIEW


def days_in_store(block: ImpoundmentBlock, fallback: int, now_ms: int) -> int:
    since = block.in_store_at or block.impoundment_date or fallback
    if not since:
        return 0
    return max(0, (now_ms - since) // DAY_MS)


class ImpoundmentLifecycle:
    """Governs box custody transitions for inspection records."""

    # Valid state transitions
    TRANSITIONS: dict[BoxStatus, list[BoxStatus]] = {
        BoxStatus.NOT_IN_STORE: [BoxStatus.IN_STORE],
        BoxStatus.IN_STORE: [BoxStatus.RELEASED],
        BoxStatus.RELEASED: [],  # Terminal state
    }

    def __init__(
        self,
        store: RecordStore,
        notifier: SmsNotifier,
        outbox: Optional[NotificationOutbox] = None,
        reminder_after_days: Optional[int] = None,
        require_typed_confirmation: Optional[bool] = None,
    ):
        self.store = store
        self.notifier = notifier
        self.outbox = outbox or NotificationOutbox(store, notifier)
        self.reminder_after_days = (
            settings.REMINDER_AFTER_DAYS if reminder_after_days is None else reminder_after_days
        )
        self.require_typed_confirmation = (
            settings.REQUIRE_TYPED_CONFIRMATION
            if require_typed_confirmation is None
            else require_typed_confirmation
        )
        # Process-local; lost on restart, so not a correctness guarantee.
        self._reminded: set[str] = set()

    def can_transition(self, current: BoxStatus, target: BoxStatus) -> bool:
        """Check if a transition is valid."""
        return target in self.TRANSITIONS.get(current, [])

    def _check(self, current: BoxStatus, target: BoxStatus) -> None:
        if current == BoxStatus.RELEASED:
            raise TransitionRejected("This impoundment has already been released and can no longer be changed.")
        if not self.can_transition(current, target):
            raise TransitionRejected(f"Invalid transition: {current.value} -> {target.value}")

    def _guard(self, target: BoxStatus, extra: Optional[Callable[[ImpoundmentBlock], None]] = None):
        """Precondition evaluated against the stored record inside the write."""
        def precondition(current: dict) -> None:
            block = ImpoundmentBlock.model_validate(current.get("impoundment") or {})
            self._check(block.box_status, target)
            if extra is not None:
                extra(block)
        return precondition

    async def load(self, record_id: str) -> InspectionRecord:
        data = await asyncio.to_thread(self.store.get, f"{SUBMISSIONS_PATH}/{record_id}")
        if not data:
            raise RecordNotFound(f"Inspection {record_id} not found.")
        return InspectionRecord.from_store(record_id, data)

    async def _load_impounded(self, record_id: str) -> InspectionRecord:
        record = await self.load(record_id)
        if record.impoundment is None or record.impoundment.total_boxes <= 0:
            raise TransitionRejected("This inspection has no impounded boxes.")
        return record

    async def _notify(
        self,
        outcome: TransitionOutcome,
        kind: NotificationKind,
        recipients: str,
        message: str,
    ) -> TransitionOutcome:
        """Second step of a transition; never raises for delivery failures."""
        attempt = await self.outbox.deliver(outcome.record.id, kind, recipients, message)
        outcome.notified = attempt.notified
        outcome.warning = attempt.warning
        outcome.notification_id = attempt.notification_id
        return outcome

    # ============ Transitions ============

    async def set_status(
        self,
        record_id: str,
        target: BoxStatus,
        actor: FirebaseUser,
        expected_revision: Optional[int] = None,
    ) -> TransitionOutcome:
        """Staff status change. Releases must go through ``release``."""
        if target == BoxStatus.IN_STORE:
            return await self.mark_in_store(record_id, actor, expected_revision)
        record = await self._load_impounded(record_id)
        self._check(record.impoundment.box_status, target)
        raise TransitionRejected("Use the release form to release impounded boxes.")

    async def mark_in_store(
        self,
        record_id: str,
        actor: FirebaseUser,
        expected_revision: Optional[int] = None,
    ) -> TransitionOutcome:
        record = await self._load_impounded(record_id)
        previous = record.impoundment.box_status
        self._check(previous, BoxStatus.IN_STORE)

        now = now_millis()
        updated = await run_write(
            self.store.patch_record,
            f"{SUBMISSIONS_PATH}/{record_id}",
            {
                "impoundment/boxStatus": BoxStatus.IN_STORE.value,
                "impoundment/inStoreAt": now,
                "impoundment/inStoreBy": actor.label,
            },
            expected_revision=expected_revision,
            precondition=self._guard(BoxStatus.IN_STORE),
        )
        record = InspectionRecord.from_store(record_id, updated)
        logger.info(f"[LIFECYCLE] {record_id}: {previous.value} -> {BoxStatus.IN_STORE.value} by {actor.uid}")

        outcome = TransitionOutcome(record=record, previous_status=previous, status=BoxStatus.IN_STORE)
        if record.phones.strip():
            await self._notify(outcome, NotificationKind.IN_STORE, record.phones, messages.in_store_message(record))
        return outcome

    async def release(
        self,
        record_id: str,
        form: ReleaseForm,
        actor: FirebaseUser,
        expected_revision: Optional[int] = None,
    ) -> TransitionOutcome:
        """Validate, persist the release, then notify the client."""
        record = await self._load_impounded(record_id)
        block = record.impoundment
        previous = block.box_status
        self._check(previous, BoxStatus.RELEASED)

        release = validate_release_form(
            form,
            boxes_impounded=block.remaining,
            serial_number=record.meta.serial_number,
            require_confirmation=self.require_typed_confirmation,
        )
        remaining = max(0, block.remaining - release.boxes_released)
        completion = completion_for(remaining)
        now = now_millis()

        release_record = ReleaseRecord(
            release_date=release.release_date,
            client_name=release.client_name,
            telephone=release.telephone,
            released_by=release.released_by,
            comment=release.comment,
            boxes_released=release.boxes_released,
            created_at=now,
            created_by=actor.label,
        )

        def unchanged_count(current: ImpoundmentBlock) -> None:
            if current.remaining != block.remaining:
                raise TransitionRejected("The impounded box count changed. Reload and try again.")

        updated = await run_write(
            self.store.patch_record,
            f"{SUBMISSIONS_PATH}/{record_id}",
            {
                "impoundment/boxStatus": BoxStatus.RELEASED.value,
                "impoundment/release": release_record.to_store(),
                "impoundment/boxesRemaining": remaining,
                "impoundment/completion": completion.value,
                "meta/status": completion.value,
            },
            expected_revision=expected_revision,
            precondition=self._guard(BoxStatus.RELEASED, unchanged_count),
        )
        record = InspectionRecord.from_store(record_id, updated)
        logger.info(
            f"[LIFECYCLE] {record_id}: released {release.boxes_released} box(es), "
            f"remaining={remaining}, by {actor.uid}"
        )

        outcome = TransitionOutcome(record=record, previous_status=previous, status=BoxStatus.RELEASED)
        message = messages.release_message(
            record, release.boxes_released, remaining, release.released_by, release.release_date
        )
        return await self._notify(outcome, NotificationKind.RELEASED, release.telephone, message)

    async def remind_overdue(self, now_ms: Optional[int] = None) -> ReminderReport:
        """Send one reminder per record held in store longer than the threshold."""
        now_ms = now_ms or now_millis()
        report = ReminderReport()
        rows = await asyncio.to_thread(self.store.snapshot, SUBMISSIONS_PATH, "meta/createdAt")

        for record_id, data in rows:
            if not isinstance(data, dict):
                continue
            record = InspectionRecord.from_store(record_id, data)
            block = record.impoundment
            if block is None or block.box_status != BoxStatus.IN_STORE:
                continue
            report.checked += 1
            if block.reminder_sent_at or record_id in self._reminded:
                continue
            days = days_in_store(block, record.meta.created_at, now_ms)
            if days <= self.reminder_after_days:
                continue
            if not record.phones.strip():
                report.skipped.append(record_id)
                continue

            # One attempt per record. A failed send is queued in the outbox
            # and only goes out again when staff resend it.
            self._reminded.add(record_id)
            attempt = await self.outbox.deliver(
                record_id, NotificationKind.REMINDER, record.phones, messages.reminder_message(record, days)
            )

            def not_yet_reminded(current: ImpoundmentBlock) -> None:
                if current.reminder_sent_at:
                    raise TransitionRejected("Reminder already recorded.")

            patch = {"impoundment/reminderSentAt": now_ms}
            if attempt.notification_id:
                patch["impoundment/reminderNotificationId"] = attempt.notification_id
            try:
                await run_write(
                    self.store.patch_record,
                    f"{SUBMISSIONS_PATH}/{record_id}",
                    patch,
                    precondition=self._reminder_guard(not_yet_reminded),
                )
            except DrugWatchError as e:
                logger.error(f"[REMINDER] {record_id}: reminder attempted but not recorded: {e}")

            if attempt.notified:
                report.sent.append(record_id)
                logger.info(f"[REMINDER] {record_id}: reminder sent after {days} days in store")
            else:
                report.failed.append(record_id)
                logger.warning(f"[REMINDER] {record_id}: reminder queued for manual resend")

        return report

    def _reminder_guard(self, extra: Callable[[ImpoundmentBlock], None]):
        def precondition(current: dict) -> None:
            block = ImpoundmentBlock.model_validate(current.get("impoundment") or {})
            if block.box_status != BoxStatus.IN_STORE:
                raise TransitionRejected(f"Record is {block.box_status.value}, not {BoxStatus.IN_STORE.value}.")
            extra(block)
        return precondition
