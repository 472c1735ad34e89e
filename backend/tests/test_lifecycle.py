"""
DrugWatch - Impoundment Lifecycle Tests

Not yet in store -> In Store -> Released, persist first and notify second.
"""

import asyncio

import pytest

from conftest import DAY_MS, NOW_MS, FakeGateway, seed_record
from drugwatch.core.exceptions import (
    NotificationError,
    ReleaseValidationError,
    StaleRecordError,
    TransitionRejected,
)
from drugwatch.models.inspection import BoxStatus, Completion
from drugwatch.services.lifecycle import ImpoundmentLifecycle, completion_for
from drugwatch.services.outbox import NotificationOutbox, NotificationStatus
from drugwatch.services.release_form import ReleaseForm
from drugwatch.services.sms_gateway import SmsNotifier


def release_form(boxes="5", **overrides) -> ReleaseForm:
    data = {
        "release_date": "2024-06-10",
        "client_name": "Sarah Namutebi",
        "telephone": "0772000111",
        "released_by": "Officer Okello",
        "boxes_released": boxes,
        "consent": True,
    }
    data.update(overrides)
    return ReleaseForm(**data)


class TestTransitionTable:
    """The state machine itself."""

    def test_linear_transitions(self, lifecycle):
        assert lifecycle.can_transition(BoxStatus.NOT_IN_STORE, BoxStatus.IN_STORE)
        assert lifecycle.can_transition(BoxStatus.IN_STORE, BoxStatus.RELEASED)
        assert not lifecycle.can_transition(BoxStatus.NOT_IN_STORE, BoxStatus.RELEASED)
        assert not lifecycle.can_transition(BoxStatus.IN_STORE, BoxStatus.NOT_IN_STORE)

    def test_released_is_terminal(self, lifecycle):
        for target in BoxStatus:
            assert not lifecycle.can_transition(BoxStatus.RELEASED, target)

    def test_completion_for(self):
        assert completion_for(0) == Completion.COMPLETED
        assert completion_for(2) == Completion.PENDING_REVIEW


class TestMarkInStore:
    def test_moves_to_in_store_and_notifies(self, store, gateway, lifecycle, officer):
        seed_record(store)
        outcome = asyncio.run(lifecycle.mark_in_store("rec-1", officer))

        assert outcome.previous_status == BoxStatus.NOT_IN_STORE
        assert outcome.status == BoxStatus.IN_STORE
        assert outcome.notified
        assert outcome.warning is None
        stored = store.get("submissions/rec-1")
        assert stored["impoundment"]["boxStatus"] == "In Store"
        assert stored["impoundment"]["inStoreBy"] == "Officer Okello"
        assert stored["revision"] == 1
        assert gateway.sent[0][0] == "+256701234567"
        assert "now in store" in gateway.sent[0][1]

    def test_no_phone_means_no_sms(self, store, gateway, lifecycle, officer):
        seed_record(store, phones="")
        outcome = asyncio.run(lifecycle.mark_in_store("rec-1", officer))
        assert outcome.status == BoxStatus.IN_STORE
        assert not outcome.notified
        assert gateway.sent == []

    def test_set_status_routes_in_store(self, store, lifecycle, officer):
        seed_record(store)
        outcome = asyncio.run(lifecycle.set_status("rec-1", BoxStatus.IN_STORE, officer))
        assert outcome.status == BoxStatus.IN_STORE

    def test_set_status_cannot_release(self, store, lifecycle, officer):
        seed_record(store, status=BoxStatus.IN_STORE)
        with pytest.raises(TransitionRejected):
            asyncio.run(lifecycle.set_status("rec-1", BoxStatus.RELEASED, officer))
        assert store.get("submissions/rec-1/impoundment/boxStatus") == "In Store"

    def test_record_without_impoundment(self, store, lifecycle, officer):
        seed_record(store, status=None)
        with pytest.raises(TransitionRejected):
            asyncio.run(lifecycle.mark_in_store("rec-1", officer))

    def test_stale_revision(self, store, gateway, lifecycle, officer):
        seed_record(store)
        with pytest.raises(StaleRecordError):
            asyncio.run(lifecycle.mark_in_store("rec-1", officer, expected_revision=7))
        assert store.get("submissions/rec-1/impoundment/boxStatus") == "Not yet in store"
        assert gateway.sent == []


class TestRelease:
    """Release form submission."""

    def test_full_release(self, store, gateway, lifecycle, officer):
        seed_record(store, boxes="5", status=BoxStatus.IN_STORE)
        outcome = asyncio.run(lifecycle.release("rec-1", release_form("5"), officer))

        assert outcome.status == BoxStatus.RELEASED
        assert outcome.notified
        block = outcome.record.impoundment
        assert block.box_status == BoxStatus.RELEASED
        assert block.boxes_remaining == 0
        assert block.completion == Completion.COMPLETED
        assert block.release.boxes_released == 5
        assert block.release.created_by == "Officer Okello"
        assert outcome.record.meta.status == "Completed"

        recipients, message = gateway.sent[-1]
        assert recipients == "+256772000111"
        assert "5 box(es) have been released" in message
        assert "Remaining: 0" in message

    def test_partial_release_is_still_terminal(self, store, lifecycle, officer):
        seed_record(store, boxes=5, status=BoxStatus.IN_STORE)
        outcome = asyncio.run(lifecycle.release("rec-1", release_form("2"), officer))

        block = outcome.record.impoundment
        assert block.box_status == BoxStatus.RELEASED
        assert block.boxes_remaining == 3
        assert block.completion == Completion.PENDING_REVIEW

        with pytest.raises(TransitionRejected):
            asyncio.run(lifecycle.release("rec-1", release_form("3"), officer))

    def test_released_record_rejects_every_transition(self, store, gateway, lifecycle, officer):
        seed_record(store, status=BoxStatus.RELEASED)
        before = store.get("submissions/rec-1")

        with pytest.raises(TransitionRejected):
            asyncio.run(lifecycle.mark_in_store("rec-1", officer))
        with pytest.raises(TransitionRejected):
            asyncio.run(lifecycle.release("rec-1", release_form("1"), officer))
        with pytest.raises(TransitionRejected):
            asyncio.run(lifecycle.set_status("rec-1", BoxStatus.IN_STORE, officer))

        assert store.get("submissions/rec-1") == before
        assert gateway.sent == []

    def test_cannot_release_before_in_store(self, store, lifecycle, officer):
        seed_record(store)
        with pytest.raises(TransitionRejected):
            asyncio.run(lifecycle.release("rec-1", release_form("1"), officer))

    def test_invalid_form_writes_and_sends_nothing(self, store, gateway, lifecycle, officer):
        seed_record(store, boxes=5, status=BoxStatus.IN_STORE)
        with pytest.raises(ReleaseValidationError) as exc:
            asyncio.run(lifecycle.release("rec-1", release_form("9"), officer))
        assert "boxes_released" in exc.value.errors
        assert store.get("submissions/rec-1/revision") == 0
        assert gateway.sent == []

    def test_sms_failure_keeps_release_and_queues_message(self, store, officer):
        failing = FakeGateway(status=500)
        notifier = SmsNotifier(failing)
        lifecycle = ImpoundmentLifecycle(store, notifier, require_typed_confirmation=False)
        seed_record(store, boxes=5, status=BoxStatus.IN_STORE)

        outcome = asyncio.run(lifecycle.release("rec-1", release_form("5"), officer))

        assert outcome.status == BoxStatus.RELEASED
        assert not outcome.notified
        assert "could not be sent" in outcome.warning
        assert store.get("submissions/rec-1/impoundment/boxStatus") == "Released"

        queued = lifecycle.outbox.get(outcome.notification_id)
        assert queued.status == NotificationStatus.PENDING
        assert queued.recipients == "0772000111"
        assert queued.record_id == "rec-1"

    def test_resend_after_failure(self, store, officer):
        flaky = FakeGateway(status=503)
        notifier = SmsNotifier(flaky)
        outbox = NotificationOutbox(store, notifier)
        lifecycle = ImpoundmentLifecycle(store, notifier, outbox, require_typed_confirmation=False)
        seed_record(store, boxes=5, status=BoxStatus.IN_STORE)
        outcome = asyncio.run(lifecycle.release("rec-1", release_form("5"), officer))

        with pytest.raises(NotificationError):
            asyncio.run(outbox.resend(outcome.notification_id))
        assert outbox.get(outcome.notification_id).attempts == 2

        flaky.status = 200
        sent = asyncio.run(outbox.resend(outcome.notification_id))
        assert sent.status == NotificationStatus.SENT
        assert sent.sent_at is not None
        assert outbox.pending() == []

    def test_typed_confirmation_required(self, store, notifier, officer):
        lifecycle = ImpoundmentLifecycle(store, notifier, require_typed_confirmation=True)
        seed_record(store, boxes=5, status=BoxStatus.IN_STORE, serial="SN-0042")
        with pytest.raises(ReleaseValidationError):
            asyncio.run(lifecycle.release("rec-1", release_form("5"), officer))

        outcome = asyncio.run(lifecycle.release("rec-1", release_form("5", confirm_text="sn-0042"), officer))
        assert outcome.status == BoxStatus.RELEASED

    def test_legacy_string_counts(self, store, lifecycle, officer):
        seed_record(store, boxes="4", status=BoxStatus.IN_STORE, boxesRemaining="4")
        outcome = asyncio.run(lifecycle.release("rec-1", release_form(4), officer))
        assert outcome.record.impoundment.boxes_remaining == 0
        assert store.get("submissions/rec-1/impoundment/boxesRemaining") == 0


class TestScenarios:
    """End-to-end custody flows."""

    def test_impound_store_release(self, store, gateway, lifecycle, officer):
        seed_record(store, boxes=5)

        asyncio.run(lifecycle.mark_in_store("rec-1", officer, expected_revision=0))
        outcome = asyncio.run(lifecycle.release("rec-1", release_form("5"), officer, expected_revision=1))

        assert outcome.record.revision == 2
        assert outcome.record.impoundment.box_status == BoxStatus.RELEASED
        assert len(gateway.sent) == 2

    def test_concurrent_edit_loses(self, store, lifecycle, officer):
        seed_record(store, boxes=5)
        asyncio.run(lifecycle.mark_in_store("rec-1", officer, expected_revision=0))
        # A second tab still holds revision 0.
        with pytest.raises(StaleRecordError):
            asyncio.run(lifecycle.release("rec-1", release_form("5"), officer, expected_revision=0))
        assert store.get("submissions/rec-1/impoundment/boxStatus") == "In Store"


class TestReminders:
    """Overdue in-store reminder sweep."""

    def test_sends_once_after_threshold(self, store, gateway, lifecycle):
        in_store_at = NOW_MS - 101 * DAY_MS
        seed_record(store, status=BoxStatus.IN_STORE, inStoreAt=in_store_at)

        report = asyncio.run(lifecycle.remind_overdue(now_ms=NOW_MS))
        assert report.sent == ["rec-1"]
        assert "101 days" in gateway.sent[0][1]
        assert store.get("submissions/rec-1/impoundment/reminderSentAt") == NOW_MS

        again = asyncio.run(lifecycle.remind_overdue(now_ms=NOW_MS + DAY_MS))
        assert again.sent == []
        assert len(gateway.sent) == 1

    def test_not_before_threshold(self, store, gateway, lifecycle):
        seed_record(store, status=BoxStatus.IN_STORE, inStoreAt=NOW_MS - 100 * DAY_MS)
        report = asyncio.run(lifecycle.remind_overdue(now_ms=NOW_MS))
        assert report.sent == []
        assert gateway.sent == []

    def test_only_in_store_records(self, store, gateway, lifecycle):
        old = NOW_MS - 200 * DAY_MS
        seed_record(store, "a", status=BoxStatus.NOT_IN_STORE, created_at=old)
        seed_record(store, "b", status=BoxStatus.RELEASED, created_at=old)
        report = asyncio.run(lifecycle.remind_overdue(now_ms=NOW_MS))
        assert report.checked == 0
        assert gateway.sent == []

    def test_failed_send_is_queued_not_repeated(self, store):
        """A failed reminder is attempted once; later sweeps leave it to a manual resend."""
        failing = FakeGateway(status=500)
        notifier = SmsNotifier(failing)
        outbox = NotificationOutbox(store, notifier)
        seed_record(store, status=BoxStatus.IN_STORE, inStoreAt=NOW_MS - 150 * DAY_MS)

        lifecycle = ImpoundmentLifecycle(store, notifier, outbox, reminder_after_days=100)
        report = asyncio.run(lifecycle.remind_overdue(now_ms=NOW_MS))
        assert report.failed == ["rec-1"]
        assert report.sent == []

        impoundment = store.get("submissions/rec-1/impoundment")
        assert impoundment["reminderSentAt"] == NOW_MS
        notification_id = impoundment["reminderNotificationId"]
        queued = outbox.get(notification_id)
        assert queued.kind.value == "reminder"
        assert queued.status == NotificationStatus.PENDING

        for day in (1, 2):
            asyncio.run(lifecycle.remind_overdue(now_ms=NOW_MS + day * DAY_MS))
        # A fresh instance has no in-process memory; the stored mark still holds.
        restarted = ImpoundmentLifecycle(store, notifier, outbox, reminder_after_days=100)
        asyncio.run(restarted.remind_overdue(now_ms=NOW_MS + 3 * DAY_MS))
        assert len(failing.sent) == 1

        failing.status = 200
        resent = asyncio.run(outbox.resend(notification_id))
        assert resent.status == NotificationStatus.SENT
        assert len(failing.sent) == 2

    def test_successful_reminder_is_not_queued(self, store, lifecycle):
        seed_record(store, status=BoxStatus.IN_STORE, inStoreAt=NOW_MS - 150 * DAY_MS)
        asyncio.run(lifecycle.remind_overdue(now_ms=NOW_MS))
        assert "reminderNotificationId" not in store.get("submissions/rec-1/impoundment")
        assert store.get("notifications") is None

    def test_no_phone_is_skipped(self, store, gateway, lifecycle):
        seed_record(store, phones="", status=BoxStatus.IN_STORE, inStoreAt=NOW_MS - 150 * DAY_MS)
        report = asyncio.run(lifecycle.remind_overdue(now_ms=NOW_MS))
        assert report.skipped == ["rec-1"]
        assert gateway.sent == []
