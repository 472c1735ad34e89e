"""
DrugWatch - Inspection Service

Creates inspection records and answers the read-side views of the portal:
recent submissions, the paged newest-first listing, impounded and released
registers, free-text search and the dashboard counters.
"""

import asyncio
import logging
from typing import Any, Optional

from pydantic import BaseModel

from drugwatch.core.config import settings
from drugwatch.core.exceptions import InspectionValidationError, RecordNotFound
from drugwatch.core.firebase_auth import FirebaseUser
from drugwatch.models.checklists import compute_progress
from drugwatch.models.inspection import (
    BoxStatus,
    Completion,
    ImpoundmentBlock,
    InspectionMeta,
    InspectionRecord,
    now_millis,
    to_millis,
)
from drugwatch.schemas.inspection import DashboardCounts, InspectionCreate
from drugwatch.services import messages
from drugwatch.services.lifecycle import SUBMISSIONS_PATH
from drugwatch.services.outbox import NotificationKind, NotificationOutbox
from drugwatch.services.pagination import Page, fetch_page
from drugwatch.services.phone import is_valid_telephone, split_phones
from drugwatch.services.record_store import RecordStore, Row, run_write
from drugwatch.services.release_form import parse_box_count

logger = logging.getLogger(__name__)

ORDER_BY = "meta/createdAt"


class SubmissionOutcome(BaseModel):
    record: InspectionRecord
    notified: bool = False
    warning: Optional[str] = None
    notification_id: Optional[str] = None


def parse_impounded_boxes(raw: Any) -> Optional[int]:
    """Zero or a positive whole number; None when malformed."""
    if raw is None or raw == "" or raw == 0 or (isinstance(raw, str) and raw.strip() == "0"):
        return 0
    return parse_box_count(raw)


def validate_submission(payload: InspectionCreate) -> tuple[int, int]:
    """Returns (boxes_impounded, inspection_date_ms)."""
    errors: dict[str, str] = {}

    if not payload.facility_name.strip():
        errors["facility_name"] = "Facility name is required."

    date = now_millis()
    if payload.date and payload.date.strip():
        date = to_millis(payload.date)
        if not date:
            errors["date"] = "Enter a valid inspection date."

    boxes = parse_impounded_boxes(payload.boxes_impounded)
    if boxes is None:
        errors["boxes_impounded"] = "Enter a valid number of boxes."
        boxes = 0

    if boxes > 0:
        if not payload.impounded_by.strip():
            errors["impounded_by"] = "Enter the name of the impounding officer."
        if payload.impoundment_date and not to_millis(payload.impoundment_date):
            errors["impoundment_date"] = "Enter a valid impoundment date."
        if payload.send_sms:
            tokens = split_phones(payload.contact_phones)
            invalid = [t for t in tokens if not is_valid_telephone(t)]
            if not tokens:
                errors["contact_phones"] = "Enter at least one phone number to notify."
            elif invalid:
                errors["contact_phones"] = f"Invalid phone number: {invalid[0]}"

    if errors:
        raise InspectionValidationError(errors)
    return boxes, date


def matches(record: InspectionRecord, term: str) -> bool:
    """Case-insensitive match on serial, facility, officer, location or release note."""
    term = term.strip().lower()
    if not term:
        return True
    meta = record.meta
    fields = [meta.serial_number, meta.doc_no, meta.facility_name, meta.district]
    if meta.location:
        fields.append(meta.location.get("address"))
    block = record.impoundment
    if block is not None:
        fields.append(block.impounded_by)
        if block.release is not None:
            fields += [block.release.released_by, block.release.client_name, block.release.comment]
    return any(term in str(f).lower() for f in fields if f)


def is_impounded(record: InspectionRecord) -> bool:
    block = record.impoundment
    return block is not None and block.total_boxes > 0 and not block.is_released


def is_released(record: InspectionRecord) -> bool:
    return record.impoundment is not None and record.impoundment.is_released


def newest_records(rows: list[Row]) -> list[InspectionRecord]:
    """Records newest first by their canonical ``createdAt``."""
    records = [InspectionRecord.from_store(k, v) for k, v in rows if isinstance(v, dict)]
    return sorted(records, key=lambda r: (r.meta.created_at, r.id), reverse=True)


async def migrate_legacy_timestamps(store: RecordStore) -> list[str]:
    """Rewrite every non-integer ``meta/createdAt`` as epoch ms.

    The web portal used to write ISO strings. The store orders strings
    after all numbers, so unmigrated records would page out of order.
    Returns the ids that were rewritten.
    """
    submissions = await asyncio.to_thread(store.get, SUBMISSIONS_PATH) or {}
    patch: dict[str, int] = {}
    for record_id, data in submissions.items():
        if not isinstance(data, dict) or not isinstance(data.get("meta"), dict):
            continue
        raw = data["meta"].get("createdAt")
        if raw is None or (isinstance(raw, int) and not isinstance(raw, bool)):
            continue
        patch[f"{record_id}/meta/createdAt"] = to_millis(raw)

    if patch:
        await run_write(store.update, SUBMISSIONS_PATH, patch)
        logger.info(f"[MIGRATE] Rewrote createdAt on {len(patch)} record(s)")
    return [key.split("/", 1)[0] for key in patch]


class InspectionService:
    """Write path for new inspections and the read-side views."""

    def __init__(
        self,
        store: RecordStore,
        outbox: NotificationOutbox,
        page_size: Optional[int] = None,
        doc_no_prefix: Optional[str] = None,
    ):
        self.store = store
        self.outbox = outbox
        self.page_size = page_size or settings.PAGE_SIZE
        self.doc_no_prefix = doc_no_prefix or settings.DOC_NO_PREFIX

    # ============ Write path ============

    async def submit_inspection(self, payload: InspectionCreate, actor: FirebaseUser) -> SubmissionOutcome:
        """Validate, persist, then send the impounded SMS if boxes were seized."""
        boxes, date = validate_submission(payload)

        doc_seq = await run_write(self.store.reserve_sequence, "docNo")
        doc_no = f"{self.doc_no_prefix}-{doc_seq:05d}"
        serial_number = (payload.serial_number or "").strip()
        if not serial_number:
            serial_seq = await run_write(self.store.reserve_sequence, "serialNumber")
            serial_number = f"SN{serial_seq:05d}"

        now = now_millis()
        record = InspectionRecord(
            meta=InspectionMeta(
                doc_no=doc_no,
                serial_number=serial_number,
                date=date,
                facility_name=payload.facility_name.strip(),
                contact_phones=payload.contact_phones.strip(),
                district=(payload.district or "").strip() or None,
                facility_type=payload.facility_type,
                location=payload.location.model_dump(exclude_none=True) if payload.location else None,
                created_at=now,
                created_by=actor.label,
                source=payload.source,
            ),
            outlet=payload.outlet,
            cold=payload.cold,
            progress=compute_progress(payload.outlet, payload.cold),
        )
        if boxes > 0:
            record.impoundment = ImpoundmentBlock(
                total_boxes=boxes,
                boxes_remaining=boxes,
                impounded_by=payload.impounded_by.strip(),
                impoundment_date=to_millis(payload.impoundment_date) or date,
                reasons=[r.value for r in payload.reasons],
                box_status=BoxStatus.NOT_IN_STORE,
                completion=Completion.PENDING_REVIEW,
            )

        record_id = await run_write(self.store.push, SUBMISSIONS_PATH, record.to_store())
        record.id = record_id
        logger.info(f"[INSPECTION] {record_id} submitted ({doc_no}, boxes={boxes}) by {actor.uid}")

        outcome = SubmissionOutcome(record=record)
        if boxes > 0 and payload.send_sms and record.phones:
            attempt = await self.outbox.deliver(
                record_id, NotificationKind.IMPOUNDED, record.phones, messages.impounded_message(record)
            )
            outcome.notified = attempt.notified
            outcome.warning = attempt.warning
            outcome.notification_id = attempt.notification_id
        return outcome

    # ============ Read path ============

    async def get_inspection(self, record_id: str) -> InspectionRecord:
        data = await asyncio.to_thread(self.store.get, f"{SUBMISSIONS_PATH}/{record_id}")
        if not data:
            raise RecordNotFound(f"Inspection {record_id} not found.")
        return InspectionRecord.from_store(record_id, data)

    async def list_recent(self, limit: int = 10) -> list[InspectionRecord]:
        rows = await asyncio.to_thread(self.store.query, SUBMISSIONS_PATH, ORDER_BY, None, limit)
        return newest_records(rows)

    async def page(self, before: Optional[int] = None, seen: tuple[str, ...] = ()) -> tuple[list[InspectionRecord], Page]:
        """One page older than ``before``; the first page when it is None."""
        page = await asyncio.to_thread(
            fetch_page, self.store, SUBMISSIONS_PATH, ORDER_BY, self.page_size, before, seen
        )
        return self._records(page.rows), page

    async def list_all(self) -> list[InspectionRecord]:
        rows = await asyncio.to_thread(self.store.snapshot, SUBMISSIONS_PATH, ORDER_BY)
        return newest_records(rows)

    async def list_impounded(self, term: str = "") -> list[InspectionRecord]:
        """Records still holding boxes, newest first."""
        return [r for r in await self.list_all() if is_impounded(r) and matches(r, term)]

    async def list_released(self, term: str = "") -> list[InspectionRecord]:
        """Released records, most recently released first."""
        released = [r for r in await self.list_all() if is_released(r) and matches(r, term)]
        return sorted(
            released,
            key=lambda r: r.impoundment.release.created_at if r.impoundment.release else 0,
            reverse=True,
        )

    def search(self, records: list[InspectionRecord], term: str) -> list[InspectionRecord]:
        return [r for r in records if matches(r, term)]

    async def dashboard_counts(self) -> DashboardCounts:
        records = await self.list_all()
        facilities = {r.meta.facility_name.strip().lower() for r in records if r.meta.facility_name.strip()}
        return DashboardCounts(
            inspections=len(records),
            impounded=sum(1 for r in records if is_impounded(r)),
            released=sum(1 for r in records if is_released(r)),
            facilities=len(facilities),
        )

    @staticmethod
    def _records(rows: list[Row]) -> list[InspectionRecord]:
        return [InspectionRecord.from_store(k, v) for k, v in rows if isinstance(v, dict)]
