"""Inspections router.

Submission, the paged listing, the live feed and the impoundment
transitions of a single record.
"""

import asyncio
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import StreamingResponse

from drugwatch.core.config import settings
from drugwatch.core.firebase_auth import FirebaseUser
from drugwatch.dependencies import get_inspection_service, get_lifecycle, get_store, require_staff
from drugwatch.models.inspection import InspectionRecord
from drugwatch.schemas.inspection import (
    InspectionCreate,
    InspectionPage,
    ReleaseRequest,
    StatusUpdate,
    SubmissionResponse,
    TransitionResponse,
)
from drugwatch.services.inspections import ORDER_BY, InspectionService, newest_records
from drugwatch.services.lifecycle import SUBMISSIONS_PATH, ImpoundmentLifecycle, TransitionOutcome
from drugwatch.services.record_store import RecordStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/inspections", tags=["inspections"])

KEEPALIVE_SECONDS = 15.0


def offer_latest(queue: asyncio.Queue, item) -> None:
    """Put ``item`` on a one-slot queue, replacing anything not yet consumed."""
    if queue.full():
        queue.get_nowait()
    queue.put_nowait(item)


def _transition_response(outcome: TransitionOutcome) -> TransitionResponse:
    return TransitionResponse(**outcome.model_dump())


@router.post("", response_model=SubmissionResponse, status_code=status.HTTP_201_CREATED)
async def submit_inspection(
    request: InspectionCreate,
    service: InspectionService = Depends(get_inspection_service),
    user: FirebaseUser = Depends(require_staff),
):
    """
    Submit a new inspection.

    If boxes were impounded the facility contacts get an SMS after the
    record is saved. A failed SMS does not fail the request; the response
    carries a ``warning`` and the message waits in the outbox.
    """
    outcome = await service.submit_inspection(request, user)
    return SubmissionResponse(**outcome.model_dump())


@router.get("", response_model=InspectionPage)
async def list_inspections(
    before: Optional[int] = Query(None, description="Cursor from the previous page"),
    seen: str = Query("", description="Comma-separated ids already shown at the cursor"),
    service: InspectionService = Depends(get_inspection_service),
    user: FirebaseUser = Depends(require_staff),
):
    """Newest-first listing, one page at a time."""
    seen_ids = tuple(s for s in seen.split(",") if s)
    records, page = await service.page(before, seen_ids)
    return InspectionPage(
        items=records,
        cursor=page.cursor,
        seen=page.seen_at_cursor,
        exhausted=page.exhausted,
    )


@router.get("/recent", response_model=list[InspectionRecord])
async def recent_inspections(
    limit: int = Query(10, ge=1, le=100),
    service: InspectionService = Depends(get_inspection_service),
    user: FirebaseUser = Depends(require_staff),
):
    return await service.list_recent(limit)


@router.get("/live")
async def live_inspections(
    request: Request,
    limit: int = Query(settings.PAGE_SIZE, ge=1, le=500),
    store: RecordStore = Depends(get_store),
    user: FirebaseUser = Depends(require_staff),
):
    """
    Server-Sent Events feed of the newest inspections.

    Every event carries the full current list, never a diff. A slow client
    only ever gets the latest list. The listener is detached when the
    client disconnects.
    """
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue(maxsize=1)

    def on_snapshot(rows) -> None:
        loop.call_soon_threadsafe(offer_latest, queue, rows)

    subscription = await asyncio.to_thread(store.listen, SUBMISSIONS_PATH, on_snapshot, ORDER_BY)
    logger.info(f"[LIVE] {user.uid} subscribed")

    async def events():
        try:
            while not await request.is_disconnected():
                try:
                    rows = await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                items = [r.model_dump(mode="json", by_alias=True) for r in newest_records(rows)[:limit]]
                yield f"data: {json.dumps(items)}\n\n"
        finally:
            subscription.close()
            logger.info(f"[LIVE] {user.uid} unsubscribed")

    return StreamingResponse(events(), media_type="text/event-stream")


@router.get("/{record_id}", response_model=InspectionRecord)
async def get_inspection(
    record_id: str,
    service: InspectionService = Depends(get_inspection_service),
    user: FirebaseUser = Depends(require_staff),
):
    return await service.get_inspection(record_id)


# ============================================================================
# IMPOUNDMENT TRANSITIONS
# ============================================================================

@router.post("/{record_id}/status", response_model=TransitionResponse)
async def update_status(
    record_id: str,
    request: StatusUpdate,
    lifecycle: ImpoundmentLifecycle = Depends(get_lifecycle),
    user: FirebaseUser = Depends(require_staff),
):
    """
    Move impounded boxes into store.

    Only ``In Store`` is accepted here; releases go through the release
    form. Pass the ``revision`` you last saw to detect concurrent edits.
    """
    outcome = await lifecycle.set_status(record_id, request.status, user, request.revision)
    return _transition_response(outcome)


@router.post("/{record_id}/release", response_model=TransitionResponse)
async def release_boxes(
    record_id: str,
    request: ReleaseRequest,
    lifecycle: ImpoundmentLifecycle = Depends(get_lifecycle),
    user: FirebaseUser = Depends(require_staff),
):
    """Release impounded boxes to the client. Released records are final."""
    outcome = await lifecycle.release(record_id, request.to_form(), user, request.revision)
    return _transition_response(outcome)
