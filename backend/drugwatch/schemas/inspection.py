from typing import Any, Optional

from pydantic import BaseModel, Field

from drugwatch.models.inspection import BoxStatus, FacilityType, ImpoundmentReason, InspectionRecord
from drugwatch.services.release_form import ReleaseForm


class Location(BaseModel):
    """Where the inspection took place."""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    address: Optional[str] = None


class InspectionCreate(BaseModel):
    """Schema for submitting a new inspection."""
    date: Optional[str] = None
    serial_number: Optional[str] = None
    facility_name: str = ""
    contact_phones: str = ""
    district: Optional[str] = None
    facility_type: Optional[FacilityType] = None
    location: Optional[Location] = None

    # Impoundment
    boxes_impounded: Any = 0
    impounded_by: str = ""
    impoundment_date: Optional[str] = None
    reasons: list[ImpoundmentReason] = []

    # Checklist answers, keyed by question
    outlet: dict[str, Any] = {}
    cold: dict[str, Any] = {}

    send_sms: bool = True
    source: str = "web"


class StatusUpdate(BaseModel):
    """Schema for a staff status change."""
    status: BoxStatus
    revision: Optional[int] = None


class ReleaseRequest(ReleaseForm):
    """Release form plus the revision the client last saw."""
    revision: Optional[int] = None

    def to_form(self) -> ReleaseForm:
        return ReleaseForm.model_validate(self.model_dump(exclude={"revision"}))


class SubmissionResponse(BaseModel):
    ok: bool = True
    record: InspectionRecord
    notified: bool = False
    warning: Optional[str] = None
    notification_id: Optional[str] = None


class TransitionResponse(BaseModel):
    ok: bool = True
    record: InspectionRecord
    previous_status: BoxStatus
    status: BoxStatus
    notified: bool = False
    warning: Optional[str] = None
    notification_id: Optional[str] = None


class InspectionPage(BaseModel):
    """One page of the newest-first listing.

    Pass ``cursor`` back as ``before`` and ``seen`` as ``seen`` to get the
    next page.
    """
    items: list[InspectionRecord]
    cursor: Optional[int] = None
    seen: list[str] = Field(default_factory=list)
    exhausted: bool = False


class DashboardCounts(BaseModel):
    inspections: int = 0
    impounded: int = 0
    released: int = 0
    facilities: int = 0
