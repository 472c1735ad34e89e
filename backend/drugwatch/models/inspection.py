"""Inspection record models.

Records live in the realtime database under ``submissions/{id}`` with
camelCase keys. Legacy records stored box counts as strings and timestamps
as ISO strings; every read goes through ``to_int`` / ``to_millis`` so the
rest of the code only ever sees ints.
"""

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class FacilityType(str, Enum):
    HUMAN = "Human"
    VETERINARY = "Veterinary"
    PUBLIC = "Public"
    PRIVATE = "Private"


class BoxStatus(str, Enum):
    """Custody of seized stock. ``RELEASED`` is terminal."""
    NOT_IN_STORE = "Not yet in store"
    IN_STORE = "In Store"
    RELEASED = "Released"


class Completion(str, Enum):
    """Inventory completeness, kept apart from custody."""
    PENDING_REVIEW = "Pending Review"
    COMPLETED = "Completed"


class ImpoundmentReason(str, Enum):
    UNLICENSED_PREMISES = "Unlicensed premises"
    UNQUALIFIED_PERSONNEL = "Unqualified personnel"
    EXPIRED_DRUGS = "Expired drugs"
    UNREGISTERED_DRUGS = "Unregistered drugs"
    CLASS_NOT_PERMITTED = "Drug class not permitted"
    POOR_STORAGE = "Poor storage conditions"
    OTHER = "Other"


# ============ Canonical type helpers ============

def to_int(value: Any) -> int:
    """Coerce a stored count to int; anything unparseable is 0."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else 0
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            parsed = float(text)
        except ValueError:
            return 0
        return int(parsed) if math.isfinite(parsed) else 0
    return 0


def to_millis(value: Any) -> int:
    """Coerce a stored timestamp (epoch ms or ISO string) to epoch ms; 0 if unknown."""
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, (int, float)):
        return int(value) if math.isfinite(value) else 0
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return 0
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return int(parsed.timestamp() * 1000)
    return 0


def now_millis() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


# ============ Store models ============

class StoreModel(BaseModel):
    class Config:
        populate_by_name = True

    def to_store(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ReleaseRecord(StoreModel):
    """Created once per inspection, when the release completes."""
    release_date: int = Field(alias="date")
    client_name: str = Field(alias="clientName")
    telephone: str
    released_by: str = Field(alias="releasedBy")
    comment: str = ""
    boxes_released: int = Field(alias="boxesReleased")
    created_at: int = Field(alias="createdAt")
    created_by: str = Field(alias="createdBy")

    @field_validator("boxes_released", mode="before")
    @classmethod
    def _count(cls, value: Any) -> int:
        return to_int(value)

    @field_validator("release_date", "created_at", mode="before")
    @classmethod
    def _times(cls, value: Any) -> int:
        return to_millis(value)


class ImpoundmentBlock(StoreModel):
    total_boxes: int = Field(0, alias="totalBoxes")
    boxes_remaining: Optional[int] = Field(None, alias="boxesRemaining")
    impounded_by: str = Field("", alias="impoundedBy")
    impoundment_date: Optional[int] = Field(None, alias="impoundmentDate")
    reasons: list[str] = []
    box_status: BoxStatus = Field(BoxStatus.NOT_IN_STORE, alias="boxStatus")
    in_store_at: Optional[int] = Field(None, alias="inStoreAt")
    in_store_by: Optional[str] = Field(None, alias="inStoreBy")
    reminder_sent_at: Optional[int] = Field(None, alias="reminderSentAt")
    reminder_notification_id: Optional[str] = Field(None, alias="reminderNotificationId")
    completion: Optional[Completion] = None
    release: Optional[ReleaseRecord] = None

    @model_validator(mode="before")
    @classmethod
    def _legacy_reason(cls, data: Any) -> Any:
        if isinstance(data, dict) and "reason" in data and "reasons" not in data:
            data = dict(data)
            reason = data.pop("reason")
            data["reasons"] = [reason] if reason else []
        return data

    @field_validator("total_boxes", mode="before")
    @classmethod
    def _total(cls, value: Any) -> int:
        return to_int(value)

    @field_validator("boxes_remaining", mode="before")
    @classmethod
    def _remaining(cls, value: Any) -> Optional[int]:
        return None if value is None else to_int(value)

    @field_validator("impoundment_date", "in_store_at", "reminder_sent_at", mode="before")
    @classmethod
    def _times(cls, value: Any) -> Optional[int]:
        return None if value is None else to_millis(value) or None

    @property
    def remaining(self) -> int:
        """Boxes still held."""
        return self.total_boxes if self.boxes_remaining is None else self.boxes_remaining

    @property
    def is_released(self) -> bool:
        return self.box_status == BoxStatus.RELEASED


class InspectionMeta(StoreModel):
    doc_no: Optional[str] = Field(None, alias="docNo")
    serial_number: str = Field("", alias="serialNumber")
    date: Optional[int] = None
    facility_name: str = Field("", alias="facilityName")
    contact_phones: str = Field("", alias="drugshopContactPhones")
    district: Optional[str] = None
    facility_type: Optional[FacilityType] = Field(None, alias="type")
    location: Optional[dict[str, Any]] = None
    status: str = "submitted"
    created_at: int = Field(0, alias="createdAt")
    created_by: str = Field("anonymous", alias="createdBy")
    source: str = "web"

    @model_validator(mode="before")
    @classmethod
    def _legacy_name(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("facilityName") and data.get("drugshopName"):
            data = {**data, "facilityName": data["drugshopName"]}
        return data

    @field_validator("date", mode="before")
    @classmethod
    def _date(cls, value: Any) -> Optional[int]:
        return None if value is None else to_millis(value) or None

    @field_validator("created_at", mode="before")
    @classmethod
    def _created(cls, value: Any) -> int:
        return to_millis(value)

    @field_validator("facility_type", mode="before")
    @classmethod
    def _type(cls, value: Any) -> Any:
        return value or None


class SectionProgress(StoreModel):
    answered: int = 0
    total: int = 0


class InspectionRecord(StoreModel):
    """One facility visit, with its optional impoundment block."""
    id: str = ""
    meta: InspectionMeta
    impoundment: Optional[ImpoundmentBlock] = None
    outlet: dict[str, Any] = {}
    cold: dict[str, Any] = {}
    progress: dict[str, SectionProgress] = {}
    revision: int = 0

    @classmethod
    def from_store(cls, record_id: str, data: dict[str, Any]) -> "InspectionRecord":
        return cls.model_validate({**data, "id": record_id, "meta": data.get("meta") or {}})

    def to_store(self) -> dict[str, Any]:
        data = super().to_store()
        data.pop("id", None)
        return data

    @property
    def box_status(self) -> Optional[BoxStatus]:
        return self.impoundment.box_status if self.impoundment else None

    @property
    def phones(self) -> str:
        return self.meta.contact_phones
