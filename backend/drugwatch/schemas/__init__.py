from drugwatch.schemas.inspection import (
    DashboardCounts,
    InspectionCreate,
    InspectionPage,
    Location,
    ReleaseRequest,
    StatusUpdate,
    SubmissionResponse,
    TransitionResponse,
)
from drugwatch.schemas.sms import SmsRelayResponse, SmsRequest

__all__ = [
    "DashboardCounts",
    "InspectionCreate",
    "InspectionPage",
    "Location",
    "ReleaseRequest",
    "SmsRelayResponse",
    "SmsRequest",
    "StatusUpdate",
    "SubmissionResponse",
    "TransitionResponse",
]
