from drugwatch.models.inspection import (
    BoxStatus,
    Completion,
    FacilityType,
    ImpoundmentBlock,
    ImpoundmentReason,
    InspectionMeta,
    InspectionRecord,
    ReleaseRecord,
    SectionProgress,
    now_millis,
    to_int,
    to_millis,
)

__all__ = [
    "BoxStatus",
    "Completion",
    "FacilityType",
    "ImpoundmentBlock",
    "ImpoundmentReason",
    "InspectionMeta",
    "InspectionRecord",
    "ReleaseRecord",
    "SectionProgress",
    "now_millis",
    "to_int",
    "to_millis",
]
