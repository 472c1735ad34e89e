"""SMS bodies sent to facility contacts."""

from datetime import datetime, timezone

from drugwatch.models.inspection import InspectionRecord


def format_when(millis: int | None) -> str:
    if not millis:
        return "N/A"
    return datetime.fromtimestamp(millis / 1000, tz=timezone.utc).strftime("%d %b %Y, %H:%M")


def facility(record: InspectionRecord) -> str:
    return record.meta.facility_name or "Drugshop"


def serial(record: InspectionRecord) -> str:
    return record.meta.serial_number or "N/A"


def impounded_message(record: InspectionRecord) -> str:
    block = record.impoundment
    return (
        f"Dear {facility(record)}, "
        f"{block.total_boxes} box(es) were impounded on {format_when(block.impoundment_date or record.meta.date)}. "
        f"Serial: {serial(record)}. Officer: {block.impounded_by or 'N/A'}."
    )


def in_store_message(record: InspectionRecord) -> str:
    return (
        f"Dear {facility(record)}, "
        f"the {record.impoundment.total_boxes} box(es) impounded under serial {serial(record)} "
        f"are now in store."
    )


def release_message(record: InspectionRecord, boxes_released: int, remaining: int, officer: str, when: int) -> str:
    return (
        f"Dear {facility(record)}, "
        f"{boxes_released} box(es) have been released on {format_when(when)}. "
        f"Serial: {serial(record)}. "
        f"Remaining: {remaining}. "
        f"Officer: {officer}."
    )


def reminder_message(record: InspectionRecord, days_in_store: int) -> str:
    return (
        f"Dear {facility(record)}, "
        f"the box(es) impounded under serial {serial(record)} have been in store for {days_in_store} days. "
        f"Please contact the inspectorate to resolve the case."
    )
