"""Inspection checklist sections and progress counters."""

from typing import Any

from drugwatch.models.inspection import SectionProgress

OUTLET_QUESTIONS: tuple[str, ...] = (
    "licenseDisplayed",
    "licenseValid",
    "qualifiedPersonInCharge",
    "premisesClean",
    "adequateShelving",
    "dispensingRecordsKept",
    "prescriptionOnlyDrugsSecured",
    "expiredDrugsSegregated",
    "unregisteredDrugsAbsent",
    "signageCompliant",
)

COLD_CHAIN_QUESTIONS: tuple[str, ...] = (
    "refrigeratorAvailable",
    "thermometerPresent",
    "temperatureLogMaintained",
    "temperatureInRange",
    "vaccinesStoredCorrectly",
    "backupPowerAvailable",
)

SECTIONS: dict[str, tuple[str, ...]] = {
    "outlet": OUTLET_QUESTIONS,
    "cold": COLD_CHAIN_QUESTIONS,
}


def is_answered(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def section_progress(section: str, answers: dict[str, Any]) -> SectionProgress:
    """Count answered questions of a section; unknown keys are ignored."""
    questions = SECTIONS[section]
    answered = sum(1 for q in questions if is_answered(answers.get(q)))
    return SectionProgress(answered=answered, total=len(questions))


def compute_progress(outlet: dict[str, Any], cold: dict[str, Any]) -> dict[str, SectionProgress]:
    return {
        "outlet": section_progress("outlet", outlet),
        "cold": section_progress("cold", cold),
    }
