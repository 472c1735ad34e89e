"""Release form validation.

All checks run before any network call; failures never reach the store or
the gateway.
"""

import re
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import BaseModel

from drugwatch.core.exceptions import ReleaseValidationError
from drugwatch.models.inspection import to_millis
from drugwatch.services.phone import is_valid_telephone

CONFIRMATION_WORD = "RELEASE"

_DIGITS = re.compile(r"^\d+$")
_WHITESPACE = re.compile(r"\s+")


class ReleaseForm(BaseModel):
    """Raw release form input, as typed by staff."""
    release_date: Optional[str] = None
    client_name: str = ""
    telephone: str = ""
    released_by: str = ""
    comment: str = ""
    boxes_released: Any = None
    consent: bool = False
    confirm_text: str = ""


@dataclass(frozen=True)
class ValidatedRelease:
    release_date: int
    client_name: str
    telephone: str
    released_by: str
    comment: str
    boxes_released: int


def parse_box_count(raw: Any) -> Optional[int]:
    """Positive whole number, or None. Strings must be plain digits."""
    if isinstance(raw, bool) or raw is None:
        return None
    if isinstance(raw, int):
        value = raw
    elif isinstance(raw, float):
        if not raw.is_integer():
            return None
        value = int(raw)
    elif isinstance(raw, str) and _DIGITS.match(raw.strip()):
        value = int(raw.strip())
    else:
        return None
    return value if value > 0 else None


def confirmation_matches(typed: str, serial_number: str) -> bool:
    """``RELEASE`` or the record's serial number, case-insensitively."""
    typed = (typed or "").strip()
    serial_number = (serial_number or "").strip()
    if typed.upper() == CONFIRMATION_WORD:
        return True
    return bool(serial_number) and typed.lower() == serial_number.lower()


def validate_release_form(
    form: ReleaseForm,
    boxes_impounded: int,
    serial_number: str = "",
    require_confirmation: bool = False,
) -> ValidatedRelease:
    """Check every field; raise ``ReleaseValidationError`` listing the failures."""
    errors: dict[str, str] = {}

    release_date = to_millis(form.release_date) if form.release_date else 0
    if not form.release_date or not str(form.release_date).strip():
        errors["release_date"] = "Release date is required."
    elif not release_date:
        errors["release_date"] = "Enter a valid release date."

    if not form.client_name.strip():
        errors["client_name"] = "Client name is required."

    if not form.telephone.strip():
        errors["telephone"] = "Telephone number is required."
    elif not is_valid_telephone(form.telephone):
        errors["telephone"] = "Enter a valid phone number (e.g. +2567XXXXXXX)."

    if not form.released_by.strip():
        errors["released_by"] = "Released by is required."

    count = parse_box_count(form.boxes_released)
    if count is None:
        errors["boxes_released"] = "Enter a valid number of boxes to release."
    elif count > boxes_impounded:
        errors["boxes_released"] = f"You are releasing {count}, but only {boxes_impounded} are impounded."

    if not form.consent:
        errors["consent"] = "Confirm that the release has been explained to and accepted by the client."

    if require_confirmation and not confirmation_matches(form.confirm_text, serial_number):
        errors["confirm_text"] = f"Type {CONFIRMATION_WORD} or the serial number to confirm."

    if errors:
        raise ReleaseValidationError(errors)

    return ValidatedRelease(
        release_date=release_date,
        client_name=form.client_name.strip(),
        telephone=_WHITESPACE.sub("", form.telephone),
        released_by=form.released_by.strip(),
        comment=form.comment.strip(),
        boxes_released=count,
    )
