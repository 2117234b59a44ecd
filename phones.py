"""
phones.py - Phone cleaning, validation and shared-number detection.

Phone numbers are 10 digits once whitespace is removed. A number shared by
two contacts is a duplicate SIGNAL, never a constraint: only the forms and
the bulk contacts editor turn it into a blocking error.
"""

from __future__ import annotations

import re
from typing import Any, Iterable, Optional, Sequence

from logging_config import get_logger
from models import (
    InternalDuplicateResult,
    PersonRecord,
    PhoneBatchError,
    PhoneCheckResult,
    PhoneValidationResult,
)
from normalize import clean_phone

logger = get_logger(__name__)

PHONE_LENGTH = 10
_VALID_PHONE_RE = re.compile(r"^\d{10}$")
_DIGITS_RE = re.compile(r"^\d+$")


def is_valid_phone(phone: Any) -> bool:
    return bool(_VALID_PHONE_RE.match(clean_phone(phone)))


def validate_phone(phone: Any) -> Optional[str]:
    """Return an error message for a bad phone value, or None when acceptable.

    A blank value is acceptable (an unused input slot).
    """
    cleaned = clean_phone(phone)
    if not cleaned:
        return None
    if not _DIGITS_RE.match(cleaned):
        return "Phone number must contain only digits"
    if len(cleaned) != PHONE_LENGTH:
        return f"Phone number must be exactly {PHONE_LENGTH} digits (got {len(cleaned)})"
    return None


def clean_and_deduplicate_phones(phones: Optional[Iterable[Any]]) -> list[str]:
    """Strip whitespace, drop blanks and repeats; [""] when nothing is left."""
    result: list[str] = []
    for raw in phones or []:
        phone = clean_phone(raw)
        if phone and phone not in result:
            result.append(phone)
    return result or [""]


def check_internal_duplicates(phones: Optional[Iterable[Any]]) -> InternalDuplicateResult:
    """Find numbers listed more than once within one contact's phone list."""
    seen: set[str] = set()
    duplicates: list[str] = []
    for raw in phones or []:
        phone = clean_phone(raw)
        if not phone:
            continue
        if phone in seen and phone not in duplicates:
            duplicates.append(phone)
        seen.add(phone)
    return InternalDuplicateResult(has_duplicates=bool(duplicates), duplicate_numbers=duplicates)


def _valid_numbers(person: PersonRecord) -> list[str]:
    return [phone for phone in person.phone_numbers if _VALID_PHONE_RE.match(phone)]


def check_duplicate_phone(
    phone: Any,
    people: Sequence[PersonRecord | dict[str, Any]],
    exclude_id: Optional[str] = None,
) -> PhoneCheckResult:
    """Find the first other contact already using `phone`."""
    cleaned = clean_phone(phone)
    if not _VALID_PHONE_RE.match(cleaned):
        return PhoneCheckResult()

    for raw in people:
        person = PersonRecord.coerce(raw)
        if exclude_id and person.id == exclude_id:
            continue
        if cleaned in person.phone_numbers:
            return PhoneCheckResult(is_duplicate=True, existing_contact=person)
    return PhoneCheckResult()


def validate_phone_numbers(
    phones: Optional[Iterable[Any]],
    people: Sequence[PersonRecord | dict[str, Any]] = (),
    exclude_id: Optional[str] = None,
) -> PhoneValidationResult:
    """Validate one contact's phone list for an add/edit form.

    Invalid values and numbers repeated within the list are errors.
    Numbers already used by other contacts are reported in `shared_with`
    without failing validation.
    """
    values = list(phones or [])
    errors: list[str] = []

    for index, raw in enumerate(values, start=1):
        message = validate_phone(raw)
        if message:
            errors.append(f"Phone {index}: {message}")

    internal = check_internal_duplicates(values)
    for number in internal.duplicate_numbers:
        errors.append(f"Phone number {number} is listed more than once")

    shared_with: dict[str, PersonRecord] = {}
    for raw in values:
        check = check_duplicate_phone(raw, people, exclude_id)
        if check.is_duplicate and check.existing_contact is not None:
            shared_with[clean_phone(raw)] = check.existing_contact

    return PhoneValidationResult(is_valid=not errors, errors=errors, shared_with=shared_with)


def batch_check_duplicate_phones(
    new_people: Sequence[PersonRecord | dict[str, Any]],
    existing_people: Sequence[PersonRecord | dict[str, Any]] = (),
) -> list[PhoneBatchError]:
    """Report numbers repeated inside an import batch or already taken by existing contacts."""
    errors: list[PhoneBatchError] = []
    seen_in_batch: dict[str, tuple[int, PersonRecord]] = {}
    existing = [PersonRecord.coerce(person) for person in existing_people]

    for index, raw in enumerate(new_people):
        person = PersonRecord.coerce(raw)
        for phone in _valid_numbers(person):
            earlier = seen_in_batch.get(phone)
            if earlier is not None and earlier[0] != index:
                errors.append(
                    PhoneBatchError(
                        person_index=index,
                        person_name=person.name,
                        phone=phone,
                        type="batch_duplicate",
                        message=f'Phone {phone} is also used by "{earlier[1].name}" in this import',
                        existing_contact=earlier[1],
                    )
                )
            else:
                seen_in_batch[phone] = (index, person)

            check = check_duplicate_phone(phone, existing, exclude_id=person.id)
            if check.is_duplicate and check.existing_contact is not None:
                errors.append(
                    PhoneBatchError(
                        person_index=index,
                        person_name=person.name,
                        phone=phone,
                        type="existing_duplicate",
                        message=(
                            f'Phone {phone} is already assigned to '
                            f'"{check.existing_contact.name}"'
                        ),
                        existing_contact=check.existing_contact,
                    )
                )

    if errors:
        logger.info("phone_batch_check | people=%s | errors=%s", len(new_people), len(errors))
    return errors


def find_all_shared_phone_numbers(
    people: Sequence[PersonRecord | dict[str, Any]],
) -> dict[str, list[PersonRecord]]:
    """Index valid numbers to the contacts using them; keep numbers with 2+ owners."""
    index: dict[str, list[PersonRecord]] = {}
    for raw in people:
        person = PersonRecord.coerce(raw)
        for phone in _valid_numbers(person):
            owners = index.setdefault(phone, [])
            if all(owner.id != person.id for owner in owners):
                owners.append(person)
    return {phone: owners for phone, owners in index.items() if len(owners) >= 2}
