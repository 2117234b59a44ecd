"""
duplicates.py - Duplicate contact scoring, grouping and merging.

A pair of contacts is scored on five signals:
- name similarity         (weight 30)
- phone-set overlap       (weight 40, only when both sides have phones)
- address similarity      (weight 15, when either side has an address)
- same category           (weight 10, always counted)
- specialty similarity    (weight 5, when either side has a specialty)

The score is the weighted sum divided by the weights that applied, so a
contact with no address is not punished for it. Reasons are recorded for
every strong signal so the UI can say WHY two contacts look alike.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional, Sequence

from rapidfuzz.distance import Levenshtein

from logging_config import get_logger
from models import (
    BatchDuplicateResult,
    DuplicateGroup,
    DuplicateMatch,
    DuplicateReason,
    DuplicateScore,
    GroupMemberScore,
    MatchType,
    PersonRecord,
)
from normalize import clean_phone
from phones import find_all_shared_phone_numbers

logger = get_logger(__name__)

NAME_WEIGHT = 30
PHONE_WEIGHT = 40
ADDRESS_WEIGHT = 15
CATEGORY_WEIGHT = 10
SPECIALTY_WEIGHT = 5

EXACT_THRESHOLD = 0.95
HIGH_THRESHOLD = 0.70
MEDIUM_THRESHOLD = 0.50
LOW_THRESHOLD = 0.30

NAME_REASON_THRESHOLD = 0.8
ADDRESS_REASON_THRESHOLD = 0.7
SPECIALTY_REASON_THRESHOLD = 0.7

DEFAULT_THRESHOLD = 0.5
GROUP_NAME_THRESHOLD = 0.7

MERGE_NOTES_SEPARATOR = "\n\n--- Merged from duplicate ---\n"


def string_similarity(a: Optional[str], b: Optional[str]) -> float:
    """Normalized Levenshtein similarity, 0..1, case-insensitive and trimmed."""
    left = str(a or "").strip().lower()
    right = str(b or "").strip().lower()
    if not left or not right:
        return 0.0
    if left == right:
        return 1.0
    return float(Levenshtein.normalized_similarity(left, right))


def classify_score(score: float) -> MatchType:
    if score >= EXACT_THRESHOLD:
        return MatchType.EXACT
    if score >= HIGH_THRESHOLD:
        return MatchType.HIGH
    if score >= MEDIUM_THRESHOLD:
        return MatchType.MEDIUM
    if score >= LOW_THRESHOLD:
        return MatchType.LOW
    return MatchType.NONE


def _phone_list(person: PersonRecord) -> list[str]:
    return [phone for phone in (clean_phone(p) for p in person.phones) if phone]


def are_contacts_identical(a: PersonRecord | dict[str, Any], b: PersonRecord | dict[str, Any]) -> bool:
    """Verbatim field equality; phones are compared as sorted sets."""
    left, right = PersonRecord.coerce(a), PersonRecord.coerce(b)
    return (
        left.name == right.name
        and left.category == right.category
        and sorted(set(_phone_list(left))) == sorted(set(_phone_list(right)))
        and (left.address or "") == (right.address or "")
        and (left.specialty or "") == (right.specialty or "")
        and (left.notes or "") == (right.notes or "")
    )


def calculate_duplicate_score(
    new_contact: PersonRecord | dict[str, Any],
    existing_contact: PersonRecord | dict[str, Any],
) -> DuplicateScore:
    """Score how likely two contacts describe the same person."""
    new = PersonRecord.coerce(new_contact)
    existing = PersonRecord.coerce(existing_contact)

    reasons: list[DuplicateReason] = []
    total = 0.0
    max_possible = 0

    name_score = string_similarity(new.name, existing.name)
    total += name_score * NAME_WEIGHT
    max_possible += NAME_WEIGHT
    if name_score > NAME_REASON_THRESHOLD:
        reasons.append(
            DuplicateReason(
                field="name",
                score=name_score,
                message=f"Names are {round(name_score * 100)}% similar",
            )
        )

    new_phones = _phone_list(new)
    existing_phones = _phone_list(existing)
    if new_phones and existing_phones:
        common = [phone for phone in new_phones if phone in existing_phones]
        phone_score = len(common) / max(len(new_phones), len(existing_phones))
        total += phone_score * PHONE_WEIGHT
        max_possible += PHONE_WEIGHT
        if common:
            reasons.append(
                DuplicateReason(
                    field="phones",
                    score=phone_score,
                    message=f"{len(common)} phone number(s) match: {', '.join(common)}",
                )
            )

    if new.address or existing.address:
        address_score = string_similarity(new.address, existing.address)
        total += address_score * ADDRESS_WEIGHT
        max_possible += ADDRESS_WEIGHT
        if address_score > ADDRESS_REASON_THRESHOLD:
            reasons.append(
                DuplicateReason(
                    field="address",
                    score=address_score,
                    message=f"Addresses are {round(address_score * 100)}% similar",
                )
            )

    max_possible += CATEGORY_WEIGHT
    if new.category == existing.category:
        total += CATEGORY_WEIGHT
        reasons.append(DuplicateReason(field="category", score=1.0, message="Same category"))

    if new.specialty or existing.specialty:
        specialty_score = string_similarity(new.specialty, existing.specialty)
        total += specialty_score * SPECIALTY_WEIGHT
        max_possible += SPECIALTY_WEIGHT
        if specialty_score > SPECIALTY_REASON_THRESHOLD:
            reasons.append(
                DuplicateReason(
                    field="specialty",
                    score=specialty_score,
                    message=f"Specialties are {round(specialty_score * 100)}% similar",
                )
            )

    score = min(1.0, total / max_possible) if max_possible else 0.0
    result = DuplicateScore(
        score=score,
        reasons=reasons,
        match_type=classify_score(score),
        is_exact=are_contacts_identical(new, existing),
    )
    logger.debug(
        "duplicate_score | new=%r | existing=%r | score=%.3f | match_type=%s",
        new.name,
        existing.name,
        score,
        result.match_type.value,
    )
    return result


def find_potential_duplicates(
    new_contact: PersonRecord | dict[str, Any],
    existing_contacts: Iterable[PersonRecord | dict[str, Any]],
    threshold: float = DEFAULT_THRESHOLD,
) -> list[DuplicateMatch]:
    """Existing contacts scoring at least `threshold`, best first."""
    new = PersonRecord.coerce(new_contact)
    matches: list[DuplicateMatch] = []
    for raw in existing_contacts:
        existing = PersonRecord.coerce(raw)
        scored = calculate_duplicate_score(new, existing)
        if scored.score >= threshold:
            matches.append(
                DuplicateMatch(
                    **scored.model_dump(),
                    existing_contact=existing,
                    new_contact=new,
                )
            )
    matches.sort(key=lambda match: match.score, reverse=True)
    return matches


def batch_find_duplicates(
    new_contacts: Sequence[PersonRecord | dict[str, Any]],
    existing_contacts: Sequence[PersonRecord | dict[str, Any]],
    threshold: float = DEFAULT_THRESHOLD,
) -> list[BatchDuplicateResult]:
    """Run find_potential_duplicates for each incoming contact; keep those with hits."""
    existing = [PersonRecord.coerce(contact) for contact in existing_contacts]
    results: list[BatchDuplicateResult] = []
    for index, raw in enumerate(new_contacts):
        contact = PersonRecord.coerce(raw)
        duplicates = find_potential_duplicates(contact, existing, threshold)
        if duplicates:
            results.append(
                BatchDuplicateResult(
                    index=index,
                    new_contact=contact,
                    duplicates=duplicates,
                    is_exact_duplicate=any(match.is_exact for match in duplicates),
                )
            )
    logger.info(
        "batch_duplicates | incoming=%s | existing=%s | flagged=%s",
        len(new_contacts),
        len(existing),
        len(results),
    )
    return results


def merge_contacts(
    existing_contact: PersonRecord | dict[str, Any],
    new_contact: PersonRecord | dict[str, Any],
    prefer_new: bool = True,
    merge_phones: bool = True,
    merge_notes: bool = True,
) -> PersonRecord:
    """Combine two contacts; the result keeps the existing contact's id."""
    existing = PersonRecord.coerce(existing_contact)
    incoming = PersonRecord.coerce(new_contact)
    merged = existing.model_dump()

    for field in ("name", "category", "address", "specialty", "photo"):
        value = getattr(incoming, field)
        if value and (prefer_new or not merged.get(field)):
            merged[field] = value

    if merge_phones:
        union: list[str] = []
        for phone in _phone_list(existing) + _phone_list(incoming):
            if phone not in union:
                union.append(phone)
        merged["phones"] = union or [""]
    elif prefer_new and incoming.phone_numbers:
        merged["phones"] = list(incoming.phones)

    if merge_notes and incoming.notes:
        if merged.get("notes"):
            merged["notes"] = f"{merged['notes']}{MERGE_NOTES_SEPARATOR}{incoming.notes}"
        else:
            merged["notes"] = incoming.notes
    elif prefer_new and incoming.notes:
        merged["notes"] = incoming.notes

    return PersonRecord.model_validate(merged)


def merge_duplicate_group(
    contacts: Sequence[PersonRecord | dict[str, Any]],
    keep_id: str,
) -> tuple[PersonRecord, list[str]]:
    """Fold every other group member into the kept contact.

    Returns the merged contact and the ids to delete. The kept contact's
    values win; phones and notes are combined.
    """
    people = [PersonRecord.coerce(contact) for contact in contacts]
    keep = next((person for person in people if person.id == keep_id), None)
    if keep is None:
        raise ValueError(f"Contact {keep_id!r} is not part of this group")

    merged = keep
    removed: list[str] = []
    for person in people:
        if person.id == keep_id:
            continue
        merged = merge_contacts(merged, person, prefer_new=False, merge_phones=True, merge_notes=True)
        removed.append(person.id)

    logger.info("group_merge | keep_id=%s | removed=%s", keep_id, len(removed))
    return merged, removed


def _score_members(members: list[PersonRecord]) -> list[GroupMemberScore]:
    scores: list[GroupMemberScore] = []
    for contact in members:
        others = [other for other in members if other.id != contact.id]
        values = [calculate_duplicate_score(contact, other).score for other in others]
        average = sum(values) / len(values) if values else 0.0
        scores.append(GroupMemberScore(contact_id=contact.id, avg_score=average))
    scores.sort(key=lambda item: item.avg_score, reverse=True)
    return scores


def _ordered_members(members: list[PersonRecord], scores: list[GroupMemberScore]) -> list[PersonRecord]:
    by_id = {member.id: member for member in members}
    return [by_id[score.contact_id] for score in scores]


def find_duplicate_groups(people: Sequence[PersonRecord | dict[str, Any]]) -> list[DuplicateGroup]:
    """Group probable duplicates across the whole directory.

    First pass: contacts sharing a valid phone number form one group per
    number. Second pass: remaining contacts are compared pairwise and the
    first contact of each run collects every later contact scoring >= 0.7.
    Grouping is greedy; contacts linked only through different numbers are
    not chained into one cluster.
    """
    contacts = [PersonRecord.coerce(person) for person in people]
    groups: list[DuplicateGroup] = []
    processed: set[str] = set()

    for phone, owners in find_all_shared_phone_numbers(contacts).items():
        if all(owner.id in processed for owner in owners):
            continue

        scores = _score_members(owners)
        top = scores[0].avg_score if scores else 0.0
        if top >= HIGH_THRESHOLD:
            match_type = MatchType.HIGH
        elif top >= MEDIUM_THRESHOLD:
            match_type = MatchType.MEDIUM
        else:
            match_type = MatchType.LOW

        groups.append(
            DuplicateGroup(
                id=f"group-{len(groups)}",
                shared_phone=phone,
                contacts=_ordered_members(owners, scores),
                scores=scores,
                match_type=match_type,
            )
        )
        processed.update(owner.id for owner in owners)

    for i, contact in enumerate(contacts):
        if contact.id in processed:
            continue

        similar: list[PersonRecord] = []
        for other in contacts[i + 1:]:
            if other.id in processed:
                continue
            if calculate_duplicate_score(contact, other).score >= GROUP_NAME_THRESHOLD:
                if not similar:
                    similar.append(contact)
                similar.append(other)
                processed.add(other.id)

        if len(similar) > 1:
            scores = _score_members(similar)
            groups.append(
                DuplicateGroup(
                    id=f"group-{len(groups)}",
                    shared_phone=None,
                    contacts=_ordered_members(similar, scores),
                    scores=scores,
                    match_type=MatchType.HIGH if scores[0].avg_score >= 0.8 else MatchType.MEDIUM,
                )
            )
            processed.add(contact.id)

    logger.info("duplicate_groups | contacts=%s | groups=%s", len(contacts), len(groups))
    return groups
