"""
bulk_text.py - Plain-text bulk editing for price trees and contact lists.

Price tree format (two spaces per nesting level):

    Taps
      Angle Valve | 50 | 40 | piece | piece
      Pillar Cock | 120 | 95 | piece | piece | 110

    Item fields: name | retailSell | cost | sellUnit | costUnit [| bulkSell]
    Lines without a separator are categories. Without a pipe, a comma
    separates fields when the second field is a price. Missing numbers
    read as 0, missing units as "piece".

Contacts format (one category per text block):

    Ram Kumar | 9876543210 / 9123456780 | 12 Market Road, Pune

Price text is coerced silently. Contact text is validated line by line and
every problem is reported at once through BulkImportError.
"""

from __future__ import annotations

import re
from typing import Any, Mapping, Optional, Sequence

from explain import format_number
from logging_config import get_logger
from models import ContactCategory, PersonRecord
from normalize import clean_phone, parse_number, to_title_case
from phones import is_valid_phone
from price_tree import (
    CATEGORY,
    DEFAULT_UNIT,
    ITEM,
    ORDER_KEYS,
    is_category,
    is_item,
    item_price,
    walk,
)

logger = get_logger(__name__)

INDENT = "  "
FIELD_SEPARATOR = " | "
PHONE_SEPARATOR = " / "
EXPORT_DECIMALS = 6

_PRICE_FIELD_RE = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)$")


class BulkImportError(ValueError):
    """Bulk text rejected; `errors` holds every line-numbered problem."""

    def __init__(self, errors: Sequence[str] | Mapping[str, Sequence[str]]) -> None:
        if isinstance(errors, Mapping):
            self.errors: list[str] = [message for messages in errors.values() for message in messages]
            self.errors_by_category: dict[str, list[str]] = {
                key: list(messages) for key, messages in errors.items() if messages
            }
        else:
            self.errors = list(errors)
            self.errors_by_category = {}
        super().__init__("; ".join(self.errors) or "Bulk import failed")


# ---------------------------------------------------------------------------
# Price tree
# ---------------------------------------------------------------------------


def _item_fields(name: str, node: Mapping[str, Any]) -> list[str]:
    retail = item_price(node)
    bulk = node.get("bulkSell")
    sell_unit = str(node.get("sellUnit") or DEFAULT_UNIT)
    fields = [
        name,
        format_number(retail, EXPORT_DECIMALS),
        format_number(node.get("cost"), EXPORT_DECIMALS),
        sell_unit,
        str(node.get("costUnit") or sell_unit),
    ]
    if bulk is not None and parse_number(bulk) != retail:
        fields.append(format_number(bulk, EXPORT_DECIMALS))
    return fields


def export_to_text(tree: Mapping[str, Any]) -> str:
    """Serialize a price tree, honouring `__orderKeys` at every level."""
    lines: list[str] = []
    for _path, name, node, depth in walk(tree):
        prefix = INDENT * depth
        if is_item(node):
            lines.append(prefix + FIELD_SEPARATOR.join(_item_fields(name, node)))
        else:
            lines.append(prefix + name)
    return "\n".join(lines) + ("\n" if lines else "")


def _split_fields(content: str) -> Optional[list[str]]:
    """Item fields of a line, or None for a category line.

    A comma only separates fields when the second field is a price, so
    category names such as "Nuts, Bolts" survive a round trip.
    """
    if "|" in content:
        return [part.strip() for part in content.split("|")]
    if "," in content:
        parts = [part.strip() for part in content.split(",")]
        if _PRICE_FIELD_RE.match(parts[1]):
            return parts
    return None


def _field(parts: list[str], index: int) -> str:
    return parts[index] if len(parts) > index else ""


def _parse_item(parts: list[str]) -> dict[str, Any]:
    retail_sell = parse_number(_field(parts, 1))
    sell_unit = _field(parts, 3) or DEFAULT_UNIT
    bulk_text = _field(parts, 5)
    return {
        "type": ITEM,
        "retailSell": retail_sell,
        "bulkSell": parse_number(bulk_text) if bulk_text else retail_sell,
        "cost": parse_number(_field(parts, 2)),
        "sellUnit": sell_unit,
        "costUnit": _field(parts, 4) or sell_unit,
    }


def _recompute_order_keys(mapping: dict[str, Any]) -> None:
    for node in mapping.values():
        if is_category(node):
            _recompute_order_keys(node["children"])
            node[ORDER_KEYS] = list(node["children"])


def import_from_text(text: Optional[str], title_case: bool = True) -> dict[str, Any]:
    """Parse bulk text into a price tree; hierarchy comes from indentation.

    The level of a line is its leading spaces / 2. Each line is attached to
    the nearest preceding category with a strictly smaller level.
    """
    if not text or not text.strip():
        return {}

    root: dict[str, Any] = {}
    stack: list[tuple[float, dict[str, Any]]] = [(-1.0, root)]

    for line_number, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.rstrip("\r")
        if not line.strip():
            continue

        level = (len(line) - len(line.lstrip(" "))) / 2
        content = line.strip()
        while stack[-1][0] >= level:
            stack.pop()
        container = stack[-1][1]

        parts = _split_fields(content)
        if parts is None:
            name = to_title_case(content) if title_case else content
            node: dict[str, Any] = {"type": CATEGORY, "children": {}}
            container[name] = node
            stack.append((level, node["children"]))
            continue

        name = to_title_case(parts[0]) if title_case else parts[0]
        if not name:
            logger.warning("bulk_import_skip | line=%s | reason='blank item name'", line_number)
            continue
        container[name] = _parse_item(parts)

    _recompute_order_keys(root)
    logger.info("bulk_import | lines=%s | roots=%s", len(text.splitlines()), len(root))
    return root


def format_bulk_text(text: Optional[str]) -> str:
    """Align the item columns of consecutive lines that share an indentation."""
    if not text:
        return ""

    lines = text.splitlines()
    output: list[str] = []
    block: list[tuple[str, list[str]]] = []

    def flush() -> None:
        if not block:
            return
        widths: dict[int, int] = {}
        for _, parts in block:
            for index, part in enumerate(parts[:-1]):
                widths[index] = max(widths.get(index, 0), len(part))
        for prefix, parts in block:
            padded = [part.ljust(widths[index]) for index, part in enumerate(parts[:-1])]
            output.append(prefix + FIELD_SEPARATOR.join(padded + [parts[-1]]))
        block.clear()

    for line in lines:
        content = line.strip()
        parts = _split_fields(content) if content else None
        prefix = line[: len(line) - len(line.lstrip(" "))]
        if parts is None:
            flush()
            output.append(line.rstrip())
            continue
        if block and block[0][0] != prefix:
            flush()
        block.append((prefix, parts))
    flush()

    return "\n".join(output)


# ---------------------------------------------------------------------------
# Contacts
# ---------------------------------------------------------------------------


def people_to_text(people: Sequence[PersonRecord]) -> str:
    """One line per contact: name | phones joined by ' / ' | address."""
    lines: list[str] = []
    for person in people:
        line = f"{person.name}{FIELD_SEPARATOR}{PHONE_SEPARATOR.join(person.phone_numbers)}"
        if person.address:
            line += f"{FIELD_SEPARATOR}{person.address}"
        lines.append(line)
    return "\n".join(lines)


def export_people_by_category(
    people: Sequence[PersonRecord],
    categories: Sequence[ContactCategory],
) -> dict[str, str]:
    """Bulk text per category id, for every category (empty text when unused)."""
    return {
        category.id: people_to_text([person for person in people if person.category == category.id])
        for category in categories
    }


def _split_person_line(content: str) -> list[str]:
    if "|" in content:
        return [part.strip() for part in content.split("|")]
    return [part.strip() for part in content.split(",")]


def text_to_people(
    text: Optional[str],
    category_id: str,
    existing_people: Sequence[PersonRecord] = (),
) -> list[PersonRecord]:
    """Parse one category's contact lines.

    Existing contacts of the same category are matched by lower-case name
    and keep their id, specialty, notes and photo. Only the first line with
    a given name takes over the existing contact; repeats get fresh ids.
    Raises BulkImportError listing every invalid line.
    """
    errors: list[str] = []
    parsed: list[tuple[int, PersonRecord]] = []
    by_name = {
        person.name.strip().lower(): person
        for person in existing_people
        if person.category == category_id
    }

    for line_number, raw_line in enumerate((text or "").splitlines(), start=1):
        content = raw_line.strip()
        if not content:
            continue

        parts = _split_person_line(content)
        name = to_title_case(parts[0])
        if not name:
            errors.append(f"Line {line_number}: name is required")
            continue

        phones: list[str] = []
        for raw_phone in _field(parts, 1).split("/"):
            phone = clean_phone(raw_phone)
            if phone and phone not in phones:
                phones.append(phone)
        invalid = [phone for phone in phones if not is_valid_phone(phone)]
        if invalid:
            errors.append(
                f'Line {line_number}: "{name}" has invalid phone(s): '
                f"{', '.join(invalid)} (must be 10 digits)"
            )
            continue

        address = ", ".join(part for part in parts[2:] if part)
        existing = by_name.pop(name.lower(), None)
        record = PersonRecord(
            id=existing.id if existing else None,
            name=name,
            category=category_id,
            phones=phones,
            address=address,
            specialty=existing.specialty if existing else "",
            notes=existing.notes if existing else "",
            photo=existing.photo if existing else None,
        )
        parsed.append((line_number, record))

    owners: dict[str, tuple[int, PersonRecord]] = {}
    for line_number, person in parsed:
        for phone in person.phone_numbers:
            earlier = owners.get(phone)
            if earlier is None:
                owners[phone] = (line_number, person)
                continue
            if earlier[1].name.lower() != person.name.lower():
                errors.append(
                    f'Line {line_number}: "{person.name}" and "{earlier[1].name}" '
                    f"(line {earlier[0]}) both have phone number {phone}"
                )

    if errors:
        raise BulkImportError(errors)
    return [person for _, person in parsed]


def bulk_edit_people(
    category_texts: Mapping[str, str],
    people: Sequence[PersonRecord],
    categories: Sequence[ContactCategory] = (),
) -> list[PersonRecord]:
    """Replace the contacts of every edited category with its parsed text.

    Categories absent from `category_texts` keep their contacts untouched.
    A parsed contact may not take a phone number that belongs to a contact
    outside the edited categories. Raises BulkImportError with the errors
    of every category.
    """
    known = {category.id for category in categories}
    errors: dict[str, list[str]] = {}
    parsed_by_category: dict[str, list[PersonRecord]] = {}

    for category_id, text in category_texts.items():
        if known and category_id not in known:
            errors[category_id] = [f"Unknown category: {category_id}"]
            continue
        try:
            parsed_by_category[category_id] = text_to_people(text, category_id, people)
        except BulkImportError as exc:
            errors[category_id] = [f"{category_id}: {message}" for message in exc.errors]

    # Every contact of an edited category is replaced by that category's text.
    existing_not_in_batch = [person for person in people if person.category not in category_texts]

    for category_id, parsed in parsed_by_category.items():
        messages: list[str] = []
        for person in parsed:
            for phone in person.phone_numbers:
                owner = next(
                    (
                        existing
                        for existing in existing_not_in_batch
                        if phone in existing.phone_numbers and existing.id != person.id
                    ),
                    None,
                )
                if owner is not None:
                    messages.append(
                        f'"{person.name}" has phone number {phone} which is already '
                        f'assigned to "{owner.name}"'
                    )
        if messages:
            errors.setdefault(category_id, []).extend(messages)

    if errors:
        logger.info(
            "bulk_people_rejected | categories=%s | errors=%s",
            len(category_texts),
            sum(len(messages) for messages in errors.values()),
        )
        raise BulkImportError(errors)

    kept = [person for person in people if person.category not in category_texts]
    result = kept + [person for parsed in parsed_by_category.values() for person in parsed]
    logger.info(
        "bulk_people_saved | categories=%s | people=%s",
        len(category_texts),
        len(result),
    )
    return result
