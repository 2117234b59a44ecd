"""
vcf.py - vCard (.vcf) contact import.

parse_vcf(text)                       -> raw contact dicts, one per card
vcf_contacts_to_people(raw, category) -> PersonRecord list
import_vcf(text, category)            -> both steps; raises when nothing usable

Only 10-digit phone numbers are kept. International prefixes (+91, +1)
are stripped; longer numbers keep their last 10 digits.
"""

from __future__ import annotations

import re
from typing import Any

from logging_config import get_logger
from models import PersonRecord

logger = get_logger(__name__)

_CARD_SPLIT_RE = re.compile(r"BEGIN:VCARD", re.IGNORECASE)
_CARD_END_RE = re.compile(r"END:VCARD", re.IGNORECASE)
_NON_DIGIT_RE = re.compile(r"\D")
_WHITESPACE_RE = re.compile(r"\s")


class VCFParseError(ValueError):
    """The file holds no usable vCards."""


def decode_value(value: str) -> str:
    if not value:
        return ""
    return (
        value.replace("\\n", "\n")
        .replace("\\N", "\n")
        .replace("\\,", ",")
        .replace("\\;", ";")
        .replace("\\\\", "\\")
    )


def clean_vcf_phone(raw: str) -> str:
    """Reduce a vCard TEL value to 10 digits, or '' when that is impossible."""
    digits = _NON_DIGIT_RE.sub("", raw or "")
    if len(digits) > 10:
        if digits.startswith("91") and len(digits) == 12:
            return digits[2:]
        if digits.startswith("1") and len(digits) == 11:
            return digits[1:]
        return digits[-10:]
    return digits if len(digits) == 10 else ""


def _unfold(card: str) -> list[str]:
    """Join continuation lines (leading space or tab) onto their property."""
    lines: list[str] = []
    for line in re.split(r"\r?\n", card):
        if not line:
            continue
        if line[0] in " \t" and lines:
            lines[-1] += line.strip()
        else:
            lines.append(line)
    return lines


def _apply_property(contact: dict[str, Any], name: str, params: list[str], value: str) -> None:
    if name == "FN":
        contact["name"] = decode_value(value)
    elif name == "N":
        if not contact["name"]:
            parts = [decode_value(part) for part in value.split(";")] + [""] * 5
            family, given, middle, prefix, suffix = parts[:5]
            contact["name"] = " ".join(part for part in (prefix, given, middle, family, suffix) if part).strip()
    elif name == "TEL":
        phone = clean_vcf_phone(decode_value(value))
        if not phone or phone in contact["phones"]:
            return
        preferred = any("PREF" in param.upper() for param in params)
        if preferred:
            contact["phones"].insert(0, phone)
        else:
            contact["phones"].append(phone)
    elif name == "ADR":
        parts = [decode_value(part) for part in value.split(";")]
        parts = [part for part in parts if part]
        if parts:
            contact["address"] = ", ".join(parts)
    elif name == "TITLE":
        contact["specialty"] = decode_value(value)
    elif name == "ORG":
        if not contact["specialty"]:
            contact["specialty"] = decode_value(value).replace(";", " ").strip()
    elif name == "NOTE":
        contact["notes"] = decode_value(value)
    elif name == "PHOTO":
        _apply_photo(contact, params, value)


def _apply_photo(contact: dict[str, Any], params: list[str], value: str) -> None:
    if value.startswith("data:"):
        contact["photo"] = value
        return

    upper = [param.upper() for param in params]
    if not any("BASE64" in param or param == "ENCODING=B" for param in upper):
        return

    mime = "image/jpeg"
    if any("PNG" in param for param in upper):
        mime = "image/png"
    elif any("GIF" in param for param in upper):
        mime = "image/gif"
    contact["photo"] = f"data:{mime};base64,{_WHITESPACE_RE.sub('', value)}"


def _parse_card(card: str) -> dict[str, Any]:
    contact: dict[str, Any] = {
        "name": "",
        "phones": [],
        "address": "",
        "specialty": "",
        "notes": "",
        "photo": None,
    }
    for line in _unfold(card):
        if _CARD_END_RE.match(line):
            continue
        head, sep, value = line.partition(":")
        if not sep:
            continue
        value = value.strip()
        if not value:
            continue
        name, *params = head.split(";")
        # Grouped properties look like "item1.TEL".
        name = name.rsplit(".", 1)[-1].strip().upper()
        _apply_property(contact, name, params, value)
    return contact


def parse_vcf(text: str) -> list[dict[str, Any]]:
    """Parse every complete vCard in `text`; cards without a name are dropped."""
    if not text or not text.strip():
        raise VCFParseError("VCF file is empty")

    contacts: list[dict[str, Any]] = []
    for card in _CARD_SPLIT_RE.split(text):
        if not card.strip() or not _CARD_END_RE.search(card):
            continue
        contact = _parse_card(card)
        if contact["name"].strip():
            contacts.append(contact)
        else:
            logger.debug("vcf_card_skipped | reason='no name'")

    logger.info("vcf_parsed | contacts=%s", len(contacts))
    return contacts


def vcf_contacts_to_people(contacts: list[dict[str, Any]], category_id: str) -> list[PersonRecord]:
    people: list[PersonRecord] = []
    for contact in contacts:
        name = str(contact.get("name") or "").strip()
        if not name:
            continue
        people.append(
            PersonRecord(
                name=name,
                category=category_id,
                phones=contact.get("phones") or [""],
                address=str(contact.get("address") or "").strip(),
                specialty=str(contact.get("specialty") or "").strip(),
                notes=str(contact.get("notes") or "").strip(),
                photo=contact.get("photo") or None,
            )
        )
    return people


def import_vcf(text: str, category_id: str) -> list[PersonRecord]:
    contacts = parse_vcf(text)
    if not contacts:
        raise VCFParseError("No valid contacts found in VCF file")
    return vcf_contacts_to_people(contacts, category_id)
