"""
normalize.py - Text normalization shared by search, import and forms.

Core normalizers:
    normalize_item_name(text)  -> compact search key, unit-aware
    to_title_case(text)        -> display casing for names
    parse_number(value)        -> float with 0.0 fallback
    clean_phone(value)         -> phone with all whitespace removed

Design principles:
    - SAME normalization on BOTH sides (stored names and live queries)
    - Unit handling is table-driven from units.UNIT_DEFINITIONS
    - Invalid input degrades to neutral defaults, never raises
"""

from __future__ import annotations

import math
import re
from typing import Any

from logging_config import get_logger
from units import UNIT_DEFINITIONS

logger = get_logger(__name__)

# Symbol aliases that have no place in the conversion table.
SYMBOL_UNIT_ALIASES: dict[str, str] = {
    '"': "inch",
    "''": "inch",
    "'": "foot",
}

QUOTE_REPLACEMENTS: dict[str, str] = {
    "“": '"',
    "”": '"',
    "″": '"',
    "‘": "'",
    "’": "'",
    "′": "'",
}


def unit_tag(unit_name: str) -> str:
    """Token used in search keys for a unit, e.g. 'square foot' -> 'squarefoot'."""
    return unit_name.replace(" ", "")


def _build_search_aliases() -> dict[str, str]:
    aliases: dict[str, str] = {}
    for definition in UNIT_DEFINITIONS:
        tag = unit_tag(definition.name)
        for token in (definition.name, *definition.aliases):
            aliases[token.lower()] = tag
    aliases.update(SYMBOL_UNIT_ALIASES)
    return aliases


SEARCH_UNIT_ALIASES: dict[str, str] = _build_search_aliases()
_COMPACT_UNIT_ALIASES: dict[str, str] = {
    alias.replace(" ", ""): tag for alias, tag in SEARCH_UNIT_ALIASES.items()
}


def _alias_pattern(alias: str) -> str:
    pattern = r"\s*".join(re.escape(part) for part in alias.split())
    # Word aliases must end at a word boundary ("3 m" but not "3 mango").
    if alias[-1].isalnum():
        pattern += r"(?![a-z0-9])"
    return pattern


# Longest alias first so "mm" wins over "m" and "sq ft" over "ft".
_UNIT_ALTERNATION = "|".join(
    _alias_pattern(alias) for alias in sorted(SEARCH_UNIT_ALIASES, key=len, reverse=True)
)
_NUMBER_UNIT_RE = re.compile(
    r"(\d+(?:\.\d+)?(?:\s*/\s*\d+(?:\.\d+)?)?)\s*(" + _UNIT_ALTERNATION + r")"
)
_NUMERIC_JOIN_RE = re.compile(r"(?<=\d)\s*([./])\s*(?=\d)")
_PUNCTUATION_RE = re.compile(r"(?<!\d)[./]|[./](?!\d)|[^\w./]")
_WHITESPACE_RE = re.compile(r"\s+")


def _replace_number_unit(match: re.Match) -> str:
    number = _WHITESPACE_RE.sub("", match.group(1))
    alias = _WHITESPACE_RE.sub(" ", match.group(2))
    tag = SEARCH_UNIT_ALIASES.get(alias) or _COMPACT_UNIT_ALIASES.get(alias.replace(" ", ""))
    if tag is None:
        return match.group(0)
    return f"{number}{tag}unit"


def normalize_item_name(text: Any) -> str:
    """Reduce an item or category name (or a search query) to a search key.

    Examples:
        '1/2" Elbow'     -> '1/2inchunitelbow'
        '1/2 inch elbow' -> '1/2inchunitelbow'
        'PVC Pipe 3 ft'  -> 'pvcpipe3footunit'
    """
    if text is None:
        return ""
    if not isinstance(text, str):
        text = str(text)

    value = text.lower()
    for raw, replacement in QUOTE_REPLACEMENTS.items():
        value = value.replace(raw, replacement)

    value = _NUMBER_UNIT_RE.sub(_replace_number_unit, value)
    value = _NUMERIC_JOIN_RE.sub(r"\1", value)
    value = _PUNCTUATION_RE.sub("", value)
    return value


_TITLE_WORD_RE = re.compile(r"\w\S*")


def to_title_case(text: Any) -> str:
    """Upper-case the first letter of each word and lower-case the rest."""
    if text is None:
        return ""
    value = str(text)
    return _TITLE_WORD_RE.sub(lambda m: m.group(0)[0].upper() + m.group(0)[1:].lower(), value)


_LEADING_NUMBER_RE = re.compile(r"^[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


def parse_number(value: Any) -> float:
    """Parse the leading number of a value, falling back to 0.0.

    '12.5 kg' parses as 12.5, 'abc' and None as 0.0.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else 0.0

    text = str(value).strip().replace(",", "")
    match = _LEADING_NUMBER_RE.match(text)
    if not match:
        if text:
            logger.debug("parse_number_fallback | raw=%r | fallback=0.0", value)
        return 0.0

    number = float(match.group(0))
    return number if math.isfinite(number) else 0.0


def clean_phone(value: Any) -> str:
    """Remove every whitespace character from a phone value."""
    if value is None:
        return ""
    return "".join(str(value).split())
