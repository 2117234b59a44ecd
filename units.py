"""
units.py - Unit table and price-per-unit conversion.

One logical table drives everything unit-related:

    UNIT_DEFINITIONS          -> name + aliases + category + factor per unit
    convert(price, from, to)  -> price per `to` unit, or None
    calculate_profit(...)     -> ProfitResult (comparable=False when units differ)
    canonical_unit(unit)      -> primary display name for an alias

Every category has a reference unit with factor 1:
    weight -> gram, length -> meter, volume -> liter,
    area -> square meter, time -> hour, count -> piece

Conversion direction:
    Prices are per unit, so converting a price multiplies by
    (to_factor / from_factor). A price per foot becomes a price per meter
    by multiplying with 1 / 0.3048, since one meter holds more feet.

Packaging units (box, bag, set, ...) sit in the count category for display
and search but have no fixed size, so they only convert to themselves.
"""

from __future__ import annotations

import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from logging_config import get_logger
from models import ProfitResult

logger = get_logger(__name__)


class UnitDefinition(BaseModel):
    """One row of the unit table."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(description="Primary display name, e.g. 'square foot'")
    category: str = Field(description="Dimension: weight, length, volume, area, time or count")
    factor: Optional[float] = Field(
        default=None,
        description="Size in the category's reference unit. None means no fixed size.",
    )
    aliases: tuple[str, ...] = Field(default=(), description="Lower-case textual aliases")


def _unit(name: str, category: str, factor: Optional[float], *aliases: str) -> UnitDefinition:
    return UnitDefinition(name=name, category=category, factor=factor, aliases=aliases)


UNIT_CATEGORIES = ("weight", "length", "volume", "area", "time", "count")

REFERENCE_UNITS: dict[str, str] = {
    "weight": "gram",
    "length": "meter",
    "volume": "liter",
    "area": "square meter",
    "time": "hour",
    "count": "piece",
}

UNIT_DEFINITIONS: tuple[UnitDefinition, ...] = (
    # Weight (gram)
    _unit("milligram", "weight", 0.001, "mg", "mgs", "milligrams"),
    _unit("gram", "weight", 1.0, "g", "gm", "gms", "grams", "gram"),
    _unit("kilogram", "weight", 1000.0, "kg", "kgs", "kilo", "kilos", "kilograms"),
    _unit("quintal", "weight", 100000.0, "qtl", "quintals"),
    _unit("ton", "weight", 1000000.0, "tons", "tonne", "tonnes", "t"),
    _unit("pound", "weight", 453.592, "lb", "lbs", "pounds"),
    _unit("ounce", "weight", 28.3495, "oz", "ounces"),
    # Length (meter)
    _unit("millimeter", "length", 0.001, "mm", "millimeters", "millimetre", "millimetres"),
    _unit("centimeter", "length", 0.01, "cm", "centimeters", "centimetre", "centimetres"),
    _unit("meter", "length", 1.0, "m", "mtr", "mtrs", "meters", "metre", "metres"),
    _unit("kilometer", "length", 1000.0, "km", "kms", "kilometers", "kilometre", "kilometres"),
    _unit("inch", "length", 0.0254, "in", "inches", "inchs"),
    _unit("foot", "length", 0.3048, "ft", "feet", "foots"),
    _unit("yard", "length", 0.9144, "yd", "yds", "yards"),
    _unit("mile", "length", 1609.344, "mi", "miles"),
    # Volume (liter)
    _unit("milliliter", "volume", 0.001, "ml", "mls", "milliliters", "millilitre", "millilitres"),
    _unit("liter", "volume", 1.0, "l", "ltr", "ltrs", "liters", "litre", "litres"),
    _unit("gallon", "volume", 3.78541, "gal", "gals", "gallons"),
    _unit("cubic meter", "volume", 1000.0, "m3", "cbm", "cu m", "cubic meters", "cubic metre"),
    # Area (square meter)
    _unit(
        "square meter", "area", 1.0,
        "sq m", "sqm", "sq mtr", "m2", "m²", "square meters", "square metre", "square metres",
    ),
    _unit("square foot", "area", 0.09290304, "sq ft", "sqft", "sq feet", "ft2", "ft²", "square feet"),
    _unit("square yard", "area", 0.83612736, "sq yd", "sqyd", "yd2", "yd²", "square yards"),
    _unit("square inch", "area", 0.00064516, "sq in", "sqin", "in2", "square inches"),
    _unit("acre", "area", 4046.8564224, "acres", "ac"),
    # Time (hour)
    _unit("second", "time", 1.0 / 3600.0, "sec", "secs", "s", "seconds"),
    _unit("minute", "time", 1.0 / 60.0, "min", "mins", "minutes"),
    _unit("hour", "time", 1.0, "hr", "hrs", "h", "hours"),
    _unit("day", "time", 24.0, "days", "dy"),
    _unit("week", "time", 168.0, "wk", "wks", "weeks"),
    # Count (piece)
    _unit("piece", "count", 1.0, "pc", "pcs", "pieces", "nos", "no", "unit", "units"),
    _unit("pair", "count", 2.0, "pr", "prs", "pairs"),
    _unit("dozen", "count", 12.0, "doz", "dz", "dozens"),
    _unit("gross", "count", 144.0, "grs"),
    # Packaging units: counted, but with no fixed size.
    _unit("box", "count", None, "bx", "boxes"),
    _unit("set", "count", None, "sets"),
    _unit("bag", "count", None, "bags"),
    _unit("pack", "count", None, "pk", "pkt", "packs", "packet", "packets"),
    _unit("carton", "count", None, "ctn", "cartons"),
    _unit("bundle", "count", None, "bdl", "bundles"),
    _unit("roll", "count", None, "rl", "rolls"),
    _unit("sheet", "count", None, "sht", "sheets"),
    _unit("bottle", "count", None, "btl", "bottles"),
    _unit("can", "count", None, "cans"),
)

DEFAULT_ACTIVE_UNITS: tuple[str, ...] = ("piece", "meter", "kilogram", "liter", "box", "set", "bag")

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_unit(unit: object) -> str:
    """Lower-case a unit string and collapse its whitespace."""
    if unit is None:
        return ""
    return _WHITESPACE_RE.sub(" ", str(unit).strip().lower())


def _build_lookup() -> dict[str, UnitDefinition]:
    lookup: dict[str, UnitDefinition] = {}
    for definition in UNIT_DEFINITIONS:
        for token in (definition.name, *definition.aliases):
            key = normalize_unit(token)
            if key in lookup and lookup[key] is not definition:
                raise ValueError(f"Unit alias {key!r} is defined twice")
            lookup[key] = definition
    return lookup


UNIT_LOOKUP: dict[str, UnitDefinition] = _build_lookup()


def lookup_unit(unit: object) -> Optional[UnitDefinition]:
    """Resolve a unit name or alias to its table row."""
    return UNIT_LOOKUP.get(normalize_unit(unit))


def canonical_unit(unit: object) -> str:
    """Return the primary unit name for an alias, or the input when unknown."""
    definition = lookup_unit(unit)
    if definition is None:
        return "" if unit is None else str(unit).strip()
    return definition.name


def unit_category(unit: object) -> Optional[str]:
    definition = lookup_unit(unit)
    return definition.category if definition else None


def units_in_category(category: str) -> list[UnitDefinition]:
    wanted = str(category or "").strip().lower()
    return [definition for definition in UNIT_DEFINITIONS if definition.category == wanted]


def all_unit_names() -> list[str]:
    return [definition.name for definition in UNIT_DEFINITIONS]


def unit_matches_query(unit: object, query: str) -> bool:
    """True when the query is contained in the unit's name or one of its aliases."""
    needle = normalize_unit(query)
    if not needle:
        return True

    definition = unit if isinstance(unit, UnitDefinition) else lookup_unit(unit)
    if definition is None:
        return needle in normalize_unit(unit)
    return any(needle in normalize_unit(token) for token in (definition.name, *definition.aliases))


def convert(price_per_unit: float, from_unit: object, to_unit: object) -> Optional[float]:
    """Convert a price per `from_unit` into a price per `to_unit`.

    Returns None when the units cannot be compared: different categories,
    an unknown unit, or a packaging unit without a fixed size.
    """
    source = normalize_unit(from_unit)
    target = normalize_unit(to_unit)
    if source == target:
        return price_per_unit

    from_def = UNIT_LOOKUP.get(source)
    to_def = UNIT_LOOKUP.get(target)
    if from_def is None or to_def is None:
        logger.debug("unit_convert_unknown | from=%r | to=%r", from_unit, to_unit)
        return None
    if from_def is to_def:
        return price_per_unit
    if from_def.category != to_def.category:
        logger.debug(
            "unit_convert_cross_category | from=%s:%s | to=%s:%s",
            from_def.name,
            from_def.category,
            to_def.name,
            to_def.category,
        )
        return None
    if from_def.factor is None or to_def.factor is None:
        return None

    return price_per_unit * (to_def.factor / from_def.factor)


def calculate_profit(sell: float, sell_unit: object, cost: float, cost_unit: object) -> ProfitResult:
    """Profit of selling per `sell_unit` something bought per `cost_unit`."""
    converted = convert(cost, cost_unit, sell_unit)
    if converted is None:
        return ProfitResult(
            sell=sell,
            cost=cost,
            sell_unit=str(sell_unit or ""),
            cost_unit=str(cost_unit or ""),
            comparable=False,
        )

    profit = sell - converted
    percent = (profit / converted * 100.0) if converted > 0 else 0.0
    return ProfitResult(
        sell=sell,
        cost=cost,
        sell_unit=str(sell_unit or ""),
        cost_unit=str(cost_unit or ""),
        converted_cost=converted,
        profit=profit,
        profit_percent=percent,
        comparable=True,
    )
