"""
explain.py - Human-readable formatting for prices, profits and duplicates.

This module turns structured results into:
- display strings for price rows (sell, cost or profit view)
- explanations of why two contacts look like duplicates
- plain-text reports for the CLI
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from logging_config import get_logger
from models import DuplicateGroup, DuplicateScore, MatchType, PriceListStats, ProfitResult
from normalize import parse_number
from price_tree import DEFAULT_UNIT, item_price
from units import calculate_profit

logger = get_logger(__name__)

CURRENCY = "₹"
NOT_COMPARABLE = "N/A (different units)"
NO_SIMILARITY = "No significant similarities found"

CONFIDENCE_TEXT: dict[MatchType, str] = {
    MatchType.EXACT: "Almost certainly the same contact",
    MatchType.HIGH: "Very likely a duplicate",
    MatchType.MEDIUM: "Possibly a duplicate",
    MatchType.LOW: "Weak match",
}

OUTPUT_WIDTH = 56
SEPARATOR = "=" * OUTPUT_WIDTH
PRICE_VIEWS = ("sell", "cost", "profit")


def format_number(value: Any, decimals: int = 2) -> str:
    """Fixed decimals with trailing zeros trimmed: 12.50 -> '12.5', 50.00 -> '50'."""
    text = f"{parse_number(value):.{decimals}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return "0" if text in ("-0", "") else text


def format_price(value: Any, unit: str | None = None) -> str:
    text = f"{CURRENCY}{format_number(value)}"
    return f"{text}/{unit}" if unit else text


def format_profit(result: ProfitResult) -> str:
    if not result.comparable or result.profit is None:
        return NOT_COMPARABLE
    percent = result.profit_percent or 0.0
    return f"{CURRENCY}{format_number(result.profit)} ({percent:.1f}%)"


def format_item_price(node: Mapping[str, Any], view: str = "sell") -> str:
    """Display value of an item row for the chosen price view."""
    if view not in PRICE_VIEWS:
        raise ValueError(f"view must be one of {PRICE_VIEWS}, got {view!r}")

    sell_unit = str(node.get("sellUnit") or DEFAULT_UNIT)
    cost_unit = str(node.get("costUnit") or sell_unit)
    if view == "sell":
        return format_price(item_price(node), sell_unit)
    if view == "cost":
        return format_price(node.get("cost"), cost_unit)
    return format_profit(
        calculate_profit(item_price(node), sell_unit, parse_number(node.get("cost")), cost_unit)
    )


def get_duplicate_explanation(score: DuplicateScore) -> str:
    if not score.reasons:
        return NO_SIMILARITY
    confidence = CONFIDENCE_TEXT.get(score.match_type, "Weak match")
    lines = [f"{confidence} ({score.percent}% match)"]
    lines.extend(f"• {reason.message}" for reason in score.reasons)
    return "\n".join(lines)


def format_stats(stats: PriceListStats) -> str:
    lines = [
        "",
        SEPARATOR,
        "  Price List Summary",
        SEPARATOR,
        "",
        f"  Categories:        {stats.category_count}",
        f"  Items:             {stats.item_count}",
        f"  Total sell value:  {format_price(stats.total_sell_value)}",
        f"  Total cost value:  {format_price(stats.total_cost_value)}",
        f"  Avg margin:        {stats.avg_profit_margin:.2f}%",
    ]
    if stats.most_used_unit:
        lines.append(f"  Most used unit:    {stats.most_used_unit}")
    if stats.unit_usage:
        lines.append("")
        lines.append("  Unit usage:")
        for unit, count in stats.unit_usage.items():
            lines.append(f"    • {unit}: {count}")
    lines.append("")
    lines.append(SEPARATOR)
    lines.append("")
    return "\n".join(lines)


def format_duplicate_groups(groups: Sequence[DuplicateGroup]) -> str:
    if not groups:
        return "No duplicate contacts found."

    lines: list[str] = [""]
    for group in groups:
        lines.append(SEPARATOR)
        header = f"  {group.id}  [{group.match_type.value}]"
        if group.shared_phone:
            header += f"  shared phone {group.shared_phone}"
        lines.append(header)
        lines.append(SEPARATOR)
        averages = {score.contact_id: score.avg_score for score in group.scores}
        for contact in group.contacts:
            phones = ", ".join(contact.phone_numbers) or "no phone"
            lines.append(
                f"    • {contact.name} ({phones})  avg {averages.get(contact.id, 0.0):.0%}"
            )
        lines.append("")
    logger.debug("format_duplicate_groups | groups=%s", len(groups))
    return "\n".join(lines)
