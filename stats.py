"""
stats.py - Aggregate counters over price trees and contact lists.

Price-tree statistics flatten items into a pandas DataFrame (items_frame)
and aggregate from there; structural counters walk the tree directly.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional, Sequence

import pandas as pd

from logging_config import get_logger
from models import ContactCategory, PersonRecord, PriceListStats
from normalize import parse_number
from price_tree import DEFAULT_UNIT, is_category, is_item, item_price, iter_children, walk

logger = get_logger(__name__)

ITEM_COLUMNS = ["path", "name", "depth", "retail_sell", "bulk_sell", "cost", "sell_unit", "cost_unit"]
OTHER_CATEGORY_ID = "other"


def items_frame(tree: Mapping[str, Any]) -> pd.DataFrame:
    """One row per item node."""
    rows = []
    for path, name, node, depth in walk(tree):
        if not is_item(node):
            continue
        retail = item_price(node)
        bulk = node.get("bulkSell")
        rows.append(
            {
                "path": path,
                "name": name,
                "depth": depth,
                "retail_sell": retail,
                "bulk_sell": retail if bulk is None else parse_number(bulk),
                "cost": parse_number(node.get("cost")),
                "sell_unit": str(node.get("sellUnit") or DEFAULT_UNIT),
                "cost_unit": str(node.get("costUnit") or node.get("sellUnit") or DEFAULT_UNIT),
            }
        )
    return pd.DataFrame(rows, columns=ITEM_COLUMNS)


def count_items_and_categories(tree: Mapping[str, Any]) -> tuple[int, int]:
    """(item count, category count) over the whole tree."""
    items = 0
    categories = 0
    for _path, _name, node, _depth in walk(tree):
        if is_category(node):
            categories += 1
        elif is_item(node):
            items += 1
    return items, categories


def count_items_in_category(node: Mapping[str, Any]) -> int:
    """Items anywhere below a category node."""
    if not is_category(node):
        return 0
    return sum(1 for _path, _name, child, _depth in walk(node) if is_item(child))


def get_category_depth(tree: Mapping[str, Any]) -> int:
    """Deepest category nesting; 0 for a tree without categories."""
    depth = 0
    for _path, _name, node, level in walk(tree):
        if is_category(node):
            depth = max(depth, level + 1)
    return depth


def get_used_units(tree: Mapping[str, Any]) -> list[str]:
    """Sorted distinct units used as sell or cost unit."""
    frame = items_frame(tree)
    if frame.empty:
        return []
    units = set(frame["sell_unit"]).union(frame["cost_unit"])
    return sorted(unit for unit in units if unit)


def get_price_list_stats(tree: Mapping[str, Any]) -> PriceListStats:
    """Totals over every item.

    The margin is aggregate, (total sell - total cost) / total cost, and
    unit usage counts each item's sell unit once.
    """
    frame = items_frame(tree)
    item_count, category_count = count_items_and_categories(tree)
    if frame.empty:
        return PriceListStats(item_count=item_count, category_count=category_count)

    total_sell = float(frame["retail_sell"].sum())
    total_cost = float(frame["cost"].sum())
    avg_margin = round((total_sell - total_cost) / total_cost * 100, 2) if total_cost > 0 else 0.0

    usage = frame["sell_unit"].value_counts(sort=True)
    unit_usage = {str(unit): int(count) for unit, count in usage.items()}
    most_used: Optional[str] = next(iter(unit_usage), None)

    return PriceListStats(
        item_count=item_count,
        category_count=category_count,
        total_sell_value=round(total_sell, 2),
        total_cost_value=round(total_cost, 2),
        avg_profit_margin=avg_margin,
        unit_usage=unit_usage,
        most_used_unit=most_used,
    )


def find_items(tree: Mapping[str, Any], query: str) -> list[dict[str, Any]]:
    """Items whose name contains `query`, case-insensitive, in display order."""
    needle = str(query or "").strip().lower()
    if not needle:
        return []
    return [
        {"path": path, "name": name, "item": node}
        for path, name, node, _depth in walk(tree)
        if is_item(node) and needle in name.lower()
    ]


def get_items_by_price(tree: Mapping[str, Any], limit: int = 10, order: str = "highest") -> list[dict[str, Any]]:
    """Top items by retail price; order is 'highest' or 'lowest'."""
    if order not in ("highest", "lowest"):
        raise ValueError(f"order must be 'highest' or 'lowest', got {order!r}")

    frame = items_frame(tree)
    if frame.empty or limit <= 0:
        return []

    ranked = frame.sort_values(
        "retail_sell", ascending=(order == "lowest"), kind="stable"
    ).head(limit)
    return [
        {"path": row.path, "name": row.name, "retail_sell": float(row.retail_sell), "sell_unit": row.sell_unit}
        for row in ranked.itertuples(index=False)
    ]


def child_counts(node_or_tree: Mapping[str, Any]) -> dict[str, int]:
    """Item count per direct child category."""
    return {
        name: count_items_in_category(child)
        for name, child in iter_children(node_or_tree)
        if is_category(child)
    }


def sort_categories(categories: Sequence[ContactCategory]) -> list[ContactCategory]:
    """Alphabetical by label, case-insensitive; 'other' always last."""
    return sorted(
        categories,
        key=lambda category: (category.id == OTHER_CATEGORY_ID, category.label.casefold()),
    )


def get_category_counts(
    people: Sequence[PersonRecord],
    categories: Sequence[ContactCategory],
) -> dict[str, int]:
    """People per known category id; every category starts at 0, unknown ids are ignored."""
    counts = {category.id: 0 for category in categories}
    for person in people:
        category_id = person.category or OTHER_CATEGORY_ID
        if category_id in counts:
            counts[category_id] += 1
    return counts
