"""
price_tree.py - Nested price-list tree engine.

A price tree is a plain dict mapping names to nodes:

    {"Taps": {"type": "category",
              "children": {"Angle Valve": {"type": "item",
                                           "retailSell": 50, "bulkSell": 45,
                                           "cost": 40,
                                           "sellUnit": "piece",
                                           "costUnit": "piece"}},
              "__orderKeys": ["Angle Valve"]}}

Nodes are addressed by dot paths ("Taps.Angle Valve"). Every operation
deep-copies its input and returns a new tree; the caller's tree is never
touched.

`__orderKeys`, when present on a category, lists exactly the keys of its
`children` in display order. Every mutation keeps it in sync, and
deep_add_order_keys() attaches it everywhere before the tree is saved.
"""

from __future__ import annotations

import copy
import functools
from typing import Any, Iterator, Mapping, Optional

from logging_config import get_logger
from models import SortType
from normalize import normalize_item_name, parse_number

logger = get_logger(__name__)

ORDER_KEYS = "__orderKeys"
CATEGORY = "category"
ITEM = "item"
DEFAULT_UNIT = "piece"

PRICING_FIELDS = ("retailSell", "bulkSell", "cost", "sellUnit", "costUnit")


class PriceTreeError(ValueError):
    """A path that cannot be resolved, or a rename onto an existing sibling."""


def is_category(node: Any) -> bool:
    return isinstance(node, dict) and node.get("type") == CATEGORY


def is_item(node: Any) -> bool:
    return isinstance(node, dict) and node.get("type") == ITEM


def item_price(node: Mapping[str, Any]) -> float:
    """Retail sell price, reading the legacy `sell` field when needed."""
    if node.get("retailSell") is not None:
        return parse_number(node.get("retailSell"))
    return parse_number(node.get("sell"))


def split_path(path: Optional[str]) -> list[str]:
    if not path:
        return []
    return str(path).split(".")


def join_path(parent_path: Optional[str], name: str) -> str:
    return f"{parent_path}.{name}" if parent_path else name


def ordered_keys(children: Mapping[str, Any], order_keys: Any = None) -> list[str]:
    """Child keys in display order.

    Keys listed in `order_keys` come first; keys missing from it follow in
    natural order, and stale entries are ignored.
    """
    keys = [key for key in children if key != ORDER_KEYS]
    if not isinstance(order_keys, list):
        return keys

    present = set(keys)
    seen: set[str] = set()
    result: list[str] = []
    for key in order_keys:
        if key in present and key not in seen:
            result.append(key)
            seen.add(key)
    result.extend(key for key in keys if key not in seen)
    return result


def iter_children(node_or_mapping: Mapping[str, Any]) -> Iterator[tuple[str, dict[str, Any]]]:
    """Yield (name, node) pairs of a category node or a root mapping, in display order."""
    if is_category(node_or_mapping):
        children = node_or_mapping.get("children") or {}
        order = node_or_mapping.get(ORDER_KEYS)
    else:
        children = node_or_mapping
        order = None
    for key in ordered_keys(children, order):
        yield key, children[key]


def get_at_path(tree: Mapping[str, Any], path: Optional[str]) -> Optional[Any]:
    """Resolve a dot path. Returns the tree for an empty path, None when missing."""
    if not path:
        return tree

    current: Any = tree
    for part in split_path(path):
        if not isinstance(current, dict):
            return None
        children = current.get("children")
        if is_category(current) and isinstance(children, dict) and part in children:
            current = children[part]
        elif part in current and part != ORDER_KEYS:
            current = current[part]
        else:
            return None
    return current


def _resolve_container(tree: dict[str, Any], parent_path: Optional[str]) -> tuple[dict[str, Any], Optional[dict[str, Any]]]:
    """Return (children mapping, owning category or None for the root)."""
    if not parent_path:
        return tree, None

    parent = get_at_path(tree, parent_path)
    if not is_category(parent):
        raise PriceTreeError(f"No category at path: {parent_path!r}")
    if not isinstance(parent.get("children"), dict):
        parent["children"] = {}
    return parent["children"], parent


def _new_item(form_data: Mapping[str, Any]) -> dict[str, Any]:
    retail = form_data.get("retailSell")
    if retail is None or (isinstance(retail, str) and not retail.strip()):
        retail = form_data.get("sell")
    retail_sell = parse_number(retail)

    bulk = form_data.get("bulkSell")
    bulk_missing = bulk is None or (isinstance(bulk, str) and not bulk.strip())
    bulk_sell = retail_sell if bulk_missing else parse_number(bulk)

    sell_unit = str(form_data.get("sellUnit") or "").strip() or DEFAULT_UNIT
    cost_unit = str(form_data.get("costUnit") or "").strip() or sell_unit

    node: dict[str, Any] = {
        "type": ITEM,
        "retailSell": retail_sell,
        "bulkSell": bulk_sell,
        "cost": parse_number(form_data.get("cost")),
        "sellUnit": sell_unit,
        "costUnit": cost_unit,
    }
    if form_data.get("notes"):
        node["notes"] = str(form_data["notes"])
    return node


def _new_category(form_data: Mapping[str, Any]) -> dict[str, Any]:
    node: dict[str, Any] = {"type": CATEGORY, "children": {}, ORDER_KEYS: []}
    if form_data.get("notes"):
        node["notes"] = str(form_data["notes"])
    return node


def add_item(tree: Mapping[str, Any], parent_path: Optional[str], kind: str, form_data: Mapping[str, Any]) -> dict[str, Any]:
    """Insert a new category or item under `parent_path` (root when empty).

    Adding under an existing name replaces that node in place.
    """
    if kind not in (CATEGORY, ITEM):
        raise PriceTreeError(f"Unknown node kind: {kind!r}")

    result = copy.deepcopy(dict(tree))
    container, parent = _resolve_container(result, parent_path)
    name = str(form_data.get("name", ""))

    container[name] = _new_category(form_data) if kind == CATEGORY else _new_item(form_data)
    if parent is not None and isinstance(parent.get(ORDER_KEYS), list):
        if name not in parent[ORDER_KEYS]:
            parent[ORDER_KEYS].append(name)

    logger.debug("tree_add | parent=%r | kind=%s | name=%r", parent_path or "", kind, name)
    return result


def _replace_key(container: dict[str, Any], old_key: str, new_key: str, value: Any) -> None:
    """Swap `old_key` for `new_key` without moving it."""
    entries = list(container.items())
    container.clear()
    for key, existing in entries:
        if key == old_key:
            container[new_key] = value
        else:
            container[key] = existing


def _rename_order_key(parent: Optional[dict[str, Any]], old_key: str, new_key: str) -> None:
    if parent is None or not isinstance(parent.get(ORDER_KEYS), list):
        return
    parent[ORDER_KEYS] = [new_key if key == old_key else key for key in parent[ORDER_KEYS]]


def _split_leaf(path: str) -> tuple[str, str]:
    parts = split_path(path)
    if not parts:
        raise PriceTreeError("Path cannot be empty")
    return ".".join(parts[:-1]), parts[-1]


def edit_item(tree: Mapping[str, Any], path: str, form_data: Mapping[str, Any]) -> dict[str, Any]:
    """Update an item's pricing and optionally rename it, keeping its position."""
    result = copy.deepcopy(dict(tree))
    parent_path, old_name = _split_leaf(path)
    container, parent = _resolve_container(result, parent_path)
    if old_name not in container:
        raise PriceTreeError(f"No node at path: {path!r}")

    new_name = str(form_data.get("name") or old_name)
    if new_name != old_name and new_name in container:
        raise PriceTreeError(f"A sibling named {new_name!r} already exists")

    old_node = container[old_name]
    if is_category(old_node):
        updated = dict(old_node)
    else:
        updated = {**old_node, **_new_item(form_data)}
        updated.pop("sell", None)
    if is_item(updated) and "notes" in form_data:
        notes = str(form_data.get("notes") or "")
        if notes:
            updated["notes"] = notes
        else:
            updated.pop("notes", None)

    _replace_key(container, old_name, new_name, updated)
    _rename_order_key(parent, old_name, new_name)

    logger.debug("tree_edit | path=%r | new_name=%r", path, new_name)
    return result


def edit_category(tree: Mapping[str, Any], path: str, new_name: str, notes: Optional[str] = None) -> dict[str, Any]:
    """Rename a category and set (or clear, with '') its notes. Children are kept."""
    result = copy.deepcopy(dict(tree))
    parent_path, old_name = _split_leaf(path)
    container, parent = _resolve_container(result, parent_path)
    node = container.get(old_name)
    if not is_category(node):
        raise PriceTreeError(f"No category at path: {path!r}")

    new_name = str(new_name or old_name)
    if new_name != old_name and new_name in container:
        raise PriceTreeError(f"A sibling named {new_name!r} already exists")

    if notes is not None:
        if notes:
            node["notes"] = notes
        else:
            node.pop("notes", None)

    _replace_key(container, old_name, new_name, node)
    _rename_order_key(parent, old_name, new_name)
    return result


def delete_item(tree: Mapping[str, Any], path: str) -> dict[str, Any]:
    """Remove the node at `path`; a category takes its whole subtree with it."""
    result = copy.deepcopy(dict(tree))
    parent_path, name = _split_leaf(path)
    container, parent = _resolve_container(result, parent_path)
    if name not in container:
        logger.warning("tree_delete_missing | path=%r | action='no-op'", path)
        return result

    del container[name]
    if parent is not None and isinstance(parent.get(ORDER_KEYS), list):
        parent[ORDER_KEYS] = [key for key in parent[ORDER_KEYS] if key != name]
    return result


def _compare_names(a: str, b: str) -> int:
    left, right = a.casefold(), b.casefold()
    if left != right:
        return -1 if left < right else 1
    if a != b:
        return -1 if a < b else 1
    return 0


def _entry_comparator(sort_type: SortType):
    def compare(a: tuple[str, Any], b: tuple[str, Any]) -> int:
        name_a, node_a = a
        name_b, node_b = b

        a_is_category = is_category(node_a)
        b_is_category = is_category(node_b)
        if a_is_category and not b_is_category:
            return -1
        if b_is_category and not a_is_category:
            return 1

        if sort_type in (SortType.PRICE_LOW, SortType.PRICE_HIGH) and is_item(node_a) and is_item(node_b):
            price_a, price_b = item_price(node_a), item_price(node_b)
            if price_a == price_b:
                return 0
            ascending = -1 if price_a < price_b else 1
            return ascending if sort_type == SortType.PRICE_LOW else -ascending

        if sort_type == SortType.ALPHABETICAL_REVERSE:
            return _compare_names(name_b, name_a)
        return _compare_names(name_a, name_b)

    return compare


def _sort_mapping(entries: list[tuple[str, Any]], sort_type: SortType) -> dict[str, Any]:
    if sort_type != SortType.NONE:
        entries = sorted(entries, key=functools.cmp_to_key(_entry_comparator(sort_type)))

    result: dict[str, Any] = {}
    for name, node in entries:
        if is_category(node):
            node = dict(node)
            children = _sort_mapping(list(iter_children(node)), sort_type)
            node["children"] = children
            if ORDER_KEYS in node:
                node[ORDER_KEYS] = list(children)
        result[name] = node
    return result


def sort_data(tree: Mapping[str, Any], sort_type: SortType | str) -> dict[str, Any]:
    """Stable recursive sort; categories always precede items at each level."""
    sort_type = SortType(sort_type)
    copied = copy.deepcopy(dict(tree))
    return _sort_mapping(list(iter_children(copied)), sort_type)


def _filter_mapping(
    entries: list[tuple[str, Any]],
    query: str,
    parent_path: str,
    parent_matches: bool,
) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for name, node in entries:
        path = join_path(parent_path, name)
        matches = (
            parent_matches
            or query in normalize_item_name(name)
            or query in normalize_item_name(path)
        )

        if is_category(node):
            if matches:
                result[name] = copy.deepcopy(node)
                continue
            children = _filter_mapping(list(iter_children(node)), query, path, False)
            if children:
                pruned = {**node, "children": children}
                if ORDER_KEYS in node:
                    pruned[ORDER_KEYS] = list(children)
                result[name] = copy.deepcopy(pruned)
        elif matches:
            result[name] = copy.deepcopy(node)
    return result


def filter_data(tree: Mapping[str, Any], search_text: Optional[str]) -> dict[str, Any]:
    """Keep nodes whose name or path contains the query, with their ancestors.

    A category that matches keeps its full subtree; otherwise it survives
    only with the children that matched below it. A query made only of
    punctuation matches nothing.
    """
    if not search_text or not str(search_text).strip():
        return copy.deepcopy(dict(tree))

    query = normalize_item_name(search_text)
    if not query:
        logger.debug("tree_filter | query=%r | normalized='' | roots=0", search_text)
        return {}
    result = _filter_mapping(list(iter_children(tree)), query, "", False)
    logger.debug("tree_filter | query=%r | normalized=%r | roots=%s", search_text, query, len(result))
    return result


def _with_order_keys(node: dict[str, Any]) -> dict[str, Any]:
    if not is_category(node):
        return node
    children: dict[str, Any] = {}
    for key, child in iter_children(node):
        children[key] = _with_order_keys(child)
    node["children"] = children
    node[ORDER_KEYS] = list(children)
    return node


def deep_add_order_keys(tree: Mapping[str, Any]) -> dict[str, Any]:
    """Attach `__orderKeys` to every category, in current display order."""
    copied = copy.deepcopy(dict(tree))
    return {key: _with_order_keys(node) for key, node in iter_children(copied)}


def restore_order(tree: Mapping[str, Any], root_order: Optional[list[str]] = None) -> dict[str, Any]:
    """Rebuild every mapping in `__orderKeys` order after a lossy round trip.

    `root_order` plays the role of `__orderKeys` for the root mapping.
    """
    copied = copy.deepcopy(dict(tree))
    return {
        key: _with_order_keys(copied[key])
        for key in ordered_keys(copied, root_order)
    }


def root_order(tree: Mapping[str, Any]) -> list[str]:
    return ordered_keys(tree)


def walk(tree: Mapping[str, Any], parent_path: str = "", depth: int = 0) -> Iterator[tuple[str, str, dict[str, Any], int]]:
    """Depth-first (path, name, node, depth) over the whole tree, in display order."""
    for name, node in iter_children(tree):
        path = join_path(parent_path, name)
        yield path, name, node, depth
        if is_category(node):
            yield from walk(node, path, depth + 1)
