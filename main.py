"""
main.py - Command-line tools for catalogs and contact lists.

This module is orchestration-only. Subcommands:
    export      price tree JSON  -> bulk text
    import      bulk text        -> price tree JSON
    format      bulk text        -> column-aligned bulk text
    search      filter + sort a price tree
    convert     price-per-unit conversion
    profit      margin between a sell and a cost price
    stats       price list summary
    duplicates  duplicate groups in a contact list (JSON or CSV)
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

import pandas as pd
from dotenv import load_dotenv

from bulk_text import export_to_text, format_bulk_text, import_from_text
from duplicates import find_duplicate_groups
from explain import format_duplicate_groups, format_number, format_profit, format_stats
from logging_config import get_logger, setup_logging
from models import PersonRecord, SortType
from normalize import parse_number
from price_tree import filter_data, sort_data
from stats import get_price_list_stats
from units import calculate_profit, canonical_unit, convert

logger = get_logger("catalog-cli")

REQUIRED_PEOPLE_COLUMNS = ["name"]
OPTIONAL_PEOPLE_COLUMNS = ["phones", "category", "address", "specialty", "notes"]


def _read_text(path: str) -> str:
    if not path or not str(path).strip():
        raise ValueError("path cannot be empty")
    if path == "-":
        return sys.stdin.read()
    if not os.path.exists(path):
        raise FileNotFoundError(f"File not found: {path}")
    return Path(path).read_text(encoding="utf-8-sig")


def load_tree(path: str) -> dict[str, Any]:
    """Load a price tree from a JSON file ({...} or {"tree": {...}})."""
    try:
        raw = json.loads(_read_text(path))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in '{path}': {exc}") from exc

    if isinstance(raw, dict) and isinstance(raw.get("price_tree"), dict):
        raw = raw["price_tree"]
    elif isinstance(raw, dict) and isinstance(raw.get("tree"), dict):
        raw = raw["tree"]
    if not isinstance(raw, dict):
        raise ValueError(f"Price tree in '{path}' must be a JSON object")
    return raw


def load_people_csv(csv_path: str) -> list[PersonRecord]:
    """Load contacts from a CSV with a 'name' column; phones split on '/'."""
    if not os.path.exists(csv_path):
        raise FileNotFoundError(f"Contacts CSV not found: {csv_path}")

    try:
        df = pd.read_csv(csv_path, encoding="utf-8-sig", dtype=str, keep_default_na=False)
    except UnicodeDecodeError:
        logger.warning(
            "csv_encoding_warning | path=%s | reason='utf-8 decode failed' | fallback=latin-1",
            csv_path,
        )
        df = pd.read_csv(csv_path, encoding="latin-1", dtype=str, keep_default_na=False)
    except Exception as exc:
        raise ValueError(f"Failed to read CSV '{csv_path}': {exc}") from exc

    df.columns = [str(col).strip().lower() for col in df.columns]
    missing = [column for column in REQUIRED_PEOPLE_COLUMNS if column not in df.columns]
    if missing:
        raise ValueError(
            f"Contacts CSV missing required columns: {missing}\n"
            f"Found: {list(df.columns)}"
        )
    for optional in OPTIONAL_PEOPLE_COLUMNS:
        if optional not in df.columns:
            df[optional] = ""

    df["name"] = df["name"].str.strip()
    df = df[df["name"] != ""].copy()

    people = [
        PersonRecord(
            name=row["name"],
            category=row["category"],
            phones=[phone for phone in str(row["phones"]).split("/")],
            address=row["address"],
            specialty=row["specialty"],
            notes=row["notes"],
        )
        for row in df.to_dict(orient="records")
    ]
    logger.info("csv_loaded | path=%s | people=%s", csv_path, len(people))
    return people


def load_people(path: str) -> list[PersonRecord]:
    if path.lower().endswith(".csv"):
        return load_people_csv(path)
    try:
        raw = json.loads(_read_text(path))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in '{path}': {exc}") from exc
    if isinstance(raw, dict):
        raw = raw.get("people", [])
    if not isinstance(raw, list):
        raise ValueError(f"Contacts in '{path}' must be a JSON list")
    return [PersonRecord.model_validate(person) for person in raw]


def _cmd_export(args: argparse.Namespace) -> None:
    print(export_to_text(load_tree(args.tree)), end="")


def _cmd_import(args: argparse.Namespace) -> None:
    tree = import_from_text(_read_text(args.text), title_case=not args.keep_case)
    print(json.dumps(tree, indent=2, ensure_ascii=False))


def _cmd_format(args: argparse.Namespace) -> None:
    print(format_bulk_text(_read_text(args.text)))


def _cmd_search(args: argparse.Namespace) -> None:
    tree = sort_data(filter_data(load_tree(args.tree), args.query), SortType(args.sort))
    if args.json:
        print(json.dumps(tree, indent=2, ensure_ascii=False))
    else:
        print(export_to_text(tree), end="")


def _cmd_convert(args: argparse.Namespace) -> None:
    result = convert(args.value, args.from_unit, args.to_unit)
    if result is None:
        raise ValueError(f"Cannot convert between {args.from_unit!r} and {args.to_unit!r}")
    print(
        f"{format_number(args.value, 4)}/{canonical_unit(args.from_unit)} = "
        f"{format_number(result, 4)}/{canonical_unit(args.to_unit)}"
    )


def _cmd_profit(args: argparse.Namespace) -> None:
    result = calculate_profit(parse_number(args.sell), args.sell_unit, parse_number(args.cost), args.cost_unit)
    print(format_profit(result))


def _cmd_stats(args: argparse.Namespace) -> None:
    stats = get_price_list_stats(load_tree(args.tree))
    if args.json:
        print(json.dumps(stats.model_dump(mode="json"), indent=2))
    else:
        print(format_stats(stats))


def _cmd_duplicates(args: argparse.Namespace) -> None:
    groups = find_duplicate_groups(load_people(args.people))
    if args.json:
        print(json.dumps([group.model_dump(mode="json") for group in groups], indent=2, ensure_ascii=False))
    else:
        print(format_duplicate_groups(groups))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="catalog",
        description="Price list and contact tools.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  %(prog)s export catalog.json > catalog.txt\n"
            "  %(prog)s import catalog.txt > catalog.json\n"
            "  %(prog)s convert 100 ft m\n"
            "  %(prog)s duplicates contacts.csv\n"
        ),
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable DEBUG-level logging")
    parser.add_argument("--log-json", action="store_true", help="Output logs as JSON lines")
    sub = parser.add_subparsers(dest="command", required=True)

    export_parser = sub.add_parser("export", help="Price tree JSON -> bulk text")
    export_parser.add_argument("tree", help="Price tree JSON file ('-' for stdin)")
    export_parser.set_defaults(handler=_cmd_export)

    import_parser = sub.add_parser("import", help="Bulk text -> price tree JSON")
    import_parser.add_argument("text", help="Bulk text file ('-' for stdin)")
    import_parser.add_argument("--keep-case", action="store_true", help="Do not title-case names")
    import_parser.set_defaults(handler=_cmd_import)

    format_parser = sub.add_parser("format", help="Align bulk text columns")
    format_parser.add_argument("text", help="Bulk text file ('-' for stdin)")
    format_parser.set_defaults(handler=_cmd_format)

    search_parser = sub.add_parser("search", help="Filter and sort a price tree")
    search_parser.add_argument("tree", help="Price tree JSON file")
    search_parser.add_argument("query", help="Search text, e.g. '1/2 inch'")
    search_parser.add_argument("--sort", choices=[sort.value for sort in SortType], default="none")
    search_parser.add_argument("--json", action="store_true", help="Print JSON instead of bulk text")
    search_parser.set_defaults(handler=_cmd_search)

    convert_parser = sub.add_parser("convert", help="Convert a price per unit")
    convert_parser.add_argument("value", type=float)
    convert_parser.add_argument("from_unit")
    convert_parser.add_argument("to_unit")
    convert_parser.set_defaults(handler=_cmd_convert)

    profit_parser = sub.add_parser("profit", help="Margin between sell and cost prices")
    profit_parser.add_argument("sell")
    profit_parser.add_argument("sell_unit")
    profit_parser.add_argument("cost")
    profit_parser.add_argument("cost_unit")
    profit_parser.set_defaults(handler=_cmd_profit)

    stats_parser = sub.add_parser("stats", help="Price list summary")
    stats_parser.add_argument("tree", help="Price tree JSON file")
    stats_parser.add_argument("--json", action="store_true")
    stats_parser.set_defaults(handler=_cmd_stats)

    duplicates_parser = sub.add_parser("duplicates", help="Find duplicate contacts")
    duplicates_parser.add_argument("people", help="Contacts JSON list or CSV file")
    duplicates_parser.add_argument("--json", action="store_true")
    duplicates_parser.set_defaults(handler=_cmd_duplicates)

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    try:
        load_dotenv()
    except UnicodeDecodeError:
        load_dotenv(encoding="cp1252")

    args = build_parser().parse_args(argv)
    setup_logging(
        level=logging.DEBUG if args.verbose else None,
        json_format=args.log_json,
    )

    try:
        logger.info("cli_command | command=%s", args.command)
        args.handler(args)
    except FileNotFoundError as exc:
        logger.error("cli_error | type=FileNotFoundError | error=%s", exc)
        print(f"\nError: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc
    except ValueError as exc:
        logger.error("cli_error | type=ValueError | error=%s", exc)
        print(f"\nError: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        raise SystemExit(130)


if __name__ == "__main__":
    main()
