"""
test_main.py - Command-line subcommands.

Usage:
    pytest test_main.py
"""

from __future__ import annotations

import json
import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import main

CATALOG = {
    "price_tree": {
        "Taps": {
            "type": "category",
            "children": {
                "Angle Valve": {"type": "item", "retailSell": 50, "cost": 40, "sellUnit": "piece", "costUnit": "piece"},
                "Bib Cock": {"type": "item", "retailSell": 120, "cost": 90, "sellUnit": "piece", "costUnit": "piece"},
            },
        }
    }
}


@pytest.fixture
def catalog_file(tmp_path):
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps(CATALOG), encoding="utf-8")
    return str(path)


class TestCatalogCommands:
    def test_export(self, catalog_file, capsys):
        main.main(["export", catalog_file])
        assert capsys.readouterr().out.splitlines() == [
            "Taps",
            "  Angle Valve | 50 | 40 | piece | piece",
            "  Bib Cock | 120 | 90 | piece | piece",
        ]

    def test_import(self, tmp_path, capsys):
        text_file = tmp_path / "catalog.txt"
        text_file.write_text("taps\n  angle valve | 50 | 40\n", encoding="utf-8")
        main.main(["import", str(text_file)])
        tree = json.loads(capsys.readouterr().out)
        assert tree["Taps"]["children"]["Angle Valve"]["retailSell"] == 50.0

    def test_search_json(self, catalog_file, capsys):
        main.main(["search", catalog_file, "bib", "--json"])
        tree = json.loads(capsys.readouterr().out)
        assert list(tree["Taps"]["children"]) == ["Bib Cock"]

    def test_stats_json(self, catalog_file, capsys):
        main.main(["stats", catalog_file, "--json"])
        stats = json.loads(capsys.readouterr().out)
        assert stats["item_count"] == 2
        assert stats["avg_profit_margin"] == pytest.approx(30.77)

    def test_missing_file_exits(self, tmp_path):
        with pytest.raises(SystemExit) as excinfo:
            main.main(["export", str(tmp_path / "nope.json")])
        assert excinfo.value.code == 1


class TestUnitCommands:
    def test_convert(self, capsys):
        main.main(["convert", "100", "ft", "m"])
        assert capsys.readouterr().out.strip() == "100/foot = 328.084/meter"

    def test_convert_incompatible_exits(self):
        with pytest.raises(SystemExit):
            main.main(["convert", "1", "kg", "m"])

    def test_profit(self, capsys):
        main.main(["profit", "50", "piece", "40", "pcs"])
        assert capsys.readouterr().out.strip() == "₹10 (25.0%)"


class TestDuplicateCommand:
    def test_csv(self, tmp_path, capsys):
        csv_path = tmp_path / "contacts.csv"
        csv_path.write_text(
            "Name,Phones,Category\n"
            "Ram Kumar,9876543210,customer\n"
            "Ram K,98765 43210/9123456780,customer\n"
            "Gita,9000000001,helper\n",
            encoding="utf-8",
        )
        main.main(["duplicates", str(csv_path), "--json"])
        groups = json.loads(capsys.readouterr().out)
        assert len(groups) == 1
        assert groups[0]["shared_phone"] == "9876543210"
        assert sorted(contact["name"] for contact in groups[0]["contacts"]) == ["Ram K", "Ram Kumar"]

    def test_csv_without_name_column(self, tmp_path):
        csv_path = tmp_path / "contacts.csv"
        csv_path.write_text("phones\n9876543210\n", encoding="utf-8")
        with pytest.raises(SystemExit):
            main.main(["duplicates", str(csv_path)])

    def test_json_list(self, tmp_path, capsys):
        people_path = tmp_path / "people.json"
        people_path.write_text(json.dumps({"people": [{"name": "Solo"}]}), encoding="utf-8")
        main.main(["duplicates", str(people_path)])
        assert capsys.readouterr().out.strip() == "No duplicate contacts found."
