"""
test_bulk_text.py - Bulk text export/import for price trees and contacts.

Usage:
    pytest test_bulk_text.py
"""

from __future__ import annotations

import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from bulk_text import (
    BulkImportError,
    bulk_edit_people,
    export_people_by_category,
    export_to_text,
    format_bulk_text,
    import_from_text,
    people_to_text,
    text_to_people,
)
from models import DEFAULT_CONTACT_CATEGORIES, PersonRecord
from price_tree import ORDER_KEYS

CATALOG_TEXT = """Taps
  Bib Cock | 120 | 90 | piece | piece
  Angle Valve | 50 | 40 | piece | piece | 45
Pipes
  Plastic
    1/2" Pipe | 30 | 20 | foot | foot
Tape | 10.5 | 6 | piece | piece
"""


@pytest.fixture
def catalog():
    return import_from_text(CATALOG_TEXT)


class TestImportFromText:
    def test_hierarchy_from_indentation(self, catalog):
        assert list(catalog) == ["Taps", "Pipes", "Tape"]
        assert catalog["Taps"]["type"] == "category"
        assert list(catalog["Taps"]["children"]) == ["Bib Cock", "Angle Valve"]
        assert catalog["Pipes"]["children"]["Plastic"]["children"]['1/2" Pipe']["sellUnit"] == "foot"

    def test_item_fields(self, catalog):
        valve = catalog["Taps"]["children"]["Angle Valve"]
        assert valve == {
            "type": "item",
            "retailSell": 50.0,
            "bulkSell": 45.0,
            "cost": 40.0,
            "sellUnit": "piece",
            "costUnit": "piece",
        }
        assert catalog["Tape"]["retailSell"] == 10.5
        assert catalog["Tape"]["bulkSell"] == 10.5

    def test_order_keys_attached(self, catalog):
        assert catalog["Taps"][ORDER_KEYS] == ["Bib Cock", "Angle Valve"]
        assert catalog["Pipes"][ORDER_KEYS] == ["Plastic"]

    def test_title_case(self):
        tree = import_from_text("plumbing\n  angle valve | 50 | 40")
        assert list(tree) == ["Plumbing"]
        assert list(tree["Plumbing"]["children"]) == ["Angle Valve"]

    def test_keep_case(self):
        tree = import_from_text("PVC\n  cpvc elbow | 5", title_case=False)
        assert list(tree["PVC"]["children"]) == ["cpvc elbow"]

    def test_comma_separator_and_defaults(self):
        tree = import_from_text("Nails, 2")
        assert tree["Nails"] == {
            "type": "item",
            "retailSell": 2.0,
            "bulkSell": 2.0,
            "cost": 0.0,
            "sellUnit": "piece",
            "costUnit": "piece",
        }

    def test_comma_in_category_name(self):
        tree = import_from_text("Nuts, Bolts\n  Hex Bolt | 4")
        assert list(tree) == ["Nuts, Bolts"]
        assert list(tree["Nuts, Bolts"]["children"]) == ["Hex Bolt"]

    def test_garbage_numbers_become_zero(self):
        tree = import_from_text("Bolt | abc | - | kg")
        assert tree["Bolt"]["retailSell"] == 0.0
        assert tree["Bolt"]["cost"] == 0.0
        assert tree["Bolt"]["costUnit"] == "kg"

    def test_dedent_returns_to_parent(self):
        tree = import_from_text("A\n  B\n    C | 1\n  D | 2\nE | 3")
        assert list(tree) == ["A", "E"]
        assert list(tree["A"]["children"]) == ["B", "D"]
        assert list(tree["A"]["children"]["B"]["children"]) == ["C"]

    def test_odd_indentation(self):
        tree = import_from_text("A\n   B | 1\n C | 2")
        assert list(tree["A"]["children"]) == ["B", "C"]

    def test_blank_lines_and_blank_names(self):
        tree = import_from_text("A\n\n  | 5\n  B | 1\n")
        assert list(tree["A"]["children"]) == ["B"]

    def test_empty_text(self):
        assert import_from_text("") == {}
        assert import_from_text("   \n") == {}


class TestExportToText:
    def test_round_trip(self, catalog):
        assert import_from_text(export_to_text(catalog)) == catalog

    def test_round_trip_keeps_comma_named_category(self):
        tree = {
            "Nuts, Bolts": {
                "type": "category",
                "children": {
                    "Hex Bolt": {
                        "type": "item",
                        "retailSell": 4.0,
                        "bulkSell": 4.0,
                        "cost": 2.5,
                        "sellUnit": "piece",
                        "costUnit": "piece",
                    }
                },
                ORDER_KEYS: ["Hex Bolt"],
            }
        }
        assert import_from_text(export_to_text(tree)) == tree

    def test_round_trip_keeps_fine_prices(self):
        washer = {
            "type": "item",
            "retailSell": 0.125,
            "bulkSell": 0.125,
            "cost": 0.0625,
            "sellUnit": "piece",
            "costUnit": "piece",
        }
        tree = {"Washer": washer}
        assert import_from_text(export_to_text(tree)) == tree

    def test_export_format(self, catalog):
        text = export_to_text(catalog)
        assert text.splitlines() == [
            "Taps",
            "  Bib Cock | 120 | 90 | piece | piece",
            "  Angle Valve | 50 | 40 | piece | piece | 45",
            "Pipes",
            "  Plastic",
            '    1/2" Pipe | 30 | 20 | foot | foot',
            "Tape | 10.5 | 6 | piece | piece",
        ]
        assert text.endswith("\n")

    def test_export_follows_order_keys(self):
        tree = {
            "Taps": {
                "type": "category",
                "children": {"A": {"type": "item", "retailSell": 1}, "B": {"type": "item", "retailSell": 2}},
                ORDER_KEYS: ["B", "A"],
            }
        }
        assert export_to_text(tree).splitlines()[1:] == [
            "  B | 2 | 0 | piece | piece",
            "  A | 1 | 0 | piece | piece",
        ]

    def test_legacy_sell(self):
        text = export_to_text({"Old": {"type": "item", "sell": 7, "cost": 3}})
        assert text == "Old | 7 | 3 | piece | piece\n"

    def test_empty_tree(self):
        assert export_to_text({}) == ""


def test_format_bulk_text_aligns_columns():
    text = "Taps\n  Bib Cock | 120 | 90\n  Angle Valve | 5 | 4\nTape | 1 | 1"
    assert format_bulk_text(text).splitlines() == [
        "Taps",
        "  Bib Cock    | 120 | 90",
        "  Angle Valve | 5   | 4",
        "Tape | 1 | 1",
    ]


def _person(name, category="customer", phones=("",), **fields):
    return PersonRecord(name=name, category=category, phones=list(phones), **fields)


class TestPeopleText:
    def test_people_to_text(self):
        people = [
            _person("Ram Kumar", phones=["9876543210", "9123456780"], address="Pune"),
            _person("Sita"),
        ]
        assert people_to_text(people) == "Ram Kumar | 9876543210 / 9123456780 | Pune\nSita | "

    def test_export_people_by_category(self):
        people = [_person("Ram", "supplier", ["9876543210"])]
        texts = export_people_by_category(people, DEFAULT_CONTACT_CATEGORIES)
        assert texts["supplier"] == "Ram | 9876543210"
        assert texts["customer"] == ""
        assert set(texts) == {"customer", "supplier", "helper", "other"}

    def test_text_to_people(self):
        people = text_to_people(
            "ram kumar | 98765 43210 / 9123456780 | 12 Market Road, Pune\nsita\n",
            "customer",
        )
        assert [person.name for person in people] == ["Ram Kumar", "Sita"]
        assert people[0].phones == ["9876543210", "9123456780"]
        assert people[0].address == "12 Market Road, Pune"
        assert people[1].phones == [""]
        assert all(person.category == "customer" for person in people)

    def test_existing_fields_preserved(self):
        existing = _person("Ram Kumar", phones=["9876543210"], specialty="Plumber", notes="old")
        people = text_to_people("RAM KUMAR | 9876543210", "customer", [existing])
        assert people[0].id == existing.id
        assert people[0].specialty == "Plumber"
        assert people[0].notes == "old"

    def test_repeated_name_gets_fresh_id(self):
        existing = _person("Ram Kumar", phones=["9876543210"], notes="old")
        people = text_to_people("Ram Kumar | 9876543210\nram kumar | 9876543210", "customer", [existing])
        assert people[0].id == existing.id
        assert people[1].id != existing.id
        assert people[1].notes == ""

    def test_invalid_phone(self):
        with pytest.raises(BulkImportError) as excinfo:
            text_to_people("Ram | 12345", "customer")
        assert excinfo.value.errors == ['Line 1: "Ram" has invalid phone(s): 12345 (must be 10 digits)']

    def test_same_phone_on_two_lines(self):
        with pytest.raises(BulkImportError) as excinfo:
            text_to_people("Ram | 9876543210\nShyam | 9876543210", "customer")
        assert excinfo.value.errors == [
            'Line 2: "Shyam" and "Ram" (line 1) both have phone number 9876543210'
        ]

    def test_all_errors_reported(self):
        with pytest.raises(BulkImportError) as excinfo:
            text_to_people("A | 1\nB | 2\nC | 9876543210", "customer")
        assert len(excinfo.value.errors) == 2


class TestBulkEditPeople:
    @pytest.fixture
    def people(self):
        return [
            _person("Ram", "customer", ["9876543210"]),
            _person("Shyam", "supplier", ["9123456780"]),
            _person("Gita", "helper", ["9000000001"]),
        ]

    def test_replaces_only_edited_categories(self, people):
        result = bulk_edit_people(
            {"customer": "Ram | 9876543210\nMohan | 9000000002"},
            people,
            DEFAULT_CONTACT_CATEGORIES,
        )
        names = sorted(person.name for person in result)
        assert names == ["Gita", "Mohan", "Ram", "Shyam"]
        ram = next(person for person in result if person.name == "Ram")
        assert ram.id == people[0].id

    def test_phone_owned_by_other_contact(self, people):
        with pytest.raises(BulkImportError) as excinfo:
            bulk_edit_people({"customer": "Ram | 9876543210\nMohan | 9123456780"}, people, DEFAULT_CONTACT_CATEGORIES)
        assert excinfo.value.errors_by_category == {
            "customer": ['"Mohan" has phone number 9123456780 which is already assigned to "Shyam"']
        }

    def test_errors_grouped_by_category(self, people):
        with pytest.raises(BulkImportError) as excinfo:
            bulk_edit_people(
                {"customer": "Ram | 123", "nope": "X | 9111111111"},
                people,
                DEFAULT_CONTACT_CATEGORIES,
            )
        assert set(excinfo.value.errors_by_category) == {"customer", "nope"}
        assert excinfo.value.errors_by_category["nope"] == ["Unknown category: nope"]

    def test_emptying_a_category(self, people):
        result = bulk_edit_people({"helper": ""}, people, DEFAULT_CONTACT_CATEGORIES)
        assert sorted(person.name for person in result) == ["Ram", "Shyam"]

    def test_moving_contact_between_categories(self, people):
        result = bulk_edit_people(
            {"customer": "", "supplier": "Shyam | 9123456780\nRam | 9876543210"},
            people,
            DEFAULT_CONTACT_CATEGORIES,
        )
        ram = next(person for person in result if person.name == "Ram")
        assert ram.category == "supplier"
        assert [person.category for person in result].count("customer") == 0

    def test_same_contact_in_two_edited_categories(self):
        text = "Ram | 9876543210 | Addr1\nRam | 9876543210 | Addr1"
        result = bulk_edit_people({"customer": text, "supplier": text}, [], DEFAULT_CONTACT_CATEGORIES)
        assert len(result) == 4
        assert len({person.id for person in result}) == 4

    def test_different_names_sharing_phone_in_one_category(self):
        with pytest.raises(BulkImportError) as excinfo:
            bulk_edit_people({"customer": "Ram | 9876543210\nMohan | 9876543210"}, [], DEFAULT_CONTACT_CATEGORIES)
        assert '"Mohan" and "Ram"' in excinfo.value.errors[0]
