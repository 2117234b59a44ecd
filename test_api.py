"""
test_api.py - HTTP surface checks: edit, save, reload.

Usage:
    pytest test_api.py
"""

from __future__ import annotations

import os
import sys

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

import api
from catalog_store import CatalogStore
from photo_cache import PhotoCache

USER = "shop-1"
BASE = f"/users/{USER}"

VCF_BYTES = (
    "BEGIN:VCARD\r\n"
    "FN:Ram Kumar\r\n"
    "TEL;TYPE=CELL:+91 98765 43210\r\n"
    "PHOTO:data:image/png;base64,AAAA\r\n"
    "END:VCARD\r\n"
    "BEGIN:VCARD\r\n"
    "FN:Sita Devi\r\n"
    "TEL:9000000001\r\n"
    "END:VCARD\r\n"
).encode("utf-8")


@pytest.fixture
def store(tmp_path, monkeypatch):
    temp_store = CatalogStore(str(tmp_path))
    monkeypatch.setattr(api, "catalog_store", temp_store)
    monkeypatch.setattr(api, "photo_cache", PhotoCache())
    return temp_store


@pytest.fixture
def client(store):
    return TestClient(api.app)


def _add(client, parent_path, kind, **form):
    response = client.post(f"{BASE}/catalog/items", json={"parent_path": parent_path, "kind": kind, "form": form})
    assert response.status_code == 200, response.text
    return response.json()["tree"]


@pytest.fixture
def seeded(client):
    _add(client, "", "category", name="taps")
    _add(client, "Taps", "item", name="angle valve", retailSell=50, cost=40)
    _add(client, "Taps", "item", name="bib cock", retailSell=120, cost=90)
    _add(client, "", "category", name="pipes")
    _add(client, "Pipes", "item", name='1/2" pipe', retailSell=30, cost=20, sellUnit="foot")
    return client


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_invalid_user_id(client):
    assert client.get("/users/bad.id/catalog").status_code == 400


class TestCatalogEdits:
    def test_add_persists(self, seeded, store):
        tree = seeded.get(f"{BASE}/catalog").json()["tree"]
        assert list(tree) == ["Taps", "Pipes"]
        assert tree["Taps"]["children"]["Angle Valve"]["retailSell"] == 50.0

        saved = store.load(USER)
        assert list(saved.price_tree["Taps"]["children"]) == ["Angle Valve", "Bib Cock"]
        assert saved.root_order == ["Taps", "Pipes"]

    def test_name_rules(self, client):
        missing = client.post(f"{BASE}/catalog/items", json={"parent_path": "", "kind": "item", "form": {}})
        assert missing.status_code == 400
        dotted = client.post(
            f"{BASE}/catalog/items",
            json={"parent_path": "", "kind": "item", "form": {"name": "v1.2"}},
        )
        assert dotted.status_code == 400

    def test_unknown_parent(self, client):
        response = client.post(
            f"{BASE}/catalog/items",
            json={"parent_path": "Nope", "kind": "item", "form": {"name": "x"}},
        )
        assert response.status_code == 400

    def test_edit_and_rename(self, seeded, store):
        response = seeded.patch(
            f"{BASE}/catalog/items",
            json={"path": "Taps.Angle Valve", "form": {"name": "angle cock", "retailSell": 55, "cost": 41}},
        )
        assert response.status_code == 200
        children = response.json()["tree"]["Taps"]["children"]
        assert list(children) == ["Angle Cock", "Bib Cock"]
        assert store.load(USER).price_tree["Taps"]["children"]["Angle Cock"]["retailSell"] == 55.0

    def test_rename_collision(self, seeded):
        response = seeded.patch(
            f"{BASE}/catalog/items",
            json={"path": "Taps.Angle Valve", "form": {"name": "Bib Cock", "retailSell": 1}},
        )
        assert response.status_code == 400

    def test_delete(self, seeded):
        response = seeded.delete(f"{BASE}/catalog/items", params={"path": "Taps.Bib Cock"})
        assert list(response.json()["tree"]["Taps"]["children"]) == ["Angle Valve"]

    def test_rename_category(self, seeded):
        response = seeded.patch(
            f"{BASE}/catalog/categories",
            json={"path": "Pipes", "name": "plumbing pipes", "notes": "aisle 3"},
        )
        tree = response.json()["tree"]
        assert list(tree) == ["Taps", "Plumbing Pipes"]
        assert tree["Plumbing Pipes"]["notes"] == "aisle 3"

    def test_search_and_sort(self, seeded):
        response = seeded.get(f"{BASE}/catalog/search", params={"q": "1/2 inch", "sort": "price-low"})
        body = response.json()
        assert list(body["tree"]) == ["Pipes"]
        assert body["sort"] == "price-low"

        high = seeded.get(f"{BASE}/catalog/search", params={"sort": "price-high"}).json()["tree"]
        assert list(high["Taps"]["children"]) == ["Bib Cock", "Angle Valve"]

    def test_unknown_sort(self, seeded):
        assert seeded.get(f"{BASE}/catalog/search", params={"sort": "random"}).status_code == 400

    def test_bulk_text_round_trip(self, seeded):
        text = seeded.get(f"{BASE}/catalog/bulk-text").json()["text"]
        assert text.splitlines()[1] == "  Angle Valve | 50 | 40 | piece | piece"

        edited = text.replace("Angle Valve | 50", "Angle Valve | 52")
        tree = seeded.put(f"{BASE}/catalog/bulk-text", json={"text": edited}).json()["tree"]
        assert tree["Taps"]["children"]["Angle Valve"]["retailSell"] == 52.0

    def test_put_catalog_requires_object(self, client):
        assert client.put(f"{BASE}/catalog", json={"tree": []}).status_code == 400

    def test_stats(self, seeded):
        stats = seeded.get(f"{BASE}/catalog/stats").json()
        assert stats["item_count"] == 3
        assert stats["category_count"] == 2
        assert stats["most_used_unit"] == "piece"


class TestUnits:
    def test_convert(self, client):
        body = client.get("/units/convert", params={"value": 100, "from_unit": "ft", "to_unit": "m"}).json()
        assert body["convertible"]
        assert body["from_unit"] == "foot"
        assert body["to_unit"] == "meter"
        assert body["result"] == pytest.approx(328.084, rel=1e-4)

    def test_convert_incompatible(self, client):
        body = client.get("/units/convert", params={"value": 1, "from_unit": "kg", "to_unit": "m"}).json()
        assert body["result"] is None
        assert not body["convertible"]

    def test_profit(self, client):
        body = client.get(
            "/units/profit",
            params={"sell": "50", "sell_unit": "piece", "cost": "40", "cost_unit": "piece"},
        ).json()
        assert body["display"] == "₹10 (25.0%)"
        assert body["profit_percent"] == pytest.approx(25)


class TestContacts:
    @pytest.fixture
    def people(self, client):
        payload = {
            "people": [
                {"id": "p1", "name": "Ram Kumar", "phones": ["9876543210"], "category": "customer"},
                {"id": "p2", "name": "Ram K", "phone": "98765 43210", "category": "customer", "notes": "old"},
                {"id": "p3", "name": "Gita", "phones": ["9123456780"], "category": "helper"},
            ],
            "categories": [
                {"id": "other", "label": "Other", "isDefault": True},
                {"id": "helper", "label": "helper"},
                {"id": "customer", "label": "Customer"},
            ],
        }
        response = client.put(f"{BASE}/contacts", json=payload)
        assert response.status_code == 200, response.text
        return client

    def test_put_and_get(self, people, store):
        body = people.get(f"{BASE}/contacts").json()
        assert [category["id"] for category in body["categories"]] == ["customer", "helper", "other"]
        assert body["counts"] == {"customer": 2, "helper": 1, "other": 0}
        assert body["people"][1]["phones"] == ["9876543210"]
        assert len(store.load(USER).people) == 3

    def test_duplicate_check(self, people):
        response = people.post(
            f"{BASE}/contacts/duplicates/check",
            json={"contact": {"name": "Gita", "phones": ["9123456780"], "category": "helper"}},
        )
        matches = response.json()["matches"]
        assert [match["existing_contact"]["id"] for match in matches] == ["p3"]
        assert matches[0]["explanation"].startswith("Almost certainly the same contact")

    def test_groups_and_merge(self, people, store):
        groups = people.get(f"{BASE}/contacts/duplicates/groups").json()["groups"]
        assert len(groups) == 1
        assert groups[0]["shared_phone"] == "9876543210"

        response = people.post(f"{BASE}/contacts/merge", json={"keep_id": "p1", "contact_ids": ["p2"]})
        body = response.json()
        assert body["removed"] == ["p2"]
        assert body["merged"]["notes"] == "old"
        assert [person["id"] for person in store.load(USER).people] == ["p1", "p3"]

    def test_merge_unknown_keep_id(self, people):
        response = people.post(f"{BASE}/contacts/merge", json={"keep_id": "nope", "contact_ids": ["p2"]})
        assert response.status_code == 400

    def test_bulk_text(self, people):
        texts = people.get(f"{BASE}/contacts/bulk-text").json()["texts"]
        assert texts["helper"] == "Gita | 9123456780"

        response = people.put(f"{BASE}/contacts/bulk-text", json={"texts": {"helper": "gita | 9123456780\nhari | 9000000002"}})
        assert response.status_code == 200
        assert response.json()["counts"] == {"customer": 2, "helper": 2, "other": 0}

    def test_bulk_text_errors(self, people):
        response = people.put(
            f"{BASE}/contacts/bulk-text",
            json={"texts": {"helper": "Hari | 9876543210"}},
        )
        assert response.status_code == 400
        detail = response.json()["detail"]
        assert list(detail["errors_by_category"]) == ["helper"]
        assert "already assigned" in detail["errors"][0]

    def test_phone_validation(self, people):
        body = people.post(
            f"{BASE}/contacts/phones/validate",
            json={"phones": ["9123456780", "123"], "exclude_id": "p1"},
        ).json()
        assert not body["is_valid"]
        assert body["errors"] == ["Phone 2: Phone number must be exactly 10 digits (got 3)"]
        assert body["shared_with"]["9123456780"]["id"] == "p3"

    def test_vcf_import(self, people):
        response = people.post(
            f"{BASE}/contacts/vcf",
            files={"vcf_file": ("contacts.vcf", VCF_BYTES, "text/vcard")},
            data={"category": "customer"},
        )
        assert response.status_code == 200, response.text
        body = response.json()
        assert body["imported"] == 2
        assert [warning["name"] for warning in body["duplicate_warnings"]] == ["Ram Kumar"]
        assert body["counts"]["customer"] == 4
        assert people.get("/photos/stats").json()["count"] == 1

    def test_vcf_without_contacts(self, people):
        response = people.post(
            f"{BASE}/contacts/vcf",
            files={"vcf_file": ("empty.vcf", b"BEGIN:VCARD\r\nTEL:9000000001\r\nEND:VCARD\r\n", "text/vcard")},
        )
        assert response.status_code == 400
        assert response.json()["detail"] == "No valid contacts found in VCF file"
