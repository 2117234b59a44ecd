"""
test_phones.py - Phone validation and shared-number detection.

Usage:
    pytest test_phones.py
"""

from __future__ import annotations

import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from models import PersonRecord
from phones import (
    batch_check_duplicate_phones,
    check_duplicate_phone,
    check_internal_duplicates,
    clean_and_deduplicate_phones,
    find_all_shared_phone_numbers,
    is_valid_phone,
    validate_phone,
    validate_phone_numbers,
)


@pytest.fixture
def directory():
    return [
        PersonRecord(id="p1", name="Shyam", phones=["9876543210"]),
        PersonRecord(id="p2", name="Gita", phones=["9123456780", "9000000001"]),
        PersonRecord(id="p3", name="Mohan", phones=["9000000001"]),
    ]


class TestSinglePhone:
    @pytest.mark.parametrize("phone", ["9876543210", " 98765 43210 ", "98765\t43210"])
    def test_valid(self, phone):
        assert is_valid_phone(phone)
        assert validate_phone(phone) is None

    def test_blank_is_acceptable(self):
        assert validate_phone("") is None
        assert validate_phone(None) is None
        assert not is_valid_phone("")

    def test_non_digits(self):
        assert validate_phone("98765x3210") == "Phone number must contain only digits"
        assert validate_phone("+919876543210") == "Phone number must contain only digits"

    def test_wrong_length(self):
        assert validate_phone("12345") == "Phone number must be exactly 10 digits (got 5)"


class TestPhoneLists:
    def test_clean_and_deduplicate(self):
        assert clean_and_deduplicate_phones([" 98765 43210", "9876543210", "", None]) == ["9876543210"]
        assert clean_and_deduplicate_phones([]) == [""]
        assert clean_and_deduplicate_phones(None) == [""]

    @pytest.mark.parametrize(
        "phones",
        [[" 98765 43210", "9876543210", "", None], [], None, "9123 456780", [9876543210]],
    )
    def test_person_record_uses_same_cleaning(self, phones):
        expected = clean_and_deduplicate_phones([phones] if isinstance(phones, str) else phones)
        assert PersonRecord(name="Ram", phones=phones).phones == expected

    def test_coerce_accepts_records_and_dicts(self):
        record = PersonRecord(name="Ram", phones=["9876543210"])
        assert PersonRecord.coerce(record) is record
        coerced = PersonRecord.coerce({"name": "Gita", "phone": "9123456780"})
        assert coerced.phones == ["9123456780"]

    def test_internal_duplicates(self):
        result = check_internal_duplicates(["9876543210", "98765 43210", "9123456780", ""])
        assert result.has_duplicates
        assert result.duplicate_numbers == ["9876543210"]
        assert not check_internal_duplicates(["", ""]).has_duplicates


class TestSharedNumbers:
    def test_check_duplicate_phone(self, directory):
        result = check_duplicate_phone("98765 43210", directory)
        assert result.is_duplicate
        assert result.existing_contact.id == "p1"

    def test_check_duplicate_phone_excludes_self(self, directory):
        assert not check_duplicate_phone("9876543210", directory, exclude_id="p1").is_duplicate

    def test_invalid_number_is_never_a_duplicate(self, directory):
        assert not check_duplicate_phone("98765", directory).is_duplicate

    def test_accepts_plain_dicts(self):
        people = [{"id": "d1", "name": "Dict", "phones": ["9876543210"]}]
        assert check_duplicate_phone("9876543210", people).existing_contact.name == "Dict"

    def test_validate_phone_numbers(self, directory):
        result = validate_phone_numbers(["9876543210", "98765 43210", "123"], directory)
        assert not result.is_valid
        assert result.errors == [
            "Phone 3: Phone number must be exactly 10 digits (got 3)",
            "Phone number 9876543210 is listed more than once",
        ]
        assert result.shared_with["9876543210"].id == "p1"

    def test_shared_number_does_not_fail_validation(self, directory):
        result = validate_phone_numbers(["9123456780", ""], directory, exclude_id="p9")
        assert result.is_valid
        assert list(result.shared_with) == ["9123456780"]

    def test_find_all_shared_phone_numbers(self, directory):
        shared = find_all_shared_phone_numbers(directory)
        assert list(shared) == ["9000000001"]
        assert [person.id for person in shared["9000000001"]] == ["p2", "p3"]

    def test_batch_check(self, directory):
        batch = [
            PersonRecord(name="New One", phones=["9876543210"]),
            PersonRecord(name="New Two", phones=["9876543210"]),
            PersonRecord(name="Fresh", phones=["9555555555"]),
        ]
        errors = batch_check_duplicate_phones(batch, directory)
        assert [(error.person_index, error.type) for error in errors] == [
            (0, "existing_duplicate"),
            (1, "batch_duplicate"),
            (1, "existing_duplicate"),
        ]
        assert errors[1].message == 'Phone 9876543210 is also used by "New One" in this import'
        assert errors[0].message == 'Phone 9876543210 is already assigned to "Shyam"'
