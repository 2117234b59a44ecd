"""
models.py - Data models shared across the catalog service.

The price tree itself stays a plain JSON-compatible dict (see price_tree.py);
everything else that crosses a module boundary is defined here:

    phones.py      ->  PhoneCheckResult, InternalDuplicateResult,
                       PhoneValidationResult, PhoneBatchError
    duplicates.py  ->  DuplicateScore, DuplicateMatch,
                       BatchDuplicateResult, DuplicateGroup
    units.py       ->  ProfitResult
    stats.py       ->  PriceListStats
    bulk_text.py   ->  PersonRecord, ContactCategory

Design principles:
1. Contacts are validated on the way in, so every downstream function can
   trust that `phones` is cleaned and free of repeats
2. Scores carry reason strings so a duplicate warning is explainable
3. Models ignore unknown fields so older saved payloads keep loading
"""

from __future__ import annotations

import secrets
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def new_person_id() -> str:
    return secrets.token_hex(8)


class MatchType(str, Enum):
    """Coarse confidence bucket derived from a duplicate score."""

    # score >= 0.95
    EXACT = "exact"
    # score >= 0.70
    HIGH = "high"
    # score >= 0.50
    MEDIUM = "medium"
    # score >= 0.30
    LOW = "low"
    NONE = "none"


class SortType(str, Enum):
    """Orderings supported by price_tree.sort_data."""

    NONE = "none"
    ALPHABETICAL = "alphabetical"
    ALPHABETICAL_REVERSE = "alphabetical-reverse"
    PRICE_LOW = "price-low"
    PRICE_HIGH = "price-high"


class PersonRecord(BaseModel):
    """One contact in the directory.

    Phones are stored space-stripped with no repeats inside one record.
    The same number may appear on different records; that is a duplicate
    signal, never a constraint. An empty phone list is kept as [""] so
    edit forms always have one input slot.
    """

    model_config = ConfigDict(
        extra="ignore",
        json_schema_extra={
            "examples": [
                {
                    "id": "3f9a1c2b7d4e5f60",
                    "name": "Ram Kumar",
                    "category": "supplier",
                    "phones": ["9876543210"],
                    "address": "12 Market Road, Pune",
                    "specialty": "Plumbing",
                    "notes": "",
                    "photo": None,
                }
            ]
        },
    )

    id: str = Field(default_factory=new_person_id, description="Stable contact identifier")
    name: str = Field(default="", description="Display name")
    category: str = Field(default="other", description="Contact category id, e.g. 'supplier'")
    phones: list[str] = Field(
        default_factory=lambda: [""],
        description="Cleaned phone numbers; [''] when the contact has none",
    )
    address: str = Field(default="", description="Free-form postal address")
    specialty: str = Field(default="", description="Trade or role, e.g. 'Electrician'")
    notes: str = Field(default="", description="Free-form notes")
    photo: Optional[str] = Field(default=None, description="Photo as a data URL, or None")

    @model_validator(mode="before")
    @classmethod
    def _fold_legacy_phone(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "phone" not in data:
            return data
        data = dict(data)
        legacy = data.pop("phone")
        phones = list(data.get("phones") or [])
        if legacy:
            phones.insert(0, legacy)
        data["phones"] = phones
        return data

    @field_validator("id", mode="before")
    @classmethod
    def _id_default(cls, value: Any) -> str:
        text = str(value or "").strip()
        return text or new_person_id()

    @field_validator("name", "address", "specialty", "notes", mode="before")
    @classmethod
    def _text_default(cls, value: Any) -> str:
        return "" if value is None else str(value)

    @field_validator("category", mode="before")
    @classmethod
    def _category_default(cls, value: Any) -> str:
        text = str(value or "").strip()
        return text or "other"

    @field_validator("phones", mode="before")
    @classmethod
    def _clean_phones(cls, value: Any) -> list[str]:
        from phones import clean_and_deduplicate_phones  # phones imports this module

        if isinstance(value, str):
            value = [value]
        return clean_and_deduplicate_phones(value)

    @classmethod
    def coerce(cls, value: PersonRecord | dict[str, Any]) -> PersonRecord:
        """Accept a record or a raw dict (API payloads, saved JSON)."""
        return value if isinstance(value, cls) else cls.model_validate(value)

    @property
    def phone_numbers(self) -> list[str]:
        """Phones without the empty-slot sentinel."""
        return [phone for phone in self.phones if phone]


class ContactCategory(BaseModel):
    """Contact taxonomy entry. The 'other' id always sorts last."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    label: str
    is_default: bool = Field(default=False, alias="isDefault")


DEFAULT_CONTACT_CATEGORIES: tuple[ContactCategory, ...] = (
    ContactCategory(id="customer", label="Customer", is_default=True),
    ContactCategory(id="supplier", label="Supplier", is_default=True),
    ContactCategory(id="helper", label="Helper", is_default=True),
    ContactCategory(id="other", label="Other", is_default=True),
)


class DuplicateReason(BaseModel):
    """One signal that contributed to a duplicate score."""

    field: str = Field(description="Compared field: name, phones, address, category or specialty")
    score: float = Field(ge=0.0, le=1.0, description="Similarity for this field, 0..1")
    message: str = Field(description="Human-readable explanation, e.g. 'Names are 92% similar'")


class DuplicateScore(BaseModel):
    """Weighted similarity between two contacts. Never persisted."""

    score: float = Field(
        ge=0.0,
        le=1.0,
        description=(
            "Weighted sum of field similarities divided by the total weight of "
            "the fields that had data on at least one side"
        ),
    )
    reasons: list[DuplicateReason] = Field(default_factory=list)
    match_type: MatchType = Field(default=MatchType.NONE)
    is_exact: bool = Field(
        default=False,
        description="Field-by-field equality check, independent of the fuzzy score",
    )

    @property
    def percent(self) -> int:
        return round(self.score * 100)


class DuplicateMatch(DuplicateScore):
    """A scored pair returned by find_potential_duplicates."""

    existing_contact: PersonRecord
    new_contact: PersonRecord


class BatchDuplicateResult(BaseModel):
    """Matches for one contact of an import batch."""

    index: int = Field(description="Position of the contact in the incoming batch")
    new_contact: PersonRecord
    duplicates: list[DuplicateMatch] = Field(default_factory=list)
    is_exact_duplicate: bool = False


class GroupMemberScore(BaseModel):
    contact_id: str
    avg_score: float


class DuplicateGroup(BaseModel):
    """Contacts that probably describe the same person."""

    id: str = Field(description="Group id, e.g. 'group-0'")
    shared_phone: Optional[str] = Field(
        default=None,
        description="Phone number that grouped these contacts; None for name-based groups",
    )
    contacts: list[PersonRecord] = Field(
        default_factory=list,
        description="Members ordered by average pairwise score, best first",
    )
    scores: list[GroupMemberScore] = Field(default_factory=list)
    match_type: MatchType = MatchType.LOW


class PhoneCheckResult(BaseModel):
    is_duplicate: bool = False
    existing_contact: Optional[PersonRecord] = None


class InternalDuplicateResult(BaseModel):
    has_duplicates: bool = False
    duplicate_numbers: list[str] = Field(default_factory=list)


class PhoneValidationResult(BaseModel):
    """Outcome of validating one contact's phone list in an add/edit form.

    `errors` block the save. `shared_with` is advisory: numbers that other
    contacts already use.
    """

    is_valid: bool = True
    errors: list[str] = Field(default_factory=list)
    shared_with: dict[str, PersonRecord] = Field(default_factory=dict)


class PhoneBatchError(BaseModel):
    person_index: int
    person_name: str
    phone: str
    type: str = Field(description="'batch_duplicate' or 'existing_duplicate'")
    message: str
    existing_contact: Optional[PersonRecord] = None


class ProfitResult(BaseModel):
    """Margin of one item, with cost converted into the sell unit."""

    sell: float
    cost: float
    sell_unit: str
    cost_unit: str
    converted_cost: Optional[float] = Field(
        default=None,
        description="Cost per sell unit; None when the units cannot be compared",
    )
    profit: Optional[float] = None
    profit_percent: Optional[float] = None
    comparable: bool = False


class PriceListStats(BaseModel):
    """Aggregate counters over a price tree."""

    item_count: int = 0
    category_count: int = 0
    total_sell_value: float = 0.0
    total_cost_value: float = 0.0
    avg_profit_margin: float = Field(
        default=0.0,
        description="Mean of (sell - cost) / cost * 100 over items with cost > 0",
    )
    unit_usage: dict[str, int] = Field(default_factory=dict)
    most_used_unit: Optional[str] = None
