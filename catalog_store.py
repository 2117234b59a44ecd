"""
catalog_store.py - Per-user persistence for price trees and contacts.

Two interchangeable backends:
    CatalogStore          -> one JSON file per user, atomic writes
    PostgresCatalogStore  -> one JSONB row per user (upsert, last write wins)

get_store() picks PostgreSQL when DATABASE_URL is set.

Before a tree is written, every category gets `__orderKeys` and the root
order is saved next to it; after a read, mappings are rebuilt in that
order. JSONB does not keep object key order, so the lists are the only
durable record of how the user arranged the catalog.
"""

from __future__ import annotations

import json
import os
import re
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from logging_config import get_logger
from models import DEFAULT_CONTACT_CATEGORIES, ContactCategory, PersonRecord
from price_tree import deep_add_order_keys, restore_order, root_order

logger = get_logger(__name__)

_USER_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


def validate_user_id(user_id: Any) -> str:
    text = str(user_id or "").strip()
    if not _USER_ID_RE.match(text):
        raise ValueError("user_id must be 1-128 characters of letters, digits, '-' or '_'")
    return text


class CatalogState(BaseModel):
    """Everything persisted for one user."""

    model_config = ConfigDict(extra="ignore")

    user_id: str
    price_tree: dict[str, Any] = Field(default_factory=dict)
    root_order: list[str] = Field(default_factory=list)
    people: list[PersonRecord] = Field(default_factory=list)
    categories: list[ContactCategory] = Field(
        default_factory=lambda: [category.model_copy() for category in DEFAULT_CONTACT_CATEGORIES]
    )
    updated_at: Optional[str] = None

    @field_validator("price_tree", mode="before")
    @classmethod
    def _tree_default(cls, value: Any) -> dict[str, Any]:
        return value if isinstance(value, dict) else {}

    @field_validator("root_order", mode="before")
    @classmethod
    def _order_default(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        return [str(key) for key in value]

    @field_validator("categories", mode="before")
    @classmethod
    def _categories_default(cls, value: Any) -> list[Any]:
        if not isinstance(value, list) or not value:
            return [category.model_copy() for category in DEFAULT_CONTACT_CATEGORIES]
        return value

    def ordered_tree(self) -> dict[str, Any]:
        """The price tree with every mapping in its saved display order."""
        return restore_order(self.price_tree, self.root_order)


def _prepare(state: Union[CatalogState, dict[str, Any]], user_id: str) -> CatalogState:
    if isinstance(state, dict):
        normalized = CatalogState.model_validate({**state, "user_id": user_id})
    else:
        normalized = state.model_copy()
        normalized.user_id = user_id
    normalized.price_tree = deep_add_order_keys(normalized.price_tree)
    normalized.root_order = root_order(normalized.price_tree)
    normalized.updated_at = datetime.now(timezone.utc).isoformat()
    return normalized


def _dump(state: CatalogState) -> dict[str, Any]:
    return state.model_dump(mode="json", by_alias=True)


def _restore(raw: Any, user_id: str) -> CatalogState:
    state = CatalogState.model_validate({**raw, "user_id": user_id})
    state.price_tree = state.ordered_tree()
    return state


class CatalogStore:
    """Disk-backed store: one JSON file per user, written atomically."""

    def __init__(self, data_dir: Optional[str] = None) -> None:
        target = data_dir or os.getenv("CATALOG_DATA_DIR", "data")
        self.data_dir = Path(target).resolve()

    @staticmethod
    def default_state(user_id: str) -> CatalogState:
        return CatalogState(user_id=user_id)

    def path_for(self, user_id: str) -> Path:
        return self.data_dir / f"{validate_user_id(user_id)}.json"

    def load(self, user_id: str) -> CatalogState:
        """Load a user's state, returning defaults if missing or unreadable."""
        path = self.path_for(user_id)
        if not path.exists():
            return self.default_state(user_id)

        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            if not isinstance(raw, dict):
                raise ValueError("catalog file must hold a JSON object")
            return _restore(raw, user_id)
        except Exception as exc:
            logger.warning(
                "catalog_load_warning | user_id=%s | path=%s | error_type=%s | error=%s | fallback='default'",
                user_id,
                path,
                type(exc).__name__,
                exc,
            )
            return self.default_state(user_id)

    def save(self, user_id: str, state: Union[CatalogState, dict[str, Any]]) -> CatalogState:
        """Persist a user's state via temp-file + replace."""
        path = self.path_for(user_id)
        normalized = _prepare(state, user_id)
        path.parent.mkdir(parents=True, exist_ok=True)

        with tempfile.NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            dir=str(path.parent),
            delete=False,
            suffix=".tmp",
            prefix="catalog-",
        ) as tmp_file:
            json.dump(_dump(normalized), tmp_file, ensure_ascii=False, indent=2)
            tmp_file.flush()
            os.fsync(tmp_file.fileno())
            tmp_path = Path(tmp_file.name)

        os.replace(tmp_path, path)
        logger.debug("catalog_saved | user_id=%s | path=%s", user_id, path)
        return normalized

    def reset(self, user_id: str) -> None:
        """Remove a user's file if present."""
        path = self.path_for(user_id)
        try:
            if path.exists():
                path.unlink()
        except OSError as exc:
            logger.warning(
                "catalog_reset_warning | user_id=%s | path=%s | error_type=%s | error=%s",
                user_id,
                path,
                type(exc).__name__,
                exc,
            )


class PostgresCatalogStore:
    """PostgreSQL-backed store; one JSONB payload row per user."""

    def __init__(self, database_url: str, table_name: str = "catalog_state") -> None:
        self.database_url = str(database_url or "").strip()
        if not self.database_url:
            raise ValueError("database_url is required for PostgresCatalogStore.")
        if not re.match(r"^[A-Za-z_][A-Za-z0-9_]*$", table_name):
            raise ValueError("table_name must be a valid SQL identifier.")
        self.table_name = table_name
        self._psycopg = self._import_psycopg()

    @staticmethod
    def default_state(user_id: str) -> CatalogState:
        return CatalogState(user_id=user_id)

    @staticmethod
    def _import_psycopg():
        try:
            import psycopg  # type: ignore

            return psycopg
        except ImportError as exc:
            raise RuntimeError(
                "PostgreSQL store requires psycopg. Install with: pip install 'psycopg[binary]'"
            ) from exc

    def _connect(self):
        return self._psycopg.connect(self.database_url, autocommit=True)

    def _ensure_table(self, conn) -> None:
        query = (
            f"CREATE TABLE IF NOT EXISTS {self.table_name} ("
            "user_id TEXT PRIMARY KEY,"
            "payload JSONB NOT NULL,"
            "updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()"
            ")"
        )
        with conn.cursor() as cur:
            cur.execute(query)

    def load(self, user_id: str) -> CatalogState:
        """Load a user's row, returning defaults when missing or unreadable."""
        user_id = validate_user_id(user_id)
        try:
            with self._connect() as conn:
                self._ensure_table(conn)
                with conn.cursor() as cur:
                    cur.execute(
                        f"SELECT payload FROM {self.table_name} WHERE user_id = %s",
                        (user_id,),
                    )
                    row = cur.fetchone()

            if not row:
                return self.default_state(user_id)

            payload = row[0]
            if isinstance(payload, str):
                payload = json.loads(payload)
            return _restore(payload, user_id)
        except Exception as exc:
            logger.warning(
                "catalog_pg_load_warning | user_id=%s | error_type=%s | error=%s | fallback='default'",
                user_id,
                type(exc).__name__,
                exc,
            )
            return self.default_state(user_id)

    def save(self, user_id: str, state: Union[CatalogState, dict[str, Any]]) -> CatalogState:
        """Upsert a user's state."""
        user_id = validate_user_id(user_id)
        normalized = _prepare(state, user_id)
        query = (
            f"INSERT INTO {self.table_name} (user_id, payload, updated_at) "
            "VALUES (%s, %s::jsonb, NOW()) "
            "ON CONFLICT (user_id) "
            "DO UPDATE SET payload = EXCLUDED.payload, updated_at = NOW()"
        )
        with self._connect() as conn:
            self._ensure_table(conn)
            with conn.cursor() as cur:
                cur.execute(query, (user_id, json.dumps(_dump(normalized), ensure_ascii=False)))
        return normalized

    def reset(self, user_id: str) -> None:
        user_id = validate_user_id(user_id)
        try:
            with self._connect() as conn:
                self._ensure_table(conn)
                with conn.cursor() as cur:
                    cur.execute(f"DELETE FROM {self.table_name} WHERE user_id = %s", (user_id,))
        except Exception as exc:
            logger.warning(
                "catalog_pg_reset_warning | user_id=%s | error_type=%s | error=%s",
                user_id,
                type(exc).__name__,
                exc,
            )


def get_store() -> Union[CatalogStore, PostgresCatalogStore]:
    """Pick the backend from the environment."""
    database_url = str(os.getenv("DATABASE_URL", "") or "").strip()
    if database_url:
        table = os.getenv("CATALOG_TABLE", "catalog_state")
        logger.info("catalog_store_selected | backend=postgres | table=%s", table)
        return PostgresCatalogStore(database_url, table)
    store = CatalogStore()
    logger.info("catalog_store_selected | backend=json | data_dir=%s", store.data_dir)
    return store
