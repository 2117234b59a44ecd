"""
photo_cache.py - Contact photo cache service.

A PhotoCache instance is created once (see api.py) and handed to whatever
needs it. Entries map contact id -> photo data URL and are written to a
JSON file atomically when a path is configured.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Mapping, Optional

from logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_KEEP = 50


class PhotoCache:
    """Photo store keyed by contact id, oldest entries evicted first."""

    def __init__(self, path: Optional[str] = None, max_entries: int = DEFAULT_KEEP) -> None:
        self.path = Path(path).resolve() if path else None
        self.max_entries = max_entries
        self._photos: dict[str, str] = {}
        self._loading: set[str] = set()
        self._load()

    def _load(self) -> None:
        if self.path is None or not self.path.exists():
            return
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(raw, dict):
                raise ValueError("photo cache file must hold a JSON object")
            self._photos = {str(key): str(value) for key, value in raw.items() if value}
        except (OSError, ValueError) as exc:
            logger.warning(
                "photo_cache_load_warning | path=%s | error_type=%s | error=%s | fallback='empty'",
                self.path,
                type(exc).__name__,
                exc,
            )
            self._photos = {}

    def _persist(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            dir=str(self.path.parent),
            delete=False,
            suffix=".tmp",
            prefix="photos-",
        ) as tmp_file:
            json.dump(self._photos, tmp_file, ensure_ascii=False)
            tmp_file.flush()
            os.fsync(tmp_file.fileno())
            tmp_path = Path(tmp_file.name)
        os.replace(tmp_path, self.path)

    def get(self, contact_id: str) -> Optional[str]:
        return self._photos.get(contact_id)

    def has(self, contact_id: str) -> bool:
        return contact_id in self._photos

    def set(self, contact_id: str, photo: Optional[str]) -> None:
        """Cache a photo; None or '' removes the entry instead."""
        if not photo:
            self.remove(contact_id)
            return
        # Re-inserting moves the entry to the newest position.
        self._photos.pop(contact_id, None)
        self._photos[contact_id] = photo
        self._loading.discard(contact_id)
        self._evict()
        self._persist()

    def remove(self, contact_id: str) -> None:
        self._loading.discard(contact_id)
        if self._photos.pop(contact_id, None) is not None:
            self._persist()

    def batch_set(self, photos: Mapping[str, Optional[str]]) -> None:
        for contact_id, photo in photos.items():
            self._loading.discard(contact_id)
            if photo:
                self._photos.pop(contact_id, None)
                self._photos[contact_id] = photo
            else:
                self._photos.pop(contact_id, None)
        self._evict()
        self._persist()

    def is_loading(self, contact_id: str) -> bool:
        return contact_id in self._loading

    def start_loading(self, contact_id: str) -> None:
        self._loading.add(contact_id)

    def finish_loading(self, contact_id: str) -> None:
        self._loading.discard(contact_id)

    def clear(self) -> None:
        self._photos.clear()
        self._loading.clear()
        self._persist()

    def clear_old_photos(self, keep: int = DEFAULT_KEEP) -> int:
        """Drop all but the `keep` most recently set photos; returns how many went."""
        excess = len(self._photos) - max(keep, 0)
        if excess <= 0:
            return 0
        for contact_id in list(self._photos)[:excess]:
            del self._photos[contact_id]
        self._persist()
        logger.info("photo_cache_trimmed | removed=%s | kept=%s", excess, len(self._photos))
        return excess

    def _evict(self) -> None:
        excess = len(self._photos) - self.max_entries
        if excess > 0:
            for contact_id in list(self._photos)[:excess]:
                del self._photos[contact_id]

    def get_stats(self) -> dict[str, float]:
        total_bytes = sum(len(photo) for photo in self._photos.values())
        return {
            "count": len(self._photos),
            "total_size_kb": round(total_bytes / 1024, 2),
            "loading": len(self._loading),
        }
