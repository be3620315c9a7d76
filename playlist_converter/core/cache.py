"""Search result cache with 24-hour TTL"""

import json
import logging
import os
import tempfile
import threading
import time
from dataclasses import asdict
from pathlib import Path

from core.models import CatalogItem, SearchQuery, Service

logger = logging.getLogger(__name__)

TTL_HOURS = 24
TTL_SECONDS = TTL_HOURS * 60 * 60


class SearchCache:
    """Maps (service, query) to the matched catalog item.

    Only hits are stored: a miss today may be in the catalog tomorrow.
    Shared by concurrent matcher threads, so every access holds the lock.
    """

    def __init__(self, cache_file: Path | None = None, ttl: float = TTL_SECONDS):
        self._file = cache_file
        self._ttl = ttl
        self._cache: dict[str, dict] = {}
        self._dirty = False
        self._lock = threading.Lock()
        self._load()
        self._prune_expired()

    def _load(self) -> None:
        if self._file is None or not self._file.exists():
            return

        try:
            data = json.loads(self._file.read_text())
            self._cache = {k: v for k, v in data.items() if isinstance(v, dict) and "item" in v}
            logger.debug(f"Loaded {len(self._cache)} cached search results")
        except Exception as e:
            logger.warning(f"Cache load failed: {e}")
            self._cache = {}

    def _prune_expired(self) -> None:
        now = time.time()
        expired = [k for k, v in self._cache.items() if now - v.get("cached_at", 0) > self._ttl]
        if expired:
            for key in expired:
                del self._cache[key]
            self._dirty = True
            logger.info(f"Pruned {len(expired)} expired cache entries")

    def save(self) -> None:
        if self._file is None:
            return

        with self._lock:
            if not self._dirty:
                return
            snapshot = dict(self._cache)

        try:
            self._file.parent.mkdir(parents=True, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(dir=self._file.parent, prefix=".cache_", suffix=".tmp")
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    json.dump(snapshot, f, indent=2)
                os.replace(temp_path, self._file)
                with self._lock:
                    self._dirty = False
            except Exception:
                if os.path.exists(temp_path):
                    os.unlink(temp_path)
                raise
        except Exception as e:
            logger.error(f"Cache save failed: {e}")

    @staticmethod
    def _make_key(service: Service, query: SearchQuery) -> str:
        return f"{service.value}\x00{query.title.lower().strip()}\x00{query.artist.lower().strip()}"

    def get(self, service: Service, query: SearchQuery) -> CatalogItem | None:
        key = self._make_key(service, query)
        with self._lock:
            entry = self._cache.get(key)
            if not entry:
                return None
            if time.time() - entry.get("cached_at", 0) > self._ttl:
                del self._cache[key]
                self._dirty = True
                return None
            return CatalogItem(**entry["item"])

    def set(self, service: Service, query: SearchQuery, item: CatalogItem) -> None:
        key = self._make_key(service, query)
        with self._lock:
            self._cache[key] = {"item": asdict(item), "cached_at": time.time()}
            self._dirty = True

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)
