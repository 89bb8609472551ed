"""JSON-file stores for cache entries, resource mappings and the download log.

Each store is a single JSON object keyed by id, loaded independently and
rewritten atomically on every change. A missing file is an empty store; an
unreadable one is logged and treated as a cold cache.
"""

import json
import threading
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Generic, TypeVar

import structlog
from pydantic import BaseModel, TypeAdapter, ValidationError

from statcache.errors import CacheCorruptionError
from statcache.metrics import CacheMetrics
from statcache.store.io import AtomicWriter
from statcache.store.models import CacheEntry, DownloadLogEntry, ResourceMapping


logger = structlog.get_logger()

ModelT = TypeVar("ModelT", bound=BaseModel)

ENTRIES_FILENAME = "entries.json"
MAPPINGS_FILENAME = "mappings.json"
DOWNLOAD_LOG_FILENAME = "download_log.json"


class JsonStore(Generic[ModelT]):
    """Thread-safe keyed store persisted as one JSON document."""

    def __init__(self, path: Path, model: type[ModelT], name: str) -> None:
        """Initialize the store. Nothing is read until first access.

        Args:
            path: JSON file location.
            model: Pydantic model of the stored values.
            name: Store name for logs.
        """
        self._path = path
        self._name = name
        self._adapter: TypeAdapter[dict[str, ModelT]] = TypeAdapter(
            dict[str, model]  # type: ignore[valid-type]
        )
        self._writer = AtomicWriter(component=f"store.{name}")
        self._lock = threading.RLock()
        self._items: dict[str, ModelT] | None = None
        self._log = logger.bind(component="store", store=name)

    @property
    def path(self) -> Path:
        return self._path

    def read(self) -> dict[str, ModelT]:
        """Read the store from disk.

        Returns:
            Stored items; empty if the file does not exist.

        Raises:
            CacheCorruptionError: If the file exists but cannot be decoded.
        """
        if not self._path.exists():
            return {}
        try:
            raw = self._path.read_bytes()
            if not raw.strip():
                return {}
            return self._adapter.validate_json(raw)
        except (OSError, ValueError, ValidationError) as e:
            msg = f"Unreadable {self._name} store: {e}"
            raise CacheCorruptionError(msg, path=str(self._path)) from e

    def load(self) -> dict[str, ModelT]:
        """Load the store, recovering from corruption with an empty cache."""
        with self._lock:
            try:
                self._items = self.read()
            except CacheCorruptionError as e:
                CacheMetrics.get_instance().record_corruption()
                self._log.warning(
                    "cache_corruption",
                    path=e.path,
                    error=e.message,
                    action="cold_start",
                )
                self._items = {}
            self._log.debug("store_loaded", count=len(self._items))
            return dict(self._items)

    def _ensure_loaded(self) -> dict[str, ModelT]:
        if self._items is None:
            self.load()
        return self._items or {}

    def get(self, key: str) -> ModelT | None:
        with self._lock:
            return self._ensure_loaded().get(key)

    def all(self) -> dict[str, ModelT]:
        """Snapshot of every stored item."""
        with self._lock:
            return dict(self._ensure_loaded())

    def put(self, key: str, item: ModelT) -> None:
        """Insert or replace one item and persist."""
        self.put_many({key: item})

    def put_many(self, items: Mapping[str, ModelT]) -> None:
        """Insert or replace several items with a single atomic write."""
        if not items:
            return
        with self._lock:
            current = dict(self._ensure_loaded())
            current.update(items)
            self._save(current)
            self._items = current

    def delete(self, key: str) -> bool:
        """Remove one item. Returns True if it existed."""
        with self._lock:
            current = dict(self._ensure_loaded())
            if current.pop(key, None) is None:
                return False
            self._save(current)
            self._items = current
            return True

    def _save(self, items: dict[str, ModelT]) -> None:
        payload = self._adapter.dump_python(items, mode="json")
        self._writer.write_text(
            self._path, json.dumps(payload, indent=2, sort_keys=True)
        )

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._ensure_loaded()

    def __len__(self) -> int:
        with self._lock:
            return len(self._ensure_loaded())

    def __iter__(self) -> Iterator[str]:
        return iter(self.all())


@dataclass
class CacheStores:
    """The three persisted stores rooted at one cache directory."""

    entries: JsonStore[CacheEntry]
    mappings: JsonStore[ResourceMapping]
    download_log: JsonStore[DownloadLogEntry]

    @classmethod
    def open(cls, cache_dir: Path) -> "CacheStores":
        """Create the stores under cache_dir.

        Args:
            cache_dir: Directory holding the JSON files.

        Returns:
            CacheStores; files are read lazily.
        """
        return cls(
            entries=JsonStore(cache_dir / ENTRIES_FILENAME, CacheEntry, "entries"),
            mappings=JsonStore(
                cache_dir / MAPPINGS_FILENAME, ResourceMapping, "mappings"
            ),
            download_log=JsonStore(
                cache_dir / DOWNLOAD_LOG_FILENAME, DownloadLogEntry, "download_log"
            ),
        )
