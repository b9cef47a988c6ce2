"""
JSON file record store.

Every collection lives in its own file as a wrapper object with one array,
e.g. ``{"items": [...]}``. Reads load the whole file, writes replace the whole
file. Mutations go through ``transaction`` which holds the collection's lock
for the read-modify-write, so concurrent writers to one collection are
serialized instead of losing updates.
"""
import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, List

from errors import StorageError

logger = logging.getLogger("gallery.database")

# collection name -> (file name, wrapper key)
COLLECTIONS: Dict[str, tuple] = {
    "users": ("users.json", "users"),
    "content": ("content.json", "items"),
    "payments": ("payments.json", "payments"),
}


class RecordStore:
    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)
        self._locks = {name: threading.RLock() for name in COLLECTIONS}

    def path(self, collection: str) -> Path:
        filename, _ = self._layout(collection)
        return self.data_dir / filename

    def read(self, collection: str) -> List[dict]:
        with self._lock(collection):
            return self._load(collection)

    def write(self, collection: str, records: List[dict]) -> None:
        with self._lock(collection):
            self._dump(collection, records)

    @contextmanager
    def transaction(self, collection: str) -> Iterator[List[dict]]:
        """Yield the collection as a mutable list and persist it if the block succeeds."""
        with self._lock(collection):
            records = self._load(collection)
            yield records
            self._dump(collection, records)

    def counts(self) -> Dict[str, int]:
        return {name: len(self.read(name)) for name in COLLECTIONS}

    # Internals

    def _lock(self, collection: str) -> threading.RLock:
        self._layout(collection)
        return self._locks[collection]

    def _layout(self, collection: str) -> tuple:
        try:
            return COLLECTIONS[collection]
        except KeyError:
            raise StorageError(f"Unknown collection: {collection}")

    def _load(self, collection: str) -> List[dict]:
        _, key = self._layout(collection)
        path = self.path(collection)
        if not path.exists():
            self._dump(collection, [])
            return []
        try:
            with open(path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except (OSError, ValueError) as e:
            logger.error("Failed to read %s: %s", path, e, exc_info=True)
            raise StorageError(f"Failed to read {collection}")
        records = data.get(key) if isinstance(data, dict) else None
        if not isinstance(records, list):
            logger.error("Malformed collection file %s: missing %r array", path, key)
            raise StorageError(f"Malformed {collection} data")
        return records

    def _dump(self, collection: str, records: List[dict]) -> None:
        _, key = self._layout(collection)
        path = self.path(collection)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            payload = json.dumps({key: records}, indent=2, ensure_ascii=False)
            fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(payload)
                os.replace(tmp_path, path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except (OSError, TypeError, ValueError) as e:
            logger.error("Failed to write %s: %s", path, e, exc_info=True)
            raise StorageError(f"Failed to write {collection}")
