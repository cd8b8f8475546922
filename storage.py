"""
Record store: named JSON-serialisable records kept on durable storage.

Each locator (``blogs``, ``admin``) holds one full snapshot. Callers read the
whole value, change their own copy and write the whole value back, so two
concurrent writers follow last-writer-wins.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from bson.errors import BSONError
from pymongo import MongoClient
from pymongo.errors import PyMongoError

log = logging.getLogger(__name__)


def timestamp() -> str:
    """UTC now as an ISO-8601 string with millisecond precision, e.g. 2024-05-01T09:30:00.000Z."""
    return (
        datetime.now(timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


class RecordStore(ABC):
    name = "abstract"

    @abstractmethod
    def read_strict(self, locator: str) -> Any:
        """Return the stored value.

        Raises FileNotFoundError when nothing is stored under ``locator`` (or
        its directory is missing), ValueError when the content cannot be
        parsed and OSError for other storage faults.
        """

    @abstractmethod
    def write(self, locator: str, value: Any) -> bool:
        """Replace the value under ``locator``. Never raises."""

    @abstractmethod
    def exists(self, locator: str) -> bool:
        ...

    @abstractmethod
    def remove(self, locator: str) -> bool:
        ...

    def prepare(self) -> None:
        """Create whatever container the records live in."""

    def read(self, locator: str, default: Any) -> Any:
        try:
            return self.read_strict(locator)
        except FileNotFoundError:
            return copy.deepcopy(default)
        except (OSError, ValueError) as exc:
            log.warning("Could not read %s, using fallback value: %s", locator, exc)
            return copy.deepcopy(default)

    def initialize(self, locator: str, default_factory: Callable[[], Any]) -> bool:
        """Write default content under ``locator`` unless something is stored there.

        Returns True when the default payload was generated. Failing to create
        the container is fatal; failing to write the payload is only logged.
        """
        try:
            self.read_strict(locator)
            return False
        except FileNotFoundError:
            pass
        except (OSError, ValueError) as exc:
            log.warning("%s exists but is unreadable, leaving it in place: %s", locator, exc)
            return False

        self.prepare()
        if not self.write(locator, default_factory()):
            log.warning("Could not write initial %s, continuing without it", locator)
        else:
            log.info("Initialized %s", locator)
        return True


class JsonFileStore(RecordStore):
    """One pretty-printed UTF-8 JSON document per locator under ``data_dir``."""

    name = "file"

    def __init__(self, data_dir) -> None:
        self.data_dir = Path(data_dir)

    def path_for(self, locator: str) -> Path:
        filename = locator if locator.endswith(".json") else f"{locator}.json"
        return self.data_dir / filename

    def prepare(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def read_strict(self, locator: str) -> Any:
        with open(self.path_for(locator), "r", encoding="utf-8") as fh:
            return json.load(fh)

    def write(self, locator: str, value: Any) -> bool:
        path = self.path_for(locator)
        try:
            payload = json.dumps(value, indent=2, ensure_ascii=False)
            fd, tmp_name = tempfile.mkstemp(
                dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    fh.write(payload)
                os.replace(tmp_name, path)
            except Exception:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except (OSError, TypeError, ValueError) as exc:
            log.error("Could not write %s: %s", path, exc)
            return False
        log.debug("Wrote %s", path)
        return True

    def exists(self, locator: str) -> bool:
        return self.path_for(locator).exists()

    def remove(self, locator: str) -> bool:
        try:
            self.path_for(locator).unlink()
        except OSError:
            return False
        return True


class MemoryStore(RecordStore):
    """Process-local store for hosts without a writable disk.

    Values are kept serialised so no caller ever holds a live reference to the
    stored snapshot.
    """

    name = "memory"

    def __init__(self) -> None:
        self._documents: Dict[str, str] = {}

    def read_strict(self, locator: str) -> Any:
        if locator not in self._documents:
            raise FileNotFoundError(locator)
        return json.loads(self._documents[locator])

    def write(self, locator: str, value: Any) -> bool:
        try:
            self._documents[locator] = json.dumps(value)
        except (TypeError, ValueError) as exc:
            log.error("Could not serialise %s: %s", locator, exc)
            return False
        return True

    def exists(self, locator: str) -> bool:
        return locator in self._documents

    def remove(self, locator: str) -> bool:
        return self._documents.pop(locator, None) is not None


class MongoStore(RecordStore):
    """Document-database adapter: one document per locator in ``collection``.

    The whole value lives in the document's ``value`` field, so each write is
    a single-document replace and either lands completely or not at all.
    """

    name = "mongo"

    def __init__(self, database, collection: str = "records") -> None:
        self.db = database
        self.collection = database[collection]

    def read_strict(self, locator: str) -> Any:
        try:
            doc = self.collection.find_one({"_id": locator})
        except PyMongoError as exc:
            raise OSError(f"MongoDB read of {locator} failed: {exc}") from exc
        if doc is None:
            raise FileNotFoundError(locator)
        if "value" not in doc:
            raise ValueError(f"MongoDB document {locator} has no value")
        return doc["value"]

    def write(self, locator: str, value: Any) -> bool:
        try:
            self.collection.replace_one(
                {"_id": locator}, {"_id": locator, "value": value}, upsert=True
            )
        except (PyMongoError, BSONError) as exc:
            log.error("MongoDB write of %s failed: %s", locator, exc)
            return False
        return True

    def exists(self, locator: str) -> bool:
        try:
            return self.collection.find_one({"_id": locator}, {"_id": 1}) is not None
        except PyMongoError:
            return False

    def remove(self, locator: str) -> bool:
        try:
            return self.collection.delete_one({"_id": locator}).deleted_count > 0
        except PyMongoError:
            return False


def connect_mongo(uri: str, database: str, timeout_ms: int = 5000) -> Optional[MongoStore]:
    try:
        client = MongoClient(uri, serverSelectionTimeoutMS=timeout_ms)
        client.admin.command("ping")
    except PyMongoError as exc:
        log.warning("MongoDB connection failed: %s", exc)
        return None
    log.info("Connected to MongoDB database %s", database)
    return MongoStore(client[database])


def build_store(settings) -> RecordStore:
    """Pick the storage adapter once, at startup."""
    backend = str(settings.get("STORAGE_BACKEND", "file")).lower()
    if backend == "memory":
        log.info("Using in-memory storage; nothing survives a restart")
        return MemoryStore()
    if backend == "mongo":
        uri = settings.get("MONGODB_URI")
        if uri:
            store = connect_mongo(uri, settings.get("MONGODB_DB", "blog"))
            if store is not None:
                return store
            log.warning("Falling back to file storage")
        else:
            log.warning("STORAGE_BACKEND is mongo but MONGODB_URI is empty, using file storage")
    elif backend != "file":
        raise ValueError(f"Unknown storage backend: {backend}")

    data_dir = settings["DATA_DIR"]
    log.info("Using file storage at %s", data_dir)
    return JsonFileStore(data_dir)
