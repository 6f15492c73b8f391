"""
Durable store for cache records.

One record per (collection, key). Every public operation is best-effort:
I/O and decoding failures are logged, counted, and answered with
``None``/``False`` so that an unavailable store behaves like a cold cache.
"""
import asyncio
import hashlib
import json
import os
import tempfile
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional
from urllib.parse import quote, unquote

import structlog

from config.logging import log_error
from monitoring.cache_metrics import record_error
from .exceptions import CacheError, MalformedRecord, StorageUnavailable

logger = structlog.get_logger()

RECORD_SUFFIX = ".json"
TEMP_SUFFIX = ".tmp"

# Longest file name most filesystems accept, in bytes
MAX_NAME_BYTES = 255
# quote() never emits "%%", so digest names cannot collide with encoded ones
HASHED_PREFIX = "%%"
STORED_KEY_FIELD = "storedKey"
STORED_VALUE_FIELD = "value"


class DurableStore(ABC):
    """Collection-keyed persistence used by the durable cache tier."""

    @abstractmethod
    async def read(self, collection: str, key: str) -> Optional[Any]:
        """Return the stored value, or None if absent or unreadable."""

    @abstractmethod
    async def write(self, collection: str, key: str, value: Any) -> bool:
        """Persist a value, replacing any previous one. False on failure."""

    @abstractmethod
    async def delete(self, collection: str, key: str) -> bool:
        """Remove a record. Deleting an absent record succeeds."""

    @abstractmethod
    async def list_all(self, collection: str) -> Dict[str, Any]:
        """Return every readable record in a collection, keyed by key."""


def encode_name(name: str, suffix: str = "") -> str:
    """
    Encode a collection or key as a single safe path component.

    Names whose encoded form (plus ``suffix``) would exceed ``MAX_NAME_BYTES``
    are replaced by a fixed-length digest.
    """
    encoded = quote(str(name), safe="-_", errors="surrogatepass").replace(".", "%2E")
    if len(encoded) + len(suffix) > MAX_NAME_BYTES:
        digest = hashlib.sha256(str(name).encode("utf-8", "surrogatepass")).hexdigest()
        return HASHED_PREFIX + digest
    return encoded


def decode_name(component: str) -> str:
    return unquote(component, errors="surrogatepass")


def is_hashed_name(component: str) -> bool:
    return component.startswith(HASHED_PREFIX)


class FileStore(DurableStore):
    """
    JSON file per record under ``<data_dir>/<collection>/<key>.json``.

    Writes are serialized in full, written to a temporary file in the
    collection directory, and moved into place with ``os.replace``, so a
    concurrent reader sees either the old or the new record. Blocking file
    I/O runs in a worker thread.

    Keys too long for a file name are stored under a digest, with the
    original key kept inside the file as ``{"storedKey": ..., "value": ...}``.
    """

    def __init__(self, data_dir: str):
        self.data_dir = os.path.abspath(data_dir)

    def _collection_dir(self, collection: str) -> str:
        return os.path.join(self.data_dir, encode_name(collection))

    def _record_name(self, key: str) -> str:
        return encode_name(key, RECORD_SUFFIX)

    def _record_path(self, collection: str, key: str) -> str:
        return os.path.join(self._collection_dir(collection), self._record_name(key) + RECORD_SUFFIX)

    def _read_file(self, path: str) -> Optional[Any]:
        try:
            with open(path, "rb") as f:
                content = f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageUnavailable("read", path, e) from e

        try:
            return json.loads(content)
        except (ValueError, RecursionError) as e:
            raise MalformedRecord(path, f"{type(e).__name__}: {e}") from e

    def _unwrap_hashed(self, path: str, content: Any):
        """Split a digest-named file into its original key and value."""
        if (not isinstance(content, dict)
                or not isinstance(content.get(STORED_KEY_FIELD), str)
                or STORED_VALUE_FIELD not in content):
            raise MalformedRecord(path, "digest-named record without its stored key")
        return content[STORED_KEY_FIELD], content[STORED_VALUE_FIELD]

    def _read_record(self, collection: str, key: str) -> Optional[Any]:
        name = self._record_name(key)
        path = os.path.join(self._collection_dir(collection), name + RECORD_SUFFIX)
        content = self._read_file(path)
        if content is None or not is_hashed_name(name):
            return content

        stored_key, value = self._unwrap_hashed(path, content)
        if stored_key != key:
            return None
        return value

    def _write_file(self, collection: str, key: str, value: Any) -> None:
        name = self._record_name(key)
        directory = self._collection_dir(collection)
        path = os.path.join(directory, name + RECORD_SUFFIX)
        if is_hashed_name(name):
            value = {STORED_KEY_FIELD: key, STORED_VALUE_FIELD: value}
        try:
            serialized = json.dumps(value, indent=2)
        except (TypeError, ValueError, RecursionError) as e:
            raise StorageUnavailable("serialize", path, e) from e

        tmp_path = None
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".", suffix=TEMP_SUFFIX)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(serialized)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
            tmp_path = None
        except OSError as e:
            raise StorageUnavailable("write", path, e) from e
        finally:
            if tmp_path is not None:
                try:
                    os.remove(tmp_path)
                except OSError:
                    pass

    def _delete_file(self, path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StorageUnavailable("delete", path, e) from e

    def _list_files(self, collection: str) -> Dict[str, Any]:
        directory = self._collection_dir(collection)
        try:
            names = os.listdir(directory)
        except FileNotFoundError:
            return {}
        except OSError as e:
            raise StorageUnavailable("list", directory, e) from e

        records = {}
        for name in sorted(names):
            if not name.endswith(RECORD_SUFFIX):
                continue
            component = name[:-len(RECORD_SUFFIX)]
            path = os.path.join(directory, name)
            try:
                value = self._read_file(path)
                if value is None:
                    continue
                if is_hashed_name(component):
                    key, value = self._unwrap_hashed(path, value)
                else:
                    key = decode_name(component)
            except CacheError as e:
                log_error(logger, e, {"collection": collection, "file": name},
                          event="cache_record_skipped")
                record_error("list")
                continue
            records[key] = value
        return records

    async def read(self, collection: str, key: str) -> Optional[Any]:
        try:
            return await asyncio.to_thread(self._read_record, collection, key)
        except CacheError as e:
            log_error(logger, e, {"collection": collection, "key": key},
                      event="cache_read_failed")
            record_error("read")
            return None

    async def write(self, collection: str, key: str, value: Any) -> bool:
        try:
            await asyncio.to_thread(self._write_file, collection, key, value)
            return True
        except CacheError as e:
            log_error(logger, e, {"collection": collection, "key": key},
                      event="cache_write_failed")
            record_error("write")
            return False

    async def delete(self, collection: str, key: str) -> bool:
        try:
            await asyncio.to_thread(self._delete_file, self._record_path(collection, key))
            return True
        except CacheError as e:
            log_error(logger, e, {"collection": collection, "key": key},
                      event="cache_delete_failed")
            record_error("delete")
            return False

    async def list_all(self, collection: str) -> Dict[str, Any]:
        try:
            return await asyncio.to_thread(self._list_files, collection)
        except CacheError as e:
            log_error(logger, e, {"collection": collection},
                      event="cache_list_failed")
            record_error("list")
            return {}
