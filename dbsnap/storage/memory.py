"""In-memory snapshot storage.

Used by the test suite and by callers embedding dbsnap with their own object store
shim. Objects live in a dict; modification times are recorded on write and can be
pinned through set_last_modified().
"""

import io
import threading
from datetime import datetime, timezone

from dbsnap.errors import StorageError, StorageErrorKind
from dbsnap.storage.base import SnapshotStorage


class MemoryStorage(SnapshotStorage):

    name = "memory"

    def __init__(self, objects=None):
        self._lock = threading.Lock()
        self._objects = {}
        self._mtimes = {}
        self.deleted = []
        for ref, data in (objects or {}).items():
            self.put(ref, data)

    def put(self, ref, data, modified=None):
        """Store raw bytes under ref."""
        with self._lock:
            self._objects[ref] = bytes(data)
            self._mtimes[ref] = modified or datetime.now(timezone.utc)

    def set_last_modified(self, ref, modified):
        with self._lock:
            self._require(ref)
            self._mtimes[ref] = modified

    def _require(self, ref):
        if ref not in self._objects:
            raise StorageError(StorageErrorKind.NOT_FOUND, ref, f"Snapshot file {ref!r} not found")
        return self._objects[ref]

    def read_stream(self, ref):
        with self._lock:
            return io.BytesIO(self._require(ref))

    def get_bytes(self, ref):
        with self._lock:
            return self._require(ref)

    def write_stream(self, ref, fileobj):
        self.put(ref, fileobj.read())

    def delete(self, ref):
        with self._lock:
            self._require(ref)
            del self._objects[ref]
            del self._mtimes[ref]
            self.deleted.append(ref)

    def size(self, ref):
        with self._lock:
            return len(self._require(ref))

    def last_modified(self, ref):
        with self._lock:
            self._require(ref)
            return self._mtimes[ref]

    def list(self):
        with self._lock:
            return sorted(self._objects)
