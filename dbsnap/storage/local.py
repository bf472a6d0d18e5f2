import shutil
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from dbsnap.errors import StorageError, StorageErrorKind
from dbsnap.storage.base import SnapshotStorage

DEFAULT_STORAGE_PATH = Path("db-snapshots")


@contextmanager
def _storage_errors(ref):
    """Translate filesystem errors into StorageError for ref."""
    try:
        yield
    except FileNotFoundError as e:
        raise StorageError(StorageErrorKind.NOT_FOUND, ref, f"Snapshot file {ref!r} not found") from e
    except PermissionError as e:
        raise StorageError(StorageErrorKind.PERMISSION_DENIED, ref, str(e)) from e
    except IsADirectoryError as e:
        raise StorageError(StorageErrorKind.NOT_FOUND, ref, f"{ref!r} is a directory") from e
    except OSError as e:
        raise StorageError(StorageErrorKind.IO_FAILURE, ref, str(e)) from e


class LocalStorage(SnapshotStorage):
    """Snapshots stored as plain files in one directory."""

    name = "local"

    def __init__(self, root=None):
        self.root = Path(root or DEFAULT_STORAGE_PATH).resolve()

    def _path(self, ref):
        path = (self.root / ref).resolve()
        # Keep refs like "../etc/passwd" inside the disk
        if path.parent != self.root:
            raise StorageError(StorageErrorKind.PERMISSION_DENIED, ref, f"Unsafe snapshot name: {ref!r}")
        return path

    def read_stream(self, ref):
        path = self._path(ref)
        with _storage_errors(ref):
            return open(path, "rb")

    def get_bytes(self, ref):
        path = self._path(ref)
        with _storage_errors(ref):
            return path.read_bytes()

    def write_stream(self, ref, fileobj):
        path = self._path(ref)
        with _storage_errors(ref):
            self.root.mkdir(parents=True, exist_ok=True)
            with open(path, "wb") as out:
                shutil.copyfileobj(fileobj, out)

    def delete(self, ref):
        path = self._path(ref)
        with _storage_errors(ref):
            path.unlink()

    def size(self, ref):
        path = self._path(ref)
        with _storage_errors(ref):
            return path.stat().st_size

    def last_modified(self, ref):
        path = self._path(ref)
        with _storage_errors(ref):
            return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)

    def list(self):
        if not self.root.exists():
            return []
        with _storage_errors(str(self.root)):
            return sorted(entry.name for entry in self.root.iterdir() if entry.is_file())

    def exists(self, ref):
        return self._path(ref).is_file()

    def __repr__(self):
        return f"<LocalStorage {str(self.root)!r}>"
