import shutil
import tempfile
from pathlib import Path


class TemporaryDownload:
    """Scratch directory holding one local copy of a snapshot.

    Usage:
        with TemporaryDownload("backup.sql.gz") as download:
            copy_stream(stream, download.path)
            ...
        # file and directory are gone here, whatever happened inside

    parent: directory to create the scratch directory in (default: system temp dir).
    """

    def __init__(self, file_name, parent=None):
        self.file_name = Path(file_name).name
        self.parent = Path(parent) if parent else None
        self.directory = None
        self.path = None

    def create(self):
        if self.parent is not None:
            self.parent.mkdir(parents=True, exist_ok=True)
        self.directory = Path(tempfile.mkdtemp(prefix="dbsnap-", dir=self.parent))
        self.path = self.directory / self.file_name
        return self

    def cleanup(self):
        """Remove the file, then the directory. Safe to call more than once."""
        if self.directory is None:
            return
        if self.path is not None:
            self.path.unlink(missing_ok=True)
        # Anything else a tool left behind goes with the directory
        shutil.rmtree(self.directory, ignore_errors=True)
        self.directory = None

    def __enter__(self):
        return self.create()

    def __exit__(self, exc_type, exc, tb):
        self.cleanup()
        return False
