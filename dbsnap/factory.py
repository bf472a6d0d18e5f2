"""Creating snapshots.

A dump is written to a scratch directory by the connection's driver, optionally
gzipped there in chunks, and then streamed up to the disk. Nothing is left on the
local filesystem afterwards, whether or not the dump succeeded.
"""

import gzip
import shutil
from datetime import datetime

from dbsnap.drivers import DriverContext, get_driver
from dbsnap.errors import DumpError, StorageError
from dbsnap.events import CreatedSnapshot, CreatingSnapshot, EventDispatcher
from dbsnap.snapshot import GZIP, Snapshot
from dbsnap.tempdir import TemporaryDownload
from dbsnap.transfer import CHUNK_SIZE

NAME_FORMAT = "%Y-%m-%d_%H-%M-%S"


def default_snapshot_name():
    return datetime.now().strftime(NAME_FORMAT)


def _gzip_file(source, destination):
    with open(source, "rb") as raw, gzip.open(destination, "wb") as packed:
        shutil.copyfileobj(raw, packed, CHUNK_SIZE)


class SnapshotFactory:

    def __init__(self, storage, registry, events=None, output=None, temporary_directory=None):
        self.storage = storage
        self.registry = registry
        self.events = events or EventDispatcher()
        self.output = output
        self.temporary_directory = temporary_directory

    def can_compress(self, connection_name=None):
        """Whether snapshots of this connection can be stored gzipped and still load."""
        config = self.registry.resolve_config(connection_name or self.registry.default)
        return get_driver(config.driver).accepts_gzip

    def create(self, name=None, connection_name=None, compress=False, cancel=None):
        """Dump a connection into a new snapshot. Returns the Snapshot.

        compress is refused with DumpError for drivers that restore the stored
        file as-is (postgres), since the result could never be loaded.
        """
        name = name or default_snapshot_name()
        file_name = f"{name}.sql" + (f".{GZIP}" if compress else "")

        config = self.registry.resolve_config(connection_name or self.registry.default)
        driver = get_driver(config.driver)
        if compress and not driver.accepts_gzip:
            raise DumpError(
                f"Driver {config.driver!r} cannot load gzipped snapshots; create {name} without compression",
                snapshot=file_name,
            )

        if self.storage.exists(file_name):
            raise DumpError(f"Snapshot {file_name} already exists", snapshot=file_name)

        self.events.dispatch(CreatingSnapshot(file_name, self.storage, config.name))

        context = DriverContext(
            self.registry, self.events,
            output=self.output,
            temporary_directory=self.temporary_directory,
            cancel=cancel,
        )
        with TemporaryDownload(f"{name}.sql", self.temporary_directory) as scratch:
            driver.dump(config, scratch.path, context)

            upload_path = scratch.path
            if compress:
                upload_path = scratch.directory / file_name
                try:
                    _gzip_file(scratch.path, upload_path)
                except OSError as e:
                    raise DumpError(f"Compressing {file_name} failed: {e}", snapshot=file_name) from e

            try:
                with open(upload_path, "rb") as f:
                    self.storage.write_stream(file_name, f)
            except StorageError as e:
                raise DumpError(f"Uploading {file_name} failed: {e.message}", snapshot=file_name) from e

        snapshot = Snapshot(self.storage, file_name)
        self.events.dispatch(CreatedSnapshot(snapshot))
        return snapshot
