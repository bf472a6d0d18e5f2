import gzip
import zlib

from dbsnap.drivers.base import Driver
from dbsnap.errors import DumpError, RestoreError, RestoreErrorKind, StorageError


class GenericSQLDriver(Driver):
    """Plain SQL dumps, loaded in memory and run as one unprepared batch."""

    def restore(self, snapshot, config, context):
        try:
            contents = snapshot.storage.get_bytes(snapshot.file_name)
        except StorageError as e:
            raise RestoreError(RestoreErrorKind.READ_FAILURE, snapshot.file_name, e.message) from e

        if snapshot.compressed:
            try:
                contents = gzip.decompress(contents)
            except (OSError, EOFError, zlib.error) as e:
                raise RestoreError(RestoreErrorKind.DECOMPRESSION_FAILURE, snapshot.file_name, str(e)) from e

        try:
            sql = contents.decode("utf-8")
        except UnicodeDecodeError as e:
            raise RestoreError(RestoreErrorKind.READ_FAILURE, snapshot.file_name, f"not UTF-8 SQL: {e}") from e

        try:
            context.registry.execute_unprepared(config.name, sql)
        except Exception as e:
            raise RestoreError(RestoreErrorKind.EXECUTION_FAILURE, snapshot.file_name, str(e)) from e

    def dump(self, config, path, context):
        if config.driver != "sqlite":
            return super().dump(config, path, context)
        try:
            raw = context.registry.engine(config.name).raw_connection()
        except Exception as e:
            raise DumpError(f"Cannot connect to {config.name!r}: {e}") from e
        try:
            with open(path, "w", encoding="utf-8") as out:
                for statement in raw.driver_connection.iterdump():
                    out.write(statement + "\n")
        except Exception as e:
            raise DumpError(f"Dumping {config.name!r} failed: {e}") from e
        finally:
            raw.close()
