"""Error types for dbsnap.

- StorageError: a storage backend could not read, write or find an object
- TransferError / TransferCancelled: chunked copy failed or was cancelled
- RestoreError: a restore driver failed, tagged with the failing phase
- LifecycleError: a load failed; distinguishes a failed table drop from a failed restore
- DumpError: creating a snapshot failed
- ConfigError: bad or missing configuration
"""

from enum import Enum


class DbSnapError(Exception):
    """Base exception for all dbsnap errors."""

    def __init__(self, message, code=None, details=None):
        super().__init__(message)
        self.message = message
        self.code = code or "DBSNAP_ERROR"
        self.details = details or {}


class ConfigError(DbSnapError, ValueError):

    def __init__(self, message):
        super().__init__(message, code="CONFIG_ERROR")


class StorageErrorKind(Enum):
    NOT_FOUND = "not_found"
    IO_FAILURE = "io_failure"
    PERMISSION_DENIED = "permission_denied"


class StorageError(DbSnapError):

    def __init__(self, kind, ref, message=None):
        super().__init__(
            message or f"Storage {kind.value} for {ref!r}",
            code="STORAGE_" + kind.name,
            details={"ref": ref},
        )
        self.kind = kind
        self.ref = ref


class TransferError(DbSnapError):

    def __init__(self, message, bytes_written=0):
        super().__init__(message, code="TRANSFER_ERROR", details={"bytes_written": bytes_written})
        self.bytes_written = bytes_written


class TransferCancelled(TransferError):

    def __init__(self, bytes_written=0):
        super().__init__(f"Transfer cancelled after {bytes_written} bytes", bytes_written)
        self.code = "TRANSFER_CANCELLED"


class RestoreErrorKind(Enum):
    READ_FAILURE = "read_failure"
    DECOMPRESSION_FAILURE = "decompression_failure"
    EXECUTION_FAILURE = "execution_failure"
    DOWNLOAD_FAILURE = "download_failure"
    SUBPROCESS_LAUNCH_FAILURE = "subprocess_launch_failure"
    SUBPROCESS_NON_ZERO_EXIT = "subprocess_non_zero_exit"


class RestoreError(DbSnapError):
    """A restore driver failed.

    Attributes:
        kind: RestoreErrorKind of the failing phase
        snapshot: file name of the snapshot being restored
        exit_code: subprocess exit code, for subprocess failures
        output_tail: last lines of subprocess output, for subprocess failures
    """

    def __init__(self, kind, snapshot, message, exit_code=None, output_tail=None):
        super().__init__(
            f"Restoring {snapshot} failed ({kind.value}): {message}",
            code="RESTORE_" + kind.name,
            details={"snapshot": snapshot, "exit_code": exit_code},
        )
        self.kind = kind
        self.snapshot = snapshot
        self.exit_code = exit_code
        self.output_tail = output_tail or []


class LifecycleErrorKind(Enum):
    # Tables may be partially dropped; no restore was attempted.
    TABLE_DROP_FAILURE = "table_drop_failure"
    # Tables were dropped and the snapshot was not applied.
    RESTORE_FAILURE = "restore_failure"
    # Another load holds the connection; the database was not touched.
    CONNECTION_BUSY = "connection_busy"


class LifecycleError(DbSnapError):
    """A load failed. The underlying error is chained as __cause__."""

    def __init__(self, kind, snapshot, message):
        super().__init__(
            f"Loading {snapshot} failed ({kind.value}): {message}",
            code="LIFECYCLE_" + kind.name,
            details={"snapshot": snapshot},
        )
        self.kind = kind
        self.snapshot = snapshot

    @property
    def database_emptied(self):
        """True when the target database was left without its tables."""
        return self.kind is not LifecycleErrorKind.CONNECTION_BUSY


class DumpError(DbSnapError):

    def __init__(self, message, snapshot=None, exit_code=None, output_tail=None):
        super().__init__(message, code="DUMP_ERROR", details={"snapshot": snapshot})
        self.snapshot = snapshot
        self.exit_code = exit_code
        self.output_tail = output_tail or []
