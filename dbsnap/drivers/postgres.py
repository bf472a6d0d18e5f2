"""PostgreSQL driver: pg_dump / pg_restore.

pg_restore needs a seekable local file, so the snapshot is first copied out of
storage into a TemporaryDownload. Credentials go through a pgpass file named by
PGPASSFILE so the password never shows up in the process list.

Connection options:
    restore.add_extra_option: extra pg_restore arguments, e.g. "--no-owner"
    restore.binary_path: pg_restore executable (default: pg_restore on PATH)
    dump.add_extra_option / dump.binary_path: same for pg_dump
"""

import os
import shlex

from dbsnap.drivers.base import Driver
from dbsnap.drivers.process import credentials_file, pgpass_line, run_streaming
from dbsnap.errors import DumpError, RestoreError, RestoreErrorKind, StorageError, TransferError
from dbsnap.events import DownloadedSnapshot, DownloadingSnapshot
from dbsnap.tempdir import TemporaryDownload
from dbsnap.transfer import copy_stream


def _connection_args(config):
    args = []
    if config.username:
        args += ["-U", config.username]
    if config.host:
        args += ["-h", str(config.host)]
    if config.port:
        args += ["-p", str(config.port)]
    return args


def _tool_env(passfile, config):
    return {**os.environ, "PGPASSFILE": str(passfile), "PGDATABASE": str(config.database or "")}


class PostgresDriver(Driver):

    # pg_restore reads the stored file as-is; -Fc archives are compressed already
    accepts_gzip = False

    def restore(self, snapshot, config, context):
        download = TemporaryDownload(snapshot.file_name, context.temporary_directory)
        try:
            download.create()
        except OSError as e:
            raise RestoreError(
                RestoreErrorKind.DOWNLOAD_FAILURE, snapshot.file_name,
                f"cannot create scratch directory: {e}",
            ) from e
        try:
            self._download(snapshot, download.path, context)
            self._pg_restore(snapshot, config, download.path, context)
        finally:
            download.cleanup()

    def _download(self, snapshot, path, context):
        context.events.dispatch(DownloadingSnapshot(snapshot, str(path)))
        try:
            stream = snapshot.storage.read_stream(snapshot.file_name)
        except StorageError as e:
            raise RestoreError(RestoreErrorKind.DOWNLOAD_FAILURE, snapshot.file_name, e.message) from e
        try:
            copy_stream(stream, path, cancel=context.cancel)
        except TransferError as e:
            raise RestoreError(RestoreErrorKind.DOWNLOAD_FAILURE, snapshot.file_name, e.message) from e
        finally:
            stream.close()
        context.events.dispatch(DownloadedSnapshot(snapshot, str(path)))

    def _pg_restore(self, snapshot, config, path, context):
        args = [config.option("restore.binary_path", "pg_restore")]
        args += _connection_args(config)
        args += [f"--dbname={config.database}"]
        args += shlex.split(config.option("restore.add_extra_option", "") or "")
        args += [str(path)]

        # OSError here is either the credentials file or the executable
        try:
            with credentials_file(pgpass_line(config), context.temporary_directory) as passfile:
                exit_code, tail = run_streaming(
                    args, env=_tool_env(passfile, config), output=context.output, cancel=context.cancel,
                )
        except OSError as e:
            raise RestoreError(
                RestoreErrorKind.SUBPROCESS_LAUNCH_FAILURE, snapshot.file_name,
                f"cannot run {args[0]}: {e}",
            ) from e

        if exit_code != 0:
            raise RestoreError(
                RestoreErrorKind.SUBPROCESS_NON_ZERO_EXIT, snapshot.file_name,
                f"{args[0]} exited with code {exit_code}",
                exit_code=exit_code, output_tail=tail,
            )

    def dump(self, config, path, context):
        args = [config.option("dump.binary_path", "pg_dump")]
        args += _connection_args(config)
        args += ["--format=custom", f"--file={path}"]
        args += shlex.split(config.option("dump.add_extra_option", "") or "")
        args += [str(config.database)]

        try:
            with credentials_file(pgpass_line(config), context.temporary_directory) as passfile:
                exit_code, tail = run_streaming(
                    args, env=_tool_env(passfile, config), output=context.output, cancel=context.cancel,
                )
        except OSError as e:
            raise DumpError(f"cannot run {args[0]}: {e}") from e

        if exit_code != 0:
            raise DumpError(f"{args[0]} exited with code {exit_code}", exit_code=exit_code, output_tail=tail)
