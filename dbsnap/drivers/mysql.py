import os
import shlex

from dbsnap.drivers.generic import GenericSQLDriver
from dbsnap.drivers.process import credentials_file, run_streaming
from dbsnap.errors import DumpError


def _client_options(config):
    """[client] option file for mysqldump --defaults-extra-file."""
    lines = ["[client]"]
    if config.username:
        lines.append(f"user = {config.username}")
    if config.password:
        escaped = str(config.password).replace("\\", "\\\\").replace('"', '\\"')
        lines.append(f'password = "{escaped}"')
    if config.host:
        lines.append(f"host = {config.host}")
    if config.port:
        lines.append(f"port = {config.port}")
    return "\n".join(lines) + "\n"


class MySQLDriver(GenericSQLDriver):
    """MySQL and MariaDB. Dumps with mysqldump, restores as a plain SQL batch."""

    def dump(self, config, path, context):
        with credentials_file(_client_options(config), context.temporary_directory, suffix=".cnf") as options:
            args = [
                config.option("dump.binary_path", "mysqldump"),
                f"--defaults-extra-file={options}",
                "--skip-comments",
                "--single-transaction",
                f"--result-file={path}",
            ]
            args += shlex.split(config.option("dump.add_extra_option", "") or "")
            args += [str(config.database)]
            try:
                exit_code, tail = run_streaming(args, env=dict(os.environ), output=context.output, cancel=context.cancel)
            except OSError as e:
                raise DumpError(f"cannot run {args[0]}: {e}") from e

        if exit_code != 0:
            raise DumpError(f"{args[0]} exited with code {exit_code}", exit_code=exit_code, output_tail=tail)
