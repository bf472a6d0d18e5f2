"""Subprocess helpers shared by the external-tool drivers.

run_streaming() merges stderr into stdout and hands each line to the output sink as
soon as it is read, keeping only the last TAIL_LINES lines for error reports.
credentials_file() holds connection secrets for the lifetime of one tool run; the
file is 0600 and is removed however the run ends.
"""

import os
import subprocess
import tempfile
import threading
from collections import deque
from contextlib import contextmanager
from pathlib import Path

TAIL_LINES = 50


@contextmanager
def credentials_file(contents, directory=None, suffix=None):
    """Write contents to a private temporary file and yield its path."""
    fd, path = tempfile.mkstemp(prefix="dbsnap-cred-", suffix=suffix, dir=directory)
    path = Path(path)
    try:
        with os.fdopen(fd, "w") as f:
            os.chmod(path, 0o600)
            f.write(contents)
        yield path
    finally:
        path.unlink(missing_ok=True)


def _pgpass_field(value):
    return str(value if value is not None else "").replace("\\", "\\\\").replace(":", "\\:")


def pgpass_line(config):
    """host:port:username:username:password, the line pg tools read from PGPASSFILE."""
    return ":".join(_pgpass_field(v) for v in [
        config.host or "localhost",
        config.port,
        config.username,
        config.username,
        config.password,
    ]) + "\n"


def _watch_cancel(proc, cancel, done):
    while not done.is_set():
        if cancel.wait(timeout=0.2):
            proc.terminate()
            return


def run_streaming(args, env=None, output=None, cancel=None):
    """Run args (no shell), streaming output line-by-line through output.

    Returns (exit_code, tail) where tail is a list of the last output lines.
    Raises OSError when the executable cannot be started.
    """
    proc = subprocess.Popen(
        args,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        stdin=subprocess.DEVNULL,
        env=env,
        text=True,
        errors="replace",
    )
    tail = deque(maxlen=TAIL_LINES)
    done = threading.Event()
    if cancel is not None:
        threading.Thread(target=_watch_cancel, args=(proc, cancel, done), daemon=True).start()
    try:
        for line in proc.stdout:
            tail.append(line.rstrip("\n"))
            if output:
                output(line)
    except KeyboardInterrupt:
        proc.terminate()
        raise
    finally:
        done.set()
        proc.stdout.close()
        proc.wait()
    return proc.returncode, list(tail)
