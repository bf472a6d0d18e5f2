"""Snapshot audit logging.

Appends structured JSON entries to ~/.dbsnap/logs.jsonl.
Each entry records a lifecycle event (creating, loaded, deleted, ...) with
timestamp, snapshot file name and disk.
"""

import json
from datetime import datetime
from pathlib import Path

LOGS_FILE = Path.home() / ".dbsnap" / "logs.jsonl"


def write_log(entry, logs_file=None):
    """Append an audit log entry."""
    logs_file = Path(logs_file) if logs_file else LOGS_FILE
    logs_file.parent.mkdir(parents=True, exist_ok=True)
    entry["timestamp"] = datetime.now().isoformat()
    with open(logs_file, "a") as f:
        f.write(json.dumps(entry) + "\n")


def event_entry(event):
    """Flatten a lifecycle event into a log entry."""
    entry = {"event": type(event).__name__}
    snapshot = getattr(event, "snapshot", None)
    if snapshot is not None:
        entry["snapshot"] = snapshot.file_name
        entry["disk"] = snapshot.storage.name
    if hasattr(event, "file_name"):
        entry["snapshot"] = event.file_name
    if hasattr(event, "storage"):
        entry["disk"] = event.storage.name
    if hasattr(event, "path"):
        entry["path"] = str(event.path)
    if getattr(event, "connection_name", None):
        entry["connection"] = event.connection_name
    return entry


def audit_listener(logs_file=None):
    """Build a dispatcher listener that appends every event to the audit log."""
    def _listener(event):
        write_log(event_entry(event), logs_file)
    return _listener


def read_logs(limit=None, logs_file=None):
    logs_file = Path(logs_file) if logs_file else LOGS_FILE
    if not logs_file.exists():
        return []
    entries = []
    for line in logs_file.read_text().splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            entries.append(json.loads(line))
        except json.JSONDecodeError:
            continue
    return entries[-limit:] if limit else entries
