"""Shared fixtures: in-memory disk, a fake connection registry and a fake pg_restore."""

import gzip
import stat
import textwrap

import pytest

from dbsnap.connections import ConnectionConfig
from dbsnap.events import RecordingDispatcher
from dbsnap.storage.memory import MemoryStorage


class FakeRegistry:
    """Connection registry that records every call instead of touching a database."""

    def __init__(self, connections=None, default="default", fail_drop=False, fail_execute=False):
        connections = connections or {"default": {"driver": "sqlite", "database": ":memory:"}}
        self.configs = {name: ConnectionConfig.from_dict(name, raw) for name, raw in connections.items()}
        self.default = default
        self.fail_drop = fail_drop
        self.fail_execute = fail_execute
        self.calls = []
        self.executed = []

    def set_default(self, name):
        self.calls.append(("set_default", name))
        self.default = name

    def resolve_config(self, name=None):
        return self.configs[name or self.default]

    def drop_all_tables(self, name):
        self.calls.append(("drop_all_tables", name))
        if self.fail_drop:
            raise RuntimeError("permission denied for schema public")

    def reconnect(self, name):
        self.calls.append(("reconnect", name))

    def execute_unprepared(self, name, sql):
        self.calls.append(("execute_unprepared", name))
        if self.fail_execute:
            raise RuntimeError("syntax error near CREATE")
        self.executed.append(sql)

    def call_names(self):
        return [c[0] for c in self.calls]


SQL = "CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT);\nINSERT INTO users VALUES (1, 'ada');\n"


class IncompleteRead(Exception):
    """Stands in for botocore stream errors, which are not OSErrors."""


class _BrokenBody:

    def __init__(self, data):
        self.data = data
        self.reads = 0

    def read(self, size=-1):
        self.reads += 1
        if self.reads > 1:
            raise IncompleteRead(f"{len(self.data)} read, but total bytes expected is {len(self.data) * 2}.")
        return self.data

    def close(self):
        pass


class BrokenStreamStorage(MemoryStorage):
    """Memory disk whose read streams die after the first chunk."""

    def read_stream(self, ref):
        return _BrokenBody(super().get_bytes(ref))


@pytest.fixture
def storage():
    return MemoryStorage({
        "backup-2024.sql.gz": gzip.compress(SQL.encode()),
        "plain.sql": SQL.encode(),
    })


@pytest.fixture
def registry():
    return FakeRegistry()


@pytest.fixture
def events():
    return RecordingDispatcher()


@pytest.fixture
def fake_pg_restore(tmp_path, monkeypatch):
    """An executable standing in for pg_restore.

    It records its argv, PGPASSFILE path and contents, PGDATABASE and a copy of the
    dump it was given into tmp_path/record, prints two lines and exits with
    $FAKE_PG_EXIT.
    """
    record = tmp_path / "record"
    record.mkdir()
    script = tmp_path / "pg_restore"
    script.write_text(textwrap.dedent("""\
        #!/bin/sh
        for last; do :; done
        echo "$@" > "$FAKE_PG_RECORD/args"
        echo "$PGPASSFILE" > "$FAKE_PG_RECORD/passfile_path"
        cat "$PGPASSFILE" > "$FAKE_PG_RECORD/passfile"
        echo "$PGDATABASE" > "$FAKE_PG_RECORD/database"
        cp "$last" "$FAKE_PG_RECORD/dump"
        echo "pg_restore: processing item 1"
        echo "pg_restore: error: could not execute query" >&2
        exit "${FAKE_PG_EXIT:-0}"
    """))
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    monkeypatch.setenv("FAKE_PG_RECORD", str(record))
    monkeypatch.setenv("FAKE_PG_EXIT", "0")
    return script, record


@pytest.fixture
def pg_connections(fake_pg_restore):
    script, _ = fake_pg_restore
    return {
        "default": {
            "driver": "pgsql",
            "host": "db.internal",
            "port": 5433,
            "username": "app",
            "password": "s3cret:pw",
            "database": "shop",
            "restore": {"binary_path": str(script), "add_extra_option": "--no-owner"},
        },
    }
