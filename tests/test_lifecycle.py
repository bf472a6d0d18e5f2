"""Tests for SnapshotLifecycle.

Tests cover:
- Table drop always precedes restore, and a failed drop stops the load
- Restore failures after the drop are reported as RESTORE_FAILURE
- Event order for load and delete
- One load per connection at a time
- Listener failures never abort an operation
"""

import threading

import pytest

from dbsnap.drivers import DRIVERS, Driver
from dbsnap.errors import LifecycleError, LifecycleErrorKind, RestoreError, RestoreErrorKind, StorageError
from dbsnap.events import DeletedSnapshot, LoadedSnapshot
from dbsnap.lifecycle import LoadState, SnapshotLifecycle, _connection_lock
from dbsnap.snapshot import Snapshot
from tests.conftest import BrokenStreamStorage, FakeRegistry, SQL


class SpyDriver(Driver):
    """Records the registry calls made before it was dispatched."""

    seen = []

    def restore(self, snapshot, config, context):
        SpyDriver.seen.append(list(context.registry.call_names()))


class FailingDriver(Driver):

    def restore(self, snapshot, config, context):
        raise RestoreError(RestoreErrorKind.EXECUTION_FAILURE, snapshot.file_name, "boom")


@pytest.fixture
def spy_registry(monkeypatch):
    SpyDriver.seen = []
    monkeypatch.setitem(DRIVERS, "spy", SpyDriver)
    monkeypatch.setitem(DRIVERS, "failing", FailingDriver)
    return FakeRegistry({
        "default": {"driver": "spy"},
        "other": {"driver": "spy"},
        "failing": {"driver": "failing"},
    })


def _lifecycle(registry, events, lines=None):
    return SnapshotLifecycle(registry, events, output=(lines.append if lines is not None else lambda line: None))


class TestLoad:

    def test_generic_scenario(self, storage, registry, events):
        snapshot = Snapshot(storage, "backup-2024.sql.gz")
        lifecycle = _lifecycle(registry, events)

        lifecycle.load(snapshot)

        assert registry.call_names() == ["drop_all_tables", "reconnect", "execute_unprepared"]
        assert registry.executed == [SQL]
        assert events.names() == ["LoadingSnapshot", "LoadedSnapshot"]
        assert events.events[-1] == LoadedSnapshot(snapshot)
        assert lifecycle.state is LoadState.LOADED
        assert lifecycle.size(snapshot) == len(storage.get_bytes("backup-2024.sql.gz"))

    def test_drop_happens_before_dispatch(self, storage, spy_registry, events):
        _lifecycle(spy_registry, events).load(Snapshot(storage, "plain.sql"))

        assert SpyDriver.seen == [["drop_all_tables", "reconnect"]]

    def test_switches_default_connection_first(self, storage, spy_registry, events):
        _lifecycle(spy_registry, events).load(Snapshot(storage, "plain.sql"), "other")

        assert spy_registry.calls[:3] == [("set_default", "other"), ("drop_all_tables", "other"), ("reconnect", "other")]
        assert spy_registry.default == "other"

    def test_failed_drop_stops_before_restore(self, storage, events):
        registry = FakeRegistry(fail_drop=True)
        lifecycle = _lifecycle(registry, events)

        with pytest.raises(LifecycleError) as exc_info:
            lifecycle.load(Snapshot(storage, "backup-2024.sql.gz"))

        assert exc_info.value.kind is LifecycleErrorKind.TABLE_DROP_FAILURE
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert registry.call_names() == ["drop_all_tables"]
        assert registry.executed == []
        assert events.names() == ["LoadingSnapshot"]
        assert lifecycle.state is LoadState.FAILED

    def test_failed_restore_leaves_database_dropped(self, storage, spy_registry, events):
        lifecycle = _lifecycle(spy_registry, events)

        with pytest.raises(LifecycleError) as exc_info:
            lifecycle.load(Snapshot(storage, "plain.sql"), "failing")

        error = exc_info.value
        assert error.kind is LifecycleErrorKind.RESTORE_FAILURE
        assert error.database_emptied
        assert error.snapshot == "plain.sql"
        assert error.__cause__.kind is RestoreErrorKind.EXECUTION_FAILURE
        assert "drop_all_tables" in spy_registry.call_names()
        assert events.names() == ["LoadingSnapshot"]
        assert lifecycle.state is LoadState.FAILED

    def test_missing_snapshot_after_drop(self, storage, registry, events):
        storage.delete("plain.sql")

        with pytest.raises(LifecycleError) as exc_info:
            _lifecycle(registry, events).load(Snapshot(storage, "plain.sql"))

        assert exc_info.value.kind is LifecycleErrorKind.RESTORE_FAILURE
        assert exc_info.value.__cause__.kind is RestoreErrorKind.READ_FAILURE

    def test_postgres_load_cleans_up_on_failure(self, storage, pg_connections, events, monkeypatch, tmp_path):
        monkeypatch.setenv("FAKE_PG_EXIT", "1")
        registry = FakeRegistry(pg_connections)
        lines = []
        lifecycle = SnapshotLifecycle(registry, events, output=lines.append, temporary_directory=tmp_path / "scratch")

        with pytest.raises(LifecycleError) as exc_info:
            lifecycle.load(Snapshot(storage, "backup-2024.sql.gz"))

        assert exc_info.value.__cause__.exit_code == 1
        assert lines
        assert list((tmp_path / "scratch").iterdir()) == []
        assert events.names() == ["LoadingSnapshot", "DownloadingSnapshot", "DownloadedSnapshot"]

    def test_postgres_load_success(self, storage, pg_connections, events, tmp_path):
        registry = FakeRegistry(pg_connections)
        lifecycle = SnapshotLifecycle(registry, events, output=lambda line: None, temporary_directory=tmp_path / "scratch")

        lifecycle.load(Snapshot(storage, "backup-2024.sql.gz"))

        assert events.names() == ["LoadingSnapshot", "DownloadingSnapshot", "DownloadedSnapshot", "LoadedSnapshot"]
        assert list((tmp_path / "scratch").iterdir()) == []
        assert registry.call_names() == ["drop_all_tables", "reconnect"]

    def test_unusable_temporary_directory_is_restore_failure(self, storage, pg_connections, events, tmp_path):
        blocker = tmp_path / "afile"
        blocker.write_text("not a directory")
        registry = FakeRegistry(pg_connections)
        lifecycle = SnapshotLifecycle(registry, events, output=lambda line: None, temporary_directory=blocker / "scratch")

        with pytest.raises(LifecycleError) as exc_info:
            lifecycle.load(Snapshot(storage, "plain.sql"))

        assert exc_info.value.kind is LifecycleErrorKind.RESTORE_FAILURE
        assert exc_info.value.__cause__.kind is RestoreErrorKind.DOWNLOAD_FAILURE
        assert registry.call_names() == ["drop_all_tables", "reconnect"]
        assert lifecycle.state is LoadState.FAILED

    def test_stream_error_after_drop_is_restore_failure(self, pg_connections, events, tmp_path):
        disk = BrokenStreamStorage({"plain.sql": SQL.encode()})
        registry = FakeRegistry(pg_connections)
        lifecycle = SnapshotLifecycle(registry, events, output=lambda line: None, temporary_directory=tmp_path / "scratch")

        with pytest.raises(LifecycleError) as exc_info:
            lifecycle.load(Snapshot(disk, "plain.sql"))

        assert exc_info.value.kind is LifecycleErrorKind.RESTORE_FAILURE
        assert exc_info.value.snapshot == "plain.sql"
        assert list((tmp_path / "scratch").iterdir()) == []

    def test_unexpected_driver_error_is_restore_failure(self, storage, events, monkeypatch):
        class CrashingDriver(Driver):
            def restore(self, snapshot, config, context):
                raise KeyError("restore.binary_path")

        monkeypatch.setitem(DRIVERS, "crashing", CrashingDriver)
        registry = FakeRegistry({"default": {"driver": "crashing"}})

        with pytest.raises(LifecycleError) as exc_info:
            _lifecycle(registry, events).load(Snapshot(storage, "plain.sql"))

        assert exc_info.value.kind is LifecycleErrorKind.RESTORE_FAILURE
        assert isinstance(exc_info.value.__cause__, KeyError)
        assert "KeyError" in exc_info.value.message


class TestConcurrentLoads:

    def test_busy_connection_is_rejected_untouched(self, storage, events):
        registry = FakeRegistry({"default": {"driver": "sqlite"}, "busy": {"driver": "sqlite"}})
        lifecycle = _lifecycle(registry, events)
        lock = _connection_lock("busy")
        lock.acquire()
        try:
            with pytest.raises(LifecycleError) as exc_info:
                lifecycle.load(Snapshot(storage, "plain.sql"), "busy")
        finally:
            lock.release()

        assert exc_info.value.kind is LifecycleErrorKind.CONNECTION_BUSY
        assert not exc_info.value.database_emptied
        assert registry.calls == []
        assert registry.default == "default"
        assert events.names() == []
        assert lifecycle.state is LoadState.IDLE
        assert lifecycle.state_of("busy") is LoadState.IDLE

    def test_lock_released_after_failure(self, storage, events):
        registry = FakeRegistry({"flaky": {"driver": "sqlite"}}, default="flaky", fail_drop=True)
        lifecycle = _lifecycle(registry, events)

        with pytest.raises(LifecycleError):
            lifecycle.load(Snapshot(storage, "plain.sql"))

        registry.fail_drop = False
        lifecycle.load(Snapshot(storage, "plain.sql"))
        assert registry.executed == [SQL]

    def test_different_connections_load_concurrently(self, storage, events, monkeypatch):
        started = threading.Barrier(2, timeout=5)

        class BlockingDriver(Driver):
            def restore(self, snapshot, config, context):
                # Both loads must be inside restore at the same time to pass the barrier
                started.wait()

        monkeypatch.setitem(DRIVERS, "blocking", BlockingDriver)
        errors = []

        def run(name):
            registry = FakeRegistry({name: {"driver": "blocking"}}, default=name)
            try:
                _lifecycle(registry, events).load(Snapshot(storage, "plain.sql"))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=run, args=(n,)) for n in ("left", "right")]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert errors == []

    def test_shared_lifecycle_tracks_state_per_connection(self, storage, events, monkeypatch):
        started = threading.Barrier(3, timeout=5)  # both restores and this thread
        release = threading.Event()

        class GatedDriver(Driver):
            def restore(self, snapshot, config, context):
                started.wait()
                release.wait(timeout=5)
                if config.name == "right":
                    raise RestoreError(RestoreErrorKind.EXECUTION_FAILURE, snapshot.file_name, "boom")

        monkeypatch.setitem(DRIVERS, "gated", GatedDriver)
        registry = FakeRegistry({"left": {"driver": "gated"}, "right": {"driver": "gated"}}, default="left")
        lifecycle = _lifecycle(registry, events)
        errors = []

        def run(name):
            try:
                lifecycle.load(Snapshot(storage, "plain.sql"), name)
            except LifecycleError as e:
                errors.append(e)

        threads = [threading.Thread(target=run, args=(n,)) for n in ("left", "right")]
        for t in threads:
            t.start()
        started.wait()
        assert lifecycle.state_of("left") is LoadState.RESTORING
        assert lifecycle.state_of("right") is LoadState.RESTORING
        release.set()
        for t in threads:
            t.join(timeout=10)

        assert lifecycle.state_of("left") is LoadState.LOADED
        assert lifecycle.state_of("right") is LoadState.FAILED
        assert [e.kind for e in errors] == [LifecycleErrorKind.RESTORE_FAILURE]
        # each load drops the connection it resolved, whatever the default became
        assert sorted(c for c in registry.calls if c[0] == "drop_all_tables") == [
            ("drop_all_tables", "left"), ("drop_all_tables", "right"),
        ]


class TestDelete:

    def test_delete_events_surround_backend_call(self, storage, registry, events):
        order = []
        events.listen(object, lambda e: order.append((type(e).__name__, storage.exists("plain.sql"))))
        snapshot = Snapshot(storage, "plain.sql")

        _lifecycle(registry, events).delete(snapshot)

        assert storage.deleted == ["plain.sql"]
        assert order == [("DeletingSnapshot", True), ("DeletedSnapshot", False)]
        assert events.events[-1] == DeletedSnapshot("plain.sql", storage)

    def test_delete_missing_propagates_storage_error(self, storage, registry, events):
        storage.delete("plain.sql")

        with pytest.raises(StorageError):
            _lifecycle(registry, events).delete(Snapshot(storage, "plain.sql"))

        assert events.names() == ["DeletingSnapshot"]


class TestInspect:

    def test_size_and_created_at_delegate(self, storage, registry, events):
        from datetime import datetime, timezone
        when = datetime(2024, 1, 5, tzinfo=timezone.utc)
        storage.set_last_modified("plain.sql", when)
        lifecycle = _lifecycle(registry, events)
        snapshot = Snapshot(storage, "plain.sql")

        assert lifecycle.size(snapshot) == len(SQL)
        assert lifecycle.created_at(snapshot) == when


class TestListenerFailures:

    def test_failing_listener_does_not_abort_load(self, storage, registry, events):
        def explode(event):
            raise RuntimeError("listener down")

        events.listen(LoadedSnapshot, explode)
        lifecycle = _lifecycle(registry, events)

        lifecycle.load(Snapshot(storage, "plain.sql"))

        assert lifecycle.state is LoadState.LOADED
        assert registry.executed == [SQL]
