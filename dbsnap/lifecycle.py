"""Loading and deleting snapshots.

load() is destructive: every table on the target connection is dropped BEFORE the
snapshot is read. If anything fails after that point the database is left empty and
unrestored; LifecycleError.kind tells the two cases apart:

    TABLE_DROP_FAILURE   the drop itself failed, nothing was restored
    RESTORE_FAILURE      tables are gone and the snapshot was not applied

There is no rollback and no retry. Recover by loading a snapshot again.

Only one load may run per connection at a time. A second load on a busy
connection is rejected with CONNECTION_BUSY before anything is touched; loads
on different connections can run side by side.
"""

import threading
from enum import Enum

from rich.console import Console

from dbsnap.drivers import DriverContext, get_driver
from dbsnap.errors import DbSnapError, LifecycleError, LifecycleErrorKind
from dbsnap.events import (
    DeletedSnapshot,
    DeletingSnapshot,
    EventDispatcher,
    LoadedSnapshot,
    LoadingSnapshot,
)

_load_locks = {}
_load_locks_guard = threading.Lock()


def _connection_lock(name):
    with _load_locks_guard:
        return _load_locks.setdefault(name, threading.Lock())


class LoadState(Enum):
    IDLE = "idle"
    LOADING = "loading"
    TABLES_DROPPED = "tables_dropped"
    RESTORING = "restoring"
    LOADED = "loaded"
    FAILED = "failed"


def console_output(console=None):
    """Output sink that prints external tool output as it arrives."""
    console = console or Console()

    def _print(line):
        console.print(line.rstrip("\n"), markup=False, highlight=False)
    return _print


class SnapshotLifecycle:
    """Load, delete and inspect snapshots against a connection registry.

    Load state is kept per connection name in `states`; `state` is the state of
    the connection this lifecycle loaded into most recently.
    """

    def __init__(self, registry, events=None, output=None, temporary_directory=None):
        self.registry = registry
        self.events = events or EventDispatcher()
        self.output = output if output is not None else console_output()
        self.temporary_directory = temporary_directory
        self.states = {}
        self._last_connection = None

    @property
    def state(self):
        return self.state_of(self._last_connection)

    def state_of(self, connection_name):
        return self.states.get(connection_name, LoadState.IDLE)

    def _set_state(self, connection_name, state):
        self.states[connection_name] = state
        self._last_connection = connection_name

    def load(self, snapshot, connection_name=None, cancel=None):
        """Replace the contents of a connection's database with snapshot.

        connection_name becomes the registry default before loading; without it
        the current default connection is used. A busy connection is rejected
        before any event is emitted or the default is changed.
        """
        config = self.registry.resolve_config(connection_name or self.registry.default)
        lock = _connection_lock(config.name)
        if not lock.acquire(blocking=False):
            raise LifecycleError(
                LifecycleErrorKind.CONNECTION_BUSY, snapshot.file_name,
                f"another load is running on connection {config.name!r}",
            )
        try:
            self._set_state(config.name, LoadState.LOADING)
            self.events.dispatch(LoadingSnapshot(snapshot))
            try:
                if connection_name is not None:
                    self.registry.set_default(connection_name)
                self._drop_all_tables(snapshot, config)
                self._restore(snapshot, config, cancel)
            except BaseException:
                self._set_state(config.name, LoadState.FAILED)
                raise
            self._set_state(config.name, LoadState.LOADED)
        finally:
            lock.release()

        self.events.dispatch(LoadedSnapshot(snapshot))

    def _drop_all_tables(self, snapshot, config):
        try:
            self.registry.drop_all_tables(config.name)
            self.registry.reconnect(config.name)
        except Exception as e:
            raise LifecycleError(
                LifecycleErrorKind.TABLE_DROP_FAILURE, snapshot.file_name,
                f"dropping tables on {config.name!r} failed: {e}",
            ) from e
        self._set_state(config.name, LoadState.TABLES_DROPPED)

    def _restore(self, snapshot, config, cancel):
        self._set_state(config.name, LoadState.RESTORING)
        context = DriverContext(
            self.registry, self.events,
            output=self.output,
            temporary_directory=self.temporary_directory,
            cancel=cancel,
        )
        try:
            get_driver(config.driver).restore(snapshot, config, context)
        except Exception as e:
            # Tables are gone by now, so every failure is a restore failure
            reason = e.message if isinstance(e, DbSnapError) else f"{type(e).__name__}: {e}"
            raise LifecycleError(
                LifecycleErrorKind.RESTORE_FAILURE, snapshot.file_name,
                f"{config.name!r} was emptied but not restored: {reason}",
            ) from e

    def delete(self, snapshot):
        self.events.dispatch(DeletingSnapshot(snapshot))
        snapshot.storage.delete(snapshot.file_name)
        self.events.dispatch(DeletedSnapshot(snapshot.file_name, snapshot.storage))

    def size(self, snapshot):
        return snapshot.storage.size(snapshot.file_name)

    def created_at(self, snapshot):
        return snapshot.storage.last_modified(snapshot.file_name)
