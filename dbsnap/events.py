"""Lifecycle notifications.

Listeners are plain callables registered per event class; a listener registered for
`object` receives every event. Delivery is best effort: a listener that raises is
reported on stderr and skipped, and the snapshot operation carries on.
"""

import threading
from dataclasses import dataclass
from rich.console import Console


@dataclass
class CreatingSnapshot:
    file_name: str
    storage: object
    connection_name: str


@dataclass
class CreatedSnapshot:
    snapshot: object


@dataclass
class LoadingSnapshot:
    snapshot: object


@dataclass
class LoadedSnapshot:
    snapshot: object


@dataclass
class DownloadingSnapshot:
    snapshot: object
    path: str


@dataclass
class DownloadedSnapshot:
    snapshot: object
    path: str


@dataclass
class DeletingSnapshot:
    snapshot: object


@dataclass
class DeletedSnapshot:
    # The snapshot is gone by now; carry the raw identifiers instead.
    file_name: str
    storage: object


class EventDispatcher:

    def __init__(self, console=None):
        self._listeners = {}
        self._lock = threading.Lock()
        self.console = console or Console(stderr=True)

    def listen(self, event_class, listener):
        with self._lock:
            self._listeners.setdefault(event_class, []).append(listener)

    def forget(self, event_class, listener):
        with self._lock:
            listeners = self._listeners.get(event_class, [])
            if listener in listeners:
                listeners.remove(listener)

    def dispatch(self, event):
        with self._lock:
            listeners = list(self._listeners.get(type(event), []))
            listeners += self._listeners.get(object, [])
        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                self.console.print(
                    f"[yellow]Warning: {type(event).__name__} listener "
                    f"{getattr(listener, '__name__', listener)!s} failed: {e}[/yellow]",
                    highlight=False,
                )


class RecordingDispatcher(EventDispatcher):
    """Dispatcher that keeps every event it sees, in order."""

    def __init__(self, console=None):
        super().__init__(console)
        self.events = []
        self.listen(object, self.events.append)

    def names(self):
        return [type(e).__name__ for e in self.events]
