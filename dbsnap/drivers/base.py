from abc import ABC, abstractmethod

from dbsnap.errors import DumpError


class DriverContext:
    """What a driver may touch while it runs.

    Attributes:
        registry: connection registry (execute_unprepared, engine)
        events: EventDispatcher for download notifications
        output: callable receiving each line of external tool output, or None
        temporary_directory: parent for scratch directories (None: system temp dir)
        cancel: optional threading.Event checked between chunks and lines
    """

    def __init__(self, registry, events, output=None, temporary_directory=None, cancel=None):
        self.registry = registry
        self.events = events
        self.output = output
        self.temporary_directory = temporary_directory
        self.cancel = cancel


class Driver(ABC):
    """Base interface for database drivers.

    Drivers run AFTER the target schema has been emptied. restore() raises
    RestoreError tagged with the failing phase.
    """

    # restore() gunzips .gz snapshots before applying them
    accepts_gzip = True

    @abstractmethod
    def restore(self, snapshot, config, context):
        """Load snapshot into the connection described by config."""
        pass

    def dump(self, config, path, context):
        """Write a dump of the connection to the local file at path."""
        raise DumpError(f"Driver {config.driver!r} cannot create snapshots")
