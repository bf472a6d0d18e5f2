from abc import ABC, abstractmethod


class SnapshotStorage(ABC):
    """Base interface for snapshot storage backends ("disks").

    Implementations: LocalStorage, S3Storage, MemoryStorage.
    Every method raises StorageError (NOT_FOUND, IO_FAILURE, PERMISSION_DENIED).
    """

    name = None

    @abstractmethod
    def read_stream(self, ref):
        """Open the object for reading. Returns a binary file object the caller closes."""
        pass

    @abstractmethod
    def get_bytes(self, ref):
        """Return the whole object as bytes."""
        pass

    @abstractmethod
    def write_stream(self, ref, fileobj):
        """Store the contents of a readable binary file object under ref."""
        pass

    @abstractmethod
    def delete(self, ref):
        pass

    @abstractmethod
    def size(self, ref):
        """Size of the object in bytes."""
        pass

    @abstractmethod
    def last_modified(self, ref):
        """Modification time of the object as an aware UTC datetime."""
        pass

    @abstractmethod
    def list(self):
        """List the object names on this disk."""
        pass

    def exists(self, ref):
        return ref in self.list()

    def __repr__(self):
        return f"<{type(self).__name__} {self.name!r}>"
