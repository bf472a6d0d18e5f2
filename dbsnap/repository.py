from dbsnap.snapshot import Snapshot, split_extension

SNAPSHOT_EXTENSIONS = {"sql", "gz"}


class SnapshotRepository:
    """The snapshots on one disk, newest first."""

    def __init__(self, storage):
        self.storage = storage

    def all(self):
        snapshots = [
            Snapshot(self.storage, file_name)
            for file_name in self.storage.list()
            if split_extension(file_name)[1] in SNAPSHOT_EXTENSIONS
        ]
        modified = {s.file_name: self.storage.last_modified(s.file_name) for s in snapshots}
        return sorted(snapshots, key=lambda s: modified[s.file_name], reverse=True)

    def find(self, name):
        """Newest snapshot with this logical name, or None."""
        for snapshot in self.all():
            if snapshot.name == name:
                return snapshot
        return None
