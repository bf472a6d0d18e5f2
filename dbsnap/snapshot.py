"""Snapshot descriptors and file-name parsing.

A stored snapshot is any object named <name>.<ext> or <name>.<ext>.gz on a disk.
The Snapshot value is rebuilt from the object name every time it is listed; it
holds no open resources and nothing about it is persisted apart from the object.
"""

GZIP = "gz"


def split_extension(file_name):
    """Split "a.b.c" into ("a.b", "c"). Names without a dot have an empty extension."""
    stem, dot, extension = file_name.rpartition(".")
    if not dot:
        return file_name, ""
    return stem, extension


def parse_file_name(file_name):
    """Return (name, compression) for a stored object name.

    >>> parse_file_name("2024-01-05.sql.gz")
    ('2024-01-05', 'gz')
    >>> parse_file_name("2024-01-05.sql")
    ('2024-01-05', None)
    """
    base = file_name.rsplit("/", 1)[-1]
    compression = None

    stem, extension = split_extension(base)
    if extension == GZIP:
        compression = GZIP
        base = stem

    name, _ = split_extension(base)
    return name, compression


class Snapshot:
    """One dump stored on a disk."""

    def __init__(self, storage, file_name):
        self.storage = storage
        self.file_name = file_name
        self.name, self.compression = parse_file_name(file_name)

    @property
    def compressed(self):
        return self.compression == GZIP

    def __eq__(self, other):
        if not isinstance(other, Snapshot):
            return NotImplemented
        return self.storage is other.storage and self.file_name == other.file_name

    def __hash__(self):
        return hash((id(self.storage), self.file_name))

    def __repr__(self):
        return f"<Snapshot {self.file_name!r} on {self.storage!r}>"
