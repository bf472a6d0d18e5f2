from dbsnap.errors import ConfigError
from dbsnap.storage.base import SnapshotStorage
from dbsnap.storage.local import LocalStorage
from dbsnap.storage.memory import MemoryStorage


def create_storage(config=None):
    """Create a snapshot storage backend from config.

    Config keys:
        disk: "local" (default), "s3" or "memory"
        storage_path: directory for the local disk
        s3_bucket: required when disk is "s3"
        s3_prefix: key prefix inside the bucket (default "db-snapshots")
    """
    config = config or {}
    disk = config.get("disk", "local")

    if disk == "s3":
        from dbsnap.storage.s3 import S3Storage, S3_PREFIX
        bucket = config.get("s3_bucket")
        if not bucket:
            raise ConfigError(
                "s3_bucket is required when disk is 's3'. "
                "Add it to .dbsnapconfig: {\"s3_bucket\": \"my-db-snapshots\"}"
            )
        return S3Storage(bucket, prefix=config.get("s3_prefix", S3_PREFIX))

    if disk == "local":
        return LocalStorage(config.get("storage_path"))

    if disk == "memory":
        return MemoryStorage()

    raise ConfigError(f"Unknown disk: {disk!r}. Use 'local', 's3' or 'memory'.")


__all__ = ["SnapshotStorage", "LocalStorage", "MemoryStorage", "create_storage"]
