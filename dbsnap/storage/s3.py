"""S3-backed snapshot storage.

Snapshots are stored as plain objects:
    s3://<bucket>/<prefix>/<name>.sql[.gz]

Reads are streamed straight from the GetObject body so large dumps never sit in
memory; uploads go through upload_fileobj, which switches to multipart above the
transfer threshold.

Requires boto3: pip install -e ".[aws]"
"""

from dbsnap.errors import StorageError, StorageErrorKind
from dbsnap.storage.base import SnapshotStorage

S3_PREFIX = "db-snapshots"

_NOT_FOUND_CODES = {"NoSuchKey", "404", "NotFound"}
_DENIED_CODES = {"AccessDenied", "403", "Forbidden", "AllAccessDisabled"}


def _error_code(exc):
    return (getattr(exc, "response", None) or {}).get("Error", {}).get("Code", "")


class S3Storage(SnapshotStorage):
    """Snapshot storage backed by one S3 bucket and key prefix."""

    name = "s3"

    def __init__(self, bucket, prefix=S3_PREFIX, client=None):
        if client is None:
            try:
                import boto3
                client = boto3.client("s3")
            except ImportError:
                raise RuntimeError(
                    "boto3 is required for S3 snapshots. "
                    "Install with: pip install -e '.[aws]'"
                )
        self._s3 = client
        self.bucket = bucket
        self.prefix = prefix.strip("/")

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def read_stream(self, ref):
        response = self._call(ref, self._s3.get_object, Bucket=self.bucket, Key=self._key(ref))
        return response["Body"]

    def get_bytes(self, ref):
        body = self.read_stream(ref)
        try:
            return body.read()
        except Exception as e:
            raise StorageError(StorageErrorKind.IO_FAILURE, ref, str(e)) from e
        finally:
            body.close()

    def write_stream(self, ref, fileobj):
        self._call(ref, self._s3.upload_fileobj, fileobj, self.bucket, self._key(ref))

    def delete(self, ref):
        # delete_object succeeds on missing keys; check first so NOT_FOUND is reported
        self._head(ref)
        self._call(ref, self._s3.delete_object, Bucket=self.bucket, Key=self._key(ref))

    def size(self, ref):
        return int(self._head(ref)["ContentLength"])

    def last_modified(self, ref):
        return self._head(ref)["LastModified"]

    def list(self):
        prefix = f"{self.prefix}/" if self.prefix else ""
        paginator = self._s3.get_paginator("list_objects_v2")
        names = []
        try:
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    name = obj["Key"][len(prefix):]
                    if name and "/" not in name:
                        names.append(name)
        except Exception as e:
            raise self._translate(prefix, e) from e
        return sorted(names)

    def exists(self, ref):
        try:
            self._head(ref)
        except StorageError as e:
            if e.kind is StorageErrorKind.NOT_FOUND:
                return False
            raise
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _key(self, ref):
        return f"{self.prefix}/{ref}" if self.prefix else ref

    def _head(self, ref):
        return self._call(ref, self._s3.head_object, Bucket=self.bucket, Key=self._key(ref))

    def _call(self, ref, method, *args, **kwargs):
        try:
            return method(*args, **kwargs)
        except Exception as e:
            raise self._translate(ref, e) from e

    def _translate(self, ref, exc):
        code = _error_code(exc)
        if code in _NOT_FOUND_CODES:
            return StorageError(StorageErrorKind.NOT_FOUND, ref, f"s3://{self.bucket}/{self._key(ref)} not found")
        if code in _DENIED_CODES:
            return StorageError(StorageErrorKind.PERMISSION_DENIED, ref, f"Access denied to s3://{self.bucket}")
        if code == "NoSuchBucket":
            return StorageError(
                StorageErrorKind.IO_FAILURE, ref,
                f"S3 bucket '{self.bucket}' does not exist. Create it first or fix s3_bucket in .dbsnapconfig.",
            )
        return StorageError(StorageErrorKind.IO_FAILURE, ref, str(exc))

    def __repr__(self):
        return f"<S3Storage s3://{self.bucket}/{self.prefix}>"
