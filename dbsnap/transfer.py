"""Chunked stream copy between a storage read stream and a local file.

Memory use is bounded by one chunk. A failed or cancelled copy leaves whatever was
already written at the destination; removing it is up to whoever owns the path
(see TemporaryDownload).
"""

from dbsnap.errors import TransferCancelled, TransferError

CHUNK_SIZE = 1024 * 1024 * 8


def copy_stream(source, destination, chunk_size=CHUNK_SIZE, cancel=None):
    """Copy a readable binary stream into the file at destination.

    Args:
        source: object with read(n) returning bytes, b"" at end of stream.
        destination: path of the file to create or truncate.
        chunk_size: bytes read per iteration.
        cancel: optional threading.Event, checked before each chunk.

    Returns the number of bytes written. Any error reading source, and any OSError
    writing the destination, is raised as TransferError.
    """
    written = 0
    try:
        output = open(destination, "wb")
    except OSError as e:
        raise TransferError(f"Cannot open {destination} for writing: {e}") from e

    try:
        while True:
            if cancel is not None and cancel.is_set():
                raise TransferCancelled(written)
            try:
                chunk = source.read(chunk_size)
            except Exception as e:
                # network bodies (botocore streams) raise their own error types
                raise TransferError(f"Read failed after {written} bytes: {e}", written) from e
            if not chunk:
                break
            try:
                output.write(chunk)
            except OSError as e:
                raise TransferError(f"Write to {destination} failed after {written} bytes: {e}", written) from e
            written += len(chunk)
        output.flush()
    finally:
        output.close()

    return written
