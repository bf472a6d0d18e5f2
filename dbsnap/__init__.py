"""dbsnap: database snapshots on local disk or S3."""

__version__ = "0.1.0"
