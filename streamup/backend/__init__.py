from .base import ReadableBody, StorageBackend
from .s3_backend import S3Backend

__all__ = ["ReadableBody", "S3Backend", "StorageBackend"]
