"""Local filesystem stand-in for S3 object storage."""

from .client import LocalS3Client, create_client
from .errors import StorageError, NoSuchKey, AccessDenied, InternalError
from .keys import KeyEncoder
from .local_s3_backend import LocalS3Backend
from .metadata import MetadataStore
from .protocol import Request, Response, emit_response

__all__ = [
    "LocalS3Client", "create_client", "LocalS3Backend",
    "StorageError", "NoSuchKey", "AccessDenied", "InternalError",
    "KeyEncoder", "MetadataStore", "Request", "Response", "emit_response",
]
