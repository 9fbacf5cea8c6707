from docdump.storage.base import BlobNotFoundError, BlobStore
from docdump.storage.local import LocalBlobStore
from docdump.storage.s3 import S3BlobStore

__all__ = ["BlobStore", "BlobNotFoundError", "LocalBlobStore", "S3BlobStore"]
