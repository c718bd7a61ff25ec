"""
Chunked, concurrent multipart uploads to a presigned asset store.
"""

__version__ = "0.1.0"

from asset_uploader.client import AssetStoreClient  # noqa: F401
from asset_uploader.core.exceptions import (  # noqa: F401
    APIError,
    AssetUploaderError,
    ChunkUploadError,
    CompletionError,
    ConfigurationError,
    FatalChunkError,
    RetryableChunkError,
    SessionNegotiationError,
    StreamReadError,
)
from asset_uploader.models.upload import UploadOptions, UploadState  # noqa: F401
from asset_uploader.schemas import AccessEnum, UploaderUploadRequest  # noqa: F401
from asset_uploader.uploader.coordinator import Uploader  # noqa: F401
