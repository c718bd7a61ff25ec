"""
Exception hierarchy for the asset uploader.

Every error raised to callers derives from AssetUploaderError so a single
except clause can catch the whole family.
"""

from typing import Any, Optional


class AssetUploaderError(Exception):
    """Base class for all uploader errors."""


class ConfigurationError(AssetUploaderError):
    """Invalid upload options. Raised before any network activity."""


class APIError(AssetUploaderError):
    """
    Structured error for a non-success HTTP response.

    Attributes:
        status_code: HTTP status returned by the server
        payload: Decoded JSON body, or raw text if the body is not JSON
    """

    def __init__(self, status_code: int, payload: Any = None, message: Optional[str] = None):
        self.status_code = status_code
        self.payload = payload
        if message is None:
            message = _message_from_payload(payload) or f"HTTP {status_code}"
        self.message = message
        super().__init__(f"HTTP {status_code}: {message}")

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status_code < 500

    @property
    def is_server_error(self) -> bool:
        return self.status_code >= 500


class SessionNegotiationError(AssetUploaderError):
    """Upload session could not be negotiated with the store."""


class StreamReadError(AssetUploaderError):
    """The input stream failed while being split into chunks."""


class ChunkUploadError(AssetUploaderError):
    """
    A single chunk could not be uploaded.

    Attributes:
        part_number: Part number of the failed chunk
        attempts: Number of attempts made before giving up
        status_code: HTTP status of the last response, if any
        payload: Decoded body of the last error response, if any
    """

    def __init__(
        self,
        part_number: int,
        message: str,
        attempts: int = 1,
        status_code: Optional[int] = None,
        payload: Any = None
    ):
        self.part_number = part_number
        self.attempts = attempts
        self.status_code = status_code
        self.payload = payload
        super().__init__(f"Part {part_number}: {message}")


class FatalChunkError(ChunkUploadError):
    """Client error (4xx) from the store. Never retried."""


class RetryableChunkError(ChunkUploadError):
    """Server error (5xx) or transport failure that exhausted the retry budget."""


class CompletionError(AssetUploaderError):
    """The completion call failed after its own retry budget."""

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Any = None):
        self.status_code = status_code
        self.payload = payload
        super().__init__(message)


class UploadCancelledError(AssetUploaderError):
    """Work abandoned because a sibling chunk already failed."""


def _message_from_payload(payload: Any) -> Optional[str]:
    """Pull a human readable message out of an error body."""
    if isinstance(payload, dict):
        for key in ("message", "detail", "error"):
            value = payload.get(key)
            if isinstance(value, str) and value:
                return value
        return None
    if isinstance(payload, str) and payload:
        return payload[:200]
    return None
