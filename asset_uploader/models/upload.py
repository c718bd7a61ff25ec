"""
Upload data models for internal use.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from asset_uploader.core.config import settings
from asset_uploader.core.exceptions import ChunkUploadError, ConfigurationError


class UploadState(str, Enum):
    """Lifecycle of a single upload."""
    NOT_STARTED = "not_started"
    NEGOTIATING_SESSION = "negotiating_session"
    DISPATCHING = "dispatching"      # Splitting stream and uploading chunks
    COMPLETING = "completing"        # Completion call in flight
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class UploadOptions(BaseModel):
    """
    Tuning knobs for one upload. Each field is validated independently.

    Defaults come from environment settings (see Settings.UPLOAD_*).
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    chunk_size: int = Field(default_factory=lambda: settings.UPLOAD_CHUNK_SIZE, gt=0)
    max_retries: int = Field(default_factory=lambda: settings.UPLOAD_MAX_RETRIES, ge=0)
    concurrency: int = Field(default_factory=lambda: settings.UPLOAD_CONCURRENCY, ge=1)
    backoff_factor: float = Field(default_factory=lambda: settings.UPLOAD_BACKOFF_FACTOR, ge=1)
    base_delay: float = Field(default_factory=lambda: settings.UPLOAD_BASE_DELAY_SECONDS, ge=0)
    max_delay: float = Field(default_factory=lambda: settings.UPLOAD_MAX_DELAY_SECONDS, gt=0)
    max_buffered_chunks: int = Field(default_factory=lambda: settings.UPLOAD_MAX_BUFFERED_CHUNKS, ge=0)
    cancel_on_failure: bool = Field(default_factory=lambda: settings.UPLOAD_CANCEL_ON_FAILURE)

    @classmethod
    def build(cls, **overrides: Any) -> "UploadOptions":
        """
        Build options from named overrides.

        Raises:
            ConfigurationError: If any option is unknown or out of range
        """
        try:
            return cls(**overrides)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(loc) for loc in err['loc']) or 'options'}: {err['msg']}"
                for err in e.errors()
            )
            raise ConfigurationError(f"Invalid upload options: {problems}") from e

    @property
    def total_attempts(self) -> int:
        return self.max_retries + 1


@dataclass(frozen=True)
class UploadSession:
    """Presigned upload URL and the opaque form fields that authorize it."""

    upload_url: str
    fields: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Chunk:
    """A numbered slice of the input stream."""

    part_number: int
    payload: bytes

    @property
    def size(self) -> int:
        return len(self.payload)


@dataclass
class ChunkOutcome:
    """Result of uploading one chunk."""

    part_number: int
    success: bool
    error: Optional[ChunkUploadError] = None
    attempts: int = 0
    cancelled: bool = False

    @classmethod
    def succeeded(cls, part_number: int, attempts: int) -> "ChunkOutcome":
        return cls(part_number=part_number, success=True, attempts=attempts)

    @classmethod
    def failed(cls, part_number: int, error: ChunkUploadError) -> "ChunkOutcome":
        return cls(
            part_number=part_number,
            success=False,
            error=error,
            attempts=error.attempts
        )

    @classmethod
    def abandoned(cls, part_number: int, attempts: int = 0) -> "ChunkOutcome":
        return cls(part_number=part_number, success=False, attempts=attempts, cancelled=True)
