"""
Platform API schemas for upload negotiation.
Type-safe contracts for the signed-url endpoints used by the uploader.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class AccessEnum(str, Enum):
    """Access level of an uploaded asset."""
    PUBLIC_READ = "public-read"
    PRIVATE = "private"


# ============================================================================
# Signed URL (v2, multipart) Endpoint
# ============================================================================

class SignedUrlV2Request(BaseModel):
    """Request body for a presigned multipart upload session."""

    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    name: Optional[str] = None
    path: Optional[str] = None
    format: Optional[str] = None
    access: Optional[AccessEnum] = None
    tags: Optional[List[str]] = None
    metadata: Optional[Dict[str, Any]] = None
    overwrite: Optional[bool] = None
    filename_override: Optional[bool] = Field(default=None, alias="filenameOverride")
    expiry: Optional[float] = Field(
        default=None,
        gt=0,
        description="Session expiry in seconds"
    )

    def to_body(self) -> Dict[str, Any]:
        """Serialize with the API's camelCase names, omitting unset fields."""
        return self.model_dump(by_alias=True, exclude_none=True)


class PresignedUrl(BaseModel):
    """Upload URL plus the opaque form fields that authorize it."""
    url: str
    fields: Dict[str, Any]


class SignedUrlV2Response(BaseModel):
    """Response from the signed-url v2 endpoint."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    presigned_url: PresignedUrl = Field(alias="presignedUrl")


# ============================================================================
# Uploader Request
# ============================================================================

class UploaderUploadRequest(SignedUrlV2Request):
    """Object metadata supplied by the caller of Uploader.upload."""

    def to_signed_url_request(self) -> SignedUrlV2Request:
        return SignedUrlV2Request.model_validate(self.model_dump())
