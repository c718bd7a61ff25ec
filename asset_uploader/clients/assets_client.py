"""
Assets API client.
Negotiates presigned multipart upload sessions with the platform.
"""

import json
import logging
from typing import Any, Dict

import httpx
from pydantic import ValidationError

from asset_uploader.clients.api_client import APIClient
from asset_uploader.core.exceptions import SessionNegotiationError
from asset_uploader.models.upload import UploadSession
from asset_uploader.schemas import SignedUrlV2Request, SignedUrlV2Response

logger = logging.getLogger(__name__)

SIGNED_URL_V2_PATH = "/service/platform/assets/v2.0/upload/signed-url"


class AssetsClient:
    """Platform assets endpoints needed by the uploader."""

    def __init__(self, api_client: APIClient):
        self.api_client = api_client

    async def create_signed_url_v2(self, request: SignedUrlV2Request) -> Dict[str, Any]:
        """
        Request a presigned URL for a chunked multipart upload.

        Args:
            request: Asset details (name, path, format, access, ...)

        Returns:
            Decoded JSON response

        Raises:
            APIError: If the platform rejects the request
            SessionNegotiationError: If the response is not a JSON object
        """
        raw = await self.api_client.execute(
            "post",
            SIGNED_URL_V2_PATH,
            body=request.to_body(),
            content_type="application/json"
        )
        try:
            data = json.loads(raw)
        except ValueError as e:
            raise SessionNegotiationError(f"Invalid JSON in signed URL response: {e}") from e

        if not isinstance(data, dict):
            raise SessionNegotiationError("Signed URL response is not a JSON object")
        return data

    async def negotiate_upload_session(self, request: SignedUrlV2Request) -> UploadSession:
        """
        Create an upload session for the given asset.

        Returns:
            UploadSession with the upload URL and form fields

        Raises:
            APIError: If the platform rejects the request
            SessionNegotiationError: If the response lacks presignedUrl.url/fields
        """
        data = await self.create_signed_url_v2(request)
        return parse_upload_session(data)


def parse_upload_session(data: Dict[str, Any]) -> UploadSession:
    """
    Extract the upload session from a signed-url v2 response.

    Raises:
        SessionNegotiationError: If presignedUrl, url or fields are missing or mistyped,
            or url is not an absolute http(s) URL
    """
    if not isinstance(data.get("presignedUrl"), dict):
        raise SessionNegotiationError("presignedUrl not found in signed URL response")

    try:
        parsed = SignedUrlV2Response.model_validate(data)
    except ValidationError as e:
        missing = ", ".join(".".join(str(loc) for loc in err["loc"]) for err in e.errors())
        raise SessionNegotiationError(f"Malformed presignedUrl in response: {missing}") from e

    upload_url = parsed.presigned_url.url
    try:
        url = httpx.URL(upload_url)
    except httpx.InvalidURL as e:
        raise SessionNegotiationError(f"Invalid presignedUrl.url {upload_url!r}: {e}") from e
    if url.scheme not in ("http", "https") or not url.host:
        raise SessionNegotiationError(f"presignedUrl.url must be an absolute http(s) URL, got {upload_url!r}")

    logger.info(f"Negotiated upload session for {parsed.presigned_url.url}")
    return UploadSession(
        upload_url=parsed.presigned_url.url,
        fields=dict(parsed.presigned_url.fields)
    )
