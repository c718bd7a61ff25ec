"""
Authenticated platform API client.
Builds bearer headers and turns non-success responses into APIError.
"""

import base64
import json
import logging
from typing import Any, Dict, Optional

import httpx

from asset_uploader.core.exceptions import APIError

logger = logging.getLogger(__name__)


def encode_token(api_token: str) -> str:
    """Base64-encode the API token as expected by the Authorization header."""
    return base64.b64encode(api_token.encode("utf-8")).decode("ascii")


def decode_error_payload(response: httpx.Response) -> Any:
    """
    Decode an error response body.

    Returns:
        Parsed JSON when possible, otherwise the raw text (None if empty)
    """
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def raise_for_api_status(response: httpx.Response) -> None:
    """
    Raise APIError for any response outside 2xx/3xx.

    Raises:
        APIError: With the HTTP status and decoded payload
    """
    if response.status_code >= 400:
        raise APIError(response.status_code, decode_error_payload(response))


class APIClient:
    """
    Executes authenticated requests against the platform API.

    The underlying httpx.AsyncClient is owned by the caller.
    """

    def __init__(self, http_client: httpx.AsyncClient, domain: str, api_token: str):
        self.http_client = http_client
        self.domain = domain.rstrip("/")
        self.api_token = api_token

    def _build_headers(self, content_type: Optional[str], has_body: bool) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {encode_token(self.api_token)}",
        }
        if has_body and content_type and content_type != "multipart/form-data":
            headers["Content-Type"] = content_type
        return headers

    async def execute(
        self,
        method: str,
        path: str,
        query: Optional[Dict[str, str]] = None,
        body: Any = None,
        content_type: str = "application/json"
    ) -> bytes:
        """
        Perform an API call.

        Args:
            method: HTTP method (case insensitive)
            path: API path beginning with '/'
            query: Optional query parameters
            body: JSON-serializable body, or None
            content_type: Body content type

        Returns:
            Raw response bytes

        Raises:
            APIError: If the API returns a non-success status
            httpx.TransportError: On network failure
        """
        url = f"{self.domain}{path}"
        headers = self._build_headers(content_type, body is not None)
        content = json.dumps(body).encode("utf-8") if body is not None else None

        response = await self.http_client.request(
            method.upper(),
            url,
            params=query or None,
            content=content,
            headers=headers
        )

        if response.status_code >= 400:
            logger.error(f"{method.upper()} {path} failed: HTTP {response.status_code}")
        raise_for_api_status(response)

        return response.content
