"""
Top-level client holding the HTTP client, the assets API and the uploader.
"""

import asyncio
import logging
from typing import Optional

import httpx

from asset_uploader.clients.api_client import APIClient
from asset_uploader.clients.assets_client import AssetsClient
from asset_uploader.core.config import Settings, settings as default_settings
from asset_uploader.uploader.coordinator import Uploader
from asset_uploader.uploader.retry import SleepFn

logger = logging.getLogger(__name__)


class AssetStoreClient:
    """
    Entry point for uploading assets.

    Usage:
        async with AssetStoreClient(api_token="...") as client:
            result = await client.uploader.upload(stream, {"name": "video", "path": "media"})

    If no http_client is supplied one is created (and closed on exit);
    a caller-supplied client is left open.
    """

    def __init__(
        self,
        domain: Optional[str] = None,
        api_token: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
        sleep_fn: SleepFn = asyncio.sleep
    ):
        self.settings = settings or default_settings
        self.domain = domain or self.settings.ASSET_API_DOMAIN
        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=self.settings.HTTP_TIMEOUT_SECONDS,
            follow_redirects=True
        )

        self.api_client = APIClient(
            self.http_client,
            domain=self.domain,
            api_token=api_token if api_token is not None else self.settings.ASSET_API_TOKEN
        )
        self.assets = AssetsClient(self.api_client)
        self.uploader = Uploader(self.assets, self.http_client, sleep_fn=sleep_fn)

        logger.debug(f"Asset store client initialized for {self.domain}")

    async def aclose(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_http_client:
            await self.http_client.aclose()

    async def __aenter__(self) -> "AssetStoreClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
