"""Pytest configuration and fixtures for uploader tests"""

import asyncio
import json
import re
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

import httpx
import pytest

from asset_uploader.client import AssetStoreClient

DOMAIN = "https://api.test"
API_TOKEN = "test-token"
UPLOAD_URL = "https://store.test/upload/session-1?sig=abc123"
SESSION_FIELDS = {
    "key": "media/video.mp4",
    "x-meta-assetdata": "{\"orgId\": 42}",
    "expiresIn": 3600,
    "overwrite": False,
}

Scripted = Union[int, Exception]


@dataclass
class RecordedPart:
    """A part upload accepted by the fake store."""
    part_number: int
    fields: Dict[str, str]
    payload: bytes
    params: Dict[str, str]


def parse_multipart(request: httpx.Request) -> Tuple[Dict[str, str], bytes]:
    """Split a multipart/form-data request into text fields and the file part."""
    content_type = request.headers["content-type"]
    boundary = content_type.split("boundary=", 1)[1].encode("ascii")

    fields: Dict[str, str] = {}
    file_data = b""
    for part in request.content.split(b"--" + boundary)[1:-1]:
        head, _, body = part.partition(b"\r\n\r\n")
        body = body[:-2]  # trailing CRLF before next boundary
        name = re.search(rb'name="([^"]+)"', head).group(1).decode()
        if b"filename=" in head:
            file_data = body
        else:
            fields[name] = body.decode()
    return fields, file_data


class FakeStore:
    """
    In-memory asset store behind an httpx.MockTransport.

    Per-part responses are scripted as a list of status codes or exceptions,
    consumed one per attempt; unscripted attempts succeed.
    """

    def __init__(self):
        self.negotiation_status = 200
        self.negotiation_body: Any = {
            "presignedUrl": {"url": UPLOAD_URL, "fields": dict(SESSION_FIELDS)}
        }
        self.part_responses: Dict[int, List[Scripted]] = {}
        self.part_delays: Dict[int, float] = {}
        self.completion_responses: List[Scripted] = []
        self.upload_delay = 0.0

        self.requests = 0
        self.negotiations: List[httpx.Request] = []
        self.attempts: Dict[int, int] = defaultdict(int)
        self.uploads: List[RecordedPart] = []
        self.finish_order: List[int] = []
        self.completion_attempts = 0
        self.completions: List[Dict[str, Any]] = []

        self.active = 0
        self.max_active = 0

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests += 1
        if request.url.host == "api.test":
            return self._negotiate(request)
        if request.method == "PUT":
            return await self._upload_part(request)
        if request.method == "POST":
            return self._complete(request)
        return httpx.Response(405)

    def _negotiate(self, request: httpx.Request) -> httpx.Response:
        self.negotiations.append(request)
        if self.negotiation_status >= 400:
            return httpx.Response(self.negotiation_status, json={"message": "negotiation refused"})
        return httpx.Response(200, json=self.negotiation_body)

    async def _upload_part(self, request: httpx.Request) -> httpx.Response:
        part_number = int(request.url.params["partNumber"])
        self.attempts[part_number] += 1

        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.part_delays.get(part_number, self.upload_delay))
        finally:
            self.active -= 1

        script = self.part_responses.get(part_number)
        outcome = script.pop(0) if script else 200
        if isinstance(outcome, Exception):
            raise outcome
        if outcome >= 400:
            return httpx.Response(outcome, json={"message": f"part {part_number} status {outcome}"})

        fields, payload = parse_multipart(request)
        self.uploads.append(RecordedPart(
            part_number=part_number,
            fields=fields,
            payload=payload,
            params=dict(request.url.params)
        ))
        self.finish_order.append(part_number)
        return httpx.Response(200, json={"partNumber": part_number})

    def _complete(self, request: httpx.Request) -> httpx.Response:
        self.completion_attempts += 1
        outcome = self.completion_responses.pop(0) if self.completion_responses else 200
        if isinstance(outcome, Exception):
            raise outcome
        if outcome >= 400:
            return httpx.Response(outcome, json={"message": "completion refused"})

        body = json.loads(request.content)
        self.completions.append(body)
        return httpx.Response(200, json={
            "name": "video",
            "fileId": "file-1",
            "parts": len(body["parts"]),
        })

    def uploaded_bytes(self) -> bytes:
        return b"".join(
            part.payload for part in sorted(self.uploads, key=lambda p: p.part_number)
        )


@pytest.fixture
def store() -> FakeStore:
    """Fresh fake store per test"""
    return FakeStore()


@pytest.fixture
async def http_client(store):
    """Async HTTP client routed to the fake store"""
    async with httpx.AsyncClient(transport=store.transport()) as client:
        yield client


@pytest.fixture
def sleeps() -> List[float]:
    """Backoff delays requested during a test"""
    return []


@pytest.fixture
def fake_sleep(sleeps):
    """Sleep replacement that records delays without waiting"""
    async def _sleep(delay: float) -> None:
        sleeps.append(delay)
    return _sleep


@pytest.fixture
def client(http_client, fake_sleep) -> AssetStoreClient:
    """Asset store client wired to the fake store"""
    return AssetStoreClient(
        domain=DOMAIN,
        api_token=API_TOKEN,
        http_client=http_client,
        sleep_fn=fake_sleep
    )


@pytest.fixture
def upload_request() -> Dict[str, Any]:
    """Typical asset metadata"""
    return {"name": "video", "path": "media", "format": "mp4", "access": "public-read"}


def make_payload(size: int, seed: Optional[int] = None) -> bytes:
    """Deterministic non-repeating-ish payload"""
    pattern = bytes(range(256))
    if seed is not None:
        pattern = bytes((b + seed) % 256 for b in pattern)
    repeats, remainder = divmod(size, len(pattern))
    return pattern * repeats + pattern[:remainder]
