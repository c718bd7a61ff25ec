"""
Uploads a single chunk to the presigned session URL.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional

import httpx

from asset_uploader.clients.api_client import raise_for_api_status
from asset_uploader.core.exceptions import (
    APIError,
    FatalChunkError,
    RetryableChunkError,
    UploadCancelledError,
)
from asset_uploader.models.upload import Chunk, ChunkOutcome, UploadOptions, UploadSession
from asset_uploader.uploader.backoff import BackoffPolicy
from asset_uploader.uploader.retry import RetryRunner, SleepFn, is_fatal

logger = logging.getLogger(__name__)

PART_NUMBER_PARAM = "partNumber"
FILE_FIELD = "file"


def format_form_value(value: Any) -> str:
    """Render a session field as multipart text."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (int, float)):
        return str(value)
    if value is None:
        return ""
    return json.dumps(value, separators=(",", ":"))


def build_form_fields(fields: Dict[str, Any]) -> Dict[str, str]:
    return {key: format_form_value(value) for key, value in fields.items()}


class ChunkUploader:
    """
    PUTs chunks to the session URL with retry and backoff.

    One instance serves every chunk of an upload; it holds no per-chunk state.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        session: UploadSession,
        options: UploadOptions,
        sleep_fn: SleepFn = asyncio.sleep
    ):
        self.http_client = http_client
        self.session = session
        self.options = options
        self.sleep_fn = sleep_fn
        self.policy = BackoffPolicy(
            base_delay=options.base_delay,
            factor=options.backoff_factor,
            max_delay=options.max_delay
        )
        self._form_fields = build_form_fields(dict(session.fields))

    async def _send(self, chunk: Chunk) -> httpx.Response:
        """Single attempt. The multipart body is rebuilt from scratch every time."""
        response = await self.http_client.put(
            self.session.upload_url,
            params={PART_NUMBER_PARAM: str(chunk.part_number)},
            data=self._form_fields,
            files={FILE_FIELD: (FILE_FIELD, chunk.payload, "application/octet-stream")}
        )
        raise_for_api_status(response)
        return response

    async def upload(
        self,
        chunk: Chunk,
        cancel_event: Optional[asyncio.Event] = None
    ) -> ChunkOutcome:
        """
        Upload one chunk.

        Args:
            chunk: Chunk to upload
            cancel_event: Set by the dispatcher when a sibling chunk failed

        Returns:
            ChunkOutcome; failures are reported in the outcome, not raised
        """
        runner = RetryRunner(
            policy=self.policy,
            max_retries=self.options.max_retries,
            sleep_fn=self.sleep_fn,
            cancel_event=cancel_event,
            description=f"Part {chunk.part_number}"
        )

        try:
            await runner.run(lambda: self._send(chunk))
        except UploadCancelledError:
            logger.warning(f"Part {chunk.part_number} abandoned after {runner.attempts} attempt(s)")
            return ChunkOutcome.abandoned(chunk.part_number, runner.attempts)
        except APIError as e:
            error_cls = FatalChunkError if is_fatal(e) else RetryableChunkError
            if error_cls is FatalChunkError:
                logger.error(f"Part {chunk.part_number} rejected by store: {e}")
            error = error_cls(
                chunk.part_number,
                str(e),
                attempts=runner.attempts,
                status_code=e.status_code,
                payload=e.payload
            )
            error.__cause__ = e
            return ChunkOutcome.failed(chunk.part_number, error)
        except httpx.TransportError as e:
            error = RetryableChunkError(
                chunk.part_number,
                f"{type(e).__name__}: {e}",
                attempts=runner.attempts
            )
            error.__cause__ = e
            return ChunkOutcome.failed(chunk.part_number, error)

        logger.debug(f"Part {chunk.part_number} uploaded ({chunk.size} bytes, {runner.attempts} attempt(s))")
        return ChunkOutcome.succeeded(chunk.part_number, runner.attempts)
