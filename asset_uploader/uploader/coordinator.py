"""
Upload coordinator: negotiate a session, upload chunks, complete.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Union

import httpx
from pydantic import ValidationError

from asset_uploader.clients.api_client import raise_for_api_status
from asset_uploader.clients.assets_client import AssetsClient
from asset_uploader.core.exceptions import (
    APIError,
    AssetUploaderError,
    CompletionError,
    ConfigurationError,
    SessionNegotiationError,
)
from asset_uploader.models.upload import UploadOptions, UploadSession, UploadState
from asset_uploader.schemas import SignedUrlV2Request, UploaderUploadRequest
from asset_uploader.uploader.backoff import BackoffPolicy
from asset_uploader.uploader.chunk_uploader import ChunkUploader
from asset_uploader.uploader.dispatcher import ConcurrencyDispatcher, DispatchResult
from asset_uploader.uploader.retry import RetryRunner, SleepFn
from asset_uploader.uploader.splitter import ChunkSplitter, StreamSource

logger = logging.getLogger(__name__)

_TRANSITIONS = {
    UploadState.NOT_STARTED: {UploadState.NEGOTIATING_SESSION, UploadState.FAILED},
    UploadState.NEGOTIATING_SESSION: {UploadState.DISPATCHING, UploadState.FAILED},
    UploadState.DISPATCHING: {UploadState.COMPLETING, UploadState.FAILED},
    UploadState.COMPLETING: {UploadState.SUCCEEDED, UploadState.FAILED},
    UploadState.SUCCEEDED: set(),
    UploadState.FAILED: set(),
}


class _UploadRun:
    """State of a single Uploader.upload call. Terminal states are final."""

    def __init__(self, name: str):
        self.name = name
        self.state = UploadState.NOT_STARTED
        self.session: Optional[UploadSession] = None
        self.dispatch_result: Optional[DispatchResult] = None

    def transition(self, new_state: UploadState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Illegal upload state transition {self.state.value} -> {new_state.value}"
            )
        logger.debug(f"[{self.name}] {self.state.value} -> {new_state.value}")
        self.state = new_state


class Uploader:
    """
    Chunked multipart uploader.

    Pipeline per upload:
    1. Validate options (no I/O on failure)
    2. Negotiate an upload session via the assets client
    3. Split the stream and upload chunks with bounded concurrency
    4. If every chunk succeeded, call completion with parts [1..N]
    """

    def __init__(
        self,
        assets: AssetsClient,
        http_client: httpx.AsyncClient,
        sleep_fn: SleepFn = asyncio.sleep
    ):
        self.assets = assets
        self.http_client = http_client
        self.sleep_fn = sleep_fn
        self.last_state: Optional[UploadState] = None

    async def upload(
        self,
        stream: StreamSource,
        request: Union[UploaderUploadRequest, SignedUrlV2Request, Dict[str, Any]],
        options: Optional[UploadOptions] = None,
        **overrides: Any
    ) -> Dict[str, Any]:
        """
        Upload a stream as one asset.

        Args:
            stream: Binary file-like object or bytes
            request: Asset metadata (name, path, format, access, tags, ...)
            options: Upload options; defaults come from settings
            **overrides: Named options (chunk_size, max_retries, concurrency, ...)
                applied on top of `options`

        Returns:
            Completion response from the store

        Raises:
            ConfigurationError: Invalid options or request metadata, before any network call
            SessionNegotiationError: The session could not be created
            StreamReadError: The stream failed while being read
            ChunkUploadError: First chunk failure (FatalChunkError or RetryableChunkError)
            CompletionError: The completion call failed
        """
        if options is None:
            options = UploadOptions.build(**overrides)
        elif overrides:
            options = UploadOptions.build(**{**options.model_dump(), **overrides})

        if isinstance(request, dict):
            try:
                request = UploaderUploadRequest.model_validate(request)
            except ValidationError as e:
                problems = "; ".join(
                    f"{'.'.join(str(loc) for loc in err['loc']) or 'request'}: {err['msg']}"
                    for err in e.errors()
                )
                raise ConfigurationError(f"Invalid upload request: {problems}") from e

        run = _UploadRun(name=request.name or "asset")
        try:
            return await self._execute(run, stream, request, options)
        except BaseException:
            if run.state not in (UploadState.SUCCEEDED, UploadState.FAILED):
                run.transition(UploadState.FAILED)
            raise
        finally:
            self.last_state = run.state

    async def _execute(
        self,
        run: _UploadRun,
        stream: StreamSource,
        request: SignedUrlV2Request,
        options: UploadOptions
    ) -> Dict[str, Any]:
        # Validate the stream before touching the network
        splitter = ChunkSplitter(stream, options.chunk_size)

        run.transition(UploadState.NEGOTIATING_SESSION)
        run.session = await self._negotiate(request)

        run.transition(UploadState.DISPATCHING)
        chunk_uploader = ChunkUploader(
            self.http_client,
            run.session,
            options,
            sleep_fn=self.sleep_fn
        )
        dispatcher = ConcurrencyDispatcher(
            concurrency=options.concurrency,
            max_buffered_chunks=options.max_buffered_chunks,
            cancel_on_failure=options.cancel_on_failure
        )
        result = await dispatcher.dispatch(splitter, chunk_uploader.upload)
        run.dispatch_result = result

        if not result.succeeded:
            logger.error(f"[{run.name}] Upload failed, skipping completion: {result.first_error}")
            run.transition(UploadState.FAILED)
            if result.first_error is None:
                raise AssetUploaderError(
                    f"Only {len(result.outcomes)} of {result.total_parts} part(s) reported an outcome"
                )
            raise result.first_error

        run.transition(UploadState.COMPLETING)
        response = await self._complete(run.session, result.part_numbers, options)

        run.transition(UploadState.SUCCEEDED)
        logger.info(f"[{run.name}] Upload complete: {result.total_parts} part(s), {splitter.bytes_read} bytes")
        return response

    async def _negotiate(self, request: SignedUrlV2Request) -> UploadSession:
        if isinstance(request, UploaderUploadRequest):
            request = request.to_signed_url_request()
        try:
            return await self.assets.negotiate_upload_session(request)
        except SessionNegotiationError:
            raise
        except (AssetUploaderError, httpx.HTTPError) as e:
            raise SessionNegotiationError(f"Error creating signed URL: {e}") from e

    async def _complete(
        self,
        session: UploadSession,
        part_numbers: List[int],
        options: UploadOptions
    ) -> Dict[str, Any]:
        """
        Tell the store which parts make up the object.

        Raises:
            CompletionError: After the retry budget is spent, or on a 4xx
        """
        payload: Dict[str, Any] = {"parts": part_numbers}
        payload.update(session.fields)

        async def send() -> Dict[str, Any]:
            response = await self.http_client.post(
                session.upload_url,
                content=json.dumps(payload).encode("utf-8"),
                headers={"Content-Type": "application/json"}
            )
            raise_for_api_status(response)
            return json.loads(response.content) if response.content else {}

        runner = RetryRunner(
            policy=BackoffPolicy(
                base_delay=options.base_delay,
                factor=options.backoff_factor,
                max_delay=options.max_delay
            ),
            max_retries=options.max_retries,
            sleep_fn=self.sleep_fn,
            description="Completion"
        )

        try:
            return await runner.run(send)
        except APIError as e:
            raise CompletionError(
                f"Completing multipart upload failed: {e}",
                status_code=e.status_code,
                payload=e.payload
            ) from e
        except (httpx.TransportError, json.JSONDecodeError) as e:
            raise CompletionError(f"Completing multipart upload failed: {e}") from e
