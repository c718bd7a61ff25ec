"""
Bounded-concurrency fan-out of chunk uploads.

The producer reads chunks one at a time (strict stream order) and spawns one
task per chunk. Tasks wait on an admission semaphore before any network I/O.
A second semaphore caps how many chunks can sit in memory at once, so the
producer blocks instead of buffering the whole stream.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

from asset_uploader.core.exceptions import ChunkUploadError, ConfigurationError, StreamReadError
from asset_uploader.models.upload import Chunk, ChunkOutcome
from asset_uploader.uploader.splitter import ChunkSplitter

logger = logging.getLogger(__name__)

UploadFn = Callable[[Chunk, asyncio.Event], Awaitable[ChunkOutcome]]


@dataclass
class DispatchResult:
    """Joined outcome of every dispatched chunk."""

    outcomes: List[ChunkOutcome] = field(default_factory=list)
    first_error: Optional[ChunkUploadError] = None
    total_parts: int = 0
    peak_in_flight: int = 0

    @property
    def succeeded(self) -> bool:
        return (
            self.first_error is None
            and len(self.outcomes) == self.total_parts
            and all(outcome.success for outcome in self.outcomes)
        )

    @property
    def part_numbers(self) -> List[int]:
        """Contiguous 1..N list for the completion call."""
        return list(range(1, self.total_parts + 1))


class OutcomeCollector:
    """
    Lock-guarded outcome list. Remembers the first failure in observation order.
    """

    def __init__(self):
        self._outcomes: List[ChunkOutcome] = []
        self._lock = asyncio.Lock()
        self.first_error: Optional[ChunkUploadError] = None

    async def add(self, outcome: ChunkOutcome) -> bool:
        """
        Record an outcome.

        Returns:
            True if this outcome is the first failure observed
        """
        async with self._lock:
            self._outcomes.append(outcome)
            if outcome.error is not None and self.first_error is None:
                self.first_error = outcome.error
                return True
            return False

    def sorted_outcomes(self) -> List[ChunkOutcome]:
        return sorted(self._outcomes, key=lambda outcome: outcome.part_number)

    def __len__(self) -> int:
        return len(self._outcomes)


class ConcurrencyDispatcher:
    """
    Fans chunks out to upload tasks, at most `concurrency` at a time.

    A dispatcher instance serves a single upload.
    """

    def __init__(
        self,
        concurrency: int,
        max_buffered_chunks: int = 0,
        cancel_on_failure: bool = True
    ):
        if concurrency < 1:
            raise ConfigurationError("concurrency must be greater than 0")
        if max_buffered_chunks < 0:
            raise ConfigurationError("max_buffered_chunks must be >= 0")

        self.concurrency = concurrency
        self.max_buffered_chunks = max_buffered_chunks
        self.cancel_on_failure = cancel_on_failure

        self.admission = asyncio.Semaphore(concurrency)
        self._buffer_slots = asyncio.Semaphore(concurrency + max_buffered_chunks)
        self.cancel_event = asyncio.Event()
        self.collector = OutcomeCollector()

        self.in_flight = 0
        self.peak_in_flight = 0

    @property
    def buffer_capacity(self) -> int:
        return self.concurrency + self.max_buffered_chunks

    async def _run_chunk(self, chunk: Chunk, upload_fn: UploadFn) -> None:
        """Task body: wait for admission, upload, record the outcome."""
        try:
            async with self.admission:
                if self.cancel_event.is_set():
                    outcome = ChunkOutcome.abandoned(chunk.part_number)
                else:
                    self.in_flight += 1
                    self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
                    logger.debug(f"Part {chunk.part_number} admitted ({self.in_flight} in flight)")
                    try:
                        outcome = await upload_fn(chunk, self.cancel_event)
                    finally:
                        self.in_flight -= 1

                # Recorded while still holding the slot, so a failure cancels
                # waiting siblings before any of them is admitted
                await self._record(outcome)
        finally:
            self._buffer_slots.release()

    async def _record(self, outcome: ChunkOutcome) -> None:
        is_first_failure = await self.collector.add(outcome)
        if is_first_failure and self.cancel_on_failure and not self.cancel_event.is_set():
            logger.warning(
                f"Part {outcome.part_number} failed; cancelling remaining chunk uploads"
            )
            self.cancel_event.set()

    async def dispatch(self, splitter: ChunkSplitter, upload_fn: UploadFn) -> DispatchResult:
        """
        Read every chunk from splitter and upload it through upload_fn.

        Returns only after every spawned task has finished.

        Raises:
            StreamReadError: If the stream failed; launched tasks are cancelled
                cooperatively and joined first
        """
        tasks: List[asyncio.Task] = []
        read_error: Optional[StreamReadError] = None

        logger.info(
            f"Dispatching chunks of {splitter.chunk_size} bytes "
            f"(concurrency={self.concurrency}, buffer={self.buffer_capacity})"
        )

        try:
            while not self.cancel_event.is_set():
                await self._buffer_slots.acquire()
                if self.cancel_event.is_set():
                    self._buffer_slots.release()
                    break

                try:
                    chunk = await asyncio.to_thread(splitter.read_chunk)
                except StreamReadError as e:
                    self._buffer_slots.release()
                    logger.error(f"Stream read failed: {e}")
                    read_error = e
                    self.cancel_event.set()
                    break

                if chunk is None:
                    self._buffer_slots.release()
                    break

                tasks.append(asyncio.create_task(
                    self._run_chunk(chunk, upload_fn),
                    name=f"upload-part-{chunk.part_number}"
                ))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        # Barrier: every chunk's outcome must be known before deciding anything
        results = await asyncio.gather(*tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                raise result

        if read_error is not None:
            raise read_error

        result = DispatchResult(
            outcomes=self.collector.sorted_outcomes(),
            first_error=self.collector.first_error,
            total_parts=splitter.chunks_read,
            peak_in_flight=self.peak_in_flight
        )
        logger.info(
            f"Dispatched {result.total_parts} chunk(s), "
            f"{sum(1 for o in result.outcomes if o.success)} succeeded"
        )
        return result
