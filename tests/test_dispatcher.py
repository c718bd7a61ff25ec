"""Tests for the concurrency dispatcher"""

import asyncio
import io

import pytest

from asset_uploader.core.exceptions import ConfigurationError, FatalChunkError, StreamReadError
from asset_uploader.models.upload import ChunkOutcome
from asset_uploader.uploader.dispatcher import ConcurrencyDispatcher, DispatchResult, OutcomeCollector
from asset_uploader.uploader.splitter import ChunkSplitter
from tests.conftest import make_payload


class FailingStream(io.RawIOBase):
    """Returns four bytes per read, then raises on the Nth read."""

    def __init__(self, fail_on: int):
        self.reads = 0
        self.fail_on = fail_on

    def readable(self):
        return True

    def read(self, size=-1):
        self.reads += 1
        if self.reads >= self.fail_on:
            raise OSError("device not ready")
        return b"abcd"


class RecordingUpload:
    """upload_fn stand-in that records calls and concurrency."""

    def __init__(self, delay=0.0, fail_parts=()):
        self.delay = delay
        self.fail_parts = set(fail_parts)
        self.called = []
        self.finished = []
        self.active = 0
        self.max_active = 0

    async def __call__(self, chunk, cancel_event):
        self.called.append(chunk.part_number)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
        finally:
            self.active -= 1
            self.finished.append(chunk.part_number)

        if chunk.part_number in self.fail_parts:
            return ChunkOutcome.failed(
                chunk.part_number,
                FatalChunkError(chunk.part_number, "HTTP 400: bad part", status_code=400)
            )
        return ChunkOutcome.succeeded(chunk.part_number, attempts=1)


async def wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


class TestDispatch:

    @pytest.mark.asyncio
    async def test_all_parts_succeed(self):
        upload = RecordingUpload()
        dispatcher = ConcurrencyDispatcher(concurrency=3)

        result = await dispatcher.dispatch(ChunkSplitter(make_payload(95), 10), upload)

        assert result.succeeded
        assert result.total_parts == 10
        assert result.part_numbers == list(range(1, 11))
        assert [o.part_number for o in result.outcomes] == list(range(1, 11))
        assert sorted(upload.called) == list(range(1, 11))

    @pytest.mark.asyncio
    async def test_in_flight_never_exceeds_concurrency(self):
        upload = RecordingUpload(delay=0.01)
        dispatcher = ConcurrencyDispatcher(concurrency=3, max_buffered_chunks=5)

        result = await dispatcher.dispatch(ChunkSplitter(make_payload(200), 10), upload)

        assert result.succeeded
        assert upload.max_active <= 3
        assert result.peak_in_flight <= 3

    @pytest.mark.asyncio
    async def test_concurrency_one_is_sequential(self):
        upload = RecordingUpload(delay=0.005)
        dispatcher = ConcurrencyDispatcher(concurrency=1, max_buffered_chunks=4)

        await dispatcher.dispatch(ChunkSplitter(make_payload(50), 10), upload)

        assert upload.max_active == 1
        assert upload.called == [1, 2, 3, 4, 5]

    @pytest.mark.asyncio
    async def test_empty_stream(self):
        upload = RecordingUpload()
        dispatcher = ConcurrencyDispatcher(concurrency=2)

        result = await dispatcher.dispatch(ChunkSplitter(b"", 10), upload)

        assert result.succeeded
        assert result.total_parts == 0
        assert result.part_numbers == []
        assert upload.called == []

    @pytest.mark.asyncio
    async def test_producer_blocks_when_buffer_full(self):
        gate = asyncio.Event()
        started = []

        async def gated_upload(chunk, cancel_event):
            started.append(chunk.part_number)
            await gate.wait()
            return ChunkOutcome.succeeded(chunk.part_number, attempts=1)

        splitter = ChunkSplitter(make_payload(100), 10)
        dispatcher = ConcurrencyDispatcher(concurrency=2, max_buffered_chunks=1)
        task = asyncio.create_task(dispatcher.dispatch(splitter, gated_upload))

        await wait_until(lambda: splitter.chunks_read == 3 and len(started) == 2)
        await asyncio.sleep(0.05)
        assert splitter.chunks_read == 3
        assert started == [1, 2]

        gate.set()
        result = await asyncio.wait_for(task, timeout=2.0)

        assert result.succeeded
        assert result.total_parts == 10


class TestFailureHandling:

    @pytest.mark.asyncio
    async def test_failure_cancels_remaining_parts(self):
        upload = RecordingUpload(fail_parts={2})
        dispatcher = ConcurrencyDispatcher(concurrency=1, max_buffered_chunks=3)

        result = await dispatcher.dispatch(ChunkSplitter(make_payload(50), 10), upload)

        assert not result.succeeded
        assert isinstance(result.first_error, FatalChunkError)
        assert result.first_error.part_number == 2
        assert upload.called == [1, 2]
        assert dispatcher.cancel_event.is_set()
        assert all(o.cancelled for o in result.outcomes if o.part_number > 2)
        assert result.outcomes[0].success

    @pytest.mark.asyncio
    async def test_without_cancellation_every_part_is_attempted(self):
        upload = RecordingUpload(fail_parts={2})
        dispatcher = ConcurrencyDispatcher(concurrency=1, cancel_on_failure=False)

        result = await dispatcher.dispatch(ChunkSplitter(make_payload(50), 10), upload)

        assert not result.succeeded
        assert result.first_error.part_number == 2
        assert upload.called == [1, 2, 3, 4, 5]
        assert not dispatcher.cancel_event.is_set()

    @pytest.mark.asyncio
    async def test_first_error_is_first_observed(self):
        upload = RecordingUpload(fail_parts={1, 3})
        dispatcher = ConcurrencyDispatcher(concurrency=1, cancel_on_failure=False)

        result = await dispatcher.dispatch(ChunkSplitter(make_payload(40), 10), upload)

        assert result.first_error.part_number == 1

    @pytest.mark.asyncio
    async def test_read_error_joins_in_flight_tasks(self):
        upload = RecordingUpload(delay=0.01)
        dispatcher = ConcurrencyDispatcher(concurrency=2, max_buffered_chunks=2)

        with pytest.raises(StreamReadError):
            await dispatcher.dispatch(ChunkSplitter(FailingStream(fail_on=3), 4), upload)

        assert sorted(upload.called) == sorted(upload.finished)
        assert upload.active == 0
        assert dispatcher.cancel_event.is_set()
        assert len(dispatcher.collector) == 2

    @pytest.mark.asyncio
    async def test_unexpected_task_error_propagates(self):
        async def broken_upload(chunk, cancel_event):
            raise KeyError("bug")

        dispatcher = ConcurrencyDispatcher(concurrency=2)

        with pytest.raises(KeyError):
            await dispatcher.dispatch(ChunkSplitter(make_payload(30), 10), broken_upload)


class TestConfiguration:

    @pytest.mark.parametrize("concurrency", [0, -1])
    def test_invalid_concurrency(self, concurrency):
        with pytest.raises(ConfigurationError):
            ConcurrencyDispatcher(concurrency=concurrency)

    def test_negative_buffer(self):
        with pytest.raises(ConfigurationError):
            ConcurrencyDispatcher(concurrency=2, max_buffered_chunks=-1)

    def test_buffer_capacity(self):
        assert ConcurrencyDispatcher(concurrency=3, max_buffered_chunks=2).buffer_capacity == 5


class TestOutcomeCollector:

    @pytest.mark.asyncio
    async def test_keeps_first_failure(self):
        collector = OutcomeCollector()
        first = FatalChunkError(3, "first")
        second = FatalChunkError(1, "second")

        assert await collector.add(ChunkOutcome.succeeded(2, attempts=1)) is False
        assert await collector.add(ChunkOutcome.failed(3, first)) is True
        assert await collector.add(ChunkOutcome.failed(1, second)) is False

        assert collector.first_error is first
        assert len(collector) == 3
        assert [o.part_number for o in collector.sorted_outcomes()] == [1, 2, 3]

    def test_result_with_missing_outcomes_is_not_success(self):
        result = DispatchResult(
            outcomes=[ChunkOutcome.succeeded(1, attempts=1)],
            total_parts=2
        )
        assert not result.succeeded
