"""
Stream splitting for chunked uploads.
"""

import io
import logging
from typing import BinaryIO, Iterator, Optional, Union

from asset_uploader.core.exceptions import ConfigurationError, StreamReadError
from asset_uploader.models.upload import Chunk

logger = logging.getLogger(__name__)

StreamSource = Union[BinaryIO, bytes, bytearray, memoryview]


class ChunkSplitter:
    """
    Reads a binary stream and produces ordered, numbered chunks.

    Every chunk holds exactly chunk_size bytes except the last, which holds
    the remainder. Part numbers start at 1 and follow read order. The splitter
    is single-pass: once exhausted it keeps returning None.
    """

    def __init__(self, stream: StreamSource, chunk_size: int):
        if chunk_size <= 0:
            raise ConfigurationError("chunk size must be greater than 0")

        if isinstance(stream, (bytes, bytearray, memoryview)):
            stream = io.BytesIO(bytes(stream))
        if not callable(getattr(stream, "read", None)):
            raise TypeError(f"Expected a readable binary stream, got {type(stream).__name__}")

        self.stream = stream
        self.chunk_size = chunk_size
        self.chunks_read = 0
        self.bytes_read = 0
        self._exhausted = False

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    def _read_exact(self) -> bytes:
        """Read up to chunk_size bytes, looping over short reads until EOF."""
        buffer = bytearray()
        while len(buffer) < self.chunk_size:
            try:
                data = self.stream.read(self.chunk_size - len(buffer))
            except Exception as e:
                raise StreamReadError(
                    f"Failed reading part {self.chunks_read + 1} from stream: {e}"
                ) from e

            if not isinstance(data, (bytes, bytearray, memoryview)):
                raise StreamReadError(
                    f"Stream returned {type(data).__name__}; open it in binary mode"
                )
            if not data:
                break
            buffer.extend(data)
        return bytes(buffer)

    def read_chunk(self) -> Optional[Chunk]:
        """
        Read the next chunk.

        Returns:
            Next Chunk, or None at end of stream

        Raises:
            StreamReadError: On a genuine read failure
        """
        if self._exhausted:
            return None

        try:
            payload = self._read_exact()
        except StreamReadError:
            self._exhausted = True
            raise

        if not payload:
            self._exhausted = True
            logger.debug(f"Stream exhausted after {self.chunks_read} chunk(s), {self.bytes_read} bytes")
            return None

        self.chunks_read += 1
        self.bytes_read += len(payload)
        return Chunk(part_number=self.chunks_read, payload=payload)

    def __iter__(self) -> Iterator[Chunk]:
        while True:
            chunk = self.read_chunk()
            if chunk is None:
                return
            yield chunk
