"""Transcript content variants returned by the Graph client.

The transcript ``/content`` endpoint may answer with a decoded text body, a
raw byte buffer, or a chunked stream. The client reports which one it got
as one of three closed variants so callers match on a known type.
"""

from __future__ import annotations

from collections.abc import AsyncIterable, AsyncIterator, Awaitable, Callable, Iterable
from dataclasses import dataclass, field


@dataclass(frozen=True)
class TextContent:
    text: str


@dataclass(frozen=True)
class BytesContent:
    data: bytes


async def _noop_close() -> None:
    return None


@dataclass(frozen=True)
class ByteStreamContent:
    """A byte stream that has not been read yet.

    ``close`` releases the underlying connection and is awaited once the
    stream has been drained (or failed).
    """

    chunks: AsyncIterable[bytes]
    close: Callable[[], Awaitable[None]] = field(default=_noop_close)

    @classmethod
    def from_iterable(cls, chunks: Iterable[bytes]) -> ByteStreamContent:
        """Wrap a push-style (synchronous) chunk source."""

        async def _agen() -> AsyncIterator[bytes]:
            for chunk in chunks:
                yield chunk

        return cls(chunks=_agen())


TranscriptContent = TextContent | BytesContent | ByteStreamContent


async def read_content(content: TranscriptContent, encoding: str = "utf-8") -> str:
    """Normalize any content variant to text.

    Streams are drained completely before decoding; the parser needs the
    whole document anyway.
    """
    if isinstance(content, TextContent):
        return content.text
    if isinstance(content, BytesContent):
        return content.data.decode(encoding)
    if isinstance(content, ByteStreamContent):
        try:
            buffer = bytearray()
            async for chunk in content.chunks:
                buffer.extend(chunk)
        finally:
            await content.close()
        return bytes(buffer).decode(encoding)
    raise TypeError(f"Unsupported transcript content: {type(content).__name__}")
