# mediagate/services/streaming.py
from __future__ import annotations

"""
MediaGate — Range Streaming Engine
==================================

Serves stored media as HTTP responses in one of three modes:

| Mode     | Trigger                        | Status | Notes                                   |
|----------|--------------------------------|--------|-----------------------------------------|
| download | `?download=true` (caller gated)| 200    | attachment, full body, short cache      |
| range    | `Range: bytes=...`             | 206    | window capped at STREAM_MAX_CHUNK_BYTES |
| full     | no Range header                | 200    | full body, inline                       |

Reading model
-------------
`iter_file_range` is a plain, pull-based generator: it opens the file, seeks,
and yields bounded blocks. Closing the generator closes the handle, so the
consumer controls the lifetime. `aiter_file_range` pulls blocks on a worker
thread and closes the generator in `finally`; on client disconnect the close
runs as soon as the in-flight block read returns.

Range rules
-----------
- `bytes=a-b`, `bytes=a-` and suffix `bytes=-n` are accepted.
- Multi-range requests are served as their first range (no multipart bodies).
- `end` is clamped to `min(end, start + max_chunk - 1, size - 1)`.
- Anything unsatisfiable → 416 with `Content-Range: bytes */{size}`.
"""

import asyncio
import logging
import mimetypes
import re
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable, Iterator, Optional, Union

from starlette.responses import StreamingResponse

from mediagate.core.config import settings
from mediagate.core.exceptions import RangeNotSatisfiableException
from mediagate.core.metrics import add_bytes_served

logger = logging.getLogger(__name__)

DEFAULT_MEDIA_TYPE = "video/mp4"
DOWNLOAD_CACHE_CONTROL = "private, no-cache"
MEDIA_HEADERS = {
    "Accept-Ranges": "bytes",
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}

_RANGE_SPEC = re.compile(r"^(\d*)-(\d*)$")

# Dedicated pool so slow disks cannot starve the default executor
_READ_EXECUTOR = ThreadPoolExecutor(
    max_workers=int(settings.STREAM_READ_WORKERS),
    thread_name_prefix="mediagate-read",
)


# ─────────────────────────────────────────────────────────────
# 📐 Range parsing
# ─────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class ByteRange:
    start: int
    end: int  # inclusive
    size: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    @property
    def content_range(self) -> str:
        return f"bytes {self.start}-{self.end}/{self.size}"


def parse_range_header(header: str, size: int, max_chunk: Optional[int] = None) -> ByteRange:
    """
    Parse a single `Range` header against a file of `size` bytes.

    Raises `RangeNotSatisfiableException` for malformed or out-of-bounds ranges.
    """
    cap = int(max_chunk or settings.STREAM_MAX_CHUNK_BYTES)
    value = (header or "").strip()
    unit, sep, ranges = value.partition("=")
    if not sep or unit.strip().lower() != "bytes":
        raise RangeNotSatisfiableException(size=size)

    first = ranges.split(",")[0].replace(" ", "")
    m = _RANGE_SPEC.match(first)
    if not m or (not m.group(1) and not m.group(2)) or size <= 0:
        raise RangeNotSatisfiableException(size=size)

    if not m.group(1):
        # Suffix form: last N bytes
        suffix = int(m.group(2))
        if suffix <= 0:
            raise RangeNotSatisfiableException(size=size)
        start = max(0, size - suffix)
        end = size - 1
    else:
        start = int(m.group(1))
        end = int(m.group(2)) if m.group(2) else size - 1
        if start >= size or end < start:
            raise RangeNotSatisfiableException(size=size)

    end = min(end, size - 1, start + cap - 1)
    return ByteRange(start=start, end=end, size=size)


# ─────────────────────────────────────────────────────────────
# 📤 Readers
# ─────────────────────────────────────────────────────────────
def iter_file_range(path: Union[str, Path], start: int, end: int, block_size: Optional[int] = None) -> Iterator[bytes]:
    """Yield bytes ``[start, end]`` (inclusive) from `path` in bounded blocks."""
    block = int(block_size or settings.STREAM_READ_BLOCK_BYTES)
    remaining = end - start + 1
    with open(path, "rb") as fh:
        fh.seek(start)
        while remaining > 0:
            data = fh.read(min(block, remaining))
            if not data:
                break
            remaining -= len(data)
            yield data


async def aiter_file_range(
    source: Iterator[bytes],
    *,
    mode: str = "full",
    on_error: Optional[Callable[[BaseException], Awaitable[None]]] = None,
) -> AsyncIterator[bytes]:
    """
    Adapt a blocking block iterator to an async one.

    Each block is pulled on `_READ_EXECUTOR`. The source is closed exactly once:
    immediately on normal exit, or right after the in-flight read completes
    when the consumer goes away mid-read.
    """
    inflight: Optional[Future] = None
    try:
        while True:
            inflight = _READ_EXECUTOR.submit(next, source, None)
            chunk = await asyncio.wrap_future(inflight)
            inflight = None
            if chunk is None:
                break
            add_bytes_served(mode, len(chunk))
            yield chunk
    except OSError as exc:
        logger.critical("Stream read failed mid-transfer (%s): %s", mode, exc)
        if on_error is not None:
            try:
                await on_error(exc)
            except Exception:
                logger.exception("Stream error callback failed")
        raise
    finally:
        if inflight is not None and not inflight.done():
            inflight.add_done_callback(lambda _f: source.close())
        else:
            source.close()


# ─────────────────────────────────────────────────────────────
# 🎛 Response builder
# ─────────────────────────────────────────────────────────────
def guess_media_type(filename: Optional[str], default: str = DEFAULT_MEDIA_TYPE) -> str:
    if not filename:
        return default
    guessed, _ = mimetypes.guess_type(filename)
    return guessed or default


def build_stream_response(
    open_stream: Callable[[int, int], Iterator[bytes]],
    *,
    size: int,
    range_header: Optional[str] = None,
    download: bool = False,
    content_disposition: Optional[str] = None,
    media_type: str = DEFAULT_MEDIA_TYPE,
    max_chunk: Optional[int] = None,
    cache_max_age: Optional[int] = None,
    cache_control: Optional[str] = None,
    accept_ranges: bool = True,
    on_error: Optional[Callable[[BaseException], Awaitable[None]]] = None,
) -> StreamingResponse:
    """
    Build the response for one of the three serving modes.

    `open_stream(start, end)` must return a fresh block iterator; it is only
    called once the mode and byte window are known, so 416s never open files.

    `accept_ranges=False` (archives, photos) advertises `Accept-Ranges: none`
    and ignores any `range_header`. `cache_control` overrides the per-mode
    Cache-Control value.

    Steps
    -----
    1) **Download**: full body as attachment with a short cache lifetime.
    2) **Range**: parse/clamp the header and answer 206 with Content-Range.
    3) **Full**: full body inline.
    """
    max_age = int(settings.STREAM_CACHE_MAX_AGE if cache_max_age is None else cache_max_age)
    headers = dict(MEDIA_HEADERS)
    if not accept_ranges:
        headers["Accept-Ranges"] = "none"
        range_header = None

    # ── [Step 1] Download ──────────────────────────────────────────────────
    if download:
        headers.update(
            {
                "Content-Length": str(size),
                "Cache-Control": cache_control or DOWNLOAD_CACHE_CONTROL,
                "Content-Disposition": content_disposition or "attachment",
            }
        )
        body = aiter_file_range(open_stream(0, size - 1), mode="download", on_error=on_error)
        return StreamingResponse(body, status_code=200, headers=headers, media_type=media_type)

    # ── [Step 2] Range ─────────────────────────────────────────────────────
    if range_header:
        br = parse_range_header(range_header, size, max_chunk)
        headers.update(
            {
                "Content-Range": br.content_range,
                "Content-Length": str(br.length),
                "Cache-Control": f"private, max-age={max_age}",
            }
        )
        body = aiter_file_range(open_stream(br.start, br.end), mode="range", on_error=on_error)
        return StreamingResponse(body, status_code=206, headers=headers, media_type=media_type)

    # ── [Step 3] Full ──────────────────────────────────────────────────────
    headers.update({"Content-Length": str(size), "Cache-Control": cache_control or f"private, max-age={max_age}"})
    body = aiter_file_range(open_stream(0, size - 1), mode="full", on_error=on_error)
    return StreamingResponse(body, status_code=200, headers=headers, media_type=media_type)


__all__ = [
    "ByteRange",
    "parse_range_header",
    "iter_file_range",
    "aiter_file_range",
    "guess_media_type",
    "build_stream_response",
]
