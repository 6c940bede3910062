import hashlib

import pytest

from mediagate.core.exceptions import RangeNotSatisfiableException
from mediagate.services.streaming import (
    aiter_file_range,
    build_stream_response,
    guess_media_type,
    iter_file_range,
    parse_range_header,
)
from tests.fixtures.media import pattern_bytes

MiB = 1024 * 1024


# ─────────────────────────────────────────────────────────────
# 📐 Range parsing
# ─────────────────────────────────────────────────────────────
@pytest.mark.parametrize(
    "header,expected",
    [
        ("bytes=0-99", (0, 99)),
        ("bytes=100-", (100, 999)),
        ("bytes=-100", (900, 999)),
        ("bytes=-5000", (0, 999)),
        ("bytes=990-5000", (990, 999)),
        ("bytes=10-19, 30-39", (10, 19)),
        ("BYTES = 5-6", (5, 6)),
    ],
)
def test_parse_range_forms(header, expected):
    br = parse_range_header(header, 1000)
    assert (br.start, br.end) == expected
    assert br.length == expected[1] - expected[0] + 1
    assert br.content_range == f"bytes {expected[0]}-{expected[1]}/1000"


@pytest.mark.parametrize(
    "header",
    ["bytes=1000-", "bytes=5-2", "bytes=-0", "bytes=-", "items=0-1", "bytes=abc", "0-10"],
)
def test_unsatisfiable_ranges(header):
    with pytest.raises(RangeNotSatisfiableException) as exc:
        parse_range_header(header, 1000)
    assert exc.value.status_code == 416
    assert exc.value.headers["Content-Range"] == "bytes */1000"


def test_empty_file_has_no_satisfiable_range():
    with pytest.raises(RangeNotSatisfiableException):
        parse_range_header("bytes=0-", 0)


def test_open_ended_range_is_capped_at_ten_mib():
    br = parse_range_header("bytes=0-", 50 * MiB)
    assert br.end == 10 * MiB - 1
    assert br.length == 10 * MiB

    br = parse_range_header("bytes=5-", 50 * MiB)
    assert (br.start, br.end) == (5, 5 + 10 * MiB - 1)


def test_explicit_cap_overrides_default():
    assert parse_range_header("bytes=0-", 1000, max_chunk=100).end == 99


# ─────────────────────────────────────────────────────────────
# 📤 Readers
# ─────────────────────────────────────────────────────────────
def test_iter_file_range_reads_exact_window(tmp_path):
    data = pattern_bytes(10_000)
    path = tmp_path / "clip.mp4"
    path.write_bytes(data)

    blocks = list(iter_file_range(path, 1234, 5677, block_size=1000))
    assert b"".join(blocks) == data[1234:5678]
    assert max(len(b) for b in blocks) <= 1000


class TrackedSource:
    """Block iterator that records how often it was closed."""

    def __init__(self, blocks, fail_after=None):
        self.blocks = list(blocks)
        self.fail_after = fail_after
        self.served = 0
        self.closed = 0

    def __iter__(self):
        return self

    def __next__(self):
        if self.fail_after is not None and self.served >= self.fail_after:
            raise OSError("disk gone")
        if not self.blocks:
            raise StopIteration
        self.served += 1
        return self.blocks.pop(0)

    def close(self):
        self.closed += 1


async def test_aiter_closes_source_after_full_read():
    src = TrackedSource([b"a", b"b", b"c"])
    out = [chunk async for chunk in aiter_file_range(src)]
    assert out == [b"a", b"b", b"c"]
    assert src.closed == 1


async def test_aiter_closes_source_when_consumer_stops_early():
    src = TrackedSource([b"a", b"b", b"c"])
    agen = aiter_file_range(src)
    assert await agen.__anext__() == b"a"
    await agen.aclose()
    assert src.closed == 1
    assert src.served == 1


async def test_aiter_reports_and_reraises_io_errors():
    seen = []

    async def on_error(exc):
        seen.append(exc)

    src = TrackedSource([b"a", b"b"], fail_after=1)
    agen = aiter_file_range(src, on_error=on_error)
    assert await agen.__anext__() == b"a"
    with pytest.raises(OSError):
        await agen.__anext__()
    assert len(seen) == 1 and isinstance(seen[0], OSError)
    assert src.closed == 1


def test_guess_media_type():
    assert guess_media_type("a.mp4") == "video/mp4"
    assert guess_media_type("a.zip") == "application/zip"
    assert guess_media_type(None) == "video/mp4"
    assert guess_media_type("noext") == "video/mp4"


# ─────────────────────────────────────────────────────────────
# 🎛 Response builder
# ─────────────────────────────────────────────────────────────
class Opener:
    def __init__(self, data: bytes):
        self.data = data
        self.calls = []

    def __call__(self, start, end):
        self.calls.append((start, end))
        return iter([self.data[start : end + 1]])


def test_range_mode_headers():
    opener = Opener(pattern_bytes(1000))
    resp = build_stream_response(opener, size=1000, range_header="bytes=100-199", cache_max_age=60)
    assert resp.status_code == 206
    assert resp.headers["content-range"] == "bytes 100-199/1000"
    assert resp.headers["content-length"] == "100"
    assert resp.headers["accept-ranges"] == "bytes"
    assert resp.headers["cache-control"] == "private, max-age=60"
    assert resp.headers["x-content-type-options"] == "nosniff"
    assert opener.calls == [(100, 199)]


def test_full_mode_headers():
    opener = Opener(pattern_bytes(1000))
    resp = build_stream_response(opener, size=1000)
    assert resp.status_code == 200
    assert resp.headers["content-length"] == "1000"
    assert "content-range" not in resp.headers
    assert opener.calls == [(0, 999)]


def test_download_mode_ignores_range():
    opener = Opener(pattern_bytes(1000))
    resp = build_stream_response(
        opener,
        size=1000,
        range_header="bytes=0-9",
        download=True,
        content_disposition='attachment; filename="x.mp4"',
    )
    assert resp.status_code == 200
    assert resp.headers["content-disposition"] == 'attachment; filename="x.mp4"'
    assert resp.headers["cache-control"] == "private, no-cache"
    assert resp.headers["content-length"] == "1000"
    assert opener.calls == [(0, 999)]


def test_unsatisfiable_range_never_opens_the_file():
    opener = Opener(b"")
    with pytest.raises(RangeNotSatisfiableException):
        build_stream_response(opener, size=1000, range_header="bytes=2000-")
    assert opener.calls == []


def test_window_checksum_matches_source(tmp_path):
    data = pattern_bytes(300_000)
    path = tmp_path / "clip.mp4"
    path.write_bytes(data)
    got = b"".join(iter_file_range(path, 65_000, 199_999, block_size=4096))
    assert hashlib.sha256(got).hexdigest() == hashlib.sha256(data[65_000:200_000]).hexdigest()
