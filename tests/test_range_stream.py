"""Tests for range parsing and the stream, view and download endpoints."""
import pytest

from errors import MalformedRange, RangeNotSatisfiable, StreamAborted
from services.range_stream import content_disposition, iter_upstream, parse_range

from conftest import FakeUpstream

FALLBACK = 64 * 1024
VIDEO = bytes(range(256)) * 1024  # 256 KiB, larger than the fallback window


@pytest.fixture
def video(fake_drive):
    fake_drive.add_file("vid", "clip.mp4", VIDEO, "root-folder", mime="video/mp4")
    return VIDEO


class TestParseRange:
    @pytest.mark.parametrize(
        "header, expected",
        [
            ("bytes=0-99", (0, 99)),
            ("bytes=100-100", (100, 100)),
            ("bytes=0-5000", (0, 999)),
            ("bytes=900-", (900, 999)),
            ("BYTES = 10-19", (10, 19)),
        ],
    )
    def test_valid_windows(self, header, expected):
        window = parse_range(header, 1000, chunk_fallback=FALLBACK)
        assert (window.start, window.end) == expected

    def test_open_ended_range_uses_fallback_window(self):
        window = parse_range("bytes=10-", 10_000_000, chunk_fallback=1000)
        assert window.start == 10
        assert window.end == 1009
        assert window.length == 1000

    @pytest.mark.parametrize("header", ["bytes=1000-", "bytes=5000-6000", "bytes=abc-", "bytes=-500"])
    def test_unsatisfiable_start(self, header):
        with pytest.raises(RangeNotSatisfiable) as exc_info:
            parse_range(header, 1000)
        assert not isinstance(exc_info.value, MalformedRange)
        assert exc_info.value.size == 1000

    @pytest.mark.parametrize(
        "header",
        ["items=0-10", "bytes 0-10", "bytes=0-10,20-30", "bytes=0-abc", "bytes=50-10", "bytes=5"],
    )
    def test_malformed_headers(self, header):
        with pytest.raises(MalformedRange):
            parse_range(header, 1000)

    def test_empty_file_is_never_satisfiable(self):
        with pytest.raises(RangeNotSatisfiable):
            parse_range("bytes=0-", 0)

    def test_content_range_format(self):
        assert parse_range("bytes=5-9", 100).content_range(100) == "bytes 5-9/100"


class TestIterUpstream:
    def test_skip_and_limit(self):
        upstream = FakeUpstream(b"0123456789", status_code=200)
        out = b"".join(iter_upstream(upstream, skip=3, limit=4, buffer_size=2))
        assert out == b"3456"
        assert upstream.closed

    def test_short_body_raises(self):
        upstream = FakeUpstream(b"0123", status_code=200)
        with pytest.raises(StreamAborted):
            b"".join(iter_upstream(upstream, limit=10, buffer_size=2))
        assert upstream.closed

    def test_consumer_stopping_early_closes_upstream(self):
        upstream = FakeUpstream(b"x" * 100)
        gen = iter_upstream(upstream, buffer_size=10)
        next(gen)
        gen.close()
        assert upstream.closed


class TestStreamEndpoint:
    def test_without_range_returns_whole_file(self, client, video):
        resp = client.get("/api/stream/vid")
        assert resp.status_code == 200
        assert resp.headers["content-length"] == str(len(video))
        assert resp.headers["content-type"] == "video/mp4"
        assert resp.content == video

    @pytest.mark.parametrize("start, end", [(0, 0), (0, 1), (1000, 5000), (100, len(VIDEO) - 1)])
    def test_partial_content(self, client, video, start, end):
        resp = client.get("/api/stream/vid", headers={"Range": f"bytes={start}-{end}"})
        assert resp.status_code == 206
        assert resp.headers["content-range"] == f"bytes {start}-{end}/{len(video)}"
        assert resp.headers["accept-ranges"] == "bytes"
        assert resp.headers["content-length"] == str(end - start + 1)
        assert resp.content == video[start : end + 1]

    def test_open_ended_range_is_capped_at_fallback(self, client, video):
        resp = client.get("/api/stream/vid", headers={"Range": "bytes=0-"})
        assert resp.status_code == 206
        assert len(resp.content) == min(FALLBACK, len(video))
        assert resp.headers["content-range"] == f"bytes 0-{FALLBACK - 1}/{len(video)}"

    def test_end_past_file_is_clamped(self, client, video):
        size = len(video)
        resp = client.get("/api/stream/vid", headers={"Range": f"bytes={size - 10}-{size + 100}"})
        assert resp.status_code == 206
        assert resp.content == video[-10:]

    @pytest.mark.parametrize("offset", [0, 1, 10_000])
    def test_start_past_end_is_416(self, client, video, offset):
        resp = client.get("/api/stream/vid", headers={"Range": f"bytes={len(video) + offset}-"})
        assert resp.status_code == 416
        assert resp.headers["content-range"] == f"bytes */{len(video)}"
        assert resp.content == b""

    def test_malformed_range_is_416(self, client, video):
        resp = client.get("/api/stream/vid", headers={"Range": "bytes=0-1,5-9"})
        assert resp.status_code == 416
        assert resp.headers["content-range"] == f"bytes */{len(video)}"

    def test_provider_ignoring_range_still_returns_window(self, client, fake_drive, video):
        fake_drive.ignore_range = True
        resp = client.get("/api/stream/vid", headers={"Range": "bytes=5000-5999"})
        assert resp.status_code == 206
        assert resp.content == video[5000:6000]
        assert all(u.closed for u in fake_drive.opened)

    def test_not_a_video(self, client, fake_drive):
        fake_drive.add_file("doc", "notes.txt", b"hello", "root-folder", mime="text/plain")
        resp = client.get("/api/stream/doc")
        assert resp.status_code == 400
        assert resp.json() == {"error": "File is not a supported video"}

    def test_unknown_file_maps_provider_404(self, client):
        resp = client.get("/api/stream/missing", headers={"Range": "bytes=0-10"})
        assert resp.status_code == 404
        assert "error" in resp.json()

    def test_upstream_failure_before_headers_is_503(self, client, fake_drive, video):
        fake_drive.failing_content.add("vid")
        resp = client.get("/api/stream/vid")
        assert resp.status_code == 503
        assert "error" in resp.json()

    def test_truncated_upstream_aborts_stream(self, client, fake_drive, video):
        fake_drive.truncate["vid"] = 1000
        with pytest.raises(StreamAborted):
            client.get("/api/stream/vid")


class TestViewAndDownload:
    def test_view_image_sets_cache_header(self, client, fake_drive):
        fake_drive.add_file("img", "cat.png", b"\x89PNG....", "root-folder", mime="image/png")
        resp = client.get("/api/view/img")
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "public, max-age=3600"
        assert resp.headers["content-type"] == "image/png"
        assert resp.content == b"\x89PNG...."

    def test_view_rejects_non_image(self, client, video):
        resp = client.get("/api/view/vid")
        assert resp.status_code == 400
        assert resp.json() == {"error": "File is not an image"}

    def test_download_is_attachment(self, client, fake_drive):
        fake_drive.add_file("f1", "report.pdf", b"%PDF-1.7", "root-folder", mime="application/pdf")
        resp = client.get("/api/download/f1")
        assert resp.status_code == 200
        assert resp.headers["content-disposition"] == 'attachment; filename="report.pdf"'
        assert resp.headers["content-length"] == "8"
        assert resp.content == b"%PDF-1.7"

    def test_download_non_ascii_name(self, client, fake_drive):
        fake_drive.add_file("f2", "résumé.pdf", b"data", "root-folder")
        resp = client.get("/api/download/f2")
        assert resp.headers["content-disposition"] == "attachment; filename*=UTF-8''r%C3%A9sum%C3%A9.pdf"

    def test_download_rejects_folder(self, client, fake_drive):
        fake_drive.add_folder("sub", "Sub", "root-folder")
        resp = client.get("/api/download/sub")
        assert resp.status_code == 400


def test_content_disposition_ascii():
    assert content_disposition("a.zip") == 'attachment; filename="a.zip"'
