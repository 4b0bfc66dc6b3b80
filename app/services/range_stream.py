"""
Range-aware media streaming from Drive to the client.

Parses the HTTP Range header into an inclusive byte window, asks Drive for
exactly that window, and pipes the body through in STREAM_BUFFER_BYTES pieces.
Bodies are generators consumed by StreamingResponse, so each piece is handed to
the server before the next one is read from Drive and memory stays bounded.
"""
import logging
import re
import urllib.parse
from dataclasses import dataclass
from typing import Iterator

import requests
from fastapi.responses import StreamingResponse

from config import STREAM_BUFFER_BYTES, STREAM_CHUNK_FALLBACK_BYTES
from errors import MalformedRange, RangeNotSatisfiable, StreamAborted, UnsupportedMediaType
from services.drive_client import DriveClient, RemoteFileRef

logger = logging.getLogger(__name__)

# The first four are what the front end historically sent; the rest are the
# types Drive actually reports for .mov and .mkv uploads.
VIDEO_MIME_TYPES = (
    "video/mp4",
    "video/avi",
    "video/mov",
    "video/wmv",
    "video/flv",
    "video/webm",
    "video/mkv",
    "video/quicktime",
    "video/x-matroska",
    "video/x-msvideo",
    "video/x-ms-wmv",
    "video/x-flv",
)

IMAGE_MIME_TYPES = (
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/gif",
    "image/bmp",
    "image/webp",
    "image/svg+xml",
)

IMAGE_CACHE_CONTROL = "public, max-age=3600"

_DIGITS = re.compile(r"[0-9]+")


def is_supported(mime_type: str, allowed: tuple[str, ...]) -> bool:
    """Substring match, so parameters like "video/mp4; codecs=..." still pass."""
    return any(t in mime_type for t in allowed)


@dataclass(frozen=True)
class RangeRequest:
    """Inclusive byte window within a file of known size."""

    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    def content_range(self, size: int) -> str:
        return f"bytes {self.start}-{self.end}/{size}"


def parse_range(
    header: str,
    size: int,
    chunk_fallback: int = STREAM_CHUNK_FALLBACK_BYTES,
) -> RangeRequest:
    """
    Parse a single "bytes=<start>-[<end>]" range against a file of `size` bytes.

    An omitted end becomes a window of chunk_fallback bytes; an end past the
    file is clamped to size-1. A missing or out-of-file start raises
    RangeNotSatisfiable; other syntax problems raise MalformedRange.
    """
    unit, sep, ranges = header.strip().partition("=")
    if not sep or unit.strip().lower() != "bytes" or "," in ranges:
        raise MalformedRange(size, "Malformed Range header")
    start_raw, dash, end_raw = ranges.strip().partition("-")
    if not dash:
        raise MalformedRange(size, "Malformed Range header")

    start_raw = start_raw.strip()
    if not _DIGITS.fullmatch(start_raw):
        # Suffix ranges ("bytes=-500") are not supported
        raise RangeNotSatisfiable(size)
    start = int(start_raw)
    if start >= size:
        raise RangeNotSatisfiable(size)

    end_raw = end_raw.strip()
    if not end_raw:
        end = start + chunk_fallback - 1
    elif _DIGITS.fullmatch(end_raw):
        end = int(end_raw)
        if end < start:
            raise MalformedRange(size, "Range end precedes start")
    else:
        raise MalformedRange(size, "Malformed Range header")
    return RangeRequest(start=start, end=min(end, size - 1))


def iter_upstream(
    resp: requests.Response,
    *,
    skip: int = 0,
    limit: int | None = None,
    buffer_size: int = STREAM_BUFFER_BYTES,
) -> Iterator[bytes]:
    """
    Yield the Drive body, dropping `skip` leading bytes and stopping after
    `limit` bytes. A body shorter than `limit` raises StreamAborted so the
    server cuts the response instead of sending a short one. The upstream
    response is closed however iteration ends, including client disconnect.
    """
    sent = 0
    try:
        if limit == 0:
            return
        for chunk in resp.iter_content(chunk_size=buffer_size):
            if not chunk:
                continue
            if skip:
                if len(chunk) <= skip:
                    skip -= len(chunk)
                    continue
                chunk = chunk[skip:]
                skip = 0
            if limit is not None and sent + len(chunk) >= limit:
                yield chunk[: limit - sent]
                return
            sent += len(chunk)
            yield chunk
        if limit is not None:
            raise StreamAborted(f"Google Drive stream ended after {sent} of {limit} bytes")
    except requests.RequestException as e:
        raise StreamAborted(f"Google Drive stream failed: {e}") from e
    finally:
        resp.close()


def content_disposition(filename: str, disposition: str = "attachment") -> str:
    """Header value for filename; non-ASCII names use the RFC 5987 form."""
    try:
        filename.encode("ascii")
    except UnicodeEncodeError:
        encoded = urllib.parse.quote(filename, safe="")
        return f"{disposition}; filename*=UTF-8''{encoded}"
    return f'{disposition}; filename="{filename.replace(chr(34), "_")}"'


class RangeStreamProxy:
    """Serves Drive files to the browser, honoring Range for video playback."""

    def __init__(self, client: DriveClient, chunk_fallback: int = STREAM_CHUNK_FALLBACK_BYTES):
        self._client = client
        self._chunk_fallback = chunk_fallback

    def _full_body(self, meta: RemoteFileRef, headers: dict[str, str]) -> StreamingResponse:
        upstream = self._client.open_content(meta.id)
        if meta.size is not None:
            headers["Content-Length"] = str(meta.size)
        return StreamingResponse(
            iter_upstream(upstream, limit=meta.size),
            status_code=200,
            headers=headers,
            media_type=meta.mime_type,
        )

    def stream(self, file_id: str, range_header: str | None) -> StreamingResponse:
        """
        Video playback. Without Range the whole file is sent with 200; with
        Range the clamped window is sent with 206 and Content-Range.
        """
        meta = self._client.get_file(file_id)
        if meta.is_folder or not is_supported(meta.mime_type, VIDEO_MIME_TYPES):
            raise UnsupportedMediaType("File is not a supported video")

        if not range_header:
            return self._full_body(meta, {"Accept-Ranges": "bytes"})

        size = meta.size or 0
        window = parse_range(range_header, size, self._chunk_fallback)
        upstream = self._client.open_content(file_id, window.start, window.end)
        # Drive answers 200 with the whole body if it ignored the Range header
        skip = window.start if upstream.status_code == 200 else 0
        logger.debug("Streaming %s %s", file_id, window.content_range(size))
        return StreamingResponse(
            iter_upstream(upstream, skip=skip, limit=window.length),
            status_code=206,
            headers={
                "Content-Range": window.content_range(size),
                "Accept-Ranges": "bytes",
                "Content-Length": str(window.length),
            },
            media_type=meta.mime_type,
        )

    def view(self, file_id: str) -> StreamingResponse:
        """Whole image body with a one-hour public cache header."""
        meta = self._client.get_file(file_id)
        if meta.is_folder or not is_supported(meta.mime_type, IMAGE_MIME_TYPES):
            raise UnsupportedMediaType("File is not an image")
        return self._full_body(meta, {"Cache-Control": IMAGE_CACHE_CONTROL})

    def download(self, file_id: str) -> StreamingResponse:
        """Whole file as an attachment; folders go through the archive endpoints."""
        meta = self._client.get_file(file_id)
        if meta.is_folder:
            raise UnsupportedMediaType("Folders can only be downloaded as a ZIP archive")
        return self._full_body(meta, {"Content-Disposition": content_disposition(meta.name)})
