"""
media/proxy.py -- Relay storage-provider bytes to the browser.

The customer never learns where a file lives. Routes authorize the request,
then hand the owned Asset to relay_video() or relay_material(), which open the
upstream download and stream it back chunk by chunk.

Streaming model:
  requests' iter_content() is blocking, so each chunk is pulled through
  Starlette's iterate_in_threadpool(). Memory stays bounded at one chunk per
  response. The upstream response is closed in a finally block, which runs
  both when the body completes and when the client disconnects (Starlette
  closes the generator on disconnect). If building the response fails
  before streaming starts, the upstream is closed on the spot.

Headers:
  Video     -- Range forwarded upstream; Content-Range, Content-Length,
               Accept-Ranges, Content-Type relayed; status 206 preserved.
  Material  -- full body; PDF inline, ZIP as attachment.
  Both      -- Cache-Control: private, no-store, max-age=0,
               X-Content-Type-Options: nosniff, ASCII-safe filename.

Layer rule: no imports from api/ or auth/. May import starlette (responses)
because this module produces HTTP responses.
"""

import logging
import re
import unicodedata
from collections.abc import AsyncIterator
from typing import Optional

from starlette.concurrency import iterate_in_threadpool
from starlette.responses import StreamingResponse

from storage.drive import DriveClient
from vault.models import Asset

logger = logging.getLogger("recordvault.media")

CHUNK_SIZE = 64 * 1024

NO_STORE = "private, no-store, max-age=0"

_NON_PRINTABLE_ASCII = re.compile(r"[^\x20-\x7e]")
_HEADER_UNSAFE = re.compile(r'["\\\r\n]')
_WHITESPACE = re.compile(r"\s+")

_MATERIAL_TYPES = {
    "PDF": ("pdf", "application/pdf", "inline"),
    "ZIP": ("zip", "application/zip", "attachment"),
}


def safe_ascii_filename(title: str, fallback: str) -> str:
    """Reduce title to printable ASCII safe inside a quoted header value.

    Accented letters decompose to their base letter (NFKD); anything else
    outside printable ASCII, plus quotes, backslashes and line breaks, becomes
    a space. Whitespace runs collapse. An empty result yields fallback.
    """
    decomposed = unicodedata.normalize("NFKD", title or "")
    # Drop combining marks so "é" becomes "e" rather than "e ".
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    cleaned = _HEADER_UNSAFE.sub(" ", _NON_PRINTABLE_ASCII.sub(" ", stripped))
    return _WHITESPACE.sub(" ", cleaned).strip() or fallback


async def _relay_body(upstream) -> AsyncIterator[bytes]:
    try:
        async for chunk in iterate_in_threadpool(upstream.iter_content(chunk_size=CHUNK_SIZE)):
            if chunk:
                yield chunk
    finally:
        upstream.close()


def _stream_or_close(upstream, build_headers, status_code: int) -> StreamingResponse:
    """Wrap upstream in a StreamingResponse, closing it if the wrap fails.

    Once the response exists, _relay_body owns the upstream. Before that
    nothing would release the connection, so any error while reading upstream
    headers or building the response closes it here and re-raises.
    """
    try:
        headers = build_headers(upstream)
        return StreamingResponse(
            _relay_body(upstream),
            status_code=status_code,
            headers=headers,
            media_type=headers["Content-Type"],
        )
    except Exception:
        upstream.close()
        raise


def relay_video(drive: DriveClient, asset: Asset, range_header: Optional[str]) -> StreamingResponse:
    """Stream a VIDEO asset, honoring byte ranges."""

    def build_headers(upstream) -> dict[str, str]:
        headers = {
            "Content-Type": upstream.headers.get("Content-Type") or asset.mime_type or "video/mp4",
            "Accept-Ranges": upstream.headers.get("Accept-Ranges") or "bytes",
            "Cache-Control": NO_STORE,
            "X-Content-Type-Options": "nosniff",
            "Content-Disposition": f'inline; filename="{safe_ascii_filename(asset.title, "video")}"',
        }
        for name in ("Content-Length", "Content-Range"):
            value = upstream.headers.get(name)
            if value:
                headers[name] = value
        return headers

    upstream = drive.open_media(asset.google_drive_file_id, range_header)
    logger.debug("Relaying video %s (status=%d, range=%s)", asset.id, upstream.status_code, range_header or "-")
    return _stream_or_close(upstream, build_headers, upstream.status_code)


def relay_material(drive: DriveClient, asset: Asset) -> StreamingResponse:
    """Stream a PDF (inline) or ZIP (attachment) asset in full."""
    extension, default_type, disposition = _MATERIAL_TYPES.get(asset.type, _MATERIAL_TYPES["ZIP"])

    def build_headers(upstream) -> dict[str, str]:
        filename = f"{safe_ascii_filename(asset.title, 'material')}.{extension}"
        headers = {
            "Content-Type": upstream.headers.get("Content-Type") or asset.mime_type or default_type,
            "Cache-Control": NO_STORE,
            "X-Content-Type-Options": "nosniff",
            "Content-Disposition": f'{disposition}; filename="{filename}"',
        }
        content_length = upstream.headers.get("Content-Length")
        if content_length:
            headers["Content-Length"] = content_length
        return headers

    upstream = drive.open_media(asset.google_drive_file_id)
    return _stream_or_close(upstream, build_headers, 200)
