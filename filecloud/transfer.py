"""Building file download responses: HEAD metadata and chunked bodies."""

from __future__ import annotations

import logging
import os
from typing import Iterator

from filecloud.download import DownloadContext, iter_chunked, parse_range
from filecloud.http import HttpStatus, Request, Response

log = logging.getLogger(__name__)

OCTET_STREAM = "application/octet-stream"


def head_response(file_size: int) -> Response:
    """Return the answer to a HEAD request for a file of ``file_size`` bytes."""
    response = Response(status=HttpStatus.OK, content_type=OCTET_STREAM, close=True)
    response.add_header("Content-Length", file_size)
    response.add_header("Accept-Ranges", "bytes")
    response.add_header("Connection", "close")
    return response


def _stream(context: DownloadContext) -> Iterator[bytes]:
    try:
        yield from iter_chunked(context)
    finally:
        context.close()


def download_response(
    request: Request,
    filepath,
    original_name: str,
    disposition_param: str = "filename",
    connection: str | None = None,
) -> tuple[Response, Iterator[bytes]]:
    """Return the response head and an iterator of chunked body frames.

    The Range header of ``request`` selects where streaming starts; a range
    starting past the end raises RangeNotSatisfiable and a missing file
    raises FileNotFoundError.
    """
    path = os.fspath(filepath)
    if not os.path.isfile(path):
        raise FileNotFoundError(f"File not found: {path}")
    size = os.path.getsize(path)
    byte_range = parse_range(request.header("Range"), size)
    log.info("startPos: %d, endPos: %d", byte_range.start, byte_range.end)

    context = DownloadContext(path, original_name)
    try:
        context.seek(byte_range.start)
    except Exception:
        context.close()
        raise

    if byte_range.partial:
        response = Response(status=HttpStatus.PARTIAL_CONTENT, reason="Partial Content")
        response.add_header(
            "Content-Range", f"bytes {byte_range.start}-{byte_range.end}/{size}"
        )
    else:
        response = Response(status=HttpStatus.OK, reason="OK")
    response.content_type = OCTET_STREAM
    response.add_header(
        "Content-Disposition", f'attachment; {disposition_param}="{original_name}"'
    )
    response.add_header("Transfer-Encoding", "chunked")
    response.add_header("Accept-Ranges", "bytes")
    if connection:
        response.add_header("Connection", connection)
    return response, _stream(context)