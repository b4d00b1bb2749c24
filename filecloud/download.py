"""Chunked file download support with byte-range handling."""

from __future__ import annotations

import logging
import os
import re
from typing import Iterator, NamedTuple

log = logging.getLogger(__name__)

_RANGE_RE = re.compile(r"bytes=([0-9]+)-([0-9]*)")


class RangeNotSatisfiable(ValueError):
    """The requested byte range starts beyond the end of the file."""


class ByteRange(NamedTuple):
    start: int
    end: int
    partial: bool


class DownloadContext:
    """Reads a file in fixed-size chunks for streaming to a client."""

    CHUNK_SIZE = 1024 * 1024

    def __init__(self, path, original_name: str) -> None:
        self.path = os.fspath(path)
        self.original_name = original_name
        self.size = os.path.getsize(self.path)
        self.position = 0
        self.complete = False
        try:
            self._file = open(self.path, "rb")
        except OSError:
            log.error("Failed to open file: %s", self.path)
            raise
        log.info("Opening file for download: %s, size: %d", self.path, self.size)

    @property
    def closed(self) -> bool:
        return self._file.closed

    def seek(self, position: int) -> None:
        """Move the read position and clear the completion flag."""
        if self.closed:
            raise ValueError(f"File is not open: {self.path}")
        self._file.seek(position)
        self.position = position
        self.complete = False

    def read_next_chunk(self) -> bytes | None:
        """Return the next chunk, or None once the file is exhausted."""
        if self.closed or self.complete:
            return None
        remaining = max(self.size - self.position, 0)
        to_read = min(self.CHUNK_SIZE, remaining)
        if to_read == 0:
            self.complete = True
            return None
        data = self._file.read(to_read)
        if not data:
            self.complete = True
            return None
        self.position += len(data)
        log.info(
            "Read chunk of %d bytes, current position: %d/%d",
            len(data),
            self.position,
            self.size,
        )
        return data

    def close(self) -> None:
        self._file.close()

    def __enter__(self) -> DownloadContext:
        return self

    def __exit__(self, *args) -> None:
        self.close()


def parse_range(header: str, file_size: int) -> ByteRange:
    """Interpret a Range header against a file of ``file_size`` bytes.

    Without a usable header the whole file is selected. The end is clamped
    to the last byte; a start at or past the end raises RangeNotSatisfiable.
    """
    last = file_size - 1
    match = _RANGE_RE.search(header) if header else None
    if match is None:
        return ByteRange(0, last, False)
    start = int(match.group(1))
    end = int(match.group(2)) if match.group(2) else last
    if start >= file_size:
        raise RangeNotSatisfiable(f"range start {start} beyond size {file_size}")
    return ByteRange(start, min(end, last), True)


def encode_chunk(data: bytes) -> bytes:
    """Frame ``data`` as one HTTP/1.1 chunk."""
    return f"{len(data):x}\r\n".encode("ascii") + data + b"\r\n"


def iter_chunked(context: DownloadContext) -> Iterator[bytes]:
    """Yield the file as chunked transfer-encoding frames, then the last chunk."""
    while (chunk := context.read_next_chunk()) is not None:
        yield encode_chunk(chunk)
    yield b"0\r\n\r\n"