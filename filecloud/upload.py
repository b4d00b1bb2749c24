"""Receiving multipart/form-data uploads into files on disk."""

from __future__ import annotations

import logging
import os
import re
from enum import Enum

log = logging.getLogger(__name__)

_BOUNDARY_RE = re.compile(r"boundary=([^\r\n]+)\Z")
_FILENAME_RE = re.compile(rb'Content-Disposition:[^\r\n]*filename="([^"]+)"')
_HEADER_END = b"\r\n\r\n"
DEFAULT_FILENAME = "unknown_file"


class UploadError(Exception):
    """An upload could not be parsed or written."""


class UploadState(Enum):
    """Where the multipart parser stands in the request body."""

    EXPECT_HEADERS = 0
    EXPECT_CONTENT = 1
    EXPECT_BOUNDARY = 2
    COMPLETE = 3


class UploadContext:
    """Writes the file part of a multipart upload as its pieces arrive."""

    def __init__(self, path, original_name: str) -> None:
        self.path = os.fspath(path)
        self.original_name = original_name
        self.total_bytes = 0
        self.state = UploadState.EXPECT_HEADERS
        self.boundary = ""
        directory = os.path.dirname(self.path)
        if directory and not os.path.exists(directory):
            os.makedirs(directory, exist_ok=True)
        try:
            self._file = open(self.path, "wb")
        except OSError as exc:
            log.error("Failed to open file: %s", self.path)
            raise UploadError(f"Failed to open file: {self.path}") from exc
        log.info("Creating file: %s, original name: %s", self.path, original_name)

    @property
    def closed(self) -> bool:
        return self._file.closed

    @property
    def _boundary(self) -> bytes:
        return self.boundary.encode("utf-8")

    @property
    def _end_boundary(self) -> bytes:
        return self._boundary + b"--"

    def write(self, data: bytes) -> None:
        """Append ``data`` to the file and flush it."""
        if self.closed:
            raise UploadError(f"File is not open: {self.path}")
        try:
            self._file.write(data)
            self._file.flush()
        except OSError as exc:
            raise UploadError(f"Failed to write to file: {self.path}") from exc
        self.total_bytes += len(data)

    def begin(self, body: bytes) -> UploadState:
        """Handle the first body piece, which carries the part headers."""
        header_end = body.find(_HEADER_END)
        if header_end != -1:
            start = header_end + len(_HEADER_END)
            end = body.find(self._end_boundary)
            if end != -1:
                if end > start:
                    self.write(body[start:end])
                    log.info("Wrote %d bytes before end boundary, total: %d", end - start, self.total_bytes)
                self.state = UploadState.COMPLETE
            else:
                self.write(body[start:])
                log.info("Wrote %d bytes, total: %d", len(body) - start, self.total_bytes)
                self.state = UploadState.EXPECT_BOUNDARY
        return self.state

    def feed(self, body: bytes) -> UploadState:
        """Handle a later body piece according to the current state."""
        if not body:
            return self.state
        if self.state is UploadState.EXPECT_BOUNDARY:
            self._feed_expect_boundary(body)
        elif self.state is UploadState.EXPECT_CONTENT:
            self._feed_expect_content(body)
        elif self.state is UploadState.COMPLETE:
            pass
        else:
            log.info("Unknown state: %s", self.state.name)
        return self.state

    def _feed_expect_boundary(self, body: bytes) -> None:
        end = body.find(self._end_boundary)
        if end != -1:
            if end > 0:
                self.write(body[:end])
                log.info("Wrote %d bytes before end boundary, total: %d", end, self.total_bytes)
            self.state = UploadState.COMPLETE
            return
        boundary_pos = body.find(self._boundary)
        if boundary_pos == -1:
            self.write(body)
            log.info("Wrote %d bytes, total: %d", len(body), self.total_bytes)
            return
        if body.find(_HEADER_END, boundary_pos) != -1:
            if boundary_pos > 0:
                self.write(body[:boundary_pos])
                log.info("Wrote %d bytes, total: %d", boundary_pos, self.total_bytes)
            self.state = UploadState.EXPECT_CONTENT

    def _feed_expect_content(self, body: bytes) -> None:
        boundary_pos = body.find(self._boundary)
        if boundary_pos != -1:
            self.write(body[:boundary_pos])
            log.info("Wrote %d bytes, total: %d", boundary_pos, self.total_bytes)
            self.state = UploadState.EXPECT_BOUNDARY
        else:
            self.write(body)
            log.info("Wrote %d bytes, total: %d", len(body), self.total_bytes)

    def close(self) -> None:
        self._file.close()

    def __enter__(self) -> UploadContext:
        return self

    def __exit__(self, *args) -> None:
        self.close()


def extract_boundary(content_type: str) -> str:
    """Return the multipart delimiter ("--" plus the boundary parameter)."""
    if not content_type:
        raise UploadError("Content-Type header is missing")
    match = _BOUNDARY_RE.search(content_type)
    if match is None:
        raise UploadError("Invalid Content-Type")
    return "--" + match.group(1)


def extract_filename(body: bytes) -> str:
    """Return the filename from a Content-Disposition part header."""
    if isinstance(body, str):
        body = body.encode("utf-8")
    if not body:
        raise UploadError("Request body is empty")
    match = _FILENAME_RE.search(body)
    if match is None:
        return DEFAULT_FILENAME
    return match.group(1).decode("utf-8", errors="replace")