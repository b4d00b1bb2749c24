"""HTTP request and response types used by the file server."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any
from urllib.parse import parse_qsl, urlsplit


class Method(str, Enum):
    """HTTP request methods understood by the server."""

    GET = "GET"
    POST = "POST"
    HEAD = "HEAD"
    PUT = "PUT"
    DELETE = "DELETE"
    OPTIONS = "OPTIONS"


class HttpStatus(IntEnum):
    """Status codes the server answers with."""

    OK = 200
    PARTIAL_CONTENT = 206
    BAD_REQUEST = 400
    UNAUTHORIZED = 401
    FORBIDDEN = 403
    NOT_FOUND = 404
    RANGE_NOT_SATISFIABLE = 416
    INTERNAL_SERVER_ERROR = 500

    @property
    def phrase(self) -> str:
        return _PHRASES[self]


_PHRASES = {
    HttpStatus.OK: "OK",
    HttpStatus.PARTIAL_CONTENT: "Partial Content",
    HttpStatus.BAD_REQUEST: "Bad Request",
    HttpStatus.UNAUTHORIZED: "Unauthorized",
    HttpStatus.FORBIDDEN: "Forbidden",
    HttpStatus.NOT_FOUND: "Not Found",
    HttpStatus.RANGE_NOT_SATISFIABLE: "Range Not Satisfiable",
    HttpStatus.INTERNAL_SERVER_ERROR: "Internal Server Error",
}


@dataclass
class Request:
    """A parsed HTTP request.

    The query string of ``target`` is merged into ``params``; route
    parameters are added to the same mapping by the router.
    """

    method: Method
    target: str = "/"
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    params: dict[str, str] = field(default_factory=dict)
    path: str = field(init=False)

    def __post_init__(self) -> None:
        self.method = Method(self.method)
        self.headers = {name.lower(): value for name, value in self.headers.items()}
        if isinstance(self.body, str):
            self.body = self.body.encode("utf-8")
        split = urlsplit(self.target)
        self.path = split.path or "/"
        for key, value in parse_qsl(split.query, keep_blank_values=True):
            self.params.setdefault(key, value)

    def header(self, name: str) -> str:
        """Return a header value, or an empty string if it is absent."""
        return self.headers.get(name.lower(), "")

    def param(self, key: str) -> str:
        """Return a route or query parameter, or an empty string."""
        return self.params.get(key, "")


@dataclass
class Response:
    """An HTTP response that serialises itself to wire bytes."""

    status: HttpStatus = HttpStatus.OK
    body: bytes = b""
    content_type: str = ""
    close: bool = False
    reason: str = ""
    headers: list[tuple[str, str]] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.status = HttpStatus(self.status)
        if isinstance(self.body, str):
            self.body = self.body.encode("utf-8")

    def add_header(self, name: str, value: Any) -> None:
        self.headers.append((name, str(value)))

    def to_bytes(self) -> bytes:
        """Serialise the status line, headers and body."""
        reason = self.reason or self.status.phrase
        lines = [f"HTTP/1.1 {int(self.status)} {reason}"]
        names = {name.lower() for name, _ in self.headers}
        if self.content_type and "content-type" not in names:
            lines.append(f"Content-Type: {self.content_type}")
        lines.extend(f"{name}: {value}" for name, value in self.headers)
        if "content-length" not in names and "transfer-encoding" not in names:
            lines.append(f"Content-Length: {len(self.body)}")
        if self.close and "connection" not in names:
            lines.append("Connection: close")
        head = "\r\n".join(lines) + "\r\n\r\n"
        return head.encode("utf-8") + self.body


def json_response(status: HttpStatus, payload: Any, close: bool = True) -> Response:
    """Build a response carrying ``payload`` as compact JSON."""
    body = json.dumps(payload, ensure_ascii=False, separators=(",", ":"))
    return Response(
        status=status,
        body=body.encode("utf-8"),
        content_type="application/json",
        close=close,
    )


def error_response(status: HttpStatus, message: str) -> Response:
    """Build the JSON error response ``{"code": status, "message": message}``."""
    return json_response(status, {"code": int(status), "message": message}, close=True)