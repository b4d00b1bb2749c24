"""Serving the file-sharing application over HTTP."""

from __future__ import annotations

import argparse
import logging
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Iterator

from filecloud.app import FileCloudApp
from filecloud.http import HttpStatus, Request, Response, error_response
from filecloud.store import Store

log = logging.getLogger(__name__)


def _wants_close(response: Response) -> bool:
    if response.close:
        return True
    return any(
        name.lower() == "connection" and value.lower() == "close"
        for name, value in response.headers
    )


def _handler_class(app: FileCloudApp) -> type[BaseHTTPRequestHandler]:
    class _Handler(BaseHTTPRequestHandler):
        protocol_version = "HTTP/1.1"
        server_version = "FileCloud"

        def _read_chunked(self) -> bytes:
            parts = []
            while True:
                line = self.rfile.readline()
                if not line:
                    raise ValueError("truncated chunked body")
                size = int(line.split(b";")[0].strip(), 16)
                if size == 0:
                    while self.rfile.readline() not in (b"\r\n", b"\n", b""):
                        pass
                    return b"".join(parts)
                parts.append(self.rfile.read(size))
                self.rfile.read(2)

        def _read_body(self) -> bytes:
            if "chunked" in self.headers.get("Transfer-Encoding", "").lower():
                return self._read_chunked()
            length = int(self.headers.get("Content-Length") or 0)
            if length < 0:
                raise ValueError("negative Content-Length")
            return self.rfile.read(length)

        def _send(self, response: Response, stream: Iterator[bytes] | None) -> None:
            is_head = self.command == "HEAD"
            data = response.to_bytes()
            if is_head and response.body:
                data = data[: len(data) - len(response.body)]
            try:
                self.wfile.write(data)
                if stream is not None and not is_head:
                    for frame in stream:
                        self.wfile.write(frame)
                self.wfile.flush()
            except (BrokenPipeError, ConnectionResetError):
                self.close_connection = True
            finally:
                if stream is not None and hasattr(stream, "close"):
                    stream.close()
            self.log_request(int(response.status))
            if _wants_close(response):
                self.close_connection = True

        def _dispatch(self) -> None:
            try:
                request = Request(
                    method=self.command,
                    target=self.path,
                    headers=dict(self.headers.items()),
                    body=self._read_body(),
                )
            except ValueError:
                log.error("request parsing failed")
                self._send(error_response(HttpStatus.BAD_REQUEST, "请求解析失败"), None)
                return
            response, stream = app.handle(request)
            self._send(response, stream)

        do_GET = do_POST = do_HEAD = do_PUT = do_DELETE = do_OPTIONS = _dispatch

        def log_message(self, format: str, *args) -> None:
            log.info("%s - %s", self.address_string(), format % args)

    return _Handler


def make_server(app: FileCloudApp, host: str = "127.0.0.1", port: int = 0) -> ThreadingHTTPServer:
    """Create a threaded HTTP server bound to ``host``:``port`` serving ``app``."""
    server = ThreadingHTTPServer((host, port), _handler_class(app))
    server.daemon_threads = True
    return server


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="filecloud", description="File upload and sharing server.")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8080)
    parser.add_argument("--upload-dir", default="uploads")
    parser.add_argument("--map-file", default="file_map.json")
    parser.add_argument("--database", default="filecloud.db")
    parser.add_argument("--static-dir", default=None)
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    store = Store(args.database)
    app = FileCloudApp(args.upload_dir, args.map_file, store, args.static_dir)
    server = make_server(app, args.host, args.port)
    log.info("listening on %s:%d", *server.server_address[:2])
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        server.server_close()
        app.close()
    return 0