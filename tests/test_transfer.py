import pytest

from filecloud.download import RangeNotSatisfiable, encode_chunk
from filecloud.http import HttpStatus, Method, Request
from filecloud.transfer import download_response, head_response


def _dechunk(frames):
    data = b"".join(frames)
    out = b""
    while True:
        size_line, _, rest = data.partition(b"\r\n")
        size = int(size_line, 16)
        if size == 0:
            assert rest == b"\r\n"
            return out
        out += rest[:size]
        assert rest[size:size + 2] == b"\r\n"
        data = rest[size + 2:]


@pytest.fixture
def sample(tmp_path):
    path = tmp_path / "stored"
    path.write_bytes(b"0123456789")
    return path


def test_head_response_headers():
    raw = head_response(10).to_bytes()
    assert raw.startswith(b"HTTP/1.1 200 OK\r\n")
    assert b"Content-Length: 10\r\n" in raw
    assert b"Accept-Ranges: bytes\r\n" in raw
    assert b"Connection: close\r\n" in raw
    assert raw.endswith(b"\r\n\r\n")


def test_full_download(sample):
    request = Request(Method.GET, "/download/stored")
    response, frames = download_response(request, sample, "report.txt")
    headers = dict(response.headers)
    assert response.status is HttpStatus.OK
    assert headers["Transfer-Encoding"] == "chunked"
    assert headers["Content-Disposition"] == 'attachment; filename="report.txt"'
    assert "Content-Range" not in headers
    body = list(frames)
    assert b"".join(body) == encode_chunk(b"0123456789") + b"0\r\n\r\n"
    assert _dechunk(body) == sample.read_bytes()


def test_range_download_starts_at_offset(sample):
    request = Request(Method.GET, "/download/stored", headers={"Range": "bytes=4-"})
    response, frames = download_response(request, sample, "report.txt", "fileName", "keep-alive")
    headers = dict(response.headers)
    assert response.status is HttpStatus.PARTIAL_CONTENT
    assert headers["Content-Range"] == "bytes 4-9/10"
    assert headers["Connection"] == "keep-alive"
    assert headers["Content-Disposition"] == 'attachment; fileName="report.txt"'
    assert _dechunk(frames) == sample.read_bytes()[4:]


def test_range_end_is_clamped(sample):
    request = Request(Method.GET, "/", headers={"Range": "bytes=2-500"})
    response, frames = download_response(request, sample, "a")
    assert dict(response.headers)["Content-Range"] == "bytes 2-9/10"
    assert _dechunk(frames) == sample.read_bytes()[2:]


def test_head_bytes_have_no_content_length_for_chunked(sample):
    response, frames = download_response(Request(Method.GET, "/"), sample, "a")
    raw = response.to_bytes()
    assert b"Content-Length" not in raw
    assert b"Content-Type: application/octet-stream\r\n" in raw
    assert _dechunk(frames) == sample.read_bytes()


def test_range_beyond_end_raises(sample):
    request = Request(Method.GET, "/", headers={"Range": "bytes=10-"})
    with pytest.raises(RangeNotSatisfiable):
        download_response(request, sample, "a")


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        download_response(Request(Method.GET, "/"), tmp_path / "absent", "a")


def test_directory_is_not_a_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        download_response(Request(Method.GET, "/"), tmp_path, "a")