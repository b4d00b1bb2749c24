import json

import pytest

from filecloud.app import FileCloudApp
from filecloud.download import encode_chunk
from filecloud.filemap import FileNameMap
from filecloud.http import HttpStatus, Method, Request
from filecloud.store import Store

PASSWORD = "password"
BOUNDARY = "XyZboundary"


@pytest.fixture
def static_dir(tmp_path):
    directory = tmp_path / "static"
    directory.mkdir()
    (directory / "index.html").write_bytes(b"<p>index</p>")
    (directory / "register.html").write_bytes(b"<p>register</p>")
    (directory / "share.html").write_bytes(b"<p>share</p>")
    (directory / "favicon.ico").write_bytes(b"\x00\x01icon")
    return directory


@pytest.fixture
def app(tmp_path, static_dir):
    store = Store(tmp_path / "db.sqlite")
    application = FileCloudApp(tmp_path / "uploads", tmp_path / "map.json", store, static_dir)
    yield application
    store.close()


def _call(app, method, target, headers=None, body=b""):
    return app.handle(Request(method, target, headers=headers or {}, body=body))


def _json(response):
    return json.loads(response.body)


def _headers(response):
    return {name.lower(): value for name, value in response.headers}


def _register(app, username, password=PASSWORD):
    body = json.dumps({"username": username, "password": password})
    response, _ = _call(app, Method.POST, "/register", body=body)
    return response


def _login(app, username, password=PASSWORD):
    _register(app, username, password)
    body = json.dumps({"username": username, "password": password})
    response, _ = _call(app, Method.POST, "/login", body=body)
    return "session_id=" + _json(response)["sessionId"]


def _multipart(content, filename="notes.txt"):
    head = (
        f"--{BOUNDARY}\r\nContent-Disposition: form-data; name=\"file\"; "
        f"filename=\"{filename}\"\r\nContent-Type: text/plain\r\n\r\n"
    ).encode()
    return head + content + f"\r\n--{BOUNDARY}--\r\n".encode()


def _upload(app, cookie, content, filename="notes.txt", extra=None):
    headers = {"Cookie": cookie, "Content-Type": f"multipart/form-data; boundary={BOUNDARY}"}
    headers.update(extra or {})
    response, _ = _call(app, Method.POST, "/upload", headers, _multipart(content, filename))
    return response


def _share(app, cookie, file_id, share_type, **extra):
    payload = {"fileId": file_id, "shareType": share_type, **extra}
    response, _ = _call(app, Method.POST, "/share", {"Cookie": cookie}, json.dumps(payload))
    return response


def test_register_success(app):
    response = _register(app, "alice")
    data = _json(response)
    assert response.status == HttpStatus.OK
    assert data["message"] == "注册成功"
    assert data["userId"] == app.store.find_user("alice").id


def test_register_duplicate(app):
    _register(app, "alice")
    response = _register(app, "alice")
    assert response.status == HttpStatus.BAD_REQUEST
    assert _json(response)["message"] == "用户名已存在"


def test_register_empty_password(app):
    response = _register(app, "alice", "")
    assert response.status == HttpStatus.BAD_REQUEST
    assert _json(response)["message"] == "用户名和密码不能为空"


def test_register_invalid_json(app):
    response, _ = _call(app, Method.POST, "/register", body=b"{not json")
    assert response.status == HttpStatus.INTERNAL_SERVER_ERROR
    assert _json(response)["message"].startswith("注册失败")


def test_login_wrong_password(app):
    _register(app, "alice")
    body = json.dumps({"username": "alice", "password": "secret"})
    response, _ = _call(app, Method.POST, "/login", body=body)
    assert response.status == HttpStatus.UNAUTHORIZED
    assert _json(response)["message"] == "用户名或密码错误"


def test_login_sets_cookie_and_session(app):
    _register(app, "alice")
    body = json.dumps({"username": "alice", "password": PASSWORD})
    response, _ = _call(app, Method.POST, "/login", body=body)
    session_id = _json(response)["sessionId"]
    assert _headers(response)["set-cookie"].startswith(f"session_id={session_id};")
    request = Request(Method.GET, "/files", headers={"Cookie": f"session_id={session_id}"})
    assert app.validate_session(request).username == "alice"


def test_logout_ends_session(app):
    cookie = _login(app, "alice")
    response, _ = _call(app, Method.POST, "/logout", {"Cookie": cookie})
    assert _json(response)["message"] == "Logout successful"
    assert app.validate_session(Request(Method.GET, "/", headers={"Cookie": cookie})) is None


@pytest.mark.parametrize(
    "target, expected",
    [("/", b"<p>index</p>"), ("/index.html", b"<p>index</p>"), ("/register.html", b"<p>register</p>")],
)
def test_index_pages(app, target, expected):
    response, _ = _call(app, Method.GET, target)
    assert response.status == HttpStatus.OK
    assert response.body == expected
    assert response.content_type == "text/html; charset=utf-8"


def test_share_page_for_browser(app):
    response, _ = _call(app, Method.GET, "/share/abc")
    assert response.body == b"<p>share</p>"
    assert _headers(response)["x-share-code"] == "abc"


def test_index_missing_file(app, tmp_path):
    (tmp_path / "static" / "index.html").unlink()
    response, _ = _call(app, Method.GET, "/")
    assert response.status == HttpStatus.INTERNAL_SERVER_ERROR


def test_favicon(app, tmp_path):
    response, _ = _call(app, Method.GET, "/favicon.ico")
    assert response.body == b"\x00\x01icon"
    (tmp_path / "static" / "favicon.ico").unlink()
    response, _ = _call(app, Method.GET, "/favicon.ico")
    assert response.status == HttpStatus.NOT_FOUND
    assert response.body == b""


def test_unknown_route_and_method(app):
    for method, target in [(Method.GET, "/nowhere"), (Method.DELETE, "/login")]:
        response, stream = _call(app, method, target)
        assert response.status == HttpStatus.NOT_FOUND
        assert _json(response) == {"code": 404, "message": "Not Found"}
        assert stream is None


def test_search_users(app):
    cookie = _login(app, "alice")
    _register(app, "alicia")
    _register(app, "bob")
    response, _ = _call(app, Method.GET, "/users/search?keyword=ali", {"Cookie": cookie})
    names = [user["username"] for user in _json(response)["users"]]
    assert names == ["alicia"]


def test_search_users_errors(app):
    response, _ = _call(app, Method.GET, "/users/search?keyword=a")
    assert response.status == HttpStatus.UNAUTHORIZED
    cookie = _login(app, "alice")
    response, _ = _call(app, Method.GET, "/users/search", {"Cookie": cookie})
    assert _json(response)["message"] == "搜索关键词不能为空"


def test_upload_requires_session(app):
    response = _upload(app, "session_id=token", b"data")
    assert response.status == HttpStatus.UNAUTHORIZED
    assert _json(response)["message"] == "未登录或会话已过期"


def test_upload_missing_content_type(app):
    cookie = _login(app, "alice")
    response, _ = _call(app, Method.POST, "/upload", {"Cookie": cookie}, _multipart(b"x"))
    assert response.status == HttpStatus.BAD_REQUEST
    assert _json(response)["message"] == "Content-Type header is missing"


def test_upload_stores_file_and_lists_it(app, tmp_path):
    cookie = _login(app, "alice")
    data = _json(_upload(app, cookie, b"hello world"))
    stored = (tmp_path / "uploads" / data["FileName"]).read_bytes()
    assert stored == b"hello world\r\n"
    assert data["size"] == len(stored)
    assert data["originalFileName"] == "notes.txt"
    response, _ = _call(app, Method.GET, "/files", {"Cookie": cookie})
    files = _json(response)["files"]
    assert [(f["id"], f["name"], f["isOwner"]) for f in files] == [(data["fileId"], data["FileName"], True)]


def test_upload_name_from_header(app):
    cookie = _login(app, "alice")
    data = _json(_upload(app, cookie, b"x", extra={"X-File-Name": "my%20doc.txt"}))
    assert data["originalFileName"] == "my doc.txt"


def test_download_round_trip(app):
    cookie = _login(app, "alice")
    name = _json(_upload(app, cookie, b"hello world"))["FileName"]
    response, stream = _call(app, Method.GET, f"/download/{name}", {"Cookie": cookie})
    assert response.status == HttpStatus.OK
    assert _headers(response)["transfer-encoding"] == "chunked"
    assert b"".join(stream) == encode_chunk(b"hello world\r\n") + b"0\r\n\r\n"


def test_download_range_and_head(app):
    cookie = _login(app, "alice")
    name = _json(_upload(app, cookie, b"hello world"))["FileName"]
    response, stream = _call(app, Method.GET, f"/download/{name}", {"Cookie": cookie, "Range": "bytes=6-"})
    assert response.status == HttpStatus.PARTIAL_CONTENT
    assert b"".join(stream) == encode_chunk(b"world\r\n") + b"0\r\n\r\n"
    response, _ = _call(app, Method.GET, f"/download/{name}", {"Cookie": cookie, "Range": "bytes=999-"})
    assert response.status == HttpStatus.RANGE_NOT_SATISFIABLE
    response, stream = _call(app, Method.HEAD, f"/download/{name}", {"Cookie": cookie})
    assert _headers(response)["content-length"] == str(len(b"hello world\r\n"))
    assert stream is None


def test_download_permissions(app):
    owner = _login(app, "alice")
    name = _json(_upload(app, owner, b"secret data"))["FileName"]
    response, _ = _call(app, Method.GET, f"/download/{name}")
    assert _json(response)["message"] == "请先登录"
    other = _login(app, "bob")
    response, _ = _call(app, Method.GET, f"/download/{name}", {"Cookie": other})
    assert response.status == HttpStatus.FORBIDDEN


def test_delete_file(app, tmp_path):
    cookie = _login(app, "alice")
    name = _json(_upload(app, cookie, b"data"))["FileName"]
    app.file_names[name] = "data.txt"
    app.file_names.save()
    other = _login(app, "bob")
    response, _ = _call(app, Method.DELETE, f"/delete/{name}", {"Cookie": other})
    assert response.status == HttpStatus.FORBIDDEN
    response, _ = _call(app, Method.DELETE, f"/delete/{name}", {"Cookie": cookie})
    assert _json(response) == {"code": 0, "message": "success"}
    assert not (tmp_path / "uploads" / name).exists()
    assert name not in app.file_names
    assert app.store.list_files(app.store.find_user("alice").id) == []


def test_protected_share_flow(app):
    cookie = _login(app, "alice")
    uploaded = _json(_upload(app, cookie, b"shared"))
    shared = _json(_share(app, cookie, uploaded["fileId"], "protected"))
    code, extract = shared["shareCode"], shared["extractCode"]
    assert shared["shareLink"] == "/share/" + code

    response, _ = _call(app, Method.GET, f"/share/info/{code}?extract_code=wrong")
    assert response.status == HttpStatus.FORBIDDEN
    assert _json(response)["message"] == "需要正确的提取码"
    response, _ = _call(app, Method.GET, f"/share/info/{code}?extract_code={extract}")
    assert _json(response)["file"]["name"] == uploaded["FileName"]

    response, _ = _call(app, Method.GET, f"/share/{code}?code={extract}", {"Accept": "application/json"})
    assert _json(response)["file"]["originalName"] == "notes.txt"

    target = f"/share/download/{uploaded['FileName']}?code={code}&extract_code={extract}"
    response, stream = _call(app, Method.GET, target)
    assert b"".join(stream) == encode_chunk(b"shared\r\n") + b"0\r\n\r\n"
    response, _ = _call(app, Method.GET, f"/share/download/{uploaded['FileName']}?code={code}")
    assert _json(response)["message"] == "无权限访问此文件"


def test_public_share_visible_to_others(app):
    owner = _login(app, "alice")
    uploaded = _json(_upload(app, owner, b"public"))
    _share(app, owner, uploaded["fileId"], "public")
    response, _ = _call(app, Method.GET, "/files", {"Cookie": owner})
    assert _json(response)["files"][0]["shareInfo"]["type"] == "public"
    other = _login(app, "bob")
    response, _ = _call(app, Method.GET, "/files", {"Cookie": other, "type": "shared"})
    files = _json(response)["files"]
    assert [(f["name"], f["isOwner"]) for f in files] == [(uploaded["FileName"], False)]


def test_share_errors(app):
    cookie = _login(app, "alice")
    response, _ = _call(app, Method.POST, "/share", {"Cookie": cookie}, b"{bad")
    assert response.status == HttpStatus.INTERNAL_SERVER_ERROR
    response = _share(app, cookie, 12345, "public")
    assert _json(response)["message"] == "您没有权限分享此文件"
    response, _ = _call(app, Method.GET, "/share/short", {"Accept": "application/json"})
    assert _json(response)["message"] == "无效的分享码格式"


def test_close_saves_file_map(app, tmp_path):
    app.file_names["stored"] = "original.txt"
    app.close()
    reloaded = FileNameMap(tmp_path / "map.json")
    reloaded.load()
    assert dict(reloaded) == {"stored": "original.txt"}