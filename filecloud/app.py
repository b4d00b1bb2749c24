"""The file-sharing web application: routes and request handlers."""

from __future__ import annotations

import json
import logging
import os
import re
from typing import Any, Iterator, Union
from urllib.parse import parse_qsl, urlsplit

from filecloud.download import RangeNotSatisfiable
from filecloud.filemap import FileNameMap
from filecloud.http import (
    HttpStatus,
    Method,
    Request,
    Response,
    error_response,
    json_response,
)
from filecloud.router import Router
from filecloud.sharing import ShareError, share_access, share_file, share_info
from filecloud.store import LIST_TYPES, ShareRecord, Store, User
from filecloud.transfer import download_response, head_response
from filecloud.upload import UploadContext, UploadError, extract_boundary, extract_filename
from filecloud.util import (
    file_type,
    generate_session_id,
    generate_unique_filename,
    hash_password,
    parse_cookie,
    url_decode,
)

log = logging.getLogger(__name__)

Reply = Union[Response, "tuple[Response, Iterator[bytes]]"]

NOT_LOGGED_IN = "未登录或会话已过期"
_SHARE_PATH_RE = re.compile(r"/share/([^/]+)")


def _query_param(request: Request, key: str) -> str:
    """Return a query-string parameter, ignoring route parameters."""
    return dict(parse_qsl(urlsplit(request.target).query, keep_blank_values=True)).get(key, "")


def _share_summary(share: ShareRecord) -> dict[str, Any]:
    summary: dict[str, Any] = {"type": share.share_type, "shareCode": share.share_code or ""}
    if share.share_type == "protected" and share.extract_code:
        summary["extractCode"] = share.extract_code
    if share.share_type == "user" and share.shared_with_id and share.shared_with_username:
        summary["sharedWithUsername"] = share.shared_with_username
        summary["sharedWithId"] = share.shared_with_id
    if share.expire_time:
        summary["expireTime"] = share.expire_time
    return summary


class FileCloudApp:
    """Routes requests to handlers for accounts, uploads, downloads and shares.

    Handlers return a Response, or for streamed downloads a pair of the
    response head and an iterator of chunked body frames.
    """

    def __init__(self, upload_dir, map_file, store: Store, static_dir=None) -> None:
        self.upload_dir = os.fspath(upload_dir)
        os.makedirs(self.upload_dir, exist_ok=True)
        self.store = store
        if static_dir is None:
            static_dir = os.path.join(os.path.dirname(os.path.abspath(__file__)), "static")
        self.static_dir = os.fspath(static_dir)
        self.file_names = FileNameMap(map_file)
        self.file_names.load()
        self.router = Router()
        self._init_routes()

    def _init_routes(self) -> None:
        add, pattern = self.router.add, self.router.add_pattern
        add("/favicon.ico", Method.GET, self.favicon)
        add("/register", Method.POST, self.register)
        add("/login", Method.POST, self.login)
        add("/", Method.GET, self.index)
        add("/index.html", Method.GET, self.index)
        add("/register.html", Method.GET, self.index)
        pattern("/share/([^/]+)", Method.GET, self.share_access, ["code"])
        pattern("/share/download/([^/]+)", Method.GET, self.share_download, ["filename"])
        pattern("/share/info/([^/]+)", Method.GET, self.share_info, ["code"])
        add("/upload", Method.POST, self.upload)
        add("/files", Method.GET, self.list_files)
        pattern("/download/([^/]+)", Method.HEAD, self.download, ["filename"])
        pattern("/download/([^/]+)", Method.GET, self.download, ["filename"])
        pattern("/delete/([^/]+)", Method.DELETE, self.delete, ["filename"])
        add("/share", Method.POST, self.share)
        add("/users/search", Method.GET, self.search_users)
        add("/logout", Method.POST, self.logout)

    def handle(self, request: Request) -> tuple[Response, Iterator[bytes] | None]:
        """Dispatch a request; return the response and an optional body stream."""
        log.info("Headers %s %s", request.method.value, request.path)
        try:
            found = self.router.match(request.method, request.path)
            if found is None:
                log.warning("No matching route found for %s", request.path)
                return error_response(HttpStatus.NOT_FOUND, "Not Found"), None
            route, values = found
            request.params.update(values)
            reply = route.handler(request)
        except Exception as exc:
            log.error("Error processing request: %s", exc)
            return error_response(HttpStatus.INTERNAL_SERVER_ERROR, "Internal Server Error"), None
        if isinstance(reply, tuple):
            return reply
        return reply, None

    def validate_session(self, request: Request) -> User | None:
        """Return the user of the request's session cookie, if it is valid."""
        session_id = parse_cookie(request.header("Cookie"), "session_id")
        return self.store.validate_session(session_id)

    # pages

    def _static(self, name: str, content_type: str) -> bytes | None:
        try:
            with open(os.path.join(self.static_dir, name), "rb") as fh:
                return fh.read()
        except OSError:
            return None

    def index(self, request: Request) -> Response:
        path = request.path
        if path == "/register.html":
            name = "register.html"
        elif path == "/share.html" or path.startswith("/share/"):
            name = "share.html"
        else:
            name = "index.html"
        filepath = os.path.join(self.static_dir, name)
        html = self._static(name, "text/html")
        if html is None:
            log.error("Failed to open %s", filepath)
            return error_response(HttpStatus.INTERNAL_SERVER_ERROR, f"Failed to open {filepath}")
        response = Response(
            status=HttpStatus.OK,
            reason="OK",
            body=html,
            content_type="text/html; charset=utf-8",
            close=True,
        )
        response.add_header("Connection", "close")
        return response

    def favicon(self, request: Request) -> Response:
        icon = self._static("favicon.ico", "image/x-icon")
        if icon is None:
            log.error("Failed to open favicon.ico")
            status, reason, icon = HttpStatus.NOT_FOUND, "Not Found", b""
        else:
            status, reason = HttpStatus.OK, "OK"
        response = Response(
            status=status, reason=reason, body=icon, content_type="image/x-icon", close=True
        )
        response.add_header("Connection", "close")
        return response

    # accounts

    @staticmethod
    def _credentials(request: Request) -> tuple[str, str, dict]:
        payload = json.loads(request.body)
        if not isinstance(payload, dict):
            raise TypeError("request body must be a JSON object")
        username, secret = payload["username"], payload["password"]
        if not isinstance(username, str) or not isinstance(secret, str):
            raise TypeError("username and password must be strings")
        return username, secret, payload

    def register(self, request: Request) -> Response:
        try:
            username, secret, payload = self._credentials(request)
            email = payload.get("email") or ""
            if not username or not secret:
                return error_response(HttpStatus.BAD_REQUEST, "用户名和密码不能为空")
            if self.store.find_user(username) is not None:
                return error_response(HttpStatus.BAD_REQUEST, "用户名已存在")
            user_id = self.store.create_user(username, hash_password(secret), email or None)
        except (ValueError, KeyError, TypeError) as exc:
            log.error("用户注册错误: %s", exc)
            return error_response(HttpStatus.INTERNAL_SERVER_ERROR, f"注册失败: {exc}")
        if not user_id:
            return error_response(HttpStatus.INTERNAL_SERVER_ERROR, "注册失败，请稍后重试")
        return json_response(HttpStatus.OK, {"code": 0, "message": "注册成功", "userId": user_id})

    def login(self, request: Request) -> Response:
        try:
            username, secret, _ = self._credentials(request)
        except (ValueError, KeyError, TypeError) as exc:
            log.error("用户登录错误: %s", exc)
            return error_response(HttpStatus.INTERNAL_SERVER_ERROR, f"登录失败: {exc}")
        if not username or not secret:
            return error_response(HttpStatus.BAD_REQUEST, "用户名和密码不能为空")
        user = self.store.authenticate(username, hash_password(secret))
        if user is None:
            log.error("用户名或密码错误")
            return error_response(HttpStatus.UNAUTHORIZED, "用户名或密码错误")
        session_id = generate_session_id()
        self.store.save_session(session_id, user.id, user.username)
        response = json_response(
            HttpStatus.OK,
            {
                "code": 0,
                "message": "登录成功",
                "sessionId": session_id,
                "userId": user.id,
                "username": user.username,
            },
        )
        response.add_header("Set-Cookie", f"session_id={session_id}; Path=/; HttpOnly")
        return response

    def logout(self, request: Request) -> Response:
        session_id = parse_cookie(request.header("Cookie"), "session_id")
        if session_id:
            self.store.delete_session(session_id)
        return json_response(HttpStatus.OK, {"code": 0, "message": "Logout successful"})

    def search_users(self, request: Request) -> Response:
        user = self.validate_session(request)
        if user is None:
            return error_response(HttpStatus.UNAUTHORIZED, NOT_LOGGED_IN)
        keyword = request.param("keyword")
        if not keyword:
            return error_response(HttpStatus.BAD_REQUEST, "搜索关键词不能为空")
        users = [
            {"id": found.id, "username": found.username or "", "email": found.email or ""}
            for found in self.store.search_users(keyword, user.id)
        ]
        return json_response(HttpStatus.OK, {"code": 0, "message": "Success", "users": users})

    # files

    def list_files(self, request: Request) -> Response:
        user = self.validate_session(request)
        if user is None:
            return error_response(HttpStatus.UNAUTHORIZED, NOT_LOGGED_IN)
        list_type = request.header("type") or "my"
        payload: dict[str, Any] = {"code": 0, "message": "Success"}
        if list_type in LIST_TYPES:
            files = []
            for record in self.store.list_files(user.id, list_type):
                info: dict[str, Any] = {
                    "id": record.id,
                    "name": record.filename,
                    "originalName": record.original_name,
                    "size": record.size,
                    "type": record.file_type,
                    "createdAt": record.created_at,
                    "isOwner": record.is_owner,
                }
                if record.is_owner:
                    share = self.store.file_share(record.id)
                    if share is not None:
                        info["shareInfo"] = _share_summary(share)
                files.append(info)
            payload["files"] = files
        return json_response(HttpStatus.OK, payload)

    def upload(self, request: Request) -> Response:
        user = self.validate_session(request)
        if user is None:
            log.error("upload without a valid session")
            return error_response(HttpStatus.UNAUTHORIZED, NOT_LOGGED_IN)
        try:
            boundary = extract_boundary(request.header("Content-Type"))
            header_name = request.header("X-File-Name")
            original = url_decode(header_name) if header_name else extract_filename(request.body)
        except UploadError as exc:
            return error_response(HttpStatus.BAD_REQUEST, str(exc))

        server_name = generate_unique_filename("upload")
        path = os.path.join(self.upload_dir, server_name)
        try:
            with UploadContext(path, original) as context:
                context.boundary = boundary
                context.begin(request.body)
                size = context.total_bytes
        except (UploadError, OSError) as exc:
            log.error("Failed to create upload context: %s", exc)
            return error_response(HttpStatus.INTERNAL_SERVER_ERROR, "Failed to create file")

        file_id = self.store.add_file(server_name, original, size, file_type(original), user.id)
        log.info("file %s recorded as %s", original, server_name)
        return json_response(
            HttpStatus.OK,
            {
                "code": 0,
                "message": "上传成功",
                "fileId": file_id,
                "FileName": server_name,
                "originalFileName": original,
                "size": size,
            },
        )

    def _stream_file(
        self,
        request: Request,
        filepath: str,
        original_name: str,
        disposition_param: str,
        connection: str | None = None,
    ) -> Reply:
        try:
            return download_response(request, filepath, original_name, disposition_param, connection)
        except RangeNotSatisfiable:
            return error_response(HttpStatus.RANGE_NOT_SATISFIABLE, "Range Not Satisfiable")
        except OSError as exc:
            log.error("Error during file download: %s", exc)
            return error_response(HttpStatus.INTERNAL_SERVER_ERROR, "Download failed")

    def download(self, request: Request) -> Reply:
        filename = request.param("filename")
        if not filename:
            return error_response(HttpStatus.BAD_REQUEST, "Missing fileName")
        session_id = parse_cookie(request.header("Cookie"), "session_id") or request.param("sessionId")
        user = self.store.validate_session(session_id)
        authenticated = user is not None
        user_id = user.id if user else 0
        share_code = request.param("code")
        extract_code = request.param("extract_code")

        share = None
        if share_code:
            found = self.store.find_shared_file(filename, share_code)
            record, share = found if found else (None, None)
        else:
            if not authenticated:
                return error_response(HttpStatus.UNAUTHORIZED, "请先登录")
            record = self.store.find_file(filename)
        if record is None:
            return error_response(HttpStatus.NOT_FOUND, "File not found")

        share_type = share.share_type if share else ""
        shared_with_id = (share.shared_with_id or 0) if share else 0
        db_extract = (share.extract_code or "") if share else ""
        if authenticated and user_id == record.user_id:
            allowed = True
        elif share_code:
            allowed = (
                share_type == "public"
                or (share_type == "protected" and extract_code == db_extract)
                or (share_type == "user" and user_id == shared_with_id)
            )
        else:
            allowed = False
        if not allowed:
            if share_type == "protected" and (not extract_code or extract_code != db_extract):
                return error_response(HttpStatus.FORBIDDEN, "需要正确的提取码")
            log.error("permission denied for user %d on file %d", user_id, record.id)
            return error_response(HttpStatus.FORBIDDEN, "您没有权限访问此文件")

        filepath = os.path.join(self.upload_dir, record.filename)
        if not os.path.isfile(filepath):
            return error_response(HttpStatus.INTERNAL_SERVER_ERROR, "File not found")
        if request.method is Method.HEAD:
            return head_response(os.path.getsize(filepath))
        return self._stream_file(request, filepath, record.original_name, "fileName")

    def delete(self, request: Request) -> Response:
        user = self.validate_session(request)
        if user is None:
            return error_response(HttpStatus.UNAUTHORIZED, NOT_LOGGED_IN)
        filename = request.param("filename")
        if not filename:
            return error_response(HttpStatus.BAD_REQUEST, "Missing fileName")
        file_id = self.store.owned_file_id(filename, user.id)
        if file_id is None:
            return error_response(HttpStatus.FORBIDDEN, "文件不存在或您没有权限删除此文件")
        self.store.remove_shares(file_id)
        if not self.store.delete_file(file_id):
            return error_response(HttpStatus.INTERNAL_SERVER_ERROR, "删除文件记录失败")
        filepath = os.path.join(self.upload_dir, filename)
        try:
            os.remove(filepath)
        except FileNotFoundError:
            log.warning("%s not found", filepath)
        except OSError as exc:
            log.warning("Failed to delete file: %s, error: %s", filepath, exc)
        self.file_names.discard(filename)
        return json_response(HttpStatus.OK, {"code": 0, "message": "success"})

    # shares

    def share(self, request: Request) -> Response:
        user = self.validate_session(request)
        if user is None:
            return error_response(HttpStatus.UNAUTHORIZED, NOT_LOGGED_IN)
        try:
            payload = json.loads(request.body)
        except ValueError as exc:
            return error_response(HttpStatus.INTERNAL_SERVER_ERROR, f"分享失败: {exc}")
        try:
            result = share_file(self.store, user.id, payload)
        except ShareError as exc:
            return error_response(exc.status, exc.message)
        return json_response(HttpStatus.OK, result)

    def share_access(self, request: Request) -> Response:
        match = _SHARE_PATH_RE.search(request.path)
        if match is None:
            return error_response(HttpStatus.BAD_REQUEST, "无效的分享链接")
        share_code = match.group(1)
        is_ajax = (
            request.header("X-Requested-With") == "XMLHttpRequest"
            or "application/json" in request.header("Accept")
        )
        if not is_ajax:
            response = self.index(request)
            response.add_header("X-Share-Code", share_code)
            return response
        user = self.validate_session(request)
        try:
            result = share_access(
                self.store,
                share_code,
                _query_param(request, "code"),
                user.id if user else 0,
                user is not None,
            )
        except ShareError as exc:
            return error_response(exc.status, exc.message)
        return json_response(HttpStatus.OK, result)

    def share_download(self, request: Request) -> Reply:
        filename = request.param("filename")
        if not filename:
            return error_response(HttpStatus.BAD_REQUEST, "Missing filename")
        share_code = request.param("code")
        extract_code = request.param("extract_code")
        if not share_code:
            return error_response(HttpStatus.BAD_REQUEST, "Missing share code")
        user = self.validate_session(request)
        authenticated = user is not None
        user_id = user.id if user else 0

        found = self.store.find_shared_file(filename, share_code)
        if found is None:
            return error_response(HttpStatus.NOT_FOUND, "Share not found or expired")
        record, share = found
        allowed = (
            (authenticated and user_id == record.user_id)
            or share.share_type == "public"
            or (share.share_type == "protected" and extract_code == (share.extract_code or ""))
            or (share.share_type == "user" and authenticated and user_id == (share.shared_with_id or 0))
        )
        if not allowed:
            return error_response(HttpStatus.FORBIDDEN, "无权限访问此文件")

        filepath = os.path.join(self.upload_dir, record.filename)
        if not os.path.isfile(filepath):
            return error_response(HttpStatus.NOT_FOUND, "File not found")
        return self._stream_file(request, filepath, record.original_name, "filename", "keep-alive")

    def share_info(self, request: Request) -> Response:
        try:
            result = share_info(self.store, request.param("code"), request.param("extract_code"))
        except ShareError as exc:
            return error_response(exc.status, exc.message)
        return json_response(HttpStatus.OK, result)

    def close(self) -> None:
        """Save the file-name map and close the store."""
        self.file_names.save()
        self.store.close()