"""Creating file shares and resolving share links."""

from __future__ import annotations

import logging
from typing import Any

from filecloud.http import HttpStatus
from filecloud.store import Store
from filecloud.util import generate_extract_code, generate_share_code

log = logging.getLogger(__name__)

SHARE_CODE_LENGTH = 32
_SHARE_CODE_CHARS = frozenset("abcdefghijklmnopqrstuvwxyz0123456789")


class ShareError(Exception):
    """A share request failed; carries the HTTP status to answer with."""

    def __init__(self, status: HttpStatus, message: str) -> None:
        super().__init__(message)
        self.status = HttpStatus(status)
        self.message = message


def _require_int(payload: dict, key: str) -> int:
    value = payload.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ShareError(HttpStatus.INTERNAL_SERVER_ERROR, f"分享失败: invalid {key}")
    return int(value)


def _require_str(payload: dict, key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str):
        raise ShareError(HttpStatus.INTERNAL_SERVER_ERROR, f"分享失败: invalid {key}")
    return value


def share_file(store: Store, user_id: int, payload: dict) -> dict[str, Any]:
    """Share (or make private) a file owned by ``user_id``; return the JSON reply."""
    if not isinstance(payload, dict):
        raise ShareError(HttpStatus.INTERNAL_SERVER_ERROR, "分享失败: invalid request body")
    file_id = _require_int(payload, "fileId")
    share_type = _require_str(payload, "shareType")

    if not store.owns_file(file_id, user_id):
        log.warning("您没有权限分享此文件")
        raise ShareError(HttpStatus.FORBIDDEN, "您没有权限分享此文件")

    if share_type == "private":
        store.remove_shares(file_id)
        return {"code": 0, "message": "文件设置为私有成功"}

    expire_hours = None
    if payload.get("expireTime") is not None:
        expire_hours = _require_int(payload, "expireTime")

    share_code = generate_share_code()
    shared_with_id = None
    extract_code = None

    if share_type == "user" and "sharedWithId" in payload:
        shared_with_id = _require_int(payload, "sharedWithId")
        if store.has_user_share(file_id, shared_with_id):
            log.warning("已经分享给该用户")
            raise ShareError(HttpStatus.BAD_REQUEST, "已经分享给该用户")
    elif share_type == "protected":
        extract_code = generate_extract_code()

    share_id = store.add_share(
        file_id, user_id, shared_with_id, share_type, share_code, extract_code, expire_hours
    )
    if not share_id:
        log.error("创建分享失败")
        raise ShareError(HttpStatus.INTERNAL_SERVER_ERROR, "创建分享失败")

    result: dict[str, Any] = {
        "code": 0,
        "message": "分享成功",
        "shareId": share_id,
        "shareType": share_type,
        "shareCode": share_code,
        "shareLink": "/share/" + share_code,
    }
    if share_type == "user" and shared_with_id is not None:
        result["sharedWithId"] = shared_with_id
    elif share_type == "protected":
        result["extractCode"] = extract_code
    return result


def check_share_permission(
    share_type: str,
    is_owner: bool,
    extract_code: str,
    db_extract_code: str | None,
    user_id: int,
    shared_with_id: int | None,
    authenticated: bool,
) -> bool:
    """Decide whether a share may be accessed by the requesting user."""
    if is_owner:
        return True
    if share_type == "public":
        return True
    if share_type == "protected":
        return bool(extract_code) and extract_code == (db_extract_code or "")
    if share_type == "user":
        return authenticated and user_id == (shared_with_id or 0)
    return False


def _check_code_format(share_code: str) -> None:
    if len(share_code) != SHARE_CODE_LENGTH:
        log.warning("无效的分享码格式")
        raise ShareError(HttpStatus.BAD_REQUEST, "无效的分享码格式")
    if not set(share_code) <= _SHARE_CODE_CHARS:
        log.warning("分享码包含非法字符")
        raise ShareError(HttpStatus.BAD_REQUEST, "分享码包含非法字符")


def share_access(
    store: Store, share_code: str, extract_code: str, user_id: int, authenticated: bool
) -> dict[str, Any]:
    """Resolve a share link for a JSON client and return the file's details."""
    _check_code_format(share_code)
    found = store.share_details(share_code)
    if found is not None:
        _, share = found
        if share.share_type == "protected" and extract_code != (share.extract_code or ""):
            found = None
    if found is None:
        log.error("分享链接已失效或不存在")
        raise ShareError(HttpStatus.NOT_FOUND, "分享链接已失效或不存在")

    record, share = found
    is_owner = record.user_id == user_id
    if not check_share_permission(
        share.share_type,
        is_owner,
        extract_code,
        share.extract_code,
        user_id,
        share.shared_with_id,
        authenticated,
    ):
        if share.share_type == "protected" and (
            not extract_code or extract_code != (share.extract_code or "")
        ):
            raise ShareError(HttpStatus.FORBIDDEN, "需要正确的提取码")
        raise ShareError(HttpStatus.FORBIDDEN, "您没有权限访问此文件")

    return {
        "code": 0,
        "message": "success",
        "file": {
            "id": share.id,
            "fileId": share.file_id,
            "ownerId": share.owner_id,
            "sharedWithId": share.shared_with_id or 0,
            "shareType": share.share_type,
            "shareCode": share_code,
            "createdAt": share.created_at or "",
            "expireTime": share.expire_time or "",
            "filename": record.filename or "",
            "originalName": record.original_name or "",
            "size": record.size or 0,
            "type": record.file_type or "unknown",
            "ownerUsername": record.owner_username or "",
            "isOwner": is_owner,
        },
        "downloadUrl": f"/share/download/{record.filename or ''}?code={share_code}",
    }


def share_info(store: Store, share_code: str, extract_code: str) -> dict[str, Any]:
    """Return the metadata of a shared file, checking the extract code if needed."""
    if not share_code:
        raise ShareError(HttpStatus.BAD_REQUEST, "Missing share code")
    found = store.share_details(share_code)
    if found is None:
        log.error("分享链接已失效或不存在, shareCode = %s", share_code)
        raise ShareError(HttpStatus.NOT_FOUND, "分享链接已失效或不存在")
    record, share = found
    if share.share_type == "protected" and (
        not extract_code or extract_code != (share.extract_code or "")
    ):
        log.error("提取码错误或未提供, shareCode = %s", share_code)
        raise ShareError(HttpStatus.FORBIDDEN, "需要正确的提取码")
    return {
        "code": 0,
        "message": "success",
        "shareType": share.share_type,
        "file": {
            "id": share.file_id,
            "name": record.filename or "",
            "originalName": record.original_name or "",
            "size": record.size or 0,
            "type": record.file_type or "unknown",
            "shareTime": share.created_at or "",
            "expireTime": share.expire_time or "",
        },
    }