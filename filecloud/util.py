"""Small helpers: cookies, URL decoding, identifiers and hashing."""

from __future__ import annotations

import hashlib
import mimetypes
import re
import secrets
import string
import time
from urllib.parse import unquote_plus

_EXTRACT_ALPHABET = string.ascii_lowercase + string.digits
_EXTRACT_LENGTH = 4


def parse_cookie(cookie: str, name: str) -> str:
    """Return the value of cookie ``name`` in a Cookie header, or ''."""
    for part in cookie.split(";"):
        key, sep, value = part.partition("=")
        if sep and key.strip() == name:
            return value.strip()
    return ""


def url_decode(text: str) -> str:
    """Decode %XX escapes and '+' in a URL component."""
    return unquote_plus(text)


def generate_unique_filename(prefix: str) -> str:
    """Return a server-side file name that will not collide with others."""
    return f"{prefix}_{time.time_ns()}_{secrets.token_hex(4)}"


def file_type(filename: str) -> str:
    """Guess a MIME type from the file name's extension."""
    guessed, _ = mimetypes.guess_type(filename.lower())
    return guessed or "application/octet-stream"


def generate_share_code() -> str:
    """Return a 32 character share code of lower-case letters and digits."""
    return secrets.token_hex(16)


def generate_extract_code() -> str:
    """Return a short random extraction code for protected shares."""
    return "".join(secrets.choice(_EXTRACT_ALPHABET) for _ in range(_EXTRACT_LENGTH))


def generate_session_id() -> str:
    """Return a random session identifier."""
    return secrets.token_hex(16)


def hash_password(password: str) -> str:
    """Return the hexadecimal SHA-256 digest of a password."""
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


def escape_regex(path: str) -> str:
    """Escape a literal path so it can be embedded in a regular expression."""
    return re.escape(path)