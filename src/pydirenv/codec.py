"""Single-token serialization for state carried in environment variables.

Values are JSON-encoded, gzip-compressed and written as URL-safe base64
without padding. The result contains only ``[A-Za-z0-9_-]`` so it survives
any shell quoting, and arbitrary value content (empty strings, newlines,
``=``, ``:``, NUL-free binary-ish text) round-trips exactly.
"""

from __future__ import annotations

import base64
import binascii
import gzip
import json
import zlib
from typing import Any

__all__ = ["marshal", "unmarshal", "CodecError"]


class CodecError(ValueError):
    """Token is not a valid marshalled value."""


def marshal(obj: Any) -> str:
    """Encode a JSON-serializable object as a single shell-safe token."""
    json_bytes = json.dumps(obj, sort_keys=True, separators=(",", ":")).encode("utf-8")
    compressed = gzip.compress(json_bytes, compresslevel=6, mtime=0)
    return base64.urlsafe_b64encode(compressed).rstrip(b"=").decode("ascii")


def unmarshal(token: str) -> Any:
    """Decode a token produced by :func:`marshal`.

    Raises:
        CodecError: On any base64, gzip, UTF-8 or JSON failure.
    """
    if not isinstance(token, str) or not token:
        raise CodecError("empty token")

    padded = token + "=" * (-len(token) % 4)
    try:
        compressed = base64.urlsafe_b64decode(padded.encode("ascii"))
    except (binascii.Error, UnicodeEncodeError, ValueError) as e:
        raise CodecError(f"invalid base64: {e}") from e

    try:
        json_bytes = gzip.decompress(compressed)
    except (gzip.BadGzipFile, zlib.error, EOFError, OSError) as e:
        raise CodecError(f"invalid gzip payload: {e}") from e

    try:
        return json.loads(json_bytes.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CodecError(f"invalid JSON payload: {e}") from e
