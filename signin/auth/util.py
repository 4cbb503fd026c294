from __future__ import annotations

import base64
import os
from urllib.parse import urlsplit


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def random_token(nbytes: int = 32) -> str:
    return b64url(os.urandom(nbytes))


def strip_query(url: str) -> str:
    """`scheme://host/path` (or `scheme:/path`) without query or fragment, for matching redirects."""
    parts = urlsplit((url or "").strip())
    if parts.netloc:
        return f"{parts.scheme}://{parts.netloc}{parts.path}".rstrip("/").lower()
    return f"{parts.scheme}:{parts.path}".rstrip("/").lower()
