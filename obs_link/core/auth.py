"""
core/auth.py — obs-websocket challenge-response authentication.
"""

from __future__ import annotations

import base64
import hashlib


def create_auth_response(challenge: str, salt: str, password: str) -> str:
    """
    Build the `authentication` string for Identify:

        secret = base64(sha256(password + salt))
        auth   = base64(sha256(secret + challenge))

    The server recomputes the same value, so this must match byte for byte.
    """
    secret = base64.b64encode(hashlib.sha256((password + salt).encode("utf-8")).digest())
    auth = hashlib.sha256(secret + challenge.encode("utf-8")).digest()
    return base64.b64encode(auth).decode("ascii")
