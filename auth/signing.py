"""
HMAC-signed, expiring payloads.

Used for API bearer tokens and for the OAuth ``state`` parameter.
Format: ``base64(json payload) + "." + hex(hmac_sha256(payload))``.
"""

from __future__ import annotations

import binascii
import hashlib
import hmac
import json
import time
from base64 import b64decode, b64encode
from typing import Any, Dict, Optional


class InvalidSignature(ValueError):
    """Malformed, tampered or expired signed payload."""


def sign(payload: Dict[str, Any], secret: str, ttl_seconds: int, *, now: Optional[float] = None) -> str:
    body = dict(payload)
    body["exp"] = int((time.time() if now is None else now) + ttl_seconds)
    raw = json.dumps(body, sort_keys=True).encode()
    sig = hmac.new(secret.encode(), raw, hashlib.sha256).hexdigest()
    return b64encode(raw).decode() + "." + sig


def verify(token: str, secret: str, *, now: Optional[float] = None) -> Dict[str, Any]:
    """Return the payload of a valid token. Raises ``InvalidSignature``."""
    parts = token.split(".", 1)
    if len(parts) != 2:
        raise InvalidSignature("bad format")
    try:
        raw = b64decode(parts[0], validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidSignature("bad encoding") from exc
    expected_sig = hmac.new(secret.encode(), raw, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(parts[1], expected_sig):
        raise InvalidSignature("bad signature")
    try:
        payload = json.loads(raw)
    except ValueError as exc:
        raise InvalidSignature("bad payload") from exc
    if not isinstance(payload, dict):
        raise InvalidSignature("bad payload")
    if payload.get("exp", 0) < (time.time() if now is None else now):
        raise InvalidSignature("expired")
    return payload
