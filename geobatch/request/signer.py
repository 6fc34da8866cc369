"""HMAC-SHA1 request signing for the geocoding API.

See https://developers.google.com/maps/documentation/business/webservices
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import re
from urllib.parse import parse_qsl, urlsplit, urlunsplit

from geobatch.common.errors import InvalidKeyError
from geobatch.request.builder import encode_query

_URLSAFE_B64 = re.compile(r"^[A-Za-z0-9_-]*={0,2}$")


def decode_key(key: str) -> bytes:
    """Decode a padded URL-safe base64 key, rejecting the standard alphabet."""
    if not _URLSAFE_B64.match(key):
        raise InvalidKeyError("signing key is not URL-safe base64")
    try:
        return base64.b64decode(key, altchars=b"-_", validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidKeyError(f"signing key is not URL-safe base64: {exc}") from exc


def request_uri(url: str) -> str:
    parts = urlsplit(url)
    path = parts.path or "/"
    if parts.query:
        return f"{path}?{parts.query}"
    return path


def compute_signature(path_and_query: str, decoded_key: bytes) -> str:
    digest = hmac.new(decoded_key, path_and_query.encode("utf-8"), hashlib.sha1).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii")


def sign_url(url: str, key: str) -> str:
    """Return ``url`` with a ``signature`` parameter over its path and query.

    The signature covers the query exactly as it appears in ``url``; the
    returned URL re-serialises every parameter in key order.
    """
    decoded_key = decode_key(key)
    signature = compute_signature(request_uri(url), decoded_key)

    parts = urlsplit(url)
    params = dict(parse_qsl(parts.query, keep_blank_values=True))
    params["signature"] = signature
    return urlunsplit((parts.scheme, parts.netloc, parts.path, encode_query(params), parts.fragment))
