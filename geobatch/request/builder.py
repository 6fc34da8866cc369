"""Geocoding query URL construction."""

from __future__ import annotations

from urllib.parse import urlencode, urlsplit, urlunsplit

from geobatch.common.constants import CLIENT_ID_PREFIX, HOST_URL
from geobatch.common.errors import InvalidClientIDError


def encode_query(params: dict[str, str]) -> str:
    """Serialise query parameters in lexicographic key order."""
    return urlencode(sorted(params.items()))


def build_url(address: str, sensor: bool, client_id: str = "") -> str:
    """Return an unsigned geocoding URL for one address.

    See https://developers.google.com/maps/documentation/geocoding/
    """
    base = urlsplit(HOST_URL)
    # HOST_URL is a constant; a missing scheme or host is a coding error.
    assert base.scheme and base.netloc, f"malformed endpoint constant: {HOST_URL}"

    params = {
        "address": address,
        "sensor": "true" if sensor else "false",
    }
    if client_id:
        if not client_id.startswith(CLIENT_ID_PREFIX):
            raise InvalidClientIDError(f"client id must start with {CLIENT_ID_PREFIX!r}: {client_id!r}")
        params["client"] = client_id

    return urlunsplit((base.scheme, base.netloc, base.path, encode_query(params), ""))
