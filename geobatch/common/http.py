"""HTTP client with timeouts and failure typing for the geocoding API."""

from __future__ import annotations

from dataclasses import dataclass
from types import TracebackType

import requests

from geobatch.common.constants import USER_AGENT
from geobatch.common.errors import HttpStatusError, TransportError


@dataclass(frozen=True)
class TimeoutConfig:
    connect: float = 10.0
    read: float = 30.0


class HttpClient:
    def __init__(self, *, timeout: TimeoutConfig | None = None) -> None:
        self.timeout = timeout or TimeoutConfig()
        self.session = requests.Session()

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "HttpClient":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def _headers(self, headers: dict[str, str] | None) -> dict[str, str]:
        out = {"User-Agent": USER_AGENT, "Accept": "application/json"}
        if headers:
            out.update(headers)
        return out

    def _raise_for_status(self, response: requests.Response) -> None:
        status = response.status_code
        if status >= 400:
            raise HttpStatusError(f"HTTP status: {status}", status_code=status)

    def get_text(
        self,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        timeout: TimeoutConfig | None = None,
    ) -> str:
        """GET a fully built URL and return the body untouched.

        The URL is sent as-is: its query string is already canonical and
        signed, so nothing here may re-encode it.
        """
        req_timeout = timeout or self.timeout
        try:
            response = self.session.request(
                method="GET",
                url=url,
                headers=self._headers(headers),
                timeout=(req_timeout.connect, req_timeout.read),
            )
        except requests.RequestException as exc:
            raise TransportError(f"Request failed: {exc}") from exc
        self._raise_for_status(response)
        return response.text
