from __future__ import annotations

import pytest
import requests

from geobatch.common.errors import HttpStatusError, TransportError
from geobatch.common.http import HttpClient, TimeoutConfig
from geobatch.common.models import Record, SignedQuery
from geobatch.dispatch.coordinator import execute_query


class FakeResponse:
    def __init__(self, status_code: int, text: str = ""):
        self.status_code = status_code
        self.text = text


def _query() -> SignedQuery:
    record = Record(source="in.csv", id="7", sensor=False, address="x")
    return SignedQuery(record=record, url="https://example.com/maps/api/geocode/json?address=x&sensor=false")


def test_http_get_text_returns_body_and_sends_url_verbatim(monkeypatch):
    client = HttpClient(timeout=TimeoutConfig(connect=1.0, read=2.0))
    calls = []

    def fake_request(**kwargs):
        calls.append(kwargs)
        return FakeResponse(200, '{"status": "OK"}')

    monkeypatch.setattr(client.session, "request", fake_request)
    url = "https://example.com/json?address=a&signature=abc%3D"

    assert client.get_text(url) == '{"status": "OK"}'
    assert calls[0]["url"] == url
    assert calls[0]["method"] == "GET"
    assert calls[0]["timeout"] == (1.0, 2.0)
    assert calls[0]["headers"]["Accept"] == "application/json"


def test_http_status_error_carries_status_code(monkeypatch):
    client = HttpClient()
    monkeypatch.setattr(client.session, "request", lambda **_kwargs: FakeResponse(503, "busy"))

    with pytest.raises(HttpStatusError) as excinfo:
        client.get_text("https://example.com")

    assert excinfo.value.status_code == 503
    assert isinstance(excinfo.value, TransportError)


def test_http_network_failure_raises_transport_error(monkeypatch):
    client = HttpClient()

    def boom(**_kwargs):
        raise requests.ConnectionError("no route to host")

    monkeypatch.setattr(client.session, "request", boom)

    with pytest.raises(TransportError):
        client.get_text("https://example.com")


def test_execute_query_wraps_payload_and_failures(monkeypatch):
    client = HttpClient()
    monkeypatch.setattr(client.session, "request", lambda **_kwargs: FakeResponse(200, "{}"))
    ok = execute_query(client, _query())

    monkeypatch.setattr(client.session, "request", lambda **_kwargs: FakeResponse(404))
    failed = execute_query(client, _query())

    assert ok.ok and ok.payload == "{}"
    assert failed.status == "error"
    assert failed.error_code == "HTTP_ERROR"
    assert (failed.record_id, failed.source) == ("7", "in.csv")


def test_http_client_context_manager_closes_session(monkeypatch):
    closed = []
    with HttpClient() as client:
        monkeypatch.setattr(client.session, "close", lambda: closed.append(True))

    assert closed == [True]
