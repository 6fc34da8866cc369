from __future__ import annotations

import json
import logging
import queue
import threading
from pathlib import Path
from urllib.parse import parse_qs, urlsplit

import pytest

from geobatch.common.config_loader import GeocodeConfig
from geobatch.common.errors import CancelledError, InvalidKeyError, TransportError
from geobatch.common.models import Record
from geobatch.pipeline.runner import QuerySink, run_batch

EXAMPLE_KEY = "vNIXE0xscrmjlyV-12Nj_BvUPaw="


class FakeHttpClient:
    def __init__(self, fail_addresses: set[str] | None = None, gate: threading.Event | None = None):
        self.urls: list[str] = []
        self.fail_addresses = fail_addresses or set()
        self.gate = gate
        self.lock = threading.Lock()

    def get_text(self, url: str, **_kwargs) -> str:
        with self.lock:
            self.urls.append(url)
        if self.gate is not None:
            self.gate.wait(5)
        address = parse_qs(urlsplit(url).query)["address"][0]
        if address in self.fail_addresses:
            raise TransportError("connection reset")
        return json.dumps({"status": "OK", "results": [{"formatted_address": address.upper()}]})

    def close(self):
        return None


def _config(tmp_path: Path, **overrides) -> GeocodeConfig:
    values = {
        "qps": 1000,
        "key": EXAMPLE_KEY,
        "client_id": "gme-acme",
        "poll_interval_seconds": 0.01,
        "grace_period_seconds": 0.2,
        "log_dir": tmp_path / "logs",
        "summary_path": tmp_path / "out" / "summary.json",
    }
    values.update(overrides)
    return GeocodeConfig(**values)


@pytest.mark.integration
def test_run_batch_geocodes_every_record_across_files(tmp_path: Path):
    first = tmp_path / "first.csv"
    second = tmp_path / "second.csv"
    first.write_text("1,true,10 Downing St\n2,false,221B, Baker St\n3,0,1 Main St\n", encoding="utf-8")
    second.write_text("4,1,Buckingham Palace\n5,TRUE,Tower Bridge\n", encoding="utf-8")
    client = FakeHttpClient()
    results = []

    summary = run_batch([first, second], _config(tmp_path), client=client, run_id="geo-it-1", on_result=results.append)

    assert summary.status == "success"
    assert (summary.records_read, summary.succeeded, summary.failed) == (5, 5, 0)
    assert sorted((r.source, r.record_id) for r in results) == [
        (str(first), "1"),
        (str(first), "2"),
        (str(first), "3"),
        (str(second), "4"),
        (str(second), "5"),
    ]
    for url in client.urls:
        params = parse_qs(urlsplit(url).query)
        assert params["client"] == ["gme-acme"]
        assert "signature" in params
    payload = json.loads((tmp_path / "out" / "summary.json").read_text(encoding="utf-8"))
    assert payload["status"] == "success"
    assert payload["totals"] == {"records_read": 5, "results": 5}
    assert (tmp_path / "logs" / "geo-it-1.log.jsonl").exists()


@pytest.mark.integration
def test_run_batch_without_key_sends_unsigned_urls(tmp_path: Path):
    source = tmp_path / "in.csv"
    source.write_text("1,false,Somewhere\n", encoding="utf-8")
    client = FakeHttpClient()

    summary = run_batch([source], _config(tmp_path, key="", client_id=""), client=client)

    assert summary.succeeded == 1
    assert urlsplit(client.urls[0]).query == "address=Somewhere&sensor=false"


@pytest.mark.integration
def test_run_batch_reports_transport_failures_per_record(tmp_path: Path):
    source = tmp_path / "in.csv"
    source.write_text("1,false,good\n2,false,bad\n3,false,also good\n", encoding="utf-8")
    results = []

    summary = run_batch(
        [source],
        _config(tmp_path),
        client=FakeHttpClient(fail_addresses={"bad"}),
        on_result=results.append,
    )

    assert (summary.succeeded, summary.failed) == (2, 1)
    assert summary.status == "partial"
    failed = [r for r in results if not r.ok]
    assert [(r.record_id, r.error_code) for r in failed] == [("2", "TRANSPORT_ERROR")]


@pytest.mark.integration
def test_run_batch_malformed_row_is_fatal_but_keeps_earlier_records(tmp_path: Path):
    source = tmp_path / "in.csv"
    source.write_text("1,true,a\n2,false,b\n3,perhaps,c\n4,true,d\n", encoding="utf-8")
    client = FakeHttpClient()

    summary = run_batch([source], _config(tmp_path), client=client)

    assert summary.records_read == 2
    assert summary.succeeded == 2
    assert summary.fatal_error_code == "MALFORMED_RECORD"
    assert "row 2" in summary.fatal_error
    assert summary.status == "partial"


@pytest.mark.integration
def test_run_batch_bad_client_id_fails_each_record_without_dispatch(tmp_path: Path):
    source = tmp_path / "in.csv"
    source.write_text("1,true,a\n2,false,b\n", encoding="utf-8")
    client = FakeHttpClient()
    results = []

    summary = run_batch([source], _config(tmp_path, client_id="acme"), client=client, on_result=results.append)

    assert client.urls == []
    assert summary.failed == 2
    assert {r.error_code for r in results} == {"INVALID_CLIENT_ID"}


@pytest.mark.integration
def test_run_batch_invalid_key_aborts_before_reading(tmp_path: Path):
    source = tmp_path / "in.csv"
    source.write_text("1,true,a\n", encoding="utf-8")
    client = FakeHttpClient()

    with pytest.raises(InvalidKeyError):
        run_batch([source], _config(tmp_path, key="+++/"), client=client)

    assert client.urls == []


@pytest.mark.integration
def test_run_batch_stop_reports_abandoned_queries_as_cancelled(tmp_path: Path):
    source = tmp_path / "in.csv"
    source.write_text("".join(f"{i},false,addr {i}\n" for i in range(4)), encoding="utf-8")
    gate = threading.Event()
    stop = threading.Event()
    client = FakeHttpClient(gate=gate)

    def stop_soon(coordinator):
        threading.Timer(0.2, stop.set).start()

    try:
        summary = run_batch([source], _config(tmp_path), client=client, stop_event=stop, on_start=stop_soon)
    finally:
        gate.set()

    assert summary.cancelled == len(client.urls)
    assert summary.cancelled > 0
    assert summary.succeeded == 0
    assert summary.status == "partial"


@pytest.mark.integration
def test_run_batch_exposes_live_rate_control(tmp_path: Path):
    source = tmp_path / "in.csv"
    source.write_text("1,false,a\n2,false,b\n", encoding="utf-8")
    seen = []

    def speed_up(coordinator):
        coordinator.set_qps(500)
        seen.append(coordinator)

    summary = run_batch([source], _config(tmp_path, qps=1), client=FakeHttpClient(), on_start=speed_up)

    assert summary.succeeded == 2
    assert seen[0].pacer.qps == 500


@pytest.mark.integration
def test_query_sink_sends_prepare_failures_through_the_work_queue(tmp_path: Path):
    work: queue.Queue = queue.Queue()
    stop = threading.Event()
    sink = QuerySink(_config(tmp_path, client_id="acme"), work, stop, logging.getLogger("geobatch.test"), "geo-it-2")

    sink.put(Record(source="in.csv", id="1", sensor=False, address="a"))
    stop.set()
    with pytest.raises(CancelledError):
        sink.put(Record(source="in.csv", id="2", sensor=False, address="b"))

    queued = [work.get_nowait() for _ in range(work.qsize())]
    assert [(r.record_id, r.error_code) for r in queued] == [("1", "INVALID_CLIENT_ID")]
    assert sink.count == 2


@pytest.mark.integration
def test_run_batch_callback_error_stops_ingest_and_dispatch(tmp_path: Path):
    source = tmp_path / "in.csv"
    source.write_text("".join(f"{i},false,addr {i}\n" for i in range(200)), encoding="utf-8")

    def explode(result):
        raise RuntimeError("consumer went away")

    with pytest.raises(RuntimeError, match="consumer went away"):
        run_batch([source], _config(tmp_path, qps=5, queue_size=1), client=FakeHttpClient(), on_result=explode)

    workers = [t for t in threading.enumerate() if t.name in ("geobatch-ingest", "geobatch-coordinator")]
    for thread in workers:
        thread.join(2)
    assert not any(t.is_alive() for t in workers)
