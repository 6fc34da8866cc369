"""Batch orchestration: ingest, sign, dispatch and tally one run."""

from __future__ import annotations

import functools
import logging
import queue
import threading
import time
from pathlib import Path
from typing import Callable, Iterable

from geobatch.common.config_loader import GeocodeConfig
from geobatch.common.errors import CancelledError, InvalidClientIDError
from geobatch.common.http import HttpClient
from geobatch.common.ids import generate_run_id
from geobatch.common.logging import build_logger, close_logger, log_event
from geobatch.common.models import STATUS_CANCELLED, STATUS_OK, QueryResult, Record, RunSummary, SignedQuery
from geobatch.common.time_utils import elapsed_ms
from geobatch.dispatch.coordinator import END_OF_INPUT, DispatchCoordinator, execute_query, iter_results
from geobatch.ingest.records import read_files
from geobatch.pipeline.reports import write_run_summary
from geobatch.request.query import prepare_query
from geobatch.request.signer import decode_key


class QuerySink:
    """Record sink that prepares each record and hands it to the dispatcher.

    Records whose URL cannot be built are sent on as failed results, so the
    dispatcher reports them in order with the rest of the batch.
    """

    def __init__(
        self,
        config: GeocodeConfig,
        work: queue.Queue,
        stop_event: threading.Event,
        logger: logging.Logger,
        run_id: str,
    ) -> None:
        self.config = config
        self.work = work
        self.stop_event = stop_event
        self.logger = logger
        self.run_id = run_id
        self.count = 0

    def put(self, record: Record) -> None:
        self.count += 1
        try:
            query = prepare_query(record, self.config)
        except InvalidClientIDError as exc:
            log_event(
                self.logger,
                str(exc),
                level=logging.WARNING,
                run_id=self.run_id,
                stage="prepare",
                source=record.source,
                record_id=record.id,
                event="PREPARE_FAIL",
                status="error",
                error_code=exc.error_code,
            )
            self.forward(QueryResult.failure(record, exc))
            return
        self.forward(query)

    def forward(self, item: SignedQuery | QueryResult | object) -> None:
        while True:
            if self.stop_event.is_set():
                raise CancelledError("run stopped before the record was queued")
            try:
                self.work.put(item, timeout=self.config.poll_interval_seconds)
                return
            except queue.Full:
                continue


class _ProducerState:
    def __init__(self) -> None:
        self.fatal: Exception | None = None


def _produce(
    paths: list[Path],
    config: GeocodeConfig,
    sink: QuerySink,
    state: _ProducerState,
    logger: logging.Logger,
    run_id: str,
) -> None:
    started_at = time.monotonic()
    try:
        read_files(paths, config.delimiter, sink)
    except CancelledError:
        log_event(logger, "ingest stopped", run_id=run_id, stage="ingest", event="INGEST_STOP", status="cancelled")
    except Exception as exc:
        state.fatal = exc
        log_event(
            logger,
            f"ingest failed: {exc}",
            level=logging.ERROR,
            run_id=run_id,
            stage="ingest",
            source=getattr(exc, "source", None),
            event="INGEST_FAIL",
            status="error",
            rows_in=sink.count,
            error_code=getattr(exc, "error_code", "UNEXPECTED_ERROR"),
        )
    else:
        log_event(
            logger,
            "ingest finished",
            run_id=run_id,
            stage="ingest",
            event="INGEST_END",
            status="ok",
            rows_in=sink.count,
            duration_ms=elapsed_ms(started_at, time.monotonic()),
        )
    finally:
        try:
            sink.forward(END_OF_INPUT)
        except CancelledError:
            pass


def run_batch(
    paths: Iterable[Path],
    config: GeocodeConfig,
    *,
    client: HttpClient | None = None,
    logger: logging.Logger | None = None,
    run_id: str | None = None,
    on_result: Callable[[QueryResult], None] | None = None,
    on_start: Callable[[DispatchCoordinator], None] | None = None,
    stop_event: threading.Event | None = None,
) -> RunSummary:
    """Geocode every record in ``paths`` and return the tally for the run.

    Per-record failures are counted, not raised. A bad signing key raises
    ``InvalidKeyError`` before anything is read; an input fault stops
    ingestion and is reported as the summary's ``fatal_error`` while the
    records already queued are still dispatched.
    """
    run_id = run_id or generate_run_id()
    paths = [Path(p) for p in paths]
    if config.key:
        decode_key(config.key)

    owns_logger = logger is None
    logger = logger or build_logger(run_id, log_dir=config.log_dir, level=config.log_level)
    owns_client = client is None
    client = client or HttpClient(timeout=config.timeout)
    stop_event = stop_event if stop_event is not None else threading.Event()

    work: queue.Queue = queue.Queue(maxsize=config.queue_size)
    output: queue.Queue = queue.Queue()
    coordinator = DispatchCoordinator(
        work,
        output,
        functools.partial(execute_query, client),
        qps=config.qps,
        max_workers=config.max_workers,
        grace_period=config.grace_period_seconds,
        poll_interval=config.poll_interval_seconds,
        logger=logger,
        stop_event=stop_event,
    )
    sink = QuerySink(config, work, stop_event, logger, run_id)
    state = _ProducerState()
    producer = threading.Thread(
        target=_produce,
        args=(paths, config, sink, state, logger, run_id),
        name="geobatch-ingest",
        daemon=True,
    )

    log_event(logger, "run start", run_id=run_id, stage="run", event="RUN_START", status="ok", qps=config.qps)
    started_at = time.monotonic()
    succeeded = failed = cancelled = 0
    try:
        producer.start()
        coordinator.start()
        if on_start is not None:
            on_start(coordinator)
        for result in iter_results(output):
            if result.status == STATUS_OK:
                succeeded += 1
            elif result.status == STATUS_CANCELLED:
                cancelled += 1
            else:
                failed += 1
                log_event(
                    logger,
                    result.error or "query failed",
                    level=logging.WARNING,
                    run_id=run_id,
                    stage="dispatch",
                    source=result.source,
                    record_id=result.record_id,
                    event="QUERY_FAIL",
                    status="error",
                    error_code=result.error_code,
                )
            if on_result is not None:
                on_result(result)
        producer.join()
        coordinator.join()
    except BaseException:
        # Unblock the producer and dispatcher before the error propagates.
        stop_event.set()
        if owns_logger:
            close_logger(logger)
        raise
    finally:
        if owns_client:
            client.close()

    fatal = state.fatal
    summary = RunSummary(
        run_id=run_id,
        records_read=sink.count,
        succeeded=succeeded,
        failed=failed,
        cancelled=cancelled,
        fatal_error=str(fatal) if fatal is not None else None,
        fatal_error_code=getattr(fatal, "error_code", "UNEXPECTED_ERROR") if fatal is not None else None,
    )
    log_event(
        logger,
        "run end",
        run_id=run_id,
        stage="run",
        event="RUN_END",
        status=summary.status,
        rows_in=summary.records_read,
        rows_out=summary.succeeded,
        duration_ms=elapsed_ms(started_at, time.monotonic()),
        error_code=summary.fatal_error_code,
    )
    if config.summary_path is not None:
        write_run_summary(config.summary_path, summary, sources=[str(p) for p in paths])
    if owns_logger:
        close_logger(logger)
    return summary
