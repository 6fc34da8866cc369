"""Rate-limited concurrent dispatch of signed geocoding queries."""

from __future__ import annotations

import logging
import queue
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import Callable, Iterator

from geobatch.common.errors import TransportError
from geobatch.common.http import HttpClient
from geobatch.common.logging import log_event
from geobatch.common.models import QueryResult, SignedQuery
from geobatch.dispatch.pacing import Pacer, validate_qps


class _Marker:
    def __init__(self, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:
        return f"<{self.name}>"


END_OF_INPUT = _Marker("END_OF_INPUT")
END_OF_RESULTS = _Marker("END_OF_RESULTS")

Execute = Callable[[SignedQuery], QueryResult]


def execute_query(client: HttpClient, query: SignedQuery) -> QueryResult:
    try:
        payload = client.get_text(query.url)
    except TransportError as exc:
        return QueryResult.failure(query.record, exc)
    return QueryResult.success(query.record, payload)


def iter_results(output: queue.Queue) -> Iterator[QueryResult]:
    while True:
        item = output.get()
        if item is END_OF_RESULTS:
            return
        yield item


class DispatchCoordinator:
    """Admit queries from ``work`` at a paced rate and fan them out to a pool.

    The coordinator thread is the only reader of ``work`` and ``control`` and
    the only writer of the pacer. Pending rate updates are always applied
    before the next admission. Results land on ``output`` in completion
    order, followed by a single ``END_OF_RESULTS``.
    """

    def __init__(
        self,
        work: queue.Queue,
        output: queue.Queue,
        execute: Execute,
        *,
        qps: float,
        max_workers: int = 16,
        grace_period: float = 5.0,
        poll_interval: float = 0.05,
        executor: Executor | None = None,
        logger: logging.Logger | None = None,
        on_admit: Callable[[SignedQuery, float], None] | None = None,
        stop_event: threading.Event | None = None,
    ) -> None:
        self.work = work
        self.output = output
        self.execute = execute
        self.control: queue.Queue[float] = queue.Queue()
        self.pacer = Pacer(qps)
        self.grace_period = grace_period
        self.poll_interval = poll_interval
        self.logger = logger or logging.getLogger(__name__)
        self.on_admit = on_admit
        self.stop_event = stop_event if stop_event is not None else threading.Event()
        self.admitted = 0

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="geobatch-query",
        )
        self._inflight: dict[Future, SignedQuery] = {}
        self._cond = threading.Condition()
        self._thread: threading.Thread | None = None

    def set_qps(self, qps: float) -> None:
        self.control.put(validate_qps(qps))

    def stop(self) -> None:
        self.stop_event.set()

    def start(self) -> threading.Thread:
        self._thread = threading.Thread(target=self.run, name="geobatch-coordinator", daemon=True)
        self._thread.start()
        return self._thread

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def run(self) -> None:
        try:
            self._admit_loop()
            self._drain()
        finally:
            if self._owns_executor:
                self._executor.shutdown(wait=False, cancel_futures=True)
            self.output.put(END_OF_RESULTS)
            log_event(
                self.logger,
                "dispatch finished",
                stage="dispatch",
                event="DISPATCH_END",
                status="cancelled" if self.stop_event.is_set() else "ok",
                rows_out=self.admitted,
            )

    def _apply_rate_updates(self) -> None:
        while True:
            try:
                qps = self.control.get_nowait()
            except queue.Empty:
                return
            self._update_rate(qps)

    def _update_rate(self, qps: float) -> None:
        self.pacer.update(qps)
        log_event(self.logger, "rate updated", stage="dispatch", event="RATE_UPDATE", status="ok", qps=qps)

    def _admit_loop(self) -> None:
        while not self.stop_event.is_set():
            self._apply_rate_updates()
            try:
                item = self.work.get(timeout=self.poll_interval)
            except queue.Empty:
                continue
            if item is END_OF_INPUT:
                return
            if isinstance(item, QueryResult):
                # Settled upstream; pass through unpaced.
                self.output.put(item)
                continue
            if not self._await_admission():
                self.output.put(QueryResult.cancelled(item.record))
                return
            self._admit(item)

    def _await_admission(self) -> bool:
        """Wait out the pacing gap; False if stopped while waiting."""
        while True:
            self._apply_rate_updates()
            if self.stop_event.is_set():
                return False
            remaining = self.pacer.remaining()
            if remaining <= 0:
                return True
            try:
                qps = self.control.get(timeout=min(remaining, self.poll_interval))
            except queue.Empty:
                continue
            self._update_rate(qps)

    def _admit(self, query: SignedQuery) -> None:
        admitted_at = self.pacer.mark_admitted()
        if self.on_admit is not None:
            self.on_admit(query, admitted_at)
        future = self._executor.submit(self.execute, query)
        with self._cond:
            self._inflight[future] = query
        self.admitted += 1
        future.add_done_callback(self._settle)

    def _result_of(self, future: Future, query: SignedQuery) -> QueryResult:
        if future.cancelled():
            return QueryResult.cancelled(query.record)
        exc = future.exception()
        if exc is not None:
            log_event(
                self.logger,
                f"query raised {type(exc).__name__}: {exc}",
                level=logging.WARNING,
                stage="dispatch",
                source=query.record.source,
                record_id=query.record.id,
                event="QUERY_FAIL",
                status="error",
                error_code=getattr(exc, "error_code", "UNEXPECTED_ERROR"),
            )
            return QueryResult.failure(query.record, exc)
        return future.result()

    def _settle(self, future: Future) -> None:
        with self._cond:
            query = self._inflight.pop(future, None)
            if query is None:
                # Abandoned after the grace period; already reported.
                return
            self.output.put(self._result_of(future, query))
            self._cond.notify_all()

    def _drain(self) -> None:
        with self._cond:
            while self._inflight:
                if self.stop_event.is_set():
                    self._cond.wait_for(lambda: not self._inflight, timeout=self.grace_period)
                    self._abandon()
                    return
                self._cond.wait(timeout=self.poll_interval)

    def _abandon(self) -> None:
        abandoned = list(self._inflight.items())
        # Cleared first: cancel() runs _settle on this thread, which must
        # find nothing left to report.
        self._inflight.clear()
        for future, query in abandoned:
            future.cancel()
            self.output.put(QueryResult.cancelled(query.record))
            log_event(
                self.logger,
                "query abandoned",
                level=logging.WARNING,
                stage="dispatch",
                source=query.record.source,
                record_id=query.record.id,
                event="QUERY_CANCELLED",
                status="cancelled",
                error_code="CANCELLED",
            )
