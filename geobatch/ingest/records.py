"""Read delimited address files into Records."""

from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import IO, Iterable, Iterator, Protocol

from geobatch.common.constants import FALSE_SPELLINGS, MIN_COLUMNS, TRUE_SPELLINGS
from geobatch.common.errors import IngestError, InputReadError, MalformedRecordError
from geobatch.common.fs import open_delimited
from geobatch.common.models import Record

logger = logging.getLogger(__name__)


class RecordSink(Protocol):
    def put(self, item: Record) -> None: ...


def new_lazy_reader(f: Iterable[str], delimiter: str) -> Iterator[list[str]]:
    """Return a csv reader with most of the strictness turned off."""
    if len(delimiter) != 1:
        raise ValueError(f"delimiter must be a single character, got {delimiter!r}")
    return csv.reader(
        f,
        delimiter=delimiter,
        skipinitialspace=True,
        strict=False,
    )


def _parse_sensor(value: str) -> bool | None:
    if value.lower() in TRUE_SPELLINGS:
        return True
    if value.lower() in FALSE_SPELLINGS:
        return False
    return None


def new_record(row: list[str], source: str, n: int) -> Record:
    """Build a Record from a row shaped like ``id,sensor,address,parts,...``.

    ``source`` and ``n`` (0-based row index) identify the origin of the row
    in error messages.
    """
    if len(row) < MIN_COLUMNS:
        raise MalformedRecordError(
            f"Expected at least {MIN_COLUMNS} columns, got {len(row)}",
            source=source,
            row=n,
            records_read=n,
        )
    sensor = _parse_sensor(row[1])
    if sensor is None:
        raise MalformedRecordError(
            f"Expected 'true' or 'false' for sensor, got {row[1]!r}",
            source=source,
            row=n,
            records_read=n,
        )
    return Record(source=source, id=row[0], sensor=sensor, address="".join(row[2:]))


def _source_name(f: object, source: str | None) -> str:
    name = source or getattr(f, "name", None)
    if not name or not isinstance(name, str):
        raise ValueError("a source name is required when the stream has none")
    return name


def iter_records(f: IO[str], delimiter: str, source: str | None = None) -> Iterator[Record]:
    source_name = _source_name(f, source)
    reader = new_lazy_reader(f, delimiter)
    n = 0
    while True:
        try:
            row = next(reader)
        except StopIteration:
            return
        except (OSError, csv.Error, UnicodeDecodeError) as exc:
            raise InputReadError(
                f"Failed reading {source_name} after {n} records: {exc}",
                source=source_name,
                records_read=n,
            ) from exc
        if not row:
            continue
        # skipinitialspace only drops spaces; trim any leading whitespace.
        row = [col.lstrip() for col in row]
        yield new_record(row, source_name, n)
        n += 1


def read_records(
    f: IO[str],
    delimiter: str,
    output: RecordSink | None,
    source: str | None = None,
) -> int:
    """Push every record in ``f`` onto ``output`` and return how many were pushed.

    ``output.put`` may block, which is how a slow consumer throttles reading.
    """
    if output is None:
        raise ValueError("read_records output sink is None")
    n = 0
    for record in iter_records(f, delimiter, source=source):
        output.put(record)
        n += 1
    logger.debug("read %d records from %s", n, source or getattr(f, "name", "<stream>"))
    return n


def read_files(paths: Iterable[Path], delimiter: str, output: RecordSink | None) -> int:
    """Read each path in turn; a failure reports records read across all files."""
    total = 0
    for path in paths:
        try:
            f = open_delimited(path)
        except OSError as exc:
            raise InputReadError(f"Cannot open {path}: {exc}", source=str(path), records_read=total) from exc
        with f:
            try:
                total += read_records(f, delimiter, output, source=str(path))
            except IngestError as exc:
                exc.records_read += total
                raise
    return total
