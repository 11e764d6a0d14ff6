"""Record publishing: batching, rate ceiling and the downstream sinks.

``RecordPublisher.publish(record)`` stamps each extracted record with a
sequence number and buffers it.  Full batches (and partial ones on
``flush()``) go to a :class:`Sink` under the publisher's *channel*, a name
derived from the tailed file or directory.

The rate ceiling counts batches, not records: ``max_batches_per_second``
of ``-1`` means unbounded.  When the ceiling is hit the publisher sleeps
before handing the next batch to the sink; nothing is dropped.

Sinks:

- ``stdout``  one record per line on standard output
- ``jsonl``   ``<output_dir>/<channel>.jsonl``, one JSON object per record
- ``duckdb``  the ``records`` table in the warehouse
"""

from __future__ import annotations

import json
import sys
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol, TextIO

import duckdb
import structlog

from logtail.config import NO_LIMIT, Settings
from logtail.logging import get_logger
from logtail.paths import ProjectPaths


@dataclass(frozen=True)
class PublishedRecord:
    """One record as handed to a sink."""

    sequence: int
    record: str
    published_at_utc: datetime


class Sink(Protocol):
    def write(self, channel: str, batch: list[PublishedRecord]) -> None: ...

    def close(self) -> None: ...


# ---------------------------------------------------------------------------
# Sinks
# ---------------------------------------------------------------------------


class StdoutSink:
    """Writes each record on its own line.

    The stream is looked up at write time unless given, so redirected
    ``sys.stdout`` (tests, CLI runners) is honoured.
    """

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream

    def write(self, channel: str, batch: list[PublishedRecord]) -> None:
        out = self._stream if self._stream is not None else sys.stdout
        for item in batch:
            out.write(item.record + "\n")
        out.flush()

    def close(self) -> None:
        pass


class JsonlSink:
    """Appends records to ``<output_dir>/<channel>.jsonl``.

    Appending keeps the output file valid JSONL across restarts.
    """

    def __init__(self, output_dir: Path) -> None:
        self._output_dir = output_dir

    def path_for(self, channel: str) -> Path:
        return self._output_dir / f"{channel}.jsonl"

    def write(self, channel: str, batch: list[PublishedRecord]) -> None:
        self._output_dir.mkdir(parents=True, exist_ok=True)
        with self.path_for(channel).open("a", encoding="utf-8") as fh:
            for item in batch:
                record = {
                    "channel": channel,
                    "sequence": item.sequence,
                    "published_at_utc": item.published_at_utc.isoformat(timespec="milliseconds"),
                    "record": item.record,
                }
                fh.write(json.dumps(record) + "\n")

    def close(self) -> None:
        pass


class DuckDBSink:
    """Inserts records into the warehouse ``records`` table.

    Owns *conn* and closes it on ``close()``.
    """

    def __init__(self, conn: duckdb.DuckDBPyConnection) -> None:
        self._conn = conn

    def write(self, channel: str, batch: list[PublishedRecord]) -> None:
        from logtail.warehouse import insert_records

        insert_records(self._conn, channel, [(item.sequence, item.record) for item in batch])

    def close(self) -> None:
        self._conn.close()


# ---------------------------------------------------------------------------
# Rate ceiling
# ---------------------------------------------------------------------------


class RateLimiter:
    """Spaces calls to ``acquire()`` at least ``1 / max_per_second`` apart.

    Args:
        max_per_second: Ceiling; ``NO_LIMIT`` (-1) disables waiting.
        clock:          Monotonic time source (seconds).
        sleep:          Called with the number of seconds to wait.
    """

    def __init__(
        self,
        max_per_second: int = NO_LIMIT,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._interval = 1.0 / max_per_second if max_per_second > 0 else 0.0
        self._clock = clock
        self._sleep = sleep
        self._next_at: float | None = None

    @property
    def unbounded(self) -> bool:
        return self._interval == 0.0

    def acquire(self) -> float:
        """Block until the next slot; return the seconds waited."""
        if self.unbounded:
            return 0.0
        now = self._clock()
        if self._next_at is None or now >= self._next_at:
            self._next_at = now + self._interval
            return 0.0
        wait = self._next_at - now
        self._sleep(wait)
        self._next_at += self._interval
        return wait


# ---------------------------------------------------------------------------
# Publisher
# ---------------------------------------------------------------------------


class RecordPublisher:
    """Buffers records into batches and forwards them to *sink*.

    Args:
        sink:                   Destination for finished batches.
        channel:                Downstream channel name.
        batch_size:             Records per batch.
        max_batches_per_second: Batch rate ceiling; ``NO_LIMIT`` for none.
        first_sequence:         Sequence number before the first record;
                                defaults to the current time in ns so numbers
                                keep increasing across restarts.
        limiter:                Override the rate limiter (tests).
        log:                    Bound logger.
    """

    def __init__(
        self,
        sink: Sink,
        channel: str,
        *,
        batch_size: int = 100,
        max_batches_per_second: int = NO_LIMIT,
        first_sequence: int | None = None,
        limiter: RateLimiter | None = None,
        log: structlog.BoundLogger | None = None,
    ) -> None:
        self._sink = sink
        self._channel = channel
        self._batch_size = batch_size
        self._limiter = limiter if limiter is not None else RateLimiter(max_batches_per_second)
        self._sequence = first_sequence if first_sequence is not None else time.time_ns()
        self._batch: list[PublishedRecord] = []
        self._log = log if log is not None else get_logger(__name__).bind(channel=channel)
        self._published = 0
        self._closed = False

    @property
    def channel(self) -> str:
        return self._channel

    @property
    def published(self) -> int:
        """Records handed to the sink so far."""
        return self._published

    @property
    def pending(self) -> int:
        return len(self._batch)

    def publish(self, record: str) -> None:
        if self._closed:
            raise RuntimeError(f"publisher for channel {self._channel!r} is closed")
        self._sequence += 1
        self._batch.append(PublishedRecord(self._sequence, record, datetime.now(UTC)))
        if len(self._batch) >= self._batch_size:
            self.flush()

    def flush(self) -> int:
        """Send the buffered partial batch, if any; return its size."""
        if not self._batch:
            return 0
        batch, self._batch = self._batch, []
        waited = self._limiter.acquire()
        self._sink.write(self._channel, batch)
        self._published += len(batch)
        self._log.debug(
            "batch published",
            size=len(batch),
            last_sequence=batch[-1].sequence,
            waited_seconds=round(waited, 3),
        )
        return len(batch)

    def close(self) -> None:
        """Flush and close the sink.  Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True
        try:
            self.flush()
        finally:
            self._sink.close()
            self._log.info("publisher closed", published=self._published)


def default_channel(source: Path | None) -> str:
    """Channel name for *source*: its final path component."""
    if source is None:
        return "logtail"
    return source.name or "logtail"


def open_publisher(
    settings: Settings,
    paths: ProjectPaths,
    log: structlog.BoundLogger | None = None,
) -> RecordPublisher:
    """Build the publisher and sink described by ``settings.publisher``."""
    cfg = settings.publisher
    channel = cfg.channel or default_channel(paths.source)

    sink: Sink
    if cfg.sink == "jsonl":
        sink = JsonlSink(paths.output_dir)
    elif cfg.sink == "duckdb":
        from logtail.warehouse import open_warehouse, run_migrations

        conn = open_warehouse(paths)
        run_migrations(conn)
        sink = DuckDBSink(conn)
    else:
        sink = StdoutSink()

    return RecordPublisher(
        sink,
        channel,
        batch_size=cfg.batch_size,
        max_batches_per_second=cfg.max_batches_per_second,
        log=log,
    )
