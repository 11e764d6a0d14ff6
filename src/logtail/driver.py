"""Polling loop: reader → extractor → publisher.

``Driver.poll_once()`` asks the reader for one line.  A line is run through
the extractor and every resulting record is published.  When the reader has
nothing, ``refresh()`` gets a chance to find appended, rewritten or rotated
content; if that also finds nothing the poll was idle, the publisher's
partial batch is flushed and ``run()`` waits ``idle_seconds`` before the next
poll.

Errors:

- ``FileNotFoundError`` / ``PermissionError`` are transient (a file vanished
  or changed permissions between stat and open): logged, treated as an idle
  poll, retried.
- Any other ``OSError`` is unrecoverable: logged and re-raised so the caller
  can clean up and exit non-zero.

The only way out of ``run()`` besides an error is the *stop* event, which
the CLI sets from its SIGTERM / SIGINT handler.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass

import structlog

from logtail.extractor import RegexExtractor
from logtail.logging import get_logger
from logtail.publisher import RecordPublisher
from logtail.reader import LineReader


@dataclass
class DriverStats:
    """Running totals for one driver."""

    lines: int = 0
    records: int = 0
    idle_polls: int = 0
    transient_errors: int = 0


class Driver:
    """Feeds lines from *reader* through *extractor* into *publisher*.

    Args:
        reader:       Directory or single-file reader.
        extractor:    Line → records transform.
        publisher:    Record sink front-end.
        idle_seconds: Wait between polls when nothing new is available.
        log:          Bound logger.
    """

    def __init__(
        self,
        reader: LineReader,
        extractor: RegexExtractor,
        publisher: RecordPublisher,
        *,
        idle_seconds: float = 5.0,
        log: structlog.BoundLogger | None = None,
    ) -> None:
        self._reader = reader
        self._extractor = extractor
        self._publisher = publisher
        self._idle_seconds = idle_seconds
        self._log = log if log is not None else get_logger(__name__)
        self.stats = DriverStats()

    def poll_once(self) -> bool:
        """Process at most one line.

        Returns:
            False if the poll was idle (the caller should wait).
        """
        try:
            line = self._reader.get_next_line()
            if line is None and self._reader.refresh():
                return True
        except (FileNotFoundError, PermissionError) as exc:
            self.stats.transient_errors += 1
            self._log.warning("transient read error, will retry", error=str(exc))
            line = None
        except OSError as exc:
            self._log.error("cannot read log", error=str(exc))
            raise

        if line is None:
            self.stats.idle_polls += 1
            self._publisher.flush()
            return False

        self.stats.lines += 1
        for record in self._extractor.extract(line):
            self._publisher.publish(record)
            self.stats.records += 1
        return True

    def drain(self) -> int:
        """Poll until idle; return the number of lines processed."""
        start = self.stats.lines
        while self.poll_once():
            pass
        return self.stats.lines - start

    def run(self, stop: threading.Event) -> DriverStats:
        """Poll until *stop* is set, waiting on it while idle."""
        self._log.info("polling started", idle_seconds=self._idle_seconds)
        while not stop.is_set():
            if not self.poll_once():
                stop.wait(self._idle_seconds)
        self._publisher.flush()
        self._log.info(
            "polling stopped",
            lines=self.stats.lines,
            records=self.stats.records,
            idle_polls=self.stats.idle_polls,
        )
        return self.stats
