"""Regex record extractor: one raw line in, zero or more records out.

``RegexExtractor(pattern, groups).extract(line)`` scans *line* for every
match of *pattern*.  For each match it yields the requested capture groups
in the order given, or the whole match when *groups* is empty.  Groups that
did not take part in the match, and empty whole matches, are left out.

A line that does not match yields an empty list.  That is the normal way
uninteresting log lines are dropped, not an error.

    >>> RegexExtractor(r"^(\\w+)=(\\d+)$", [1, 2]).extract("count=42")
    ['count', '42']
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from logtail.config import Settings


class RegexExtractor:
    """Stateless line → records transform.

    Args:
        pattern: Regular expression applied to each line.
        groups:  Capture-group indices to emit per match; empty → whole match.

    Raises:
        ValueError: *pattern* does not compile, or a group index does not
                    exist in it.
    """

    def __init__(self, pattern: str, groups: Sequence[int] = ()) -> None:
        try:
            self._pattern = re.compile(pattern)
        except re.error as exc:
            raise ValueError(f"invalid regexp {pattern!r}: {exc}") from exc
        bad = [g for g in groups if g < 0 or g > self._pattern.groups]
        if bad:
            raise ValueError(
                f"groups {bad} not available in {pattern!r} ({self._pattern.groups} group(s))"
            )
        self._groups = tuple(groups)

    @classmethod
    def from_settings(cls, settings: Settings) -> RegexExtractor:
        return cls(settings.extractor.regexp, settings.extractor.regexp_groups)

    @property
    def pattern(self) -> re.Pattern[str]:
        return self._pattern

    @property
    def groups(self) -> tuple[int, ...]:
        return self._groups

    def extract(self, line: str) -> list[str]:
        records: list[str] = []
        for match in self._pattern.finditer(line):
            if not self._groups:
                if match.group(0):
                    records.append(match.group(0))
                continue
            for index in self._groups:
                value = match.group(index)
                if value is not None:
                    records.append(value)
        return records
