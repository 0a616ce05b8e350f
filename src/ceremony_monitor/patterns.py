from __future__ import annotations

import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import Enum

from ceremony_monitor.errors import NumberParseError

U64_MAX = 2**64 - 1
ADDRESS_GROUP = r"(?P<address>aleo[a-z0-9]+)"


class LineCategory(Enum):
    BOOT_COMPLETED = "boot-completion"
    ROUND_STARTED = "round-started"
    ROUND_STARTED_AGGREGATION = "round-started-aggregation"
    ROUND_AGGREGATED = "round-aggregated"
    ROUND_FINISHED = "round-finished"
    PARTICIPANT_DROPPED = "participant-dropped"
    SUCCESSFUL_CONTRIBUTION = "successful-contribution"
    ROUND_RESTARTED_NO_CONTRIBUTORS = "round-restarted-no-contributors"


@dataclass(frozen=True, slots=True)
class LinePattern:
    category: LineCategory
    regex: re.Pattern[str]

    @classmethod
    def compile(cls, category: LineCategory, pattern: str) -> LinePattern:
        return cls(category=category, regex=re.compile(pattern))

    def search(self, line: str) -> re.Match[str] | None:
        return self.regex.search(line)


class PatternTable:
    """Ordered, complete set of line patterns, one per category."""

    def __init__(self, patterns: Iterable[LinePattern]) -> None:
        ordered = list(patterns)
        by_category: dict[LineCategory, LinePattern] = {}
        for pattern in ordered:
            if pattern.category in by_category:
                raise ValueError(f"Duplicate pattern for category: {pattern.category.value}")
            by_category[pattern.category] = pattern
        missing = [category.value for category in LineCategory if category not in by_category]
        if missing:
            raise ValueError("Pattern table is missing categories: " + ", ".join(missing))
        self._ordered = ordered
        self._by_category = by_category

    def __iter__(self) -> Iterator[LinePattern]:
        return iter(self._ordered)

    def __len__(self) -> int:
        return len(self._ordered)

    def categories(self) -> list[LineCategory]:
        return [pattern.category for pattern in self._ordered]

    def get(self, category: LineCategory) -> LinePattern:
        return self._by_category[category]

    def search(self, category: LineCategory, line: str) -> re.Match[str] | None:
        return self._by_category[category].search(line)

    def classify(self, line: str) -> list[LineCategory]:
        return [pattern.category for pattern in self._ordered if pattern.search(line)]


def default_pattern_table() -> PatternTable:
    return PatternTable(
        [
            LinePattern.compile(LineCategory.BOOT_COMPLETED, r"Coordinator has booted up"),
            LinePattern.compile(
                LineCategory.ROUND_STARTED, r"Advanced ceremony to round (?P<round>[0-9]+)"
            ),
            LinePattern.compile(
                LineCategory.ROUND_STARTED_AGGREGATION,
                r"Starting aggregation on round (?P<round>[0-9]+)",
            ),
            LinePattern.compile(
                LineCategory.ROUND_AGGREGATED, r"Round (?P<round>[0-9]+) is aggregated"
            ),
            LinePattern.compile(
                LineCategory.ROUND_FINISHED, r"Round (?P<round>[0-9]+) is finished"
            ),
            LinePattern.compile(
                LineCategory.PARTICIPANT_DROPPED,
                rf"Dropping {ADDRESS_GROUP}[.](?P<role>[a-z_]+) from the ceremony",
            ),
            LinePattern.compile(
                LineCategory.SUCCESSFUL_CONTRIBUTION,
                rf"{ADDRESS_GROUP}[.]contributor added a contribution to chunk (?P<chunk>[0-9]+)",
            ),
            LinePattern.compile(
                LineCategory.ROUND_RESTARTED_NO_CONTRIBUTORS,
                re.escape(
                    "No contributors remaining to reset and complete the current round. "
                    "Rolling back to round 0 to wait and accept new participants"
                ),
            ),
        ]
    )


def parse_u64(text: str, *, field: str) -> int:
    if not text.isascii() or not text.isdigit():
        raise NumberParseError(f"{field} is not a decimal number: {text!r}", value=text)
    value = int(text)
    if value > U64_MAX:
        raise NumberParseError(f"{field} does not fit in 64 bits: {text}", value=text)
    return value
