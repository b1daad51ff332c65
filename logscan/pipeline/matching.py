"""Line/record matching rules derived from a LogPattern."""

import re
from datetime import datetime
from typing import Iterable, Iterator, Optional, Tuple

from logscan.domain.models import LogPattern


class RecordMatcher:
    """Groups lines into records and decides which records match.

    A record starts at every line matching ``record_start`` (every line when
    the pattern has none); following lines are continuation lines, e.g. stack
    traces. A record matches when the pattern regex finds it and the search
    text, if any, occurs in it.
    """

    def __init__(self, pattern: LogPattern, search_text: Optional[str] = None):
        flags = 0 if pattern.case_sensitive else re.IGNORECASE
        self.case_sensitive = pattern.case_sensitive
        self.regex = re.compile(pattern.regex, flags) if pattern.regex else None
        self.record_start = re.compile(pattern.record_start) if pattern.record_start else None
        self.timestamp_regex = re.compile(pattern.timestamp_regex) if pattern.timestamp_regex else None
        self.timestamp_format = pattern.timestamp_format
        if search_text and not self.case_sensitive:
            search_text = search_text.lower()
        self.search_text = search_text or None

    @property
    def selects_records(self) -> bool:
        """False when the pattern has no line rule: files are selected without events."""
        return self.regex is not None or self.search_text is not None

    def records(self, lines: Iterable[str]) -> Iterator[Tuple[int, str]]:
        """Yields (first line number, record text) pairs."""
        current = []
        start_line = 0
        for line_number, line in enumerate(lines, start=1):
            line = line.rstrip("\r\n")
            if self.record_start is None or self.record_start.search(line) or not current:
                if current:
                    yield start_line, "\n".join(current)
                current = [line]
                start_line = line_number
            else:
                current.append(line)
        if current:
            yield start_line, "\n".join(current)

    def matches(self, text: str) -> bool:
        if not self.selects_records:
            return False
        if self.regex is not None and not self.regex.search(text):
            return False
        if self.search_text is not None:
            haystack = text if self.case_sensitive else text.lower()
            if self.search_text not in haystack:
                return False
        return True

    def parse_timestamp(self, text: str) -> Optional[datetime]:
        if self.timestamp_regex is None:
            return None
        match = self.timestamp_regex.search(text)
        if match is None:
            return None
        if "ts" in self.timestamp_regex.groupindex:
            value = match.group("ts")
        elif self.timestamp_regex.groups:
            value = match.group(1)
        else:
            value = match.group(0)
        try:
            return datetime.strptime(value, self.timestamp_format)
        except (TypeError, ValueError):
            return None
