"""Streaming reader for '|'-separated dump files.

Every record ends with the sequence separator, terminator, separator
("|^|"). Newlines carry no meaning and are dropped wherever they appear. A
terminator that follows a separator but is not itself followed by a
separator is field data, so a field may begin with '^'.
"""

import re
from datetime import datetime
from typing import Iterator, List, Optional, TextIO

from station_data.exceptions import MalformedRecordError

SEPARATOR = "|"
TERMINATOR = "^"
END_OF_RECORD = SEPARATOR + TERMINATOR + SEPARATOR

FIELD_NAME_PATTERN = re.compile(r"^[a-z0-9_]{3,}$")

UNKNOWN_DATE = "(unknown)"


def parse_header(line: str) -> Optional[List[str]]:
    """Field names from a header line, or None if the line does not look like one.

    The last element of a header is the record terminator and is dropped.
    Names must be at least three characters of lower-case letters, digits or
    '_', and there must be at least two, which catches a data row standing
    in for a missing header.
    """
    parts = line.rstrip("\r\n").split(SEPARATOR)
    while parts and parts[-1] == "":
        parts.pop()
    names = parts[:-1]
    if len(names) < 2:
        return None
    for name in names:
        if not FIELD_NAME_PATTERN.match(name):
            return None
    return names


def valid_field_names(names: List[str]) -> bool:
    return len(names) >= 2 and all(FIELD_NAME_PATTERN.match(name) for name in names)


class RecordReader:
    """Iterates the records of a dump file as lists of raw field strings.

    Fields past field_count are dropped, but the record still fails the
    field count check. Completely blank records are skipped.
    """

    def __init__(self, stream: TextIO, file_name: str, field_count: int,
                 first_line: int = 1, chunk_size: int = 65536):
        self.stream = stream
        self.file_name = file_name
        self.field_count = field_count
        self.line = first_line
        self.chunk_size = chunk_size

    def __iter__(self) -> Iterator[List[str]]:
        field_count = self.field_count
        fields: List[str] = []
        current: List[str] = []
        field_index = 0
        first_char = True
        termstate = 0

        while True:
            chunk = self.stream.read(self.chunk_size)
            if not chunk:
                if field_index > 0 or not first_char:
                    raise MalformedRecordError("Unexpected end of file", self.file_name, self.line)
                return

            for cc in chunk:
                # termstate walks 1-2-3 through the end-of-record sequence,
                # -1 means a terminator turned out to be data
                if cc == SEPARATOR:
                    termstate = 3 if termstate == 2 else 1
                elif termstate == 1:
                    if cc == TERMINATOR:
                        termstate = 2
                        continue
                    termstate = 0
                elif termstate == 2:
                    termstate = -1
                else:
                    termstate = 0

                if termstate == 3:
                    if field_index == 0 and first_char:
                        continue
                    if field_index != field_count:
                        raise MalformedRecordError("Incorrect field count", self.file_name, self.line)
                    yield fields
                    fields = []
                    field_index = 0
                    first_char = True
                    self.line += 1
                    termstate = 0

                elif termstate == 1:
                    if field_index < field_count:
                        fields.append("".join(current))
                    current = []
                    field_index += 1
                    first_char = True

                elif cc != "\n" and cc != "\r" and field_index < field_count:
                    if termstate == -1:
                        current.append(TERMINATOR)
                        termstate = 0
                    current.append(cc)
                    first_char = False


class DateCounter:
    """Tracks the latest date seen in a column and how often it occurred"""

    def __init__(self, date_format: str):
        self.date_format = date_format
        self.latest: Optional[datetime] = None
        self.count = 0

    def add(self, value: str):
        token = value.strip().split(" ")[0].split("T")[0]
        if not token:
            return
        try:
            parsed = datetime.strptime(token, self.date_format)
        except ValueError:
            return
        if self.latest is None or parsed > self.latest:
            self.latest = parsed
            self.count = 1
        elif parsed == self.latest:
            self.count += 1

    def date_string(self) -> str:
        if self.count > 0:
            return self.latest.strftime(self.date_format)
        return UNKNOWN_DATE
