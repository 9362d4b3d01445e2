#!/usr/bin/env python3
"""
DupScan Single File Module

Modular functions for scanning one delimited-text file.
Handles opening, row decoding and emitting the watched field of every data row.

This module is used by scan_batch.py and provides:
- FileTask: one file to scan (path, delimiter, encoding)
- RowReader: CSV row decoder with strict field-count checking
- produce_field_values(): Core async producer feeding the shared channel
- Severity / FileReport: per-file outcome and failure severity
"""

import csv
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path
from typing import List, Optional, TextIO


class Severity(IntEnum):
    """Failure severity of a file; the strongest one becomes the exit code."""
    NONE = 0
    OPEN_FAILURE = 1
    PARSE_FAILURE = 2


class RowDecodeError(ValueError):
    """A record could not be decoded into fields."""

    def __init__(self, message: str, line: Optional[int] = None):
        super().__init__(message)
        self.line = line


@dataclass(frozen=True)
class FileTask:
    """One input file handed to a producer."""
    path: str
    delimiter: str = ","
    encoding: str = "utf-8"

    @property
    def name(self) -> str:
        return str(self.path)

    def open(self) -> TextIO:
        """Open the file for row decoding. Raises OSError if it cannot be opened."""
        return Path(self.path).open("r", encoding=self.encoding, newline="")


@dataclass
class FileReport:
    """Outcome of a single producer run."""
    name: str
    rows_read: int = 0
    values_emitted: int = 0
    severity: Severity = Severity.NONE
    error: Optional[str] = None
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.severity == Severity.NONE


class RowReader:
    """
    Decode rows from an open text handle.

    The first record fixes the expected number of fields; any later record
    with a different count is rejected. Blank lines are skipped. Iteration
    ends at end of input and raises RowDecodeError on a malformed record.
    """

    def __init__(self, handle: TextIO, delimiter: str = ","):
        self._reader = csv.reader(handle, delimiter=delimiter, strict=True)
        self._expected: Optional[int] = None

    @property
    def line_num(self) -> int:
        return self._reader.line_num

    def __iter__(self) -> "RowReader":
        return self

    def __next__(self) -> List[str]:
        while True:
            try:
                row = next(self._reader)
            except (csv.Error, UnicodeDecodeError) as e:
                raise RowDecodeError(f"line {self.line_num}: {e}", self.line_num) from e
            if row:
                break

        if self._expected is None:
            self._expected = len(row)
        elif len(row) != self._expected:
            raise RowDecodeError(
                f"line {self.line_num}: wrong number of fields "
                f"(expected {self._expected}, got {len(row)})",
                self.line_num,
            )
        return row


def extract_field(row: List[str], field_index: int, line: Optional[int] = None) -> str:
    """
    Return row[field_index], treating a short row as a decode failure.

    Args:
        row: Decoded record
        field_index: Zero-based column index
        line: Line number for the error message

    Returns:
        The field value
    """
    if field_index >= len(row):
        raise RowDecodeError(
            f"line {line}: no field {field_index} in a record of {len(row)} fields",
            line,
        )
    return row[field_index]


def _record_failure(report, severity, cancel, fail_fast: bool, level: Severity, error: Exception) -> None:
    report.severity = level
    report.error = str(error)
    severity.raise_to(level)
    if fail_fast:
        cancel.set(f"{level.name.lower()}: {report.name}")


async def produce_field_values(
    task: FileTask,
    field_index: int,
    out,
    cancel,
    severity,
    fail_fast: bool = False,
) -> FileReport:
    """
    Read one file and emit the watched field of every data row.

    This is the per-file producer used by scan_batch.scan(). It handles:
    - Opening the file (open failures are recorded, nothing is emitted)
    - Skipping the first record (header) without validating it
    - Sending row[field_index] for every later record, raced against cancellation
    - Stopping on the first decode failure; values sent before it stay counted

    Args:
        task: File to scan
        field_index: Zero-based column to extract
        out: Shared EmissionChannel; out.send(value, cancel) returns False
             when cancellation won the race
        cancel: Shared CancellationSignal
        severity: Shared SeverityTracker
        fail_fast: Set the cancellation signal when this file fails

    Returns:
        FileReport describing how the producer exited
    """
    report = FileReport(name=task.name)

    try:
        handle = task.open()
    except (OSError, LookupError) as e:
        # LookupError: unknown encoding
        print(f"ERROR: could not open file {task.name}: {e}")
        _record_failure(report, severity, cancel, fail_fast, Severity.OPEN_FAILURE, e)
        return report

    with handle:
        reader = RowReader(handle, task.delimiter)
        while True:
            # Reads are blocking; cancellation is only checked between rows
            try:
                row = next(reader, None)
                if row is None:
                    print(f"[Scan] reached end of file {task.name}")
                    return report

                report.rows_read += 1
                if report.rows_read == 1:
                    continue

                value = extract_field(row, field_index, reader.line_num)
            except RowDecodeError as e:
                print(f"ERROR: could not read csv record from {task.name}: {e}")
                _record_failure(report, severity, cancel, fail_fast, Severity.PARSE_FAILURE, e)
                return report

            if not await out.send(value, cancel):
                report.cancelled = True
                return report
            report.values_emitted += 1
