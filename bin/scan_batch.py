#!/usr/bin/env python3
"""
DupScan Batch Scanner

Scans a set of delimited-text files in parallel, extracts one field from every
data row and reports which values occur more than once across all files.

Pipeline:
    files → [N producers] → EmissionChannel → [1 collector] → Counter → report

Key Design Principles:
- One producer task per file, all feeding a single bounded channel
- Level-triggered cancellation: once set, every producer stops at its next send
- Close-after-join: a single closer task closes the channel only after every
  producer has exited, so the collector always terminates
- Partial results are always reported; the exit code is the strongest failure

Exit codes:
    0  nothing to do, or every file scanned cleanly
    1  at least one file could not be opened
    2  at least one file could not be decoded

Author: DupScan Team
Version: 1.0.0
"""

from __future__ import annotations

import argparse
import asyncio
import codecs
import contextlib
import glob
import json
import signal
import sys
import threading
import time
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

import polars as pl
from tqdm.asyncio import tqdm

from single_scan import FileReport, FileTask, Severity, produce_field_values


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def _monotonic() -> float:
    """Monotonic time for duration measurements."""
    return time.monotonic()


def _split_files(value: Any) -> tuple[str, ...]:
    """Normalize a comma-separated string or a list into a tuple of paths."""
    if not value:
        return ()
    if isinstance(value, str):
        value = value.split(",")
    return tuple(str(v).strip() for v in value if str(v).strip())


# =============================================================================
# CANCELLATION AND SEVERITY
# =============================================================================

class CancellationSignal:
    """
    One-way, set-once stop flag shared by every producer.

    Setting is idempotent; the first reason wins. There is no reset.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self._reason: Optional[str] = None

    def set(self, reason: str = "cancelled") -> bool:
        """Set the signal. Returns True only for the call that actually set it."""
        if self._event.is_set():
            return False
        self._reason = reason
        self._event.set()
        return True

    def is_set(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    @property
    def reason(self) -> Optional[str]:
        return self._reason


class SeverityTracker:
    """Monotonic maximum of the failure severities reported by producers."""

    def __init__(self):
        self._lock = threading.Lock()
        self._value = Severity.NONE

    def raise_to(self, severity: Severity) -> None:
        with self._lock:
            if severity > self._value:
                self._value = Severity(severity)

    def final(self) -> Severity:
        """Read the result. Only meaningful once every producer has exited."""
        with self._lock:
            return self._value


@contextlib.contextmanager
def interrupt_handler(cancel: CancellationSignal):
    """Route SIGINT/SIGTERM to the cancellation signal while the block runs."""
    loop = asyncio.get_running_loop()

    def _on_interrupt():
        if cancel.set("interrupt"):
            print("\n[Shutdown] Interrupt received. Attempting graceful shutdown...")

    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _on_interrupt)
        except (NotImplementedError, RuntimeError, ValueError):
            # Platforms without loop signal support fall back to KeyboardInterrupt
            continue
        installed.append(sig)

    try:
        yield
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


# =============================================================================
# EMISSION CHANNEL
# =============================================================================

class ChannelClosedError(RuntimeError):
    """Send or close on a channel that is already closed."""


_CLOSED = object()


class EmissionChannel:
    """
    Bounded conduit from many producers to one collector.

    Closed exactly once by the orchestrator's closer task. Iterating the
    channel yields values until the close marker has been received.
    """

    def __init__(self, maxsize: int = 1):
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=max(1, maxsize))
        self._closed = False
        self._drained = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, value: str, cancel: CancellationSignal) -> bool:
        """
        Send a value unless cancellation wins the race.

        Returns:
            True if the value was enqueued, False if cancellation was observed
        """
        if self._closed:
            raise ChannelClosedError("send on closed channel")
        if cancel.is_set():
            return False

        try:
            self._queue.put_nowait(value)
            return True
        except asyncio.QueueFull:
            pass

        put = asyncio.ensure_future(self._queue.put(value))
        stop = asyncio.ensure_future(cancel.wait())
        try:
            done, _ = await asyncio.wait({put, stop}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for fut in (put, stop):
                if not fut.done():
                    fut.cancel()
        return put in done

    async def close(self) -> None:
        if self._closed:
            raise ChannelClosedError("close of closed channel")
        self._closed = True
        await self._queue.put(_CLOSED)

    def __aiter__(self) -> EmissionChannel:
        return self

    async def __anext__(self) -> str:
        if self._drained:
            raise StopAsyncIteration
        value = await self._queue.get()
        if value is _CLOSED:
            self._drained = True
            raise StopAsyncIteration
        return value


# =============================================================================
# COLLECTION AND REPORTING
# =============================================================================

async def collect(channel: EmissionChannel) -> Counter[str]:
    """Count every value received until the channel is closed and drained."""
    frequencies: Counter[str] = Counter()
    async for value in channel:
        frequencies[value] += 1
    return frequencies


def find_duplicates(frequencies: Mapping[str, int]) -> list[tuple[str, int]]:
    """(value, count) pairs with count > 1. Order is unspecified."""
    df = pl.DataFrame(
        {"value": list(frequencies.keys()), "count": list(frequencies.values())},
        schema={"value": pl.Utf8, "count": pl.Int64},
    )
    return df.filter(pl.col("count") > 1).rows()


def format_duplicate(value: str, count: int) -> str:
    return f"DUPLICATE FOUND: {value} found {count} times"


def print_duplicates(frequencies: Mapping[str, int]) -> int:
    """Print one line per duplicated value and return how many were printed."""
    duplicates = find_duplicates(frequencies)
    for value, count in duplicates:
        print(format_duplicate(value, count))
    return len(duplicates)


@dataclass
class ScanResult:
    """Final state of a scan."""
    frequencies: Counter[str]
    status: Severity = Severity.NONE
    nothing_to_do: bool = False
    cancelled: bool = False
    reports: list[FileReport] = field(default_factory=list)
    elapsed_sec: float = 0.0

    @property
    def exit_code(self) -> int:
        return int(self.status)

    @property
    def total_values(self) -> int:
        return sum(self.frequencies.values())

    @property
    def duplicates(self) -> list[tuple[str, int]]:
        return find_duplicates(self.frequencies)


# =============================================================================
# SCAN ORCHESTRATION
# =============================================================================

async def scan(
    tasks: Iterable[FileTask],
    field_index: int,
    *,
    cancel: Optional[CancellationSignal] = None,
    fail_fast: bool = False,
    channel_size: int = 1,
    handle_interrupts: bool = False,
    show_progress: bool = False,
) -> ScanResult:
    """
    Scan every file concurrently and count the watched field's values.

    One producer task runs per file. A single closer task waits for all of
    them and only then closes the channel; meanwhile the collector drains it.
    File failures never abort the scan: the failing producer stops, its
    severity is recorded and, with fail_fast, the other producers are
    cancelled. Whatever was counted is returned.

    Args:
        tasks: Files to scan
        field_index: Zero-based column to extract from each data row
        cancel: Shared cancellation signal (a fresh one if None)
        fail_fast: Cancel every producer on the first file failure
        channel_size: Capacity of the emission channel
        handle_interrupts: Route SIGINT/SIGTERM to the cancellation signal
        show_progress: Show a tqdm bar of finished files

    Returns:
        ScanResult with the frequency map and the strongest severity
    """
    start = _monotonic()
    tasks = list(tasks)
    if not tasks:
        return ScanResult(frequencies=Counter(), nothing_to_do=True)

    cancel = cancel if cancel is not None else CancellationSignal()
    severity = SeverityTracker()
    channel = EmissionChannel(maxsize=channel_size)
    pbar = tqdm(total=len(tasks), desc="Scanning", unit="file", disable=not show_progress)

    async def producer(task: FileTask) -> FileReport:
        try:
            return await produce_field_values(task, field_index, channel, cancel, severity, fail_fast)
        except Exception:
            cancel.set(f"producer crashed: {task.name}")
            raise
        finally:
            pbar.update(1)

    async def close_when_done(producers: list[asyncio.Task]) -> list[Any]:
        results = await asyncio.gather(*producers, return_exceptions=True)
        print("[Scan] all files have been scanned!")
        await channel.close()
        return results

    guard = interrupt_handler(cancel) if handle_interrupts else contextlib.nullcontext()
    with guard:
        producers = [asyncio.create_task(producer(t)) for t in tasks]
        closer = asyncio.create_task(close_when_done(producers))
        try:
            frequencies = await collect(channel)
            results = await closer
        finally:
            pending = [t for t in (*producers, closer) if not t.done()]
            for t in pending:
                t.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
            pbar.close()

    errors = [r for r in results if isinstance(r, BaseException)]
    if errors:
        raise errors[0]

    return ScanResult(
        frequencies=frequencies,
        status=severity.final(),
        cancelled=cancel.is_set(),
        reports=list(results),
        elapsed_sec=_monotonic() - start,
    )


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass(frozen=True)
class Config:
    """Main application configuration."""
    files: tuple[str, ...] = ()
    pattern: str = ""
    field_index: int = 1
    delimiter: str = ","
    encoding: str = "utf-8"
    channel_size: int = 1
    fail_fast: bool = False
    show_progress: bool = True

    def validate(self) -> list[str]:
        """Return a list of configuration problems (empty when valid)."""
        problems = []
        if self.field_index < 0:
            problems.append(f"field must be >= 0, got {self.field_index}")
        if self.channel_size < 1:
            problems.append(f"channel_size must be >= 1, got {self.channel_size}")
        if len(self.delimiter) != 1:
            problems.append(f"delimiter must be a single character, got {self.delimiter!r}")
        try:
            codecs.lookup(self.encoding)
        except LookupError:
            problems.append(f"unknown encoding: {self.encoding!r}")
        return problems


def parse_args(argv: Optional[list[str]] = None) -> Config:
    """Parse command line arguments or JSON config file."""
    p = argparse.ArgumentParser(
        description="DupScan - find duplicated field values across CSV files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scan_batch.py --files 'file1.csv,file2.csv,file3.csv'
  python scan_batch.py --pattern 'exports/*.csv' --field 1
  python scan_batch.py --config dupscan.json
"""
    )

    p.add_argument("--config", type=str, help="Path to JSON config file")

    # Input
    p.add_argument("--files", type=str, default="",
                   help="use this format for multiple files: 'file1,file2,file3'")
    p.add_argument("--pattern", type=str, default="", help="use for globbing, e.g. '*.csv'")

    # Decoding
    p.add_argument("--field", dest="field_index", type=int, default=1,
                   help="Zero-based column to check for duplicates")
    p.add_argument("--delimiter", type=str, default=",")
    p.add_argument("--encoding", type=str, default="utf-8")

    # Pipeline
    p.add_argument("--channel_size", type=int, default=1)
    p.add_argument("--fail_fast", action="store_true",
                   help="Stop every file as soon as one file fails")
    p.add_argument("--no_progress", action="store_true")

    args = p.parse_args(argv)

    if args.config:
        cfg_path = Path(args.config)
        with cfg_path.open("r") as f:
            data = json.load(f)

        cfg = Config(
            files=_split_files(data.get("files")),
            pattern=data.get("pattern", "") or "",
            field_index=int(data.get("field", 1)),
            delimiter=data.get("delimiter", ","),
            encoding=data.get("encoding", "utf-8"),
            channel_size=int(data.get("channel_size", 1)),
            fail_fast=bool(data.get("fail_fast", False)),
            show_progress=bool(data.get("progress", True)),
        )
    else:
        cfg = Config(
            files=_split_files(args.files),
            pattern=args.pattern,
            field_index=args.field_index,
            delimiter=args.delimiter,
            encoding=args.encoding,
            channel_size=args.channel_size,
            fail_fast=args.fail_fast,
            show_progress=not args.no_progress,
        )

    problems = cfg.validate()
    if problems:
        p.error("; ".join(problems))
    return cfg


def resolve_files(cfg: Config) -> list[str]:
    """Explicit --files win over --pattern. An empty list means nothing to do."""
    if cfg.files:
        print(f"[Load] filenames: {','.join(cfg.files)}")
        files = list(cfg.files)
    elif cfg.pattern:
        print(f"[Load] pattern: {cfg.pattern}")
        files = sorted(glob.glob(cfg.pattern))
    else:
        files = []

    if files:
        print(f"[Load] files to be checked for duplicates: {files}")
    return files


# =============================================================================
# MAIN
# =============================================================================

def print_summary(result: ScanResult) -> None:
    """Print the final scan summary block."""
    failed = [r for r in result.reports if not r.ok]

    print("\n" + "=" * 72)
    print("FINAL SUMMARY")
    print("=" * 72)
    print(f"Files scanned:         {len(result.reports) - len(failed)}")
    print(f"Files failed:          {len(failed)}")
    for r in failed:
        print(f"  - {r.name}: {r.severity.name} ({r.error})")
    print(f"Values counted:        {result.total_values}")
    print(f"Distinct values:       {len(result.frequencies)}")
    print(f"Duplicated values:     {len(result.duplicates)}")
    print(f"Elapsed time:          {result.elapsed_sec:.2f}s")
    if result.cancelled:
        print("Scan was cancelled; results are partial.")
    print(f"Exit status:           {result.exit_code} ({result.status.name})")
    print("=" * 72)


async def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point. Returns the process exit code."""
    cfg = parse_args(argv)

    print("=" * 72)
    print("DupScan Batch Scanner")
    print("=" * 72)

    files = resolve_files(cfg)
    if not files:
        print("[Load] no filenames or pattern given, exiting")
        return 0

    tasks = [FileTask(path=f, delimiter=cfg.delimiter, encoding=cfg.encoding) for f in files]
    result = await scan(
        tasks,
        cfg.field_index,
        fail_fast=cfg.fail_fast,
        channel_size=cfg.channel_size,
        handle_interrupts=True,
        show_progress=cfg.show_progress,
    )

    print_duplicates(result.frequencies)
    print_summary(result)
    print("done")
    return result.exit_code


def run() -> None:
    """Console script entry point."""
    code = 0
    try:
        code = asyncio.run(main())
    except KeyboardInterrupt:
        pass
    sys.exit(code)


if __name__ == "__main__":
    run()
