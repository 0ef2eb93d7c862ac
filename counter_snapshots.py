#!/usr/bin/env python3
"""
Convert periodic server counter snapshots into (N, C) samples

Input is repeated `mysqladmin extended-status` output, e.g.

    mysqladmin ext -i1 > status.txt

Only three variables are used:
- Questions        running count of queries served
- Threads_running  gauge of threads executing a query right now
- Uptime           server uptime in seconds

Throughput is the Questions delta over the Uptime delta of each window, and
concurrency is the average Threads_running over the window.
"""

import re
from dataclasses import dataclass
from typing import Iterable, Iterator, Optional

from usl_dataset import Sample

STATUS_LINE = re.compile(r"^\|?\s*(?P<name>Questions|Threads_running|Uptime)\s*\|?\s*(?P<value>\d+)\s*\|?\s*$")


@dataclass
class CounterSnapshot:
    """One round of counter values; any of them may be missing"""

    queries: Optional[int] = None
    threads_running: Optional[int] = None
    uptime: Optional[int] = None


def parse_snapshots(lines: Iterable[str]) -> Iterator[CounterSnapshot]:
    """Group status lines into snapshots; a repeated variable starts a new one"""
    fields = {"Questions": "queries", "Threads_running": "threads_running", "Uptime": "uptime"}
    current = CounterSnapshot()
    seen = set()

    for line in lines:
        match = STATUS_LINE.match(line.strip())
        if not match:
            continue
        name = match.group("name")
        if name in seen:
            yield current
            current = CounterSnapshot()
            seen = set()
        setattr(current, fields[name], int(match.group("value")))
        seen.add(name)

    if seen:
        yield current


class CounterSampleConverter:
    """
    Aggregates counter observations into windows at least `interval`
    seconds long.

    `num_reserved_threads` is subtracted from every Threads_running reading
    (on top of the monitoring connection itself) and readings above
    `max_threads` are dropped as outliers when `max_threads` is positive.
    """

    def __init__(self, interval: float = 1, num_reserved_threads: int = 0, max_threads: int = 0):
        self.interval = interval
        self.num_reserved_threads = num_reserved_threads
        self.max_threads = max_threads

        self.queries = 0
        self.threads: Optional[int] = None
        self.window_start_uptime: Optional[int] = None
        self.window_start_queries = 0
        self.threads_sum = 0
        self.observations = 0
        self.skipped = 0
        self.total_skipped = 0
        self.restarts = 0

    def _seed(self) -> int:
        if self.threads is None:
            return 0
        if self.max_threads > 0 and self.threads > self.max_threads:
            return self.max_threads
        return self.threads

    def _open_window(self, uptime: int):
        self.window_start_uptime = uptime
        self.window_start_queries = self.queries
        self.threads_sum = self._seed()
        self.observations = 0
        self.skipped = 0

    def observe_queries(self, queries: int):
        self.queries = queries

    def observe_threads(self, gauge: int):
        # -1 for the monitoring connection itself
        threads = gauge - 1 - self.num_reserved_threads
        self.threads = threads
        self.observations += 1
        if self.max_threads > 0 and threads > self.max_threads:
            self.skipped += 1
            self.total_skipped += 1
        else:
            self.threads_sum += threads

    def observe_uptime(self, uptime: int) -> Optional[Sample]:
        if self.window_start_uptime is None:
            self._open_window(uptime)
            return None

        elapsed = uptime - self.window_start_uptime
        if elapsed < 0:
            # Uptime went backwards: the server restarted and counters reset
            self.restarts += 1
            self._open_window(uptime)
            return None

        if elapsed >= self.interval and self.observations > self.skipped:
            sample = Sample(
                self.threads_sum / (self.observations - self.skipped + 1),
                (self.queries - self.window_start_queries) / elapsed,
            )
            self._open_window(uptime)
            return sample
        return None

    def observe(self, snapshot: CounterSnapshot) -> Optional[Sample]:
        if snapshot.queries is not None:
            self.observe_queries(snapshot.queries)
        if snapshot.threads_running is not None:
            self.observe_threads(snapshot.threads_running)
        if snapshot.uptime is not None:
            return self.observe_uptime(snapshot.uptime)
        return None

    def convert(self, snapshots: Iterable[CounterSnapshot]) -> Iterator[Sample]:
        for snapshot in snapshots:
            sample = self.observe(snapshot)
            if sample is not None:
                yield sample
