#!/usr/bin/env python3
"""
Convert a captured request/response packet trace into (N, C) samples

The trace is the text output of tcpdump for one service port, e.g.

    tcpdump -tttt -nn -q -i any port 3306 > trace.txt

    2024-03-14 10:00:00.000100 IP 10.0.0.5.50012 > 10.0.0.9.3306: tcp 42
    2024-03-14 10:00:00.000350 IP 10.0.0.9.3306 > 10.0.0.5.50012: tcp 118

Packets to the watched port are requests, packets from it are replies. Each
matched request/reply pair produces one tabulated record carrying the running
busy time and the pending-weighted busy time. Those running totals are folded
into fixed time windows, each window giving one (concurrency, throughput) sample.
"""

import re
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, Iterator, List, Optional

from usl_dataset import InputError, Sample

TCPDUMP_LINE = re.compile(
    r"^(?P<date>\d{4}-\d{2}-\d{2}) (?P<time>\d{2}:\d{2}:\d{2}(?:\.\d+)?) IP6? "
    r"(?P<src>\S+)\.(?P<sport>\d+) > (?P<dst>\S+)\.(?P<dport>\d+): "
    r"(?:tcp|UDP, length) (?P<length>\d+)"
)


@dataclass(frozen=True)
class PacketSummary:
    """One captured packet"""

    date: str
    time: str
    timestamp: float
    src: str
    src_port: int
    dst: str
    dst_port: int
    length: int

    @property
    def source(self) -> str:
        return f"{self.src}.{self.src_port}"

    @property
    def destination(self) -> str:
        return f"{self.dst}.{self.dst_port}"


@dataclass(frozen=True)
class TabulatedRecord:
    """One completed request, with the running busy totals at its reply"""

    date: str
    time: str
    timestamp: float
    client: str
    response_time: float
    pending: int
    busy_time: float
    weighted_busy_time: float

    def to_line(self) -> str:
        return (
            f"{self.date} {self.time} {self.timestamp:.6f} {self.client} "
            f"{self.response_time:.6f} {self.pending} "
            f"{self.busy_time:.6f} {self.weighted_busy_time:.6f}"
        )


def seconds_of_day(clock: str) -> float:
    hours, minutes, seconds = clock.split(":")
    return int(hours) * 3600 + int(minutes) * 60 + float(seconds)


class TraceParser:
    """
    Parses tcpdump text lines into PacketSummary objects.

    Timestamps are seconds since midnight of the first packet's day, so a
    capture that runs past midnight keeps increasing.
    """

    def __init__(self):
        self.first_day: Optional[date] = None
        self.unparsed = 0

    def parse_line(self, line: str) -> Optional[PacketSummary]:
        match = TCPDUMP_LINE.match(line.strip())
        if not match:
            self.unparsed += 1
            return None

        try:
            day = date.fromisoformat(match.group("date"))
        except ValueError:
            self.unparsed += 1
            return None
        if self.first_day is None:
            self.first_day = day

        offset = (day - self.first_day).days * 86400
        return PacketSummary(
            date=match.group("date"),
            time=match.group("time"),
            timestamp=offset + seconds_of_day(match.group("time")),
            src=match.group("src"),
            src_port=int(match.group("sport")),
            dst=match.group("dst"),
            dst_port=int(match.group("dport")),
            length=int(match.group("length")),
        )

    def parse(self, lines: Iterable[str]) -> Iterator[PacketSummary]:
        for line in lines:
            packet = self.parse_line(line)
            if packet is not None:
                yield packet


class PacketTabulator:
    """
    Matches requests to replies per client and tracks how long the server
    had at least one request pending (busy time) and the integral of the
    pending count over time (weighted busy time).
    """

    def __init__(self, watch_port: int):
        self.watch_port = watch_port
        self.open_requests: Dict[str, float] = {}
        self.pending = 0
        self.last_event_timestamp: Optional[float] = None
        self.busy_time = 0.0
        self.weighted_busy_time = 0.0
        self.ignored = 0

    def _advance(self, timestamp: float):
        if self.last_event_timestamp is not None:
            elapsed = timestamp - self.last_event_timestamp
            if elapsed < 0:
                raise InputError(
                    f"trace timestamps go backwards ({self.last_event_timestamp:.6f} -> {timestamp:.6f})"
                )
            self.weighted_busy_time += self.pending * elapsed
            if self.pending > 0:
                self.busy_time += elapsed
        self.last_event_timestamp = timestamp

    def process(self, packet: PacketSummary) -> Optional[TabulatedRecord]:
        """Feed one packet; returns a record when it completes a request"""
        # Pure ACKs carry no request or reply
        if packet.length == 0:
            return None

        if packet.dst_port == self.watch_port:
            client = packet.source
            if client in self.open_requests:
                self.ignored += 1
                return None
            self.open_requests[client] = packet.timestamp
            self._advance(packet.timestamp)
            self.pending += 1
            return None

        if packet.src_port == self.watch_port:
            client = packet.destination
            started = self.open_requests.pop(client, None)
            if started is None:
                self.ignored += 1
                return None
            self._advance(packet.timestamp)
            self.pending -= 1
            return TabulatedRecord(
                date=packet.date,
                time=packet.time,
                timestamp=packet.timestamp,
                client=client,
                response_time=packet.timestamp - started,
                pending=self.pending,
                busy_time=self.busy_time,
                weighted_busy_time=self.weighted_busy_time,
            )

        self.ignored += 1
        return None

    def tabulate(self, packets: Iterable[PacketSummary]) -> Iterator[TabulatedRecord]:
        for packet in packets:
            record = self.process(packet)
            if record is not None:
                yield record


class WindowAggregator:
    """Folds tabulated records into fixed-length windows of (N, C) samples"""

    def __init__(self, window: float = 1.0):
        self.window = window
        self.skipped = 0

    def aggregate(self, records: Iterable[TabulatedRecord]) -> Iterator[Sample]:
        start: Optional[TabulatedRecord] = None
        events = 0

        for record in records:
            if start is None:
                start = record
                continue

            if record.timestamp >= start.timestamp + self.window:
                busy = record.busy_time - start.busy_time
                if busy > 0:
                    weighted = record.weighted_busy_time - start.weighted_busy_time
                    yield Sample(weighted / busy, events / busy)
                else:
                    self.skipped += 1
                start = record
                events = 0
            else:
                events += 1


def write_tabulated(records: Iterable[TabulatedRecord], path: str) -> List[TabulatedRecord]:
    """Write records to path and return them as a list"""
    written = []
    try:
        with open(path, "w") as f:
            for record in records:
                f.write(record.to_line() + "\n")
                written.append(record)
    except OSError as e:
        raise InputError(f"cannot write tabulated trace {path}: {e}")
    return written

