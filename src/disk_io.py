"""
Disk I/O Correlator
===================
Matches block request issues with their completions and tracks queue depth.

Outstanding requests are indexed by (device, minor, sector, sector count).
A completion either closes the outstanding issue with the same key or is
emitted on its own when the issue happened before the trace started. A
second pass computes per-device queue depth for the matched requests only.

Author: Perf Trace Analytics Project
Date: October 17, 2026
"""

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from trace_events import BlockRequest, EventKind, RawEvent

logger = logging.getLogger(__name__)

DEFAULT_SECTOR_SIZE = 512

IoKey = Tuple[int, int, int, int]


class IoType(Enum):
    READ = "Read"
    WRITE = "Write"
    FLUSH = "Flush"
    TRIM = "Trim"
    UNKNOWN = "Unknown"


# R = read, W = write, F = flush, D = discard; first match wins
FLAG_IO_TYPES = (('R', IoType.READ), ('W', IoType.WRITE), ('F', IoType.FLUSH), ('D', IoType.TRIM))


@dataclass
class DiskIoRecord:
    """A disk request; either side may be missing when the trace cut it off."""
    issue: Optional[RawEvent] = None
    complete: Optional[RawEvent] = None
    init_queue_depth: int = 0
    complete_queue_depth: int = 0
    sector_size: int = DEFAULT_SECTOR_SIZE

    @property
    def matched(self) -> bool:
        return self.issue is not None and self.complete is not None

    def _first(self) -> RawEvent:
        return self.issue if self.issue is not None else self.complete

    def _request(self) -> BlockRequest:
        return self._first().block_request

    def key(self) -> IoKey:
        return self._request().key

    def device(self) -> int:
        return self._request().device

    def device_minor(self) -> int:
        return self._request().device_minor

    def flags(self) -> str:
        return self._request().flags

    def sector(self) -> int:
        return self._request().sector

    def sector_length(self) -> int:
        return self._request().sector_length

    def length(self) -> int:
        return self.issue.block_request.length if self.issue is not None else 0

    def offset(self) -> int:
        """Byte offset of the request."""
        if self.issue is not None:
            request = self.issue.block_request
            if request.sector_length != 0:
                return request.sector * (request.length // request.sector_length)
            return request.sector * self.sector_size
        return self.complete.block_request.sector * self.sector_size

    def io_type(self) -> IoType:
        flags = self.flags()
        for flag, io_type in FLAG_IO_TYPES:
            if flag in flags:
                return io_type
        return IoType.UNKNOWN

    def start_time(self) -> float:
        return self._first().timestamp

    def end_time(self) -> float:
        return self.complete.timestamp if self.complete is not None else self.issue.timestamp

    def duration(self) -> float:
        if self.matched:
            return self.complete.timestamp - self.issue.timestamp
        return 0.0

    def cpu(self) -> int:
        return self._first().cpu

    def thread_id(self) -> int:
        return self._first().thread_id

    def process_id(self) -> int:
        return self._first().process_id

    def process_label(self) -> str:
        return self._first().process_label

    def init_stack(self) -> Optional[int]:
        return self.issue.stack if self.issue is not None else None

    def complete_stack(self) -> Optional[int]:
        return self.complete.stack if self.complete is not None else None

    def to_dict(self, first_timestamp: float = 0.0) -> Dict[str, object]:
        return {
            'start_timestamp': self.start_time() - first_timestamp,
            'end_timestamp': self.end_time() - first_timestamp,
            'duration_ms': self.duration(),
            'cpu': self.cpu(),
            'thread_id': self.thread_id(),
            'process': self.process_label(),
            'device': f"{self.device()}:{self.device_minor()}",
            'io_type': self.io_type().value,
            'flags': self.flags(),
            'offset': self.offset(),
            'length': self.length(),
            'init_queue_depth': self.init_queue_depth,
            'complete_queue_depth': self.complete_queue_depth,
            'has_issue': self.issue is not None,
            'has_completion': self.complete is not None,
        }


class DiskIoCorrelator:
    """Pairs block request issue/complete events of one trace."""

    def __init__(self, events: Sequence[RawEvent], sector_size: int = DEFAULT_SECTOR_SIZE):
        """
        Args:
            events: All events of the trace in arrival order
            sector_size: Bytes per sector when a request does not say
        """
        self.events = events
        self.sector_size = sector_size
        self.outstanding: Dict[IoKey, DiskIoRecord] = {}
        self.records: List[DiskIoRecord] = []
        # Record owning each block event, in block-event order
        self.block_event_records: List[DiskIoRecord] = []
        self.reissued = 0

        logger.info(f"Initialized DiskIoCorrelator with {len(events)} events")

    def correlate(self) -> List[DiskIoRecord]:
        """
        Match issues with completions, then compute queue depths.

        Returns:
            Records in the order their first event was seen
        """
        for event in self.events:
            if event.kind == EventKind.BLOCK_REQUEST_ISSUE:
                self._issue(event)
            elif event.kind == EventKind.BLOCK_REQUEST_COMPLETE:
                self._complete(event)

        self._compute_queue_depths()

        matched = sum(1 for r in self.records if r.matched)
        logger.info(f"Correlated {len(self.records)} disk I/Os: {matched} matched, "
                    f"{len(self.outstanding)} still outstanding at trace end, "
                    f"{len(self.records) - matched - len(self.outstanding)} completion-only")
        return self.records

    def outstanding_keys(self) -> List[IoKey]:
        """Keys of issues still waiting for a completion, in key order."""
        return sorted(self.outstanding)

    def _issue(self, event: RawEvent):
        record = DiskIoRecord(issue=event, sector_size=self.sector_size)
        key = record.key()
        if self.outstanding.pop(key, None) is not None:
            # Same request issued again before its completion; the old one stays issue-only
            self.reissued += 1
            logger.debug(f"Re-issue of outstanding request {key} at {event.timestamp}")
        self.outstanding[key] = record
        self.block_event_records.append(record)
        self.records.append(record)

    def _complete(self, event: RawEvent):
        record = self.outstanding.pop(event.block_request.key, None)
        if record is not None:
            record.complete = event
        else:
            record = DiskIoRecord(complete=event, sector_size=self.sector_size)
            self.records.append(record)
        self.block_event_records.append(record)

    def _compute_queue_depths(self):
        depth: Dict[Tuple[int, int], int] = defaultdict(int)
        index = 0
        for event in self.events:
            if event.kind not in (EventKind.BLOCK_REQUEST_ISSUE, EventKind.BLOCK_REQUEST_COMPLETE):
                continue
            record = self.block_event_records[index]
            index += 1
            if not record.matched:
                continue

            request = event.block_request
            device = (request.device, request.device_minor)
            if event.kind == EventKind.BLOCK_REQUEST_ISSUE:
                record.init_queue_depth = depth[device]
                depth[device] += 1
            else:
                record.complete_queue_depth = depth[device]
                if depth[device] > 0:
                    depth[device] -= 1

    def summarize(self) -> Dict[str, object]:
        by_type = Counter(r.io_type().value for r in self.records)
        durations = defaultdict(list)
        bytes_by_device = Counter()
        for record in self.records:
            device = f"{record.device()}:{record.device_minor()}"
            bytes_by_device[device] += record.length()
            if record.matched:
                durations[record.io_type().value].append(record.duration())

        return {
            'total_records': len(self.records),
            'matched': sum(1 for r in self.records if r.matched),
            'issue_only': sum(1 for r in self.records if r.complete is None),
            'completion_only': sum(1 for r in self.records if r.issue is None),
            'reissued': self.reissued,
            'io_types': dict(by_type),
            'bytes_by_device': dict(bytes_by_device),
            'max_init_queue_depth': max((r.init_queue_depth for r in self.records if r.matched), default=0),
            'average_durations_ms': {
                io_type: sum(values) / len(values) if values else 0
                for io_type, values in durations.items()
            }
        }
