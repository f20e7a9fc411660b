"""
Trace Events Module
===================
Typed kernel trace events shared by the parser and every correlator.

Each event carries the common context (CPU, thread, process, timestamp)
plus a kind-specific payload:
- Scheduler switches
- Thread exits
- Wakeups
- Block request issue/completion
- CPU samples

Author: Perf Trace Analytics Project
Date: October 17, 2026
"""

import re
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, Tuple, Union

# Event modifiers such as :u, :k, :ppp
MODIFIER_PATTERN = re.compile(r'^[ukhIGHpPSDW]+$')


class EventKind(Enum):
    """Kinds of trace events the correlators distinguish."""
    SCHEDULER_SWITCH = "scheduler_switch"
    THREAD_EXIT = "thread_exit"
    WAKEUP = "wakeup"
    BLOCK_REQUEST_ISSUE = "block_request_issue"
    BLOCK_REQUEST_COMPLETE = "block_request_complete"
    SAMPLE = "sample"
    OTHER = "other"


@dataclass(frozen=True)
class StackFrame:
    """A symbolic call-stack frame."""
    address: str
    module: str
    symbol: str

    @property
    def display_name(self) -> str:
        return f"{self.module}!{self.symbol}"


@dataclass(frozen=True)
class NonFrameMarker:
    """A stack line that is not a symbolic frame (skipped by the stack cache)."""
    text: str


Frame = Union[StackFrame, NonFrameMarker]


@dataclass(frozen=True)
class SchedulerSwitch:
    prev_comm: str
    prev_tid: int
    prev_prio: int
    prev_state: str
    next_comm: str
    next_tid: int
    next_prio: int


@dataclass(frozen=True)
class ThreadExit:
    comm: str
    tid: int
    prio: int


@dataclass(frozen=True)
class Wakeup:
    """Target of a wakeup: the woken thread and the CPU it will run on."""
    comm: str
    tid: int
    prio: int
    target_cpu: int


@dataclass(frozen=True)
class BlockRequest:
    """
    Block-layer request fields.

    `length` is the request size in bytes (0 on completions, which do not
    report it) and `sector_length` the number of sectors.
    """
    device: int
    device_minor: int
    flags: str
    length: int
    sector: int
    sector_length: int

    @property
    def key(self) -> Tuple[int, int, int, int]:
        return (self.device, self.device_minor, self.sector, self.sector_length)


@dataclass(frozen=True)
class Sample:
    period: Optional[int] = None


Payload = Union[SchedulerSwitch, ThreadExit, Wakeup, BlockRequest, Sample, None]


@dataclass(frozen=True)
class RawEvent:
    """
    A single decoded trace event.

    Timestamps are milliseconds on the trace clock and never decrease in
    input order. `frames` is leaf-to-root as emitted by the tracer; once the
    event has been annotated the frames are dropped and `stack` holds the
    shared stack handle instead.
    """
    kind: EventKind
    timestamp: float
    cpu: int
    thread_id: int
    process_id: int
    command: str
    event_name: str
    payload: Payload = None
    frames: Tuple[Frame, ...] = field(default=(), repr=False)
    stack: Optional[int] = None

    @property
    def process_label(self) -> str:
        return f"{self.command} ({self.process_id})"

    @property
    def base_event_name(self) -> str:
        """Sample event name without modifiers ("cs:u" -> "cs")."""
        if self.kind != EventKind.SAMPLE:
            return self.event_name
        name = self.event_name
        while ':' in name:
            head, tail = name.rsplit(':', 1)
            if not MODIFIER_PATTERN.match(tail):
                break
            name = head
        return name

    @property
    def scheduler_switch(self) -> Optional[SchedulerSwitch]:
        return self.payload if self.kind == EventKind.SCHEDULER_SWITCH else None

    @property
    def thread_exit(self) -> Optional[ThreadExit]:
        return self.payload if self.kind == EventKind.THREAD_EXIT else None

    @property
    def wakeup(self) -> Optional[Wakeup]:
        return self.payload if self.kind == EventKind.WAKEUP else None

    @property
    def block_request(self) -> Optional[BlockRequest]:
        if self.kind in (EventKind.BLOCK_REQUEST_ISSUE, EventKind.BLOCK_REQUEST_COMPLETE):
            return self.payload
        return None

    def __repr__(self):
        return (f"RawEvent(ts={self.timestamp}, kind={self.kind.value}, cpu={self.cpu}, "
                f"tid={self.thread_id}, name={self.event_name})")
