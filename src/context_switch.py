"""
Context-Switch Correlator
=========================
Reconstructs run, wait and ready intervals from scheduler activity.

A single left-to-right pass keeps, per CPU, the record of the thread that
is currently swapped in and the pending ready record left by the last
wakeup targeting that CPU, and per thread its latest swap-out. Thread id 0
is the per-CPU idle thread, so it is keyed by (cpu, 0); every other thread
is keyed globally by (0, tid).

Author: Perf Trace Analytics Project
Date: October 17, 2026
"""

import logging
from collections import Counter
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional, Sequence, Tuple

from trace_events import EventKind, RawEvent

logger = logging.getLogger(__name__)

UNKNOWN_THREAD_ID = -1
UNKNOWN_PROCESS = "Unknown (-1)"
IDLE_THREAD_IDS = (0, UNKNOWN_THREAD_ID)


@dataclass(frozen=True)
class ContextSwitchRecord:
    """
    One swap-in on a CPU.

    `*_time` fields are on the trace clock (ms); `*_timestamp` fields are ms
    relative to the first event of the trace. Durations are in ms.
    """
    swap_in_time: float
    swap_in_timestamp: float
    ready_time: float
    ready_timestamp: float
    prev_swap_out_timestamp: float
    wait_duration: float
    ready_duration: float
    run_duration: float
    new_thread_id: int
    new_process: str
    ready_thread_id: int
    ready_process: str
    cpu: int
    prev_swap_out_stack: Optional[int] = None
    ready_stack: Optional[int] = None

    @property
    def run_end_timestamp(self) -> float:
        return self.swap_in_timestamp + self.run_duration

    @property
    def is_idle(self) -> bool:
        return self.new_thread_id in IDLE_THREAD_IDS

    def to_dict(self):
        data = asdict(self)
        data['run_end_timestamp'] = self.run_end_timestamp
        return data


@dataclass
class _SwapState:
    """Mutable record under construction; frozen into a ContextSwitchRecord after the pass."""
    swap_in_time: float = 0.0
    swap_in_timestamp: float = 0.0
    ready_time: float = 0.0
    ready_timestamp: float = 0.0
    prev_swap_out_timestamp: float = 0.0
    wait_duration: float = 0.0
    ready_duration: float = 0.0
    run_duration: float = 0.0
    new_thread_id: int = UNKNOWN_THREAD_ID
    new_process: str = UNKNOWN_PROCESS
    ready_thread_id: int = UNKNOWN_THREAD_ID
    ready_process: str = UNKNOWN_PROCESS
    cpu: int = 0
    prev_swap_out_stack: Optional[int] = None
    ready_stack: Optional[int] = None
    new_thread_resolved: bool = False

    def resolve_new_thread(self, event: RawEvent):
        self.new_thread_id = event.thread_id
        self.new_process = event.process_label
        self.new_thread_resolved = True

    def freeze(self) -> ContextSwitchRecord:
        if self.new_thread_id in IDLE_THREAD_IDS:
            # Idle time is not latency
            self.wait_duration = 0.0
            self.run_duration = 0.0
        return ContextSwitchRecord(
            swap_in_time=self.swap_in_time,
            swap_in_timestamp=self.swap_in_timestamp,
            ready_time=self.ready_time,
            ready_timestamp=self.ready_timestamp,
            prev_swap_out_timestamp=self.prev_swap_out_timestamp,
            wait_duration=self.wait_duration,
            ready_duration=self.ready_duration,
            run_duration=self.run_duration,
            new_thread_id=self.new_thread_id,
            new_process=self.new_process,
            ready_thread_id=self.ready_thread_id,
            ready_process=self.ready_process,
            cpu=self.cpu,
            prev_swap_out_stack=self.prev_swap_out_stack,
            ready_stack=self.ready_stack,
        )


class ContextSwitchCorrelator:
    """Builds ContextSwitchRecords from the full, ordered event sequence of one trace."""

    def __init__(self, events: Sequence[RawEvent],
                 switch_event_names: Tuple[str, ...] = ("context-switches", "cs")):
        """
        Args:
            events: All events of the trace in arrival order
            switch_event_names: Sample event names that mark a raw context switch
        """
        self.events = events
        self.switch_event_names = tuple(switch_event_names)
        self.first_timestamp = events[0].timestamp if events else 0.0
        self.last_timestamp = events[-1].timestamp if events else 0.0

        self.last_swap_out: Dict[int, _SwapState] = {}
        self.last_ready: Dict[int, _SwapState] = {}
        self.last_swap_out_by_thread: Dict[Tuple[int, int], RawEvent] = {}
        self.boundary_records = 0
        self.records: List[ContextSwitchRecord] = []

        logger.info(f"Initialized ContextSwitchCorrelator with {len(events)} events")

    def is_switch(self, event: RawEvent) -> bool:
        return (event.kind == EventKind.SCHEDULER_SWITCH
                or event.base_event_name in self.switch_event_names)

    @staticmethod
    def thread_key(event: RawEvent) -> Tuple[int, int]:
        if event.thread_id == 0:
            return (event.cpu, 0)
        return (0, event.thread_id)

    def correlate(self) -> List[ContextSwitchRecord]:
        """
        Run the pass.

        Returns:
            One record per observed swap-in, plus one boundary record per CPU
            for the thread already running when the trace started
        """
        states: List[_SwapState] = []

        for event in self.events:
            pending = self.last_swap_out.get(event.cpu)
            if pending is not None:
                if not pending.new_thread_resolved:
                    pending.resolve_new_thread(event)
            else:
                states.append(self._boundary_state(event))

            if self.is_switch(event):
                states.append(self._swap_in(event))
            elif event.kind == EventKind.WAKEUP:
                self._ready(event)

        self.records = [state.freeze() for state in states]
        logger.info(f"Correlated {len(self.records)} context switches "
                    f"({self.boundary_records} trace-boundary records)")
        return self.records

    def _relative(self, timestamp: float) -> float:
        return timestamp - self.first_timestamp

    def _boundary_state(self, event: RawEvent) -> _SwapState:
        """Thread found running on a CPU before any switch there: treat as swapped in at trace start."""
        state = _SwapState(
            swap_in_time=self.first_timestamp,
            ready_time=self.first_timestamp,
            run_duration=self.last_timestamp - event.timestamp,
            cpu=event.cpu,
        )
        state.resolve_new_thread(event)
        self.last_swap_out[event.cpu] = state
        self.boundary_records += 1
        return state

    def _swap_in(self, event: RawEvent) -> _SwapState:
        key = self.thread_key(event)

        # The running record ends here; its thread is the one swapping out
        current = self.last_swap_out[event.cpu]
        current.run_duration = event.timestamp - current.swap_in_time
        prev_swap_out = self.last_swap_out_by_thread.get(key)
        if prev_swap_out is not None and prev_swap_out.timestamp < current.swap_in_time:
            current.prev_swap_out_timestamp = self._relative(prev_swap_out.timestamp)
            current.wait_duration = current.swap_in_time - prev_swap_out.timestamp
            current.prev_swap_out_stack = prev_swap_out.stack

        state = self.last_ready.pop(event.cpu, None)
        if state is not None:
            state.ready_duration = event.timestamp - state.ready_time
        else:
            state = _SwapState(ready_time=event.timestamp,
                               ready_timestamp=self._relative(event.timestamp))

        state.swap_in_time = event.timestamp
        state.swap_in_timestamp = self._relative(event.timestamp)
        state.prev_swap_out_timestamp = 0.0
        # Provisional until the next switch on this CPU
        state.wait_duration = self._relative(event.timestamp)
        state.run_duration = self.last_timestamp - event.timestamp
        state.cpu = event.cpu

        self.last_swap_out[event.cpu] = state
        self.last_swap_out_by_thread[key] = event
        return state

    def _ready(self, event: RawEvent):
        wakeup = event.wakeup
        if wakeup is None:
            logger.debug(f"Wakeup without target payload at {event.timestamp}")
            return

        state = _SwapState(
            ready_thread_id=event.thread_id,
            ready_process=event.process_label,
            ready_time=event.timestamp,
            ready_timestamp=self._relative(event.timestamp),
            ready_stack=event.stack,
            new_thread_id=wakeup.tid,
            new_process=f"{wakeup.comm} ({wakeup.tid})",
        )
        self.last_ready[wakeup.target_cpu] = state

    def summarize(self) -> Dict[str, object]:
        """Totals per new process for the CLI summary."""
        run_by_process = Counter()
        wait_by_process = Counter()
        ready_by_process = Counter()
        for record in self.records:
            run_by_process[record.new_process] += record.run_duration
            wait_by_process[record.new_process] += record.wait_duration
            ready_by_process[record.new_process] += record.ready_duration

        return {
            'total_records': len(self.records),
            'boundary_records': self.boundary_records,
            'cpus': len({r.cpu for r in self.records}),
            'idle_records': sum(1 for r in self.records if r.is_idle),
            'run_ms_by_process': dict(run_by_process.most_common()),
            'wait_ms_by_process': dict(wait_by_process.most_common()),
            'ready_ms_by_process': dict(ready_by_process.most_common()),
        }
