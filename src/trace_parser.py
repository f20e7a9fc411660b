"""
Trace Parser Module
===================
Parses `perf script` text output into typed trace events.

This module handles the first stage of the pipeline:
- Reading raw perf script files
- Extracting individual events and their call stacks
- Decoding scheduler, wakeup and block-layer payloads
- Converting timestamps to milliseconds

Author: Perf Trace Analytics Project
Date: October 17, 2026
"""

import re
import logging
from pathlib import Path
from collections import Counter
from datetime import datetime
from typing import Dict, Iterator, List, Optional, Tuple

from trace_events import (
    MODIFIER_PATTERN, BlockRequest, EventKind, Frame, NonFrameMarker, RawEvent, Sample,
    SchedulerSwitch, StackFrame, ThreadExit, Wakeup,
)

logger = logging.getLogger(__name__)


class TraceParseError(Exception):
    """The trace could not be read or (in strict mode) contained a malformed event."""


class PerfScriptParser:
    """Parses perf script output into RawEvents."""

    # Example: bash  1234/1235 [002] 5418.114326:     250000 cpu-clock:
    # Example: swapper     0 [000] 5418.114330: sched:sched_switch: prev_comm=swapper/0 ...
    HEADER_PATTERN = re.compile(
        r'^\s*(?P<comm>.+?)\s+'                   # Command (may contain spaces)
        r'(?:(?P<pid>-?\d+)/)?(?P<tid>-?\d+)\s+'  # [pid/]tid
        r'\[(?P<cpu>\d+)\]\s+'                    # CPU
        r'(?P<time>\d+\.\d+):\s+'                 # Seconds
        r'(?:(?P<period>\d+)\s+)?'                # Sample period
        r'(?P<event>\S+?):(?:\s+(?P<rest>.*))?$'  # Event name and payload
    )

    # Example: ffffffff8109f4c0 __schedule+0x2e0 ([kernel.kallsyms])
    FRAME_PATTERN = re.compile(
        r'^\s*(?P<address>[0-9a-fA-F]+)\s+(?P<symbol>.+?)\s+\((?P<module>[^()]*)\)$'
    )

    CAPTURED_ON_PATTERN = re.compile(r'^#\s*captured on\s*:\s*(?P<value>.+)$')

    SWITCH_PATTERN = re.compile(
        r'prev_comm=(?P<prev_comm>.+?) prev_pid=(?P<prev_tid>-?\d+) prev_prio=(?P<prev_prio>-?\d+) '
        r'prev_state=(?P<prev_state>\S+) ==> '
        r'next_comm=(?P<next_comm>.+?) next_pid=(?P<next_tid>-?\d+) next_prio=(?P<next_prio>-?\d+)'
    )
    EXIT_PATTERN = re.compile(r'comm=(?P<comm>.+?) pid=(?P<tid>-?\d+) prio=(?P<prio>-?\d+)')
    WAKEUP_PATTERN = re.compile(
        r'comm=(?P<comm>.+?) pid=(?P<tid>-?\d+) prio=(?P<prio>-?\d+)'
        r'(?: success=\d+)? target_cpu=(?P<target_cpu>\d+)'
    )
    # Example: 8,0 WS 4096 () 1234 + 8 [sync]
    ISSUE_PATTERN = re.compile(
        r'(?P<device>\d+),(?P<minor>\d+) (?P<flags>\S+) (?P<length>\d+) \(.*?\) '
        r'(?P<sector>\d+) \+ (?P<sector_length>\d+)'
    )
    # Example: 8,0 WS () 1234 + 8 [0]
    COMPLETE_PATTERN = re.compile(
        r'(?P<device>\d+),(?P<minor>\d+) (?P<flags>\S+) \(.*?\) '
        r'(?P<sector>\d+) \+ (?P<sector_length>\d+)'
    )

    SWITCH_EVENTS = ('sched_switch',)
    EXIT_EVENTS = ('sched_process_exit',)
    WAKEUP_EVENTS = ('sched_wakeup', 'sched_wakeup_new', 'sched_waking')
    ISSUE_EVENTS = ('block_rq_issue',)
    COMPLETE_EVENTS = ('block_rq_complete',)

    def __init__(self, trace_file: Path, strict: bool = False):
        """
        Initialize trace parser.

        Args:
            trace_file: Path to the perf script text file
            strict: Raise TraceParseError on the first malformed event header
        """
        self.trace_file = Path(trace_file)
        self.strict = strict
        self.events: List[RawEvent] = []
        self.parse_errors = 0
        self.payload_errors = 0
        self.total_lines = 0
        self.captured_on: Optional[str] = None

        logger.info(f"Initialized PerfScriptParser for file: {self.trace_file.name}")

    def parse(self) -> List[RawEvent]:
        """
        Parse the entire trace file.

        Returns:
            List of parsed RawEvent objects in file order
        """
        logger.info("Starting trace parsing")
        start_time = datetime.now()

        self.events = list(self.iter_events())

        duration = (datetime.now() - start_time).total_seconds()
        logger.info(f"Parsing complete: {len(self.events)} events from {self.total_lines} lines in {duration:.2f}s")
        if self.parse_errors:
            logger.warning(f"Skipped {self.parse_errors} unparseable lines")
        return self.events

    def iter_events(self) -> Iterator[RawEvent]:
        """Lazily yield events; each event's stack lines follow its header line."""
        header: Optional[re.Match] = None
        frames: List[Frame] = []

        try:
            with open(self.trace_file, 'r', encoding='utf-8', errors='ignore') as f:
                for line_num, line in enumerate(f, 1):
                    self.total_lines += 1
                    line = line.rstrip('\n')

                    if line.startswith('#'):
                        self._parse_preamble(line)
                        continue

                    if not line.strip():
                        if header is not None:
                            yield self._build_event(header, frames)
                            header, frames = None, []
                        continue

                    match = self.HEADER_PATTERN.match(line)
                    if header is not None and match is None:
                        frames.append(self._parse_frame(line))
                        continue

                    if header is not None:
                        yield self._build_event(header, frames)
                        header, frames = None, []

                    if match is None:
                        self._parse_failure(line_num, line)
                        continue

                    header = match
                    rest = match.group('rest') or ''
                    inline_frame = self.FRAME_PATTERN.match(rest)
                    if inline_frame and self.is_sample_event(match.group('event')):
                        # -F ip,sym without -g prints the sampled frame on the header line
                        frames.append(self._frame_from_match(inline_frame))

                if header is not None:
                    yield self._build_event(header, frames)

        except OSError as e:
            logger.error(f"Error reading trace file: {e}")
            raise TraceParseError(f"Cannot read trace file {self.trace_file}: {e}") from e

    def _parse_preamble(self, line: str):
        match = self.CAPTURED_ON_PATTERN.match(line)
        if match:
            self.captured_on = match.group('value').strip()

    def _parse_failure(self, line_num: int, line: str):
        self.parse_errors += 1
        if self.strict:
            raise TraceParseError(f"{self.trace_file.name}:{line_num}: unparseable event header: {line[:100]}")
        logger.debug(f"Failed to parse line {line_num}: {line[:100]}")

    def _parse_frame(self, line: str) -> Frame:
        match = self.FRAME_PATTERN.match(line)
        if match is None:
            return NonFrameMarker(line.strip())
        return self._frame_from_match(match)

    @staticmethod
    def _frame_from_match(match: re.Match) -> StackFrame:
        """Normalize a frame: drop symbol offsets, brackets and directories from the module."""
        symbol = match.group('symbol')
        if '+0x' in symbol:
            symbol = symbol[:symbol.rindex('+0x')]
        module = match.group('module').strip().strip('[]')
        module = module.rsplit('/', 1)[-1] or 'unknown'
        return StackFrame(match.group('address'), module, symbol)

    def _build_event(self, header: re.Match, frames: List[Frame]) -> RawEvent:
        tid = int(header.group('tid'))
        pid = int(header.group('pid')) if header.group('pid') is not None else tid
        event_name = header.group('event')
        period = header.group('period')
        kind, payload = self._decode_payload(event_name, header.group('rest') or '', period)

        return RawEvent(
            kind=kind,
            timestamp=float(header.group('time')) * 1000,
            cpu=int(header.group('cpu')),
            thread_id=tid,
            process_id=pid,
            command=header.group('comm').strip(),
            event_name=event_name,
            payload=payload,
            frames=tuple(frames),
        )

    @classmethod
    def is_sample_event(cls, event_name: str) -> bool:
        """PMU/software events (cpu-clock, cs, cycles:u) rather than subsystem:tracepoint."""
        if ':' not in event_name:
            return True
        return MODIFIER_PATTERN.match(event_name.rsplit(':', 1)[-1]) is not None

    def _decode_payload(self, event_name: str, rest: str, period: Optional[str]) -> Tuple[EventKind, object]:
        """
        Decode the kind-specific payload.

        Tracepoints whose payload does not match their expected format are
        reported as OTHER rather than failing the parse.
        """
        if self.is_sample_event(event_name):
            return EventKind.SAMPLE, Sample(int(period) if period else None)

        tracepoint = event_name.rsplit(':', 1)[-1]
        if tracepoint in self.SWITCH_EVENTS:
            m = self.SWITCH_PATTERN.search(rest)
            if m:
                return EventKind.SCHEDULER_SWITCH, SchedulerSwitch(
                    prev_comm=m.group('prev_comm'), prev_tid=int(m.group('prev_tid')),
                    prev_prio=int(m.group('prev_prio')), prev_state=m.group('prev_state'),
                    next_comm=m.group('next_comm'), next_tid=int(m.group('next_tid')),
                    next_prio=int(m.group('next_prio')))
        elif tracepoint in self.EXIT_EVENTS:
            m = self.EXIT_PATTERN.search(rest)
            if m:
                return EventKind.THREAD_EXIT, ThreadExit(
                    m.group('comm'), int(m.group('tid')), int(m.group('prio')))
        elif tracepoint in self.WAKEUP_EVENTS:
            m = self.WAKEUP_PATTERN.search(rest)
            if m:
                return EventKind.WAKEUP, Wakeup(
                    m.group('comm'), int(m.group('tid')), int(m.group('prio')),
                    int(m.group('target_cpu')))
        elif tracepoint in self.ISSUE_EVENTS:
            m = self.ISSUE_PATTERN.search(rest)
            if m:
                return EventKind.BLOCK_REQUEST_ISSUE, BlockRequest(
                    device=int(m.group('device')), device_minor=int(m.group('minor')),
                    flags=m.group('flags'), length=int(m.group('length')),
                    sector=int(m.group('sector')), sector_length=int(m.group('sector_length')))
        elif tracepoint in self.COMPLETE_EVENTS:
            m = self.COMPLETE_PATTERN.search(rest)
            if m:
                return EventKind.BLOCK_REQUEST_COMPLETE, BlockRequest(
                    device=int(m.group('device')), device_minor=int(m.group('minor')),
                    flags=m.group('flags'), length=0,
                    sector=int(m.group('sector')), sector_length=int(m.group('sector_length')))
        else:
            return EventKind.OTHER, None

        self.payload_errors += 1
        logger.debug(f"Unrecognized {tracepoint} payload: {rest[:100]}")
        return EventKind.OTHER, None

    def get_time_range(self) -> tuple:
        """Get the time range (ms) of parsed events."""
        if not self.events:
            return (0.0, 0.0)
        return (self.events[0].timestamp, self.events[-1].timestamp)

    def get_statistics(self) -> Dict[str, object]:
        """Get parsing statistics."""
        kinds = Counter(event.kind.value for event in self.events)
        names = Counter(event.event_name for event in self.events)
        start, end = self.get_time_range()

        return {
            'total_lines': self.total_lines,
            'total_events': len(self.events),
            'parse_errors': self.parse_errors,
            'payload_errors': self.payload_errors,
            'event_kind_distribution': dict(kinds),
            'event_name_distribution': dict(names.most_common()),
            'time_range_ms': end - start,
            'captured_on': self.captured_on,
        }


def main():
    """Test the trace parser independently."""
    import sys

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    if len(sys.argv) < 2:
        print("Usage: python trace_parser.py <perf_script_file>")
        sys.exit(1)

    trace_file = Path(sys.argv[1])
    if not trace_file.exists():
        print(f"Error: Trace file not found: {trace_file}")
        sys.exit(1)

    parser = PerfScriptParser(trace_file)
    parser.parse()

    stats = parser.get_statistics()
    print("\nParsing Statistics:")
    print(f"  Total lines: {stats['total_lines']}")
    print(f"  Total events: {stats['total_events']}")
    print(f"  Parse errors: {stats['parse_errors']}")
    print(f"  Time range: {stats['time_range_ms']:.2f} ms")

    print("\nTop 10 Event Names:")
    for event_name, count in list(stats['event_name_distribution'].items())[:10]:
        print(f"  {event_name}: {count}")


if __name__ == "__main__":
    main()
