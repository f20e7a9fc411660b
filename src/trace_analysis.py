"""
Trace Analysis Module
=====================
Runs one complete analysis pass over a trace.

Pass stages:
1. Stack annotation - Deduplicate every event's call stack
2. CPU sampling - Weight and categorize CPU samples
3. Context switches - Reconstruct run/wait/ready intervals
4. Disk I/O - Match block requests and compute queue depth

Each trace gets its own StackCache and correlator state, so several traces
can be analyzed in parallel processes without sharing anything.

Author: Perf Trace Analytics Project
Date: October 17, 2026
"""

import logging
import threading
import concurrent.futures
from pathlib import Path
from datetime import datetime
from functools import partial
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from analysis_config import AnalysisConfig
from context_switch import ContextSwitchCorrelator, ContextSwitchRecord
from cpu_sampling import CpuSample, CpuSamplingBuilder
from disk_io import DiskIoCorrelator, DiskIoRecord
from stack_cache import StackCache
from trace_clock import discover_trace_start, default_trace_start, to_absolute
from trace_events import RawEvent
from trace_parser import PerfScriptParser

logger = logging.getLogger(__name__)


class AnalysisCancelled(Exception):
    """The analysis pass was abandoned; its partial results must be discarded."""


@dataclass
class TraceAnalysis:
    """Derived records of one trace."""
    trace_file: Optional[Path]
    trace_start: datetime
    first_timestamp: float
    last_timestamp: float
    event_count: int
    stack_cache: StackCache
    context_switches: Tuple[ContextSwitchRecord, ...]
    disk_ios: Tuple[DiskIoRecord, ...]
    sample_weights: Dict[int, float]
    cpu_samples: Tuple[CpuSample, ...]
    summary: Dict[str, object] = field(default_factory=dict)

    @property
    def duration_ms(self) -> float:
        return self.last_timestamp - self.first_timestamp

    def resolve_stack(self, handle: Optional[int]) -> Tuple[str, ...]:
        return self.stack_cache.stack(handle)

    def absolute_time(self, relative_ms: float) -> datetime:
        return to_absolute(self.trace_start, relative_ms)


class TraceAnalyzer:
    """Analyzes traces with one configuration; a fresh state is built for every trace."""

    def __init__(self, config: Optional[AnalysisConfig] = None):
        self.config = config or AnalysisConfig()
        self._cancelled = threading.Event()

    def cancel(self):
        """Abandon the running pass at its next checkpoint."""
        self._cancelled.set()

    def _checkpoint(self, stage: str):
        if self._cancelled.is_set():
            logger.warning(f"Analysis cancelled during {stage}")
            raise AnalysisCancelled(f"Analysis cancelled during {stage}")

    def annotate(self, events: Iterable[RawEvent], stack_cache: StackCache) -> List[RawEvent]:
        """
        Replace each event's frame list by its shared stack handle.

        Args:
            events: Parsed events in trace order
            stack_cache: Cache owned by this pass

        Returns:
            Annotated events
        """
        annotated = []
        for count, event in enumerate(events, 1):
            annotated.append(replace(event, stack=stack_cache.lookup(event.frames), frames=()))
            if count % self.config.progress_interval == 0:
                logger.debug(f"Annotated {count} events, {len(stack_cache)} stack nodes")
                self._checkpoint("stack annotation")
        logger.info(f"Annotated {len(annotated)} events with {stack_cache.leaf_count()} unique leaf stacks "
                    f"({len(stack_cache)} nodes)")
        return annotated

    def analyze_events(self, events: Sequence[RawEvent], trace_start: Optional[datetime] = None,
                       trace_file: Optional[Path] = None) -> TraceAnalysis:
        """
        Run all correlators over a fully parsed event sequence.

        Args:
            events: Events in trace order
            trace_start: Wall-clock anchor of the trace (defaults to today UTC)
            trace_file: Source file, for reporting

        Returns:
            TraceAnalysis with every derived record sequence
        """
        config = self.config
        stack_cache = StackCache(config.inlined_module)
        events = self.annotate(events, stack_cache)
        self._checkpoint("stack annotation")

        sampling = CpuSamplingBuilder(
            events, stack_cache,
            sample_event_names=tuple(config.cpu_sample_event_names),
            isr_marker_frame=config.isr_marker_frame,
            idle_symbol=config.idle_symbol,
            low_ratio=config.outlier_low_ratio,
            high_ratio=config.outlier_high_ratio,
        )
        cpu_samples = sampling.build()
        self._checkpoint("CPU sampling")

        switches = ContextSwitchCorrelator(events, tuple(config.context_switch_event_names))
        context_switches = switches.correlate()
        self._checkpoint("context switch correlation")

        disk = DiskIoCorrelator(events, config.default_sector_size)
        disk_ios = disk.correlate()
        self._checkpoint("disk I/O correlation")

        analysis = TraceAnalysis(
            trace_file=trace_file,
            trace_start=trace_start or default_trace_start(),
            first_timestamp=events[0].timestamp if events else 0.0,
            last_timestamp=events[-1].timestamp if events else 0.0,
            event_count=len(events),
            stack_cache=stack_cache,
            context_switches=tuple(context_switches),
            disk_ios=tuple(disk_ios),
            sample_weights=sampling.weights,
            cpu_samples=tuple(cpu_samples),
        )
        analysis.summary = {
            'events': len(events),
            'duration_ms': analysis.duration_ms,
            'trace_start': analysis.trace_start.isoformat(),
            'stacks': stack_cache.get_statistics(),
            'cpu_sampling': sampling.summarize(),
            'context_switches': switches.summarize(),
            'disk_io': disk.summarize(),
        }
        return analysis

    def analyze_file(self, trace_file: Path) -> TraceAnalysis:
        """
        Parse a perf script file completely, then analyze it.

        Raises:
            TraceParseError: The trace could not be parsed; nothing is correlated
        """
        trace_file = Path(trace_file)
        parser = PerfScriptParser(trace_file, strict=self.config.strict_parsing)
        events = parser.parse()
        self._checkpoint("parsing")

        trace_start = discover_trace_start(trace_file, parser.captured_on)
        analysis = self.analyze_events(events, trace_start, trace_file)
        analysis.summary['parsing'] = parser.get_statistics()
        return analysis


def _analyze_one(trace_file: Path, config: AnalysisConfig) -> TraceAnalysis:
    return TraceAnalyzer(config).analyze_file(trace_file)


def analyze_files(trace_files: Sequence[Path], config: Optional[AnalysisConfig] = None) -> Dict[Path, TraceAnalysis]:
    """
    Analyze several traces independently.

    With `config.max_workers > 1` the traces are analyzed in worker
    processes; each owns its own stack cache and correlator state.

    Returns:
        Mapping of trace file to its analysis, in input order; a file
        given more than once is analyzed once
    """
    config = config or AnalysisConfig()
    unique_files = list(dict.fromkeys(Path(p) for p in trace_files))
    if len(unique_files) < len(trace_files):
        logger.warning(f"Ignoring {len(trace_files) - len(unique_files)} duplicate trace file(s)")
    trace_files = unique_files
    worker_func = partial(_analyze_one, config=config)

    if config.max_workers > 1 and len(trace_files) > 1:
        num_workers = min(config.max_workers, len(trace_files))
        logger.info(f"Analyzing {len(trace_files)} traces with {num_workers} worker processes")
        with concurrent.futures.ProcessPoolExecutor(max_workers=num_workers) as executor:
            results = list(executor.map(worker_func, trace_files))
    else:
        results = [worker_func(trace_file) for trace_file in trace_files]

    return dict(zip(trace_files, results))
