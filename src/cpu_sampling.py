"""
CPU sampling records: one row per CPU sample with its category and weight.
"""

import logging
from collections import Counter
from dataclasses import dataclass, asdict
from typing import Dict, List, Optional, Sequence, Tuple

from sample_weights import SampleWeightEstimator
from stack_cache import StackCache
from trace_events import RawEvent

logger = logging.getLogger(__name__)

CATEGORY_REGULAR = "Regular CPU"
CATEGORY_ISR = "ISR"
CATEGORY_IDLE = "Idle"


@dataclass(frozen=True)
class CpuSample:
    index: int
    timestamp: float
    relative_timestamp: float
    cpu: int
    thread_id: int
    process_id: int
    command: str
    category: str
    weight: float
    stack: Optional[int]
    address: str
    function: str
    module: str

    @property
    def start_timestamp(self) -> float:
        """Relative time the sample's weight starts at."""
        return self.relative_timestamp - self.weight

    @property
    def process_label(self) -> str:
        return f"{self.command} ({self.process_id})"

    def to_dict(self):
        data = asdict(self)
        data['start_timestamp'] = self.start_timestamp
        return data


class CpuSamplingBuilder:
    """Selects CPU samples from a trace and weights and categorizes them."""

    def __init__(self, events: Sequence[RawEvent], stack_cache: StackCache,
                 sample_event_names: Tuple[str, ...] = ("cpu-clock",),
                 isr_marker_frame: str = "kernel.kallsyms!irq_exit",
                 idle_symbol: str = "native_safe_halt",
                 low_ratio: float = 0.5, high_ratio: float = 1.3):
        self.events = events
        self.stack_cache = stack_cache
        self.sample_event_names = tuple(sample_event_names)
        self.isr_marker_frame = isr_marker_frame
        self.idle_symbol = idle_symbol
        self.low_ratio = low_ratio
        self.high_ratio = high_ratio
        self.first_timestamp = events[0].timestamp if events else 0.0
        self.weights: Dict[int, float] = {}
        self.samples: List[CpuSample] = []

    def categorize(self, handle: Optional[int]) -> str:
        if self.isr_marker_frame in self.stack_cache.stack(handle):
            return CATEGORY_ISR
        if self.stack_cache.frame(handle).symbol == self.idle_symbol:
            return CATEGORY_IDLE
        return CATEGORY_REGULAR

    def build(self) -> List[CpuSample]:
        profile_events = [e for e in self.events if e.base_event_name in self.sample_event_names]
        estimator = SampleWeightEstimator(profile_events, self.low_ratio, self.high_ratio)
        self.weights = estimator.estimate()

        samples = []
        for index, event in enumerate(profile_events):
            leaf = self.stack_cache.frame(event.stack)
            samples.append(CpuSample(
                index=index,
                timestamp=event.timestamp,
                relative_timestamp=event.timestamp - self.first_timestamp,
                cpu=event.cpu,
                thread_id=event.thread_id,
                process_id=event.process_id,
                command=event.command,
                category=self.categorize(event.stack),
                weight=self.weights[index],
                stack=event.stack,
                address=leaf.address,
                function=leaf.symbol,
                module=leaf.module,
            ))

        self.samples = samples
        logger.info(f"Built {len(samples)} CPU samples")
        return samples

    def utilization_by_category(self) -> Dict[str, float]:
        totals = Counter()
        for sample in self.samples:
            totals[sample.category] += sample.weight
        return dict(totals)

    def utilization_by_process(self) -> Dict[str, float]:
        totals = Counter()
        for sample in self.samples:
            totals[sample.process_label] += sample.weight
        return dict(totals.most_common())

    def summarize(self) -> Dict[str, object]:
        return {
            'total_samples': len(self.samples),
            'cpus': len({s.cpu for s in self.samples}),
            'weighted_ms_by_category': self.utilization_by_category(),
            'weighted_ms_by_process': self.utilization_by_process(),
        }
