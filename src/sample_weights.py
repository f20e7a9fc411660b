"""
Sample Weight Estimator
=======================
Assigns each CPU sample the time span it stands for on its CPU.

A sample's weight is the gap to the next sample on the same CPU. The last
sample of every CPU has no successor and receives the median weight, and
weights far from the median (sampling jitter, virtualized timers) are
replaced by the median as well.
"""

import logging
from typing import Dict, Iterable, List, Sequence, Tuple

from trace_events import RawEvent

logger = logging.getLogger(__name__)


def median(values: Iterable[float]) -> float:
    """Median of the values; the two middle elements are averaged for even counts."""
    ordered = sorted(values)
    count = len(ordered)
    if count == 0:
        return 0.0
    half = count // 2
    if count % 2 == 0:
        return (ordered[half] + ordered[half - 1]) / 2
    return ordered[half]


class SampleWeightEstimator:
    """Computes per-sample weights (ms) for an ordered list of CPU samples."""

    def __init__(self, samples: Sequence[RawEvent],
                 low_ratio: float = 0.5, high_ratio: float = 1.3):
        """
        Args:
            samples: CPU-sample events in trace order
            low_ratio: Weights at or below median * low_ratio are outliers
            high_ratio: Weights at or above median * high_ratio are outliers
        """
        self.samples = samples
        self.low_ratio = low_ratio
        self.high_ratio = high_ratio
        self.median_weight = 0.0
        self.outliers_replaced = 0

    def estimate(self) -> Dict[int, float]:
        """
        Compute the weight of every sample.

        Returns:
            Mapping of sample index (position in `samples`) to weight in ms
        """
        weights: Dict[int, float] = {}
        last_per_cpu: Dict[int, Tuple[int, float]] = {}

        for index, sample in enumerate(self.samples):
            previous = last_per_cpu.get(sample.cpu)
            if previous is not None:
                prev_index, prev_time = previous
                weights[prev_index] = sample.timestamp - prev_time
            last_per_cpu[sample.cpu] = (index, sample.timestamp)

        if not weights and self.samples:
            logger.warning("No CPU has more than one sample; trailing weights default to 0")
        self.median_weight = median(weights.values())

        for prev_index, _ in last_per_cpu.values():
            weights[prev_index] = self.median_weight

        low = self.median_weight * self.low_ratio
        high = self.median_weight * self.high_ratio
        unusual: List[int] = [i for i, w in weights.items() if w <= low or w >= high]
        for index in unusual:
            weights[index] = self.median_weight
        self.outliers_replaced = len(unusual)

        logger.info(f"Weighted {len(weights)} samples on {len(last_per_cpu)} CPUs "
                    f"(median {self.median_weight:.4f} ms, {self.outliers_replaced} adjusted)")
        return dict(sorted(weights.items()))
