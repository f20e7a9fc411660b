#!/usr/bin/env python3
"""
Analysis configuration: event names, thresholds and defaults used by the
correlators, with optional overrides from a JSON file.
"""

import json
import logging
from pathlib import Path
from dataclasses import dataclass, field, asdict, fields
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class AnalysisConfig:
    """Settings for one analysis session."""
    cpu_sample_event_names: List[str] = field(default_factory=lambda: ["cpu-clock"])
    context_switch_event_names: List[str] = field(default_factory=lambda: ["context-switches", "cs"])
    inlined_module: str = "inlined"
    default_sector_size: int = 512
    outlier_low_ratio: float = 0.5
    outlier_high_ratio: float = 1.3
    isr_marker_frame: str = "kernel.kallsyms!irq_exit"
    idle_symbol: str = "native_safe_halt"
    strict_parsing: bool = False
    max_workers: int = 1
    progress_interval: int = 10000

    def __post_init__(self):
        self.validate()

    def validate(self):
        if self.default_sector_size <= 0:
            raise ValueError(f"default_sector_size must be positive, got {self.default_sector_size}")
        if not 0 < self.outlier_low_ratio < 1 < self.outlier_high_ratio:
            raise ValueError("Outlier ratios must satisfy 0 < outlier_low_ratio < 1 < outlier_high_ratio")
        if self.max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {self.max_workers}")
        if self.progress_interval < 1:
            raise ValueError(f"progress_interval must be at least 1, got {self.progress_interval}")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalysisConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {', '.join(unknown)}")
        return cls(**{k: v for k, v in data.items() if k in known})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def load_config(config_file: Optional[Path] = None) -> AnalysisConfig:
    """
    Load analysis settings.

    Args:
        config_file: JSON file with overrides; defaults are used when None

    Returns:
        Validated AnalysisConfig
    """
    if config_file is None:
        return AnalysisConfig()

    config_file = Path(config_file)
    if not config_file.exists():
        raise FileNotFoundError(f"Config file not found: {config_file}")

    with open(config_file, 'r') as f:
        data = json.load(f)

    config = AnalysisConfig.from_dict(data)
    logger.info(f"Loaded analysis config from {config_file.name}")
    return config
