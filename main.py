#!/usr/bin/env python3
"""
Main Pipeline Orchestrator
===========================
Orchestrates the perf-trace-to-records pipeline.

Pipeline stages:
1. Configuration - Load analysis settings
2. Trace Analysis - Parse, deduplicate stacks and correlate each trace
3. Export - Write derived records and summaries as JSON

Author: Perf Trace Analytics Project
Date: October 17, 2026
"""

import sys
import logging
import argparse
import json
from pathlib import Path
from collections import Counter
from datetime import datetime
from typing import Dict, List, Optional

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent / 'src'))

from analysis_config import AnalysisConfig, load_config
from trace_analysis import TraceAnalysis, analyze_files


class PipelineOrchestrator:
    """Orchestrates analysis and export of one or more perf script traces."""

    def __init__(self, trace_files: List[Path], output_dir: Path,
                 config: Optional[AnalysisConfig] = None):
        """
        Initialize pipeline orchestrator.

        Args:
            trace_files: perf script text files to analyze
            output_dir: Directory for output files
            config: Analysis settings
        """
        self.trace_files = [Path(p) for p in trace_files]
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.config = config or AnalysisConfig()

        self.analyses: Dict[Path, TraceAnalysis] = {}
        self.pipeline_stats = {
            'start_time': None,
            'end_time': None,
            'stages': {}
        }

        logging.info("=" * 70)
        logging.info("Pipeline Orchestrator Initialized")
        logging.info("=" * 70)
        logging.info(f"Traces: {', '.join(p.name for p in self.trace_files)}")
        logging.info(f"Output directory: {self.output_dir}")

    def run_complete_pipeline(self):
        """Execute the complete pipeline."""
        self.pipeline_stats['start_time'] = datetime.now()
        logging.info("\n" + "=" * 70)
        logging.info("STARTING COMPLETE PIPELINE")
        logging.info("=" * 70 + "\n")

        try:
            self._stage_analyze()
            self._stage_export()
            self._finalize_pipeline()

        except Exception as e:
            logging.error(f"Pipeline failed: {e}", exc_info=True)
            raise

    def _stage_analyze(self):
        """Stage 1: Parse and correlate every trace."""
        logging.info("\n" + "=" * 70)
        logging.info("STAGE 1: TRACE ANALYSIS")
        logging.info("=" * 70)

        stage_start = datetime.now()
        self.analyses = analyze_files(self.trace_files, self.config)

        for trace_file, analysis in self.analyses.items():
            summary = analysis.summary
            logging.info(f"\nResults for {trace_file.name}:")
            logging.info(f"  Events: {analysis.event_count:,}")
            logging.info(f"  Unique stacks: {summary['stacks']['leaves']:,}")
            logging.info(f"  Context switches: {len(analysis.context_switches):,}")
            logging.info(f"  Disk I/Os: {len(analysis.disk_ios):,} "
                         f"({summary['disk_io']['matched']:,} matched)")
            logging.info(f"  CPU samples: {len(analysis.cpu_samples):,}")

        stage_duration = (datetime.now() - stage_start).total_seconds()
        self.pipeline_stats['stages']['analyze'] = {
            'duration_seconds': stage_duration,
            'traces': len(self.analyses),
            'events': sum(a.event_count for a in self.analyses.values())
        }
        logging.info(f"\nStage completed in {stage_duration:.2f} seconds")

    def _stage_export(self):
        """Stage 2: Write derived records as JSON."""
        logging.info("\n" + "=" * 70)
        logging.info("STAGE 2: EXPORT")
        logging.info("=" * 70)

        stage_start = datetime.now()
        trace_dirs = output_dir_names(list(self.analyses))
        for trace_file, analysis in self.analyses.items():
            save_analysis(analysis, self.output_dir / trace_dirs[trace_file])

        stage_duration = (datetime.now() - stage_start).total_seconds()
        self.pipeline_stats['stages']['export'] = {
            'duration_seconds': stage_duration
        }
        logging.info(f"\nStage completed in {stage_duration:.2f} seconds")

    def _finalize_pipeline(self):
        """Finalize pipeline and save summary."""
        self.pipeline_stats['end_time'] = datetime.now()
        total_duration = (self.pipeline_stats['end_time'] -
                          self.pipeline_stats['start_time']).total_seconds()

        logging.info("\n" + "=" * 70)
        logging.info("PIPELINE COMPLETE")
        logging.info("=" * 70)
        logging.info(f"\nTotal execution time: {total_duration:.2f} seconds")
        logging.info("\nStage Breakdown:")
        for stage, stats in self.pipeline_stats['stages'].items():
            duration = stats['duration_seconds']
            percentage = (duration / total_duration * 100) if total_duration > 0 else 0
            logging.info(f"  {stage.upper()}: {duration:.2f}s ({percentage:.1f}%)")

        summary_file = self.output_dir / "pipeline_summary.json"
        with open(summary_file, 'w') as f:
            json.dump({
                'start_time': self.pipeline_stats['start_time'].isoformat(),
                'end_time': self.pipeline_stats['end_time'].isoformat(),
                'total_duration_seconds': total_duration,
                'stages': self.pipeline_stats['stages'],
                'config': self.config.to_dict(),
                'traces': [str(p) for p in self.trace_files]
            }, f, indent=2)
        logging.info(f"\nPipeline summary saved to: {summary_file}")


def output_dir_names(trace_files: List[Path]) -> Dict[Path, str]:
    """
    Pick one output directory name per trace.

    The file stem is used when it is unique; traces sharing a stem
    (a/perf.data.txt, b/perf.data.txt) are prefixed with their parent
    directory name, then numbered if that still collides.
    """
    stems = Counter(p.stem for p in trace_files)
    names: Dict[Path, str] = {}
    used = set()
    for trace_file in trace_files:
        name = trace_file.stem
        if stems[name] > 1 and trace_file.parent.name:
            name = f"{trace_file.parent.name}_{name}"
        candidate, index = name, 1
        while candidate in used:
            index += 1
            candidate = f"{name}_{index}"
        used.add(candidate)
        names[trace_file] = candidate
    return names


def save_analysis(analysis: TraceAnalysis, output_dir: Path):
    """
    Save the derived records of one trace with stacks resolved to names.

    Args:
        analysis: Analysis of one trace
        output_dir: Directory to write the JSON files into
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    first = analysis.first_timestamp

    context_switches = []
    for record in analysis.context_switches:
        data = record.to_dict()
        data['swap_in_datetime'] = analysis.absolute_time(record.swap_in_timestamp).isoformat()
        data['prev_swap_out_stack'] = list(analysis.resolve_stack(record.prev_swap_out_stack))
        data['ready_stack'] = list(analysis.resolve_stack(record.ready_stack))
        context_switches.append(data)

    disk_ios = []
    for record in analysis.disk_ios:
        data = record.to_dict(first)
        data['start_datetime'] = analysis.absolute_time(data['start_timestamp']).isoformat()
        data['init_stack'] = list(analysis.resolve_stack(record.init_stack()))
        data['complete_stack'] = list(analysis.resolve_stack(record.complete_stack()))
        disk_ios.append(data)

    cpu_samples = []
    for sample in analysis.cpu_samples:
        data = sample.to_dict()
        data['datetime'] = analysis.absolute_time(sample.relative_timestamp).isoformat()
        data['stack'] = list(analysis.resolve_stack(sample.stack))
        cpu_samples.append(data)

    outputs = {
        'context_switches.json': context_switches,
        'disk_io.json': disk_ios,
        'cpu_samples.json': cpu_samples,
        'analysis_summary.json': analysis.summary,
    }
    for file_name, payload in outputs.items():
        with open(output_dir / file_name, 'w') as f:
            json.dump(payload, f, indent=2)

    logging.info(f"Saved {len(context_switches)} context switches, {len(disk_ios)} disk I/Os "
                 f"and {len(cpu_samples)} CPU samples to {output_dir}")


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    log_level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=log_level,
        format='%(asctime)s [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler('pipeline.log', mode='w')
        ]
    )


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='Perf Trace Analytics - context switches, disk I/O and CPU sample weights',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Analyze one trace (perf script > perf.data.txt)
  python3 main.py traces/perf.data.txt

  # Analyze several traces in parallel
  python3 main.py traces/*.txt --workers 4

  # Use custom settings
  python3 main.py traces/perf.data.txt --config analysis_config.json

  # Enable verbose logging
  python3 main.py traces/perf.data.txt --verbose
        """
    )

    parser.add_argument(
        'traces',
        type=Path,
        nargs='+',
        help='perf script text files to analyze'
    )

    parser.add_argument(
        '--output',
        type=Path,
        default=Path('outputs'),
        help='Output directory for derived records (default: outputs)'
    )

    parser.add_argument(
        '--config',
        type=Path,
        default=None,
        help='JSON file overriding analysis settings'
    )

    parser.add_argument(
        '--workers',
        type=int,
        default=None,
        help='Number of traces analyzed in parallel (default: from config, 1)'
    )

    parser.add_argument(
        '--strict',
        action='store_true',
        help='Fail on the first malformed event header'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging'
    )

    args = parser.parse_args()

    # Setup logging
    setup_logging(args.verbose)

    missing = [p for p in args.traces if not p.exists()]
    if missing:
        logging.error(f"Trace file not found: {', '.join(str(p) for p in missing)}")
        sys.exit(1)

    try:
        config = load_config(args.config)
        if args.workers is not None:
            config.max_workers = args.workers
        if args.strict:
            config.strict_parsing = True
        config.validate()

        orchestrator = PipelineOrchestrator(
            trace_files=args.traces,
            output_dir=args.output,
            config=config
        )

        orchestrator.run_complete_pipeline()

        logging.info("\nPipeline execution successful!")
        sys.exit(0)

    except KeyboardInterrupt:
        logging.warning("\nPipeline interrupted by user")
        sys.exit(1)
    except Exception as e:
        logging.error(f"\nPipeline failed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
