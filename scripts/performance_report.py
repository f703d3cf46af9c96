#!/usr/bin/env python3
"""
Performance Report
==================

Generates a performance report from a saved training-data snapshot
(LearningController.save_training_data).

Usage:
    python scripts/performance_report.py data/training_snapshot.json
    python scripts/performance_report.py data/training_snapshot.json --period 20
    python scripts/performance_report.py data/training_snapshot.json --config config.yaml

Shows:
    - Accuracy, precision, recall, F1
    - PnL and Sharpe ratio
    - Per-model accuracy
    - Accuracy by confidence band
    - Best/worst periods
"""

import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import argparse
from typing import Any, Dict, List, Optional

from learning_loop.core.config import Config
from learning_loop.core.logger import get_logger, setup_from_config
from learning_loop.core.types import PredictionRecord, ScoredOutcome
from learning_loop.learning.performance_tracker import PerformanceTracker
from learning_loop.utils import read_json

logger = get_logger("scripts.performance_report")


def build_tracker(predictions: List[Dict[str, Any]]) -> PerformanceTracker:
    """Replay evaluated predictions from a snapshot into a fresh tracker."""
    records = [PredictionRecord.from_dict(p) for p in predictions]
    evaluated = sorted((r for r in records if r.is_evaluated), key=lambda r: r.evaluated_at)

    tracker = PerformanceTracker(max_history_size=max(len(evaluated), 1))

    for record in evaluated:
        tracker.add_result(ScoredOutcome(
            timestamp=record.evaluated_at,
            is_correct=record.is_correct,
            pnl=record.pnl,
            pnl_percentage=record.pnl_percentage,
            confidence=record.confidence,
            prediction=record.prediction,
            actual=record.actual_direction,
        ))
        for sub in record.model_predictions:
            tracker.add_model_result(ScoredOutcome(
                timestamp=record.evaluated_at,
                is_correct=sub.direction == record.actual_direction,
                pnl=record.pnl,
                pnl_percentage=record.pnl_percentage,
                confidence=sub.confidence,
                prediction=sub.direction,
                actual=record.actual_direction,
            ), model_id=sub.model_id)

    return tracker


def build_report(snapshot: Dict[str, Any], period_size: int = 50) -> str:
    """Render a snapshot as a plain-text report."""
    predictions = snapshot.get('predictions', [])
    tracker = build_tracker(predictions)
    overall = tracker.overall()

    lines = [
        "=" * 50,
        "LEARNING LOOP PERFORMANCE REPORT",
        "=" * 50,
        f"Predictions: {len(predictions)} ({overall.total_predictions} evaluated)",
        f"Accuracy:    {overall.accuracy:.1%} ({overall.correct_predictions}/{overall.total_predictions})",
        f"Precision:   {overall.precision:.1%}",
        f"Recall:      {overall.recall:.1%}",
        f"F1 Score:    {overall.f1_score:.3f}",
        f"Win Rate:    {overall.win_rate:.1%}",
        f"Avg PnL:     {overall.avg_pnl_percentage:+.2f}%",
        f"Sharpe:      {overall.sharpe_ratio:.2f}",
    ]

    by_model = tracker.by_model()
    if by_model:
        lines.append("")
        lines.append("--- By Model ---")
        for model_id, metrics in sorted(by_model.items()):
            lines.append(
                f"{model_id:<12} {metrics.accuracy:.1%} over {metrics.total_predictions} predictions"
            )

    lines.append("")
    lines.append("--- By Confidence ---")
    for band, info in tracker.confidence_bands().items():
        lines.append(f"{band:<8} (>= {info['threshold']:.0%}) {info['accuracy']:.1%} [{info['count']}]")

    periods = tracker.best_and_worst_periods(period_size)
    if overall.total_predictions >= period_size:
        lines.append("")
        lines.append(f"--- Periods of {period_size} ---")
        for label in ('best', 'worst'):
            p = periods[label]
            lines.append(
                f"{label.title():<6} #{p['start_index']}-{p['end_index']}: {p['accuracy']:.1%}"
            )

    config = snapshot.get('config')
    if config:
        lines.append("")
        lines.append(
            f"Config: trigger={config.get('trigger_mode')}, "
            f"threshold={config.get('performance_threshold')}, "
            f"models={config.get('model_ids')}"
        )

    return "\n".join(lines)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description='Generate learning-loop performance report')
    parser.add_argument(
        'snapshot',
        help='Path to a training-data snapshot JSON'
    )
    parser.add_argument(
        '--period',
        type=int,
        default=50,
        help='Period size for best/worst analysis'
    )
    parser.add_argument(
        '--config',
        default='config.yaml',
        help='Config file whose logging section is applied'
    )

    args = parser.parse_args(argv)

    try:
        config = Config.load(args.config)
    except (ValueError, TypeError) as e:
        parser.error(f"Invalid config {args.config}: {e}")

    setup_from_config(config.logging)

    path = Path(args.snapshot)
    if not path.exists():
        logger.error(f"Snapshot not found: {path}")
        return 1

    try:
        snapshot = read_json(path)
        report = build_report(snapshot, period_size=args.period)
    except ValueError as e:
        logger.error(f"Invalid snapshot {path}: {e}")
        return 1

    logger.info(f"Report built from {path} ({len(snapshot.get('predictions', []))} predictions)")
    print(report)
    return 0


if __name__ == "__main__":
    sys.exit(main())
