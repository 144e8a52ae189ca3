"""
Benchmark report: summary tables logged to the console and result files.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd

from config import RESULTS_DIR

logger = logging.getLogger(__name__)

READ_RESULTS_FILE = "read_results.csv"
READ_SUMMARY_FILE = "read_summary.csv"
WRITE_SUMMARY_FILE = "write_summary.csv"
REPORT_FILE = "benchmark_report.json"


def _num(value: Optional[float], width: int, precision: int = 2) -> str:
    if value is None or pd.isna(value):
        return f"{'N/A':>{width}}"
    return f"{value:>{width}.{precision}f}"


def _ratio(value: Optional[float]) -> str:
    return "N/A" if value is None else f"{value:.2f}x"


def log_read_table(comparisons: List[Dict[str, Any]]) -> None:
    """Print the read comparison table to the log."""
    logger.info("")
    logger.info("=" * 118)
    logger.info("READ PERFORMANCE")
    logger.info("=" * 118)

    header = (
        f"{'Search Type':<12} | {'Vanilla(ms)':>11} | {'Parade(ms)':>10} | "
        f"{'Delta(ms)':>9} | {'Ratio':>7} | {'Faster':<10} | "
        f"{'V Rel/NDCG':>13} | {'P Rel/NDCG':>13} | {'Accuracy':<10}"
    )
    logger.info(header)
    logger.info("-" * 118)

    for c in comparisons:
        row = (
            f"{c['search_type']:<12} | "
            f"{_num(c.get('vanilla_latency_ms'), 11)} | "
            f"{_num(c.get('parade_latency_ms'), 10)} | "
            f"{_num(c.get('latency_delta_ms'), 9)} | "
            f"{_ratio(c.get('speed_ratio')):>7} | "
            f"{c.get('faster') or 'N/A':<10} | "
            f"{_num(c.get('vanilla_relevance'), 6, 1)}/{_num(c.get('vanilla_ndcg'), 6, 1)} | "
            f"{_num(c.get('parade_relevance'), 6, 1)}/{_num(c.get('parade_ndcg'), 6, 1)} | "
            f"{c.get('accuracy_winner') or 'N/A':<10}"
        )
        logger.info(row)

    logger.info("=" * 118)


def log_write_table(comparisons: List[Dict[str, Any]]) -> None:
    """Print the write comparison table to the log."""
    logger.info("")
    logger.info("=" * 90)
    logger.info("WRITE PERFORMANCE (rows/sec, index rebuild in ms)")
    logger.info("=" * 90)

    header = (
        f"{'Operation':<14} | {'Vanilla':>12} | {'ParadeDB':>12} | "
        f"{'Delta':>12} | {'Ratio':>7} | {'Winner':<10}"
    )
    logger.info(header)
    logger.info("-" * 90)

    for c in comparisons:
        row = (
            f"{c['operation']:<14} | "
            f"{_num(c.get('vanilla'), 12)} | "
            f"{_num(c.get('parade'), 12)} | "
            f"{_num(c.get('delta'), 12)} | "
            f"{_ratio(c.get('speed_ratio')):>7} | "
            f"{c.get('winner') or 'N/A':<10}"
        )
        logger.info(row)

    logger.info("=" * 90)


def save_frame_csv(df: pd.DataFrame, filename: str, results_dir: str = RESULTS_DIR) -> str:
    Path(results_dir).mkdir(parents=True, exist_ok=True)
    filepath = Path(results_dir) / filename
    df.to_csv(filepath, index=False)
    logger.info(f"Results saved to {filepath}")
    return str(filepath)


def _json_ready(report: Dict[str, Any]) -> Dict[str, Any]:
    ready = {}
    for key, value in report.items():
        if isinstance(value, pd.DataFrame):
            # to_json maps NaN to null
            ready[key] = json.loads(value.to_json(orient="records"))
        else:
            ready[key] = value
    return ready


def save_report(report: Dict[str, Any], results_dir: str = RESULTS_DIR) -> Dict[str, str]:
    """
    Save the result frames as CSV and the whole report as JSON.

    Returns:
        Mapping of file kind to saved path
    """
    saved = {}
    if "read_results" in report:
        saved["read_results"] = save_frame_csv(report["read_results"], READ_RESULTS_FILE, results_dir)
    if "read_summary" in report:
        saved["read_summary"] = save_frame_csv(report["read_summary"], READ_SUMMARY_FILE, results_dir)
    if "write_results" in report:
        saved["write_summary"] = save_frame_csv(report["write_results"], WRITE_SUMMARY_FILE, results_dir)

    Path(results_dir).mkdir(parents=True, exist_ok=True)
    filepath = Path(results_dir) / REPORT_FILE
    with open(filepath, "w") as f:
        json.dump(_json_ready(report), f, indent=2, default=str)
    logger.info(f"Report saved to {filepath}")
    saved["report"] = str(filepath)
    return saved
