"""Example: store two runs, merge them into a run set and print a summary.

This script demonstrates the full aggregation pipeline:

    results documents → ResultStore.save_run → RunSetManager.create
                                                  ↓
                                    MergedBenchmarkResult → table / CSV

Two synthetic single-run documents are generated (Ruby 3.2.4 and 3.3.8 on
``aarch64-linux``), each holding ``parsing.small.json`` figures for two
serializers.

Usage:
    python -m examples.example_merge
    python -m examples.example_merge --results-dir /tmp/serialbench --csv
"""

import argparse
import logging
import tempfile
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from core.analysis import format_comparison_table, merged_to_csv
from core.performance import DataSize, Format, Operation
from core.platform import Platform
from core.run import Run
from infra.result_store import ResultStore, ResultStoreConfig
from infra.run_set_manager import RunSetManager

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger: logging.Logger = logging.getLogger(__name__)


def _timing(time_per_iteration: float, count: int = 20) -> dict[str, Any]:
    return {
        "time_per_iterations": time_per_iteration * count,
        "time_per_iteration": time_per_iteration,
        "iterations_per_second": 1.0 / time_per_iteration,
        "iterations_count": count,
    }


def synthetic_document(ruby_version: str, oj_tpi: float, json_tpi: float) -> dict[str, Any]:
    """Single-run document as an execution driver would write it."""
    timestamp: str = "2025-06-13T14:07:11+00:00"
    return {
        "ruby_version": ruby_version,
        "ruby_platform": "aarch64-linux",
        "timestamp": timestamp,
        "environment": {
            "ruby_version": ruby_version,
            "ruby_platform": "aarch64-linux",
            "serializer_versions": {"oj": "3.16.11", "json": "2.12.2"},
            "timestamp": timestamp,
        },
        "serializers": [
            {"format": "json", "name": "oj", "version": "3.16.11"},
            {"format": "json", "name": "json", "version": "2.12.2"},
        ],
        "parsing": {"small": {"json": {"oj": _timing(oj_tpi), "json": _timing(json_tpi)}}},
    }


def main() -> None:
    """Run the merge example."""
    load_dotenv()

    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Store two synthetic runs and merge them into a run set",
    )
    parser.add_argument(
        "--results-dir",
        type=Path,
        default=None,
        help="Results root (default: a temporary directory)",
    )
    parser.add_argument("--csv", action="store_true", help="Also print the merged CSV")
    args: argparse.Namespace = parser.parse_args()

    with tempfile.TemporaryDirectory() as tmp:
        base: Path = args.results_dir or Path(tmp)
        store: ResultStore = ResultStore(ResultStoreConfig(base_path=base))
        manager: RunSetManager = RunSetManager(store)

        runs: list[Run] = []
        for version, oj_tpi, json_tpi in (("3.2.4", 0.001, 0.0016), ("3.3.8", 0.0008, 0.0012)):
            platform: Platform = Platform.asdf(ruby_version=version, os="linux", arch="arm64")
            run: Run = Run.create(
                platform.platform_string,
                synthetic_document(version, oj_tpi, json_tpi),
                metadata={"tags": ["example"]},
            )
            runs.append(store.save_run(run))
            logger.info("Stored run %s", run.platform_string)

        run_set = manager.create("example", [r.platform_string for r in runs])
        logger.info("Created run set %s", run_set.dir_name)

        merged = run_set.merged_result
        if merged is None:
            logger.error("Run set has no merged result")
            return

        print(format_comparison_table(merged, Operation.PARSING, DataSize.SMALL, Format.JSON))
        if args.csv:
            print(merged_to_csv(merged))

        logger.info("=" * 60)
        logger.info("Environments: %s", ", ".join(sorted(merged.environments)))
        logger.info("Ruby versions: %s", ", ".join(merged.metadata.ruby_versions))
        logger.info("Store valid: %s", store.is_valid())
        logger.info("=" * 60)


if __name__ == "__main__":
    main()
