"""Merge per-run benchmark results from several directories.

Locates ``results.yaml`` / ``results.yml`` / ``results.json`` under each
input directory, merges them by environment and writes
``merged_results.yaml`` and ``merged_results.json`` into the output
directory.

Usage:
    python -m scripts.merge_results results/runs/a results/runs/b out/
    python -m scripts.merge_results --schema my_schema.yaml in1 in2 out/

Output:
    Path of the merged YAML file on stdout.
    Exit code 0 on success, 1 if nothing could be merged or the merged
    output is invalid, 2 on configuration errors.
"""

import argparse
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from core.errors import ConfigurationError, NoResultsFoundError, ValidationError
from core.merger import MergerConfig, ResultMerger
from core.schema_validator import SchemaValidator
from infra.result_store import ResultStoreConfig

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger: logging.Logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Merge benchmark results from multiple run directories",
    )
    parser.add_argument(
        "paths",
        nargs="+",
        metavar="PATH",
        help="INPUT_DIRS... followed by OUTPUT_DIR",
    )
    parser.add_argument(
        "--schema",
        type=Path,
        default=None,
        help="Schema file (default: $SERIALBENCH_SCHEMA_PATH or packaged schema)",
    )
    parser.add_argument(
        "--no-collision-warnings",
        action="store_true",
        help="Do not warn when a later run overwrites an earlier value",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the merge and return the process exit code."""
    load_dotenv()
    parser: argparse.ArgumentParser = build_parser()
    args: argparse.Namespace = parser.parse_args(argv)

    if len(args.paths) < 2:
        parser.error("at least one INPUT_DIR and an OUTPUT_DIR are required")
    *input_dirs, output_dir = args.paths

    schema_path: Path | None = args.schema or ResultStoreConfig.from_env().schema_path
    try:
        merger: ResultMerger = ResultMerger(
            validator=SchemaValidator(schema_path),
            config=MergerConfig(warn_on_collision=not args.no_collision_warnings),
        )
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    try:
        output: Path = merger.merge_directories(input_dirs, output_dir)
    except NoResultsFoundError as exc:
        print(f"Merge failed: {exc}", file=sys.stderr)
        return 1
    except ValidationError as exc:
        print(f"Merged output is invalid: {exc}", file=sys.stderr)
        return 1

    if merger.skipped:
        print(
            f"Skipped {len(merger.skipped)} file(s): "
            + ", ".join(str(s.path) for s in merger.skipped),
            file=sys.stderr,
        )
    print(output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
