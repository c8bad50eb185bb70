"""Validate result files against the benchmark schema.

Each argument may be a file (single-run or merged document, detected by
shape) or a directory, in which case every ``results.*`` file below it is
checked.

Usage:
    python -m scripts.validate_results results/runs/docker-alpine-arm64-ruby-3.3/data/results.yaml
    python -m scripts.validate_results results/ --pattern "**/*.yaml"

Output:
    One line per file on stdout.
    Exit code 0 if every file is valid, 1 otherwise, 2 on configuration
    errors.
"""

import argparse
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from core.errors import ConfigurationError, ValidationError
from core.schema_validator import DirectoryValidationReport, SchemaValidator
from infra.result_store import ResultStoreConfig

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger: logging.Logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> int:
    """Validate every argument and return the process exit code."""
    load_dotenv()
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Validate benchmark result files",
    )
    parser.add_argument("paths", nargs="+", type=Path, metavar="PATH")
    parser.add_argument("--schema", type=Path, default=None, help="Schema file")
    parser.add_argument(
        "--pattern",
        default="**/results.*",
        help="Glob used inside directories (default: %(default)s)",
    )
    args: argparse.Namespace = parser.parse_args(argv)

    try:
        validator: SchemaValidator = SchemaValidator(
            args.schema or ResultStoreConfig.from_env().schema_path
        )
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    failures: int = 0
    for path in args.paths:
        if path.is_dir():
            try:
                report: DirectoryValidationReport = validator.validate_directory(
                    path, pattern=args.pattern,
                )
            except ValidationError as exc:
                print(f"INVALID {path}\n{exc}")
                failures += 1
                continue
            for valid in report.valid_files:
                print(f"OK      {valid}")
            for invalid in report.invalid_files:
                print(f"INVALID {invalid}\n{report.errors[invalid]}")
            failures += len(report.invalid_files)
            continue

        try:
            kind: str = validator.validate_file(path)
        except ValidationError as exc:
            print(f"INVALID {path}\n{exc}")
            failures += 1
        else:
            print(f"OK      {path} ({kind})")

    if failures:
        print(f"{failures} invalid file(s)", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
