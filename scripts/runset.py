"""Manage stored runs and run sets.

Usage:
    python -m scripts.runset import-run docker-alpine-arm64-ruby-3.3 path/to/results.yaml --tag ci
    python -m scripts.runset runs [--tag ci]
    python -m scripts.runset create nightly docker-alpine-arm64-ruby-3.3 local-macos-arm64-ruby-3.3.8
    python -m scripts.runset list
    python -m scripts.runset add nightly-2025-06-13T140711Z asdf-linux-x86_64-ruby-3.2.4
    python -m scripts.runset remove nightly-2025-06-13T140711Z asdf-linux-x86_64-ruby-3.2.4
    python -m scripts.runset show nightly-2025-06-13T140711Z
    python -m scripts.runset validate
    python -m scripts.runset cleanup --days 30

The results directory comes from ``--results-dir``, else
``$SERIALBENCH_RESULTS_DIR`` (``.env`` is honoured), else ``results/``.

Exit code 0 on success, 1 on a failed operation, 2 on configuration errors.
"""

import argparse
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from core.analysis import format_comparison_table
from core.errors import (
    ConfigurationError,
    DuplicateResultError,
    SerialbenchError,
)
from core.performance import DataSize, Format, Operation
from core.run import Run, RunSet
from infra.result_store import ResultStore, ResultStoreConfig
from infra.run_set_manager import RunSetManager

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger: logging.Logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Manage benchmark runs and run sets",
    )
    parser.add_argument("--results-dir", type=Path, default=None, help="Results root")
    sub = parser.add_subparsers(dest="command", required=True)

    imp = sub.add_parser("import-run", help="Store a results file as a run")
    imp.add_argument("platform_string")
    imp.add_argument("results_file", type=Path)
    imp.add_argument("--tag", action="append", default=[], dest="tags")

    runs = sub.add_parser("runs", help="List stored runs")
    runs.add_argument("--tag", action="append", default=None, dest="tags")

    create = sub.add_parser("create", help="Create a run set from stored runs")
    create.add_argument("name")
    create.add_argument("platform_strings", nargs="+")
    create.add_argument("--tag", action="append", default=[], dest="tags")
    create.add_argument("--description", default=None)

    lst = sub.add_parser("list", help="List run sets")
    lst.add_argument("--tag", action="append", default=None, dest="tags")
    lst.add_argument("--limit", type=int, default=None)

    add = sub.add_parser("add", help="Add a stored run to a run set")
    add.add_argument("set_dir")
    add.add_argument("platform_string")

    remove = sub.add_parser("remove", help="Remove a run from a run set")
    remove.add_argument("set_dir")
    remove.add_argument("platform_string")

    show = sub.add_parser("show", help="Summarize a run set")
    show.add_argument("set_dir")
    show.add_argument("--operation", choices=[o.value for o in Operation], default="parsing")
    show.add_argument("--size", choices=[s.value for s in DataSize], default="small")
    show.add_argument("--format", choices=[f.value for f in Format], default="json")

    sub.add_parser("validate", help="Validate the whole results directory")

    cleanup = sub.add_parser("cleanup", help="Delete old run sets")
    cleanup.add_argument("--days", type=int, default=30)
    return parser


def _print_set(run_set: RunSet) -> None:
    print(
        f"{run_set.dir_name or run_set.name}  runs={run_set.run_count}  "
        f"ruby={','.join(run_set.ruby_versions) or '-'}  tags={','.join(run_set.tags) or '-'}"
    )


def run_command(args: argparse.Namespace, manager: RunSetManager) -> int:
    store: ResultStore = manager.store
    match args.command:
        case "import-run":
            run: Run = Run.create(
                args.platform_string,
                store.merger.load_document(args.results_file),
                metadata={"tags": args.tags},
            )
            store.save_run(run)
            print(run.path)
        case "runs":
            for stored in store.find_runs(tags=args.tags):
                print(f"{stored.platform_string}  tags={','.join(stored.tags)}")
        case "create":
            run_set: RunSet = manager.create(
                args.name,
                args.platform_strings,
                {"tags": args.tags, "description": args.description},
            )
            _print_set(run_set)
        case "list":
            for found in store.find_run_sets(tags=args.tags, limit=args.limit):
                _print_set(found)
        case "add" | "remove":
            updated: RunSet | None = (
                manager.add_run_to_set(args.set_dir, args.platform_string)
                if args.command == "add"
                else manager.remove_run_from_set(args.set_dir, args.platform_string)
            )
            if updated is None:
                print(f"Run set not found: {args.set_dir}", file=sys.stderr)
                return 1
            _print_set(updated)
        case "show":
            loaded: RunSet | None = manager.load(args.set_dir)
            if loaded is None:
                print(f"Run set not found: {args.set_dir}", file=sys.stderr)
                return 1
            _print_set(loaded)
            if loaded.merged_result is not None:
                print(
                    format_comparison_table(
                        loaded.merged_result,
                        Operation(args.operation),
                        DataSize(args.size),
                        Format(args.format),
                    )
                )
        case "validate":
            errors: list[str] = store.validate_structure()
            for error in errors:
                print(error)
            if errors:
                return 1
            print("Results directory is valid")
        case "cleanup":
            for deleted in manager.cleanup_old_sets(args.days):
                print(f"Deleted {deleted}")
    return 0


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args: argparse.Namespace = build_parser().parse_args(argv)

    config: ResultStoreConfig = ResultStoreConfig.from_env()
    if args.results_dir is not None:
        config = config.model_copy(update={"base_path": args.results_dir})

    try:
        manager: RunSetManager = RunSetManager(ResultStore(config))
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    try:
        return run_command(args, manager)
    except DuplicateResultError as exc:
        print(f"Duplicate run: {exc}", file=sys.stderr)
        return 1
    except (SerialbenchError, FileNotFoundError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
