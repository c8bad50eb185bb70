"""Unit tests for infra.result_store module.

Tests configuration from environment variables, the on-disk layout of runs
and run sets, tag queries, run-set creation and cleanup, and structural
validation of a store.
"""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest
from pydantic import ValidationError as PydanticValidationError

from conftest import build_document, timing
from core.codec import write_mapping
from core.errors import DuplicateResultError
from core.merged_result import MergedBenchmarkResult
from core.merger import ResultMerger
from core.run import Run, RunSet
from infra.result_store import (
    ENV_RESULTS_DIR,
    ENV_SCHEMA_PATH,
    ResultStore,
    ResultStoreConfig,
)


def _run(platform_string: str, ruby_version: str, tags: list[str] | None = None) -> Run:
    return Run.create(
        platform_string,
        build_document(ruby_version=ruby_version),
        {"tags": tags or []},
    )


@pytest.fixture()
def populated(store: ResultStore) -> ResultStore:
    store.save_run(_run("asdf-linux-arm64-ruby-3.3.8", "3.3.8", ["nightly"]))
    store.save_run(_run("asdf-linux-arm64-ruby-3.2.4", "3.2.4"))
    store.save_run(_run("docker-alpine-arm64-ruby-3.4", "3.4.1", ["nightly"]))
    return store


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class TestResultStoreConfig:
    """Tests for ResultStoreConfig."""

    def test_defaults(self) -> None:
        config: ResultStoreConfig = ResultStoreConfig.from_env({})
        assert config.base_path == Path("results")
        assert config.schema_path is None

    def test_from_env(self, tmp_path: Path) -> None:
        config: ResultStoreConfig = ResultStoreConfig.from_env(
            {ENV_RESULTS_DIR: str(tmp_path), ENV_SCHEMA_PATH: "schema.yaml"}
        )
        assert config.base_path == tmp_path
        assert config.schema_path == Path("schema.yaml")

    def test_frozen(self) -> None:
        config: ResultStoreConfig = ResultStoreConfig()
        with pytest.raises(PydanticValidationError):
            config.base_path = Path("/tmp")  # type: ignore[misc]


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------


class TestRuns:
    """Tests for run persistence and queries."""

    def test_layout(self, store: ResultStore) -> None:
        run: Run = store.save_run(_run("asdf-linux-arm64-ruby-3.3.8", "3.3.8"))
        assert run.path == store.runs_path / "asdf-linux-arm64-ruby-3.3.8"
        assert store.sets_path.is_dir()
        assert store.run_exists("asdf-linux-arm64-ruby-3.3.8")

    def test_find_runs_all(self, populated: ResultStore) -> None:
        assert len(populated.find_runs()) == 3

    def test_find_runs_by_tags(self, populated: ResultStore) -> None:
        """All requested tags must be present, platform tags included."""
        nightly: list[Run] = populated.find_runs(tags=["nightly"])
        assert {r.platform_string for r in nightly} == {
            "asdf-linux-arm64-ruby-3.3.8",
            "docker-alpine-arm64-ruby-3.4",
        }
        docker: list[Run] = populated.find_runs(tags=["nightly", "docker"])
        assert [r.platform_string for r in docker] == ["docker-alpine-arm64-ruby-3.4"]

    def test_find_runs_limit(self, populated: ResultStore) -> None:
        assert len(populated.find_runs(limit=2)) == 2

    def test_find_runs_skips_broken_directory(self, populated: ResultStore) -> None:
        (populated.runs_path / "local-linux-arm64-ruby-9.9.9").mkdir()
        assert len(populated.find_runs()) == 3

    def test_find_run_missing(self, store: ResultStore) -> None:
        assert store.find_run("local-linux-arm64-ruby-3.3.8") is None

    def test_delete_run(self, populated: ResultStore) -> None:
        assert populated.delete_run("asdf-linux-arm64-ruby-3.2.4")
        assert not populated.run_exists("asdf-linux-arm64-ruby-3.2.4")
        assert not populated.delete_run("asdf-linux-arm64-ruby-3.2.4")

    def test_save_overwrites(self, store: ResultStore) -> None:
        store.save_run(_run("asdf-linux-arm64-ruby-3.3.8", "3.3.8", ["a"]))
        store.save_run(_run("asdf-linux-arm64-ruby-3.3.8", "3.3.8", ["b"]))
        run: Run | None = store.find_run("asdf-linux-arm64-ruby-3.3.8")
        assert run is not None
        assert run.metadata.tags == ["b"]


# ---------------------------------------------------------------------------
# Run sets
# ---------------------------------------------------------------------------


class TestRunSets:
    """Tests for run-set creation, queries and cleanup."""

    def test_create_run_set(self, populated: ResultStore) -> None:
        run_set: RunSet = populated.create_run_set(
            "versions",
            ["asdf-linux-arm64-ruby-3.2.4", "asdf-linux-arm64-ruby-3.3.8"],
            {"tags": ["cmp"]},
        )
        assert run_set.path is not None
        assert run_set.path.parent == populated.sets_path
        assert run_set.merged_result is not None
        assert run_set.merged_result.metadata.ruby_versions == ["3.2.4", "3.3.8"]

        found: RunSet | None = populated.find_run_set(run_set.path.name)
        assert found is not None
        assert found.run_count == 2

    def test_create_with_missing_run(self, populated: ResultStore) -> None:
        with pytest.raises(FileNotFoundError, match="Run not found"):
            populated.create_run_set("bad", ["local-linux-arm64-ruby-1.0.0"])

    def test_find_run_sets_by_tags(self, populated: ResultStore) -> None:
        populated.create_run_set("a", ["asdf-linux-arm64-ruby-3.3.8"], {"tags": ["x"]})
        populated.create_run_set("b", ["asdf-linux-arm64-ruby-3.2.4"])
        assert [s.name for s in populated.find_run_sets(tags=["x"])] == ["a"]
        assert len(populated.find_run_sets()) == 2

    def test_latest_run_sets(self, populated: ResultStore) -> None:
        older: RunSet = RunSet.create(
            "older",
            [populated.find_run("asdf-linux-arm64-ruby-3.3.8")],
            {"created_at": "2025-01-01T00:00:00+00:00"},
        )
        populated.save_run_set(older)
        populated.create_run_set("newer", ["asdf-linux-arm64-ruby-3.2.4"])
        assert [s.name for s in populated.latest_run_sets(limit=1)] == ["newer"]

    def test_add_result_persists(self, populated: ResultStore) -> None:
        run_set: RunSet = populated.create_run_set("grow", ["asdf-linux-arm64-ruby-3.3.8"])
        run: Run | None = populated.find_run("asdf-linux-arm64-ruby-3.2.4")
        assert run is not None
        populated.add_result(run_set, run)

        reloaded: RunSet | None = populated.find_run_set(run_set.path.name)
        assert reloaded is not None
        assert reloaded.run_count == 2

    def test_add_unsaved_result_is_stored(self, populated: ResultStore) -> None:
        """A run never saved on its own survives a reload of the set."""
        run_set: RunSet = populated.create_run_set("grow", ["asdf-linux-arm64-ruby-3.3.8"])
        fresh: Run = _run("local-linux-arm64-ruby-3.2.4", "3.2.4")
        assert fresh.path is None
        populated.add_result(run_set, fresh)

        assert fresh.path == populated.runs_path / "local-linux-arm64-ruby-3.2.4"
        reloaded: RunSet | None = populated.find_run_set(run_set.path.name)
        assert reloaded is not None
        assert reloaded.run_count == 2
        assert sorted(reloaded.platforms) == [
            "asdf-linux-arm64-ruby-3.3.8",
            "local-linux-arm64-ruby-3.2.4",
        ]
        assert reloaded.merged_result is not None
        assert len(reloaded.merged_result.environments) == 2

    def test_create_run_set_with_repeated_run(self, populated: ResultStore) -> None:
        with pytest.raises(DuplicateResultError):
            populated.create_run_set(
                "twice", ["asdf-linux-arm64-ruby-3.3.8", "asdf-linux-arm64-ruby-3.3.8"],
            )
        assert populated.find_run_sets() == []

    def test_add_duplicate(self, populated: ResultStore) -> None:
        run_set: RunSet = populated.create_run_set("dup", ["asdf-linux-arm64-ruby-3.3.8"])
        run: Run | None = populated.find_run("asdf-linux-arm64-ruby-3.3.8")
        assert run is not None
        with pytest.raises(DuplicateResultError):
            populated.add_result(run_set, run)

    def test_delete_run_set(self, populated: ResultStore) -> None:
        run_set: RunSet = populated.create_run_set("tmp", ["asdf-linux-arm64-ruby-3.3.8"])
        assert populated.delete_run_set(run_set.path.name)
        assert populated.find_run_set(run_set.path.name) is None
        assert not populated.delete_run_set(run_set.path.name)

    def test_cleanup_old_run_sets(self, populated: ResultStore) -> None:
        """Only sets older than the cutoff are deleted."""
        old: RunSet = RunSet.create(
            "old",
            [populated.find_run("asdf-linux-arm64-ruby-3.3.8")],
            {"created_at": "2025-01-01T00:00:00+00:00"},
        )
        populated.save_run_set(old)
        populated.create_run_set("fresh", ["asdf-linux-arm64-ruby-3.2.4"])

        now: datetime = datetime.now(timezone.utc) + timedelta(days=1)
        deleted: list[str] = populated.cleanup_old_run_sets(days_old=30, now=now)
        assert deleted == [old.path.name]
        assert [s.name for s in populated.find_run_sets()] == ["fresh"]


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestValidateStructure:
    """Tests for validate_structure and is_valid."""

    def test_missing_base(self, tmp_path: Path) -> None:
        store: ResultStore = ResultStore(ResultStoreConfig(base_path=tmp_path / "none"))
        errors: list[str] = store.validate_structure()
        assert len(errors) == 3
        assert not store.is_valid()

    def test_valid_store(self, populated: ResultStore) -> None:
        populated.create_run_set("ok", ["asdf-linux-arm64-ruby-3.3.8"])
        assert populated.validate_structure() == []
        assert populated.is_valid()

    def test_generation_only_run_stays_valid(self, store: ResultStore) -> None:
        """A run with an empty parsing table is still valid and mergeable once stored."""
        run: Run = Run.create(
            "asdf-linux-arm64-ruby-3.3.8",
            build_document(
                parsing={}, generation={"small": {"json": {"oj": timing(0.002)}}},
            ),
        )
        store.save_run(run)
        assert store.validate_structure() == []

        results_file: Path = store.runs_path / "asdf-linux-arm64-ruby-3.3.8" / "data" / "results.yaml"
        merger: ResultMerger = ResultMerger()
        merged: MergedBenchmarkResult = merger.merge_files([results_file])
        assert merger.skipped == []
        assert "generation" in merged.to_hash()["combined_results"]

    def test_invalid_run_reported(self, populated: ResultStore) -> None:
        """A stored document that breaks the schema is reported by path."""
        bad: dict[str, Any] = build_document(ruby_version="3.2.4")
        bad["environment"]["ruby_version"] = "3.3.8"
        run_dir: Path = populated.runs_path / "asdf-linux-arm64-ruby-3.2.4"
        write_mapping(run_dir / "data" / "results.yaml", bad)

        errors: list[str] = populated.validate_structure()
        assert len(errors) == 1
        assert str(run_dir) in errors[0]
        assert "Inconsistent ruby_version" in errors[0]
