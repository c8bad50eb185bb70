"""Unit tests for infra.run_set_manager module.

Tests comparison-set builders (tag filter, cross-platform, Ruby version),
lookups, membership updates on stored sets, analysis and repair.
"""

import shutil

import pytest

from conftest import build_document, memory, timing
from core.errors import DuplicateResultError
from core.run import Run, RunSet
from infra.result_store import ResultStore
from infra.run_set_manager import RunSetManager


def _save(
    store: ResultStore,
    platform_string: str,
    ruby_version: str,
    ruby_platform: str = "aarch64-linux",
    tags: list[str] | None = None,
    created_at: str = "2025-06-13T14:07:11+00:00",
) -> Run:
    document = build_document(
        ruby_version=ruby_version,
        ruby_platform=ruby_platform,
        parsing={"small": {"json": {"oj": timing(0.001), "json": timing(0.002)}}},
        memory={"small": {"json": {"oj": memory(2048), "json": memory(4096)}}},
    )
    run: Run = Run.create(platform_string, document, {"tags": tags or [], "created_at": created_at})
    return store.save_run(run)


@pytest.fixture()
def manager(store: ResultStore) -> RunSetManager:
    _save(store, "docker-alpine-arm64-ruby-3.3", "3.3.8", "aarch64-linux-musl", ["ci"])
    _save(store, "local-macos-arm64-ruby-3.3.8", "3.3.8", "arm64-darwin", ["ci"])
    _save(store, "asdf-linux-arm64-ruby-3.2.4", "3.2.4")
    return RunSetManager(store)


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


class TestCreate:
    """Tests for the comparison-set builders."""

    def test_create(self, manager: RunSetManager) -> None:
        run_set: RunSet = manager.create("pair", ["asdf-linux-arm64-ruby-3.2.4"])
        assert run_set.run_count == 1
        assert manager.load(run_set.path.name) is not None

    def test_create_from_tag_filter(self, manager: RunSetManager) -> None:
        run_set: RunSet | None = manager.create_from_tag_filter("ci", ["ci"])
        assert run_set is not None
        assert run_set.platforms == [
            "docker-alpine-arm64-ruby-3.3",
            "local-macos-arm64-ruby-3.3.8",
        ]

    def test_create_from_tag_filter_no_match(self, manager: RunSetManager) -> None:
        assert manager.create_from_tag_filter("none", ["missing"]) is None
        assert manager.find_all() == []

    def test_cross_platform_comparison(self, manager: RunSetManager) -> None:
        """Docker 3.3 pairs with local 3.3.8, the lone asdf 3.2 run is kept too."""
        run_set: RunSet | None = manager.create_cross_platform_comparison("x-plat")
        assert run_set is not None
        assert run_set.platforms == [
            "asdf-linux-arm64-ruby-3.2.4",
            "docker-alpine-arm64-ruby-3.3",
            "local-macos-arm64-ruby-3.3.8",
        ]
        assert run_set.metadata.description is not None
        assert run_set.metadata.description.startswith("Cross-platform comparison")

    def test_cross_platform_version_filter(self, manager: RunSetManager) -> None:
        run_set: RunSet | None = manager.create_cross_platform_comparison(
            "x-3.3", ruby_versions=["3.3"],
        )
        assert run_set is not None
        assert run_set.run_count == 2
        assert manager.create_cross_platform_comparison("none", ruby_versions=["2.7"]) is None

    def test_ruby_version_comparison_latest_per_kind(
        self, manager: RunSetManager, store: ResultStore,
    ) -> None:
        """Only the newest run per kind and version is selected."""
        _save(store, "asdf-macos-arm64-ruby-3.2.4", "3.2.4", "arm64-darwin",
              created_at="2025-07-01T00:00:00+00:00")
        run_set: RunSet | None = manager.create_ruby_version_comparison("versions", kinds=["asdf"])
        assert run_set is not None
        assert run_set.platforms == ["asdf-macos-arm64-ruby-3.2.4"]


# ---------------------------------------------------------------------------
# Lookup and updates
# ---------------------------------------------------------------------------


class TestLookupAndUpdate:
    """Tests for lookups and stored-set membership changes."""

    def test_find_by_name_pattern(self, manager: RunSetManager) -> None:
        manager.create("nightly-a", ["asdf-linux-arm64-ruby-3.2.4"])
        manager.create("weekly", ["asdf-linux-arm64-ruby-3.2.4"])
        assert [s.name for s in manager.find_by_name_pattern(r"^nightly")] == ["nightly-a"]

    def test_find_by_tags(self, manager: RunSetManager) -> None:
        manager.create("tagged", ["asdf-linux-arm64-ruby-3.2.4"], {"tags": ["release"]})
        manager.create("plain", ["asdf-linux-arm64-ruby-3.2.4"])
        assert [s.name for s in manager.find_by_tags(["release"])] == ["tagged"]

    def test_add_and_remove(self, manager: RunSetManager) -> None:
        run_set: RunSet = manager.create("grow", ["asdf-linux-arm64-ruby-3.2.4"])
        dir_name: str = run_set.path.name

        grown: RunSet | None = manager.add_run_to_set(dir_name, "local-macos-arm64-ruby-3.3.8")
        assert grown is not None and grown.run_count == 2

        shrunk: RunSet | None = manager.remove_run_from_set(dir_name, "asdf-linux-arm64-ruby-3.2.4")
        assert shrunk is not None
        reloaded: RunSet | None = manager.load(dir_name)
        assert reloaded is not None
        assert reloaded.platforms == ["local-macos-arm64-ruby-3.3.8"]

    def test_add_duplicate(self, manager: RunSetManager) -> None:
        run_set: RunSet = manager.create("dup", ["asdf-linux-arm64-ruby-3.2.4"])
        with pytest.raises(DuplicateResultError):
            manager.add_run_to_set(run_set.path.name, "asdf-linux-arm64-ruby-3.2.4")

    def test_add_missing(self, manager: RunSetManager) -> None:
        run_set: RunSet = manager.create("m", ["asdf-linux-arm64-ruby-3.2.4"])
        assert manager.add_run_to_set("no-such-set", "asdf-linux-arm64-ruby-3.2.4") is None
        with pytest.raises(FileNotFoundError):
            manager.add_run_to_set(run_set.path.name, "local-linux-arm64-ruby-1.0.0")

    def test_delete(self, manager: RunSetManager) -> None:
        run_set: RunSet = manager.create("gone", ["asdf-linux-arm64-ruby-3.2.4"])
        assert manager.delete(run_set.path.name)
        assert manager.find_all() == []


# ---------------------------------------------------------------------------
# Analysis and repair
# ---------------------------------------------------------------------------


class TestAnalysis:
    """Tests for analyze_run_set and compare_run_sets."""

    def test_analyze_run_set(self, manager: RunSetManager) -> None:
        run_set: RunSet | None = manager.create_from_tag_filter("ci", ["ci"])
        assert run_set is not None
        analysis = manager.analyze_run_set(run_set)
        assert analysis["run_count"] == 2
        assert analysis["performance_summary"]["parsing"]["small"]["json"]["fastest"][0] == "oj"
        assert analysis["memory_summary"]["small"]["json"]["least_efficient"][0] == "json"

    def test_compare_run_sets(self, manager: RunSetManager) -> None:
        first: RunSet = manager.create("a", ["asdf-linux-arm64-ruby-3.2.4", "local-macos-arm64-ruby-3.3.8"])
        second: RunSet = manager.create("b", ["local-macos-arm64-ruby-3.3.8"])
        comparison = RunSetManager.compare_run_sets(first, second)
        assert comparison["common_platforms"] == ["local-macos-arm64-ruby-3.3.8"]
        assert comparison["unique_to_set_1"] == ["asdf-linux-arm64-ruby-3.2.4"]
        assert comparison["unique_to_set_2"] == []
        assert comparison["common_ruby_versions"] == ["3.3.8"]


class TestValidateAndRepair:
    """Tests for validate_run_set and repair_run_set."""

    def test_valid_set(self, manager: RunSetManager) -> None:
        run_set: RunSet = manager.create("ok", ["asdf-linux-arm64-ruby-3.2.4"])
        assert manager.validate_run_set(run_set) == []

    def test_missing_run_reported_and_repaired(
        self, manager: RunSetManager, store: ResultStore,
    ) -> None:
        run_set: RunSet = manager.create(
            "broken", ["asdf-linux-arm64-ruby-3.2.4", "local-macos-arm64-ruby-3.3.8"],
        )
        shutil.rmtree(store.runs_path / "asdf-linux-arm64-ruby-3.2.4")

        loaded: RunSet | None = manager.load(run_set.path.name)
        assert loaded is not None
        errors: list[str] = manager.validate_run_set(loaded)
        assert errors == [
            f"Referenced run does not exist: {store.runs_path / 'asdf-linux-arm64-ruby-3.2.4'}"
        ]

        repaired: RunSet = manager.repair_run_set(loaded)
        assert repaired.platforms == ["local-macos-arm64-ruby-3.3.8"]
        assert repaired.metadata.runs_included == [
            str(store.runs_path / "local-macos-arm64-ruby-3.3.8")
        ]
        assert manager.validate_run_set(repaired) == []
