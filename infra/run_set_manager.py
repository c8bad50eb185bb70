"""Run-set workflows built on top of :class:`ResultStore`.

Example:
    >>> manager = RunSetManager(store)
    >>> run_set = manager.create_cross_platform_comparison("compare-3.3")
    >>> manager.analyze_run_set(run_set)["platforms"]
    ['docker-alpine-arm64-ruby-3.3', 'local-macos-arm64-ruby-3.3.8']
"""

import logging
import re
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from core.analysis import analyze_memory, analyze_performance
from core.errors import ValidationError
from core.platform import major_minor
from core.run import Run, RunSet
from infra.result_store import ResultStore

logger: logging.Logger = logging.getLogger(__name__)


class RunSetManager:
    """Higher-level run-set operations.

    Args:
        store: The store every operation reads from and writes to.
    """

    def __init__(self, store: ResultStore) -> None:
        self._store: ResultStore = store

    @property
    def store(self) -> ResultStore:
        return self._store

    # -- creation -----------------------------------------------------------

    def create(
        self,
        name: str,
        run_platform_strings: Sequence[str],
        metadata: Mapping[str, Any] | None = None,
    ) -> RunSet:
        return self._store.create_run_set(name, run_platform_strings, metadata)

    def create_from_runs(
        self,
        name: str,
        runs: Sequence[Run],
        metadata: Mapping[str, Any] | None = None,
    ) -> RunSet:
        run_set: RunSet = RunSet.create(name, runs, metadata=metadata, merger=self._store.merger)
        return self._store.save_run_set(run_set)

    def create_from_tag_filter(
        self,
        name: str,
        tags: Sequence[str],
        metadata: Mapping[str, Any] | None = None,
    ) -> RunSet | None:
        """Set of every run carrying all ``tags``; None if nothing matches."""
        runs: list[Run] = self._store.find_runs(tags=tags)
        if not runs:
            logger.info("No runs match tags %s", list(tags))
            return None
        return self.create_from_runs(name, runs, metadata)

    def create_cross_platform_comparison(
        self,
        name: str,
        ruby_versions: Sequence[str] | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> RunSet | None:
        """One docker and one local run per Ruby ``major.minor`` version.

        Returns:
            The saved set, or None if no run qualifies.
        """
        runs: list[Run] = self._store.find_runs()
        if ruby_versions is not None:
            runs = [
                r for r in runs
                if r.ruby_version in ruby_versions or major_minor(r.ruby_version) in ruby_versions
            ]

        by_version: dict[str, list[Run]] = {}
        for run in runs:
            by_version.setdefault(major_minor(run.ruby_version), []).append(run)

        selected: list[Run] = []
        for version_runs in by_version.values():
            docker_run: Run | None = next((r for r in version_runs if r.platform.is_docker), None)
            local_run: Run | None = next((r for r in version_runs if r.platform.is_local), None)
            selected.extend(r for r in (docker_run, local_run) if r is not None)

        if not selected:
            return None

        versions: str = ", ".join(sorted({r.ruby_version for r in selected}))
        meta: dict[str, Any] = {
            **dict(metadata or {}),
            "description": f"Cross-platform comparison for Ruby versions: {versions}",
        }
        return self.create_from_runs(name, selected, meta)

    def create_ruby_version_comparison(
        self,
        name: str,
        kinds: Sequence[str] | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> RunSet | None:
        """Latest run per Ruby version on each platform kind."""
        runs: list[Run] = self._store.find_runs()
        if kinds is not None:
            runs = [r for r in runs if r.platform.kind.value in kinds]

        latest: dict[tuple[str, str], Run] = {}
        for run in runs:
            key: tuple[str, str] = (run.platform.kind.value, run.ruby_version)
            if key not in latest or run.created_at > latest[key].created_at:
                latest[key] = run
        if not latest:
            return None

        selected: list[Run] = [latest[key] for key in sorted(latest)]
        kind_list: str = ", ".join(sorted({kind for kind, _ in latest}))
        meta: dict[str, Any] = {
            **dict(metadata or {}),
            "description": f"Ruby version comparison across platforms: {kind_list}",
        }
        return self.create_from_runs(name, selected, meta)

    # -- lookup -------------------------------------------------------------

    def load(self, dir_name: str) -> RunSet | None:
        return self._store.find_run_set(dir_name)

    def find_all(self) -> list[RunSet]:
        return self._store.find_run_sets()

    def find_by_tags(self, tags: Sequence[str]) -> list[RunSet]:
        return self._store.find_run_sets(tags=tags)

    def find_by_name_pattern(self, pattern: str | re.Pattern[str]) -> list[RunSet]:
        regex: re.Pattern[str] = re.compile(pattern) if isinstance(pattern, str) else pattern
        return [s for s in self.find_all() if regex.search(s.name)]

    def find_recent(self, limit: int = 5) -> list[RunSet]:
        return self._store.latest_run_sets(limit)

    # -- updates ------------------------------------------------------------

    def add_run_to_set(self, dir_name: str, platform_string: str) -> RunSet | None:
        """Add a stored run to a stored set.

        Returns:
            The saved set, or None if the set does not exist.

        Raises:
            FileNotFoundError: If the run does not exist.
            DuplicateResultError: If the set already holds the run.
        """
        run_set: RunSet | None = self.load(dir_name)
        if run_set is None:
            return None
        run: Run | None = self._store.find_run(platform_string)
        if run is None:
            raise FileNotFoundError(f"Run not found: {platform_string}")
        return self._store.add_result(run_set, run)

    def remove_run_from_set(self, dir_name: str, platform_string: str) -> RunSet | None:
        run_set: RunSet | None = self.load(dir_name)
        if run_set is None:
            return None
        if run_set.remove_run(platform_string, merger=self._store.merger):
            self._store.save_run_set(run_set)
        return run_set

    def delete(self, dir_name: str) -> bool:
        return self._store.delete_run_set(dir_name)

    def cleanup_old_sets(self, days_old: int = 30) -> list[str]:
        return self._store.cleanup_old_run_sets(days_old)

    # -- analysis -----------------------------------------------------------

    def analyze_run_set(self, run_set: RunSet) -> dict[str, Any]:
        return {
            "name": run_set.name,
            "created_at": run_set.created_at,
            "run_count": run_set.run_count,
            "ruby_versions": run_set.ruby_versions,
            "platforms": run_set.platforms,
            "tags": run_set.tags,
            "performance_summary": analyze_performance(run_set.merged_result),
            "memory_summary": analyze_memory(run_set.merged_result),
        }

    @staticmethod
    def compare_run_sets(first: RunSet, second: RunSet) -> dict[str, Any]:
        def _brief(run_set: RunSet) -> dict[str, Any]:
            return {
                "name": run_set.name,
                "run_count": run_set.run_count,
                "ruby_versions": run_set.ruby_versions,
                "platforms": run_set.platforms,
            }

        first_platforms: set[str] = set(first.platforms)
        second_platforms: set[str] = set(second.platforms)
        return {
            "run_set_1": _brief(first),
            "run_set_2": _brief(second),
            "common_platforms": sorted(first_platforms & second_platforms),
            "common_ruby_versions": sorted(set(first.ruby_versions) & set(second.ruby_versions)),
            "unique_to_set_1": sorted(first_platforms - second_platforms),
            "unique_to_set_2": sorted(second_platforms - first_platforms),
        }

    # -- validation / repair ------------------------------------------------

    def validate_run_set(self, run_set: RunSet) -> list[str]:
        """Schema violations plus references to runs that no longer exist."""
        errors: list[str] = []
        try:
            run_set.validate_with(self._store.validator)
        except ValidationError as exc:
            errors.append(f"Run set validation failed: {exc}")

        loaded: set[str] = {str(run.path) for run in run_set.runs if run.path}
        for run_path in run_set.metadata.runs_included:
            if run_path not in loaded or not Path(run_path).is_dir():
                errors.append(f"Referenced run does not exist: {run_path}")
        for run in run_set.runs:
            if run.path is None:
                errors.append(f"Run is not stored: {run.platform_string}")
        return errors

    def repair_run_set(self, run_set: RunSet) -> RunSet:
        """Drop runs whose directory is gone and re-merge the rest."""
        valid: list[Run] = [r for r in run_set.runs if r.path is not None and r.path.is_dir()]
        missing_refs: bool = len(run_set.metadata.runs_included) != len(valid)
        if len(valid) == len(run_set.runs) and not missing_refs:
            return run_set

        logger.warning(
            "Removing %d invalid run reference(s) from %s",
            max(len(run_set.runs), len(run_set.metadata.runs_included)) - len(valid),
            run_set.name,
        )
        run_set.runs = valid
        run_set.merged_result = RunSet.merge_runs(valid, self._store.merger)
        return self._store.save_run_set(run_set)
