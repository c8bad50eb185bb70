"""File-system repository for runs and run sets.

This module provides :class:`ResultStore`, the only component that knows the
on-disk layout of persisted results::

    <base>/runs/<platform_string>/
        data/results.yaml
        data/results.json
        metadata.yaml
        platform.yaml
    <base>/sets/<name>-<timestamp>/
        merged_results.yaml
        merged_results.json
        metadata.yaml
        runs/summary.yaml

Lifecycle:
    Every query re-reads disk. There is no cache, so a change made by another
    process is visible on the next call.

Concurrency:
    No locking. Two writers targeting the same run or run-set directory race
    and the last rename wins per file. Callers must serialize their own
    writes to the same logical run or set.

Example:
    >>> store = ResultStore(ResultStoreConfig(base_path=tmp_path))
    >>> run = store.save_run(run)
    >>> store.run_exists(run.platform_string)
    True
"""

import logging
import os
import shutil
from collections.abc import Iterable, Mapping, Sequence
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from core.errors import ValidationError
from core.merger import ResultMerger
from core.run import Run, RunSet
from core.schema_validator import SchemaValidator

logger: logging.Logger = logging.getLogger(__name__)

RUNS_DIR_NAME: str = "runs"
SETS_DIR_NAME: str = "sets"

ENV_RESULTS_DIR: str = "SERIALBENCH_RESULTS_DIR"
ENV_SCHEMA_PATH: str = "SERIALBENCH_SCHEMA_PATH"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ResultStoreConfig(BaseModel):
    """Configuration for :class:`ResultStore`.

    Attributes:
        base_path: Root directory holding ``runs/`` and ``sets/``.
        schema_path: Schema used to validate stored documents. None uses
            the packaged schema.
    """

    model_config = ConfigDict(frozen=True)

    base_path: Path = Field(
        default=Path("results"),
        description="Root directory holding runs/ and sets/",
    )
    schema_path: Path | None = Field(
        default=None,
        description="Schema file; None uses the packaged schema",
    )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "ResultStoreConfig":
        """Build a config from ``SERIALBENCH_RESULTS_DIR`` / ``SERIALBENCH_SCHEMA_PATH``.

        Unset variables keep the defaults.
        """
        env: Mapping[str, str] = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        if env.get(ENV_RESULTS_DIR):
            values["base_path"] = Path(env[ENV_RESULTS_DIR])
        if env.get(ENV_SCHEMA_PATH):
            values["schema_path"] = Path(env[ENV_SCHEMA_PATH])
        return cls(**values)


def _matches_tags(candidate: Iterable[str], tags: Sequence[str] | None) -> bool:
    if not tags:
        return True
    return set(tags).issubset(candidate)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class ResultStore:
    """Persists runs and run sets under one base directory.

    Args:
        config: Store location and schema. Defaults to
            :class:`ResultStoreConfig`.
        merger: Merge engine used when building run sets. Defaults to one
            sharing this store's validator.
    """

    def __init__(
        self,
        config: ResultStoreConfig | None = None,
        merger: ResultMerger | None = None,
    ) -> None:
        self._config: ResultStoreConfig = config or ResultStoreConfig()
        self._validator: SchemaValidator = (
            merger.validator if merger else SchemaValidator(self._config.schema_path)
        )
        self._merger: ResultMerger = merger or ResultMerger(validator=self._validator)

    @property
    def config(self) -> ResultStoreConfig:
        return self._config

    @property
    def base_path(self) -> Path:
        return self._config.base_path

    @property
    def runs_path(self) -> Path:
        return self._config.base_path / RUNS_DIR_NAME

    @property
    def sets_path(self) -> Path:
        return self._config.base_path / SETS_DIR_NAME

    @property
    def merger(self) -> ResultMerger:
        return self._merger

    @property
    def validator(self) -> SchemaValidator:
        return self._validator

    def ensure_directories(self) -> None:
        self.runs_path.mkdir(parents=True, exist_ok=True)
        self.sets_path.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _subdirs(path: Path) -> list[Path]:
        if not path.is_dir():
            return []
        return sorted(p for p in path.iterdir() if p.is_dir())

    # -- runs ---------------------------------------------------------------

    def find_runs(
        self,
        tags: Sequence[str] | None = None,
        limit: int | None = None,
    ) -> list[Run]:
        """Load every run, keeping those carrying all ``tags``.

        Directories that fail to load are logged and skipped.
        """
        runs: list[Run] = []
        for run_dir in self._subdirs(self.runs_path):
            try:
                run: Run = Run.load(run_dir)
            except (FileNotFoundError, ValidationError) as exc:
                logger.warning("Failed to load run from %s: %s", run_dir, exc)
                continue
            if _matches_tags(run.tags, tags):
                runs.append(run)
        return runs[:limit] if limit is not None else runs

    def find_run(self, platform_string: str) -> Run | None:
        run_dir: Path = self.runs_path / platform_string
        if not run_dir.is_dir():
            return None
        return Run.load(run_dir)

    def run_exists(self, platform_string: str) -> bool:
        return (self.runs_path / platform_string).is_dir()

    def save_run(self, run: Run) -> Run:
        """Write ``run`` under ``runs/<platform_string>/`` (overwrites)."""
        self.ensure_directories()
        saved: Run = run.save(self.runs_path)
        logger.info("Saved run %s", saved.platform_string)
        return saved

    def delete_run(self, platform_string: str) -> bool:
        """Remove a run directory. Returns False if it did not exist."""
        run_dir: Path = self.runs_path / platform_string
        if not run_dir.is_dir():
            return False
        shutil.rmtree(run_dir)
        logger.info("Deleted run %s", platform_string)
        return True

    # -- run sets -----------------------------------------------------------

    def find_run_sets(
        self,
        tags: Sequence[str] | None = None,
        limit: int | None = None,
    ) -> list[RunSet]:
        """Load every run set, keeping those carrying all ``tags``."""
        run_sets: list[RunSet] = []
        for set_dir in self._subdirs(self.sets_path):
            try:
                run_set: RunSet = RunSet.load(set_dir)
            except (FileNotFoundError, ValidationError) as exc:
                logger.warning("Failed to load run set from %s: %s", set_dir, exc)
                continue
            if _matches_tags(run_set.tags, tags):
                run_sets.append(run_set)
        return run_sets[:limit] if limit is not None else run_sets

    def find_run_set(self, dir_name: str) -> RunSet | None:
        """Load the set stored as ``sets/<dir_name>``, or None."""
        set_dir: Path = self.sets_path / dir_name
        if not set_dir.is_dir():
            return None
        return RunSet.load(set_dir)

    def latest_run_sets(self, limit: int = 5) -> list[RunSet]:
        """Most recently created sets first."""
        run_sets: list[RunSet] = self.find_run_sets()
        run_sets.sort(key=lambda s: s.created_at, reverse=True)
        return run_sets[:limit]

    def create_run_set(
        self,
        name: str,
        run_platform_strings: Sequence[str],
        metadata: Mapping[str, Any] | None = None,
    ) -> RunSet:
        """Merge the named runs into a new set and persist it.

        Raises:
            FileNotFoundError: If a named run does not exist.
        """
        runs: list[Run] = []
        for platform_string in run_platform_strings:
            run: Run | None = self.find_run(platform_string)
            if run is None:
                raise FileNotFoundError(
                    f"Run not found: {platform_string} (in {self.runs_path})"
                )
            runs.append(run)
        run_set: RunSet = RunSet.create(name, runs, metadata=metadata, merger=self._merger)
        return self.save_run_set(run_set)

    def save_run_set(self, run_set: RunSet) -> RunSet:
        """Persist ``run_set``, storing any of its runs not yet on disk."""
        self.ensure_directories()
        for run in run_set.runs:
            if run.path is None:
                self.save_run(run)
        return run_set.save(self.sets_path)

    def delete_run_set(self, dir_name: str) -> bool:
        set_dir: Path = self.sets_path / dir_name
        if not set_dir.is_dir():
            return False
        shutil.rmtree(set_dir)
        logger.info("Deleted run set %s", dir_name)
        return True

    def add_result(self, run_set: RunSet, run: Run) -> RunSet:
        """Add ``run`` to ``run_set`` and persist the set.

        An unsaved ``run`` is stored under ``runs/`` as well so the reloaded
        set still lists it.

        Raises:
            DuplicateResultError: If the set already holds the same run.
        """
        run_set.add_result(run, merger=self._merger)
        return self.save_run_set(run_set)

    def cleanup_old_run_sets(self, days_old: int = 30, now: datetime | None = None) -> list[str]:
        """Delete sets created more than ``days_old`` days ago.

        Returns:
            Directory names of the deleted sets.
        """
        cutoff: datetime = (now or datetime.now(timezone.utc)) - timedelta(days=days_old)
        deleted: list[str] = []
        for run_set in self.find_run_sets():
            try:
                created: datetime = datetime.fromisoformat(run_set.created_at.replace("Z", "+00:00"))
            except ValueError:
                logger.warning("Unparseable created_at on run set %s", run_set.dir_name)
                continue
            if created.tzinfo is None:
                created = created.replace(tzinfo=timezone.utc)
            if created < cutoff and run_set.dir_name and self.delete_run_set(run_set.dir_name):
                deleted.append(run_set.dir_name)
        return deleted

    # -- validation ---------------------------------------------------------

    def validate_structure(self) -> list[str]:
        """Walk every stored run and set, collecting every defect."""
        errors: list[str] = []
        if not self.base_path.is_dir():
            errors.append(f"Base path does not exist: {self.base_path}")
        if not self.runs_path.is_dir():
            errors.append(f"Runs directory does not exist: {self.runs_path}")
        if not self.sets_path.is_dir():
            errors.append(f"Sets directory does not exist: {self.sets_path}")

        for run_dir in self._subdirs(self.runs_path):
            try:
                Run.load(run_dir).validate_with(self._validator)
            except (FileNotFoundError, ValidationError) as exc:
                errors.append(f"Invalid run at {run_dir}: {exc}")

        for set_dir in self._subdirs(self.sets_path):
            try:
                RunSet.load(set_dir).validate_with(self._validator)
            except (FileNotFoundError, ValidationError) as exc:
                errors.append(f"Invalid run set at {set_dir}: {exc}")

        return errors

    def is_valid(self) -> bool:
        return not self.validate_structure()
