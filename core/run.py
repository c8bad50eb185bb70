"""Runs and run sets: the persistence-level wrappers around result documents.

A :class:`Run` is one :class:`BenchmarkResultDocument` plus the
:class:`Platform` it was produced on and free-form metadata. It lives under
``<runs_dir>/<platform_string>/``::

    data/results.yaml      canonical document
    data/results.json      same document as JSON
    metadata.yaml          RunMetadata (tags, configs, creation time)
    platform.yaml          Platform.to_hash()

A :class:`RunSet` is a named collection of runs plus their merged result,
stored under ``<sets_dir>/<name>-<UTC timestamp>/``::

    merged_results.yaml
    merged_results.json
    metadata.yaml          RunSetMetadata
    runs/summary.yaml      one summary entry per run

Runs and run sets are value objects reloaded from disk by the store on every
query. Nothing here caches across calls.
"""

import logging
import re
from collections.abc import Mapping, Sequence
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from core.benchmark_result import BenchmarkResultDocument, coerce_timestamp
from core.codec import read_mapping, write_mapping
from core.errors import DuplicateResultError, ValidationError
from core.merged_result import MergedBenchmarkResult, utc_now_iso
from core.merger import MERGED_JSON_NAME, MERGED_YAML_NAME, ResultMerger
from core.platform import Platform, parse_platform_string
from core.run_config import BenchmarkConfig, EnvironmentConfig
from core.schema_validator import SchemaValidator

logger: logging.Logger = logging.getLogger(__name__)

DATA_DIR: str = "data"
RESULTS_YAML_NAME: str = "results.yaml"
RESULTS_JSON_NAME: str = "results.json"
METADATA_NAME: str = "metadata.yaml"
PLATFORM_NAME: str = "platform.yaml"
RUNS_DIR: str = "runs"
SUMMARY_NAME: str = "summary.yaml"

SET_TIMESTAMP_FORMAT: str = "%Y-%m-%dT%H%M%SZ"
_SET_SUFFIX: re.Pattern[str] = re.compile(r"-\d{4}-\d{2}-\d{2}T\d{6}Z$")

RunIdentity = tuple[str, str | None, str | None]
"""``(platform_string, environment_config.created_at, benchmark_name)``."""


def set_dir_name(name: str, when: datetime | None = None) -> str:
    """Directory name of a run set: ``<name>-<UTC timestamp>``."""
    moment: datetime = when or datetime.now(timezone.utc)
    return f"{name}-{moment.astimezone(timezone.utc).strftime(SET_TIMESTAMP_FORMAT)}"


def set_name_from_dir(dir_name: str) -> str:
    """Strip the trailing timestamp from a run-set directory name."""
    return _SET_SUFFIX.sub("", dir_name)


def _load_document(path: Path) -> BenchmarkResultDocument:
    try:
        return BenchmarkResultDocument.from_hash(read_mapping(path))
    except (PydanticValidationError, ValueError, TypeError) as exc:
        raise ValidationError([str(exc)], source=str(path)) from exc


# ---------------------------------------------------------------------------
# Run
# ---------------------------------------------------------------------------


class RunMetadata(BaseModel):
    """Free-form metadata stored in a run's ``metadata.yaml``."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    created_at: str = Field(default_factory=utc_now_iso)
    tags: list[str] = Field(default_factory=list)
    name: str | None = None
    description: str | None = None
    benchmark_config: BenchmarkConfig | None = None
    environment_config: EnvironmentConfig | None = None

    @field_validator("created_at", mode="before")
    @classmethod
    def _coerce_created_at(cls, v: Any) -> Any:
        return coerce_timestamp(v)

    def to_hash(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class Run(BaseModel):
    """One benchmark execution on one platform.

    Attributes:
        platform: Where it ran. Its string form names the run directory.
        benchmark_result: The run's result document.
        metadata: Tags, creation time and provenance configs.
        path: Directory the run was loaded from or saved to.
    """

    model_config = ConfigDict(extra="forbid")

    platform: Platform
    benchmark_result: BenchmarkResultDocument
    metadata: RunMetadata = Field(default_factory=RunMetadata)
    path: Path | None = None

    @classmethod
    def create(
        cls,
        platform_string: str,
        benchmark_data: BenchmarkResultDocument | Mapping[str, Any],
        metadata: RunMetadata | Mapping[str, Any] | None = None,
    ) -> "Run":
        """Build an unsaved run from a platform string and a document."""
        document: BenchmarkResultDocument = (
            benchmark_data
            if isinstance(benchmark_data, BenchmarkResultDocument)
            else BenchmarkResultDocument.from_hash(benchmark_data)
        )
        return cls(
            platform=parse_platform_string(platform_string),
            benchmark_result=document,
            metadata=RunMetadata.model_validate(metadata or {}),
        )

    @property
    def platform_string(self) -> str:
        return self.platform.platform_string

    @property
    def tags(self) -> list[str]:
        return [*self.platform.tags, *self.metadata.tags]

    @property
    def ruby_version(self) -> str:
        return self.platform.ruby_version

    @property
    def created_at(self) -> str:
        return self.metadata.created_at

    @property
    def environment_config(self) -> EnvironmentConfig | None:
        return self.metadata.environment_config

    @property
    def benchmark_config(self) -> BenchmarkConfig | None:
        return self.metadata.benchmark_config

    @property
    def identity(self) -> RunIdentity:
        """Key used for duplicate detection inside a run set."""
        env: EnvironmentConfig | None = self.environment_config
        bench: BenchmarkConfig | None = self.benchmark_config
        return (
            self.platform_string,
            env.created_at if env else None,
            bench.benchmark_name if bench else None,
        )

    @property
    def source_label(self) -> str:
        return str(self.path) if self.path else self.platform_string

    def validate_with(self, validator: SchemaValidator) -> None:
        """Schema-validate the run's document.

        Raises:
            ValidationError: Listing every violation.
        """
        validator.validate_single(self.benchmark_result.to_hash(), source=self.source_label)

    def save(self, runs_dir: Path | str) -> "Run":
        """Write the run under ``runs_dir/<platform_string>/``."""
        run_path: Path = Path(runs_dir) / self.platform_string
        document: dict[str, Any] = self.benchmark_result.to_hash()
        write_mapping(run_path / DATA_DIR / RESULTS_YAML_NAME, document)
        write_mapping(run_path / DATA_DIR / RESULTS_JSON_NAME, document)
        write_mapping(run_path / METADATA_NAME, self.metadata.to_hash())
        write_mapping(run_path / PLATFORM_NAME, self.platform.to_hash())
        self.path = run_path
        logger.debug("Saved run %s to %s", self.platform_string, run_path)
        return self

    @classmethod
    def load(cls, path: Path | str) -> "Run":
        """Load a run directory.

        The platform comes from ``platform.yaml`` when present, otherwise it
        is parsed from the directory name.

        Raises:
            FileNotFoundError: If the directory or its results file is missing.
            ValidationError: If a file cannot be decoded into its model.
        """
        run_path: Path = Path(path)
        if not run_path.is_dir():
            raise FileNotFoundError(f"Run directory does not exist: {run_path}")

        data_file: Path = run_path / DATA_DIR / RESULTS_YAML_NAME
        if not data_file.is_file():
            data_file = run_path / DATA_DIR / RESULTS_JSON_NAME
        if not data_file.is_file():
            raise FileNotFoundError(f"No results data found in {run_path}")

        document: BenchmarkResultDocument = _load_document(data_file)

        metadata_file: Path = run_path / METADATA_NAME
        platform_file: Path = run_path / PLATFORM_NAME
        try:
            metadata: RunMetadata = RunMetadata.model_validate(
                read_mapping(metadata_file) if metadata_file.is_file() else {}
            )
            platform: Platform = (
                Platform.from_hash(read_mapping(platform_file))
                if platform_file.is_file()
                else parse_platform_string(run_path.name)
            )
        except ValueError as exc:
            raise ValidationError([str(exc)], source=str(run_path)) from exc

        return cls(platform=platform, benchmark_result=document, metadata=metadata, path=run_path)

    def summary(self) -> dict[str, Any]:
        """Entry written to a run set's ``runs/summary.yaml``."""
        return {
            "platform_string": self.platform_string,
            "ruby_version": self.ruby_version,
            "created_at": self.created_at,
            "path": str(self.path) if self.path else None,
            "tags": self.tags,
        }

    def to_hash(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "platform": self.platform.to_hash(),
            "metadata": self.metadata.to_hash(),
            "benchmark_result": self.benchmark_result.to_hash(),
        }
        if self.path:
            out["path"] = str(self.path)
        return out


# ---------------------------------------------------------------------------
# Run set
# ---------------------------------------------------------------------------


class RunSetMetadata(BaseModel):
    """Run-set metadata stored in ``metadata.yaml``."""

    model_config = ConfigDict(extra="ignore", validate_assignment=True)

    name: str = Field(min_length=1)
    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str | None = None
    runs_included: list[str] = Field(default_factory=list)
    run_count: int = Field(default=0, ge=0)
    tags: list[str] = Field(default_factory=list)
    description: str | None = None

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _coerce_times(cls, v: Any) -> Any:
        return coerce_timestamp(v)

    def to_hash(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class RunSet(BaseModel):
    """A named collection of runs and their merged comparison."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    runs: list[Run] = Field(default_factory=list)
    merged_result: MergedBenchmarkResult | None = None
    metadata: RunSetMetadata
    path: Path | None = None

    @classmethod
    def create(
        cls,
        name: str,
        runs: Sequence[Run],
        metadata: Mapping[str, Any] | None = None,
        merger: ResultMerger | None = None,
    ) -> "RunSet":
        """Build an unsaved run set and merge its runs.

        Raises:
            DuplicateResultError: If two of ``runs`` share an identity.
        """
        meta: RunSetMetadata = RunSetMetadata.model_validate(
            {**dict(metadata or {}), "name": name}
        )
        run_set: RunSet = cls(name=name, metadata=meta)
        for run in runs:
            run_set._check_not_present(run)
            run_set.runs.append(run)
        run_set._refresh(merger)
        return run_set

    @staticmethod
    def merge_runs(
        runs: Sequence[Run], merger: ResultMerger | None = None,
    ) -> MergedBenchmarkResult | None:
        if not runs:
            return None
        engine: ResultMerger = merger or ResultMerger()
        return engine.merge((run.benchmark_result, run.source_label) for run in runs)

    def _refresh(self, merger: ResultMerger | None) -> None:
        self.merged_result = self.merge_runs(self.runs, merger)
        self.metadata.run_count = len(self.runs)
        self.metadata.runs_included = [str(run.path) for run in self.runs if run.path]

    # -- mutation -----------------------------------------------------------

    def add_result(self, run: Run, merger: ResultMerger | None = None) -> "RunSet":
        """Add ``run`` and re-merge.

        Raises:
            DuplicateResultError: If a run with the same platform string,
                environment creation time and benchmark name is present. The
                run list is left unchanged.
        """
        self._check_not_present(run)
        self.runs.append(run)
        self._refresh(merger)
        return self

    def _check_not_present(self, run: Run) -> None:
        identity: RunIdentity = run.identity
        if any(existing.identity == identity for existing in self.runs):
            platform_string, created_at, benchmark_name = identity
            raise DuplicateResultError(
                f"Run set {self.name!r} already contains {platform_string} "
                f"(environment created_at={created_at}, "
                f"benchmark_name={benchmark_name})"
            )

    def remove_run(self, platform_string: str, merger: ResultMerger | None = None) -> bool:
        """Drop every run with ``platform_string`` and re-merge.

        Returns:
            True if a run was removed.
        """
        kept: list[Run] = [r for r in self.runs if r.platform_string != platform_string]
        if len(kept) == len(self.runs):
            return False
        self.runs = kept
        self._refresh(merger)
        return True

    # -- queries ------------------------------------------------------------

    def has_run(self, platform_string: str) -> bool:
        return any(r.platform_string == platform_string for r in self.runs)

    def get_run(self, platform_string: str) -> Run | None:
        return next((r for r in self.runs if r.platform_string == platform_string), None)

    @property
    def ruby_versions(self) -> list[str]:
        return sorted({r.ruby_version for r in self.runs})

    @property
    def platforms(self) -> list[str]:
        return sorted(r.platform_string for r in self.runs)

    @property
    def tags(self) -> list[str]:
        return list(self.metadata.tags)

    @property
    def run_count(self) -> int:
        return len(self.runs)

    @property
    def created_at(self) -> str:
        return self.metadata.created_at

    @property
    def dir_name(self) -> str | None:
        return self.path.name if self.path else None

    def validate_with(self, validator: SchemaValidator) -> None:
        """Validate every run and the merged result.

        Raises:
            ValidationError: Listing the violations of all members.
        """
        errors: list[str] = []
        for run in self.runs:
            try:
                run.validate_with(validator)
            except ValidationError as exc:
                errors.extend(f"{run.platform_string}: {msg}" for msg in exc.errors)
        if self.merged_result is not None:
            errors.extend(
                f"merged: {msg}"
                for msg in validator.merged_errors(self.merged_result.to_hash())
            )
        if errors:
            raise ValidationError(errors, source=str(self.path or self.name))

    # -- persistence --------------------------------------------------------

    def save(self, sets_dir: Path | str) -> "RunSet":
        """Write the set under ``sets_dir``.

        A set already saved under ``sets_dir`` is rewritten in place, so
        saving twice leaves one directory.
        """
        base: Path = Path(sets_dir)
        if self.path is not None and self.path.parent == base:
            set_path: Path = self.path
        else:
            set_path = base / set_dir_name(self.name)

        self.metadata.updated_at = utc_now_iso()
        self.metadata.run_count = len(self.runs)
        self.metadata.runs_included = [str(run.path) for run in self.runs if run.path]

        if self.merged_result is not None:
            merged: dict[str, Any] = self.merged_result.to_hash()
            write_mapping(set_path / MERGED_YAML_NAME, merged)
            write_mapping(set_path / MERGED_JSON_NAME, merged)
        write_mapping(set_path / METADATA_NAME, self.metadata.to_hash())
        write_mapping(
            set_path / RUNS_DIR / SUMMARY_NAME,
            {"runs": [run.summary() for run in self.runs]},
        )
        self.path = set_path
        logger.info("Saved run set %s (%d runs) to %s", self.name, len(self.runs), set_path)
        return self

    @classmethod
    def load(cls, path: Path | str) -> "RunSet":
        """Load a run-set directory.

        Runs listed in ``runs_included`` that no longer exist or fail to load
        are logged and left out.

        Raises:
            FileNotFoundError: If the directory or its metadata is missing.
            ValidationError: If metadata or merged result cannot be decoded.
        """
        set_path: Path = Path(path)
        if not set_path.is_dir():
            raise FileNotFoundError(f"Run set directory does not exist: {set_path}")
        metadata_file: Path = set_path / METADATA_NAME
        if not metadata_file.is_file():
            raise FileNotFoundError(f"No metadata found in {set_path}")

        try:
            raw_meta: dict[str, Any] = read_mapping(metadata_file)
            raw_meta.setdefault("name", set_name_from_dir(set_path.name))
            metadata: RunSetMetadata = RunSetMetadata.model_validate(raw_meta)

            merged: MergedBenchmarkResult | None = None
            merged_file: Path = set_path / MERGED_YAML_NAME
            if not merged_file.is_file():
                merged_file = set_path / MERGED_JSON_NAME
            if merged_file.is_file():
                merged = MergedBenchmarkResult.from_hash(read_mapping(merged_file))
        except (PydanticValidationError, ValueError, TypeError) as exc:
            raise ValidationError([str(exc)], source=str(set_path)) from exc

        runs: list[Run] = []
        for run_dir in metadata.runs_included:
            try:
                runs.append(Run.load(run_dir))
            except (FileNotFoundError, ValidationError) as exc:
                logger.warning("Failed to load run %s for set %s: %s", run_dir, metadata.name, exc)

        return cls(
            name=metadata.name,
            runs=runs,
            merged_result=merged,
            metadata=metadata,
            path=set_path,
        )

    def to_hash(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "name": self.name,
            "metadata": self.metadata.to_hash(),
            "runs": [run.to_hash() for run in self.runs],
        }
        if self.merged_result is not None:
            out["merged_result"] = self.merged_result.to_hash()
        if self.path:
            out["path"] = str(self.path)
        return out
