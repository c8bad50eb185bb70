"""Merge engine: folds single-run documents into one cross-environment result.

This module provides :class:`ResultMerger`, the component that turns N
independent :class:`BenchmarkResultDocument` values into one
:class:`MergedBenchmarkResult` keyed by environment.

Algorithm (per document, in the order supplied):
    1. ``environment_id = sanitize(ruby_version + "_" + ruby_platform)``.
    2. Upsert the :class:`EnvironmentRecord` at that id. Metadata is
       last-write-wins.
    3. Union ``ruby_version`` / ``ruby_platform`` into the merge metadata.
    4. Keyed insert of every ``op → size → format → serializer`` leaf under
       ``environment_id``. Absent branches are skipped, never zero-filled.

Idempotence:
    Leaves are inserted by key, not appended, so merging the same document
    twice yields the same ``combined_results``.

Collision policy:
    Last-write-wins. When a leaf already holds a *different* value that came
    from a *different* source, the overwrite is logged at WARNING level and
    counted in :attr:`ResultMerger.collisions`.

Error policy:
    - :meth:`ResultMerger.merge` is pure and fails loudly: one invalid input
      raises :class:`ValidationError` and nothing is returned.
    - :meth:`ResultMerger.merge_files` and
      :meth:`ResultMerger.merge_directories` tolerate partial failure: a bad
      file is logged as a :class:`PartialInputError` and skipped. Only when no
      file merges does the call fail with :class:`NoResultsFoundError`.

Example:
    >>> merger = ResultMerger()
    >>> merged = merger.merge([(doc_324, "a/results.yaml"), (doc_338, "b/results.yaml")])
    >>> merged.metadata.ruby_versions
    ['3.2.4', '3.3.8']
"""

import logging
import re
from collections.abc import Iterable, Mapping, Sequence
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from core.benchmark_result import BenchmarkResultDocument
from core.codec import dump_json, dump_yaml, read_mapping, write_text_atomic
from core.errors import NoResultsFoundError, PartialInputError, ValidationError
from core.merged_result import EnvironmentRecord, MergedBenchmarkResult, utc_now_iso
from core.performance import Operation
from core.schema_validator import SchemaValidator

logger: logging.Logger = logging.getLogger(__name__)

RESULT_FILE_PATTERNS: tuple[str, ...] = (
    "**/results.yaml",
    "**/results.yml",
    "**/results.json",
)
"""Glob patterns tried per input directory, first non-empty match wins."""

ROOT_RESULT_FILES: tuple[str, ...] = ("results.yaml", "results.yml", "results.json")

MERGED_YAML_NAME: str = "merged_results.yaml"
MERGED_JSON_NAME: str = "merged_results.json"

_UNSAFE_ID_CHARS: re.Pattern[str] = re.compile(r"[^A-Za-z0-9_]")

DocumentInput = BenchmarkResultDocument | Mapping[str, Any]


def sanitize_environment_id(ruby_version: str, ruby_platform: str) -> str:
    """Derive the registry key for a ``(ruby_version, ruby_platform)`` pair.

    Every character outside ``[A-Za-z0-9_]`` becomes ``_``.

    >>> sanitize_environment_id("3.3.8", "aarch64-linux")
    '3_3_8_aarch64_linux'
    """
    return _UNSAFE_ID_CHARS.sub("_", f"{ruby_version}_{ruby_platform}")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class MergerConfig(BaseModel):
    """Configuration for :class:`ResultMerger`.

    Attributes:
        warn_on_collision: Log a warning when a leaf is overwritten with a
            different value from a different source.
        validate_inputs: Schema-validate raw mappings before merging them.
    """

    model_config = ConfigDict(frozen=True)

    warn_on_collision: bool = True
    validate_inputs: bool = True


# ---------------------------------------------------------------------------
# Merger
# ---------------------------------------------------------------------------


class ResultMerger:
    """Folds single-run result documents into a :class:`MergedBenchmarkResult`.

    Args:
        validator: Schema validator for raw inputs and merged output.
            Defaults to one loaded from the packaged schema.
        config: Merge behaviour. Defaults to :class:`MergerConfig`.

    Attributes:
        skipped: Inputs skipped by the last multi-file merge.
        collisions: Leaves overwritten with a differing value from a
            different source since construction.
    """

    def __init__(
        self,
        validator: SchemaValidator | None = None,
        config: MergerConfig | None = None,
    ) -> None:
        self._validator: SchemaValidator = validator or SchemaValidator()
        self._config: MergerConfig = config or MergerConfig()
        self.skipped: list[PartialInputError] = []
        self.collisions: int = 0
        # leaf key -> source label of the record currently stored there
        self._leaf_sources: dict[tuple[Any, ...], str] = {}

    @property
    def validator(self) -> SchemaValidator:
        return self._validator

    @property
    def config(self) -> MergerConfig:
        return self._config

    # -- in-memory merge ----------------------------------------------------

    def merge(
        self,
        documents: Iterable[tuple[DocumentInput, str]],
        into: MergedBenchmarkResult | None = None,
    ) -> MergedBenchmarkResult:
        """Fold ``(document, source_label)`` pairs into one merged result.

        Args:
            documents: Inputs in merge order. Raw mappings are validated and
                converted; :class:`BenchmarkResultDocument` values are trusted.
            into: Existing result to extend. A fresh one is created if None.

        Returns:
            The merged result (``into`` itself when given).

        Raises:
            ValidationError: If any raw input violates the schema.
        """
        parsed: list[tuple[BenchmarkResultDocument, str]] = [
            (self._coerce(document, source), source) for document, source in documents
        ]

        merged: MergedBenchmarkResult = into if into is not None else MergedBenchmarkResult()
        if into is None:
            self._leaf_sources = {}
        for document, source in parsed:
            self._merge_one(merged, document, source)
        merged.metadata.merged_at = utc_now_iso()
        return merged

    def _coerce(self, document: DocumentInput, source: str) -> BenchmarkResultDocument:
        if isinstance(document, BenchmarkResultDocument):
            return document
        if self._config.validate_inputs:
            self._validator.validate_single(document, source=source)
        try:
            return BenchmarkResultDocument.from_hash(document)
        except (PydanticValidationError, ValueError, TypeError) as exc:
            raise ValidationError([str(exc)], source=source) from exc

    def _merge_one(
        self,
        merged: MergedBenchmarkResult,
        document: BenchmarkResultDocument,
        source: str,
    ) -> None:
        env_id: str = sanitize_environment_id(document.ruby_version, document.ruby_platform)

        merged.add_environment(
            env_id,
            EnvironmentRecord(
                ruby_version=document.ruby_version,
                ruby_platform=document.ruby_platform,
                source_file=source,
                timestamp=document.timestamp,
                environment=document.environment,
            ),
        )
        merged.metadata.add_ruby_version(document.ruby_version)
        merged.metadata.add_platform(document.ruby_platform)

        inserted: int = 0
        for operation in Operation:
            for size, fmt, serializer, record in document.records(operation):
                previous = merged.combined_results.add_record(
                    operation, size, fmt, serializer, env_id, record,
                )
                self._note_overwrite(
                    (operation, size, fmt, serializer, env_id), previous, record, source,
                )
                inserted += 1

        logger.debug("Merged %s as %s (%d records)", source, env_id, inserted)

    def _note_overwrite(
        self,
        key: tuple[Any, ...],
        previous: BaseModel | None,
        record: BaseModel,
        source: str,
    ) -> None:
        previous_source: str | None = self._leaf_sources.get(key)
        self._leaf_sources[key] = source
        if previous is None or previous == record:
            return
        if previous_source is not None and previous_source == source:
            return

        self.collisions += 1
        if self._config.warn_on_collision:
            operation, size, fmt, serializer, env_id = key
            logger.warning(
                "Overwriting %s.%s.%s.%s for %s: %s replaces %s",
                operation.value,
                size.value,
                fmt.value,
                serializer,
                env_id,
                source,
                previous_source or "an earlier merge",
            )

    # -- file based merge ---------------------------------------------------

    def load_document(self, path: Path | str) -> BenchmarkResultDocument:
        """Read, validate and build one single-run document.

        Raises:
            ValidationError: If the file cannot be read, decoded or validated.
        """
        file_path: Path = Path(path)
        try:
            data: dict[str, Any] = read_mapping(file_path)
        except (OSError, ValueError) as exc:
            raise ValidationError([str(exc)], source=str(file_path)) from exc
        return self._coerce(data, str(file_path))

    def merge_files(
        self,
        paths: Sequence[Path | str],
        into: MergedBenchmarkResult | None = None,
    ) -> MergedBenchmarkResult:
        """Merge result files, skipping the ones that fail to load.

        Raises:
            NoResultsFoundError: If no file could be merged.
        """
        self.skipped = []
        loaded: list[tuple[DocumentInput, str]] = []
        for path in paths:
            try:
                loaded.append((self.load_document(path), str(path)))
            except ValidationError as exc:
                skip: PartialInputError = PartialInputError(str(path), str(exc))
                self.skipped.append(skip)
                logger.warning("%s", skip)

        if not loaded:
            raise NoResultsFoundError(
                f"no successful merges ({len(self.skipped)} of {len(paths)} files failed)"
            )

        merged: MergedBenchmarkResult = self.merge(loaded, into=into)
        logger.info(
            "Merged %d result file(s), skipped %d", len(loaded), len(self.skipped),
        )
        return merged

    def find_result_files(self, input_dirs: Iterable[Path | str]) -> list[Path]:
        """Locate result files, keeping the order of ``input_dirs``.

        Per directory the first non-empty glob of :data:`RESULT_FILE_PATTERNS`
        is used; otherwise root-level ``results.{yaml,yml,json}`` files.
        """
        found: list[Path] = []
        for entry in input_dirs:
            directory: Path = Path(entry)
            if not directory.is_dir():
                logger.warning("Input directory not found, skipping: %s", directory)
                continue

            matches: list[Path] = []
            for pattern in RESULT_FILE_PATTERNS:
                matches = sorted(p for p in directory.glob(pattern) if p.is_file())
                if matches:
                    break
            if not matches:
                matches = [
                    directory / name for name in ROOT_RESULT_FILES
                    if (directory / name).is_file()
                ]

            if matches:
                logger.debug("Found %d result file(s) in %s", len(matches), directory)
            else:
                logger.warning("No result files found in %s", directory)
            found.extend(m for m in matches if m not in found)
        return found

    def merge_directories(
        self,
        input_dirs: Iterable[Path | str],
        output_dir: Path | str,
    ) -> Path:
        """Merge every result file under ``input_dirs`` and write the output.

        Writes ``merged_results.yaml`` (canonical) and ``merged_results.json``
        into ``output_dir``.

        Returns:
            Path of the YAML output.

        Raises:
            NoResultsFoundError: If no result file exists or none merges.
            ValidationError: If the merged output fails validation.
        """
        files: list[Path] = self.find_result_files(input_dirs)
        if not files:
            raise NoResultsFoundError("No result files found in input directories")

        merged: MergedBenchmarkResult = self.merge_files(files)
        return self.write_merged(merged, output_dir)

    def write_merged(self, merged: MergedBenchmarkResult, output_dir: Path | str) -> Path:
        """Validate ``merged`` and write it as YAML and JSON.

        Raises:
            ValidationError: If the merged output fails validation.
        """
        data: dict[str, Any] = merged.to_hash()
        self._validator.validate_merged(data, source="merged output")

        out: Path = Path(output_dir)
        yaml_path: Path = out / MERGED_YAML_NAME
        write_text_atomic(yaml_path, dump_yaml(data))
        write_text_atomic(out / MERGED_JSON_NAME, dump_json(data))
        logger.info(
            "Wrote merged results for %d environment(s) to %s",
            len(merged.environments),
            out,
        )
        return yaml_path
