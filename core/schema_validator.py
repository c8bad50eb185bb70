"""Schema validation for single-run and merged result documents.

Rules are loaded once, at construction, from a YAML schema description
(``core/schemas/benchmark_schema.yaml`` unless another path is given). A
missing or malformed schema is a startup error (:class:`ConfigurationError`),
never a per-call error.

Validation contract:
    - Operates on plain nested mappings (the ``to_hash()`` form), so it can
      check documents that the Pydantic models would refuse to build.
    - Read-only. Never mutates or repairs the document.
    - Accumulates every violation and raises one
      :class:`core.errors.ValidationError` carrying the complete list.

Example:
    >>> validator = SchemaValidator()
    >>> validator.validate_single({"ruby_version": "3.3.8"})
    Traceback (most recent call last):
    ...
    core.errors.ValidationError: Validation failed:
    Missing required field: environment
    ...
"""

import logging
import re
from collections.abc import Mapping
from datetime import date, datetime
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from core.codec import read_mapping
from core.errors import ConfigurationError, ValidationError
from core.performance import Tolerances, derived_value_errors

logger: logging.Logger = logging.getLogger(__name__)

DEFAULT_SCHEMA_PATH: Path = Path(__file__).parent / "schemas" / "benchmark_schema.yaml"
"""Schema shipped with the package."""

DocumentKind = Literal["single", "merged"]


# ---------------------------------------------------------------------------
# Schema description
# ---------------------------------------------------------------------------


class RequiredFields(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    required: list[str] = Field(min_length=1)


class MetadataRules(RequiredFields):
    lists: list[str] = Field(default_factory=list)


class OperationRules(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    timed: list[str]
    memory: list[str]


class PerformanceRecordRules(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    numeric: list[str]
    count: str


class MemoryRecordRules(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    integer: list[str]


class ValidationSchema(BaseModel):
    """Parsed form of the YAML schema description."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    single: RequiredFields
    merged: RequiredFields
    environment: RequiredFields
    environment_record: RequiredFields
    metadata: MetadataRules
    ruby_version_pattern: str
    environment_id_pattern: str
    ruby_platforms: list[str] = Field(min_length=1)
    operations: OperationRules
    data_sizes: list[str] = Field(min_length=1)
    formats: list[str] = Field(min_length=1)
    performance_record: PerformanceRecordRules
    memory_record: MemoryRecordRules
    tolerances: Tolerances = Field(default_factory=Tolerances)


class DirectoryValidationReport(BaseModel):
    """Outcome of :meth:`SchemaValidator.validate_directory`."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    total_files: int = Field(ge=0)
    valid_files: list[str] = Field(default_factory=list)
    invalid_files: list[str] = Field(default_factory=list)
    errors: dict[str, str] = Field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.invalid_files


# ---------------------------------------------------------------------------
# Value predicates
# ---------------------------------------------------------------------------


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_integer(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def is_iso8601(value: Any) -> bool:
    """True if ``value`` is a datetime/date or an ISO-8601 string."""
    if isinstance(value, (datetime, date)):
        return True
    if not isinstance(value, str) or not value:
        return False
    text: str = value[:-1] + "+00:00" if value.endswith("Z") else value
    try:
        datetime.fromisoformat(text)
    except ValueError:
        return False
    return True


def _join(path: str, key: str) -> str:
    return f"{path}.{key}" if path else key


# ---------------------------------------------------------------------------
# Validator
# ---------------------------------------------------------------------------


class SchemaValidator:
    """Validates result documents against the loaded schema rules.

    Args:
        schema_path: YAML schema description. Defaults to the packaged
            :data:`DEFAULT_SCHEMA_PATH`.

    Raises:
        ConfigurationError: If the schema file is missing, unreadable, or
            does not describe a valid rule set.
    """

    def __init__(self, schema_path: Path | str | None = None) -> None:
        self._schema_path: Path = Path(schema_path) if schema_path else DEFAULT_SCHEMA_PATH
        self._schema: ValidationSchema = self._load_schema(self._schema_path)
        try:
            self._version_re: re.Pattern[str] = re.compile(self._schema.ruby_version_pattern)
            self._env_id_re: re.Pattern[str] = re.compile(self._schema.environment_id_pattern)
        except re.error as exc:
            raise ConfigurationError(
                f"Invalid pattern in schema {self._schema_path}: {exc}"
            ) from exc

    @property
    def schema(self) -> ValidationSchema:
        return self._schema

    @property
    def schema_path(self) -> Path:
        return self._schema_path

    @staticmethod
    def _load_schema(path: Path) -> ValidationSchema:
        if not path.is_file():
            raise ConfigurationError(f"Schema file not found: {path}")
        try:
            raw: dict[str, Any] = read_mapping(path)
        except (OSError, ValueError) as exc:
            raise ConfigurationError(f"Invalid schema file {path}: {exc}") from exc
        try:
            return ValidationSchema.model_validate(raw)
        except PydanticValidationError as exc:
            raise ConfigurationError(f"Invalid schema definition in {path}: {exc}") from exc

    # -- public API ---------------------------------------------------------

    def validate_single(self, document: Mapping[str, Any], source: str | None = None) -> None:
        """Validate one single-run result document.

        Raises:
            ValidationError: Listing every violation found.
        """
        errors: list[str] = self.single_errors(document)
        if errors:
            raise ValidationError(errors, source=source)

    def validate_merged(self, document: Mapping[str, Any], source: str | None = None) -> None:
        """Validate one merged result document.

        Raises:
            ValidationError: Listing every violation found.
        """
        errors: list[str] = self.merged_errors(document)
        if errors:
            raise ValidationError(errors, source=source, title="Merged validation failed")

    def single_errors(self, document: Mapping[str, Any]) -> list[str]:
        """Every violation of a single-run document, possibly empty."""
        if not isinstance(document, Mapping):
            return [f"Document must be a mapping, got {type(document).__name__}"]

        errors: list[str] = self._required(document, self._schema.single.required, "")

        env_data: Any = document.get("environment")
        if env_data is not None:
            errors.extend(self._environment_errors(env_data, "environment"))

        errors.extend(self._version_platform_errors(document, ""))

        timestamp: Any = document.get("timestamp")
        if timestamp is not None and not is_iso8601(timestamp):
            errors.append(f"Invalid timestamp format: {timestamp} (expected: ISO 8601)")

        for operation in self._schema.operations.timed:
            if document.get(operation) is not None:
                errors.extend(self._operation_errors(document[operation], operation, memory=False))
        for operation in self._schema.operations.memory:
            if document.get(operation) is not None:
                errors.extend(self._operation_errors(document[operation], operation, memory=True))

        errors.extend(self._consistency_errors(document))
        return errors

    def merged_errors(self, document: Mapping[str, Any]) -> list[str]:
        """Every violation of a merged document, possibly empty."""
        if not isinstance(document, Mapping):
            return [f"Document must be a mapping, got {type(document).__name__}"]

        errors: list[str] = self._required(document, self._schema.merged.required, "")

        environments: Any = document.get("environments")
        env_ids: set[str] = set()
        if environments is not None:
            if isinstance(environments, Mapping):
                env_ids = {str(k) for k in environments}
                errors.extend(self._environments_section_errors(environments))
            else:
                errors.append("environments must be a mapping")

        metadata: Any = document.get("metadata")
        if metadata is not None:
            errors.extend(self._metadata_section_errors(metadata))

        combined: Any = document.get("combined_results")
        if combined is not None:
            errors.extend(self._combined_results_errors(combined, env_ids))

        return errors

    def validate_file(self, path: Path | str) -> DocumentKind:
        """Load a ``.yaml``/``.yml``/``.json`` file and validate it.

        The document kind is inferred from its shape: ``combined_results``
        and ``environments`` present means merged, otherwise single.

        Returns:
            ``"single"`` or ``"merged"``.

        Raises:
            ValidationError: If the file is missing, undecodable or invalid.
        """
        file_path: Path = Path(path)
        if not file_path.is_file():
            raise ValidationError([f"File not found: {file_path}"], source=str(file_path))
        try:
            data: dict[str, Any] = read_mapping(file_path)
        except (OSError, ValueError) as exc:
            raise ValidationError([str(exc)], source=str(file_path)) from exc

        if "combined_results" in data and "environments" in data:
            self.validate_merged(data, source=str(file_path))
            return "merged"
        self.validate_single(data, source=str(file_path))
        return "single"

    def validate_directory(
        self,
        directory: Path | str,
        pattern: str = "**/results.*",
    ) -> DirectoryValidationReport:
        """Validate every file under ``directory`` matching ``pattern``.

        Files with suffixes other than ``.yaml``, ``.yml`` and ``.json`` are
        ignored. A bad file is recorded and the walk continues.

        Raises:
            ValidationError: If the directory is missing or holds no files.
        """
        root: Path = Path(directory)
        if not root.is_dir():
            raise ValidationError([f"Directory not found: {root}"], source=str(root))

        files: list[Path] = sorted(
            p for p in root.glob(pattern)
            if p.is_file() and p.suffix.lower() in (".yaml", ".yml", ".json")
        )
        if not files:
            raise ValidationError(
                [f"No benchmark result files found in: {root}"], source=str(root),
            )

        valid: list[str] = []
        invalid: list[str] = []
        messages: dict[str, str] = {}
        for file_path in files:
            try:
                self.validate_file(file_path)
            except ValidationError as exc:
                invalid.append(str(file_path))
                messages[str(file_path)] = str(exc)
                logger.debug("Invalid result file %s", file_path)
            else:
                valid.append(str(file_path))

        return DirectoryValidationReport(
            total_files=len(files),
            valid_files=valid,
            invalid_files=invalid,
            errors=messages,
        )

    # -- field rules --------------------------------------------------------

    @staticmethod
    def _required(data: Mapping[str, Any], fields: list[str], path: str) -> list[str]:
        return [
            f"Missing required field: {_join(path, field)}"
            for field in fields
            if data.get(field) is None
        ]

    def _version_errors(self, value: Any, path: str) -> list[str]:
        if value is None:
            return []
        if not isinstance(value, str) or not self._version_re.fullmatch(value):
            return [
                f"Invalid {path} format: {value} (expected: major.minor.patch)"
            ]
        return []

    def _platform_errors(self, value: Any, path: str) -> list[str]:
        if value is None or value in self._schema.ruby_platforms:
            return []
        valid: str = ", ".join(self._schema.ruby_platforms)
        return [f"Invalid {path}: {value} (valid: {valid})"]

    def _version_platform_errors(self, data: Mapping[str, Any], path: str) -> list[str]:
        return [
            *self._version_errors(data.get("ruby_version"), _join(path, "ruby_version")),
            *self._platform_errors(data.get("ruby_platform"), _join(path, "ruby_platform")),
        ]

    def _environment_errors(self, env_data: Any, path: str) -> list[str]:
        if not isinstance(env_data, Mapping):
            return [f"{path} must be a mapping"]

        errors: list[str] = self._required(env_data, self._schema.environment.required, path)
        errors.extend(self._version_platform_errors(env_data, path))

        timestamp: Any = env_data.get("timestamp")
        if timestamp is not None and not is_iso8601(timestamp):
            errors.append(
                f"Invalid {path}.timestamp format: {timestamp} (expected: ISO 8601)"
            )

        versions: Any = env_data.get("serializer_versions")
        if versions is not None and not isinstance(versions, Mapping):
            errors.append(f"{path}.serializer_versions must be a mapping")
        return errors

    def _consistency_errors(self, document: Mapping[str, Any], path: str = "") -> list[str]:
        env_data: Any = document.get("environment")
        if not isinstance(env_data, Mapping):
            return []
        errors: list[str] = []
        for field in ("ruby_version", "ruby_platform"):
            top: Any = document.get(field)
            nested: Any = env_data.get(field)
            if top is not None and top != nested:
                errors.append(
                    f"Inconsistent {_join(path, field)}: "
                    f"{_join(path, 'environment.' + field)} ({nested}) "
                    f"!= {_join(path, field)} ({top})"
                )
        return errors

    # -- record trees -------------------------------------------------------

    def _operation_errors(self, operation_data: Any, path: str, memory: bool) -> list[str]:
        if not isinstance(operation_data, Mapping):
            return [f"{path} must be a mapping"]

        errors: list[str] = []
        for size, size_data in operation_data.items():
            size_path: str = _join(path, str(size))
            if size not in self._schema.data_sizes:
                errors.append(f"{size_path}: unknown data size (valid: {', '.join(self._schema.data_sizes)})")
                continue
            if size_data is None:
                continue
            if not isinstance(size_data, Mapping):
                errors.append(f"{size_path} must be a mapping")
                continue
            for fmt, format_data in size_data.items():
                format_path: str = _join(size_path, str(fmt))
                if fmt not in self._schema.formats:
                    errors.append(f"{format_path}: unknown format (valid: {', '.join(self._schema.formats)})")
                    continue
                if format_data is None:
                    continue
                if not isinstance(format_data, Mapping):
                    errors.append(f"{format_path} must be a mapping")
                    continue
                for serializer, record in format_data.items():
                    errors.extend(self._record_errors(record, _join(format_path, str(serializer)), memory))
        return errors

    def _record_errors(self, record: Any, path: str, memory: bool) -> list[str]:
        if memory:
            return self._memory_record_errors(record, path)
        return self._performance_record_errors(record, path)

    def _performance_record_errors(self, record: Any, path: str) -> list[str]:
        if not isinstance(record, Mapping):
            return [f"{path} must be a mapping"]

        rules: PerformanceRecordRules = self._schema.performance_record
        errors: list[str] = self._required(record, [*rules.numeric, rules.count], path)

        numbers_ok: bool = True
        for field in rules.numeric:
            value: Any = record.get(field)
            if value is None:
                numbers_ok = False
            elif not _is_number(value):
                errors.append(f"{path}.{field} must be a number, got {value!r}")
                numbers_ok = False
            elif value < 0:
                errors.append(f"{path}.{field} must be non-negative, got {value}")

        count: Any = record.get(rules.count)
        if count is None:
            numbers_ok = False
        elif not _is_integer(count):
            errors.append(f"{path}.{rules.count} must be an integer, got {count!r}")
            numbers_ok = False
        elif count < 1:
            errors.append(f"{path}.{rules.count} must be at least 1, got {count}")

        if numbers_ok:
            errors.extend(
                derived_value_errors(
                    path=path,
                    time_per_iterations=record["time_per_iterations"],
                    time_per_iteration=record["time_per_iteration"],
                    iterations_per_second=record["iterations_per_second"],
                    iterations_count=record[rules.count],
                    tolerances=self._schema.tolerances,
                )
            )
        return errors

    def _memory_record_errors(self, record: Any, path: str) -> list[str]:
        if not isinstance(record, Mapping):
            return [f"{path} must be a mapping"]

        fields: list[str] = self._schema.memory_record.integer
        errors: list[str] = self._required(record, fields, path)
        for field in fields:
            value: Any = record.get(field)
            if value is None:
                continue
            if not _is_integer(value):
                errors.append(f"{path}.{field} must be an integer, got {value!r}")
            elif value < 0:
                errors.append(f"{path}.{field} must be non-negative, got {value}")
        return errors

    # -- merged sections ----------------------------------------------------

    def _environments_section_errors(self, environments: Mapping[str, Any]) -> list[str]:
        errors: list[str] = []
        for env_id, env_record in environments.items():
            path: str = f"environments.{env_id}"
            if not self._env_id_re.fullmatch(str(env_id)):
                errors.append(
                    f"Invalid environment ID format: {env_id} "
                    f"(must match {self._schema.environment_id_pattern})"
                )
            if not isinstance(env_record, Mapping):
                errors.append(f"{path} must be a mapping")
                continue
            errors.extend(self._required(env_record, self._schema.environment_record.required, path))
            errors.extend(self._version_platform_errors(env_record, path))
            nested: Any = env_record.get("environment")
            if nested is not None:
                errors.extend(self._environment_errors(nested, f"{path}.environment"))
            errors.extend(self._consistency_errors(env_record, path))
        return errors

    def _metadata_section_errors(self, metadata: Any) -> list[str]:
        if not isinstance(metadata, Mapping):
            return ["metadata must be a mapping"]

        errors: list[str] = self._required(metadata, self._schema.metadata.required, "metadata")
        merged_at: Any = metadata.get("merged_at")
        if merged_at is not None and not is_iso8601(merged_at):
            errors.append(f"Invalid metadata.merged_at format: {merged_at} (expected: ISO 8601)")
        for field in self._schema.metadata.lists:
            value: Any = metadata.get(field)
            if value is not None and not isinstance(value, list):
                errors.append(f"metadata.{field} must be a list")
        return errors

    def _combined_results_errors(self, combined: Any, env_ids: set[str]) -> list[str]:
        if not isinstance(combined, Mapping):
            return ["combined_results must be a mapping"]

        known: list[str] = [*self._schema.operations.timed, *self._schema.operations.memory]
        errors: list[str] = []
        for operation, operation_data in combined.items():
            if operation not in known:
                errors.append(f"combined_results.{operation}: unknown operation (valid: {', '.join(known)})")
                continue
            if operation_data is None:
                continue
            memory: bool = operation in self._schema.operations.memory
            errors.extend(self._merged_operation_errors(operation_data, str(operation), env_ids, memory))
        return errors

    def _merged_operation_errors(
        self,
        operation_data: Any,
        path: str,
        env_ids: set[str],
        memory: bool,
    ) -> list[str]:
        if not isinstance(operation_data, Mapping):
            return [f"{path} must be a mapping"]

        errors: list[str] = []
        for size, size_data in operation_data.items():
            size_path: str = _join(path, str(size))
            if size not in self._schema.data_sizes:
                errors.append(f"{size_path}: unknown data size (valid: {', '.join(self._schema.data_sizes)})")
                continue
            if not isinstance(size_data, Mapping):
                errors.append(f"{size_path} must be a mapping")
                continue
            for fmt, format_data in size_data.items():
                format_path: str = _join(size_path, str(fmt))
                if fmt not in self._schema.formats:
                    errors.append(f"{format_path}: unknown format (valid: {', '.join(self._schema.formats)})")
                    continue
                if not isinstance(format_data, Mapping):
                    errors.append(f"{format_path} must be a mapping")
                    continue
                for serializer, env_results in format_data.items():
                    serializer_path: str = _join(format_path, str(serializer))
                    if not isinstance(env_results, Mapping):
                        errors.append(f"{serializer_path} must be a mapping of environments")
                        continue
                    for env_id, record in env_results.items():
                        leaf_path: str = _join(serializer_path, str(env_id))
                        if str(env_id) not in env_ids:
                            errors.append(f"{leaf_path}: environment ID not found in environments section")
                        errors.extend(self._record_errors(record, leaf_path, memory))
        return errors
