"""Merged, cross-environment benchmark result.

A :class:`MergedBenchmarkResult` is created empty and grows monotonically as
documents are folded in by :class:`core.merger.ResultMerger`. It never
shrinks within a merge session; removing a run is done at the run-set level
by re-merging the remaining runs.

On-disk shape (``merged_results.yaml`` / ``merged_results.json``)::

    environments:
      <environment_id>: {ruby_version, ruby_platform, source_file,
                         timestamp, environment}
    combined_results:
      parsing:    {size: {format: {serializer: {environment_id: record}}}}
      generation: ...
      streaming:  ...
      memory:     {size: {format: {serializer: {environment_id: memory}}}}
    metadata: {merged_at, ruby_versions, platforms}

Referential integrity:
    Every ``environment_id`` appearing in ``combined_results`` must be a key
    of ``environments``. :meth:`MergedBenchmarkResult.dangling_environment_ids`
    reports violations; the schema validator enforces it.
"""

from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from core.benchmark_result import EnvironmentInfo, coerce_timestamp, coerce_version
from core.performance import (
    DataSize,
    Format,
    MemoryRecord,
    Operation,
    PerformanceRecord,
)

CombinedPerformanceTable = dict[
    DataSize, dict[Format, dict[str, dict[str, PerformanceRecord]]]
]
"""``size → format → serializer → environment_id → PerformanceRecord``."""

CombinedMemoryTable = dict[DataSize, dict[Format, dict[str, dict[str, MemoryRecord]]]]
"""``size → format → serializer → environment_id → MemoryRecord``."""

Record = PerformanceRecord | MemoryRecord


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with seconds precision."""
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


# ---------------------------------------------------------------------------
# Environment registry
# ---------------------------------------------------------------------------


class EnvironmentRecord(BaseModel):
    """Registry entry for one ``environment_id``.

    Attributes:
        ruby_version: Interpreter version of the source document.
        ruby_platform: Interpreter platform tag of the source document.
        source_file: Label (usually the path) of the last document merged
            under this id.
        timestamp: Timestamp of that document.
        environment: Its full provenance block.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    ruby_version: str
    ruby_platform: str
    source_file: str
    timestamp: str
    environment: EnvironmentInfo | None = None

    @field_validator("ruby_version", mode="before")
    @classmethod
    def _coerce_ruby_version(cls, v: Any) -> Any:
        return coerce_version(v)

    @field_validator("timestamp", mode="before")
    @classmethod
    def _coerce_timestamp(cls, v: Any) -> Any:
        return coerce_timestamp(v)

    def to_hash(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class MergeMetadata(BaseModel):
    """Merge-level metadata. Version and platform lists stay sorted and unique."""

    model_config = ConfigDict(extra="ignore", validate_assignment=True)

    merged_at: str = Field(default_factory=utc_now_iso)
    ruby_versions: list[str] = Field(default_factory=list)
    platforms: list[str] = Field(default_factory=list)

    @field_validator("merged_at", mode="before")
    @classmethod
    def _coerce_merged_at(cls, v: Any) -> Any:
        return coerce_timestamp(v)

    @field_validator("ruby_versions", mode="before")
    @classmethod
    def _coerce_versions(cls, v: Any) -> Any:
        if isinstance(v, (list, tuple, set)):
            return [coerce_version(item) for item in v]
        return v

    def add_ruby_version(self, version: str) -> None:
        if version not in self.ruby_versions:
            self.ruby_versions = sorted([*self.ruby_versions, version])

    def add_platform(self, platform: str) -> None:
        if platform not in self.platforms:
            self.platforms = sorted([*self.platforms, platform])

    def to_hash(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


# ---------------------------------------------------------------------------
# Combined results
# ---------------------------------------------------------------------------


def _load_combined(
    raw: Mapping[str, Any] | None,
    record_cls: type[PerformanceRecord] | type[MemoryRecord],
) -> dict[DataSize, dict[Format, dict[str, dict[str, Any]]]]:
    table: dict[DataSize, dict[Format, dict[str, dict[str, Any]]]] = {}
    for size_key, size_data in (raw or {}).items():
        size: DataSize = DataSize(size_key)
        for format_key, format_data in (size_data or {}).items():
            fmt: Format = Format(format_key)
            for serializer, env_results in (format_data or {}).items():
                name: str = str(serializer)
                leaves: dict[str, Any] = (
                    table.setdefault(size, {}).setdefault(fmt, {}).setdefault(name, {})
                )
                for env_id, record_data in (env_results or {}).items():
                    leaves[str(env_id)] = record_cls.model_validate(
                        {
                            **dict(record_data),
                            "adapter": name,
                            "format": fmt,
                            "data_size": size,
                        }
                    )
    return table


def _dump_combined(
    table: Mapping[DataSize, Mapping[Format, Mapping[str, Mapping[str, BaseModel]]]],
) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for size in DataSize:
        size_data = table.get(size)
        if not size_data:
            continue
        size_out: dict[str, Any] = {}
        for fmt in Format:
            format_data = size_data.get(fmt)
            if not format_data:
                continue
            size_out[fmt.value] = {
                serializer: {
                    env_id: record.model_dump(mode="json", exclude_none=True)
                    for env_id, record in env_results.items()
                }
                for serializer, env_results in format_data.items()
            }
        if size_out:
            out[size.value] = size_out
    return out


class CombinedResults(BaseModel):
    """Cross-environment record tables, one per operation."""

    model_config = ConfigDict(extra="ignore")

    parsing: CombinedPerformanceTable = Field(default_factory=dict)
    generation: CombinedPerformanceTable = Field(default_factory=dict)
    streaming: CombinedPerformanceTable = Field(default_factory=dict)
    memory: CombinedMemoryTable = Field(default_factory=dict)

    @classmethod
    def from_hash(cls, data: Mapping[str, Any] | None) -> "CombinedResults":
        data = data or {}
        return cls(
            parsing=_load_combined(data.get("parsing"), PerformanceRecord),
            generation=_load_combined(data.get("generation"), PerformanceRecord),
            streaming=_load_combined(data.get("streaming"), PerformanceRecord),
            memory=_load_combined(data.get("memory"), MemoryRecord),
        )

    def to_hash(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for op in Operation:
            dumped: dict[str, Any] = _dump_combined(self.table(op))
            if dumped:
                out[op.value] = dumped
        return out

    def table(
        self, operation: Operation,
    ) -> CombinedPerformanceTable | CombinedMemoryTable:
        match operation:
            case Operation.PARSING:
                return self.parsing
            case Operation.GENERATION:
                return self.generation
            case Operation.STREAMING:
                return self.streaming
            case Operation.MEMORY:
                return self.memory

    def add_record(
        self,
        operation: Operation,
        size: DataSize,
        fmt: Format,
        serializer: str,
        environment_id: str,
        record: Record,
    ) -> Record | None:
        """Keyed insert of one leaf.

        Returns:
            The record previously stored at that leaf, if any.
        """
        if (operation is Operation.MEMORY) != isinstance(record, MemoryRecord):
            raise TypeError(
                f"{type(record).__name__} cannot be filed under {operation.value}"
            )
        leaves: dict[str, Any] = (
            self.table(operation)
            .setdefault(size, {})
            .setdefault(fmt, {})
            .setdefault(serializer, {})
        )
        previous: Record | None = leaves.get(environment_id)
        leaves[environment_id] = record
        return previous

    def get(
        self,
        operation: Operation,
        size: DataSize,
        fmt: Format,
        serializer: str,
    ) -> dict[str, Record]:
        """Environment → record map for one serializer, empty if absent."""
        return dict(
            self.table(operation).get(size, {}).get(fmt, {}).get(serializer, {})
        )

    def serializers(
        self, operation: Operation, size: DataSize, fmt: Format,
    ) -> list[str]:
        return list(self.table(operation).get(size, {}).get(fmt, {}).keys())

    def environment_ids(self) -> set[str]:
        """Every environment id referenced by any leaf."""
        ids: set[str] = set()
        for op in Operation:
            for size_data in self.table(op).values():
                for format_data in size_data.values():
                    for env_results in format_data.values():
                        ids.update(env_results.keys())
        return ids

    def is_empty(self) -> bool:
        return not any(self.table(op) for op in Operation)


# ---------------------------------------------------------------------------
# Merged result
# ---------------------------------------------------------------------------


class MergedBenchmarkResult(BaseModel):
    """Environment registry + combined results + merge metadata.

    Example:
        >>> merged = MergedBenchmarkResult()
        >>> merged.combined_results.is_empty()
        True
        >>> sorted(merged.to_hash())
        ['combined_results', 'environments', 'metadata']
    """

    model_config = ConfigDict(extra="ignore")

    environments: dict[str, EnvironmentRecord] = Field(default_factory=dict)
    combined_results: CombinedResults = Field(default_factory=CombinedResults)
    metadata: MergeMetadata = Field(default_factory=MergeMetadata)

    @classmethod
    def from_hash(cls, data: Mapping[str, Any]) -> "MergedBenchmarkResult":
        return cls(
            environments={
                str(env_id): EnvironmentRecord.model_validate(env_data)
                for env_id, env_data in (data.get("environments") or {}).items()
            },
            combined_results=CombinedResults.from_hash(data.get("combined_results")),
            metadata=MergeMetadata.model_validate(data.get("metadata") or {}),
        )

    def to_hash(self) -> dict[str, Any]:
        """Plain nested mapping consumed by report emitters."""
        return {
            "environments": {
                env_id: record.to_hash()
                for env_id, record in self.environments.items()
            },
            "combined_results": self.combined_results.to_hash(),
            "metadata": self.metadata.to_hash(),
        }

    def add_environment(self, environment_id: str, record: EnvironmentRecord) -> None:
        self.environments[environment_id] = record

    @property
    def ruby_versions(self) -> list[str]:
        return list(self.metadata.ruby_versions)

    @property
    def platforms(self) -> list[str]:
        return list(self.metadata.platforms)

    def dangling_environment_ids(self) -> set[str]:
        """Environment ids used in results but missing from the registry."""
        return self.combined_results.environment_ids() - set(self.environments)
