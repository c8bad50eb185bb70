"""Single-run benchmark result document.

One :class:`BenchmarkResultDocument` is produced per execution run by an
external execution driver. It is immutable once produced and consumed only
by the merge engine, the result store and report emitters.

On-disk shape (``results.yaml`` / ``results.json``)::

    ruby_version: 3.3.8
    ruby_platform: aarch64-linux
    timestamp: '2025-06-13T14:07:11+00:00'
    environment: {ruby_version, ruby_platform, serializer_versions, timestamp}
    serializers: [{format, name, version}, ...]
    parsing:    {size: {format: {serializer: PerformanceRecord}}}
    generation: {size: {format: {serializer: PerformanceRecord}}}
    streaming:  {size: {format: {serializer: PerformanceRecord}}}
    memory:     {size: {format: {serializer: MemoryRecord}}}

Nesting is modelled with enum keys (:class:`DataSize`, :class:`Format`) and
string keys for serializer names, so an absent branch is an absent dict
entry rather than a defaulted value.
"""

from collections.abc import Iterator, Mapping
from datetime import date, datetime
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

from core.performance import (
    DataSize,
    Format,
    MemoryRecord,
    Operation,
    PerformanceRecord,
)

R = TypeVar("R", PerformanceRecord, MemoryRecord)

PerformanceTable = dict[DataSize, dict[Format, dict[str, PerformanceRecord]]]
"""``size → format → serializer → PerformanceRecord``."""

MemoryTable = dict[DataSize, dict[Format, dict[str, MemoryRecord]]]
"""``size → format → serializer → MemoryRecord``."""


# ---------------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------------


def coerce_timestamp(value: Any) -> Any:
    """Turn YAML-decoded ``datetime``/``date`` values back into ISO strings.

    PyYAML resolves unquoted ISO-8601 scalars into ``datetime`` objects.
    Timestamps are carried as strings everywhere else, so convert them back.
    """
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


def coerce_version(value: Any) -> Any:
    """Turn YAML-decoded numeric versions (``3.4``) into strings."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


# ---------------------------------------------------------------------------
# Provenance models
# ---------------------------------------------------------------------------


class SerializerInfo(BaseModel):
    """One serializer library that took part in a run."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    format: Format
    name: str = Field(min_length=1)
    version: str | None = None

    @field_validator("version", mode="before")
    @classmethod
    def _coerce_version(cls, v: Any) -> Any:
        return coerce_version(v)


class EnvironmentInfo(BaseModel):
    """Provenance of one result document.

    Attributes:
        ruby_version: Interpreter version, ``major.minor.patch``.
        ruby_platform: Interpreter platform tag (e.g. ``aarch64-linux``).
        serializer_versions: Library name → version string.
        timestamp: ISO-8601 time the run was produced.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    ruby_version: str
    ruby_platform: str
    serializer_versions: dict[str, str] = Field(default_factory=dict)
    timestamp: str

    @field_validator("ruby_version", mode="before")
    @classmethod
    def _coerce_ruby_version(cls, v: Any) -> Any:
        return coerce_version(v)

    @field_validator("timestamp", mode="before")
    @classmethod
    def _coerce_timestamp(cls, v: Any) -> Any:
        return coerce_timestamp(v)

    @field_validator("serializer_versions", mode="before")
    @classmethod
    def _coerce_serializer_versions(cls, v: Any) -> Any:
        if isinstance(v, Mapping):
            return {str(k): coerce_version(val) for k, val in v.items()}
        return v

    def to_hash(self) -> dict[str, Any]:
        """Plain-dict form with the on-disk key names."""
        return self.model_dump(mode="json")


# ---------------------------------------------------------------------------
# Table loading / dumping
# ---------------------------------------------------------------------------


def load_table(
    raw: Mapping[str, Any] | None,
    record_cls: type[R],
) -> dict[DataSize, dict[Format, dict[str, R]]]:
    """Build an enum-keyed record table from a raw nested mapping.

    ``adapter``, ``format`` and ``data_size`` of every record are taken from
    its position in the tree.

    Raises:
        ValueError: On unknown size or format keys.
        pydantic.ValidationError: On malformed record fields.
    """
    table: dict[DataSize, dict[Format, dict[str, R]]] = {}
    for size_key, size_data in (raw or {}).items():
        size: DataSize = DataSize(size_key)
        for format_key, format_data in (size_data or {}).items():
            fmt: Format = Format(format_key)
            for serializer, record_data in (format_data or {}).items():
                name: str = str(serializer)
                record: R = record_cls.model_validate(
                    {
                        **dict(record_data),
                        "adapter": name,
                        "format": fmt,
                        "data_size": size,
                    }
                )
                table.setdefault(size, {}).setdefault(fmt, {})[name] = record
    return table


def dump_table(
    table: Mapping[DataSize, Mapping[Format, Mapping[str, BaseModel]]],
) -> dict[str, Any]:
    """Inverse of :func:`load_table`; sizes and formats in enum order."""
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
                name: record.model_dump(mode="json", exclude_none=True)
                for name, record in format_data.items()
            }
        if size_out:
            out[size.value] = size_out
    return out


# ---------------------------------------------------------------------------
# Document
# ---------------------------------------------------------------------------


class BenchmarkResultDocument(BaseModel):
    """Every record of one execution run plus its provenance.

    ``timestamp`` has no default: a document without one is rejected rather
    than stamped with the current time.

    Example:
        >>> doc = BenchmarkResultDocument.from_hash({
        ...     "ruby_version": "3.3.8",
        ...     "ruby_platform": "aarch64-linux",
        ...     "timestamp": "2025-06-13T14:07:11+00:00",
        ...     "environment": {
        ...         "ruby_version": "3.3.8",
        ...         "ruby_platform": "aarch64-linux",
        ...         "serializer_versions": {"oj": "3.16.11"},
        ...         "timestamp": "2025-06-13T14:07:11+00:00",
        ...     },
        ...     "parsing": {"small": {"json": {"oj": {
        ...         "time_per_iterations": 0.02,
        ...         "time_per_iteration": 0.001,
        ...         "iterations_per_second": 1000.0,
        ...         "iterations_count": 20,
        ...     }}}},
        ... })
        >>> doc.parsing[DataSize.SMALL][Format.JSON]["oj"].adapter
        'oj'
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    ruby_version: str
    ruby_platform: str
    timestamp: str
    environment: EnvironmentInfo
    serializers: list[SerializerInfo] = Field(default_factory=list)
    parsing: PerformanceTable = Field(default_factory=dict)
    generation: PerformanceTable = Field(default_factory=dict)
    streaming: PerformanceTable = Field(default_factory=dict)
    memory: MemoryTable = Field(default_factory=dict)

    @field_validator("ruby_version", mode="before")
    @classmethod
    def _coerce_ruby_version(cls, v: Any) -> Any:
        return coerce_version(v)

    @field_validator("timestamp", mode="before")
    @classmethod
    def _coerce_timestamp(cls, v: Any) -> Any:
        return coerce_timestamp(v)

    @classmethod
    def from_hash(cls, data: Mapping[str, Any]) -> "BenchmarkResultDocument":
        """Build a document from its on-disk mapping form."""
        payload: dict[str, Any] = {
            key: value
            for key, value in data.items()
            if key not in {op.value for op in Operation}
        }
        for op in Operation.timed():
            payload[op.value] = load_table(data.get(op.value), PerformanceRecord)
        payload[Operation.MEMORY.value] = load_table(
            data.get(Operation.MEMORY.value), MemoryRecord,
        )
        return cls.model_validate(payload)

    def to_hash(self) -> dict[str, Any]:
        """On-disk mapping form. Every operation key is written, empty or not."""
        out: dict[str, Any] = {
            "serializers": [
                s.model_dump(mode="json", exclude_none=True)
                for s in self.serializers
            ],
        }
        for op in Operation:
            out[op.value] = dump_table(self.table(op))
        out["ruby_version"] = self.ruby_version
        out["ruby_platform"] = self.ruby_platform
        out["timestamp"] = self.timestamp
        out["environment"] = self.environment.to_hash()
        return out

    def table(
        self, operation: Operation,
    ) -> PerformanceTable | MemoryTable:
        """Return the record table of ``operation``."""
        match operation:
            case Operation.PARSING:
                return self.parsing
            case Operation.GENERATION:
                return self.generation
            case Operation.STREAMING:
                return self.streaming
            case Operation.MEMORY:
                return self.memory

    def records(
        self, operation: Operation,
    ) -> Iterator[tuple[DataSize, Format, str, PerformanceRecord | MemoryRecord]]:
        """Yield ``(size, format, serializer, record)`` for ``operation``."""
        for size, size_data in self.table(operation).items():
            for fmt, format_data in size_data.items():
                for serializer, record in format_data.items():
                    yield size, fmt, serializer, record

    def serializer_names(self) -> list[str]:
        """Sorted names of every serializer with at least one record."""
        names: set[str] = set()
        for op in Operation:
            for _, _, serializer, _ in self.records(op):
                names.add(serializer)
        return sorted(names)
