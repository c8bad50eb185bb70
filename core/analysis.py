"""Simple aggregates over merged results for report emitters.

Only min / max / average are computed here. Anything beyond that belongs to
the report layer.

Example:
    >>> summary = summarize_format(merged, Operation.PARSING, DataSize.SMALL, Format.JSON)
    >>> summary.fastest.serializer
    'oj'
    >>> print(format_comparison_table(merged, Operation.PARSING, DataSize.SMALL, Format.JSON))
"""

import csv
import io
import statistics

from pydantic import BaseModel, ConfigDict, Field

from core.benchmark_result import BenchmarkResultDocument
from core.merged_result import MergedBenchmarkResult
from core.performance import (
    DataSize,
    Format,
    MEMORY_FIELDS,
    MemoryRecord,
    Operation,
    PERFORMANCE_FIELDS,
    PerformanceRecord,
)

# ---------------------------------------------------------------------------
# Summary models
# ---------------------------------------------------------------------------


class SerializerStats(BaseModel):
    """Aggregate of one serializer across environments.

    Attributes:
        serializer: Serializer name.
        environments: Number of environments contributing a value.
        minimum: Smallest value.
        maximum: Largest value.
        average: Arithmetic mean.
    """

    model_config = ConfigDict(frozen=True)

    serializer: str
    environments: int = Field(ge=1)
    minimum: float
    maximum: float
    average: float


class FormatSummary(BaseModel):
    """Per-serializer aggregates for one operation × size × format.

    For timing operations the metric is ``time_per_iteration`` (lower is
    faster); for memory it is ``total_allocated`` (lower is leaner).
    ``serializers`` is sorted by ascending average.
    """

    model_config = ConfigDict(frozen=True)

    operation: Operation
    data_size: DataSize
    format: Format
    metric: str
    serializers: list[SerializerStats] = Field(default_factory=list)

    @property
    def fastest(self) -> SerializerStats | None:
        return self.serializers[0] if self.serializers else None

    @property
    def slowest(self) -> SerializerStats | None:
        return self.serializers[-1] if self.serializers else None

    def to_hash(self) -> dict[str, object]:
        best: SerializerStats | None = self.fastest
        worst: SerializerStats | None = self.slowest
        return {
            "fastest": [best.serializer, best.average] if best else None,
            "slowest": [worst.serializer, worst.average] if worst else None,
            "serializer_count": len(self.serializers),
        }


def _metric_value(record: PerformanceRecord | MemoryRecord) -> float:
    if isinstance(record, MemoryRecord):
        return float(record.total_allocated)
    return record.time_per_iteration


def summarize_format(
    merged: MergedBenchmarkResult,
    operation: Operation,
    size: DataSize,
    fmt: Format,
) -> FormatSummary:
    """Min / max / average per serializer across every environment.

    Serializers whose average is zero carry no usable measurement and are
    left out.
    """
    stats: list[SerializerStats] = []
    for serializer in merged.combined_results.serializers(operation, size, fmt):
        env_results = merged.combined_results.get(operation, size, fmt, serializer)
        values: list[float] = [_metric_value(r) for r in env_results.values()]
        if not values:
            continue
        average: float = statistics.mean(values)
        if average <= 0:
            continue
        stats.append(
            SerializerStats(
                serializer=serializer,
                environments=len(values),
                minimum=min(values),
                maximum=max(values),
                average=average,
            )
        )
    stats.sort(key=lambda s: (s.average, s.serializer))
    return FormatSummary(
        operation=operation,
        data_size=size,
        format=fmt,
        metric="total_allocated" if operation is Operation.MEMORY else "time_per_iteration",
        serializers=stats,
    )


def _analyze(merged: MergedBenchmarkResult, operations: tuple[Operation, ...]) -> dict[str, dict]:
    summary: dict[str, dict] = {}
    for operation in operations:
        table = merged.combined_results.table(operation)
        op_out: dict[str, dict] = {}
        for size in DataSize:
            if size not in table:
                continue
            size_out: dict[str, dict] = {}
            for fmt in Format:
                result: FormatSummary = summarize_format(merged, operation, size, fmt)
                if result.serializers:
                    size_out[fmt.value] = result.to_hash()
            if size_out:
                op_out[size.value] = size_out
        if op_out:
            summary[operation.value] = op_out
    return summary


def analyze_performance(merged: MergedBenchmarkResult | None) -> dict[str, dict]:
    """``operation → size → format → {fastest, slowest, serializer_count}``."""
    if merged is None:
        return {}
    return _analyze(merged, Operation.timed())


def analyze_memory(merged: MergedBenchmarkResult | None) -> dict[str, dict]:
    """``size → format → {most_efficient, least_efficient, serializer_count}``."""
    if merged is None:
        return {}
    by_size: dict[str, dict] = _analyze(merged, (Operation.MEMORY,)).get(
        Operation.MEMORY.value, {}
    )
    return {
        size: {
            fmt: {
                "most_efficient": entry["fastest"],
                "least_efficient": entry["slowest"],
                "serializer_count": entry["serializer_count"],
            }
            for fmt, entry in formats.items()
        }
        for size, formats in by_size.items()
    }


def _ranked(
    document: BenchmarkResultDocument, operation: Operation, size: DataSize,
) -> list[tuple[float, str, Format]]:
    ranked: list[tuple[float, str, Format]] = []
    for record_size, fmt, serializer, record in document.records(operation):
        if record_size is size:
            ranked.append((_metric_value(record), serializer, fmt))
    ranked.sort(key=lambda item: (item[0], item[1]))
    return ranked


def fastest_serializer(
    document: BenchmarkResultDocument,
    operation: Operation,
    size: DataSize,
) -> tuple[str, Format] | None:
    """Serializer with the lowest metric in one run, or None if absent."""
    ranked = _ranked(document, operation, size)
    if not ranked:
        return None
    _, serializer, fmt = ranked[0]
    return serializer, fmt


def slowest_serializer(
    document: BenchmarkResultDocument,
    operation: Operation,
    size: DataSize,
) -> tuple[str, Format] | None:
    """Serializer with the highest metric in one run, or None if absent."""
    ranked = _ranked(document, operation, size)
    if not ranked:
        return None
    _, serializer, fmt = ranked[-1]
    return serializer, fmt


# ---------------------------------------------------------------------------
# Comparison Table Formatting
# ---------------------------------------------------------------------------


def format_comparison_table(
    merged: MergedBenchmarkResult,
    operation: Operation,
    size: DataSize,
    fmt: Format,
) -> str:
    """Generate a formatted ASCII table of one operation × size × format.

    One row per serializer, sorted fastest first, with a relative column
    against the fastest.

    Returns:
        Formatted multi-line string.

    Example:
        >>> table = format_comparison_table(merged, Operation.PARSING, DataSize.SMALL, Format.JSON)
        >>> "oj" in table
        True
    """
    summary: FormatSummary = summarize_format(merged, operation, size, fmt)
    is_memory: bool = operation is Operation.MEMORY
    unit: str = "bytes" if is_memory else "ms"
    scale: float = 1.0 if is_memory else 1000.0

    lines: list[str] = []
    lines.append("=" * 70)
    lines.append(
        f"{operation.value.upper()}: {fmt.value.upper()} ({size.value})"
    )
    lines.append("=" * 70)
    lines.append(f"Environments: {', '.join(sorted(merged.environments)) or '-'}")
    lines.append(f"Metric:       {summary.metric} ({unit}, lower is better)")
    lines.append("=" * 70)
    lines.append("")

    lines.append(
        f"{'Serializer':<20} {'Min':>10} {'Avg':>10} {'Max':>10} {'Envs':>5} {'Relative':>10}"
    )
    lines.append("-" * 70)

    best: SerializerStats | None = summary.fastest
    for stats in summary.serializers:
        relative: str = (
            f"{stats.average / best.average:.2f}x" if best and best.average > 0 else "N/A"
        )
        lines.append(
            f"{stats.serializer:<20} {stats.minimum * scale:>10.3f} "
            f"{stats.average * scale:>10.3f} {stats.maximum * scale:>10.3f} "
            f"{stats.environments:>5} {relative:>10}"
        )
    if not summary.serializers:
        lines.append("  (no results)")

    lines.append("")
    lines.append("=" * 70)
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# CSV export
# ---------------------------------------------------------------------------

CSV_COLUMNS: tuple[str, ...] = (
    "operation",
    "data_size",
    "format",
    "serializer",
    "environment_id",
    "ruby_version",
    "ruby_platform",
    *PERFORMANCE_FIELDS,
    *MEMORY_FIELDS,
)


def merged_to_csv(merged: MergedBenchmarkResult) -> str:
    """Flatten every leaf of ``combined_results`` into CSV rows.

    Columns that do not apply to a row's operation are left empty.
    """
    buffer: io.StringIO = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=list(CSV_COLUMNS), lineterminator="\n")
    writer.writeheader()
    for operation in Operation:
        table = merged.combined_results.table(operation)
        for size in DataSize:
            for fmt in Format:
                for serializer, env_results in table.get(size, {}).get(fmt, {}).items():
                    for env_id, record in env_results.items():
                        env = merged.environments.get(env_id)
                        fields = MEMORY_FIELDS if operation is Operation.MEMORY else PERFORMANCE_FIELDS
                        writer.writerow(
                            {
                                "operation": operation.value,
                                "data_size": size.value,
                                "format": fmt.value,
                                "serializer": serializer,
                                "environment_id": env_id,
                                "ruby_version": env.ruby_version if env else "",
                                "ruby_platform": env.ruby_platform if env else "",
                                **{name: getattr(record, name) for name in fields},
                            }
                        )
    return buffer.getvalue()
