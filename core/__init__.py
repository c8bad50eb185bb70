"""Core domain layer for the serialization benchmark result aggregator.

This package provides the result document models, the schema validator, the
merge engine, run / run-set value objects and the simple aggregates consumed
by report emitters. Value models are Pydantic-based; single-run documents
and records are frozen.
"""

from core.analysis import (
    FormatSummary,
    SerializerStats,
    analyze_memory,
    analyze_performance,
    fastest_serializer,
    format_comparison_table,
    merged_to_csv,
    slowest_serializer,
    summarize_format,
)
from core.benchmark_result import BenchmarkResultDocument, EnvironmentInfo, SerializerInfo
from core.errors import (
    ConfigurationError,
    DuplicateResultError,
    NoResultsFoundError,
    PartialInputError,
    SerialbenchError,
    ValidationError,
)
from core.merged_result import (
    CombinedResults,
    EnvironmentRecord,
    MergedBenchmarkResult,
    MergeMetadata,
)
from core.merger import MergerConfig, ResultMerger, sanitize_environment_id
from core.performance import DataSize, Format, MemoryRecord, Operation, PerformanceRecord
from core.platform import Platform, PlatformKind, parse_platform_string
from core.run import Run, RunMetadata, RunSet, RunSetMetadata
from core.run_config import BenchmarkConfig, EnvironmentConfig
from core.schema_validator import DirectoryValidationReport, SchemaValidator

__all__: list[str] = [
    "BenchmarkConfig",
    "BenchmarkResultDocument",
    "CombinedResults",
    "ConfigurationError",
    "DataSize",
    "DirectoryValidationReport",
    "DuplicateResultError",
    "EnvironmentConfig",
    "EnvironmentInfo",
    "EnvironmentRecord",
    "Format",
    "FormatSummary",
    "MemoryRecord",
    "MergeMetadata",
    "MergedBenchmarkResult",
    "MergerConfig",
    "NoResultsFoundError",
    "Operation",
    "PartialInputError",
    "PerformanceRecord",
    "Platform",
    "PlatformKind",
    "ResultMerger",
    "Run",
    "RunMetadata",
    "RunSet",
    "RunSetMetadata",
    "SchemaValidator",
    "SerialbenchError",
    "SerializerInfo",
    "SerializerStats",
    "ValidationError",
    "analyze_memory",
    "analyze_performance",
    "fastest_serializer",
    "format_comparison_table",
    "merged_to_csv",
    "parse_platform_string",
    "sanitize_environment_id",
    "slowest_serializer",
    "summarize_format",
]
