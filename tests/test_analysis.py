"""Unit tests for core.analysis module.

Tests per-format aggregates, the performance / memory summaries, single-run
rankings, the ASCII comparison table and CSV export.
"""

import csv
import io

import pytest

from conftest import build_document, memory, timing
from core.analysis import (
    CSV_COLUMNS,
    FormatSummary,
    analyze_memory,
    analyze_performance,
    fastest_serializer,
    format_comparison_table,
    merged_to_csv,
    slowest_serializer,
    summarize_format,
)
from core.benchmark_result import BenchmarkResultDocument
from core.merged_result import MergedBenchmarkResult
from core.merger import ResultMerger
from core.performance import DataSize, Format, Operation


def _document(ruby_version: str, oj: float, ox: float) -> BenchmarkResultDocument:
    return BenchmarkResultDocument.from_hash(
        build_document(
            ruby_version=ruby_version,
            parsing={
                "small": {
                    "json": {"oj": timing(oj), "json": timing(oj * 4)},
                    "xml": {"ox": timing(ox)},
                },
            },
            memory={"small": {"json": {"oj": memory(1000), "json": memory(3000)}}},
        )
    )


@pytest.fixture()
def merged() -> MergedBenchmarkResult:
    return ResultMerger().merge(
        [
            (_document("3.2.4", 0.002, 0.005), "a"),
            (_document("3.3.8", 0.001, 0.004), "b"),
        ]
    )


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------


class TestSummarizeFormat:
    """Tests for summarize_format."""

    def test_min_max_average(self, merged: MergedBenchmarkResult) -> None:
        summary: FormatSummary = summarize_format(
            merged, Operation.PARSING, DataSize.SMALL, Format.JSON,
        )
        assert [s.serializer for s in summary.serializers] == ["oj", "json"]
        oj = summary.fastest
        assert oj is not None
        assert oj.environments == 2
        assert oj.minimum == pytest.approx(0.001)
        assert oj.maximum == pytest.approx(0.002)
        assert oj.average == pytest.approx(0.0015)
        assert summary.metric == "time_per_iteration"

    def test_memory_metric(self, merged: MergedBenchmarkResult) -> None:
        summary: FormatSummary = summarize_format(
            merged, Operation.MEMORY, DataSize.SMALL, Format.JSON,
        )
        assert summary.metric == "total_allocated"
        assert summary.slowest is not None
        assert summary.slowest.serializer == "json"

    def test_absent_combination_is_empty(self, merged: MergedBenchmarkResult) -> None:
        summary: FormatSummary = summarize_format(
            merged, Operation.GENERATION, DataSize.LARGE, Format.TOML,
        )
        assert summary.serializers == []
        assert summary.fastest is None
        assert summary.to_hash() == {"fastest": None, "slowest": None, "serializer_count": 0}


class TestAnalyze:
    """Tests for analyze_performance and analyze_memory."""

    def test_performance(self, merged: MergedBenchmarkResult) -> None:
        result = analyze_performance(merged)
        assert set(result) == {"parsing"}
        json_entry = result["parsing"]["small"]["json"]
        assert json_entry["fastest"][0] == "oj"
        assert json_entry["slowest"][0] == "json"
        assert json_entry["serializer_count"] == 2
        assert result["parsing"]["small"]["xml"]["serializer_count"] == 1

    def test_memory(self, merged: MergedBenchmarkResult) -> None:
        result = analyze_memory(merged)
        assert result["small"]["json"]["most_efficient"] == ["oj", 1000.0]
        assert result["small"]["json"]["least_efficient"] == ["json", 3000.0]

    def test_none_is_empty(self) -> None:
        assert analyze_performance(None) == {}
        assert analyze_memory(None) == {}


class TestSingleRunRanking:
    """Tests for fastest_serializer and slowest_serializer."""

    def test_across_formats(self) -> None:
        document: BenchmarkResultDocument = _document("3.3.8", 0.001, 0.0005)
        assert fastest_serializer(document, Operation.PARSING, DataSize.SMALL) == ("ox", Format.XML)
        assert slowest_serializer(document, Operation.PARSING, DataSize.SMALL) == ("json", Format.JSON)

    def test_absent_size(self) -> None:
        document: BenchmarkResultDocument = _document("3.3.8", 0.001, 0.0005)
        assert fastest_serializer(document, Operation.PARSING, DataSize.LARGE) is None
        assert slowest_serializer(document, Operation.STREAMING, DataSize.SMALL) is None


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


class TestComparisonTable:
    """Tests for format_comparison_table."""

    def test_rows_and_relative(self, merged: MergedBenchmarkResult) -> None:
        table: str = format_comparison_table(
            merged, Operation.PARSING, DataSize.SMALL, Format.JSON,
        )
        lines: list[str] = table.splitlines()
        assert "PARSING: JSON (small)" in lines
        oj_row: str = next(line for line in lines if line.startswith("oj "))
        json_row: str = next(line for line in lines if line.startswith("json "))
        assert oj_row.endswith("1.00x")
        assert json_row.endswith("4.00x")
        assert lines.index(oj_row) < lines.index(json_row)

    def test_empty(self, merged: MergedBenchmarkResult) -> None:
        table: str = format_comparison_table(
            merged, Operation.STREAMING, DataSize.SMALL, Format.YAML,
        )
        assert "(no results)" in table


class TestCsvExport:
    """Tests for merged_to_csv."""

    def test_one_row_per_leaf(self, merged: MergedBenchmarkResult) -> None:
        rows: list[dict[str, str]] = list(csv.DictReader(io.StringIO(merged_to_csv(merged))))
        # parsing: 3 serializers x 2 envs, memory: 2 serializers x 2 envs
        assert len(rows) == 10
        assert tuple(rows[0]) == CSV_COLUMNS

    def test_inapplicable_columns_empty(self, merged: MergedBenchmarkResult) -> None:
        rows: list[dict[str, str]] = list(csv.DictReader(io.StringIO(merged_to_csv(merged))))
        memory_row: dict[str, str] = next(r for r in rows if r["operation"] == "memory")
        parsing_row: dict[str, str] = next(r for r in rows if r["operation"] == "parsing")
        assert memory_row["time_per_iteration"] == ""
        assert memory_row["total_allocated"] in ("1000", "3000")
        assert parsing_row["total_allocated"] == ""
        assert parsing_row["ruby_platform"] == "aarch64-linux"
