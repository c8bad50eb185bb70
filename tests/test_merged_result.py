"""Unit tests for core.merged_result module.

Tests the combined-results table operations, merge metadata ordering and
YAML / JSON round-trips of MergedBenchmarkResult.
"""

from pathlib import Path

import pytest

from conftest import build_document, memory, timing
from core.benchmark_result import BenchmarkResultDocument
from core.codec import read_mapping, write_mapping
from core.merged_result import (
    CombinedResults,
    EnvironmentRecord,
    MergedBenchmarkResult,
    MergeMetadata,
)
from core.merger import ResultMerger
from core.performance import DataSize, Format, MemoryRecord, Operation, PerformanceRecord


def _record(tpi: float = 0.001) -> PerformanceRecord:
    return PerformanceRecord(**timing(tpi))


def _merged() -> MergedBenchmarkResult:
    docs = [
        (
            BenchmarkResultDocument.from_hash(
                build_document(
                    ruby_version=version,
                    memory={"small": {"json": {"oj": memory()}}},
                )
            ),
            f"{version}/results.yaml",
        )
        for version in ("3.2.4", "3.3.8")
    ]
    return ResultMerger().merge(docs)


class TestCombinedResults:
    """Tests for CombinedResults keyed insert and lookup."""

    def test_add_record_returns_previous(self) -> None:
        """A second insert at the same leaf returns the first record."""
        combined: CombinedResults = CombinedResults()
        first: PerformanceRecord = _record(0.001)
        assert combined.add_record(
            Operation.PARSING, DataSize.SMALL, Format.JSON, "oj", "env", first,
        ) is None
        previous = combined.add_record(
            Operation.PARSING, DataSize.SMALL, Format.JSON, "oj", "env", _record(0.002),
        )
        assert previous == first
        assert len(combined.get(Operation.PARSING, DataSize.SMALL, Format.JSON, "oj")) == 1

    def test_record_type_must_match_operation(self) -> None:
        """Memory records cannot be filed under a timing operation."""
        combined: CombinedResults = CombinedResults()
        record: MemoryRecord = MemoryRecord(**memory())
        with pytest.raises(TypeError):
            combined.add_record(Operation.PARSING, DataSize.SMALL, Format.JSON, "oj", "env", record)

    def test_environment_ids_and_empty(self) -> None:
        combined: CombinedResults = CombinedResults()
        assert combined.is_empty()
        combined.add_record(Operation.STREAMING, DataSize.LARGE, Format.XML, "ox", "a", _record())
        assert combined.environment_ids() == {"a"}
        assert not combined.is_empty()

    def test_get_absent_is_empty(self) -> None:
        """Absent branches read as empty, never zero-filled."""
        combined: CombinedResults = CombinedResults()
        assert combined.get(Operation.PARSING, DataSize.SMALL, Format.JSON, "oj") == {}
        assert combined.to_hash() == {}


class TestMergeMetadata:
    """Tests for sorted, unique version and platform lists."""

    def test_sorted_unique(self) -> None:
        meta: MergeMetadata = MergeMetadata()
        for version in ("3.3.8", "3.2.4", "3.3.8"):
            meta.add_ruby_version(version)
        assert meta.ruby_versions == ["3.2.4", "3.3.8"]

    def test_float_versions_coerced(self) -> None:
        meta: MergeMetadata = MergeMetadata.model_validate({"ruby_versions": [3.3]})
        assert meta.ruby_versions == ["3.3"]


class TestMergedBenchmarkResult:
    """Tests for MergedBenchmarkResult encoding."""

    def test_empty_to_hash_has_all_sections(self) -> None:
        out = MergedBenchmarkResult().to_hash()
        assert set(out) == {"environments", "combined_results", "metadata"}

    def test_dangling_ids(self) -> None:
        """Ids used in results but not registered are reported."""
        merged: MergedBenchmarkResult = MergedBenchmarkResult()
        merged.combined_results.add_record(
            Operation.PARSING, DataSize.SMALL, Format.JSON, "oj", "ghost", _record(),
        )
        merged.add_environment(
            "real",
            EnvironmentRecord(
                ruby_version="3.3.8",
                ruby_platform="aarch64-linux",
                source_file="x",
                timestamp="2025-06-13T14:07:11+00:00",
            ),
        )
        assert merged.dangling_environment_ids() == {"ghost"}

    @pytest.mark.parametrize("suffix", [".yaml", ".json"])
    def test_file_round_trip(self, tmp_path: Path, suffix: str) -> None:
        """parse(serialize(M)) == M for both encodings."""
        merged: MergedBenchmarkResult = _merged()
        path: Path = write_mapping(tmp_path / f"merged{suffix}", merged.to_hash())
        assert MergedBenchmarkResult.from_hash(read_mapping(path)) == merged
