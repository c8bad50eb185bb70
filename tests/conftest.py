"""Shared fixtures: result-document factories, validator and temp store."""

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from core.schema_validator import SchemaValidator
from infra.result_store import ResultStore, ResultStoreConfig

TIMESTAMP: str = "2025-06-13T14:07:11+00:00"


def timing(time_per_iteration: float, count: int = 20) -> dict[str, Any]:
    """Consistent timing record for ``time_per_iteration``."""
    return {
        "time_per_iterations": time_per_iteration * count,
        "time_per_iteration": time_per_iteration,
        "iterations_per_second": 1.0 / time_per_iteration,
        "iterations_count": count,
    }


def memory(total_allocated: int = 4096) -> dict[str, Any]:
    return {
        "total_allocated": total_allocated,
        "total_retained": 128,
        "allocated_memory": total_allocated * 2,
        "retained_memory": 256,
    }


def build_document(
    ruby_version: str = "3.3.8",
    ruby_platform: str = "aarch64-linux",
    parsing: dict[str, Any] | None = None,
    timestamp: str = TIMESTAMP,
    **sections: Any,
) -> dict[str, Any]:
    """Valid single-run document; ``sections`` adds or replaces keys."""
    document: dict[str, Any] = {
        "ruby_version": ruby_version,
        "ruby_platform": ruby_platform,
        "timestamp": timestamp,
        "environment": {
            "ruby_version": ruby_version,
            "ruby_platform": ruby_platform,
            "serializer_versions": {"oj": "3.16.11"},
            "timestamp": timestamp,
        },
        "serializers": [{"format": "json", "name": "oj", "version": "3.16.11"}],
        "parsing": (
            parsing if parsing is not None else {"small": {"json": {"oj": timing(0.001)}}}
        ),
    }
    document.update(sections)
    return document


@pytest.fixture()
def make_document() -> Callable[..., dict[str, Any]]:
    return build_document


@pytest.fixture()
def validator() -> SchemaValidator:
    return SchemaValidator()


@pytest.fixture()
def store(tmp_path: Path) -> ResultStore:
    return ResultStore(ResultStoreConfig(base_path=tmp_path / "results"))
