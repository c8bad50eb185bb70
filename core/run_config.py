"""Provenance configs attached to a run.

:class:`EnvironmentConfig` describes how the interpreter environment was
provisioned and :class:`BenchmarkConfig` what was measured. Both are stored
inside a run's ``metadata.yaml``; together with the platform string they
identify a run for duplicate detection in a run set.

Example ``EnvironmentConfig`` file::

    name: docker-ruby-3.2
    kind: docker
    created_at: '2025-06-13T15:18:43+08:00'
    ruby_build_tag: 3.2.4
    description: Docker environment for Ruby 3.2 benchmarks
    docker:
      image: ruby:3.2-slim
      dockerfile: ../../docker/Dockerfile.ubuntu
"""

from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from core.benchmark_result import coerce_timestamp, coerce_version
from core.codec import read_mapping, write_mapping
from core.merged_result import utc_now_iso
from core.performance import DataSize, Format
from core.platform import PlatformKind


class DockerEnvConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    image: str | None = None
    dockerfile: str | None = None


class AsdfEnvConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    auto_install: bool = True


class EnvironmentConfig(BaseModel):
    """How the interpreter environment of a run was provisioned."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str = Field(min_length=1)
    kind: PlatformKind
    created_at: str = Field(default_factory=utc_now_iso)
    ruby_build_tag: str | None = None
    description: str | None = None
    docker: DockerEnvConfig | None = None
    asdf: AsdfEnvConfig | None = None

    @field_validator("created_at", mode="before")
    @classmethod
    def _coerce_created_at(cls, v: Any) -> Any:
        return coerce_timestamp(v)

    @field_validator("ruby_build_tag", mode="before")
    @classmethod
    def _coerce_build_tag(cls, v: Any) -> Any:
        return coerce_version(v)

    def to_hash(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)

    def to_file(self, path: Path | str) -> Path:
        return write_mapping(Path(path), self.to_hash())

    @classmethod
    def from_file(cls, path: Path | str) -> "EnvironmentConfig":
        return cls.model_validate(read_mapping(Path(path)))


class BenchmarkIterations(BaseModel):
    """Iterations per data size."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    small: int = Field(default=20, ge=1)
    medium: int = Field(default=5, ge=1)
    large: int = Field(default=2, ge=1)


class BenchmarkConfig(BaseModel):
    """What a benchmark run measured.

    ``operations`` uses the driver's verbs (``parse``, ``generate``,
    ``memory``, ``streaming``), not the result-document operation keys.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    benchmark_name: str = Field(min_length=1)
    description: str | None = None
    data_sizes: list[DataSize] = Field(default_factory=lambda: list(DataSize))
    formats: list[Format] = Field(default_factory=lambda: list(Format))
    iterations: BenchmarkIterations = Field(default_factory=BenchmarkIterations)
    warmup: int = Field(default=1, ge=0)
    operations: list[str] = Field(
        default_factory=lambda: ["parse", "generate", "memory", "streaming"],
    )

    @field_validator("operations")
    @classmethod
    def _check_operations(cls, v: list[str]) -> list[str]:
        allowed: set[str] = {"parse", "generate", "memory", "streaming"}
        unknown: list[str] = [op for op in v if op not in allowed]
        if unknown:
            raise ValueError(f"unknown operations: {unknown}")
        return v

    def to_hash(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)

    def to_file(self, path: Path | str) -> Path:
        return write_mapping(Path(path), self.to_hash())

    @classmethod
    def from_file(cls, path: Path | str) -> "BenchmarkConfig":
        data: dict[str, Any] = read_mapping(Path(path))
        # older configs use "name"
        if "benchmark_name" not in data and "name" in data:
            data["benchmark_name"] = data.pop("name")
        return cls.model_validate(data)
