"""Atomic measurement records and the closed key sets they are filed under.

A benchmark run produces one record per serializer × format × data size ×
operation. Timing operations (parsing, generation, streaming) produce
:class:`PerformanceRecord`; the memory operation produces
:class:`MemoryRecord`.

Derived-value contract:
    Records are *validated*, not computed. The merge engine never recomputes
    ``iterations_per_second`` or ``time_per_iteration``; it trusts the
    producer and verifies through :func:`derived_value_errors`. The schema
    validator calls it on raw mappings; :meth:`PerformanceRecord.consistency_errors`
    applies the same check to a loaded record.

Example:
    >>> record = PerformanceRecord(
    ...     time_per_iterations=0.02,
    ...     time_per_iteration=0.001,
    ...     iterations_per_second=1000.0,
    ...     iterations_count=20,
    ... )
    >>> record.consistency_errors("parsing.small.json.oj")
    []
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Operation(str, Enum):
    """Benchmarked operation. Closed set, matched exhaustively."""

    PARSING = "parsing"
    GENERATION = "generation"
    STREAMING = "streaming"
    MEMORY = "memory"

    @classmethod
    def timed(cls) -> tuple["Operation", ...]:
        """Operations whose leaves are :class:`PerformanceRecord`."""
        return (cls.PARSING, cls.GENERATION, cls.STREAMING)


class DataSize(str, Enum):
    """Input document size class."""

    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


class Format(str, Enum):
    """Serialization format under test."""

    XML = "xml"
    JSON = "json"
    YAML = "yaml"
    TOML = "toml"


# ---------------------------------------------------------------------------
# Tolerances
# ---------------------------------------------------------------------------


class Tolerances(BaseModel):
    """Allowed drift for the derived-value checks.

    Attributes:
        iterations_per_second: Max ``|1/time_per_iteration - ips|``.
        time_per_iteration: Max ``|time_per_iterations/count - tpi|``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    iterations_per_second: float = Field(default=0.01, ge=0.0)
    time_per_iteration: float = Field(default=1e-6, ge=0.0)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class _AdapterRecord(BaseModel):
    """Identity shared by every record.

    ``adapter``, ``format`` and ``data_size`` are redundant with the nesting
    path in on-disk documents; loaders fill them from the path so a record
    stays self-describing once pulled out of its tree.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    adapter: str | None = Field(default=None, description="Serializer name")
    format: Format | None = Field(default=None, description="Format under test")
    data_size: DataSize | None = Field(default=None, description="Size class")


class PerformanceRecord(_AdapterRecord):
    """Timing figures for one serializer × format × size × operation.

    Attributes:
        time_per_iterations: Total wall time for ``iterations_count`` runs.
        time_per_iteration: Mean time per single iteration (seconds).
        iterations_per_second: Throughput, ``≈ 1 / time_per_iteration``.
        iterations_count: Number of iterations measured. At least 1.
    """

    time_per_iterations: float = Field(ge=0.0)
    time_per_iteration: float = Field(ge=0.0)
    iterations_per_second: float = Field(ge=0.0)
    iterations_count: int = Field(ge=1)

    def consistency_errors(
        self,
        path: str,
        tolerances: Tolerances | None = None,
    ) -> list[str]:
        """Return derived-value violations for this record.

        Args:
            path: Dotted location used to prefix each message.
            tolerances: Allowed drift. Defaults to :class:`Tolerances`.

        Returns:
            Possibly empty list of messages.
        """
        tol: Tolerances = tolerances or Tolerances()
        return derived_value_errors(
            path=path,
            time_per_iterations=self.time_per_iterations,
            time_per_iteration=self.time_per_iteration,
            iterations_per_second=self.iterations_per_second,
            iterations_count=self.iterations_count,
            tolerances=tol,
        )


class MemoryRecord(_AdapterRecord):
    """Allocation figures for one serializer × format × size."""

    total_allocated: int = Field(ge=0)
    total_retained: int = Field(ge=0)
    allocated_memory: int = Field(ge=0)
    retained_memory: int = Field(ge=0)


PERFORMANCE_FIELDS: tuple[str, ...] = (
    "time_per_iterations",
    "time_per_iteration",
    "iterations_per_second",
    "iterations_count",
)

MEMORY_FIELDS: tuple[str, ...] = (
    "total_allocated",
    "total_retained",
    "allocated_memory",
    "retained_memory",
)


def derived_value_errors(
    path: str,
    time_per_iterations: float,
    time_per_iteration: float,
    iterations_per_second: float,
    iterations_count: int,
    tolerances: Tolerances,
) -> list[str]:
    """Check the two derived-value invariants of a timing record.

    A zero ``time_per_iteration`` skips the throughput check and a
    non-positive ``iterations_count`` skips the mean check; those cases are
    reported by the field-level rules instead.
    """
    errors: list[str] = []

    if time_per_iteration > 0:
        expected_ips: float = 1.0 / time_per_iteration
        if abs(expected_ips - iterations_per_second) > tolerances.iterations_per_second:
            errors.append(
                f"{path}: iterations_per_second ({iterations_per_second}) "
                f"doesn't match 1/time_per_iteration ({expected_ips})"
            )

    if iterations_count > 0:
        expected_tpi: float = time_per_iterations / iterations_count
        if abs(expected_tpi - time_per_iteration) > tolerances.time_per_iteration:
            errors.append(
                f"{path}: time_per_iteration ({time_per_iteration}) doesn't "
                f"match time_per_iterations/iterations_count ({expected_tpi})"
            )

    return errors
