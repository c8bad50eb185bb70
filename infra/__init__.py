"""Infrastructure layer for the serialization benchmark result aggregator.

This package provides the file-system repository for runs and run sets and
the run-set workflows built on it.
"""

from infra.result_store import ResultStore, ResultStoreConfig
from infra.run_set_manager import RunSetManager

__all__: list[str] = [
    "ResultStore",
    "ResultStoreConfig",
    "RunSetManager",
]
