"""Document store contracts and backends (memory, yaml files)."""

from pathlib import Path

from occupy.config import StoreConfig
from occupy.store.base import IssueStore, RepositoryCatalog, TeamLedger, UpdateOutcome
from occupy.store.memory import MemoryStore
from occupy.store.yaml_store import YamlStore


def make_store(config: StoreConfig) -> MemoryStore:
    """Build the configured backend."""
    if config.backend == "memory":
        return MemoryStore()
    if config.backend == "yaml":
        return YamlStore(Path(config.data_dir).expanduser().resolve())
    raise ValueError(f"Unknown store backend: {config.backend}")


__all__ = [
    "IssueStore",
    "MemoryStore",
    "RepositoryCatalog",
    "TeamLedger",
    "UpdateOutcome",
    "YamlStore",
    "make_store",
]
