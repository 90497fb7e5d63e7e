"""Document store persisted as YAML files.

One file per document: {data_dir}/{collection}/{doc_id}.yaml. Locking,
transactions and the change feed are inherited from MemoryStore; only the
storage hooks touch the filesystem. Transaction isolation holds within one
process, which is the deployment this backend is meant for.
"""

import logging
from pathlib import Path
from typing import Dict

import yaml

from occupy.store.memory import MemoryStore

LOG = logging.getLogger("occupy.store.yaml_store")


class YamlStore(MemoryStore):
    """MemoryStore whose documents survive restarts."""

    def __init__(self, data_dir: Path, latency: float = 0.0) -> None:
        super().__init__(latency=latency)
        self.data_dir = Path(data_dir)

    def _collection_dir(self, collection: str) -> Path:
        return self.data_dir / collection

    def _doc_path(self, collection: str, doc_id: str) -> Path:
        return self._collection_dir(collection) / f"{doc_id}.yaml"

    def _get(self, collection: str, doc_id: str) -> dict | None:
        """Load one document. Returns None if missing or invalid."""
        path = self._doc_path(collection, doc_id)
        if not path.is_file():
            return None
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as e:
            LOG.warning("Failed to load %s: %s", path, e)
            return None
        if not isinstance(data, dict):
            return None
        return data

    def _put(self, collection: str, doc_id: str, data: dict) -> None:
        path = self._doc_path(collection, doc_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        raw = yaml.dump(
            data,
            default_flow_style=False,
            allow_unicode=True,
            sort_keys=False,
            width=1000,
        )
        tmp = path.with_suffix(".yaml.tmp")
        tmp.write_text(raw, encoding="utf-8")
        tmp.replace(path)
        LOG.debug("Saved %s/%s to %s", collection, doc_id, path)

    def _remove(self, collection: str, doc_id: str) -> bool:
        path = self._doc_path(collection, doc_id)
        if not path.is_file():
            return False
        path.unlink()
        return True

    def _all(self, collection: str) -> Dict[str, dict]:
        base = self._collection_dir(collection)
        if not base.is_dir():
            return {}
        out = {}
        for f in sorted(base.glob("*.yaml")):
            data = self._get(collection, f.stem)
            if data is not None:
                out[f.stem] = data
        return out
