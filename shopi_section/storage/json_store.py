from pathlib import Path
import json
import os
import tempfile
import threading
from typing import Any, Callable, Dict, List


class JsonStore:
    """JSON-on-disk collections: one file per collection.

    Every read-modify-write goes through a single process lock and files are
    replaced atomically, so a crashed write never leaves half a document.
    """

    def __init__(self, data_dir: Path | str | None = None):
        self._lock = threading.RLock()
        self.data_dir = None
        if data_dir is not None:
            self.set_data_dir(data_dir)

    def init_app(self, app):
        self.set_data_dir(app.config["DATA_DIR"])
        app.extensions["json_store"] = self

    def set_data_dir(self, data_dir: Path | str):
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, collection: str) -> Path:
        if self.data_dir is None:
            raise RuntimeError("JsonStore has no data directory; call init_app() first")
        return self.data_dir / f"{collection}.json"

    def _load(self, collection: str) -> Dict[str, Any]:
        p = self._path(collection)
        if not p.exists():
            return {}
        with p.open("r", encoding="utf-8") as f:
            return json.load(f)

    def _save(self, collection: str, obj: Dict[str, Any]):
        p = self._path(collection)
        fd, tmp = tempfile.mkstemp(prefix=f".{collection}.", suffix=".tmp", dir=str(p.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(obj, f, indent=2, ensure_ascii=False)
            os.replace(tmp, p)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def list(self, collection: str) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._load(collection).values())

    def get(self, collection: str, key: str):
        with self._lock:
            return self._load(collection).get(key)

    def upsert(self, collection: str, key: str, value: Dict[str, Any]):
        with self._lock:
            data = self._load(collection)
            data[key] = value
            self._save(collection, data)

    def delete(self, collection: str, key: str) -> bool:
        with self._lock:
            data = self._load(collection)
            existed = data.pop(key, None) is not None
            if existed:
                self._save(collection, data)
            return existed

    def delete_where(self, collection: str, predicate: Callable[[Dict[str, Any]], bool]) -> int:
        """Drop every item the predicate matches; returns how many were removed."""
        with self._lock:
            data = self._load(collection)
            doomed = [k for k, v in data.items() if predicate(v)]
            for k in doomed:
                del data[k]
            if doomed:
                self._save(collection, data)
            return len(doomed)

    def replace_collection(self, collection: str, mapping: Dict[str, Any]):
        """Overwrite entire collection with provided mapping (id -> obj)."""
        if not isinstance(mapping, dict):
            raise TypeError("mapping must be a dict")
        with self._lock:
            self._save(collection, mapping)
