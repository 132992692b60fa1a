import copy
import json
import os
import threading
from typing import Optional, Dict, Any, List

from document_store import WriteBatch, apply_updates, matches
from errors import NotFound, StoreFailure, ValidationError


class DatabaseManager:
    """File-based document store: one JSON file per document"""

    def __init__(self, base_dir: str = "data"):
        self.base_dir = base_dir
        self._lock = threading.RLock()
        self._ensure_directories()

    def _ensure_directories(self):
        """Ensure the base directory exists"""
        os.makedirs(self.base_dir, exist_ok=True)

    def get_collection_dir(self, collection: str) -> str:
        """Get collection directory path"""
        return os.path.join(self.base_dir, self._safe_name(collection))

    def get_document_file(self, collection: str, doc_id: str) -> str:
        """Get document json file path"""
        return os.path.join(self.get_collection_dir(collection), f"{self._safe_name(doc_id)}.json")

    @staticmethod
    def _safe_name(name: str) -> str:
        name = str(name)
        if not name or name in (".", "..") or "/" in name or "\\" in name:
            raise ValidationError(f"Invalid document path segment: {name!r}")
        return name

    def read_json(self, file_path: str) -> Optional[Dict[Any, Any]]:
        """Read JSON file; None when it does not exist"""
        if not os.path.exists(file_path):
            return None
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            print(f"❌ Error reading {file_path}: {e}")
            raise StoreFailure(f"Could not read {os.path.basename(file_path)}")

    def write_json(self, file_path: str, data: Dict[Any, Any]):
        """Write JSON file through a temp file so readers never see half a document"""
        try:
            os.makedirs(os.path.dirname(file_path), exist_ok=True)
            tmp_path = f"{file_path}.tmp"
            with open(tmp_path, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, file_path)
        except OSError as e:
            print(f"❌ Error writing {file_path}: {e}")
            raise StoreFailure(f"Could not write {os.path.basename(file_path)}")

    def _remove(self, file_path: str):
        try:
            if os.path.exists(file_path):
                os.remove(file_path)
        except OSError as e:
            print(f"❌ Error deleting {file_path}: {e}")
            raise StoreFailure(f"Could not delete {os.path.basename(file_path)}")

    # ==================== DOCUMENT OPERATIONS ====================

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            return self.read_json(self.get_document_file(collection, doc_id))

    def set(self, collection: str, doc_id: str, doc: Dict[str, Any]):
        with self._lock:
            self.write_json(self.get_document_file(collection, doc_id), copy.deepcopy(doc))

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            file_path = self.get_document_file(collection, doc_id)
            current = self.read_json(file_path)
            if current is None:
                raise NotFound(f"Document {collection}/{doc_id} not found")
            updated = apply_updates(current, fields)
            self.write_json(file_path, updated)
            return updated

    def delete(self, collection: str, doc_id: str):
        with self._lock:
            self._remove(self.get_document_file(collection, doc_id))

    def query(self, collection: str, where: Optional[Dict[str, Any]] = None,
              limit: Optional[int] = None) -> List[Dict[str, Any]]:
        with self._lock:
            coll_dir = self.get_collection_dir(collection)
            if not os.path.isdir(coll_dir):
                return []

            results = []
            for name in sorted(os.listdir(coll_dir)):
                if not name.endswith(".json"):
                    continue
                doc = self.read_json(os.path.join(coll_dir, name))
                if doc is None or not matches(doc, where):
                    continue
                results.append({"documentId": name[:-len(".json")], **doc})
                if limit is not None and len(results) >= limit:
                    break
            return results

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    def _commit(self, ops):
        """Apply staged writes all-or-nothing: nothing touches disk until every op has been applied in memory"""
        with self._lock:
            staged: Dict[tuple, Optional[Dict[str, Any]]] = {}

            def current(collection, doc_id):
                key = (collection, doc_id)
                if key not in staged:
                    staged[key] = self.read_json(self.get_document_file(collection, doc_id))
                return staged[key]

            for op, collection, doc_id, payload in ops:
                if op == "set":
                    current(collection, doc_id)
                    staged[(collection, doc_id)] = copy.deepcopy(payload)
                elif op == "update":
                    doc = current(collection, doc_id)
                    if doc is None:
                        raise NotFound(f"Document {collection}/{doc_id} not found")
                    staged[(collection, doc_id)] = apply_updates(doc, payload)
                elif op == "delete":
                    current(collection, doc_id)
                    staged[(collection, doc_id)] = None
                else:
                    raise ValueError(f"Unknown batch operation: {op}")

            for (collection, doc_id), doc in staged.items():
                file_path = self.get_document_file(collection, doc_id)
                if doc is None:
                    self._remove(file_path)
                else:
                    self.write_json(file_path, doc)

    def get_database_stats(self) -> Dict[str, Any]:
        """Get database statistics"""
        stats: Dict[str, Any] = {"database": "file"}
        with self._lock:
            if os.path.isdir(self.base_dir):
                for name in sorted(os.listdir(self.base_dir)):
                    coll_dir = os.path.join(self.base_dir, name)
                    if os.path.isdir(coll_dir):
                        stats[name] = sum(1 for f in os.listdir(coll_dir) if f.endswith(".json"))
        return stats
