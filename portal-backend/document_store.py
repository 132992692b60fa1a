"""
Shared pieces of the document store contract.

Both storage backends (`db_manager.DatabaseManager` for JSON files and
`mongodb_manager.MongoDBManager` for MongoDB) expose the same methods:

    get(collection, doc_id)            -> dict | None
    set(collection, doc_id, doc)
    update(collection, doc_id, fields) -> raises NotFound if absent
    delete(collection, doc_id)
    query(collection, where, limit)    -> list of dicts with "documentId"
    batch()                            -> WriteBatch

`update` accepts dotted field paths ("courses.C1.totalPresent") and two
sentinels: DELETE_FIELD removes the field, ArrayUnion appends the given items
that are not already in the array.
"""

import copy
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple


class _DeleteField:
    def __repr__(self):
        return "DELETE_FIELD"


DELETE_FIELD = _DeleteField()


class ArrayUnion:
    def __init__(self, items: List[Any]):
        self.items = list(items)

    def __repr__(self):
        return f"ArrayUnion({self.items!r})"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def actor_stamp(actor: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """createdBy/updatedBy value for the authenticated caller"""
    actor = actor or {}
    stamp = {"uid": actor.get("uid"), "email": actor.get("email")}
    if actor.get("role"):
        stamp["role"] = actor["role"]
    return stamp


def split_path(path: str) -> List[str]:
    parts = path.split(".")
    if any(not p for p in parts):
        raise ValueError(f"Invalid field path: {path!r}")
    return parts


def get_path(doc: Dict[str, Any], path: str, default: Any = None) -> Any:
    current: Any = doc
    for part in split_path(path):
        if not isinstance(current, dict) or part not in current:
            return default
        current = current[part]
    return current


def apply_updates(doc: Dict[str, Any], fields: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of `doc` with the dotted-path `fields` applied."""
    result = copy.deepcopy(doc)
    for path, value in fields.items():
        parts = split_path(path)
        parent = result
        for part in parts[:-1]:
            child = parent.get(part)
            if not isinstance(child, dict):
                if value is DELETE_FIELD:
                    parent = None
                    break
                child = {}
                parent[part] = child
            parent = child
        if parent is None:
            continue

        leaf = parts[-1]
        if value is DELETE_FIELD:
            parent.pop(leaf, None)
        elif isinstance(value, ArrayUnion):
            existing = parent.get(leaf)
            merged = list(existing) if isinstance(existing, list) else []
            for item in value.items:
                if item not in merged:
                    merged.append(copy.deepcopy(item))
            parent[leaf] = merged
        else:
            parent[leaf] = copy.deepcopy(value)
    return result


def matches(doc: Dict[str, Any], where: Optional[Dict[str, Any]]) -> bool:
    if not where:
        return True
    return all(get_path(doc, field) == value for field, value in where.items())


class WriteBatch:
    """Collects writes and hands them to the store as one unit on commit."""

    def __init__(self, store):
        self._store = store
        self._ops: List[Tuple[str, str, str, Optional[Dict[str, Any]]]] = []
        self._committed = False

    def set(self, collection: str, doc_id: str, doc: Dict[str, Any]) -> "WriteBatch":
        self._ops.append(("set", collection, doc_id, doc))
        return self

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> "WriteBatch":
        self._ops.append(("update", collection, doc_id, fields))
        return self

    def delete(self, collection: str, doc_id: str) -> "WriteBatch":
        self._ops.append(("delete", collection, doc_id, None))
        return self

    def __len__(self):
        return len(self._ops)

    def commit(self) -> int:
        if self._committed:
            raise ValueError("Batch already committed")
        self._committed = True
        if not self._ops:
            return 0
        self._store._commit(self._ops)
        return len(self._ops)
