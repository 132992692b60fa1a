from typing import Optional, Dict, Any, List

from pymongo import MongoClient, ASCENDING, ReturnDocument
from pymongo.errors import PyMongoError

from document_store import DELETE_FIELD, ArrayUnion, WriteBatch
from errors import NotFound, StoreFailure


class MongoDBManager:
    """MongoDB document store for the training portal"""

    def __init__(self, mongo_uri: str, db_name: str = "training_portal"):
        """
        Initialize MongoDB connection

        Args:
            mongo_uri: MongoDB connection URI
            db_name: Name of the database to use
        """
        try:
            self.client = MongoClient(mongo_uri)
            self.db = self.client[db_name]

            # Create indexes for the equality queries the portal runs
            self._create_indexes()

            print("✅ MongoDB connection established successfully")
        except Exception as e:
            print(f"❌ Failed to connect to MongoDB: {e}")
            raise

    def _create_indexes(self):
        """Create database indexes for efficient queries"""
        def _ensure_index(collection, keys):
            """Create an index if missing; never crash the app over it."""
            desired_key = list(keys)
            existing = collection.index_information()
            if any(info.get("key") == desired_key for info in existing.values()):
                return
            try:
                collection.create_index(keys)
            except Exception as create_err:
                print(f"⚠️ Warning: Could not create index {desired_key}: {create_err}")

        _ensure_index(self.db["attendance"], [("batchId", ASCENDING)])
        _ensure_index(self.db["assignments"], [("batchId", ASCENDING)])
        _ensure_index(self.db["enrollments"], [("courseId", ASCENDING), ("userId", ASCENDING)])
        _ensure_index(self.db["batches"], [("courseId", ASCENDING)])
        _ensure_index(self.db["propagation_outbox"], [("createdAt", ASCENDING)])

        print("✅ MongoDB indexes ensured")

    @staticmethod
    def _to_update_spec(fields: Dict[str, Any]) -> Dict[str, Any]:
        """Translate dotted-path fields and sentinels into MongoDB update operators"""
        set_ops: Dict[str, Any] = {}
        unset_ops: Dict[str, Any] = {}
        add_ops: Dict[str, Any] = {}
        for path, value in fields.items():
            if value is DELETE_FIELD:
                unset_ops[path] = ""
            elif isinstance(value, ArrayUnion):
                add_ops[path] = {"$each": value.items}
            else:
                set_ops[path] = value

        spec: Dict[str, Any] = {}
        if set_ops:
            spec["$set"] = set_ops
        if unset_ops:
            spec["$unset"] = unset_ops
        if add_ops:
            spec["$addToSet"] = add_ops
        return spec

    @staticmethod
    def _strip_id(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if doc is None:
            return None
        doc.pop("_id", None)
        return doc

    # ==================== DOCUMENT OPERATIONS ====================

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        try:
            return self._strip_id(self.db[collection].find_one({"_id": doc_id}))
        except PyMongoError as e:
            print(f"❌ MongoDB get {collection}/{doc_id} failed: {e}")
            raise StoreFailure(f"Failed to read {collection}/{doc_id}")

    def set(self, collection: str, doc_id: str, doc: Dict[str, Any], session=None):
        try:
            self.db[collection].replace_one(
                {"_id": doc_id}, {**doc, "_id": doc_id}, upsert=True, session=session
            )
        except PyMongoError as e:
            print(f"❌ MongoDB set {collection}/{doc_id} failed: {e}")
            raise StoreFailure(f"Failed to write {collection}/{doc_id}")

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any], session=None) -> Dict[str, Any]:
        spec = self._to_update_spec(fields)
        try:
            if not spec:
                updated = self.db[collection].find_one({"_id": doc_id}, session=session)
            else:
                updated = self.db[collection].find_one_and_update(
                    {"_id": doc_id}, spec, return_document=ReturnDocument.AFTER, session=session
                )
        except PyMongoError as e:
            print(f"❌ MongoDB update {collection}/{doc_id} failed: {e}")
            raise StoreFailure(f"Failed to update {collection}/{doc_id}")
        if updated is None:
            raise NotFound(f"Document {collection}/{doc_id} not found")
        return self._strip_id(updated)

    def delete(self, collection: str, doc_id: str, session=None):
        try:
            self.db[collection].delete_one({"_id": doc_id}, session=session)
        except PyMongoError as e:
            print(f"❌ MongoDB delete {collection}/{doc_id} failed: {e}")
            raise StoreFailure(f"Failed to delete {collection}/{doc_id}")

    def query(self, collection: str, where: Optional[Dict[str, Any]] = None,
              limit: Optional[int] = None) -> List[Dict[str, Any]]:
        try:
            cursor = self.db[collection].find(where or {}).sort("_id", ASCENDING)
            if limit is not None:
                cursor = cursor.limit(int(limit))
            results = []
            for doc in cursor:
                doc_id = doc.pop("_id")
                results.append({"documentId": doc_id, **doc})
            return results
        except PyMongoError as e:
            print(f"❌ MongoDB query {collection} {where} failed: {e}")
            raise StoreFailure(f"Failed to query {collection}")

    def batch(self) -> WriteBatch:
        return WriteBatch(self)

    def _commit(self, ops):
        """Run every staged write inside one transaction"""
        # PyMongoError must reach with_transaction untranslated so it can retry transient failures
        def _apply(session):
            for op, collection, doc_id, payload in ops:
                coll = self.db[collection]
                if op == "set":
                    coll.replace_one({"_id": doc_id}, {**payload, "_id": doc_id}, upsert=True, session=session)
                elif op == "update":
                    spec = self._to_update_spec(payload)
                    if spec:
                        found = coll.update_one({"_id": doc_id}, spec, session=session).matched_count
                    else:
                        found = coll.count_documents({"_id": doc_id}, session=session)
                    if not found:
                        raise NotFound(f"Document {collection}/{doc_id} not found")
                elif op == "delete":
                    coll.delete_one({"_id": doc_id}, session=session)
                else:
                    raise ValueError(f"Unknown batch operation: {op}")

        try:
            with self.client.start_session() as session:
                session.with_transaction(_apply)
        except PyMongoError as e:
            print(f"❌ MongoDB batch commit failed: {e}")
            raise StoreFailure("Failed to commit batch")

    def get_database_stats(self) -> Dict[str, Any]:
        """Get database statistics"""
        stats: Dict[str, Any] = {"database": "mongodb"}
        for name in sorted(self.db.list_collection_names()):
            stats[name] = self.db[name].count_documents({})
        return stats
