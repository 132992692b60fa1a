import os
import uuid

import pytest
from dotenv import load_dotenv
from pymongo.errors import PyMongoError

from document_store import DELETE_FIELD, ArrayUnion
from errors import NotFound, StoreFailure
from mongodb_manager import MongoDBManager

load_dotenv()


def test_update_spec_maps_sentinels_to_operators():
    spec = MongoDBManager._to_update_spec({
        "courses.C1.totalPresent": 2,
        "legacy": DELETE_FIELD,
        "trainees": ArrayUnion([{"userId": "u1"}]),
    })
    assert spec == {
        "$set": {"courses.C1.totalPresent": 2},
        "$unset": {"legacy": ""},
        "$addToSet": {"trainees": {"$each": [{"userId": "u1"}]}},
    }


def test_update_spec_empty():
    assert MongoDBManager._to_update_spec({}) == {}


class FakeResult:
    matched_count = 0


class FakeCollection:
    def replace_one(self, *args, **kwargs):
        raise PyMongoError("primary stepped down")

    def update_one(self, *args, **kwargs):
        return FakeResult()


class FakeSession:
    def __init__(self):
        self.errors = []

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def with_transaction(self, callback):
        try:
            return callback(self)
        except Exception as e:
            self.errors.append(e)
            raise


class FakeClient:
    def __init__(self):
        self.session = FakeSession()

    def start_session(self):
        return self.session


def offline_manager():
    manager = MongoDBManager.__new__(MongoDBManager)
    manager.client = FakeClient()
    manager.db = {"users": FakeCollection()}
    return manager


def test_batch_driver_errors_reach_the_transaction_untranslated():
    manager = offline_manager()
    with pytest.raises(StoreFailure):
        manager.batch().set("users", "u1", {"name": "Asha"}).commit()
    # with_transaction only retries errors it can see as PyMongoError
    assert type(manager.client.session.errors[0]) is PyMongoError


def test_batch_update_of_missing_document():
    manager = offline_manager()
    with pytest.raises(NotFound):
        manager.batch().update("users", "ghost", {"name": "x"}).commit()


@pytest.fixture
def mongo():
    mongo_uri = os.getenv("MONGO_URI")
    if not mongo_uri:
        pytest.skip("MONGO_URI not set")
    db_name = f"portal_test_{uuid.uuid4().hex[:8]}"
    manager = MongoDBManager(mongo_uri=mongo_uri, db_name=db_name)
    yield manager
    manager.client.drop_database(db_name)


def test_mongodb_connection(mongo):
    """Test MongoDB connection and basic operations"""
    mongo.set("users", "u1", {"name": "Asha", "courses": {"C1": {"totalPresent": 0}}})
    updated = mongo.update("users", "u1", {"courses.C1.totalPresent": 1})
    assert updated == {"name": "Asha", "courses": {"C1": {"totalPresent": 1}}}
    assert mongo.query("users", {"name": "Asha"})[0]["documentId"] == "u1"

    with pytest.raises(NotFound):
        mongo.update("users", "ghost", {"name": "x"})

    stats = mongo.get_database_stats()
    assert stats["database"] == "mongodb"
    assert stats["users"] == 1
