import os
import tempfile
from datetime import date

import pytest

# main.py builds its store at import time; keep it away from the working tree
os.environ.setdefault("DATA_DIR", tempfile.mkdtemp(prefix="portal-data-"))
os.environ.setdefault("DB_TYPE", "file")

from aggregates import new_course_progress, new_roster_entry
from config_cache import ConfigCache, store_config_fetcher
from db_manager import DatabaseManager
from propagation import PropagationCoordinator

COURSE_ID = "C1"
BASE_ID = "B-FD-25"
BATCH_ID = "B-FD-25-A"
TODAY = date(2025, 4, 10)
KEY_SECRET = "test_secret"


@pytest.fixture
def store(tmp_path):
    return DatabaseManager(base_dir=str(tmp_path / "data"))


@pytest.fixture
def seeded(store):
    """Course C1, batch B-FD-25-A with trainees u1 and u2 enrolled"""
    store.set("courses", COURSE_ID, {"title": "Full-stack Development", "course_fee": 1499.5})
    store.set("batches", BASE_ID, {
        "courseId": COURSE_ID,
        "courseName": "Full-stack Development",
        "status": "Ongoing",
        "entries": [{"suffix": "A", "key": "B-FD-0104-3006-A", "enrollLimit": 30}],
    })
    trainees = []
    for user_id, name in (("u1", "Asha"), ("u2", "Ravi")):
        email = f"{user_id}@example.com"
        trainees.append(new_roster_entry({"userId": user_id, "name": name, "email": email}))
        store.set("users", user_id, {
            "name": name,
            "email": email,
            "courses": {COURSE_ID: new_course_progress({"courseId": COURSE_ID, "batchId": BATCH_ID})},
        })
    store.set("trainees", BATCH_ID, {"batchId": BATCH_ID, "courseId": COURSE_ID, "trainees": trainees})
    store.set("app_config", "razorpay", {"RAZORPAY_KEY_ID": "rzp_test_key", "RAZORPAY_KEY_SECRET": KEY_SECRET})
    return store


@pytest.fixture
def coordinator(seeded):
    cache = ConfigCache(store_config_fetcher(seeded))
    return PropagationCoordinator(seeded, config_cache=cache, today=lambda: TODAY)


def progress_of(store, user_id, course_id=COURSE_ID):
    return store.get("users", user_id)["courses"][course_id]


def roster_entry(store, user_id, batch_id=BATCH_ID):
    roster = store.get("trainees", batch_id)
    return next(t for t in roster["trainees"] if t["userId"] == user_id)
