from datetime import datetime, timezone

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from database import PERK_COLLECTION, USER_COLLECTION, ensure_indexes, get_db
from main import app


@pytest.fixture()
def mongo_db():
    client = mongomock.MongoClient()
    database = client["perks_test"]
    ensure_indexes(database)
    yield database
    client.close()


@pytest.fixture()
def client(mongo_db):
    app.dependency_overrides[get_db] = lambda: mongo_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_db, None)


@pytest.fixture()
def caller_id():
    return str(ObjectId())


def auth(user_id: str):
    return {"X-User-Id": user_id}


def insert_user(database, name: str, email: str) -> ObjectId:
    return database[USER_COLLECTION].insert_one({"name": name, "email": email}).inserted_id


def insert_perk(database, title: str, day: int, **fields) -> ObjectId:
    created = datetime(2024, 1, day, tzinfo=timezone.utc)
    doc = {
        "title": title,
        "category": "other",
        "discountPercent": 0,
        "createdAt": created,
        "updatedAt": created,
    }
    doc.update(fields)
    return database[PERK_COLLECTION].insert_one(doc).inserted_id
