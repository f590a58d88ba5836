"""
MongoDB access helpers.

The module-level ``db`` handle is created once at import from
``DATABASE_URL``/``DATABASE_NAME``.  Route handlers receive it through
the ``get_db`` dependency so tests can swap in another database.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from fastapi import HTTPException
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import OperationFailure

from config import settings

logger = logging.getLogger(__name__)

PERK_COLLECTION = "perk"
USER_COLLECTION = "user"


def _connect() -> Optional[Database]:
    if not settings.database_url:
        logger.warning("DATABASE_URL is not set; database endpoints will return 503")
        return None
    client = MongoClient(
        settings.database_url,
        serverSelectionTimeoutMS=settings.db_timeout_ms,
    )
    return client[settings.database_name]


db = _connect()


def get_db() -> Database:
    if db is None:
        raise HTTPException(status_code=503, detail="Database not available")
    return db


def create_document(
    collection_name: str,
    data: Union[BaseModel, Dict[str, Any]],
    database: Optional[Database] = None,
) -> Dict[str, Any]:
    """Insert a document stamped with ``createdAt``/``updatedAt`` and return it.

    Pydantic models are dumped by alias so stored keys match the wire
    format.  The returned dict includes the generated ``_id``.
    """
    database = database if database is not None else get_db()
    if isinstance(data, BaseModel):
        doc = data.model_dump(by_alias=True, exclude_none=True)
    else:
        doc = dict(data)
    now = datetime.now(timezone.utc)
    doc["createdAt"] = now
    doc["updatedAt"] = now
    result = database[collection_name].insert_one(doc)
    doc["_id"] = result.inserted_id
    return doc


def get_documents(
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    sort: Optional[Sequence[Tuple[str, int]]] = None,
    limit: Optional[int] = None,
    projection: Optional[Dict[str, Any]] = None,
    database: Optional[Database] = None,
) -> List[Dict[str, Any]]:
    database = database if database is not None else get_db()
    cursor = database[collection_name].find(filter_dict or {}, projection)
    if sort:
        cursor = cursor.sort(list(sort))
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


UNIQUE_PERK_INDEX = "title_merchant_unique"
PERK_INDEXES = (UNIQUE_PERK_INDEX, "created_at_desc", "created_by")


def ensure_indexes(database: Database) -> None:
    """Create the indexes the perk handlers rely on.  Safe to call repeatedly.

    Existing duplicate (title, merchant) pairs block the unique index; that
    is logged and the remaining indexes are still created.
    """
    perks = database[PERK_COLLECTION]
    try:
        # Duplicate (title, merchant) pairs raise DuplicateKeyError on write.
        perks.create_index(
            [("title", ASCENDING), ("merchant", ASCENDING)],
            unique=True,
            name=UNIQUE_PERK_INDEX,
        )
    except OperationFailure:
        logger.exception("Could not build %s; existing perks contain duplicates", UNIQUE_PERK_INDEX)
    perks.create_index([("createdAt", DESCENDING)], name="created_at_desc")
    perks.create_index([("createdBy", ASCENDING)], name="created_by")
    database[USER_COLLECTION].create_index([("email", ASCENDING)], name="email")


def collection_health(database: Database) -> Dict[str, Any]:
    present = database[PERK_COLLECTION].index_information()
    return {
        "database": database.name,
        "collections": {
            name: database[name].count_documents({})
            for name in (PERK_COLLECTION, USER_COLLECTION)
        },
        "indexes": {name: name in present for name in PERK_INDEXES},
    }
