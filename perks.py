"""
Perk operations.

Each function takes the database handle explicitly and raises the
errors from ``errors.py``; ``main.py`` maps them to HTTP responses.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from creators import resolve_creators
from database import PERK_COLLECTION, create_document, get_documents
from errors import BadRequest, Conflict, NotFound, Unauthorized
from schemas import Perk, owner_value, validate_perk_create, validate_perk_update

logger = logging.getLogger(__name__)

NEWEST_FIRST = [("createdAt", DESCENDING)]
MAX_LIST_LIMIT = 500


def _object_id(perk_id: str) -> ObjectId:
    # Malformed ids can never match a stored perk.
    if not ObjectId.is_valid(perk_id):
        raise NotFound()
    return ObjectId(perk_id)


def require_user_id(user: Optional[Dict[str, Any]]) -> str:
    user_id = (user or {}).get("id")
    if not user_id:
        raise Unauthorized()
    return str(user_id)


def filter_perks_by_title(database: Database, title: Optional[str]) -> List[Dict[str, Any]]:
    """All perks whose title equals ``title`` exactly, newest first."""
    if not title:
        raise BadRequest("Title query parameter is required")
    return get_documents(PERK_COLLECTION, {"title": title}, sort=NEWEST_FIRST, database=database)


def list_owned_perks(database: Database, user: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    user_id = require_user_id(user)
    owner = owner_value(user_id)
    if isinstance(owner, ObjectId):
        # Match records written with either representation of the id.
        query: Dict[str, Any] = {"createdBy": {"$in": [owner, user_id]}}
    else:
        query = {"createdBy": owner}
    return get_documents(PERK_COLLECTION, query, sort=NEWEST_FIRST, database=database)


def build_public_query(search: Optional[str] = None, merchant: Optional[str] = None) -> Dict[str, Any]:
    """Mongo filter for the public listing.  Blank parameters add no constraint."""
    query: Dict[str, Any] = {}
    if search and search.strip():
        query["title"] = {"$regex": re.escape(search.strip()), "$options": "i"}
    if merchant and merchant.strip():
        query["merchant"] = merchant.strip()
    return query


def list_public_perks(
    database: Database,
    search: Optional[str] = None,
    merchant: Optional[str] = None,
    limit: Optional[int] = None,
) -> List[Dict[str, Any]]:
    """Every perk matching the optional filters, newest first, with creators resolved."""
    query = build_public_query(search, merchant)
    if limit is not None:
        limit = max(1, min(limit, MAX_LIST_LIMIT))
    logger.debug("Public perk query %s (limit=%s)", query, limit)
    perks = get_documents(PERK_COLLECTION, query, sort=NEWEST_FIRST, limit=limit, database=database)
    return resolve_creators(database, perks)


def get_perk(database: Database, perk_id: str) -> Dict[str, Any]:
    perk = database[PERK_COLLECTION].find_one({"_id": _object_id(perk_id)})
    if not perk:
        raise NotFound()
    return perk


def create_perk(
    database: Database,
    payload: Dict[str, Any],
    user: Optional[Dict[str, Any]],
) -> Dict[str, Any]:
    """Validate ``payload`` and insert it owned by ``user``."""
    user_id = require_user_id(user)
    value = validate_perk_create(payload)
    perk = Perk.model_validate({**value, "createdBy": owner_value(user_id)})
    try:
        doc = create_document(PERK_COLLECTION, perk, database=database)
    except DuplicateKeyError as exc:
        logger.warning("Duplicate perk %r for merchant %r", perk.title, perk.merchant)
        raise Conflict() from exc
    logger.info("User %s created perk %s", user_id, doc["_id"])
    return doc


def update_perk(database: Database, perk_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
    """Merge ``changes`` into the stored perk, validate, and write the result.

    The read and the write are separate operations; a concurrent update
    in between is overwritten.
    """
    oid = _object_id(perk_id)
    perks = database[PERK_COLLECTION]
    existing = perks.find_one({"_id": oid})
    if not existing:
        raise NotFound()

    value = validate_perk_update(existing, changes)
    perk = Perk.model_validate({**value, "createdBy": existing.get("createdBy") or ""})
    # The owner is never rewritten by an update.
    fields = perk.model_dump(by_alias=True, exclude_none=True, exclude={"created_by"})

    update = {"$set": {**fields, "updatedAt": datetime.now(timezone.utc)}}
    try:
        doc = perks.find_one_and_update(
            {"_id": oid}, update, return_document=ReturnDocument.AFTER
        )
    except DuplicateKeyError as exc:
        logger.warning("Update of perk %s collides with an existing perk", perk_id)
        raise Conflict() from exc
    if doc is None:
        raise NotFound()
    logger.info("Updated perk %s (%s)", perk_id, ", ".join(sorted(changes)))
    return doc


def delete_perk(database: Database, perk_id: str) -> None:
    doc = database[PERK_COLLECTION].find_one_and_delete({"_id": _object_id(perk_id)})
    if doc is None:
        raise NotFound()
    logger.info("Deleted perk %s", perk_id)
