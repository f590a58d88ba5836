"""
Creator resolution for perk listings.

``createdBy`` is normally a user ObjectId, but older records hold a
user's name or email as plain text.  Resolution never fails: every
perk ends up with either the matching user's ``{_id, name, email}`` or
``None``.
"""

import logging
import re
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Set

from pymongo.database import Database

from config import settings
from database import USER_COLLECTION
from schemas import CreatorId, CreatorRef, LegacyCreatorKey, parse_creator_ref

logger = logging.getLogger(__name__)

USER_PROJECTION = {"name": 1, "email": 1}


def find_user_by_legacy_key(database: Database, key: str) -> Optional[Dict[str, Any]]:
    """Look up one legacy key: by email (case-insensitive) when it has an "@", else by exact name."""
    users = database[USER_COLLECTION]
    if "@" in key:
        query = {"email": {"$regex": f"^{re.escape(key)}$", "$options": "i"}}
    else:
        query = {"name": key}
    return users.find_one(query, USER_PROJECTION)


def _fetch_users_by_id(database: Database, refs: Set[CreatorId]) -> Dict[str, Dict[str, Any]]:
    if not refs:
        return {}
    ids = [ref.object_id() for ref in refs]
    users = database[USER_COLLECTION].find({"_id": {"$in": ids}}, USER_PROJECTION)
    return {str(user["_id"]): user for user in users}


def _fetch_users_by_key(database: Database, refs: Set[LegacyCreatorKey]) -> Dict[str, Dict[str, Any]]:
    if not refs:
        return {}
    keys = sorted(ref.value for ref in refs)
    workers = max(1, min(settings.creator_lookup_workers, len(keys)))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        found = list(executor.map(lambda key: find_user_by_legacy_key(database, key), keys))

    table: Dict[str, Dict[str, Any]] = {}
    for user in found:
        if not user:
            continue
        if user.get("email"):
            table[user["email"].lower()] = user
        if user.get("name"):
            table[user["name"]] = user
    return table


def _lookup(
    ref: CreatorRef,
    by_id: Dict[str, Dict[str, Any]],
    by_key: Dict[str, Dict[str, Any]],
) -> Optional[Dict[str, Any]]:
    if isinstance(ref, CreatorId):
        return by_id.get(ref.value)
    return by_key.get(ref.value) or by_key.get(ref.value.lower())


def resolve_creators(database: Database, perks: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Replace each perk's ``createdBy`` with its user record or ``None``.

    Perks are modified in place and also returned.
    """
    if not perks:
        return perks

    refs = [parse_creator_ref(perk.get("createdBy")) for perk in perks]
    id_refs = {ref for ref in refs if isinstance(ref, CreatorId)}
    key_refs = {ref for ref in refs if isinstance(ref, LegacyCreatorKey)}

    by_id = _fetch_users_by_id(database, id_refs)
    by_key = _fetch_users_by_key(database, key_refs)
    logger.debug(
        "Resolved creators: %d/%d ids, %d legacy keys",
        len(by_id), len(id_refs), len(key_refs),
    )

    for perk, ref in zip(perks, refs):
        perk["createdBy"] = _lookup(ref, by_id, by_key) if ref is not None else None
    return perks
