"""
Database Schemas

MongoDB collection schemas defined as Pydantic models, plus the request
validators and response models used by the perk endpoints.

Each collection model's name is converted to lowercase for the
collection name:
- User -> "user" collection
- Perk -> "perk" collection

Stored and wire field names are camelCase (``discountPercent``,
``createdBy``, ``createdAt``); models expose them through aliases.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union, get_args

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.functional_validators import BeforeValidator
from typing_extensions import Annotated

from errors import PerkValidationError


def _object_id_str(value: Any) -> Any:
    # Anything else is left for the str validator to reject.
    if isinstance(value, ObjectId):
        return str(value)
    return value


def _reject_bool(value: Any) -> Any:
    if isinstance(value, bool):
        raise ValueError("must be a number")
    return value


PyObjectId = Annotated[str, BeforeValidator(_object_id_str)]

PerkCategory = Literal["food", "tech", "travel", "fitness", "other"]
PERK_CATEGORIES = get_args(PerkCategory)

# Numbers and numeric strings; booleans are not numbers here.
Percent = Annotated[float, Field(ge=0, le=100), BeforeValidator(_reject_bool)]

OWNER_FIELD = "createdBy"


class User(BaseModel):
    """
    Users collection schema
    Collection name: "user"
    """
    name: str = Field(..., description="Display name")
    email: str = Field(..., description="Email address, matched case-insensitively")


class PerkFields(BaseModel):
    """Client-editable perk fields shared by the validators and the stored model."""

    # Inputs are matched by alias only, so snake_case keys count as unknown.
    model_config = ConfigDict(frozen=True)

    title: str = Field(..., min_length=2, description="Perk title")
    description: Optional[str] = Field(None, description="Free-form description, may be empty")
    category: PerkCategory = Field("other", description="One of " + ", ".join(PERK_CATEGORIES))
    discount_percent: Percent = Field(0, alias="discountPercent", description="Discount in percent")
    merchant: Optional[str] = Field(None, description="Merchant offering the perk")


class PerkCreate(PerkFields):
    model_config = ConfigDict(extra="forbid")


class PerkUpdate(PerkFields):
    # Runs on the stored document merged with the changes, so stored-only
    # keys (_id, createdBy, timestamps) are dropped here.
    model_config = ConfigDict(extra="ignore")


class Perk(PerkFields):
    """
    Perks collection schema
    Collection name: "perk"
    """
    model_config = ConfigDict(extra="ignore", arbitrary_types_allowed=True)

    created_by: Union[ObjectId, str] = Field(..., alias="createdBy", description="Owner user id")


# ------------------ Creator references ------------------

class CreatorId(BaseModel):
    """``createdBy`` holding a well-formed ObjectId."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["id"] = "id"
    value: str

    def object_id(self) -> ObjectId:
        return ObjectId(self.value)


class LegacyCreatorKey(BaseModel):
    """``createdBy`` holding a free-text name or email from older records."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["legacy"] = "legacy"
    value: str


CreatorRef = Annotated[Union[CreatorId, LegacyCreatorKey], Field(discriminator="kind")]


def parse_creator_ref(raw: Any) -> Optional[Union[CreatorId, LegacyCreatorKey]]:
    """Classify a stored ``createdBy`` value.  Empty values yield ``None``."""
    if raw is None:
        return None
    key = str(raw)
    if not key:
        return None
    if ObjectId.is_valid(key):
        return CreatorId(value=key)
    return LegacyCreatorKey(value=key)


def owner_value(user_id: str) -> Union[ObjectId, str]:
    """Value stored in ``createdBy`` for the given caller id."""
    return ObjectId(user_id) if ObjectId.is_valid(user_id) else user_id


# ------------------ Validation ------------------

def format_error(error: Dict[str, Any]) -> str:
    field = ".".join(str(part) for part in error.get("loc", ())) or "value"
    msg = error.get("msg", "is invalid")
    return f'"{field}" {msg[:1].lower()}{msg[1:]}'


def validate_perk_create(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Validate a new perk payload, stopping at the first violation.

    Returns the normalized document fields with defaults applied.
    """
    if OWNER_FIELD in payload:
        raise PerkValidationError([f'"{OWNER_FIELD}" is not allowed'])
    try:
        perk = PerkCreate.model_validate(payload)
    except ValidationError as exc:
        raise PerkValidationError([format_error(exc.errors()[0])]) from exc
    return perk.model_dump(by_alias=True, exclude_none=True)


def validate_perk_update(existing: Dict[str, Any], changes: Dict[str, Any]) -> Dict[str, Any]:
    """Validate ``changes`` merged over ``existing`` and report every violation.

    Unknown keys are stripped and values coerced, so the result is the
    full set of client-editable fields to write back.
    """
    errors: List[str] = []
    if OWNER_FIELD in changes:
        errors.append(f'"{OWNER_FIELD}" is not allowed')

    perk = None
    try:
        perk = PerkUpdate.model_validate({**existing, **changes})
    except ValidationError as exc:
        errors.extend(format_error(error) for error in exc.errors())

    if errors or perk is None:
        raise PerkValidationError(errors)
    return perk.model_dump(by_alias=True, exclude_none=True)


# ------------------ Response models ------------------

class CreatorPublic(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[PyObjectId] = Field(None, alias="_id")
    name: Optional[str] = None
    email: Optional[str] = None


class PerkPublic(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: PyObjectId = Field(..., alias="_id")
    title: Optional[str] = None
    description: Optional[str] = None
    category: str = "other"
    discount_percent: float = Field(0, alias="discountPercent")
    merchant: Optional[str] = None
    created_by: Optional[Union[CreatorPublic, PyObjectId]] = Field(
        None, alias="createdBy", union_mode="left_to_right"
    )
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")


class PerkEnvelope(BaseModel):
    perk: PerkPublic


class PerkListEnvelope(BaseModel):
    perks: List[PerkPublic]


class DeleteAck(BaseModel):
    ok: bool = True
