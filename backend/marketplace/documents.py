"""Document builders, snapshots and JSON serializers."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from bson import ObjectId

BENEFICIARIES = ("men", "women", "kids", "not specified")
PRODUCT_IMAGE_COUNT = 5
DEFAULT_USER_ROLE = "user"
ADDRESS_FIELDS = ("country", "city", "address1", "address2", "zipCode", "addressType")


def serialize_value(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat() + "Z"
    if isinstance(value, dict):
        return {key: serialize_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [serialize_value(item) for item in value]
    return value


def serialize_account(document: Optional[Dict]) -> Dict:
    if not document:
        return {}
    serialized = serialize_value(document)
    serialized.pop("password", None)
    return serialized


serialize_user = serialize_account
serialize_shop = serialize_account


def serialize_product(document: Optional[Dict]) -> Dict:
    return serialize_value(document) if document else {}


def _avatar_of(document: Dict) -> Dict[str, str]:
    avatar = document.get("avatar") or {}
    return {"public_id": avatar.get("public_id", ""), "url": avatar.get("url", "")}


@dataclass(frozen=True)
class ShopSnapshot:
    """Copy of a shop taken when a product is listed.

    Never refreshed afterwards: renaming a shop leaves older products
    showing the old values until they are re-listed.
    """

    id: str
    name: str
    email: str
    avatar: Dict[str, str]
    address: str = ""
    phoneNumber: str = ""
    zipCode: str = ""
    description: str = ""
    capturedAt: datetime = field(default_factory=datetime.utcnow)

    @classmethod
    def from_document(cls, shop: Dict) -> "ShopSnapshot":
        return cls(
            id=str(shop["_id"]),
            name=shop.get("name", "") or "",
            email=shop.get("email", "") or "",
            avatar=_avatar_of(shop),
            address=shop.get("address", "") or "",
            phoneNumber=str(shop.get("phoneNumber", "") or ""),
            zipCode=str(shop.get("zipCode", "") or ""),
            description=shop.get("description", "") or "",
        )

    def to_document(self) -> Dict:
        return asdict(self)


@dataclass(frozen=True)
class ReviewerSnapshot:
    """Copy of the reviewing user at review time; same staleness rules as ShopSnapshot."""

    id: str
    name: str
    email: str
    avatar: Dict[str, str]
    capturedAt: datetime = field(default_factory=datetime.utcnow)

    @classmethod
    def from_document(cls, user: Dict) -> "ReviewerSnapshot":
        return cls(
            id=str(user["_id"]),
            name=user.get("name", "") or "",
            email=user.get("email", "") or "",
            avatar=_avatar_of(user),
        )

    def to_document(self) -> Dict:
        return asdict(self)


def new_user_document(candidate: Dict, created_at: datetime) -> Dict:
    return {
        "name": candidate["name"],
        "email": candidate["email"],
        "password": candidate["password"],
        "avatar": candidate["avatar"],
        "phoneNumber": candidate.get("phoneNumber"),
        "addresses": [],
        "role": DEFAULT_USER_ROLE,
        "createdAt": created_at,
    }


def new_shop_document(fields: Dict, created_at: datetime) -> Dict:
    return {
        "name": fields["name"],
        "email": fields["email"],
        "password": fields["password"],
        "avatar": fields["avatar"],
        "address": fields["address"],
        "phoneNumber": fields["phoneNumber"],
        "zipCode": fields["zipCode"],
        "description": fields.get("description", ""),
        "isActivated": False,
        "withdrawMethod": None,
        "createdAt": created_at,
    }


def normalize_address(payload: Optional[Dict]) -> Dict[str, str]:
    if not isinstance(payload, dict):
        return {}
    normalized: Dict[str, str] = {}
    for key in ADDRESS_FIELDS:
        value = payload.get(key)
        if value is None:
            continue
        trimmed = str(value).strip()
        if trimmed:
            normalized[key] = trimmed
    return normalized


def average_rating(reviews: List[Dict]) -> float:
    ratings = [float(review.get("rating", 0) or 0) for review in reviews or []]
    if not ratings:
        return 0
    return round(sum(ratings) / len(ratings), 2)
