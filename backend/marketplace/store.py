"""Account and product persistence on top of the Mongo database."""

from datetime import datetime
from typing import Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from flask import current_app
from pymongo import DESCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

from .errors import AlreadyExists, NotFound, ValidationError

USERS = "users"
SHOPS = "shops"
PRODUCTS = "products"

WITHOUT_PASSWORD = {"password": 0}


def get_db():
    return current_app.extensions["marketplace"]["db"]


def collection(name: str):
    return get_db()[name]


def utcnow() -> datetime:
    return datetime.utcnow()


def normalize_email(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def parse_object_id(value, label: str = "resource") -> ObjectId:
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid {label} identifier.")


def ensure_indexes(db, logger) -> None:
    try:
        db[USERS].create_index("email", unique=True)
        db[SHOPS].create_index("email", unique=True)
        db[USERS].create_index([("createdAt", DESCENDING)])
        db[SHOPS].create_index([("createdAt", DESCENDING)])
        db[PRODUCTS].create_index([("createdAt", DESCENDING)])
        db[PRODUCTS].create_index("shopId")
    except PyMongoError as exc:
        logger.warning("Unable to ensure marketplace indexes: %s", exc)


def find_account(
    name: str,
    *,
    account_id=None,
    email: Optional[str] = None,
    with_password: bool = False,
) -> Optional[Dict]:
    query: Dict[str, object] = {}
    if account_id is not None:
        query["_id"] = (
            account_id if isinstance(account_id, ObjectId) else parse_object_id(account_id)
        )
    if email is not None:
        query["email"] = normalize_email(email)
    if not query:
        return None

    projection = None if with_password else WITHOUT_PASSWORD
    return collection(name).find_one(query, projection)


def get_account(name: str, account_id, message: str) -> Dict:
    document = find_account(name, account_id=account_id)
    if not document:
        raise NotFound(message)
    return document


def email_taken(name: str, email: str, exclude_id=None) -> bool:
    query: Dict[str, object] = {"email": normalize_email(email)}
    if exclude_id is not None:
        query["_id"] = {"$ne": exclude_id}
    return collection(name).find_one(query, {"_id": 1}) is not None


def insert_account(name: str, document: Dict, duplicate_message: str) -> Dict:
    try:
        result = collection(name).insert_one(document)
    except DuplicateKeyError:
        raise AlreadyExists(duplicate_message)
    return find_account(name, account_id=result.inserted_id)


def update_account(name: str, account_id, update: Dict) -> Dict:
    """Apply a raw Mongo update and return the fresh document without its password."""
    try:
        collection(name).update_one({"_id": account_id}, update)
    except DuplicateKeyError:
        raise AlreadyExists("Another account already uses this email.")
    return find_account(name, account_id=account_id)


def list_newest_first(name: str, query: Optional[Dict] = None) -> List[Dict]:
    cursor = collection(name).find(query or {}, WITHOUT_PASSWORD).sort(
        [("createdAt", DESCENDING), ("_id", DESCENDING)]
    )
    return list(cursor)
