"""Route decorators gating handlers on a valid session.

Checks run in a fixed order: the token must verify, the account it names
must still exist, and only then are kind and role compared.
"""

from functools import wraps
from typing import Optional, Tuple

import jwt
from flask import g, request
from flask_jwt_extended.exceptions import JWTExtendedException

from . import store
from .errors import Forbidden, Unauthenticated, ValidationError
from .security import decode_session_token
from .sessions import COOKIE_NAMES, SHOP_KIND, USER_KIND

KIND_COLLECTIONS = {USER_KIND: store.USERS, SHOP_KIND: store.SHOPS}


def extract_token(kind: str) -> Optional[str]:
    token = request.cookies.get(COOKIE_NAMES[kind])
    if token:
        return token

    header = request.headers.get("Authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return None


def resolve_session(kind: str) -> Tuple[str, dict]:
    token = extract_token(kind)
    if not token:
        raise Unauthenticated()

    try:
        claims = decode_session_token(token)
    except (jwt.PyJWTError, JWTExtendedException):
        raise Unauthenticated("Your session is invalid or has expired. Please login again.")

    token_kind = claims.get("kind")
    if token_kind not in KIND_COLLECTIONS:
        raise Unauthenticated("Your session is invalid or has expired. Please login again.")

    try:
        account = store.find_account(
            KIND_COLLECTIONS[token_kind], account_id=claims.get("sub")
        )
    except ValidationError:
        account = None
    if not account:
        raise Unauthenticated("The account for this session no longer exists.")

    return token_kind, account


def login_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        token_kind, account = resolve_session(USER_KIND)
        if token_kind != USER_KIND:
            raise Forbidden("This action requires a user account.")
        g.user = account
        return view(*args, **kwargs)

    return wrapper


def seller_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        token_kind, account = resolve_session(SHOP_KIND)
        if token_kind != SHOP_KIND:
            raise Forbidden("This action requires a seller account.")
        g.seller = account
        return view(*args, **kwargs)

    return wrapper


def admin_required(*roles: str):
    allowed = set(roles or ("Admin",))

    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            token_kind, account = resolve_session(USER_KIND)
            if token_kind != USER_KIND or account.get("role") not in allowed:
                raise Forbidden(
                    f"{account.get('role') or 'This account'} can not access this resource."
                )
            g.user = account
            return view(*args, **kwargs)

        return wrapper

    return decorator
