"""Password hashing plus the two kinds of signed tokens the API hands out.

Session tokens go through flask-jwt-extended and identify a logged-in
account. Activation and password-reset tokens are signed with a separate
secret and carry a ``purpose`` claim so one kind can never be replayed as
another.
"""

from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Union

import bcrypt
import jwt
from flask import current_app
from flask_jwt_extended import create_access_token, decode_token

from .errors import InvalidToken, TokenExpired, ValidationError

USER_ACTIVATION = "user-activation"
SHOP_ACTIVATION = "shop-activation"
PASSWORD_RESET = "password-reset"

SIGNED_TOKEN_ALGORITHM = "HS256"
# bcrypt only looks at the first 72 bytes and newer releases refuse longer input.
MAX_PASSWORD_BYTES = 72


def hash_password(password: str) -> str:
    encoded = password.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        raise ValidationError(
            f"Password can not be longer than {MAX_PASSWORD_BYTES} bytes."
        )
    hashed = bcrypt.hashpw(encoded, bcrypt.gensalt())
    return hashed.decode("utf-8")


def check_password(password: str, hashed: Optional[Union[str, bytes]]) -> bool:
    if not password or not hashed:
        return False
    if isinstance(hashed, str):
        hashed = hashed.encode("utf-8")
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed)
    except ValueError:
        return False


def issue_signed_token(payload: Dict, purpose: str, expires_minutes: int) -> str:
    now = datetime.now(timezone.utc)
    claims = {
        **payload,
        "purpose": purpose,
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes),
    }
    return jwt.encode(
        claims,
        current_app.config["ACTIVATION_SECRET"],
        algorithm=SIGNED_TOKEN_ALGORITHM,
    )


def read_signed_token(token: Optional[str], purpose: str) -> Dict:
    if not token:
        raise InvalidToken("Token is missing.")
    try:
        claims = jwt.decode(
            str(token),
            current_app.config["ACTIVATION_SECRET"],
            algorithms=[SIGNED_TOKEN_ALGORITHM],
        )
    except jwt.ExpiredSignatureError:
        raise TokenExpired()
    except jwt.InvalidTokenError:
        raise InvalidToken()

    if claims.get("purpose") != purpose:
        raise InvalidToken()
    return claims


def issue_session_token(account_id, kind: str) -> str:
    return create_access_token(
        identity=str(account_id),
        additional_claims={"kind": kind},
        expires_delta=timedelta(days=current_app.config["SESSION_TOKEN_EXPIRES_DAYS"]),
    )


def decode_session_token(token: str) -> Dict:
    # decode_token raises PyJWT errors; callers map them to Unauthenticated.
    return decode_token(token)
