from datetime import datetime, timedelta
from typing import Dict

from flask import current_app, jsonify, request

from .documents import serialize_account
from .security import issue_session_token

USER_KIND = "user"
SHOP_KIND = "shop"

COOKIE_NAMES = {USER_KIND: "token", SHOP_KIND: "seller_token"}
RESPONSE_KEYS = {USER_KIND: "user", SHOP_KIND: "seller"}


def cookie_options(expires: datetime) -> Dict[str, object]:
    # request.is_secure already reflects X-Forwarded-Proto when ProxyFix trusts the hop.
    return {
        "expires": expires,
        "httponly": True,
        "samesite": current_app.config["SESSION_COOKIE_SAMESITE"],
        "secure": request.is_secure,
    }


def send_session(account: Dict, kind: str, status_code: int):
    """Issue a session token for ``account`` and return it as cookie and body."""
    token = issue_session_token(account["_id"], kind)
    expires = datetime.utcnow() + timedelta(
        days=current_app.config["SESSION_TOKEN_EXPIRES_DAYS"]
    )

    response = jsonify(
        {
            "success": True,
            RESPONSE_KEYS[kind]: serialize_account(account),
            "token": token,
        }
    )
    response.status_code = status_code
    response.set_cookie(COOKIE_NAMES[kind], token, **cookie_options(expires))
    return response


def clear_session(kind: str, message: str = "Log out successful!"):
    response = jsonify({"success": True, "message": message})
    response.set_cookie(COOKIE_NAMES[kind], "", **cookie_options(datetime.utcnow()))
    return response
