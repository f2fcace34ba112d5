from bson import ObjectId
from flask import Blueprint, current_app, g, jsonify

from . import store
from .auth import admin_required, login_required
from .documents import new_user_document, normalize_address, serialize_user
from .errors import (
    AlreadyExists,
    InvalidCredentials,
    NotFound,
    UpstreamFailure,
    ValidationError,
)
from .mailer import get_mailer
from .media import avatar_public_id, get_media_store, is_image_source, replace_avatar
from .payloads import image_from_request, read_payload, require_fields
from .security import (
    PASSWORD_RESET,
    USER_ACTIVATION,
    check_password,
    hash_password,
    issue_signed_token,
    read_signed_token,
)
from .sessions import USER_KIND, clear_session, send_session

users_bp = Blueprint("users", __name__)


@users_bp.route("/create-user", methods=["POST"])
def create_user():
    payload = read_payload()
    fields = require_fields(
        payload, ("name", "email", "password"), "Missing required fields"
    )
    avatar_source = image_from_request(payload, "avatar")
    if not is_image_source(avatar_source):
        raise ValidationError("Missing required fields")

    email = store.normalize_email(fields["email"])
    if store.email_taken(store.USERS, email):
        raise AlreadyExists("User already exists")

    password_hash = hash_password(str(fields["password"]))
    avatar = get_media_store().upload(avatar_source, "avatars")

    # Nothing is stored until the emailed link comes back.
    candidate = {
        "name": fields["name"],
        "email": email,
        "password": password_hash,
        "avatar": avatar,
    }
    activation_token = issue_signed_token(
        {"user": candidate},
        USER_ACTIVATION,
        current_app.config["ACTIVATION_TOKEN_EXPIRES_MINUTES"],
    )
    activation_url = f"{current_app.config['FRONTEND_URL']}/activation/{activation_token}"

    get_mailer().send(
        email,
        "Activate your account",
        f"Hello {candidate['name']}, please click the link to activate your account:\n\n"
        f"{activation_url}",
    )

    return (
        jsonify(
            {
                "success": True,
                "message": f"Please check your email ({email}) to activate your account!",
            }
        ),
        201,
    )


@users_bp.route("/activation", methods=["POST"])
def activate_user():
    payload = read_payload()
    claims = read_signed_token(payload.get("activation_token"), USER_ACTIVATION)

    candidate = claims.get("user") or {}
    if not all(candidate.get(key) for key in ("name", "email", "password", "avatar")):
        raise ValidationError("Activation token is missing account details.")

    if store.email_taken(store.USERS, candidate["email"]):
        raise AlreadyExists("User already exists")

    user = store.insert_account(
        store.USERS,
        new_user_document(candidate, store.utcnow()),
        "User already exists",
    )
    current_app.logger.info("Activated user account %s", user["_id"])
    return send_session(user, USER_KIND, 201)


@users_bp.route("/login-user", methods=["POST"])
def login_user():
    payload = read_payload()
    fields = require_fields(payload, ("email", "password"), "Please fill all fields!")

    user = store.find_account(store.USERS, email=fields["email"], with_password=True)
    if not user:
        raise NotFound("User doesn't exist!")

    if not check_password(str(fields["password"]), user.get("password")):
        raise InvalidCredentials("Invalid password!")

    user.pop("password", None)
    return send_session(user, USER_KIND, 201)


@users_bp.route("/getuser", methods=["GET"])
@login_required
def get_user():
    return jsonify({"success": True, "user": serialize_user(g.user)})


@users_bp.route("/logout", methods=["GET"])
def logout_user():
    return clear_session(USER_KIND)


@users_bp.route("/update-user-info", methods=["PUT"])
@login_required
def update_user_info():
    payload = read_payload()
    fields = require_fields(
        payload, ("email", "password", "name"), "Please provide name, email and password."
    )

    user = store.find_account(store.USERS, account_id=g.user["_id"], with_password=True)
    if not user:
        raise NotFound("User not found")

    if not check_password(str(fields["password"]), user.get("password")):
        raise InvalidCredentials("Invalid password!")

    email = store.normalize_email(fields["email"])
    if email != user.get("email") and store.email_taken(
        store.USERS, email, exclude_id=user["_id"]
    ):
        raise AlreadyExists("Another account already uses this email.")

    updated = store.update_account(
        store.USERS,
        user["_id"],
        {
            "$set": {
                "name": fields["name"],
                "email": email,
                "phoneNumber": payload.get("phoneNumber"),
            }
        },
    )
    return jsonify({"success": True, "user": serialize_user(updated)})


@users_bp.route("/update-avatar", methods=["PUT"])
@login_required
def update_avatar():
    payload = read_payload()
    avatar_source = image_from_request(payload, "avatar")
    if not is_image_source(avatar_source):
        raise ValidationError("Please choose an image to upload.")

    updated = replace_avatar(store.USERS, g.user, avatar_source)
    return jsonify({"success": True, "user": serialize_user(updated)})


@users_bp.route("/update-user-addresses", methods=["PUT"])
@login_required
def update_user_addresses():
    payload = read_payload()
    address = normalize_address(payload)
    address_type = address.get("addressType")
    if not address_type:
        raise ValidationError("Please choose an address type.")
    if not all(address.get(key) for key in ("country", "city", "address1")):
        raise ValidationError("Country, city and address are required.")

    # Sending an existing _id edits that entry; one address per type.
    editing_id = str(payload.get("_id") or "")
    addresses = list(g.user.get("addresses") or [])
    for existing in addresses:
        if existing.get("addressType") == address_type and str(existing.get("_id")) != editing_id:
            raise AlreadyExists(f"{address_type} address already exists")

    for index, existing in enumerate(addresses):
        if editing_id and str(existing.get("_id")) == editing_id:
            addresses[index] = {**address, "_id": existing["_id"]}
            break
    else:
        addresses.append({**address, "_id": ObjectId()})

    updated = store.update_account(
        store.USERS, g.user["_id"], {"$set": {"addresses": addresses}}
    )
    return jsonify({"success": True, "user": serialize_user(updated)})


@users_bp.route("/delete-user-address/<address_id>", methods=["DELETE"])
@login_required
def delete_user_address(address_id: str):
    target_id = store.parse_object_id(address_id, "address")
    updated = store.update_account(
        store.USERS, g.user["_id"], {"$pull": {"addresses": {"_id": target_id}}}
    )
    return jsonify({"success": True, "user": serialize_user(updated)})


@users_bp.route("/update-user-password", methods=["PUT"])
@login_required
def update_user_password():
    payload = read_payload()
    fields = require_fields(
        payload,
        ("oldPassword", "newPassword", "confirmPassword"),
        "Old password, new password and confirmation are required.",
    )

    user = store.find_account(store.USERS, account_id=g.user["_id"], with_password=True)
    if not check_password(str(fields["oldPassword"]), (user or {}).get("password")):
        raise InvalidCredentials("Old password is incorrect!")

    if fields["newPassword"] != fields["confirmPassword"]:
        raise ValidationError("Password doesn't matched with each other!")

    store.update_account(
        store.USERS,
        g.user["_id"],
        {"$set": {"password": hash_password(str(fields["newPassword"]))}},
    )
    return jsonify({"success": True, "message": "Password updated successfully!"})


@users_bp.route("/user-info/<user_id>", methods=["GET"])
def user_info(user_id: str):
    user = store.get_account(
        store.USERS, store.parse_object_id(user_id, "user"), "User not found"
    )
    return jsonify({"success": True, "user": serialize_user(user)})


@users_bp.route("/admin-all-users", methods=["GET"])
@admin_required("Admin")
def admin_all_users():
    users = store.list_newest_first(store.USERS)
    return jsonify({"success": True, "users": [serialize_user(user) for user in users]})


@users_bp.route("/delete-user/<user_id>", methods=["DELETE"])
@admin_required("Admin")
def delete_user(user_id: str):
    user = store.get_account(
        store.USERS, store.parse_object_id(user_id, "user"), "User not found"
    )

    public_id = avatar_public_id(user)
    if public_id:
        get_media_store().destroy(public_id)

    store.collection(store.USERS).delete_one({"_id": user["_id"]})
    current_app.logger.info("Admin %s deleted user %s", g.user["_id"], user["_id"])

    return jsonify({"success": True, "message": "User deleted successfully!"})


@users_bp.route("/forgot-password", methods=["POST"])
def forgot_password():
    payload = read_payload()
    email = store.normalize_email(payload.get("email"))
    if not email:
        raise ValidationError("Email is required")

    generic_message = {
        "success": True,
        "message": "If this email exists, a password reset link has been sent.",
    }

    user = store.find_account(store.USERS, email=email)
    if user:
        reset_token = issue_signed_token(
            {"id": str(user["_id"])},
            PASSWORD_RESET,
            current_app.config["PASSWORD_RESET_TOKEN_EXPIRES_MINUTES"],
        )
        reset_url = f"{current_app.config['FRONTEND_URL']}/reset-password/{reset_token}"
        try:
            get_mailer().send(
                email,
                "Password Reset Request",
                f"Hi {user.get('name', '')},\n\n"
                "You requested a password reset. Click the link below to reset your password:\n\n"
                f"{reset_url}\n\nIf you didn't request this, please ignore this email.",
            )
        except UpstreamFailure as exc:
            current_app.logger.error(
                "Password reset email delivery failed for %s: %s", email, exc
            )

    return jsonify(generic_message), 200


@users_bp.route("/reset-password", methods=["POST"])
def reset_password():
    payload = read_payload()
    token = payload.get("token")
    new_password = str(payload.get("newPassword") or "")
    if not token or not new_password:
        raise ValidationError("Token and new password are required")

    claims = read_signed_token(token, PASSWORD_RESET)
    user = store.find_account(store.USERS, account_id=claims.get("id"))
    if not user:
        raise NotFound("User not found")

    store.update_account(
        store.USERS, user["_id"], {"$set": {"password": hash_password(new_password)}}
    )
    return jsonify({"success": True, "message": "Password has been reset successfully"})
