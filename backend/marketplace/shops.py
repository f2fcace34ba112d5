from flask import Blueprint, current_app, g, jsonify

from . import store
from .auth import admin_required, seller_required
from .documents import new_shop_document, serialize_shop
from .errors import (
    AlreadyActivated,
    AlreadyExists,
    InvalidCredentials,
    NotActivated,
    NotFound,
    ValidationError,
)
from .mailer import get_mailer
from .media import avatar_public_id, get_media_store, is_image_source, replace_avatar
from .payloads import image_from_request, read_payload, require_fields
from .security import (
    SHOP_ACTIVATION,
    check_password,
    hash_password,
    issue_signed_token,
    read_signed_token,
)
from .sessions import SHOP_KIND, clear_session, send_session

shops_bp = Blueprint("shops", __name__)

SHOP_REQUIRED_FIELDS = ("name", "email", "password", "address", "phoneNumber", "zipCode")


@shops_bp.route("/create-shop", methods=["POST"])
def create_shop():
    payload = read_payload()
    fields = require_fields(payload, SHOP_REQUIRED_FIELDS, "Please provide all fields!")
    avatar_source = image_from_request(payload, "avatar")
    if not is_image_source(avatar_source):
        raise ValidationError("Please provide all fields!")

    email = store.normalize_email(fields["email"])
    if store.email_taken(store.SHOPS, email):
        raise AlreadyExists("User already exists")

    password_hash = hash_password(str(fields["password"]))
    avatar = get_media_store().upload(avatar_source, "avatars")

    shop = store.insert_account(
        store.SHOPS,
        new_shop_document(
            {
                **fields,
                "email": email,
                "password": password_hash,
                "avatar": avatar,
                "description": str(payload.get("description") or "").strip(),
            },
            store.utcnow(),
        ),
        "User already exists",
    )

    activation_token = issue_signed_token(
        {"id": str(shop["_id"]), "email": email},
        SHOP_ACTIVATION,
        current_app.config["ACTIVATION_TOKEN_EXPIRES_MINUTES"],
    )
    activation_url = (
        f"{current_app.config['FRONTEND_URL']}/seller/activation/{activation_token}"
    )

    # The shop stays stored, inactive, when delivery fails.
    get_mailer().send(
        email,
        "Activate your Shop",
        f"Hello {shop['name']}, please click on the link to activate your shop:\n\n"
        f"{activation_url}",
    )

    return (
        jsonify(
            {
                "success": True,
                "message": f"Please check your email: {email} to activate your shop!",
            }
        ),
        201,
    )


@shops_bp.route("/activation", methods=["POST"])
def activate_shop():
    payload = read_payload()
    claims = read_signed_token(payload.get("activation_token"), SHOP_ACTIVATION)

    shop = store.find_account(store.SHOPS, account_id=claims.get("id"))
    if not shop:
        raise NotFound("User not found")

    if shop.get("isActivated"):
        raise AlreadyActivated("Account is already activated")

    # The filter makes the flip happen exactly once under concurrent activations.
    result = store.collection(store.SHOPS).update_one(
        {"_id": shop["_id"], "isActivated": False}, {"$set": {"isActivated": True}}
    )
    if result.modified_count == 0:
        raise AlreadyActivated("Account is already activated")

    shop["isActivated"] = True
    current_app.logger.info("Activated shop %s", shop["_id"])
    return send_session(shop, SHOP_KIND, 201)


@shops_bp.route("/login-shop", methods=["POST"])
def login_shop():
    payload = read_payload()
    fields = require_fields(payload, ("email", "password"), "Please provide all fields!")

    shop = store.find_account(store.SHOPS, email=fields["email"], with_password=True)
    if not shop:
        raise NotFound("User doesn't exist!")

    if not check_password(str(fields["password"]), shop.get("password")):
        raise InvalidCredentials("Please provide the correct information")

    if not shop.get("isActivated"):
        raise NotActivated("Account is not activated")

    shop.pop("password", None)
    return send_session(shop, SHOP_KIND, 200)


@shops_bp.route("/getSeller", methods=["GET"])
@seller_required
def get_seller():
    return jsonify({"success": True, "seller": serialize_shop(g.seller)})


@shops_bp.route("/logout", methods=["GET"])
def logout_shop():
    return clear_session(SHOP_KIND)


@shops_bp.route("/get-shop-info/<shop_id>", methods=["GET"])
def get_shop_info(shop_id: str):
    shop = store.get_account(
        store.SHOPS, store.parse_object_id(shop_id, "shop"), "Shop not found"
    )
    return jsonify({"success": True, "shop": serialize_shop(shop)})


@shops_bp.route("/update-shop-avatar", methods=["PUT"])
@seller_required
def update_shop_avatar():
    payload = read_payload()
    avatar_source = image_from_request(payload, "avatar")
    if not is_image_source(avatar_source):
        raise ValidationError("Please choose an image to upload.")

    updated = replace_avatar(store.SHOPS, g.seller, avatar_source)
    return jsonify({"success": True, "seller": serialize_shop(updated)})


@shops_bp.route("/update-seller-info", methods=["PUT"])
@seller_required
def update_seller_info():
    payload = read_payload()
    fields = require_fields(
        payload,
        ("name", "address", "phoneNumber", "zipCode"),
        "Name, address, phone number and zip code are required.",
    )

    updated = store.update_account(
        store.SHOPS,
        g.seller["_id"],
        {
            "$set": {
                **fields,
                "description": str(payload.get("description") or "").strip(),
            }
        },
    )
    return jsonify({"success": True, "seller": serialize_shop(updated)})


@shops_bp.route("/admin-all-sellers", methods=["GET"])
@admin_required("Admin")
def admin_all_sellers():
    sellers = store.list_newest_first(store.SHOPS)
    return jsonify(
        {"success": True, "sellers": [serialize_shop(seller) for seller in sellers]}
    )


@shops_bp.route("/delete-seller/<shop_id>", methods=["DELETE"])
@admin_required("Admin")
def delete_seller(shop_id: str):
    shop = store.get_account(
        store.SHOPS, store.parse_object_id(shop_id, "shop"), "Seller not found"
    )

    public_id = avatar_public_id(shop)
    if public_id:
        get_media_store().destroy(public_id)

    store.collection(store.SHOPS).delete_one({"_id": shop["_id"]})
    current_app.logger.info("Admin %s deleted shop %s", g.user["_id"], shop["_id"])

    return jsonify({"success": True, "message": "Seller deleted successfully"})


@shops_bp.route("/update-payment-methods", methods=["PUT"])
@seller_required
def update_payment_methods():
    withdraw_method = read_payload().get("withdrawMethod")
    if not isinstance(withdraw_method, dict) or not withdraw_method:
        raise ValidationError("Please provide a withdraw method.")

    updated = store.update_account(
        store.SHOPS, g.seller["_id"], {"$set": {"withdrawMethod": withdraw_method}}
    )
    return jsonify({"success": True, "seller": serialize_shop(updated)})


@shops_bp.route("/delete-withdraw-method", methods=["DELETE"])
@seller_required
def delete_withdraw_method():
    updated = store.update_account(
        store.SHOPS, g.seller["_id"], {"$set": {"withdrawMethod": None}}
    )
    return jsonify({"success": True, "seller": serialize_shop(updated)})
