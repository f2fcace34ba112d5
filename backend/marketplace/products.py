import math
from typing import Dict, List, Optional

from flask import Blueprint, current_app, g, jsonify
from pymongo import DESCENDING, ReturnDocument

from . import store
from .auth import admin_required, login_required, seller_required
from .documents import (
    BENEFICIARIES,
    PRODUCT_IMAGE_COUNT,
    ReviewerSnapshot,
    ShopSnapshot,
    average_rating,
    serialize_product,
)
from .errors import Forbidden, NotFound, UpstreamFailure, ValidationError
from .media import get_media_store, is_image_source
from .payloads import images_from_request, read_payload, require_fields

products_bp = Blueprint("products", __name__)


def parse_number(value, label: str, *, required: bool = True, integer: bool = False):
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"Please enter your product {label}!")
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Product {label} must be a valid number.")
    if not math.isfinite(number):
        raise ValidationError(f"Product {label} must be a valid number.")
    if integer:
        if not number.is_integer():
            raise ValidationError(f"Product {label} must be a whole number.")
        number = int(number)
    else:
        number = round(number, 2)
    if number < 0:
        raise ValidationError(f"Product {label} can not be negative.")
    return number


def upload_product_images(sources: List) -> List[Dict[str, str]]:
    media = get_media_store()
    uploaded: List[Dict[str, str]] = []
    try:
        for source in sources:
            uploaded.append(media.upload(source, "products"))
    except (UpstreamFailure, ValidationError):
        for image in uploaded:
            try:
                media.destroy(image["public_id"])
            except UpstreamFailure as exc:
                current_app.logger.warning(
                    "Unable to roll back product image %s: %s", image["public_id"], exc
                )
        raise
    return uploaded


def product_list(query: Optional[Dict] = None) -> List[Dict]:
    cursor = store.collection(store.PRODUCTS).find(query or {}).sort(
        [("createdAt", DESCENDING), ("_id", DESCENDING)]
    )
    return [serialize_product(product) for product in cursor]


@products_bp.route("/create-product", methods=["POST"])
@seller_required
def create_product():
    payload = read_payload()
    fields = require_fields(
        payload,
        ("name", "description", "category"),
        "Name, description and category are required.",
    )

    discount_price = parse_number(payload.get("discountPrice"), "price")
    original_price = parse_number(payload.get("originalPrice"), "original price", required=False)
    stock = parse_number(payload.get("stock"), "stock", integer=True)

    beneficiaries = str(payload.get("beneficiaries") or "").strip()
    if beneficiaries not in BENEFICIARIES:
        raise ValidationError(
            "Beneficiaries must be one of: " + ", ".join(BENEFICIARIES) + "."
        )

    image_sources = images_from_request(payload, "images")
    if len(image_sources) != PRODUCT_IMAGE_COUNT or not all(
        is_image_source(source) for source in image_sources
    ):
        raise ValidationError(f"images must contain exactly {PRODUCT_IMAGE_COUNT} images")

    images = upload_product_images(image_sources)

    product_document = {
        **fields,
        "tags": str(payload.get("tags") or "").strip(),
        "originalPrice": original_price,
        "discountPrice": discount_price,
        "stock": stock,
        "images": images,
        "reviews": [],
        "ratings": 0,
        "shopId": str(g.seller["_id"]),
        "shop": ShopSnapshot.from_document(g.seller).to_document(),
        "sold_out": 0,
        "beneficiaries": beneficiaries,
        "createdAt": store.utcnow(),
    }
    result = store.collection(store.PRODUCTS).insert_one(product_document)
    created = store.collection(store.PRODUCTS).find_one({"_id": result.inserted_id})

    return jsonify({"success": True, "product": serialize_product(created)}), 201


@products_bp.route("/get-all-products-shop/<shop_id>", methods=["GET"])
def get_shop_products(shop_id: str):
    return jsonify({"success": True, "products": product_list({"shopId": shop_id})})


@products_bp.route("/get-all-products", methods=["GET"])
def get_all_products():
    return jsonify({"success": True, "products": product_list()})


@products_bp.route("/delete-shop-product/<product_id>", methods=["DELETE"])
@seller_required
def delete_shop_product(product_id: str):
    object_id = store.parse_object_id(product_id, "product")
    product = store.collection(store.PRODUCTS).find_one({"_id": object_id})
    if not product:
        raise NotFound("Product is not found with this id")

    if product.get("shopId") != str(g.seller["_id"]):
        raise Forbidden("You do not have permission to delete this product.")

    media = get_media_store()
    for image in product.get("images") or []:
        if image.get("public_id"):
            media.destroy(image["public_id"])

    store.collection(store.PRODUCTS).delete_one({"_id": object_id})
    return jsonify({"success": True, "message": "Product Deleted successfully!"})


@products_bp.route("/create-new-review", methods=["PUT"])
@login_required
def create_new_review():
    payload = read_payload()
    fields = require_fields(
        payload, ("productId", "rating", "comment"), "Rating, comment and product are required."
    )
    rating = parse_number(fields["rating"], "rating", integer=True)
    if not 1 <= rating <= 5:
        raise ValidationError("Rating must be between 1 and 5.")

    object_id = store.parse_object_id(fields["productId"], "product")
    products = store.collection(store.PRODUCTS)
    if not products.find_one({"_id": object_id}, {"_id": 1}):
        raise NotFound("Product is not found with this id")

    reviewer = ReviewerSnapshot.from_document(g.user)
    review = {
        "user": reviewer.to_document(),
        "rating": rating,
        "comment": fields["comment"],
        "productId": str(object_id),
        "createdAt": store.utcnow(),
    }

    # One review per user; a repeat review replaces the earlier one.
    products.update_one({"_id": object_id}, {"$pull": {"reviews": {"user.id": reviewer.id}}})
    product = products.find_one_and_update(
        {"_id": object_id},
        {"$push": {"reviews": review}},
        return_document=ReturnDocument.AFTER,
    )
    if not product:
        raise NotFound("Product is not found with this id")

    # Skipped when a concurrent review changed the list; that writer sets the ratings.
    products.update_one(
        {"_id": object_id, "reviews": product["reviews"]},
        {"$set": {"ratings": average_rating(product["reviews"])}},
    )
    return jsonify({"success": True, "message": "Reviewed successfully!"})


@products_bp.route("/admin-all-products", methods=["GET"])
@admin_required("Admin")
def admin_all_products():
    return jsonify({"success": True, "products": product_list()})
