"""Image storage: Cloudinary in production, an upload folder for local work.

Both stores hand back ``{"public_id": ..., "url": ...}`` pairs and accept
either a ``data:image/...;base64,`` URI or an uploaded ``FileStorage``.
"""

import base64
import binascii
import io
import os
import re
from dataclasses import dataclass
from typing import Dict, Optional
from urllib.parse import urljoin
from uuid import uuid4

import cloudinary.uploader
from flask import current_app, request
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from . import store
from .errors import UpstreamFailure, ValidationError

ALLOWED_IMAGE_EXTENSIONS = {"png", "jpg", "jpeg", "gif", "webp"}
DATA_URI_PATTERN = re.compile(
    r"^data:image/(?P<subtype>[a-zA-Z0-9.+-]+);base64,(?P<data>.+)$", re.DOTALL
)
SUBTYPE_EXTENSIONS = {
    "png": "png",
    "jpeg": "jpg",
    "jpg": "jpg",
    "gif": "gif",
    "webp": "webp",
}


@dataclass(frozen=True)
class MediaConfig:
    backend: str = "local"
    cloud_name: str = ""
    api_key: str = ""
    api_secret: str = ""
    upload_folder: str = ""

    @property
    def is_cloudinary(self) -> bool:
        return self.backend == "cloudinary"


def is_image_source(source) -> bool:
    if isinstance(source, FileStorage):
        return bool(source.filename)
    return isinstance(source, str) and bool(source.strip())


def decode_data_uri(source: str):
    match = DATA_URI_PATTERN.match(source.strip())
    if not match:
        raise ValidationError("Images must be sent as base64 data URIs.")

    extension = SUBTYPE_EXTENSIONS.get(match.group("subtype").lower())
    if not extension:
        raise ValidationError(
            "Unsupported image format. Upload PNG, JPG, JPEG, GIF, or WEBP files."
        )
    try:
        content = base64.b64decode(match.group("data"), validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("The uploaded image could not be decoded.")
    return content, extension


def read_image(source):
    """Return ``(bytes, extension)`` for an uploaded file or a data URI.

    Anything else, such as a remote URL or a path, is rejected before it
    reaches a store.
    """
    if isinstance(source, FileStorage):
        original_filename = secure_filename(source.filename or "")
        extension = os.path.splitext(original_filename)[1].lower().lstrip(".")
        if extension not in ALLOWED_IMAGE_EXTENSIONS:
            raise ValidationError(
                "Unsupported image format. Upload PNG, JPG, JPEG, GIF, or WEBP files."
            )
        return source.read(), "jpg" if extension == "jpeg" else extension
    if not isinstance(source, str):
        raise ValidationError("Images must be sent as base64 data URIs.")
    return decode_data_uri(source)


class CloudinaryMediaStore:
    def __init__(self, config: MediaConfig):
        self.config = config

    def _credentials(self) -> Dict[str, str]:
        return {
            "cloud_name": self.config.cloud_name,
            "api_key": self.config.api_key,
            "api_secret": self.config.api_secret,
        }

    def upload(self, source, folder: str) -> Dict[str, str]:
        content, _ = read_image(source)
        try:
            result = cloudinary.uploader.upload(
                io.BytesIO(content),
                folder=folder,
                resource_type="image",
                secure=True,
                **self._credentials(),
            )
        except Exception as exc:
            raise UpstreamFailure("Error uploading image.") from exc
        return {"public_id": result["public_id"], "url": result["secure_url"]}

    def destroy(self, public_id: str) -> None:
        try:
            cloudinary.uploader.destroy(public_id, **self._credentials())
        except Exception as exc:
            raise UpstreamFailure("Error deleting image.") from exc


class LocalMediaStore:
    def __init__(self, config: MediaConfig):
        self.config = config
        os.makedirs(config.upload_folder, exist_ok=True)

    def upload(self, source, folder: str) -> Dict[str, str]:
        content, extension = read_image(source)
        public_id = f"{secure_filename(folder) or 'misc'}/{uuid4().hex}.{extension}"
        destination = os.path.join(self.config.upload_folder, public_id)
        try:
            os.makedirs(os.path.dirname(destination), exist_ok=True)
            with open(destination, "wb") as handle:
                handle.write(content)
        except OSError as exc:
            raise UpstreamFailure("We could not store the uploaded image.") from exc
        return {"public_id": public_id, "url": urljoin(request.host_url, f"uploads/{public_id}")}

    def destroy(self, public_id: str) -> None:
        if not public_id:
            return
        target = os.path.join(self.config.upload_folder, str(public_id))
        try:
            os.remove(target)
        except FileNotFoundError:
            return
        except OSError as exc:
            raise UpstreamFailure("Error deleting image.") from exc


def build_media_store(config: MediaConfig):
    if config.is_cloudinary:
        return CloudinaryMediaStore(config)
    return LocalMediaStore(config)


def avatar_public_id(document: Optional[Dict]) -> str:
    avatar = (document or {}).get("avatar") or {}
    return str(avatar.get("public_id") or "") if isinstance(avatar, dict) else ""


def get_media_store():
    return current_app.extensions["marketplace"]["media"]


def replace_avatar(collection_name: str, account: Dict, source) -> Dict:
    """Upload the new avatar, point the account at it, then drop the old one.

    The account always references a stored image; a failed cleanup of the
    previous image only leaves an orphan on the media host.
    """
    media = get_media_store()
    previous_public_id = avatar_public_id(account)
    uploaded = media.upload(source, "avatars")

    updated = store.update_account(
        collection_name, account["_id"], {"$set": {"avatar": uploaded}}
    )

    if previous_public_id and previous_public_id != uploaded["public_id"]:
        try:
            media.destroy(previous_public_id)
        except UpstreamFailure as exc:
            current_app.logger.warning(
                "Unable to delete previous avatar %s: %s", previous_public_id, exc
            )
    return updated
