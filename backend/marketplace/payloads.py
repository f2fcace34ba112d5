from typing import Dict, Iterable, List

from flask import request

from .errors import ValidationError


def read_payload() -> Dict:
    payload = request.form.to_dict() if request.form else {}
    if not payload:
        payload = request.get_json(silent=True) or {}
    return payload if isinstance(payload, dict) else {}


def require_fields(payload: Dict, fields: Iterable[str], message: str) -> Dict[str, str]:
    values: Dict[str, str] = {}
    for name in fields:
        value = payload.get(name)
        if isinstance(value, str):
            value = value.strip()
        if value is None or value == "":
            raise ValidationError(message)
        values[name] = value
    return values


def image_from_request(payload: Dict, field: str):
    """Return the uploaded file for ``field`` or the data URI sent in the body."""
    uploaded = request.files.get(field) if request.files else None
    if uploaded and uploaded.filename:
        return uploaded
    return payload.get(field)


def images_from_request(payload: Dict, field: str) -> List:
    if request.files:
        uploaded = [item for item in request.files.getlist(field) if item and item.filename]
        if uploaded:
            return uploaded
    images = payload.get(field)
    if isinstance(images, str):
        return [images]
    return list(images) if isinstance(images, list) else []
