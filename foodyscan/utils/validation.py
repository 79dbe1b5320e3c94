"""Request payload validation shared by the API handlers."""

from __future__ import annotations

import base64
import binascii
import math
import re
from typing import Any, Dict, List, Optional, Tuple

from .errors import ValidationError

MAX_IMAGE_LENGTH = 7_000_000
MAX_CHAT_MESSAGE_LENGTH = 2000
MAX_CONDITION_LENGTH = 500
MAX_FOOD_NAME_LENGTH = 200
MAX_TRANSLATE_LENGTH = 5000
MAX_TRANSLATE_BATCH = 100

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w/+.-]+);base64,(?P<data>.*)$", re.DOTALL)


def json_body(payload: Any) -> Dict[str, Any]:
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def require_image(payload: Dict[str, Any], field: str = "image") -> str:
    image = payload.get(field)
    if not image or not isinstance(image, str):
        raise ValidationError("Invalid image data")
    check_image_size(image)
    return image


def check_image_size(image: str) -> None:
    if len(image) > MAX_IMAGE_LENGTH:
        raise ValidationError("Image too large. Maximum 5MB allowed.")


def require_text(value: Any, field: str, max_length: int, *, message: Optional[str] = None) -> str:
    if not value or not isinstance(value, str) or not value.strip():
        raise ValidationError(message or f"Valid {field} is required")
    return optional_text(value, field, max_length) or ""


def optional_text(value: Any, field: str, max_length: int) -> Optional[str]:
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError(f"Invalid {field} format")
    if len(value) > max_length:
        raise ValidationError(
            f"{field[:1].upper()}{field[1:]} too long. Maximum {max_length} characters."
        )
    return value


def optional_number(value: Any, field: str) -> Optional[float]:
    """Accept a finite, non-negative JSON number or nothing."""

    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"Invalid {field} value")
    if not math.isfinite(value) or value < 0:
        raise ValidationError(f"Invalid {field} value")
    return value


def string_list(value: Any, field: str) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError("Invalid input format")
    return [str(item).strip() for item in value if str(item).strip()]


def require_email(value: Any) -> str:
    if not value or not isinstance(value, str) or not value.strip():
        raise ValidationError("Email is required")
    email = value.strip().lower()
    if not _EMAIL_RE.match(email):
        raise ValidationError("Invalid email format")
    return email


def normalise_data_url(image: str) -> str:
    """Ensure images are expressed as ``data:`` URLs."""

    if image.startswith("data:") or image.startswith("http://") or image.startswith("https://"):
        return image
    return f"data:image/jpeg;base64,{image}"


def decode_image(image: str) -> Tuple[bytes, str]:
    """Decode a base64 image (bare or ``data:`` URL) into bytes and a MIME type."""

    mime_type = "image/jpeg"
    data = image
    match = _DATA_URL_RE.match(image)
    if match:
        mime_type = match.group("mime")
        data = match.group("data")
    try:
        return base64.b64decode(data, validate=False), mime_type
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("Invalid image data") from exc
