"""
Inline media helpers.

Every generated artifact travels as ``data:<mimetype>;base64,<payload>``.
Failure paths of some providers return values that look like media but carry
a placeholder payload, so nothing is treated as media until it passes
``is_data_uri``.
"""

import base64
import binascii
import re
from typing import Iterable, Optional

DATA_URI_RE = re.compile(
    r"^data:(?P<mime>[a-z]+/[a-z0-9.+-]+);base64,(?P<payload>.+)$",
    re.IGNORECASE | re.DOTALL,
)

IMAGE_TYPES = ("image/",)
AUDIO_TYPES = ("audio/",)
ANIMATION_TYPES = ("image/gif", "image/webp", "video/")


def parse_data_uri(value: object) -> Optional[tuple[str, bytes]]:
    """Return (mimetype, decoded bytes) or None when value is not real media"""
    if not isinstance(value, str):
        return None

    match = DATA_URI_RE.match(value.strip())
    if not match:
        return None

    try:
        payload = base64.b64decode(match.group("payload"), validate=True)
    except (binascii.Error, ValueError):
        return None

    if not payload:
        return None
    return match.group("mime").lower(), payload


def is_data_uri(value: object, accepted: Iterable[str] = ()) -> bool:
    """Check scheme, mimetype family and payload of a media value"""
    parsed = parse_data_uri(value)
    if parsed is None:
        return False
    accepted = tuple(accepted)
    if not accepted:
        return True
    return parsed[0].startswith(accepted)


def to_data_uri(data: bytes, mime_type: str) -> str:
    """Encode raw bytes as a data URI"""
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"


def split_data_uri(value: str) -> tuple[str, str]:
    """Return (mimetype, base64 payload) of an already validated data URI"""
    match = DATA_URI_RE.match(value.strip())
    if not match:
        raise ValueError("Not a data URI")
    return match.group("mime").lower(), match.group("payload")


def describe(value: Optional[str], length: int = 40) -> str:
    """Short log-friendly form of a media value"""
    if not value:
        return "<none>"
    return value[:length] + ("..." if len(value) > length else "")
