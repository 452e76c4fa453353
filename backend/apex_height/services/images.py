# Upload handling: turns submitted data URIs into validated image payloads.

from __future__ import annotations

import base64
import binascii
import logging
import math
import re
from dataclasses import dataclass

import cv2
import numpy as np

from apex_height.errors import InvalidInput

logger = logging.getLogger(__name__)

# Room for a "data:<media type>;base64," prefix on top of the encoded bytes.
DATA_URI_HEADER_ALLOWANCE = 256

_DATA_URI_RE = re.compile(r"^data:(?P<media_type>[\w.+-]+/[\w.+-]+)?(?P<params>(;[\w.+-]+=[^;,]*)*)(?P<b64>;base64)?,(?P<data>.*)$", re.DOTALL)


@dataclass(frozen=True)
class UploadedImage:
    """One submitted photo, owned by the request that carried it."""

    index: int
    data: bytes
    media_type: str
    width: int
    height: int


def decode_data_uri(payload: str) -> tuple[bytes, str]:
    """Return (raw bytes, media type) for a base64 data URI or bare base64 string."""
    media_type = "application/octet-stream"
    encoded = payload.strip()

    match = _DATA_URI_RE.match(encoded)
    if match:
        if not match.group("b64"):
            raise ValueError("data URI is not base64-encoded")
        media_type = match.group("media_type") or media_type
        encoded = match.group("data")

    try:
        data = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"invalid base64: {exc}") from exc
    return data, media_type


def max_payload_length(max_image_bytes: int) -> int:
    """Longest payload string that can still decode to ``max_image_bytes``."""
    return math.ceil(max_image_bytes / 3) * 4 + DATA_URI_HEADER_ALLOWANCE


def probe_dimensions(data: bytes) -> tuple[int, int] | None:
    """Decode the image as single-channel 8-bit; None if OpenCV cannot read it."""
    buf = np.frombuffer(data, dtype=np.uint8)
    image = cv2.imdecode(buf, cv2.IMREAD_GRAYSCALE)
    if image is None:
        return None
    h, w = image.shape[:2]
    return w, h


def load_uploaded_images(
    payloads: list[str] | None,
    max_images: int = 4,
    max_image_bytes: int = 10 * 1024 * 1024,
) -> list[UploadedImage]:
    """Validate and decode every submitted payload, preserving submission order.

    Raises InvalidInput on the first payload that is missing, too large or
    not an image. Oversized strings are rejected before any base64 decoding.
    CPU-bound; async callers should run it in a worker thread.
    """
    if not payloads:
        raise InvalidInput("No image data provided.")
    if len(payloads) > max_images:
        raise InvalidInput(f"Too many images: at most {max_images} can be analyzed at once.")

    too_large = f"too large (max {max_image_bytes // (1024 * 1024)} MB)."
    length_limit = max_payload_length(max_image_bytes)

    images: list[UploadedImage] = []
    for idx, payload in enumerate(payloads):
        if not isinstance(payload, str) or not payload.strip():
            raise InvalidInput(f"Image {idx + 1} is empty.")
        if len(payload) > length_limit:
            logger.info("Rejecting image %d: %d characters exceeds %d", idx, len(payload), length_limit)
            raise InvalidInput(f"Image {idx + 1} is {too_large}")
        try:
            data, media_type = decode_data_uri(payload)
        except ValueError as exc:
            logger.info("Rejecting image %d: %s", idx, exc)
            raise InvalidInput(f"Image {idx + 1} is not valid base64 image data.") from exc

        if not data:
            raise InvalidInput(f"Image {idx + 1} is empty.")
        if len(data) > max_image_bytes:
            raise InvalidInput(f"Image {idx + 1} is {too_large}")

        dims = probe_dimensions(data)
        if dims is None:
            raise InvalidInput(f"Image {idx + 1} could not be decoded as an image.")

        images.append(UploadedImage(index=idx, data=data, media_type=media_type, width=dims[0], height=dims[1]))

    return images
