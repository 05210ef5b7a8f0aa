"""Upload sniffing: which uploads are photos, and what format to declare to Bedrock."""

import logging
from io import BytesIO
from typing import Optional

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

# Formats the Converse API accepts for image blocks
CONVERSE_IMAGE_FORMATS = {"JPEG": "jpeg", "PNG": "png", "GIF": "gif", "WEBP": "webp"}

PHOTO = "photo"
DOCUMENT = "document"


def detect_image_format(content: bytes) -> Optional[str]:
    """
    Identify an image with Pillow.

    Returns:
        Converse format string, or None if the bytes are not a supported image
    """
    try:
        with Image.open(BytesIO(content)) as image:
            pil_format = image.format
            image.verify()
    except (UnidentifiedImageError, OSError, SyntaxError, ValueError):
        return None
    return CONVERSE_IMAGE_FORMATS.get(pil_format or "")


def is_pdf(content: bytes) -> bool:
    return content.startswith(b"%PDF")


def classify_upload(content: bytes) -> str:
    """Photos are anything Pillow can open in a Converse format; the rest are documents."""
    return PHOTO if detect_image_format(content) else DOCUMENT


def content_type_for(content: bytes, declared: Optional[str] = None) -> str:
    image_format = detect_image_format(content)
    if image_format:
        return f"image/{image_format}"
    if is_pdf(content):
        return "application/pdf"
    return declared or "application/octet-stream"
