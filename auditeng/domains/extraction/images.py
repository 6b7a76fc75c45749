"""
Image Inputs - Validation and preparation of image references for vision calls.
"""

from __future__ import annotations

import re

from auditeng.config.errors import AuditEngError, ErrorCode

__all__ = ["is_valid_image_input", "prepare_image_for_api"]

_DATA_URI = re.compile(r"^data:image/[a-zA-Z0-9.+-]+;base64,[A-Za-z0-9+/\s]+={0,2}$")
_RAW_BASE64 = re.compile(r"^[A-Za-z0-9+/\r\n]+={0,2}$")


def is_valid_image_input(image: str) -> bool:
    """
    Check an image reference is an http(s) URL, an image data URI, or raw base64.

    Example:
        >>> is_valid_image_input("https://cdn.example.com/page-3.jpg")
        True
        >>> is_valid_image_input("not an image")
        False
    """
    if not image:
        return False
    if image.startswith(("http://", "https://")):
        return True
    if image.startswith("data:"):
        return bool(_DATA_URI.match(image))
    return len(image) >= 16 and bool(_RAW_BASE64.match(image))


def prepare_image_for_api(image: str) -> str:
    """
    Return a reference the chat API accepts (URL or data URI).

    Raw base64 is wrapped as a JPEG data URI.

    Raises:
        AuditEngError: Reference is not a usable image (EXTRACTION_INVALID_IMAGE)
    """
    if not is_valid_image_input(image):
        raise AuditEngError(
            ErrorCode.EXTRACTION_INVALID_IMAGE,
            "Invalid image input",
            {"preview": image[:32]},
        )
    if image.startswith(("http://", "https://", "data:")):
        return image
    return f"data:image/jpeg;base64,{image.strip()}"
