"""
file_validation.py
~~~~~~~~~~~~~~~~~~
Security hardening for package uploads.
Validates file content using Magic Numbers (signatures) instead of just extensions.
"""
import logging
import os
import re

from trustforge.core.config import settings
from trustforge.core.errors import ValidationError

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = (".apk", ".ipa")

# Magic Numbers (File Signatures)
SIGNATURES = {
    # APK and IPA are both ZIP archives
    "zip": b"\x50\x4B\x03\x04",
}


def sanitize_filename(filename: str) -> str:
    """Strip directory components and anything outside [A-Za-z0-9_.-]."""
    base_name = os.path.basename(filename or "")
    safe = re.sub(r"[^a-zA-Z0-9_.-]", "_", base_name)
    return safe or "unnamed_upload"


def package_extension(filename: str) -> str:
    return os.path.splitext(filename or "")[1].lower()


def is_zip_container(header: bytes) -> bool:
    return header.startswith(SIGNATURES["zip"])


def validate_package(filename: str, content: bytes) -> None:
    """
    Validate an uploaded mobile package before any job is created.
    Raises ValidationError if the extension, signature or size is not acceptable.
    """
    ext = package_extension(filename)
    if ext not in ALLOWED_EXTENSIONS:
        logger.warning(f"Validation failed: {filename} has extension '{ext}'.")
        raise ValidationError("Only .apk and .ipa files are allowed")

    if not content:
        raise ValidationError("Uploaded file is empty")

    max_bytes = settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024
    if len(content) > max_bytes:
        raise ValidationError(f"File too large. Max size: {settings.MAX_UPLOAD_SIZE_MB}MB")

    if not is_zip_container(content[:8]):
        logger.warning(f"Validation failed: {filename} claims to be {ext} but lacks ZIP signature.")
        raise ValidationError(
            f"Invalid file content. Extension says {ext} but content does not match (ZIP signature missing)."
        )


def safe_key_segment(value: str) -> str:
    """Make an owner id (or similar) safe to use as one object-store key segment."""
    segment = re.sub(r"[^a-zA-Z0-9_.-]", "_", value or "").strip(".")
    if not segment:
        raise ValidationError("Owner id is required")
    return segment
