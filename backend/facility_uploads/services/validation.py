"""Input sanitizing and facility field rules."""
import html
import re
from typing import Optional

from facility_uploads.services.upload_errors import ValidationError

FACILITY_CODE_RE = re.compile(r"^[A-Z0-9_-]{3,20}$")
_TAG_RE = re.compile(r"<[^>]*>")
_UNSAFE_PATH_CHARS_RE = re.compile(r"[^A-Za-z0-9_-]")


def sanitize_text(value: Optional[str]) -> Optional[str]:
    """Strip HTML tags and surrounding whitespace. Empty results become None."""
    if value is None:
        return None
    cleaned = html.unescape(_TAG_RE.sub("", value)).strip()
    return cleaned or None


def validate_facility_code(code: Optional[str]) -> str:
    code = sanitize_text(code)
    if not code:
        raise ValidationError("facilityCode is required")
    if not FACILITY_CODE_RE.match(code):
        raise ValidationError(
            "Facility code must be 3-20 characters, uppercase letters, digits, "
            "underscores, and hyphens only"
        )
    return code


def validate_facility_name(name: Optional[str]) -> str:
    name = sanitize_text(name)
    if not name:
        raise ValidationError("facilityName is required")
    if not 2 <= len(name) <= 255:
        raise ValidationError("Facility name must be between 2 and 255 characters")
    return name


def safe_path_component(value: str) -> str:
    """Reduce a value to characters safe in a file name."""
    return _UNSAFE_PATH_CHARS_RE.sub("_", value) or "facility"
