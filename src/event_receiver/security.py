"""
Security utilities for the Event Receiver service.

Customer tiers become the first segment of every object key the service
writes (``<tier>/<date>/<uuid>.json``). This module validates tier labels
so that a tier can never escape its prefix or produce an unreadable key:

- Path separators and traversal segments (``/``, ``\\``, ``.``, ``..``)
- Control and Unicode format (invisible) characters
- Leading/trailing whitespace
- Oversized labels
"""

import unicodedata

from .exceptions import ValidationError

# Module-level constants for improved performance
_INVALID_CONTROL_CHARS: set[int] = set(range(0x00, 0x20)) | {0x7F}  # includes DEL
_MAX_SEGMENT_BYTES = 255


def validate_key_segment(segment: str) -> str:
    """
    Validate that *segment* can be used as a single object-store key segment.

    Args:
        segment: The candidate segment, e.g. a customer tier label.

    Returns:
        The unchanged segment.

    Raises:
        ValidationError: If the segment is empty, too long, or contains
            separators, control characters or invisible Unicode.

    Examples:
        >>> validate_key_segment("premium")
        'premium'

        >>> validate_key_segment("premium/../standard")
        ValidationError: Key segment contains a path separator
    """
    if not isinstance(segment, str) or not segment:
        raise ValidationError(
            "Key segment must be a non-empty string",
            error_code="INVALID_KEY_SEGMENT",
            context={"segment": segment},
        )

    utf8_bytes = segment.encode("utf-8")
    if len(utf8_bytes) > _MAX_SEGMENT_BYTES:
        raise ValidationError(
            "Key segment exceeds byte length limit",
            error_code="INVALID_KEY_SEGMENT",
            context={"segment": segment, "segment_length": len(utf8_bytes)},
        )

    if "/" in segment or "\\" in segment:
        raise ValidationError(
            "Key segment contains a path separator",
            error_code="UNSAFE_KEY_SEGMENT",
            context={"segment": segment},
        )

    if segment in {".", ".."}:
        raise ValidationError(
            "Key segment is a relative path reference",
            error_code="UNSAFE_KEY_SEGMENT",
            context={"segment": segment},
        )

    for char in segment:
        char_code = ord(char)
        if char_code in _INVALID_CONTROL_CHARS or unicodedata.category(char) == "Cf":
            raise ValidationError(
                "Key segment contains invalid control or invisible characters",
                error_code="INVALID_KEY_SEGMENT",
                context={"segment": segment, "char_code": hex(char_code)},
            )

    if segment != segment.strip():
        raise ValidationError(
            "Key segment contains leading or trailing whitespace",
            error_code="INVALID_KEY_SEGMENT",
            context={"segment": segment},
        )

    return segment
