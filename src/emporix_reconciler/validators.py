"""
Input validation functions for resource identifiers.

Validates resource codes, site codes and import IDs before they are
substituted into API paths.
"""

import re

# Codes travel inside URL path segments
_IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.\-]*$")


# ---------------------------------------------------------------------------
# Error message formatting helpers
# ---------------------------------------------------------------------------


def format_validation_error(field_name: str, reason: str) -> str:
    """
    Generate consistent error message for validation failures.

    Args:
        field_name: Human-readable field name (e.g., "Site code")
        reason: Description of validation failure (e.g., "cannot be empty")

    Returns:
        Formatted error message string
    """
    return f"{field_name} {reason}"


def validate_identifier(
    value: str, field_name: str = "Identifier", max_length: int = 255
) -> tuple[bool, str]:
    """
    Validate a resource code or id used as a path segment.

    Args:
        value: The identifier to validate
        field_name: Human-readable name used in the error message
        max_length: Maximum length in characters (default: 255)

    Returns:
        Tuple of (is_valid, error_message).
        Returns (True, "") if valid, (False, reason) if invalid.

    Validation rules:
        - Cannot be empty or whitespace-only
        - Cannot contain '/', '..' or ':' (path and import-ID separators)
        - Must start with a letter or digit
    """
    if not value or not value.strip():
        return (
            False,
            format_validation_error(field_name, "cannot be empty"),
        )

    if ".." in value:
        return (
            False,
            format_validation_error(field_name, "cannot contain '..'"),
        )

    if "/" in value or ":" in value:
        return (
            False,
            format_validation_error(
                field_name, "cannot contain '/' or ':'"
            ),
        )

    if len(value) > max_length:
        return (
            False,
            format_validation_error(
                field_name, f"exceeds maximum length of {max_length}"
            ),
        )

    if not _IDENTIFIER_RE.match(value):
        return (
            False,
            format_validation_error(
                field_name,
                "must start with a letter or digit and contain only "
                "letters, digits, '_', '-' or '.'",
            ),
        )

    return (True, "")


def validate_import_segments(
    raw: str, labels: tuple[str, ...]
) -> tuple[bool, str]:
    """
    Validate a colon-separated import ID against its expected segments.

    Args:
        raw: Import ID as given by the user (e.g., "main:zone-us")
        labels: Segment names in order (e.g., ("site", "zone_id"))

    Returns:
        Tuple of (is_valid, error_message).
    """
    expected = ":".join(labels)
    if not raw or not raw.strip():
        return (
            False,
            format_validation_error("Import ID", "cannot be empty"),
        )

    parts = raw.split(":")
    if len(parts) != len(labels):
        return (
            False,
            f"Expected import ID in format '{expected}', got: {raw}",
        )

    for label, part in zip(labels, parts):
        ok, reason = validate_identifier(part, f"Import ID segment '{label}'")
        if not ok:
            return (False, reason)

    return (True, "")
