"""
Input validation for identifiers that cross the pipeline boundary.

Batch ids, job ids, file names and blob paths arrive from queue tokens and
uploaded packages, so they are checked before they are used as blob keys or
SQL parameters.
"""

import re


class InputValidationError(ValueError):
    """Raised when an identifier fails validation."""
    pass


_IDENTIFIER_RE = re.compile(r"^[a-zA-Z0-9_\-\.]+$")
_MAX_IDENTIFIER_LENGTH = 255


def validate_identifier(value: str, field_name: str = "identifier") -> str:
    """
    Validate a batch id or job id.

    Ids must be non-empty strings containing only alphanumeric characters,
    hyphens, underscores and dots.

    Examples:
        >>> validate_identifier("funds_upload_20250901.zip", "batch_id")
        'funds_upload_20250901.zip'
        >>> validate_identifier("  3f2a9c  ")
        '3f2a9c'
    """
    if not value or not isinstance(value, str):
        raise InputValidationError(f"{field_name} must be a non-empty string")

    value = value.strip()
    if not value:
        raise InputValidationError(f"{field_name} cannot be empty or whitespace-only")

    if not _IDENTIFIER_RE.match(value):
        raise InputValidationError(
            f"{field_name} contains invalid characters. "
            "Only alphanumeric, hyphens, underscores, and dots are allowed."
        )

    if len(value) > _MAX_IDENTIFIER_LENGTH:
        raise InputValidationError(
            f"{field_name} exceeds maximum length of {_MAX_IDENTIFIER_LENGTH} characters"
        )

    return value


def validate_file_name(file_name: str, field_name: str = "file_name") -> str:
    """
    Validate a bare file name (no directory part).

    Spaces and parentheses are allowed since partners name files by hand;
    path separators, traversal and null bytes are not.

    Examples:
        >>> validate_file_name("Fund Documents (Sept).xlsx")
        'Fund Documents (Sept).xlsx'
        >>> validate_file_name("../secrets.xlsx")  # doctest: +SKIP
        InputValidationError: file_name contains path separators
    """
    if not file_name or not isinstance(file_name, str):
        raise InputValidationError(f"{field_name} must be a non-empty string")

    file_name = file_name.strip()
    if not file_name:
        raise InputValidationError(f"{field_name} cannot be empty or whitespace-only")

    if "/" in file_name or "\\" in file_name:
        raise InputValidationError(f"{field_name} contains path separators")

    if file_name in (".", "..") or "\x00" in file_name:
        raise InputValidationError(f"{field_name} is not a valid file name")

    if len(file_name) > _MAX_IDENTIFIER_LENGTH:
        raise InputValidationError(
            f"{field_name} exceeds maximum length of {_MAX_IDENTIFIER_LENGTH} characters"
        )

    return file_name


def validate_blob_path(path: str, field_name: str = "blob_path") -> str:
    """
    Validate a blob key such as "processing/funds_upload.zip/a.xlsx".

    Keys are always relative and use forward slashes.
    """
    if not path or not isinstance(path, str):
        raise InputValidationError(f"{field_name} must be a non-empty string")

    path = path.strip()
    if path.startswith("/") or "\\" in path:
        raise InputValidationError(f"{field_name} must be a relative key using '/' separators")

    if "\x00" in path:
        raise InputValidationError(f"{field_name} contains null bytes")

    parts = path.split("/")
    if any(part in ("", ".", "..") for part in parts):
        raise InputValidationError(f"{field_name} contains empty or traversal segments")

    if len(path) > 4096:
        raise InputValidationError(f"{field_name} exceeds maximum length of 4096 characters")

    return path


def validate_max_retries(value: int, field_name: str = "max_retries") -> int:
    """Retry bound must be a small non-negative integer."""
    if not isinstance(value, int) or isinstance(value, bool):
        raise InputValidationError(f"{field_name} must be an integer, got {type(value).__name__}")
    if value < 0:
        raise InputValidationError(f"{field_name} must be non-negative, got {value}")
    if value > 100:
        raise InputValidationError(f"{field_name} exceeds maximum of 100")
    return value
