"""Input sanitization helpers.

- ``sanitize_string``: type/length validation plus control-char stripping
  for plain fields (task text, reasons).
- ``sanitize_text``: markup sanitization for rich-text fields supplied by
  untrusted parties (worker deliverables, feedback). Keeps basic formatting
  tags and drops scripts, handlers and attributes.
- ``strip_html``: remove all markup, keep text.
"""

import re
from typing import Any

import nh3

# Basic formatting only; no links, no attributes.
TEXT_ALLOWED_TAGS = {"b", "i", "em", "strong", "p", "br", "ul", "ol", "li", "code", "pre"}

_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def sanitize_string(
    value: Any, field_name: str, max_length: int = 1000, required: bool = True
) -> str:
    """Sanitize and validate string inputs.

    Args:
        value: The value to sanitize.
        field_name: Name of the field for error messages.
        max_length: Maximum allowed string length.
        required: If True, empty strings are rejected.

    Returns:
        Sanitized string.

    Raises:
        ValueError: If validation fails.
    """
    if value is None and not required:
        return ""

    if not isinstance(value, str):
        raise ValueError(f"{field_name} must be a string, got {type(value).__name__}")

    if required and not value.strip():
        raise ValueError(f"{field_name} cannot be empty")

    if len(value) > max_length:
        raise ValueError(f"{field_name} too long (max {max_length} characters, got {len(value)})")

    return _CONTROL_CHARS.sub("", value)


def sanitize_text(text: str) -> str:
    """Sanitize rich text, keeping basic formatting tags only."""
    if not text:
        return ""
    return nh3.clean(
        _CONTROL_CHARS.sub("", text),
        tags=TEXT_ALLOWED_TAGS,
        attributes={},
        strip_comments=True,
    )


def strip_html(text: str) -> str:
    """Remove all markup, returning text content only."""
    if not text:
        return ""
    return nh3.clean(text, tags=set(), attributes={})
