import html
import re
from typing import Any, Optional

import bleach
from bleach.css_sanitizer import CSSSanitizer

# Tags a contractor may use in contract bodies
CONTRACT_ALLOWED_TAGS = [
    "p",
    "br",
    "strong",
    "b",
    "em",
    "i",
    "u",
    "a",
    "ul",
    "ol",
    "li",
    "h1",
    "h2",
    "h3",
    "h4",
    "blockquote",
    "table",
    "thead",
    "tbody",
    "tr",
    "th",
    "td",
    "span",
    "div",
]

CONTRACT_ALLOWED_ATTRIBUTES = {"a": ["href", "title", "target"], "*": ["class", "style"]}

_css_sanitizer = CSSSanitizer(
    allowed_css_properties=["color", "background-color", "font-weight", "text-align"]
)


def sanitize_string(value: Optional[str]) -> Optional[str]:
    """
    Sanitize a string by escaping HTML special characters to prevent XSS.
    Returns None if input is None.
    """
    if value is None:
        return None
    if not isinstance(value, str):
        return value
    return html.escape(str(value), quote=True)


def sanitize_contract_html(content: Optional[str]) -> str:
    """Strip disallowed markup from contract content while keeping basic formatting"""
    if not content:
        return ""
    return bleach.clean(
        content,
        tags=CONTRACT_ALLOWED_TAGS,
        attributes=CONTRACT_ALLOWED_ATTRIBUTES,
        css_sanitizer=_css_sanitizer,
        strip=True,
    )


def sanitize_dict(data: dict[str, Any], fields: Optional[list[str]] = None) -> dict[str, Any]:
    """
    Sanitize specific fields in a dictionary by escaping HTML special characters.
    If fields is None, sanitizes all string values.

    Args:
        data: Dictionary to sanitize
        fields: List of field names to sanitize. If None, sanitizes all strings.

    Returns:
        New dictionary with sanitized values
    """
    if not data:
        return data

    sanitized = {}
    for key, value in data.items():
        if fields is None or key in fields:
            if isinstance(value, str):
                sanitized[key] = sanitize_string(value)
            elif isinstance(value, dict):
                sanitized[key] = sanitize_dict(value, fields)
            elif isinstance(value, list):
                sanitized[key] = [
                    (
                        sanitize_dict(item, fields)
                        if isinstance(item, dict)
                        else sanitize_string(item) if isinstance(item, str) else item
                    )
                    for item in value
                ]
            else:
                sanitized[key] = value
        else:
            sanitized[key] = value

    return sanitized


def normalize_full_name(value: str, min_length: int = 2, max_length: int = 200) -> str:
    """
    Trim and validate a signer's declared full name.

    Raises:
        ValueError: If the trimmed name is outside the allowed length
    """
    value = re.sub(r"[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]", "", str(value or "")).strip()

    if len(value) < min_length:
        raise ValueError(f"Full name must be at least {min_length} characters")
    if len(value) > max_length:
        raise ValueError(f"Full name must be at most {max_length} characters")

    return value
