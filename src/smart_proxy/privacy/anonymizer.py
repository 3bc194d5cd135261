"""PII anonymizer for payloads leaving the gateway.

Walks any JSON-like value and replaces recognised PII in every string with a
bracketed category label, e.g. ``"mail me at a@b.io"`` becomes
``"mail me at [EMAIL]"``. Labels never match the patterns, so running the
anonymizer twice changes nothing the second time.
"""

import re
from collections.abc import Mapping
from typing import Any

# Applied in order. Email runs first so its digits are gone before the
# phone and card patterns look at the text.
PII_PATTERNS: dict[str, re.Pattern[str]] = {
    "EMAIL": re.compile(r"\b[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}\b", re.IGNORECASE),
    "PHONE": re.compile(r"\b(?:\+?\d{1,3}[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}\b"),
    "SSN": re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),
    "CREDIT_CARD": re.compile(r"\b(?:\d[ -]*?){13,16}\b"),
}


def anonymize_text(text: str) -> str:
    """Replace every PII match in text with its ``[LABEL]``.

    Args:
        text: Input string

    Returns:
        Text with all recognised PII redacted
    """
    for label, pattern in PII_PATTERNS.items():
        text = pattern.sub(f"[{label}]", text)
    return text


def anonymize(value: Any) -> Any:
    """Recursively redact PII from a JSON-like structure.

    Mappings keep their keys and key order, sequences keep their order
    (tuples stay tuples), strings are redacted, and everything else
    (numbers, booleans, None) is returned unchanged.

    Args:
        value: Any JSON-like value

    Returns:
        A new structure with PII replaced by category labels
    """
    if isinstance(value, str):
        return anonymize_text(value)
    if isinstance(value, Mapping):
        return {key: anonymize(item) for key, item in value.items()}
    if isinstance(value, list):
        return [anonymize(item) for item in value]
    if isinstance(value, tuple):
        return tuple(anonymize(item) for item in value)
    return value
