"""Core utility functions for ClearLink."""

import re


# Checked in order; more specific kinds first so their matches are not
# partially consumed by the broader ones.
SENSITIVE_PATTERNS: list[tuple[str, re.Pattern]] = [
    ("password", re.compile(r"(?i)(?:password|passwd|pwd)\s*[:=]\s*[^\s&#]+")),
    ("email", re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")),
    ("ipv4", re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b")),
    ("aws_access_key", re.compile(r"\b(?:AKIA|ASIA)[A-Z0-9]{16}\b")),
    ("aws_secret_key", re.compile(r"(?<![A-Za-z0-9/+=])[A-Za-z0-9/+=]{40}(?![A-Za-z0-9/+=])")),
]


def redact_sensitive(text: str) -> str:
    """
    Mask credentials and personal data before text is logged.

    Each match is replaced by a marker such as ``[REDACTED EMAIL]``.
    """
    redacted = text
    for name, pattern in SENSITIVE_PATTERNS:
        redacted = pattern.sub(f"[REDACTED {name.upper()}]", redacted)
    return redacted
