"""Write-time validation, independent of the storage layer.

Each validator returns a tagged :class:`ValidationResult`; callers decide how
to surface it (the gateway raises :class:`radar.errors.ValidationError`).
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field

from pydantic import AnyHttpUrl, TypeAdapter, ValidationError as UrlError

from radar.models import ENTRY_TYPES

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
LINK_URL = TypeAdapter(AnyHttpUrl)
MAX_TEAM_NAME = 200


@dataclass
class ValidationResult:
    ok: bool
    reasons: list[str] = field(default_factory=list)

    @classmethod
    def check(cls, reasons: list[str]) -> ValidationResult:
        return cls(ok=not reasons, reasons=reasons)


def validate_submission(entry_type: str, content: str | None, max_chars: int) -> ValidationResult:
    reasons: list[str] = []
    if entry_type not in ENTRY_TYPES:
        reasons.append(f"type must be one of {', '.join(ENTRY_TYPES)}")
    text = (content or "").strip()
    if not text:
        reasons.append("content is empty")
    elif len(text) > max_chars:
        reasons.append(f"content exceeds {max_chars} characters")
    elif entry_type == "link" and not is_link(text):
        reasons.append("link content must be a URL")
    return ValidationResult.check(reasons)


def validate_project(team_name: str | None, email: str | None) -> ValidationResult:
    reasons: list[str] = []
    name = (team_name or "").strip()
    if not name:
        reasons.append("team name is required")
    elif len(name) > MAX_TEAM_NAME:
        reasons.append(f"team name exceeds {MAX_TEAM_NAME} characters")
    if not EMAIL_RE.match((email or "").strip()):
        reasons.append("a valid email is required")
    return ValidationResult.check(reasons)


def is_link(text: str) -> bool:
    """True for an http(s) URL; a bare host is read as https, as the content store fetches it."""
    if " " in text:
        return False
    if "://" not in text:
        text = "https://" + text
    try:
        LINK_URL.validate_python(text)
    except UrlError:
        return False
    return True
