"""Profile URL contract.

A profile URL is accepted only when it is served from one of the platform's
hosts (the platform moved from ``cloudskillsboost.google`` to
``skills.google`` mid-competition, both stay valid) and its path carries
``/public_profiles/<id>`` with a hex/UUID-like id.  The id, not the URL
string, identifies a participant.
"""

from __future__ import annotations

import re
from typing import Optional
from urllib.parse import urlsplit

from etl.errors import ValidationError

ACCEPTED_HOSTS = frozenset({
    "www.cloudskillsboost.google",
    "cloudskillsboost.google",
    "www.skills.google",
    "skills.google",
})

PROFILE_PATH_SEGMENT = "/public_profiles/"
_PROFILE_ID_RE = re.compile(r"/public_profiles/([a-f0-9-]+)", re.I)


def extract_profile_id(url: Optional[str]) -> Optional[str]:
    """Return the lower-cased profile id embedded in *url* (or *None*)."""

    if not url or not isinstance(url, str):
        return None
    m = _PROFILE_ID_RE.search(url)
    if not m or not re.search(r"[a-f0-9]", m.group(1), re.I):
        return None
    return m.group(1).lower()


def is_valid_profile_url(url: Optional[str]) -> bool:
    if not url or not isinstance(url, str):
        return False
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        return False
    if parts.scheme not in ("http", "https"):
        return False
    if (parts.hostname or "").lower() not in ACCEPTED_HOSTS:
        return False
    return PROFILE_PATH_SEGMENT in parts.path and extract_profile_id(parts.path) is not None


def validate_profile_url(url: Optional[str]) -> str:
    """Return the stripped *url* or raise ``ValidationError``."""

    if not url or not str(url).strip():
        raise ValidationError("Profile URL is required")
    url = str(url).strip()
    if not is_valid_profile_url(url):
        raise ValidationError(f"Not a valid public profile URL: {url}")
    return url


def same_profile(url_a: Optional[str], url_b: Optional[str]) -> bool:
    id_a = extract_profile_id(url_a)
    return id_a is not None and id_a == extract_profile_id(url_b)


__all__ = [
    "ACCEPTED_HOSTS",
    "extract_profile_id",
    "is_valid_profile_url",
    "validate_profile_url",
    "same_profile",
]
