from .profile import fetch_profile, fetch_profile_html
from .urls import extract_profile_id, is_valid_profile_url, validate_profile_url

__all__ = [
    "fetch_profile",
    "fetch_profile_html",
    "extract_profile_id",
    "is_valid_profile_url",
    "validate_profile_url",
]
