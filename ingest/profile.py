"""Public profile page retrieval.

Profiles are fetched either directly from the platform (through a
cloudscraper session, which copes with the host's bot protection) or, when
``LB_RELAY_URL`` is set, through a relay that takes ``?url=<profile url>``
and answers with the raw page.

Only transport problems raise here.  A page that loads but is empty or
unrecognisable is returned as-is; the parser deals with it.
"""

from __future__ import annotations

import logging
from typing import Optional

import cloudscraper
import requests

import settings
from etl.errors import FetchError, ProfileTimeoutError
from etl.models import ProfileMetrics
from etl.parser import parse_profile
from ingest.urls import validate_profile_url

logger = logging.getLogger(__name__)

_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml",
}

# Single scraper instance (handles Cloudflare automatically)
scraper = cloudscraper.create_scraper()


def fetch_profile_html(
    url: str,
    timeout: Optional[float] = None,
    relay_url: Optional[str] = None,
    session: Optional[requests.Session] = None,
) -> str:
    """Return the raw markup of the public profile at *url*.

    Parameters
    ----------
    url : str
        Public profile URL; validated before any request is made.
    timeout : float, optional
        Per-request timeout in seconds, by default ``LB_FETCH_TIMEOUT``.
    relay_url : str, optional
        Relay endpoint, by default ``LB_RELAY_URL``. Direct fetch when unset.
    session : requests.Session, optional
        Session to use instead of the module scraper (tests, connection reuse).
    """

    url = validate_profile_url(url)
    timeout = settings.FETCH_TIMEOUT if timeout is None else timeout
    relay_url = settings.RELAY_URL if relay_url is None else relay_url

    try:
        if relay_url:
            logger.debug("Requesting %s via relay %s", url, relay_url)
            resp = (session or requests).get(relay_url, params={"url": url}, headers=_HEADERS, timeout=timeout)
        else:
            logger.debug("Requesting %s", url)
            resp = (session or scraper).get(url, headers=_HEADERS, timeout=timeout)
    except requests.Timeout as exc:
        raise ProfileTimeoutError(f"Timed out after {timeout}s fetching {url}") from exc
    except requests.RequestException as exc:
        raise FetchError(f"Failed to fetch {url}: {exc}") from exc

    logger.debug("Profile response status %s for %s", resp.status_code, url)
    if not 200 <= resp.status_code < 300:
        raise FetchError(f"Profile host answered {resp.status_code} for {url}", status=resp.status_code)
    return resp.text or ""


def fetch_profile(url: str, **kwargs) -> ProfileMetrics:
    """Fetch and parse the profile at *url*, stamping the metrics with the URL."""

    html = fetch_profile_html(url, **kwargs)
    return parse_profile(html).with_url(url.strip())


__all__ = ["fetch_profile_html", "fetch_profile"]
