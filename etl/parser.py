"""Public profile parser: turns profile page markup into ``ProfileMetrics``.

The profile page is not an API and its markup has changed under us more
than once, so every field is read through an ordered list of extraction
strategies.  A strategy receives the parsed page and returns a value, or
``None`` when it does not apply; the first value returned wins and later
strategies are not consulted.  New heuristics are added by appending to the
relevant list.

Badges are the delicate field.  An explicit "hasn't earned any badges yet"
message is authoritative: it yields 0 and stops the chain before any
counting heuristic can see stray badge-like markup.  The final estimate from
league and points is a placeholder of last resort and marks the result for
manual review.

``parse_profile`` never raises: one broken page must not abort a refresh of
hundreds.  On unexpected failure it returns fully defaulted metrics.
"""

from __future__ import annotations

import html
import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Callable, List, Optional, Sequence, Tuple

from bs4 import BeautifulSoup

from etl.models import DEFAULT_LEAGUE, UNKNOWN_NAME, ProfileMetrics, as_count, avatar_for
from etl.scoring import LEAGUES, derive_tier, ranking_score

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Page:
    raw: str
    soup: BeautifulSoup
    text: str

    @classmethod
    def from_markup(cls, raw: str) -> "Page":
        soup = BeautifulSoup(raw, "lxml")
        text = re.sub(r"\s+", " ", soup.get_text(" "))
        return cls(raw=raw, soup=soup, text=text)


Strategy = Callable[[Page], Optional[object]]


def _first_match(page: Page, strategies: Sequence[Tuple[str, Strategy]]) -> Tuple[Optional[object], Optional[str]]:
    for label, strategy in strategies:
        value = strategy(page)
        if value is not None:
            return value, label
    return None, None


# ---------------------------------------------------------------------------
# Name
# ---------------------------------------------------------------------------

_TITLE_RE = re.compile(r"^\s*(.+?)\s*\|\s*(?:Google Cloud Skills Boost|Google Skills|Cloud Skills Boost)\b", re.I)


def _name_from_title(page: Page) -> Optional[str]:
    title = page.soup.title
    if title is None:
        return None
    m = _TITLE_RE.match(title.get_text())
    return m.group(1).strip() if m and m.group(1).strip() else None


def _name_from_heading(page: Page) -> Optional[str]:
    for tag in ("h1", "h2"):
        for heading in page.soup.find_all(tag):
            text = re.sub(r"\s+", " ", heading.get_text(" ")).strip()
            if text:
                return text
    return None


NAME_STRATEGIES: List[Tuple[str, Strategy]] = [
    ("title", _name_from_title),
    ("heading", _name_from_heading),
]


# ---------------------------------------------------------------------------
# League
# ---------------------------------------------------------------------------

_LEAGUE_RE = re.compile(r"\b(" + "|".join(LEAGUES) + r")\s+League\b", re.I)


def _league_from_text(page: Page) -> Optional[str]:
    m = _LEAGUE_RE.search(page.text)
    return m.group(1).title() if m else None


LEAGUE_STRATEGIES: List[Tuple[str, Strategy]] = [
    ("text", _league_from_text),
]


# ---------------------------------------------------------------------------
# Points
# ---------------------------------------------------------------------------

_POINTS_TEXT_RE = re.compile(r"(\d[\d,]*)\s*(?:points|pts)\b", re.I)
# e.g. <strong>1,250</strong> points  /  <span class="x">40</span>&nbsp;points
_POINTS_MARKUP_RE = re.compile(
    r">\s*(\d[\d,]*)\s*</(?:strong|b|em|span|div)>\s*(?:&nbsp;|\s)*(?:points|pts)\b", re.I
)


def _points_from_text(page: Page) -> Optional[int]:
    m = _POINTS_TEXT_RE.search(page.text)
    return as_count(m.group(1)) if m else None


def _points_from_markup(page: Page) -> Optional[int]:
    m = _POINTS_MARKUP_RE.search(page.raw)
    return as_count(m.group(1)) if m else None


POINTS_STRATEGIES: List[Tuple[str, Strategy]] = [
    ("text", _points_from_text),
    ("markup", _points_from_markup),
]


# ---------------------------------------------------------------------------
# Badges
# ---------------------------------------------------------------------------

# Literal forms as they appear in served markup, before entity decoding
NO_BADGE_PHRASES = (
    "hasn't earned any badges yet",
    "hasn’t earned any badges yet",
    "hasn&#39;t earned any badges yet",
    "hasn&#039;t earned any badges yet",
    "hasn&#x27;t earned any badges yet",
    "hasn&apos;t earned any badges yet",
    "hasn&rsquo;t earned any badges yet",
    "no badges earned",
)
_NO_BADGE_RE = re.compile(r"has(?:n['’]t|\s+not)\s+earned\s+any\s+badges", re.I)

_MONTHS = "Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Sept|Oct|Nov|Dec"
_EARNED_DATE_RE = re.compile(r"\bEarned\s+(?:" + _MONTHS + r")[a-z]*\.?\s+\d{1,2},?\s+\d{4}")
_BADGE_CARD_CLASS_RE = re.compile(r"badge-card|ql-badge|badge-tile", re.I)

# League → (divisor, floor).  Placeholder heuristic with no known derivation.
BADGE_ESTIMATE = {
    "Bronze": (100, 0),
    "Silver": (90, 1),
    "Gold": (80, 3),
    "Platinum": (70, 6),
    "Diamond": (60, 10),
}


def has_no_badges_message(raw: str) -> bool:
    lowered = raw.lower()
    if any(phrase in lowered for phrase in NO_BADGE_PHRASES):
        return True
    return bool(_NO_BADGE_RE.search(html.unescape(raw)))


def _badges_none_earned(page: Page) -> Optional[int]:
    return 0 if has_no_badges_message(page.raw) else None


def _badges_from_containers(page: Page) -> Optional[int]:
    count = len(page.soup.select(".profile-badge"))
    return count or None


def _badges_from_earned_dates(page: Page) -> Optional[int]:
    count = len(_EARNED_DATE_RE.findall(page.text))
    return count or None


def _badges_from_cards(page: Page) -> Optional[int]:
    cards = page.soup.find_all(class_=_BADGE_CARD_CLASS_RE)
    return len(cards) or None


def _badges_from_images(page: Page) -> Optional[int]:
    return len(page.soup.select('img[src*="/badges/"]')) or None


def estimate_badges(league: str, points: int) -> int:
    divisor, floor = BADGE_ESTIMATE.get(league, BADGE_ESTIMATE[DEFAULT_LEAGUE])
    return max(floor, as_count(points) // divisor)


BADGE_STRATEGIES: List[Tuple[str, Strategy]] = [
    ("no-badges", _badges_none_earned),
    ("badge-containers", _badges_from_containers),
    ("earned-dates", _badges_from_earned_dates),
    ("badge-cards", _badges_from_cards),
    ("badge-images", _badges_from_images),
]


# ---------------------------------------------------------------------------
# Labs / member since
# ---------------------------------------------------------------------------

_LABS_RE = re.compile(r"(\d[\d,]*)\s+(?:labs?|quests?)\s+completed", re.I)
_MEMBER_SINCE_RE = re.compile(r"Member since\s+(\d{4})", re.I)


def _labs_from_text(page: Page) -> Optional[int]:
    m = _LABS_RE.search(page.text)
    return as_count(m.group(1)) if m else None


def _member_since_from_text(page: Page) -> Optional[str]:
    m = _MEMBER_SINCE_RE.search(page.text)
    return m.group(1) if m else None


LABS_STRATEGIES: List[Tuple[str, Strategy]] = [("text", _labs_from_text)]
MEMBER_SINCE_STRATEGIES: List[Tuple[str, Strategy]] = [("text", _member_since_from_text)]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def build_metrics(
    name: str = UNKNOWN_NAME,
    league: str = DEFAULT_LEAGUE,
    points: int = 0,
    badges: int = 0,
    labs: int = 0,
    member_since: Optional[str] = None,
    badge_strategy: str = "default",
    defaults_used: Tuple[str, ...] = (),
) -> ProfileMetrics:
    """Assemble metrics and fill in the derived fields (tier, score, avatar)."""

    points, badges, labs = as_count(points), as_count(badges), as_count(labs)
    return ProfileMetrics(
        name=name,
        league=league,
        points=points,
        badges_earned=badges,
        labs_completed=labs,
        member_since=member_since or str(date.today().year),
        tier=derive_tier(badges, points, league),
        ranking_score=ranking_score(badges, points, labs),
        avatar=avatar_for(name),
        badge_strategy=badge_strategy,
        defaults_used=defaults_used,
    )


def default_metrics() -> ProfileMetrics:
    return build_metrics(
        badge_strategy="default",
        defaults_used=("name", "league", "points", "badges", "labs", "member_since"),
    )


def parse_profile(raw_markup: str) -> ProfileMetrics:
    """Extract profile metrics from *raw_markup*; never raises."""

    try:
        return _parse(raw_markup or "")
    except Exception:  # noqa: BLE001
        logger.exception("Profile parsing failed; using defaults")
        return default_metrics()


def _parse(raw: str) -> ProfileMetrics:
    page = Page.from_markup(raw)
    defaults: List[str] = []

    def extract(field: str, strategies, fallback):
        value, _ = _first_match(page, strategies)
        if value is None:
            defaults.append(field)
            return fallback
        return value

    name = extract("name", NAME_STRATEGIES, UNKNOWN_NAME)
    league = extract("league", LEAGUE_STRATEGIES, DEFAULT_LEAGUE)
    points = extract("points", POINTS_STRATEGIES, 0)
    labs = extract("labs", LABS_STRATEGIES, 0)
    member_since = extract("member_since", MEMBER_SINCE_STRATEGIES, None)

    badges, badge_strategy = _first_match(page, BADGE_STRATEGIES)
    if badges is None and points > 0:
        badges, badge_strategy = estimate_badges(league, points), "estimate"
    elif badges is None:
        badges, badge_strategy = 0, "default"
        defaults.append("badges")

    metrics = build_metrics(
        name=name,
        league=league,
        points=points,
        badges=badges,
        labs=labs,
        member_since=member_since,
        badge_strategy=badge_strategy,
        defaults_used=tuple(defaults),
    )

    if metrics.needs_review:
        logger.warning(
            "Low-confidence parse for %r (badges via %s, defaults: %s)",
            metrics.name, badge_strategy, ", ".join(defaults) or "none",
        )
    elif defaults:
        logger.debug("Profile %r parsed with defaults for %s", metrics.name, ", ".join(defaults))
    return metrics


__all__ = [
    "NAME_STRATEGIES",
    "LEAGUE_STRATEGIES",
    "POINTS_STRATEGIES",
    "BADGE_STRATEGIES",
    "LABS_STRATEGIES",
    "MEMBER_SINCE_STRATEGIES",
    "NO_BADGE_PHRASES",
    "has_no_badges_message",
    "estimate_badges",
    "build_metrics",
    "default_metrics",
    "parse_profile",
]
