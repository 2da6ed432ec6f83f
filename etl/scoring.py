"""Scoring module: derives the leaderboard tier and ranking score of a profile.

Tier rules
==========
The tier is recomputed from scratch everywhere it is shown, because the
rules changed several times during the competition and a tier stored on an
older record may be stale.  Three rules run in a fixed order and each one can
only raise the tier produced by the previous one:

1. **Badges** ``>=15`` Cloud Pro, ``>=8`` Cloud Explorer, ``>=3`` Cloud
   Beginner, anything less Newcomer.

2. **League** Diamond forces Cloud Pro.  Gold and Platinum lift anything below
   Cloud Explorer to Cloud Explorer, Silver lifts a Newcomer to Cloud Beginner.

3. **Points** ``>=1000`` Cloud Pro, ``>=500`` lifts Newcomer or Cloud
   Beginner to Cloud Explorer, ``>=150`` lifts a Newcomer to Cloud Beginner.

Ranking score
=============
``badges * 1000 + points * 10 + labs``.  Kept for display; the leaderboard
itself sorts field by field (see ``etl.ranking``).
"""

from typing import Tuple

from etl.models import as_count

NEWCOMER = "Newcomer"
CLOUD_BEGINNER = "Cloud Beginner"
CLOUD_EXPLORER = "Cloud Explorer"
CLOUD_PRO = "Cloud Pro"

# Lowest to highest
TIERS = (NEWCOMER, CLOUD_BEGINNER, CLOUD_EXPLORER, CLOUD_PRO)

LEAGUES = ("Bronze", "Silver", "Gold", "Platinum", "Diamond")


def _raise_to(current: str, target: str) -> str:
    return max(current, target, key=TIERS.index)


def tier_with_reason(badges: int, points: int = 0, league: str = "Bronze") -> Tuple[str, str]:
    """Return the tier for the given metrics and a short explanation."""

    badges = as_count(badges)
    points = as_count(points)
    league = (league or "").strip().title()

    if badges >= 15:
        tier = CLOUD_PRO
    elif badges >= 8:
        tier = CLOUD_EXPLORER
    elif badges >= 3:
        tier = CLOUD_BEGINNER
    else:
        tier = NEWCOMER
    reasons = [f"{badges} badges → {tier}"]

    before = tier
    if league == "Diamond":
        tier = CLOUD_PRO
    elif league in ("Gold", "Platinum"):
        tier = _raise_to(tier, CLOUD_EXPLORER)
    elif league == "Silver":
        tier = _raise_to(tier, CLOUD_BEGINNER)
    if tier != before:
        reasons.append(f"{league} League → {tier}")

    before = tier
    if points >= 1000:
        tier = CLOUD_PRO
    elif points >= 500:
        tier = _raise_to(tier, CLOUD_EXPLORER)
    elif points >= 150:
        tier = _raise_to(tier, CLOUD_BEGINNER)
    if tier != before:
        reasons.append(f"{points} points → {tier}")

    return tier, "; ".join(reasons)


def derive_tier(badges: int, points: int = 0, league: str = "Bronze") -> str:
    return tier_with_reason(badges, points, league)[0]


def ranking_score(badges: int, points: int = 0, labs: int = 0) -> int:
    return as_count(badges) * 1000 + as_count(points) * 10 + as_count(labs)


__all__ = [
    "TIERS",
    "LEAGUES",
    "NEWCOMER",
    "CLOUD_BEGINNER",
    "CLOUD_EXPLORER",
    "CLOUD_PRO",
    "tier_with_reason",
    "derive_tier",
    "ranking_score",
]
