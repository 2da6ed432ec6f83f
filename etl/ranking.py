"""Ranking engine: orders participants and assigns leaderboard places.

Sorting is lexicographic on the raw fields (badges, points, labs, earliest
join, name) rather than on the composite ``rankingScore``, so one extra badge
always beats any amount of points.  Every call re-derives the tier from the
metrics; stored tiers are never trusted.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List

from etl.models import Participant, RankedParticipant, as_count
from etl.scoring import TIERS, derive_tier, ranking_score

_LATEST = datetime.max.replace(tzinfo=timezone.utc)


def normalise(participant: Participant) -> Participant:
    """Return *participant* with coerced counts and re-derived tier and score."""

    badges = as_count(participant.badges_earned)
    points = as_count(participant.points)
    labs = as_count(participant.labs_completed)
    return replace(
        participant,
        badges_earned=badges,
        points=points,
        labs_completed=labs,
        tier=derive_tier(badges, points, participant.league),
        ranking_score=ranking_score(badges, points, labs),
    )


def _sort_key(p: Participant):
    return (
        -p.badges_earned,
        -p.points,
        -p.labs_completed,
        # Participants without a creation time go after those with one
        p.created_at is None,
        p.created_at or _LATEST,
        (p.name or "").casefold(),
        p.name or "",
        p.id or "",
    )


def rank(participants: Iterable[Participant]) -> List[RankedParticipant]:
    """Return *participants* ordered best-first with dense 1-based places."""

    ordered = sorted((normalise(p) for p in participants), key=_sort_key)
    return [RankedParticipant(place=i + 1, participant=p) for i, p in enumerate(ordered)]


def legacy_order(participants: Iterable[Participant]) -> List[Participant]:
    """Order used for plain (non-live) reads: badges desc, labs desc, name asc."""

    return sorted(
        participants,
        key=lambda p: (-as_count(p.badges_earned), -as_count(p.labs_completed), p.name or ""),
    )


def leaderboard_stats(participants: Iterable[Participant]) -> Dict[str, object]:
    """Totals and tier distribution over *participants* (tiers re-derived)."""

    normalised = [normalise(p) for p in participants]
    tiers = Counter(p.tier for p in normalised)
    return {
        "totalParticipants": len(normalised),
        "totalBadges": sum(p.badges_earned for p in normalised),
        "totalLabs": sum(p.labs_completed for p in normalised),
        "totalPoints": sum(p.points for p in normalised),
        "tierDistribution": {tier: tiers.get(tier, 0) for tier in reversed(TIERS)},
    }


__all__ = ["normalise", "rank", "legacy_order", "leaderboard_stats"]
