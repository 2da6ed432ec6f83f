"""Typed records passed between the parser, the store and the ranking engine.

Persisted records use the camelCase keys of the original document store::

    name, league, points, badgesEarned, labsCompleted, tier, rankingScore,
    memberSince, avatar, profileUrl, createdAt, updatedAt, progressHistory[]

Numbers are coerced with :func:`as_count` whenever a record crosses a
boundary (parser output, store read, store write) so a stray string or
``None`` never reaches the ranking code.
"""

from __future__ import annotations

import hashlib
import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

UNKNOWN_NAME = "Unknown User"
DEFAULT_LEAGUE = "Bronze"
AVATAR_COUNT = 12


def as_count(value: Any) -> int:
    """Coerce *value* to a non-negative int (anything unusable becomes 0)."""

    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, str):
        value = value.strip().replace(",", "")
        if not value:
            return 0
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return 0
    if math.isnan(number) or math.isinf(number):
        return 0
    return max(0, int(number))


def avatar_for(name: str) -> str:
    """Return a stable avatar path derived from *name*."""

    digest = hashlib.md5((name or UNKNOWN_NAME).encode("utf-8")).hexdigest()
    return f"/gaming-avatar-{int(digest, 16) % AVATAR_COUNT + 1}.png"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not value or not isinstance(value, str):
        return None
    try:
        ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class ProfileMetrics:
    """Structured metrics scraped from one public profile page."""

    name: str = UNKNOWN_NAME
    league: str = DEFAULT_LEAGUE
    points: int = 0
    badges_earned: int = 0
    labs_completed: int = 0
    member_since: str = ""
    tier: str = "Newcomer"
    ranking_score: int = 0
    avatar: str = ""
    profile_url: Optional[str] = None
    # Diagnostics, not persisted
    badge_strategy: str = "default"
    defaults_used: Tuple[str, ...] = ()

    @property
    def needs_review(self) -> bool:
        return self.badge_strategy == "estimate" or "name" in self.defaults_used

    def with_url(self, profile_url: str) -> "ProfileMetrics":
        return replace(self, profile_url=profile_url)


@dataclass(frozen=True)
class ProgressEntry:
    date: str
    badge_progress: int
    point_progress: int
    lab_progress: int
    total_badges: int
    total_points: int
    total_labs: int

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "ProgressEntry":
        # Deltas may legitimately be negative, so they are not clamped like totals.
        def delta(key: str) -> int:
            try:
                return int(float(record.get(key) or 0))
            except (TypeError, ValueError):
                return 0

        return cls(
            date=str(record.get("date") or ""),
            badge_progress=delta("badgeProgress"),
            point_progress=delta("pointProgress"),
            lab_progress=delta("labProgress"),
            total_badges=as_count(record.get("totalBadges")),
            total_points=as_count(record.get("totalPoints")),
            total_labs=as_count(record.get("totalLabs")),
        )

    def to_record(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "badgeProgress": self.badge_progress,
            "pointProgress": self.point_progress,
            "labProgress": self.lab_progress,
            "totalBadges": self.total_badges,
            "totalPoints": self.total_points,
            "totalLabs": self.total_labs,
        }


@dataclass(frozen=True)
class ProgressInfo:
    badge_progress: int = 0
    point_progress: int = 0
    lab_progress: int = 0

    @property
    def has_progress(self) -> bool:
        return self.badge_progress > 0 or self.point_progress > 0 or self.lab_progress > 0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "badgeProgress": self.badge_progress,
            "pointProgress": self.point_progress,
            "labProgress": self.lab_progress,
            "hasProgress": self.has_progress,
        }


@dataclass(frozen=True)
class Participant:
    """A stored leaderboard participant."""

    id: Optional[str]
    name: str
    profile_url: str
    league: str = DEFAULT_LEAGUE
    points: int = 0
    badges_earned: int = 0
    labs_completed: int = 0
    tier: str = "Newcomer"
    ranking_score: int = 0
    member_since: str = ""
    avatar: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    progress_history: List[ProgressEntry] = field(default_factory=list)
    needs_review: bool = False

    @classmethod
    def from_record(cls, record: Dict[str, Any], doc_id: Optional[str] = None) -> "Participant":
        name = str(record.get("name") or "").strip() or UNKNOWN_NAME
        history = record.get("progressHistory") or []
        return cls(
            id=doc_id if doc_id is not None else record.get("id"),
            name=name,
            profile_url=str(record.get("profileUrl") or "").strip(),
            league=str(record.get("league") or DEFAULT_LEAGUE),
            points=as_count(record.get("points")),
            badges_earned=as_count(record.get("badgesEarned")),
            labs_completed=as_count(record.get("labsCompleted")),
            tier=str(record.get("tier") or "Newcomer"),
            ranking_score=as_count(record.get("rankingScore")),
            member_since=str(record.get("memberSince") or ""),
            avatar=str(record.get("avatar") or avatar_for(name)),
            created_at=parse_timestamp(record.get("createdAt")),
            updated_at=parse_timestamp(record.get("updatedAt")),
            progress_history=[
                ProgressEntry.from_record(h) for h in history if isinstance(h, dict)
            ],
            needs_review=bool(record.get("needsReview", False)),
        )

    def to_record(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "league": self.league,
            "points": as_count(self.points),
            "badgesEarned": as_count(self.badges_earned),
            "labsCompleted": as_count(self.labs_completed),
            "tier": self.tier,
            "rankingScore": as_count(self.ranking_score),
            "memberSince": self.member_since,
            "avatar": self.avatar,
            "profileUrl": self.profile_url,
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
            "progressHistory": [h.to_record() for h in self.progress_history],
            "needsReview": self.needs_review,
        }


@dataclass(frozen=True)
class RankedParticipant:
    place: int
    participant: Participant

    def to_record(self) -> Dict[str, Any]:
        record = self.participant.to_record()
        record["id"] = self.participant.id
        record["place"] = self.place
        return record


__all__ = [
    "UNKNOWN_NAME",
    "DEFAULT_LEAGUE",
    "as_count",
    "avatar_for",
    "utcnow",
    "parse_timestamp",
    "ProfileMetrics",
    "ProgressEntry",
    "ProgressInfo",
    "Participant",
    "RankedParticipant",
]
