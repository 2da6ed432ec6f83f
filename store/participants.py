"""Participant store adapter.

Wraps a :class:`~store.collection.JsonCollection` with the leaderboard's
record semantics: profile-id based lookups, coercion on every read and
write, progress history on re-submission, a live ranked feed and the
maintenance passes that remove duplicate records.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

import settings
from etl import entity_resolution
from etl.errors import StoreError, ValidationError
from etl.models import (
    Participant,
    ProfileMetrics,
    ProgressEntry,
    ProgressInfo,
    RankedParticipant,
    as_count,
    avatar_for,
    UNKNOWN_NAME,
    utcnow,
)
from etl.ranking import leaderboard_stats, legacy_order, rank
from etl.scoring import derive_tier, ranking_score
from ingest.urls import extract_profile_id, same_profile
from store.collection import JsonCollection, Snapshot

logger = logging.getLogger(__name__)

RankedCallback = Callable[[List[RankedParticipant]], None]


class ParticipantStore:
    """Leaderboard participants keyed by an opaque document id."""

    def __init__(
        self,
        collection: Union[JsonCollection, str, Path, None] = None,
        history_limit: Optional[int] = None,
        clock: Callable = utcnow,
    ):
        if collection is None:
            collection = settings.STORE_PATH
        if not isinstance(collection, JsonCollection):
            collection = JsonCollection(collection)
        self.collection = collection
        self.history_limit = settings.HISTORY_LIMIT if history_limit is None else history_limit
        self._clock = clock

    @staticmethod
    def _from_snapshot(snapshot: Snapshot) -> List[Participant]:
        return [Participant.from_record(doc, doc_id) for doc_id, doc in snapshot.items()]

    def participants(self) -> List[Participant]:
        """All participants in storage order."""

        return self._from_snapshot(self.collection.all())

    def all(self) -> List[Participant]:
        """All participants ordered by badges, labs, then name."""

        return legacy_order(self.participants())

    def get(self, participant_id: str) -> Optional[Participant]:
        doc = self.collection.get(participant_id)
        return Participant.from_record(doc, participant_id) if doc is not None else None

    def transaction(self):
        return self.collection.transaction()

    # -- identity ------------------------------------------------------------

    def _matches(self, profile_url: str) -> List[Participant]:
        return [p for p in self.participants() if same_profile(profile_url, p.profile_url)]

    def exists(self, profile_url: str) -> bool:
        return bool(self._matches(profile_url))

    def get_existing(self, profile_url: str) -> Optional[Participant]:
        """Return the stored record for *profile_url*'s profile id (newest if duplicated)."""

        matches = self._matches(profile_url)
        if not matches:
            return None
        if len(matches) > 1:
            logger.warning(
                "Profile %s is stored %d times; run cleanup", extract_profile_id(profile_url), len(matches)
            )
        return entity_resolution.newest_first(matches)[0]

    # -- writes --------------------------------------------------------------

    def insert(self, metrics: ProfileMetrics, profile_url: Optional[str] = None) -> str:
        """Store a new participant built from *metrics*; returns its id."""

        profile_url = (profile_url or metrics.profile_url or "").strip()
        name = (metrics.name or "").strip()
        if not name:
            raise ValidationError("Participant name is required")
        if not profile_url:
            raise ValidationError("Participant profile URL is required")

        badges = as_count(metrics.badges_earned)
        points = as_count(metrics.points)
        labs = as_count(metrics.labs_completed)
        now = self._clock()
        participant = Participant(
            id=None,
            name=name,
            profile_url=profile_url,
            league=metrics.league,
            points=points,
            badges_earned=badges,
            labs_completed=labs,
            tier=derive_tier(badges, points, metrics.league),
            ranking_score=ranking_score(badges, points, labs),
            member_since=metrics.member_since,
            avatar=metrics.avatar or avatar_for(name),
            created_at=now,
            updated_at=now,
            needs_review=metrics.needs_review,
        )
        doc_id = self.collection.add(participant.to_record())
        logger.info("Participant added with ID %s (%s)", doc_id, name)
        return doc_id

    def update_progress(self, existing: Participant, fresh: ProfileMetrics) -> Tuple[Participant, ProgressInfo]:
        """Merge *fresh* metrics into *existing*, recording history when there was progress."""

        if not existing.id:
            raise ValidationError("Cannot update a participant without an id")

        badges = as_count(fresh.badges_earned)
        points = as_count(fresh.points)
        labs = as_count(fresh.labs_completed)
        progress = ProgressInfo(
            badge_progress=badges - as_count(existing.badges_earned),
            point_progress=points - as_count(existing.points),
            lab_progress=labs - as_count(existing.labs_completed),
        )

        now = self._clock()
        history = list(existing.progress_history)
        if progress.has_progress:
            history.append(
                ProgressEntry(
                    date=now.isoformat(),
                    badge_progress=progress.badge_progress,
                    point_progress=progress.point_progress,
                    lab_progress=progress.lab_progress,
                    total_badges=badges,
                    total_points=points,
                    total_labs=labs,
                )
            )
            history = history[-self.history_limit:] if self.history_limit > 0 else []

        # A failed name scrape must not erase a known name
        name = fresh.name if fresh.name and fresh.name != UNKNOWN_NAME else existing.name
        merged = replace(
            existing,
            name=name,
            league=fresh.league,
            points=points,
            badges_earned=badges,
            labs_completed=labs,
            tier=derive_tier(badges, points, fresh.league),
            ranking_score=ranking_score(badges, points, labs),
            member_since=fresh.member_since or existing.member_since,
            avatar=avatar_for(name),
            updated_at=now,
            progress_history=history,
            needs_review=fresh.needs_review,
        )
        record = merged.to_record()
        record.pop("createdAt")
        record.pop("profileUrl")
        self.collection.update(existing.id, record)

        if progress.has_progress:
            logger.info(
                "%s progressed: badges %+d, points %+d, labs %+d",
                name, progress.badge_progress, progress.point_progress, progress.lab_progress,
            )
        return merged, progress

    def delete(self, participant_id: str) -> None:
        self.collection.delete(participant_id)
        logger.info("Participant deleted: %s", participant_id)

    # -- live feed -----------------------------------------------------------

    def subscribe(self, callback: RankedCallback) -> Callable[[], None]:
        """Deliver the full ranked leaderboard now and after every change.

        A snapshot that cannot be read or ranked is logged and delivered as an
        empty list; the subscription stays active.  Returns ``unsubscribe``.
        """

        def deliver(snapshot: Optional[Snapshot]) -> None:
            try:
                if snapshot is None:
                    raise StoreError("Leaderboard snapshot unavailable")
                ranked = rank(self._from_snapshot(snapshot))
            except Exception:  # noqa: BLE001
                logger.exception("Error in leaderboard subscription")
                ranked = []
            callback(ranked)

        unsubscribe = self.collection.listen(deliver)
        try:
            initial: Optional[Snapshot] = self.collection.all()
        except StoreError:
            initial = None
        deliver(initial)
        return unsubscribe

    # -- maintenance ---------------------------------------------------------

    def _apply(self, plan, label: str) -> int:
        removed = 0
        for keep, duplicates in plan:
            logger.info("Keeping %s (%s) over %d duplicate(s)", keep.name, keep.id, len(duplicates))
            for dup in duplicates:
                try:
                    self.delete(dup.id)
                    removed += 1
                except StoreError as exc:
                    logger.error("Failed to remove %s duplicate %s: %s", label, dup.id, exc)
        return removed

    def cleanup_duplicates(self) -> int:
        """Delete all but the most recently created record of every profile id."""

        plan = entity_resolution.profile_id_duplicates(self.participants())
        removed = self._apply(plan, "profile-id")
        logger.info("Duplicate cleanup removed %d record(s)", removed)
        return removed

    def remove_name_duplicates(self) -> int:
        """Delete exact display-name duplicates, keeping the strongest record."""

        plan = entity_resolution.exact_name_duplicates(self.participants())
        removed = self._apply(plan, "name")
        logger.info("Name duplicate removal removed %d record(s)", removed)
        return removed

    def review_name_duplicates(self, threshold: Optional[int] = None) -> List[List[Participant]]:
        threshold = settings.NAME_MATCH_THRESHOLD if threshold is None else threshold
        return entity_resolution.similar_name_groups(self.participants(), threshold)

    def stats(self) -> Dict[str, object]:
        return leaderboard_stats(self.participants())


__all__ = ["ParticipantStore"]
