"""Entity resolution module: finds participant records that describe the same person.

Current data quirks
-------------------
• **Profile id** – the only reliable identity.  The platform changed domain
  mid-competition, and early submissions were matched on the literal URL, so
  one profile id can appear under several URL strings.
• **Display names** – scraped from the page title; users rename themselves,
  and failed scrapes come back as ``"Unknown User"``.

So when merging we rely on:
1. **Profile id match** – safe to delete automatically (keep the newest record).
2. **Exact name match** – the older maintenance pass; keeps the strongest record.
3. **Fuzzy name match** using RapidFuzz – reported for manual review only.
"""

from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, List, Tuple

from rapidfuzz import fuzz

from etl.models import UNKNOWN_NAME, Participant, as_count
from ingest.urls import extract_profile_id

_EARLIEST = datetime.min.replace(tzinfo=timezone.utc)


def _is_duplicate(name1: str, name2: str, threshold: int = 88) -> bool:
    """Return True if two names are similar enough to be considered duplicates."""

    if name1.lower() == name2.lower():
        return True
    return fuzz.token_sort_ratio(name1, name2) >= threshold


def group_by_profile_id(participants: List[Participant]) -> Dict[str, List[Participant]]:
    """Bucket *participants* by the profile id in their URL (records without one are skipped)."""

    groups: Dict[str, List[Participant]] = defaultdict(list)
    for p in participants:
        profile_id = extract_profile_id(p.profile_url)
        if profile_id:
            groups[profile_id].append(p)
    return dict(groups)


def newest_first(group: List[Participant]) -> List[Participant]:
    return sorted(group, key=lambda p: p.created_at or _EARLIEST, reverse=True)


def profile_id_duplicates(participants: List[Participant]) -> List[Tuple[Participant, List[Participant]]]:
    """Return ``(keep, remove)`` pairs: the most recently created record survives."""

    plan = []
    for group in group_by_profile_id(participants).values():
        if len(group) > 1:
            ordered = newest_first(group)
            plan.append((ordered[0], ordered[1:]))
    return plan


def _strength(p: Participant) -> int:
    return as_count(p.points) + as_count(p.badges_earned) * 10


def exact_name_duplicates(participants: List[Participant]) -> List[Tuple[Participant, List[Participant]]]:
    """Return ``(keep, remove)`` pairs for records sharing an exact display name.

    Named duplicates keep the record with the highest ``points + badges * 10``.
    ``Unknown User`` records are only duplicates of each other when their
    badges and points also match; the first one is kept.
    """

    named: Dict[str, List[Participant]] = defaultdict(list)
    unknown: Dict[Tuple[int, int], List[Participant]] = defaultdict(list)
    for p in participants:
        name = (p.name or "").strip()
        if name.lower() == UNKNOWN_NAME.lower() or not name:
            unknown[(as_count(p.badges_earned), as_count(p.points))].append(p)
        else:
            named[name].append(p)

    plan = []
    for group in unknown.values():
        if len(group) > 1:
            plan.append((group[0], group[1:]))
    for group in named.values():
        if len(group) > 1:
            best = group[0]
            for p in group:
                if _strength(p) > _strength(best):
                    best = p
            plan.append((best, [p for p in group if p is not best]))
    return plan


def similar_name_groups(participants: List[Participant], threshold: int = 92) -> List[List[Participant]]:
    """Group participants whose names look alike but whose profile ids differ.

    Unknown-name records are ignored.  Nothing here deletes anything.
    """

    groups: List[List[Participant]] = []
    for p in participants:
        if not p.name or p.name == UNKNOWN_NAME:
            continue
        for group in groups:
            if _is_duplicate(p.name, group[0].name, threshold):
                group.append(p)
                break
        else:
            groups.append([p])

    suspicious = []
    for group in groups:
        ids = {extract_profile_id(p.profile_url) for p in group}
        if len(group) > 1 and len(ids) > 1:
            suspicious.append(group)
    return suspicious


__all__ = [
    "group_by_profile_id",
    "newest_first",
    "profile_id_duplicates",
    "exact_name_duplicates",
    "similar_name_groups",
]
