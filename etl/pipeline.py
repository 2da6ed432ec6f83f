"""Submission and refresh orchestration.

One submission walks a small state machine::

    idle → validating-url → fetching → parsing → dedup-check → inserting | updating → done

and lands in ``failed`` from whichever step raised.  The URL is validated
before any network traffic.  Fetch failures and timeouts are retried with a
linear backoff; validation and store errors are not.

A refresh (``BatchUpdater``) pushes every stored participant through the same
fetch → parse → update steps, a few at a time, and never lets one
participant's failure stop the run.  The updater owns its ``BatchStatus``; a
second trigger while a run is in progress only reports progress.
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from tqdm import tqdm

import settings
from etl.errors import (
    DuplicateSubmission,
    FetchError,
    LeaderboardError,
    ProfileTimeoutError,
    StoreError,
    ValidationError,
)
from etl.models import Participant, ProfileMetrics, ProgressInfo, as_count, utcnow
from etl.parser import parse_profile
from etl.scoring import derive_tier
from ingest.profile import fetch_profile_html
from ingest.roster import RosterEntry
from ingest.urls import validate_profile_url
from store.participants import ParticipantStore

logger = logging.getLogger(__name__)

Fetcher = Callable[[str], str]


class SubmissionStage(str, enum.Enum):
    IDLE = "idle"
    VALIDATING_URL = "validating-url"
    FETCHING = "fetching"
    PARSING = "parsing"
    DEDUP_CHECK = "dedup-check"
    INSERTING = "inserting"
    UPDATING = "updating"
    DONE = "done"
    FAILED = "failed"


@dataclass
class SubmissionResult:
    participant_id: str
    participant: Optional[Participant]
    metrics: ProfileMetrics
    created: bool
    progress: ProgressInfo = field(default_factory=ProgressInfo)

    @property
    def welcome_back(self) -> bool:
        """True when the profile was already on the leaderboard."""
        return not self.created


def fetch_with_retry(
    fetcher: Fetcher,
    url: str,
    retries: int,
    backoff: float,
    timeout: Optional[float] = None,
    pool: Optional[ThreadPoolExecutor] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> str:
    """Call ``fetcher(url)`` up to *retries* times, waiting ``backoff * attempt`` between tries.

    With a *pool* and *timeout*, each attempt races against a timer; losing
    the race counts as a ``ProfileTimeoutError``.  Non-fetch errors propagate
    immediately.
    """

    attempts = max(1, retries)
    for attempt in range(1, attempts + 1):
        try:
            if pool is not None and timeout is not None:
                future = pool.submit(fetcher, url)
                try:
                    return future.result(timeout=timeout)
                except FutureTimeout as exc:
                    future.cancel()
                    raise ProfileTimeoutError(f"Request timeout after {timeout}s for {url}") from exc
            return fetcher(url)
        except FetchError as exc:
            logger.warning("Attempt %d/%d failed for %s: %s", attempt, attempts, url, exc)
            if attempt >= attempts:
                raise
            sleep(backoff * attempt)


class ProfileSubmission:
    """One user-triggered submission of a profile URL."""

    def __init__(
        self,
        url: str,
        store: ParticipantStore,
        fetcher: Optional[Fetcher] = None,
        retries: Optional[int] = None,
        backoff: Optional[float] = None,
        allow_update: bool = True,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.url = url
        self.store = store
        self.fetcher = fetcher or fetch_profile_html
        self.retries = settings.MAX_RETRIES if retries is None else retries
        self.backoff = settings.RETRY_BACKOFF if backoff is None else backoff
        self.allow_update = allow_update
        self._sleep = sleep
        self.stage = SubmissionStage.IDLE
        self.stages: List[SubmissionStage] = [self.stage]
        self.error: Optional[Exception] = None

    def _enter(self, stage: SubmissionStage) -> None:
        self.stage = stage
        self.stages.append(stage)
        logger.debug("Submission %s → %s", self.url, stage.value)

    def run(self) -> SubmissionResult:
        try:
            return self._run()
        except Exception as exc:
            self.error = exc
            self._enter(SubmissionStage.FAILED)
            raise

    def _run(self) -> SubmissionResult:
        self._enter(SubmissionStage.VALIDATING_URL)
        url = validate_profile_url(self.url)

        self._enter(SubmissionStage.FETCHING)
        markup = fetch_with_retry(self.fetcher, url, self.retries, self.backoff, sleep=self._sleep)

        self._enter(SubmissionStage.PARSING)
        metrics = parse_profile(markup).with_url(url)

        self._enter(SubmissionStage.DEDUP_CHECK)
        with self.store.transaction():
            existing = self.store.get_existing(url)
            if existing is None:
                self._enter(SubmissionStage.INSERTING)
                doc_id = self.store.insert(metrics, url)
                result = SubmissionResult(doc_id, self.store.get(doc_id), metrics, created=True)
            else:
                if not self.allow_update:
                    raise DuplicateSubmission(
                        f"{existing.name} has already been submitted", participant_id=existing.id
                    )
                self._enter(SubmissionStage.UPDATING)
                merged, progress = self.store.update_progress(existing, metrics)
                result = SubmissionResult(existing.id, merged, metrics, created=False, progress=progress)

        self._enter(SubmissionStage.DONE)
        return result


def submit_profile(url: str, store: ParticipantStore, **kwargs) -> SubmissionResult:
    """Validate, fetch, parse and insert-or-update the profile at *url*."""

    return ProfileSubmission(url, store, **kwargs).run()


# ---------------------------------------------------------------------------
# Roster import
# ---------------------------------------------------------------------------

@dataclass
class ImportReport:
    added: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failures: List[Dict[str, object]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.added) + len(self.skipped) + len(self.failures)

    def as_dict(self) -> Dict[str, object]:
        return {
            "total": self.total,
            "added": len(self.added),
            "skipped": len(self.skipped),
            "failed": len(self.failures),
            "failures": list(self.failures),
        }


def import_roster(
    entries: List[RosterEntry],
    store: ParticipantStore,
    fetcher: Optional[Fetcher] = None,
    pause: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep,
    progress_bar: bool = False,
    **kwargs,
) -> ImportReport:
    """Submit every roster entry, one at a time, never stopping on a failed row.

    Profiles already on the leaderboard are skipped rather than updated.
    Remaining keyword arguments go to ``ProfileSubmission``.
    """
    pause = settings.IMPORT_PAUSE if pause is None else pause
    report = ImportReport()

    for index, entry in enumerate(tqdm(entries, desc="Importing roster", unit="profile", disable=not progress_bar)):
        try:
            result = submit_profile(
                entry.profile_url, store, fetcher=fetcher, allow_update=False, sleep=sleep, **kwargs
            )
            report.added.append(result.participant_id)
            logger.info("Line %d: added %s", entry.line, result.metrics.name)
        except DuplicateSubmission:
            report.skipped.append(entry.profile_url)
            logger.info("Line %d: %s already on the leaderboard, skipped", entry.line, entry.name)
        except LeaderboardError as exc:
            report.failures.append({"line": entry.line, "participant": entry.name, "error": str(exc)})
            logger.error("Line %d: failed to import %s: %s", entry.line, entry.name, exc)

        if pause > 0 and index < len(entries) - 1:
            sleep(pause)

    logger.info(
        "Roster import: %d added, %d skipped, %d failed",
        len(report.added), len(report.skipped), len(report.failures),
    )
    return report


# ---------------------------------------------------------------------------
# Batch refresh
# ---------------------------------------------------------------------------

@dataclass
class BatchStatus:
    is_running: bool = False
    total_participants: int = 0
    completed: int = 0
    errors: int = 0
    duplicates_removed: int = 0
    start_time: Optional[str] = None
    last_update: Optional[str] = None
    failures: List[Dict[str, str]] = field(default_factory=list)

    def progress(self) -> Dict[str, object]:
        return {
            "total": self.total_participants,
            "completed": self.completed,
            "errors": self.errors,
            "startTime": self.start_time,
        }

    def as_dict(self) -> Dict[str, object]:
        return asdict(self)


@dataclass
class ParticipantOutcome:
    participant: str
    status: str  # updated | no-changes | failed
    error: Optional[str] = None
    progress: Optional[ProgressInfo] = None
    duration: float = 0.0


@dataclass
class BatchReport:
    status: str  # completed | already-running | starting
    progress: Dict[str, object]
    outcomes: List[ParticipantOutcome] = field(default_factory=list)

    @property
    def updated(self) -> int:
        return sum(1 for o in self.outcomes if o.status == "updated")

    @property
    def unchanged(self) -> int:
        return sum(1 for o in self.outcomes if o.status == "no-changes")

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.status == "failed")


def _has_changes(participant: Participant, fresh: ProfileMetrics) -> bool:
    return (
        as_count(fresh.badges_earned) != as_count(participant.badges_earned)
        or as_count(fresh.labs_completed) != as_count(participant.labs_completed)
        or as_count(fresh.points) != as_count(participant.points)
        or fresh.league != participant.league
        or fresh.tier != derive_tier(participant.badges_earned, participant.points, participant.league)
    )


class BatchUpdater:
    """Refreshes every stored participant; at most one run at a time."""

    def __init__(
        self,
        store: ParticipantStore,
        fetcher: Optional[Fetcher] = None,
        batch_size: Optional[int] = None,
        pause: Optional[float] = None,
        timeout: Optional[float] = None,
        retries: Optional[int] = None,
        backoff: Optional[float] = None,
        dedupe_first: Optional[bool] = None,
        sleep: Callable[[float], None] = time.sleep,
        progress_bar: bool = False,
    ):
        self.store = store
        self.fetcher = fetcher or fetch_profile_html
        self.batch_size = max(1, batch_size or settings.BATCH_SIZE)
        self.pause = settings.BATCH_PAUSE if pause is None else pause
        self.timeout = settings.FETCH_TIMEOUT if timeout is None else timeout
        self.retries = settings.MAX_RETRIES if retries is None else retries
        self.backoff = settings.RETRY_BACKOFF if backoff is None else backoff
        self.dedupe_first = settings.DEDUPE_BEFORE_REFRESH if dedupe_first is None else dedupe_first
        self.progress_bar = progress_bar
        self._sleep = sleep
        self.status = BatchStatus()
        self._guard = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    def _claim(self) -> bool:
        with self._guard:
            if self.status.is_running:
                return False
            self.status = BatchStatus(is_running=True, start_time=utcnow().isoformat())
            return True

    def start(self) -> BatchReport:
        """Run in a background thread and return immediately."""

        if not self._claim():
            return BatchReport("already-running", self.status.progress())
        self._thread = threading.Thread(target=self._run_claimed, name="batch-refresh", daemon=True)
        self._thread.start()
        return BatchReport("starting", self.status.progress())

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def run(self) -> BatchReport:
        """Run synchronously; reports ``already-running`` if another run holds the slot."""

        if not self._claim():
            logger.info("Update service is already running")
            return BatchReport("already-running", self.status.progress())
        return self._run_claimed()

    def _run_claimed(self) -> BatchReport:
        started = time.monotonic()
        outcomes: List[ParticipantOutcome] = []
        logger.info("Starting background update")
        try:
            if self.dedupe_first:
                try:
                    self.status.duplicates_removed = self.store.cleanup_duplicates()
                except StoreError as exc:
                    logger.error("Duplicate cleanup skipped: %s", exc)

            participants = self.store.all()
            self.status.total_participants = len(participants)
            logger.info("Found %d participants to update", len(participants))

            batches = [
                participants[i:i + self.batch_size] for i in range(0, len(participants), self.batch_size)
            ]
            bar = tqdm(total=len(participants), desc="Refreshing profiles", unit="profile", disable=not self.progress_bar)
            # Twice the batch width so a fetch that lost its timeout race does not block the next one
            fetch_pool = ThreadPoolExecutor(max_workers=self.batch_size * 2, thread_name_prefix="profile-fetch")
            try:
                with ThreadPoolExecutor(max_workers=self.batch_size) as workers, bar:
                    self._run_batches(batches, workers, fetch_pool, bar, outcomes)
            finally:
                # Abandoned (timed-out) fetches finish on their own
                fetch_pool.shutdown(wait=False)
        except Exception:
            logger.exception("Critical error in background update")
            self.status.errors += 1
            raise
        finally:
            self.status.is_running = False
            self.status.last_update = datetime.now().astimezone().isoformat()

        logger.info(
            "Background update completed: %d/%d successful, %d errors in %.1fs",
            self.status.completed, self.status.total_participants, self.status.errors,
            time.monotonic() - started,
        )
        return BatchReport("completed", self.status.progress(), outcomes)

    def _run_batches(self, batches, workers, fetch_pool, bar, outcomes: List[ParticipantOutcome]) -> None:
        for index, batch in enumerate(batches, start=1):
            logger.info("Processing batch %d/%d", index, len(batches))
            futures = [workers.submit(self._refresh_one, p, fetch_pool) for p in batch]
            for fut in futures:
                outcome = fut.result()
                outcomes.append(outcome)
                if outcome.status == "failed":
                    self.status.errors += 1
                    self.status.failures.append({"participant": outcome.participant, "error": outcome.error or ""})
                else:
                    self.status.completed += 1
                bar.update(1)
            if index < len(batches) and self.pause > 0:
                self._sleep(self.pause)

    def _refresh_one(self, participant: Participant, fetch_pool: ThreadPoolExecutor) -> ParticipantOutcome:
        started = time.monotonic()
        attempts = max(1, self.retries)
        try:
            url = validate_profile_url(participant.profile_url)
            for attempt in range(1, attempts + 1):
                try:
                    markup = fetch_with_retry(
                        self.fetcher, url, 1, self.backoff,
                        timeout=self.timeout, pool=fetch_pool, sleep=self._sleep,
                    )
                    fresh = parse_profile(markup).with_url(url)
                    if not _has_changes(participant, fresh):
                        logger.debug("%s - no changes detected", participant.name)
                        return ParticipantOutcome(
                            participant.name, "no-changes", duration=time.monotonic() - started
                        )
                    _, progress = self.store.update_progress(participant, fresh)
                    logger.info(
                        "%s updated: badges %d → %d, points %d → %d",
                        participant.name, participant.badges_earned, fresh.badges_earned,
                        participant.points, fresh.points,
                    )
                    return ParticipantOutcome(
                        participant.name, "updated", progress=progress, duration=time.monotonic() - started
                    )
                except (FetchError, StoreError) as exc:
                    logger.warning(
                        "Attempt %d/%d failed for %s: %s", attempt, attempts, participant.name, exc
                    )
                    if attempt >= attempts:
                        raise
                    self._sleep(self.backoff * attempt)
        except (ValidationError, FetchError, StoreError) as exc:
            logger.error("Failed to update %s: %s", participant.name, exc)
            return ParticipantOutcome(
                participant.name, "failed", error=str(exc), duration=time.monotonic() - started
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected failure updating %s", participant.name)
            return ParticipantOutcome(
                participant.name, "failed", error=str(exc), duration=time.monotonic() - started
            )


__all__ = [
    "SubmissionStage",
    "SubmissionResult",
    "ProfileSubmission",
    "submit_profile",
    "ImportReport",
    "import_roster",
    "fetch_with_retry",
    "BatchStatus",
    "BatchReport",
    "ParticipantOutcome",
    "BatchUpdater",
]
