import threading

import pytest

from etl.errors import DuplicateSubmission, FetchError, ProfileTimeoutError, ValidationError
from etl.pipeline import BatchUpdater, ProfileSubmission, SubmissionStage, fetch_with_retry, submit_profile
from store.participants import ParticipantStore

URL = "https://www.skills.google/public_profiles/c341f338-94be-42d8-9fc8-460695c15e34"
OLD_HOST_URL = URL.replace("www.skills.google", "www.cloudskillsboost.google")


def page(name="Ada", badges=3, points=120, labs=4):
    cards = "".join(f'<div class="profile-badge">b{i}</div>' for i in range(badges))
    return (
        f"<title>{name} | Google Cloud Skills Boost</title>"
        f"<p>Member since 2022</p><p>Silver League</p><p>{points} points</p>"
        f"<p>{labs} labs completed</p>{cards}"
    )


class FakeFetcher:
    def __init__(self, pages=None, failures=None):
        self.pages = pages or {}
        self.failures = failures or {}
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, url):
        with self._lock:
            self.calls.append(url)
        if url in self.failures:
            raise self.failures[url]
        return self.pages.get(url, page())


def no_sleep(_):
    pass


@pytest.fixture
def store(tmp_path):
    return ParticipantStore(tmp_path / "participants.json")


def test_first_submission_inserts(store):
    sub = ProfileSubmission(URL, store, fetcher=FakeFetcher(), sleep=no_sleep)
    result = sub.run()
    assert result.created and not result.welcome_back
    assert result.participant.name == "Ada"
    assert result.participant.tier == "Cloud Beginner"
    assert sub.stages == [
        SubmissionStage.IDLE,
        SubmissionStage.VALIDATING_URL,
        SubmissionStage.FETCHING,
        SubmissionStage.PARSING,
        SubmissionStage.DEDUP_CHECK,
        SubmissionStage.INSERTING,
        SubmissionStage.DONE,
    ]


def test_resubmission_is_idempotent(store):
    fetcher = FakeFetcher()
    first = submit_profile(URL, store, fetcher=fetcher, sleep=no_sleep)
    second = submit_profile(OLD_HOST_URL, store, fetcher=fetcher, sleep=no_sleep)
    assert second.welcome_back
    assert second.participant_id == first.participant_id
    assert not second.progress.has_progress
    [only] = store.participants()
    assert only.progress_history == []
    assert (only.badges_earned, only.points, only.labs_completed) == (3, 120, 4)


def test_resubmission_with_progress_records_history(store):
    submit_profile(URL, store, fetcher=FakeFetcher(), sleep=no_sleep)
    result = submit_profile(URL, store, fetcher=FakeFetcher({URL: page(badges=5, points=200)}), sleep=no_sleep)
    assert result.progress.badge_progress == 2
    assert result.progress.point_progress == 80
    assert len(store.get(result.participant_id).progress_history) == 1


def test_duplicate_rejected_when_updates_not_allowed(store):
    submit_profile(URL, store, fetcher=FakeFetcher(), sleep=no_sleep)
    with pytest.raises(DuplicateSubmission):
        submit_profile(URL, store, fetcher=FakeFetcher(), allow_update=False, sleep=no_sleep)


def test_invalid_url_fails_before_fetch(store):
    fetcher = FakeFetcher()
    sub = ProfileSubmission("https://example.com/u/1", store, fetcher=fetcher, sleep=no_sleep)
    with pytest.raises(ValidationError):
        sub.run()
    assert fetcher.calls == []
    assert sub.stage is SubmissionStage.FAILED
    assert sub.stages[-2] is SubmissionStage.VALIDATING_URL


def test_fetch_retried_then_surfaced(store):
    fetcher = FakeFetcher(failures={URL: FetchError("boom", status=503)})
    waits = []
    sub = ProfileSubmission(URL, store, fetcher=fetcher, retries=3, backoff=0.5, sleep=waits.append)
    with pytest.raises(FetchError):
        sub.run()
    assert len(fetcher.calls) == 3
    assert waits == [0.5, 1.0]
    assert sub.stage is SubmissionStage.FAILED
    assert store.participants() == []


def test_fetch_with_retry_times_out():
    from concurrent.futures import ThreadPoolExecutor

    release = threading.Event()

    def hanging(url):
        release.wait(5)
        return ""

    with ThreadPoolExecutor(max_workers=2) as pool:
        with pytest.raises(ProfileTimeoutError):
            fetch_with_retry(hanging, URL, retries=1, backoff=0, timeout=0.05, pool=pool, sleep=no_sleep)
        release.set()


def _seed(store, count):
    urls = []
    for i in range(count):
        url = f"https://www.skills.google/public_profiles/{i:08x}-aaaa-4bbb-8ccc-000000000000"
        submit_profile(url, store, fetcher=FakeFetcher({url: page(name=f"P{i:02d}", badges=i % 4)}), sleep=no_sleep)
        urls.append(url)
    return urls


def test_batch_refresh_survives_one_permanent_failure(store):
    urls = _seed(store, 12)
    broken = urls[7]
    pages = {url: page(name=f"P{i:02d}", badges=i % 4 + (1 if i < 3 else 0)) for i, url in enumerate(urls)}
    fetcher = FakeFetcher(pages, failures={broken: FetchError("host down", status=500)})
    updater = BatchUpdater(store, fetcher=fetcher, batch_size=5, pause=0, retries=2, backoff=0, sleep=no_sleep)

    report = updater.run()

    assert report.status == "completed"
    assert report.failed == 1
    assert report.updated + report.unchanged == 11
    assert report.updated == 3
    assert updater.status.errors == 1 and updater.status.completed == 11
    assert updater.status.failures[0]["participant"] == "P07"
    assert fetcher.calls.count(broken) == 2
    assert not updater.status.is_running


def test_batch_refresh_timeout_counts_as_failure(store):
    urls = _seed(store, 2)
    release = threading.Event()

    def fetcher(url):
        if url == urls[0]:
            release.wait(5)
        return page(name="P01", badges=1)

    updater = BatchUpdater(store, fetcher=fetcher, batch_size=5, pause=0, timeout=0.05, retries=1, sleep=no_sleep)
    try:
        report = updater.run()
    finally:
        release.set()
    assert report.failed == 1
    assert report.unchanged == 1


def test_batch_refresh_is_singleton(store):
    _seed(store, 3)
    gate = threading.Event()
    entered = threading.Event()

    def slow_fetcher(url):
        entered.set()
        gate.wait(5)
        return page()

    updater = BatchUpdater(store, fetcher=slow_fetcher, batch_size=5, pause=0, timeout=10, sleep=no_sleep)
    started = updater.start()
    assert started.status == "starting"
    assert entered.wait(5)
    again = updater.run()
    assert again.status == "already-running"
    assert again.progress["total"] == 3
    gate.set()
    updater.join(5)
    assert not updater.status.is_running
    assert updater.start().status == "starting"
    updater.join(5)


def test_batch_refresh_removes_profile_id_duplicates_first(store):
    urls = _seed(store, 1)
    store.collection.add({
        "name": "P00", "profileUrl": urls[0].replace("www.skills.google", "www.cloudskillsboost.google"),
        "createdAt": "2020-01-01T00:00:00+00:00",
    })
    updater = BatchUpdater(store, fetcher=FakeFetcher(), pause=0, sleep=no_sleep)
    updater.run()
    assert updater.status.duplicates_removed == 1
    assert len(store.participants()) == 1
