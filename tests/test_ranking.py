import random
from datetime import datetime, timedelta, timezone

from etl import ranking
from etl.models import Participant

T0 = datetime(2024, 9, 1, tzinfo=timezone.utc)


def make(name, badges=0, points=0, labs=0, created=None, league="Bronze", tier="Newcomer", pid=None):
    return Participant(
        id=pid or name,
        name=name,
        profile_url=f"https://www.skills.google/public_profiles/{abs(hash(name)) % 10**8:08x}",
        league=league,
        points=points,
        badges_earned=badges,
        labs_completed=labs,
        tier=tier,
        created_at=created,
    )


def test_badges_dominate_points():
    a = make("A", badges=5, points=900)
    b = make("B", badges=6, points=10)
    ranked = ranking.rank([a, b])
    assert [r.participant.name for r in ranked] == ["B", "A"]
    assert [r.place for r in ranked] == [1, 2]


def test_tie_break_chain():
    people = [
        make("zed", badges=3, points=10, labs=1, created=T0),
        make("amy", badges=3, points=10, labs=1, created=T0),
        make("old", badges=3, points=10, labs=1, created=T0 - timedelta(days=1)),
        make("labs", badges=3, points=10, labs=2, created=T0 + timedelta(days=5)),
        make("pts", badges=3, points=11, labs=0),
        make("nots", badges=3, points=10, labs=1, created=None),
    ]
    names = [r.participant.name for r in ranking.rank(people)]
    assert names == ["pts", "labs", "old", "amy", "zed", "nots"]


def test_names_only_differ_sorted_alphabetically():
    people = [make(n, badges=2, points=5, created=T0) for n in ("Carol", "alice", "Bob")]
    assert [r.participant.name for r in ranking.rank(people)] == ["alice", "Bob", "Carol"]


def test_places_are_dense_and_deterministic():
    rnd = random.Random(7)
    people = [
        make(f"p{i}", badges=rnd.randint(0, 3), points=rnd.randint(0, 2), labs=rnd.randint(0, 1), created=T0)
        for i in range(40)
    ]
    first = ranking.rank(people)
    shuffled = people[:]
    rnd.shuffle(shuffled)
    second = ranking.rank(shuffled)
    assert [r.place for r in first] == list(range(1, 41))
    assert [r.participant.id for r in first] == [r.participant.id for r in second]
    assert sorted(r.participant.id for r in first) == sorted(p.id for p in people)


def test_stale_tier_and_bad_counts_are_fixed():
    stale = make("x", badges="9", points=None, labs="oops", tier="Cloud Pro")
    [row] = ranking.rank([stale])
    p = row.participant
    assert (p.badges_earned, p.points, p.labs_completed) == (9, 0, 0)
    assert p.tier == "Cloud Explorer"
    assert p.ranking_score == 9000


def test_empty_list():
    assert ranking.rank([]) == []


def test_legacy_order():
    people = [make("b", badges=1, labs=5), make("a", badges=1, labs=5), make("c", badges=2)]
    assert [p.name for p in ranking.legacy_order(people)] == ["c", "a", "b"]


def test_leaderboard_stats_rederives_tiers():
    people = [make("a", badges=15, tier="Newcomer"), make("b", badges=0, points=200), make("c")]
    stats = ranking.leaderboard_stats(people)
    assert stats["totalParticipants"] == 3
    assert stats["totalBadges"] == 15
    assert stats["totalPoints"] == 200
    assert stats["tierDistribution"] == {
        "Cloud Pro": 1,
        "Cloud Explorer": 0,
        "Cloud Beginner": 1,
        "Newcomer": 1,
    }
