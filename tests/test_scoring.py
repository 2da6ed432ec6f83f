import itertools

from etl import scoring


def test_badge_thresholds():
    assert scoring.derive_tier(0) == "Newcomer"
    assert scoring.derive_tier(2) == "Newcomer"
    assert scoring.derive_tier(3) == "Cloud Beginner"
    assert scoring.derive_tier(8) == "Cloud Explorer"
    assert scoring.derive_tier(15) == "Cloud Pro"


def test_league_only_upgrades():
    assert scoring.derive_tier(0, league="Diamond") == "Cloud Pro"
    assert scoring.derive_tier(0, league="Gold") == "Cloud Explorer"
    assert scoring.derive_tier(0, league="Platinum") == "Cloud Explorer"
    assert scoring.derive_tier(0, league="Silver") == "Cloud Beginner"
    # Gold lifts anything below Explorer, not just Newcomers
    assert scoring.derive_tier(4, league="Gold") == "Cloud Explorer"
    assert scoring.derive_tier(15, league="Bronze") == "Cloud Pro"


def test_points_only_upgrade():
    assert scoring.derive_tier(0, points=150) == "Cloud Beginner"
    assert scoring.derive_tier(0, points=500) == "Cloud Explorer"
    assert scoring.derive_tier(4, points=500) == "Cloud Explorer"
    assert scoring.derive_tier(0, points=1000) == "Cloud Pro"
    assert scoring.derive_tier(9, points=10) == "Cloud Explorer"


def test_gold_with_600_points_is_explorer():
    assert scoring.derive_tier(0, points=600, league="Gold") == "Cloud Explorer"


def test_tier_is_monotonic():
    rank_of = scoring.TIERS.index
    badges = [0, 1, 2, 3, 5, 8, 12, 15, 30]
    points = [0, 100, 149, 150, 499, 500, 999, 1000, 5000]
    for b, p in itertools.product(badges, points):
        tiers = [rank_of(scoring.derive_tier(b, p, league)) for league in scoring.LEAGUES]
        assert tiers == sorted(tiers), (b, p)
    for league, p in itertools.product(scoring.LEAGUES, points):
        tiers = [rank_of(scoring.derive_tier(b, p, league)) for b in badges]
        assert tiers == sorted(tiers), (league, p)
    for league, b in itertools.product(scoring.LEAGUES, badges):
        tiers = [rank_of(scoring.derive_tier(b, p, league)) for p in points]
        assert tiers == sorted(tiers), (league, b)


def test_tier_reason_mentions_upgrades():
    tier, reason = scoring.tier_with_reason(0, 600, "Silver")
    assert tier == "Cloud Explorer"
    assert "Silver League" in reason
    assert "600 points" in reason


def test_ranking_score_weights_and_coercion():
    assert scoring.ranking_score(2, 30, 4) == 2304
    assert scoring.ranking_score("3", None, "x") == 3000
