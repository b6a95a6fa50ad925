import numpy as np
import pytest

from golazo.core.features import (
    BASE_LENGTH, FeatureExtractor, expected_length, implied_probability, is_corner_hotspot,
    momentum, normalize, recent_activity,
)
from golazo.core.models import MarketId, TeamStats

from conftest import build_book, build_snapshot, event


@pytest.mark.parametrize("market", list(MarketId))
def test_vector_length_is_fixed_per_market(market):
    extractor = FeatureExtractor()
    sparse = build_snapshot(minute=10)
    rich = build_snapshot(
        minute=70, home_goals=1,
        home_stats=TeamStats(possession=61, shots_on_target=6, corners=7, yellow_cards=2),
        away_stats=TeamStats(possession=39, shots_on_target=2, corners=3, yellow_cards=1),
        events=[event(60, 1, "Corner"), event(65, 2, "Card")],
        odds=[build_book(h2h=[("Home", 1.5), ("Draw", 4.0), ("Away", 6.0)], btts=[("Yes", 1.9)])],
    )
    assert extractor.extract(sparse, market).shape == (expected_length(market),)
    assert extractor.extract(rich, market).shape == (expected_length(market),)


def test_base_vector_without_market():
    vector = FeatureExtractor().extract(build_snapshot(minute=45), None)
    assert vector.shape == (BASE_LENGTH,)


def test_features_are_unit_interval():
    snapshot = build_snapshot(
        minute=120, home_goals=9, away_goals=0,
        home_stats=TeamStats(possession=80, shots_on_target=40, corners=30, yellow_cards=12),
        away_stats=TeamStats(possession=20, shots_on_target=0, corners=0, yellow_cards=0),
    )
    for market in MarketId:
        vector = FeatureExtractor().extract(snapshot, market)
        assert np.all(vector >= 0.0) and np.all(vector <= 1.0)


def test_missing_statistics_map_to_neutral():
    vector = FeatureExtractor().extract(build_snapshot(minute=30), None)
    # possession, shots on target and corners for both sides
    for idx in (6, 7, 8, 9, 10):
        assert vector[idx] == 0.5


def test_malformed_snapshot_yields_neutral_vector():
    vector = FeatureExtractor().extract(object(), MarketId.BTTS)
    assert vector.shape == (expected_length(MarketId.BTTS),)
    assert np.all(vector == 0.5)


def test_normalize_clamps_and_handles_missing():
    assert normalize(150, "minute") == 1.0
    assert normalize(-3, "score") == 0.0
    assert normalize(0, "goal_diff") == 0.5
    assert normalize(None, "corners") == 0.5


def test_implied_probability():
    assert implied_probability(2.0) == pytest.approx(0.475)
    assert implied_probability(None) == 0.5
    assert implied_probability(0.8) == 0.5


def test_recent_activity_uses_fifteen_minute_window():
    snapshot = build_snapshot(minute=75, events=[
        event(50, 1, "Corner"),
        event(62, 1, "Corner"),
        event(70, 2, "Corner"),
        event(71, 1, "Goal", "Normal Goal"),
        event(72, 2, "shot", "Shot on Goal"),
        event(74, 2, "Card", "Yellow Card"),
    ])
    recent = recent_activity(snapshot)
    assert recent.corners_home == 1
    assert recent.corners_away == 1
    assert recent.shots_home == 1
    assert recent.shots_away == 1
    assert recent.cards == 1


def test_momentum_blends_possession_and_events():
    quiet = build_snapshot(minute=30, home_stats=TeamStats(possession=70))
    mom = momentum(quiet)
    assert mom.shift == pytest.approx(0.12)
    assert mom.home_attacking == pytest.approx(0.56)

    pressing = build_snapshot(minute=30, home_stats=TeamStats(possession=50),
                              events=[event(25, 1, "Corner"), event(28, 1, "Corner")])
    assert momentum(pressing).shift == pytest.approx(0.7)


def test_corner_hotspots():
    assert is_corner_hotspot(40)
    assert is_corner_hotspot(88)
    assert not is_corner_hotspot(60)
