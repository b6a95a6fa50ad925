import pytest

from golazo.core.models import MarketId, TeamStats
from golazo.core.rules import FALLBACK, PROBABILITY_BANDS, RuleEngine

from conftest import build_snapshot, event


@pytest.fixture
def rules():
    return RuleEngine()


def test_dominant_home_side_late_in_match(rules):
    snapshot = build_snapshot(
        minute=80, status="2H", home_goals=1, away_goals=0,
        home_stats=TeamStats(possession=70, shots_on_target=8),
        away_stats=TeamStats(possession=30, shots_on_target=2),
    )
    prediction = rules.evaluate(MarketId.NEXT_GOAL, snapshot)

    # possession and shots factors fire; p saturates at the band's upper edge
    assert prediction.probability == pytest.approx(0.90)
    assert prediction.confidence == pytest.approx(0.45 + 2 * 0.08 + (80 / 90) * 0.2)
    assert 0.75 <= prediction.confidence < 0.85
    assert not prediction.resolved


def test_away_dominance_favours_away(rules):
    snapshot = build_snapshot(
        minute=50,
        home_stats=TeamStats(possession=30, shots_on_target=1),
        away_stats=TeamStats(possession=70, shots_on_target=5),
    )
    assert rules.evaluate(MarketId.NEXT_GOAL, snapshot).probability < 0.5


def test_no_factors_is_even(rules):
    prediction = rules.evaluate(MarketId.NEXT_GOAL, build_snapshot(minute=0))
    assert prediction.probability == 0.5
    assert prediction.confidence == pytest.approx(0.45)


@pytest.mark.parametrize("possession, fired", [(65, 0), (66, 1), (35, 0), (34, 1)])
def test_possession_edge_only_above_threshold(rules, possession, fired):
    snapshot = build_snapshot(minute=0, home_stats=TeamStats(possession=possession))
    prediction = rules.evaluate(MarketId.NEXT_GOAL, snapshot)
    assert prediction.confidence == pytest.approx(0.45 + fired * 0.08)


def test_over_line_already_cleared(rules):
    snapshot = build_snapshot(minute=55, home_goals=2, away_goals=1)
    prediction = rules.evaluate(MarketId.OVER_25, snapshot)
    assert (prediction.probability, prediction.confidence, prediction.resolved) == (1.0, 1.0, True)


def test_over_line_not_yet_cleared_is_not_resolved(rules):
    snapshot = build_snapshot(minute=55, home_goals=1, away_goals=1)
    prediction = rules.evaluate(MarketId.OVER_25, snapshot)
    assert not prediction.resolved
    low, high = PROBABILITY_BANDS[MarketId.OVER_25]
    assert low <= prediction.probability <= high


def test_btts_resolved_when_both_scored(rules):
    prediction = rules.evaluate(MarketId.BTTS, build_snapshot(minute=30, home_goals=1, away_goals=1))
    assert prediction.resolved
    assert prediction.probability == 1.0


def test_btts_goalless_late_leans_no(rules):
    snapshot = build_snapshot(minute=80, home_stats=TeamStats(possession=50, shots_on_target=1),
                              away_stats=TeamStats(shots_on_target=1))
    assert rules.evaluate(MarketId.BTTS, snapshot).probability < 0.5


def test_over_short_of_time_leans_under(rules):
    snapshot = build_snapshot(minute=85, home_stats=TeamStats(shots_on_target=1),
                              away_stats=TeamStats(shots_on_target=1))
    assert rules.evaluate(MarketId.OVER_15, snapshot).probability < 0.5


def test_corner_pressure_leans_yes(rules):
    snapshot = build_snapshot(
        minute=40,
        home_stats=TeamStats(possession=66, corners=6),
        away_stats=TeamStats(corners=1),
        events=[event(33, 1, "Corner"), event(38, 1, "Corner")],
    )
    prediction = rules.evaluate(MarketId.CORNER_NEXT_10, snapshot)
    assert prediction.probability > 0.5
    assert prediction.confidence <= 0.9


@pytest.mark.parametrize("market", list(MarketId))
def test_outputs_stay_in_bands(rules, market):
    snapshot = build_snapshot(
        minute=89,
        home_stats=TeamStats(possession=90, shots_on_target=15, corners=14),
        away_stats=TeamStats(possession=10, shots_on_target=0, corners=0),
        events=[event(80, 1, "Corner"), event(82, 1, "Corner"), event(85, 1, "Goal")],
    )
    prediction = rules.evaluate(market, snapshot)
    low, high = PROBABILITY_BANDS[market]
    assert low <= prediction.probability <= high
    assert 0.2 <= prediction.confidence <= 0.9


def test_malformed_input_falls_back(rules):
    assert rules.evaluate(MarketId.NEXT_GOAL, object()) == FALLBACK


def test_potential_scores(rules):
    assert rules.predict_potential(build_snapshot(status="NS")) == pytest.approx(0.4)
    hot = build_snapshot(minute=80, status="2H", home_goals=1,
                         home_stats=TeamStats(corners=7), away_stats=TeamStats(corners=5))
    assert rules.predict_potential(hot) == pytest.approx(1.0)
