import pytest

from golazo.core.config import Config, SelectionConfig, default_tiers, normalize_weights
from golazo.core.models import MarketId, Tier

ENV_KEYS = [
    "GOLAZO_ENV", "MONITORING_CYCLE_SEC", "FREE_PLAN_MAX_MATCHES", "INSIDER_PLAN_CONFIDENCE",
    "MINIMUM_EV", "ENABLED_MARKETS", "RELEVANCE_WEIGHT", "POTENTIAL_WEIGHT", "ML_ENABLED",
    "API_KEY", "APISPORTS_KEY", "DB_PATH", "API_RETRIES", "API_CALL_BUDGET_SEC", "DETAIL_CACHE_MAX_ITEMS",
    "UPSTREAM_TIMEOUT_SEC",
]


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


def test_defaults(clean_env):
    config = Config()
    assert config.tiers[Tier.FREE].quota == 3
    assert config.tiers[Tier.ESTRATEGA].alert_delay_sec == 0
    assert config.detection.min_expected_value == pytest.approx(0.10)
    assert config.detection.markets == list(MarketId)
    assert config.monitoring.cycle_interval_sec == 300
    assert config.selection.relevance_weight == pytest.approx(0.7)
    assert config.fusion.enabled


def test_environment_overrides(clean_env):
    clean_env.setenv("GOLAZO_ENV", "development")
    clean_env.setenv("FREE_PLAN_MAX_MATCHES", "5")
    clean_env.setenv("INSIDER_PLAN_CONFIDENCE", "0.7")
    clean_env.setenv("MINIMUM_EV", "0.2")
    clean_env.setenv("ENABLED_MARKETS", "btts, bogus ,over25")
    clean_env.setenv("ML_ENABLED", "false")
    clean_env.setenv("DB_PATH", "/tmp/x.db")

    config = Config()
    assert config.development
    assert config.monitoring.cycle_interval_sec == 60
    assert config.tiers[Tier.FREE].quota == 5
    assert config.tiers[Tier.INSIDER].confidence_threshold == pytest.approx(0.7)
    assert config.detection.min_expected_value == pytest.approx(0.2)
    assert config.detection.markets == [MarketId.BTTS, MarketId.OVER_25]
    assert not config.fusion.enabled
    assert config.database.path == "/tmp/x.db"


def test_api_call_budget_fits_upstream_timeout(clean_env):
    config = Config()
    assert config.api.retries == 1
    assert config.api.call_budget < config.monitoring.upstream_timeout_sec
    assert config.api.detail_cache_size == 2000

    clean_env.setenv("API_RETRIES", "-2")
    clean_env.setenv("API_CALL_BUDGET_SEC", "4.5")
    clean_env.setenv("DETAIL_CACHE_MAX_ITEMS", "50")
    config = Config()
    assert (config.api.retries, config.api.call_budget, config.api.detail_cache_size) == (0, 4.5, 50)


def test_selection_weights_from_env_are_renormalized(clean_env):
    clean_env.setenv("RELEVANCE_WEIGHT", "0.6")
    clean_env.setenv("POTENTIAL_WEIGHT", "0.6")
    config = Config()
    assert config.selection.relevance_weight == pytest.approx(0.5)
    assert config.selection.potential_weight == pytest.approx(0.5)


def test_normalize_weights():
    assert normalize_weights(3, 1) == pytest.approx((0.75, 0.25))
    assert normalize_weights(0, 0) == (0.7, 0.3)
    assert normalize_weights(-1, 1) == pytest.approx((0.0, 1.0))
    assert SelectionConfig().relevance_weight == pytest.approx(0.7)


def test_default_tiers_order_of_strictness():
    tiers = default_tiers()
    assert tiers[Tier.FREE].confidence_threshold > tiers[Tier.INSIDER].confidence_threshold
    assert tiers[Tier.INSIDER].confidence_threshold > tiers[Tier.ESTRATEGA].confidence_threshold
    assert tiers[Tier.FREE].quota < tiers[Tier.INSIDER].quota < tiers[Tier.ESTRATEGA].quota
