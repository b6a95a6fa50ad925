import os
import logging
from typing import Dict, List, Optional
from dataclasses import dataclass, field

from dotenv import load_dotenv

from golazo.core.models import MarketId, Tier

log = logging.getLogger("golazo.config")


def _bool(name: str, default: str = "false") -> bool:
    return (os.getenv(name, default) or "").strip().lower() in ("1", "true", "yes", "y", "on")


def _int(name: str, default: str) -> int:
    return int(float(os.getenv(name, default)))


def _float(name: str, default: str) -> float:
    return float(os.getenv(name, default))


def _csv(name: str, default: str = "") -> List[str]:
    return [x.strip() for x in (os.getenv(name, default) or "").split(",") if x.strip()]


DEFAULT_LEAGUE_POPULARITY: Dict[str, float] = {
    "Primera División - Argentina": 10,
    "Liga Profesional Argentina": 10,
    "UEFA Champions League": 9,
    "Copa Libertadores": 9,
    "Premier League": 8,
    "LaLiga": 8,
    "Serie A": 7,
    "Bundesliga": 7,
    "Ligue 1": 6,
    "Copa Sudamericana": 8,
    "Copa Argentina": 9,
    "Europa League": 7,
    "FIFA World Cup": 10,
    "Copa América": 10,
    "UEFA European Championship": 9,
}

DEFAULT_TEAM_POPULARITY: Dict[str, float] = {
    "Boca Juniors": 10,
    "River Plate": 10,
    "Independiente": 9,
    "Racing Club": 9,
    "San Lorenzo": 8,
    "Estudiantes": 7,
    "Vélez Sarsfield": 7,
    "Barcelona": 9,
    "Real Madrid": 9,
    "Manchester United": 8,
    "Liverpool": 8,
    "Bayern Munich": 8,
    "Paris Saint Germain": 7,
    "Manchester City": 7,
    "Chelsea": 7,
    "Juventus": 7,
    "Inter": 6,
    "Milan": 6,
    "Atlético Madrid": 6,
    "Arsenal": 6,
    "Borussia Dortmund": 6,
}


@dataclass
class TierSettings:
    quota: int
    confidence_threshold: float
    alert_delay_sec: float


def default_tiers() -> Dict[Tier, TierSettings]:
    return {
        Tier.FREE: TierSettings(quota=3, confidence_threshold=0.85, alert_delay_sec=60),
        Tier.INSIDER: TierSettings(quota=8, confidence_threshold=0.75, alert_delay_sec=30),
        Tier.ESTRATEGA: TierSettings(quota=15, confidence_threshold=0.65, alert_delay_sec=0),
    }


@dataclass
class SelectionConfig:
    relevance_weight: float = 0.7
    potential_weight: float = 0.3
    lookahead_hours: float = 2.0
    home_country: str = "Argentina"
    home_country_floor: float = 8.0
    league_popularity: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_LEAGUE_POPULARITY))
    team_popularity: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_TEAM_POPULARITY))

    def __post_init__(self):
        self.relevance_weight, self.potential_weight = normalize_weights(
            self.relevance_weight, self.potential_weight
        )


def normalize_weights(relevance: float, potential: float):
    """Return (relevance, potential) rescaled so they sum to 1."""
    relevance = max(0.0, float(relevance))
    potential = max(0.0, float(potential))
    total = relevance + potential
    if total <= 0:
        log.warning("[CONFIG] Selection weights sum to %s; using defaults 0.7/0.3", total)
        return 0.7, 0.3
    if abs(total - 1.0) > 0.001:
        log.warning(
            "[CONFIG] Selection weights %.3f/%.3f do not sum to 1; renormalizing",
            relevance, potential,
        )
    return relevance / total, potential / total


@dataclass
class DetectionConfig:
    min_expected_value: float = 0.10
    markets: List[MarketId] = field(default_factory=lambda: list(MarketId))


@dataclass
class FusionConfig:
    enabled: bool = True
    models_dir: str = "models"
    ml_weight: float = 0.7
    rules_weight: float = 0.3


@dataclass
class MonitoringConfig:
    cycle_interval_sec: int = 300
    cooldown_sec: int = 15 * 60
    max_workers: int = 8
    upstream_timeout_sec: float = 10.0


@dataclass
class APIConfig:
    key: Optional[str] = None
    base_url: str = "https://v3.football.api-sports.io"
    timeout: float = 8.0
    circuit_breaker_threshold: int = 8
    circuit_breaker_cooldown: int = 90
    retries: int = 1
    # Wall-clock allowance for one source call, all of its requests included
    call_budget: float = 9.0
    detail_cache_size: int = 2000


@dataclass
class TelegramConfig:
    bot_token: Optional[str] = None


@dataclass
class DatabaseConfig:
    path: str = "/tmp/golazo.db"


class Config:
    """Env-driven configuration for the monitoring service."""

    def __init__(self):
        load_dotenv()
        self._load_config()

    def _load_config(self):
        self.environment = os.getenv("GOLAZO_ENV", "production").strip().lower()
        self.development = self.environment == "development"

        self.tiers = {
            tier: TierSettings(
                quota=_int(f"{tier.name}_PLAN_MAX_MATCHES", str(default.quota)),
                confidence_threshold=_float(
                    f"{tier.name}_PLAN_CONFIDENCE", str(default.confidence_threshold)
                ),
                alert_delay_sec=_float(f"{tier.name}_PLAN_DELAY_SEC", str(default.alert_delay_sec)),
            )
            for tier, default in default_tiers().items()
        }

        self.selection = SelectionConfig(
            relevance_weight=_float("RELEVANCE_WEIGHT", "0.7"),
            potential_weight=_float("POTENTIAL_WEIGHT", "0.3"),
            lookahead_hours=_float("LOOKAHEAD_HOURS", "2"),
            home_country=os.getenv("HOME_COUNTRY", "Argentina"),
            home_country_floor=_float("HOME_COUNTRY_FLOOR", "8"),
        )

        enabled = _csv("ENABLED_MARKETS", ",".join(m.value for m in MarketId))
        markets = []
        for name in enabled:
            try:
                markets.append(MarketId(name))
            except ValueError:
                log.warning("[CONFIG] Unknown market %r in ENABLED_MARKETS ignored", name)
        self.detection = DetectionConfig(
            min_expected_value=_float("MINIMUM_EV", "0.10"),
            markets=markets or list(MarketId),
        )

        self.fusion = FusionConfig(
            enabled=_bool("ML_ENABLED", "true"),
            models_dir=os.getenv("ML_MODELS_PATH", "models"),
            ml_weight=_float("ML_CONFIDENCE_WEIGHT", "0.7"),
            rules_weight=_float("RULES_CONFIDENCE_WEIGHT", "0.3"),
        )

        self.monitoring = MonitoringConfig(
            cycle_interval_sec=_int("MONITORING_CYCLE_SEC", "60" if self.development else "300"),
            cooldown_sec=_int("ALERT_COOLDOWN_SEC", "900"),
            max_workers=max(1, _int("MONITOR_MAX_WORKERS", "8")),
            upstream_timeout_sec=_float("UPSTREAM_TIMEOUT_SEC", "10"),
        )

        self.api = APIConfig(
            key=os.getenv("API_KEY") or os.getenv("APISPORTS_KEY"),
            base_url=os.getenv("API_BASE_URL", "https://v3.football.api-sports.io"),
            timeout=_float("REQ_TIMEOUT_SEC", "8.0"),
            circuit_breaker_threshold=_int("API_CB_THRESHOLD", "8"),
            circuit_breaker_cooldown=_int("API_CB_COOLDOWN_SEC", "90"),
            retries=max(0, _int("API_RETRIES", "1")),
            call_budget=_float("API_CALL_BUDGET_SEC", "9"),
            detail_cache_size=max(1, _int("DETAIL_CACHE_MAX_ITEMS", "2000")),
        )

        self.telegram = TelegramConfig(bot_token=os.getenv("TELEGRAM_BOT_TOKEN"))

        self.database = DatabaseConfig(
            path=os.getenv("DB_PATH", "/data/golazo.db" if os.path.isdir("/data") else "/tmp/golazo.db")
        )

        self.log_level = os.getenv("LOG_LEVEL", "INFO").upper()
        self.log_dir = os.getenv("LOG_DIR", "logs")

    def validate(self):
        """Log warnings for suspicious values; never raises."""
        for tier, settings in self.tiers.items():
            if not (0.0 <= settings.confidence_threshold <= 1.0):
                log.warning(
                    "%s_PLAN_CONFIDENCE should be 0-1, got %s",
                    tier.name, settings.confidence_threshold,
                )
            if settings.quota < 1:
                log.warning("%s_PLAN_MAX_MATCHES should be >= 1, got %s", tier.name, settings.quota)

        if self.monitoring.cycle_interval_sec < 30:
            log.warning("MONITORING_CYCLE_SEC very low: %s", self.monitoring.cycle_interval_sec)

        if self.fusion.ml_weight < 0 or self.fusion.rules_weight < 0:
            log.warning(
                "Fusion weights should be non-negative, got ml=%s rules=%s",
                self.fusion.ml_weight, self.fusion.rules_weight,
            )

        if self.api.call_budget > self.monitoring.upstream_timeout_sec:
            log.warning(
                "API_CALL_BUDGET_SEC (%s) exceeds UPSTREAM_TIMEOUT_SEC (%s); slow calls will be abandoned",
                self.api.call_budget, self.monitoring.upstream_timeout_sec,
            )

        if not self.api.key:
            log.warning("API_KEY not set; live data retrieval disabled")

        log.info("[CONFIG] Configuration validation passed")


def load_config() -> Config:
    return Config()
