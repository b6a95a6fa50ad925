from typing import List, Optional, Protocol

from golazo.core.models import FixtureSnapshot, MarketId, Tier


class FixtureDataSource(Protocol):
    def get_live_fixtures(self) -> List[FixtureSnapshot]: ...

    def get_upcoming_fixtures(self, hours_ahead: float) -> List[FixtureSnapshot]: ...

    def get_fixture_detail(self, fixture_id: str) -> Optional[FixtureSnapshot]: ...


class FixtureRepository(Protocol):
    """Persistence boundary; any method may raise, callers degrade."""

    def initialize(self) -> None: ...

    def get_by_id(self, fixture_id: str) -> Optional[FixtureSnapshot]: ...

    def upsert(self, snapshot: FixtureSnapshot) -> None: ...

    def set_monitored(self, fixture_id: str, monitored: bool) -> None: ...

    def record_alert_sent(self, fixture_id: str, market: MarketId, tier: Tier) -> None: ...

    def get_head_to_head(self, team_a: int, team_b: int) -> List[dict]: ...

    def get_team_strength(self, team_id: int) -> Optional[float]: ...

    def get_live_fixtures(self) -> List[FixtureSnapshot]: ...

    def get_upcoming_fixtures(self, hours_ahead: float) -> List[FixtureSnapshot]: ...

    def count_alerts_since(self, since_ts: float) -> int: ...


class Notifier(Protocol):
    """Fire-and-forget delivery; implementations log failures and return False."""

    def send_pre_alert(self, user_id: str, text: str) -> bool: ...

    def send_main_alert(self, user_id: str, text: str) -> bool: ...

    def send_detailed_analysis(self, user_id: str, text: str) -> bool: ...


class SubscriberDirectory(Protocol):
    def get_users_by_tier(self, tier: Tier) -> List[str]: ...
