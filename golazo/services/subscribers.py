import logging
import os
from typing import Dict, Iterable, List, Mapping

from golazo.core.models import Tier

log = logging.getLogger("golazo.subscribers")


class StaticSubscriberDirectory:
    """Fixed tier -> user id mapping."""

    def __init__(self, mapping: Mapping[Tier, Iterable[str]]):
        self._users: Dict[Tier, List[str]] = {
            Tier(tier): [str(u) for u in users if str(u).strip()]
            for tier, users in mapping.items()
        }

    @classmethod
    def from_env(cls) -> "StaticSubscriberDirectory":
        """Read comma-separated ids from SUBSCRIBERS_FREE / _INSIDER / _ESTRATEGA."""
        mapping = {}
        for tier in Tier:
            raw = os.getenv(f"SUBSCRIBERS_{tier.name}", "")
            mapping[tier] = [x.strip() for x in raw.split(",") if x.strip()]
        total = sum(len(v) for v in mapping.values())
        log.info("[SUBSCRIBERS] Loaded %d subscriber(s): %s", total,
                 {t.value: len(v) for t, v in mapping.items()})
        return cls(mapping)

    def get_users_by_tier(self, tier: Tier) -> List[str]:
        return list(self._users.get(Tier(tier), []))
