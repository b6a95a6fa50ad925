from dataclasses import dataclass
from html import escape
from typing import Optional

from golazo.core.markets import over_line
from golazo.core.models import MarketId, Opportunity, Tier

MARKET_TITLES = {
    MarketId.NEXT_GOAL: "NEXT GOAL",
    MarketId.OVER_05: "+0.5 GOALS",
    MarketId.OVER_15: "+1.5 GOALS",
    MarketId.OVER_25: "+2.5 GOALS",
    MarketId.BTTS: "BOTH TEAMS TO SCORE",
    MarketId.CORNER_NEXT_10: "CORNER IN NEXT 10'",
}

TIER_LABELS = {
    Tier.FREE: "FREE",
    Tier.INSIDER: "INSIDER",
    Tier.ESTRATEGA: "ESTRATEGA",
}

INSIDER_CONTEXT_LINES = 3


@dataclass(frozen=True)
class AlertMessages:
    pre_alert: str
    main_alert: str
    detailed_analysis: Optional[str] = None


def market_pick(opp: Opportunity) -> str:
    if opp.market == MarketId.NEXT_GOAL:
        return f"{opp.home.name} to score next"
    if opp.market == MarketId.BTTS:
        return "Both teams to score: Yes"
    if opp.market == MarketId.CORNER_NEXT_10:
        return "Corner in the next 10 minutes: Yes"
    return f"Over {over_line(opp.market)} goals"


def confidence_badge(confidence: float) -> str:
    if confidence >= 0.85:
        return "🟢 HIGH"
    if confidence >= 0.7:
        return "🟡 MEDIUM"
    return "🟠 MODERATE"


class AlertFormatter:
    """Renders an opportunity as tier-specific Telegram HTML messages."""

    def format(self, opp: Opportunity, tier: Tier) -> AlertMessages:
        """Pre-alert, main alert and optional analysis for one tier."""
        tier = Tier(tier)
        home, away = escape(opp.home.name or "Home"), escape(opp.away.name or "Away")
        title = MARKET_TITLES[opp.market]
        p = opp.prediction

        pre_alert = (
            "⚡️ <b>GOLDEN MOMENT INCOMING</b>\n"
            f"<b>{home} vs {away}</b>\n"
            f"🕒 Minute {opp.minute}'  |  {opp.score.home}-{opp.score.away}\n"
            f"🎯 Market: <b>{title}</b>"
        )

        lines = [
            f"🔥 <b>GOLDEN MOMENT · {title}</b>",
            f"<b>Match:</b> {home} vs {away}",
            f"🕒 <b>Minute:</b> {opp.minute}'  |  <b>Score:</b> {opp.score.home}-{opp.score.away}",
            f"<b>Pick:</b> {escape(market_pick(opp))}",
            f"💰 <b>Odds:</b> {opp.odds.best_price:.2f}  •  <b>EV:</b> {p.expected_value * 100:+.1f}%",
            f"📈 <b>Probability:</b> {p.probability:.0%}  •  <b>Confidence:</b> "
            f"{confidence_badge(p.confidence)} ({p.confidence:.0%})",
        ]

        if tier == Tier.INSIDER:
            context = opp.context[1:1 + INSIDER_CONTEXT_LINES]
        elif tier == Tier.ESTRATEGA:
            context = opp.context[1:]
        else:
            context = []
        if context:
            lines.append("")
            lines.append("<b>Why:</b>")
            lines.extend(f"• {escape(c)}" for c in context)

        if tier == Tier.ESTRATEGA and opp.odds.per_bookmaker:
            lines.append("")
            lines.append("<b>Prices:</b> " + "  •  ".join(
                f"{escape(name)} {price:.2f}" for name, price in opp.odds.per_bookmaker
            ))

        lines.append(f"\n<i>{TIER_LABELS[tier]} alert</i>")
        main_alert = "\n".join(lines)

        detailed = None
        if tier in (Tier.INSIDER, Tier.ESTRATEGA):
            detailed = self._detailed(opp, home, away, title)

        return AlertMessages(pre_alert=pre_alert, main_alert=main_alert, detailed_analysis=detailed)

    def _detailed(self, opp: Opportunity, home: str, away: str, title: str) -> str:
        p = opp.prediction
        implied = 1.0 / opp.odds.best_price if opp.odds.best_price > 0 else 0.0
        parts = [
            f"📊 <b>ANALYSIS · {home} vs {away}</b>",
            f"Market: {title}",
            f"Model probability: {p.probability:.1%}  vs  implied by odds: {implied:.1%}",
            f"Edge: {(p.probability - implied) * 100:+.1f} pts  •  EV {p.expected_value * 100:+.1f}%",
            f"Confidence: {p.confidence:.1%}",
        ]
        if opp.context:
            parts.append("")
            parts.extend(f"• {escape(c)}" for c in opp.context)
        return "\n".join(parts)
