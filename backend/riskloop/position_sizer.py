"""Kelly-based collateral and leverage sizing."""

import logging
from typing import Optional

from riskloop.config import SizingConfig
from riskloop.models import SizingResult, TradeStats, TradingSignal

logger = logging.getLogger(__name__)


class PositionSizer:
    """
    Converts a final signal into collateral and leverage.

    Collateral comes from the provider's embedded size when the provider
    supplies one, otherwise from a half-Kelly fraction of the balance. The
    result never exceeds min(max_trade_usd, 40% of balance).
    """

    def __init__(self, config: Optional[SizingConfig] = None):
        self.config = config or SizingConfig()

    def kelly_fraction(self, stats: TradeStats, confidence: float) -> float:
        """
        Half-Kelly fraction scaled by confidence and clamped to [kelly_min, kelly_max].

        Falls back to default_kelly_fraction when there is no loss history.

        Args:
            stats: Recent trade statistics
            confidence: Signal confidence in [0, 1]

        Returns:
            Fraction of balance to commit
        """
        cfg = self.config
        if stats.sample_size == 0 or stats.avg_loss == 0:
            return cfg.default_kelly_fraction
        if stats.avg_win <= 0:
            return cfg.kelly_min

        b = stats.avg_win / stats.avg_loss
        p = stats.win_rate
        q = 1 - p
        kelly = (p * b - q) / b
        return max(cfg.kelly_min, min(cfg.kelly_max, kelly * 0.5 * confidence))

    def leverage_for(self, confidence: float, volatility_pct: float, pooled: bool) -> float:
        """
        Pick leverage from confidence/volatility bands.

        Bands: confidence > 0.85 in low volatility -> 10x (12x pooled);
        confidence > 0.8 in medium volatility -> 7x (9x pooled); otherwise 5x.
        Scaled down 40% above the high-volatility threshold, then clamped.
        """
        cfg = self.config
        if confidence > 0.85 and volatility_pct < cfg.low_volatility_pct:
            leverage = 12.0 if pooled else 10.0
        elif confidence > 0.8 and cfg.low_volatility_pct <= volatility_pct <= cfg.high_volatility_pct:
            leverage = 9.0 if pooled else 7.0
        else:
            leverage = 5.0

        if volatility_pct > cfg.high_volatility_pct:
            leverage *= cfg.volatility_leverage_scale

        return max(cfg.min_leverage, min(cfg.max_leverage, leverage))

    def size(
        self,
        signal: TradingSignal,
        balance: float,
        stats: TradeStats,
        volatility_pct: float,
        max_trade_usd: float,
        pooled: bool = False,
        embedded: bool = False,
    ) -> SizingResult:
        """
        Size a trade.

        Args:
            signal: Final arbitrated signal
            balance: Agent's available balance in USD
            stats: Win/loss statistics over recent closed trades
            volatility_pct: Current volatility percent
            max_trade_usd: Circuit breaker per-trade ceiling
            pooled: Whether the agent trades from a shared pooled balance
            embedded: Whether signal.position_size_usd is a provider sizing suggestion

        Returns:
            SizingResult (zero collateral means do not trade)
        """
        cfg = self.config

        if balance < cfg.min_balance_floor_usd:
            return SizingResult(
                collateral_usd=0.0,
                leverage=cfg.min_leverage,
                reason=f"Balance ${balance:.2f} below ${cfg.min_balance_floor_usd:.2f} floor",
            )

        max_pct = cfg.pooled_max_balance_pct if pooled else cfg.max_balance_pct
        max_abs = cfg.pooled_max_collateral_usd if pooled else cfg.max_collateral_usd

        if embedded and signal.position_size_usd > 0:
            fraction = 0.0
            collateral = min(signal.position_size_usd, balance * max_pct, max_abs)
            basis = f"provider size ${signal.position_size_usd:.2f}"
        else:
            fraction = self.kelly_fraction(stats, signal.confidence)
            collateral = max(
                min(3.0, balance * 0.15),
                min(balance * fraction, balance * max_pct, max_abs),
            )
            basis = f"kelly {fraction:.3f}"

        hard_cap = min(max_trade_usd, balance * cfg.hard_cap_balance_pct)
        collateral = min(collateral, hard_cap)
        if collateral <= 0:
            return SizingResult(collateral_usd=0.0, leverage=cfg.min_leverage, kelly_fraction=fraction, reason="Non-positive size")

        leverage = self.leverage_for(signal.confidence, volatility_pct, pooled)
        logger.info(
            f"Sizing {signal.symbol}: ${collateral:.2f} collateral @ {leverage:.1f}x "
            f"({basis}, cap ${hard_cap:.2f})"
        )
        return SizingResult(
            collateral_usd=collateral,
            leverage=leverage,
            kelly_fraction=fraction,
            reason=basis,
        )
