"""Priority ladder that reconciles provider signals into one decision."""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from riskloop.config import ArbitrationConfig
from riskloop.errors import InsufficientHistory, InvalidSignal, PriceNotFound, ProviderUnavailable
from riskloop.models import Action, MarketContext, OpenPosition, TradingSignal
from riskloop.signal_validator import validate_signal
from riskloop.strategies.base import SignalProvider

logger = logging.getLogger(__name__)


@dataclass
class ArbitrationTier:
    """One rung of the ladder: a provider plus its confidence floor."""

    name: str
    provider: SignalProvider
    floor: float
    gate: Optional[Callable[[TradingSignal, float], bool]] = None

    def accepts(self, signal: TradingSignal) -> bool:
        if signal.action is Action.HOLD or signal.confidence < self.floor:
            return False
        gate = self.gate or self.provider.should_trade
        return gate(signal, self.floor)


@dataclass
class TierCandidate:
    tier: str
    signal: Optional[TradingSignal]
    accepted: bool
    note: str


@dataclass
class ArbitrationResult:
    """Winning signal plus what every tier produced."""

    signal: TradingSignal
    tier: Optional[str]
    candidates: List[TierCandidate] = field(default_factory=list)
    provider: Optional[SignalProvider] = None

    @property
    def embeds_size(self) -> bool:
        return bool(self.provider and self.provider.embeds_size)


class SignalArbitrator:
    """
    Evaluates tiers in priority order; the first tier whose signal clears its
    floor and gate wins. Falls back to HOLD when none does.
    """

    def __init__(self, tiers: List[ArbitrationTier]):
        if not tiers:
            raise ValueError("SignalArbitrator needs at least one tier")
        self.tiers = tiers

    @classmethod
    def default_ladder(
        cls,
        config: ArbitrationConfig,
        aggressive: SignalProvider,
        technical: SignalProvider,
        expert: SignalProvider,
        ai: Optional[SignalProvider] = None,
    ) -> "SignalArbitrator":
        """
        Build the standard ladder: aggressive, technical, expert, then AI.

        Args:
            config: Confidence floors
            aggressive: Ultra provider
            technical: Rule-based provider (gated by its should_trade)
            expert: Conservative provider (confidence already on 0-1)
            ai: Optional LLM provider

        Returns:
            SignalArbitrator
        """
        tiers = [
            ArbitrationTier("aggressive", aggressive, config.aggressive_floor),
            ArbitrationTier("technical", technical, config.technical_floor),
            ArbitrationTier("expert", expert, config.expert_floor),
        ]
        if ai is not None:
            tiers.append(ArbitrationTier("ai", ai, config.ai_floor))
        return cls(tiers)

    def decide(
        self,
        context: MarketContext,
        balance: float,
        current_position: Optional[OpenPosition] = None,
    ) -> ArbitrationResult:
        """
        Run providers tier by tier and return the first accepted signal.

        Providers below the winning tier are not consulted.

        Args:
            context: Market context for the symbol
            balance: Available balance in USD
            current_position: Open position on this symbol, if any

        Returns:
            ArbitrationResult
        """
        candidates: List[TierCandidate] = []

        for tier in self.tiers:
            try:
                signal = validate_signal(tier.provider.analyze(context, balance, current_position))
            except (ProviderUnavailable, InsufficientHistory, PriceNotFound) as e:
                logger.warning(f"Tier {tier.name} skipped for {context.symbol}: {e}")
                candidates.append(TierCandidate(tier.name, None, False, str(e)))
                continue
            except InvalidSignal as e:
                candidates.append(TierCandidate(tier.name, None, False, str(e)))
                continue

            if tier.accepts(signal):
                candidates.append(TierCandidate(tier.name, signal, True, "accepted"))
                logger.info(
                    f"[DECISION] {context.symbol}: {signal.action.value} from {tier.name} tier "
                    f"(conf {signal.confidence:.2f} >= {tier.floor:.2f})"
                )
                return ArbitrationResult(signal=signal, tier=tier.name, candidates=candidates, provider=tier.provider)

            candidates.append(
                TierCandidate(
                    tier.name,
                    signal,
                    False,
                    f"{signal.action.value} at {signal.confidence:.2f} below floor {tier.floor:.2f}"
                    if signal.action is not Action.HOLD else "HOLD",
                )
            )

        summary = ", ".join(f"{c.tier}: {c.note}" for c in candidates)
        logger.info(f"[HOLD] {context.symbol}: no tier cleared its floor ({summary})")
        hold = TradingSignal.hold(
            symbol=context.symbol,
            price=context.price,
            reasoning=f"No tier cleared its confidence floor ({summary})",
            source="arbitrator",
            regime=context.regime,
            indicators=context.indicators,
        )
        return ArbitrationResult(signal=hold, tier=None, candidates=candidates)
