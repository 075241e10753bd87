"""
Signal Enhancer - optional AI review of a strategy signal.

Asks the configured chat providers, in order, to review a signal against
the cycle's market data and the agent's recent trade outcomes, then blends
the reply into the signal's confidence:

- An explicit "Confidence: N" (0-100) is blended 60% rule / 40% AI.
- Otherwise keywords nudge it: bullish wording +10 (max 95), cautionary
  wording -15 (min 20), neutral wording -10 (min 20).

The enhancer is advisory. Any failure returns the original confidence with
used=False; it never raises into the evaluation cycle.
"""

import logging
import re
from typing import Awaitable, Callable, Optional, Sequence

from ..core.circuit_breaker import get_enhancer_circuit_breaker
from ..core.retry_utils import try_in_order
from ..models.agent import AgentContext
from ..models.market import MarketSnapshot
from ..models.signal import (
    EnhancementResult,
    TradeSignal,
    clamp_confidence,
    round_half_up,
)
from .ai import AIResponse, BaseAIClient

logger = logging.getLogger(__name__)

CONFIDENCE_PATTERN = re.compile(r"confidence[:\s]*(\d+)", re.IGNORECASE)

BULLISH_KEYWORDS = ("strong buy", "high confidence", "bullish")
CAUTION_KEYWORDS = ("caution", "risk", "bearish", "avoid")
NEUTRAL_KEYWORDS = ("hold", "neutral", "wait")

MAX_REASONING_LENGTH = 300

SYSTEM_PROMPT = """You are a trading signal reviewer for autonomous agents on the Monad blockchain.
You receive a rule-based trade signal, the market data it was derived from and
the agent's recent trade outcomes. Weigh the bullish case against the bearish
case, then give a short verdict.

Key factors:
- Bonding curve progress above 85% means pre-graduation volatility
- Low volume or few holders means weak conviction
- A broadly declining market calls for extra caution on buys
- Repeated losses on the same token or strategy should lower confidence

End your answer with a line of the form:
Confidence: <number 0-100>"""

# Loads short outcome lines ("win buy CHOG +12.40 USD") for an agent
MemoryLoader = Callable[[str], Awaitable[list[str]]]


def parse_ai_response(response: str, original_confidence: int) -> int:
    """Map a provider reply to an adjusted confidence in [0, 100]."""
    adjusted = original_confidence
    match = CONFIDENCE_PATTERN.search(response)

    if match:
        ai_confidence = int(match.group(1))
        if 0 <= ai_confidence <= 100:
            adjusted = round_half_up(original_confidence * 0.6 + ai_confidence * 0.4)
    else:
        lower = response.lower()
        if any(k in lower for k in BULLISH_KEYWORDS):
            adjusted = min(95, original_confidence + 10)
        elif any(k in lower for k in CAUTION_KEYWORDS):
            adjusted = max(20, original_confidence - 15)
        elif any(k in lower for k in NEUTRAL_KEYWORDS):
            adjusted = max(20, original_confidence - 10)

    return clamp_confidence(adjusted)


def build_prompt(
    signal: TradeSignal,
    markets: Sequence[MarketSnapshot],
    agent: AgentContext,
    memories: Sequence[str] = (),
) -> str:
    lines = [
        "## Signal",
        f"Strategy: {signal.strategy.value} | Risk: {agent.risk_level.value}",
        f"Action: {signal.action.value.upper()} {signal.token_symbol} ({signal.token_address})",
        f"Amount: {signal.amount} | Confidence: {signal.confidence}",
        f"Reason: {signal.reason}",
        "",
        "## Portfolio",
        f"Capital: {agent.total_capital:.2f} MON | PnL: {agent.total_pnl:.2f} USD | "
        f"Max drawdown: {agent.max_drawdown * 100:.1f}%",
        f"Wallet balance: {agent.wallet_balance if agent.wallet_balance is not None else 'unknown'}",
    ]

    target = next(
        (m for m in markets if m.token_address.lower() == signal.token_address.lower()),
        None,
    )
    if target is not None:
        lines += [
            "",
            f"## {target.symbol} market",
            f"Price: ${target.price_usd:.8f} | 24h volume: {target.volume_24h:.0f} | "
            f"Holders: {target.holders} | Market cap: {target.market_cap:.0f} | "
            f"Liquidity: {target.liquidity:.0f}",
            f"Bonding curve: {target.progress_pct:.1f}% | graduated={target.is_graduated}",
        ]
        for label, metric in sorted(target.metrics.items()):
            lines.append(
                f"{label}: price {metric.price_change_pct:+.2f}% | "
                f"volume {metric.volume_change_pct:+.2f}% | txs {metric.tx_count}"
            )

    others = [m for m in markets if m is not target]
    if others:
        lines += ["", "## Other markets"]
        for m in others[:8]:
            m1h = m.metric("1h")
            change = f"{m1h.price_change_pct:+.2f}%" if m1h else "n/a"
            lines.append(f"{m.symbol}: 1h {change}, volume {m.volume_24h:.0f}")

    if memories:
        lines += ["", "## Recent outcomes"]
        lines += [f"- {memory}" for memory in memories]

    return "\n".join(lines)


class SignalEnhancer:
    """
    Consults the provider chain and returns an EnhancementResult.

    Usage:
        enhancer = SignalEnhancer(create_enhancer_clients())
        result = await enhancer.enhance(signal, markets, agent)
    """

    def __init__(
        self,
        clients: Sequence[BaseAIClient],
        memory_loader: Optional[MemoryLoader] = None,
    ):
        self.clients = list(clients)
        self.memory_loader = memory_loader

    async def _ask(self, client: BaseAIClient, user_prompt: str) -> AIResponse:
        breaker = get_enhancer_circuit_breaker(client.name)
        return await breaker.call(client.generate, SYSTEM_PROMPT, user_prompt)

    async def enhance(
        self,
        signal: TradeSignal,
        markets: Sequence[MarketSnapshot],
        agent: AgentContext,
    ) -> EnhancementResult:
        unchanged = EnhancementResult(adjusted_confidence=signal.confidence, used=False)
        if not self.clients:
            return unchanged

        memories: list[str] = []
        if self.memory_loader is not None:
            try:
                memories = await self.memory_loader(agent.id)
            except Exception as e:
                logger.warning(f"Trade memory unavailable for agent {agent.id}: {e}")

        prompt = build_prompt(signal, markets, agent, memories)
        try:
            client, response = await try_in_order(
                self.clients,
                lambda c: self._ask(c, prompt),
                label="Enhancer provider",
            )
        except Exception as e:
            logger.warning(f"Signal enhancement skipped, all providers failed: {e}")
            return unchanged

        adjusted = parse_ai_response(response.content, signal.confidence)
        logger.info(
            f"Enhancer {client.name}: confidence {signal.confidence} -> {adjusted} "
            f"({response.latency_ms}ms)"
        )
        return EnhancementResult(
            adjusted_confidence=adjusted,
            used=True,
            provider=client.name,
            reasoning=response.content[:MAX_REASONING_LENGTH],
        )
