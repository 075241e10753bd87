"""
Outbox - best-effort side effects of settlement.

Settlement enqueues tasks in its own transaction; the outbox worker runs
them after commit. A handler failure is recorded on the task and retried
with backoff, it never touches the Execution.

Task kinds:
- reputation_feedback: trade outcome score posted to the web app
- fee_record: CapitalVault.recordTradingFee on chain
- validation_artifact: validation artifact for the execution
- trade_memory: compact outcome record for later strategy review
"""

import logging
import uuid
from contextlib import AbstractAsyncContextManager
from typing import Awaitable, Callable, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..core.tokens import NATIVE_TOKEN_ADDRESS
from ..db.models import AgentDB, OutboxTaskDB
from ..db.repositories import OutboxRepository, TradeMemoryRepository
from ..models.signal import TradeSignal, round_half_up
from ..traders.chain import ChainClient
from .execution_router import RouteResult

logger = logging.getLogger(__name__)

KIND_REPUTATION_FEEDBACK = "reputation_feedback"
KIND_FEE_RECORD = "fee_record"
KIND_VALIDATION_ARTIFACT = "validation_artifact"
KIND_TRADE_MEMORY = "trade_memory"

# Reputation score of a failed or losing trade
FAILURE_FEEDBACK_SCORE = 30

CAPITAL_VAULT_ABI = [
    {
        "type": "function",
        "name": "recordTradingFee",
        "inputs": [
            {"name": "agentId", "type": "uint256"},
            {"name": "token", "type": "address"},
            {"name": "tradeAmount", "type": "uint256"},
        ],
        "outputs": [],
        "stateMutability": "nonpayable",
    },
]

OutboxHandler = Callable[[dict], Awaitable[None]]
SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


def feedback_score(pnl_usd: float, failed: bool = False) -> int:
    """0-100 reputation score: 50 + 10 per USD of profit, 30 for failures and losses."""
    if failed or pnl_usd < 0:
        return FAILURE_FEEDBACK_SCORE
    return min(100, round_half_up(50 + pnl_usd * 10))


# ==================== Enqueueing (inside settlement) ====================


async def enqueue_success_side_effects(
    outbox: OutboxRepository,
    agent: AgentDB,
    execution_id: uuid.UUID,
    signal: TradeSignal,
    route: RouteResult,
    pnl_usd: float,
) -> list[OutboxTaskDB]:
    settings = get_settings()
    agent_id = str(agent.id)
    tasks = [
        await outbox.enqueue(
            KIND_TRADE_MEMORY,
            {
                "agent_id": agent_id,
                "execution_id": str(execution_id),
                "strategy": signal.strategy.value,
                "action": signal.action.value,
                "token_address": signal.token_address,
                "token_symbol": signal.token_symbol,
                "confidence": signal.confidence,
                "pnl_usd": pnl_usd,
                "reason": signal.reason,
            },
        )
    ]

    if settings.app_api_url:
        tasks.append(
            await outbox.enqueue(
                KIND_REPUTATION_FEEDBACK,
                {
                    "agent_id": agent_id,
                    "client_addr": agent.wallet_address or "unknown",
                    "score": feedback_score(pnl_usd),
                    "value": round(pnl_usd * 100),
                    "tag2": "success" if pnl_usd >= 0 else "failure",
                    "tx_hash": route.tx_hash,
                },
            )
        )
        tasks.append(
            await outbox.enqueue(
                KIND_VALIDATION_ARTIFACT,
                {"agent_id": agent_id, "execution_id": str(execution_id)},
            )
        )

    if settings.capital_vault_address and agent.erc8004_agent_id:
        tasks.append(
            await outbox.enqueue(
                KIND_FEE_RECORD,
                {
                    "erc8004_agent_id": agent.erc8004_agent_id,
                    "token_address": signal.token_address,
                    # Stored as text: wei amounts overflow JSON integers in some stores
                    "trade_amount_wei": str(route.quote.amount_in_wei),
                },
            )
        )

    return tasks


async def enqueue_failure_side_effects(
    outbox: OutboxRepository,
    agent: AgentDB,
    execution_id: uuid.UUID,
    signal: TradeSignal,
    error_msg: str,
) -> list[OutboxTaskDB]:
    agent_id = str(agent.id)
    tasks = [
        await outbox.enqueue(
            KIND_TRADE_MEMORY,
            {
                "agent_id": agent_id,
                "execution_id": str(execution_id),
                "strategy": signal.strategy.value,
                "action": signal.action.value,
                "token_address": signal.token_address,
                "token_symbol": signal.token_symbol,
                "confidence": signal.confidence,
                "pnl_usd": 0.0,
                "reason": f"FAILED: {error_msg}",
            },
        )
    ]

    if get_settings().app_api_url:
        tasks.append(
            await outbox.enqueue(
                KIND_REPUTATION_FEEDBACK,
                {
                    "agent_id": agent_id,
                    "client_addr": agent.wallet_address or "unknown",
                    "score": feedback_score(0.0, failed=True),
                    "value": -100,
                    "tag2": "failure",
                    "tx_hash": None,
                },
            )
        )
    return tasks


# ==================== Handlers (outbox worker) ====================


class OutboxHandlers:
    """
    Registry mapping task kind to handler.

    Usage:
        handlers = OutboxHandlers.default(AsyncSessionLocal, http, chain)
        await handlers.dispatch(task)
    """

    def __init__(self):
        self._handlers: dict[str, OutboxHandler] = {}

    def register(self, kind: str, handler: OutboxHandler) -> None:
        self._handlers[kind] = handler

    @property
    def kinds(self) -> list[str]:
        return sorted(self._handlers)

    async def dispatch(self, task: OutboxTaskDB) -> None:
        """
        Run the handler for a task.

        Raises:
            LookupError: no handler is registered for the task kind
            Exception: whatever the handler raised
        """
        handler = self._handlers.get(task.kind)
        if handler is None:
            raise LookupError(f"No outbox handler for kind {task.kind!r}")
        await handler(task.payload or {})

    @classmethod
    def default(
        cls,
        session_factory: SessionFactory,
        http_client: Optional[httpx.AsyncClient] = None,
        chain: Optional[ChainClient] = None,
    ) -> "OutboxHandlers":
        settings = get_settings()
        handlers = cls()

        async def record_trade_memory(payload: dict) -> None:
            async with session_factory() as session:
                await TradeMemoryRepository(session).record(
                    agent_id=uuid.UUID(payload["agent_id"]),
                    execution_id=uuid.UUID(payload["execution_id"]),
                    strategy=payload["strategy"],
                    action=payload["action"],
                    token_address=payload["token_address"],
                    token_symbol=payload.get("token_symbol", "UNKNOWN"),
                    confidence=int(payload.get("confidence", 0)),
                    pnl_usd=float(payload.get("pnl_usd", 0.0)),
                    reason=payload.get("reason", ""),
                )
                await session.commit()

        handlers.register(KIND_TRADE_MEMORY, record_trade_memory)

        if http_client is not None and settings.app_api_url:
            base_url = settings.app_api_url.rstrip("/")

            async def post_feedback(payload: dict) -> None:
                response = await http_client.post(
                    f"{base_url}/api/feedback",
                    json={
                        "agentId": payload["agent_id"],
                        "clientAddr": payload.get("client_addr", "unknown"),
                        "score": payload["score"],
                        "value": payload.get("value", 0),
                        "valueDecimals": 2,
                        "tag1": "trade_execution",
                        "tag2": payload.get("tag2", "success"),
                        "txHash": payload.get("tx_hash"),
                    },
                )
                response.raise_for_status()

            async def post_validation(payload: dict) -> None:
                response = await http_client.post(
                    f"{base_url}/api/validations",
                    json={"executionId": payload["execution_id"], "agentId": payload["agent_id"]},
                )
                response.raise_for_status()

            handlers.register(KIND_REPUTATION_FEEDBACK, post_feedback)
            handlers.register(KIND_VALIDATION_ARTIFACT, post_validation)

        if chain is not None and settings.capital_vault_address:
            vault = settings.capital_vault_address

            async def record_fee(payload: dict) -> None:
                token = payload.get("token_address") or NATIVE_TOKEN_ADDRESS
                data = chain.encode_call(
                    vault,
                    CAPITAL_VAULT_ABI,
                    "recordTradingFee",
                    int(payload["erc8004_agent_id"]),
                    chain.checksum(token),
                    int(payload["trade_amount_wei"]),
                )
                tx_hash = await chain.send_transaction(to=vault, data=data)
                await chain.wait_for_receipt(tx_hash)
                logger.info(
                    f"Trading fee recorded on vault for agent {payload['erc8004_agent_id']}: {tx_hash}"
                )

            handlers.register(KIND_FEE_RECORD, record_fee)

        return handlers
