"""
Trade execution service.

Runs one approved signal through its whole lifecycle:

    EXECUTING record (committed) -> reference price -> router -> settlement

The EXECUTING record is committed before anything is broadcast, so every
attempted trade leaves a ledger entry. Settlement runs in a single
transaction with its outbox tasks.
"""

import asyncio
import logging
import uuid
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import AppError, ErrorCode, LedgerError, sanitize_error_message
from ..db.repositories import ExecutionRepository
from ..models.signal import TradeSignal
from ..traders.base import TradeError, VenueName
from .execution_router import ExecutionRouter, RouteResult, RoutingFailedError
from .pnl_service import PnLService, SettlementResult
from .price_feed import PriceFeed

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AbstractAsyncContextManager[AsyncSession]]


@dataclass
class TradeOutcome:
    execution_id: uuid.UUID
    success: bool
    tx_hash: Optional[str] = None
    pnl_usd: float = 0.0
    error: Optional[str] = None
    route: Optional[RouteResult] = None


class TradeExecutionService:
    """
    Usage:
        service = TradeExecutionService(router, price_feed, AsyncSessionLocal)
        outcome = await service.execute_signal(agent_id, signal, slippage_bps=100)
    """

    def __init__(
        self,
        router: ExecutionRouter,
        price_feed: PriceFeed,
        session_factory: SessionFactory,
    ):
        self.router = router
        self.price_feed = price_feed
        self.session_factory = session_factory

    async def _create_execution(self, agent_id: uuid.UUID, signal: TradeSignal) -> uuid.UUID:
        async with self.session_factory() as session:
            execution = await ExecutionRepository(session).create(
                agent_id=agent_id,
                type=signal.execution_type.value,
                params=signal.to_params(),
            )
            await session.commit()
            return execution.id

    async def _fail(
        self,
        execution_id: uuid.UUID,
        agent_id: uuid.UUID,
        signal: TradeSignal,
        error: Exception,
    ) -> TradeOutcome:
        error_msg = sanitize_error_message(error, "Trade execution failed")
        result = None
        if isinstance(error, TradeError):
            result = {"error_code": error.code, **error.details}
            if isinstance(error, RoutingFailedError):
                result["tx_hash"] = error.tx_hash
        return await self._record_failure(execution_id, agent_id, signal, error_msg, result)

    async def _record_failure(
        self,
        execution_id: uuid.UUID,
        agent_id: uuid.UUID,
        signal: TradeSignal,
        error_msg: str,
        result: Optional[dict] = None,
    ) -> TradeOutcome:
        async with self.session_factory() as session:
            await PnLService(session).settle_failure(
                execution_id, agent_id, signal, error_msg, result=result
            )
            await session.commit()
        return TradeOutcome(execution_id=execution_id, success=False, error=error_msg)

    async def _settle(
        self,
        execution_id: uuid.UUID,
        agent_id: uuid.UUID,
        signal: TradeSignal,
        route: RouteResult,
        mon_price: float,
    ) -> SettlementResult:
        async with self.session_factory() as session:
            settlement = await PnLService(session).settle_success(
                execution_id, agent_id, signal, route, mon_price
            )
            await session.commit()
        return settlement

    async def execute_signal(
        self,
        agent_id: uuid.UUID,
        signal: TradeSignal,
        slippage_bps: int,
        preference: Optional[VenueName] = None,
    ) -> TradeOutcome:
        """
        Execute and settle one signal.

        Returns a TradeOutcome for both success and routed failure. A
        cancellation before confirmation marks the record FAILED and is
        re-raised; settlement of a confirmed swap is shielded from it.

        Raises:
            LedgerError: a confirmed swap could not be settled
        """
        execution_id = await self._create_execution(agent_id, signal)
        logger.info(
            f"Execution {execution_id}: {signal.action.value} {signal.amount} "
            f"{signal.token_symbol} for agent {agent_id}"
        )

        # Priced before broadcasting: a confirmed swap must always be settleable
        try:
            mon_price = await self.price_feed.price_of("MON")
            route = await self.router.execute(
                signal.action,
                signal.token_address,
                signal.amount,
                slippage_bps,
                preference=preference,
            )
        except asyncio.CancelledError:
            logger.warning(f"Execution {execution_id} cancelled before confirmation")
            await asyncio.shield(
                self._record_failure(
                    execution_id,
                    agent_id,
                    signal,
                    "Execution cancelled before confirmation",
                    result={"error_code": ErrorCode.EXECUTION_CANCELLED.value},
                )
            )
            raise
        except (TradeError, AppError, ValueError) as e:
            logger.warning(f"Execution {execution_id} failed: {e}")
            return await self._fail(execution_id, agent_id, signal, e)
        except Exception as e:
            logger.exception(f"Execution {execution_id} failed unexpectedly: {e}")
            return await self._fail(execution_id, agent_id, signal, e)

        try:
            settlement = await asyncio.shield(
                self._settle(execution_id, agent_id, signal, route, mon_price)
            )
        except Exception as e:
            logger.critical(
                f"Settlement of execution {execution_id} failed after confirmed tx "
                f"{route.tx_hash}: {e}"
            )
            raise LedgerError(
                f"Settlement failed for confirmed tx {route.tx_hash}",
                code=ErrorCode.LEDGER_ERROR,
                details={"execution_id": str(execution_id), "tx_hash": route.tx_hash},
                internal_message=str(e),
            ) from e

        return TradeOutcome(
            execution_id=execution_id,
            success=True,
            tx_hash=route.tx_hash,
            pnl_usd=settlement.pnl_usd,
            route=route,
        )
