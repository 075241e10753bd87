"""Repository layer for database operations"""

from .agent import AgentRepository
from .delegation import DelegationRepository
from .execution import ExecutionRepository
from .holding import HoldingRepository
from .outbox import OutboxRepository
from .proposal import TradeProposalRepository
from .trade_memory import TradeMemoryRepository

__all__ = [
    "AgentRepository",
    "DelegationRepository",
    "ExecutionRepository",
    "HoldingRepository",
    "OutboxRepository",
    "TradeMemoryRepository",
    "TradeProposalRepository",
]
