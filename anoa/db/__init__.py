"""Database module - SQLAlchemy models and database connection"""

from .database import (
    AsyncSessionLocal,
    Base,
    close_db,
    init_db,
    session_scope,
)
from .models import (
    AgentDB,
    DelegationDB,
    DelegationStatus,
    ExecutionDB,
    OutboxStatus,
    OutboxTaskDB,
    TokenHoldingDB,
    TradeMemoryDB,
)

__all__ = [
    "AsyncSessionLocal",
    "Base",
    "close_db",
    "init_db",
    "session_scope",
    "AgentDB",
    "DelegationDB",
    "DelegationStatus",
    "ExecutionDB",
    "OutboxStatus",
    "OutboxTaskDB",
    "TokenHoldingDB",
    "TradeMemoryDB",
]
