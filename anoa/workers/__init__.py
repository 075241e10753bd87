"""
Background workers.

- AgentScheduler: periodic evaluation and auto-execution of active agents
- OutboxWorker: best-effort side effects queued by settlement
"""

from .outbox_worker import OutboxWorker
from .scheduler import AgentCycleResult, AgentScheduler, build_memory_loader, build_token_pool

__all__ = [
    "AgentCycleResult",
    "AgentScheduler",
    "OutboxWorker",
    "build_memory_loader",
    "build_token_pool",
]
