"""
SQLAlchemy ORM Models

Ledger schema for the ANOA trading core. Only the fields the pipeline
reads or writes are modelled:
- Agent: trading identity, limits and rolling performance metrics
- Execution: one attempted trade (EXECUTING -> SUCCESS | FAILED)
- Delegation: third-party capital sharing in an agent's PnL
- TokenHolding: per-agent cost basis for each token
- OutboxTask: best-effort side effects queued inside the settlement transaction
- TradeMemory: compact outcome records kept for later strategy review
- TradeProposal: a signal of a manual agent awaiting human approval
"""

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all ORM models"""
    pass


class DelegationStatus(str, Enum):
    ACTIVE = "ACTIVE"
    WITHDRAWN = "WITHDRAWN"


class OutboxStatus(str, Enum):
    PENDING = "PENDING"
    DONE = "DONE"
    FAILED = "FAILED"


class ProposalStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"    # approved; execution failed or still running
    EXECUTED = "EXECUTED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


class AgentDB(Base):
    """
    Autonomous trading agent.

    Runs exactly one strategy family at one risk tier. Capital is MON
    denominated; total_pnl and the rolling metrics are written only by
    settlement.
    """
    __tablename__ = "agents"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    strategy: Mapped[str] = mapped_column(String(20), nullable=False)  # MOMENTUM, YIELD, ...
    risk_level: Mapped[str] = mapped_column(String(10), default="medium")

    # Wallet the agent trades from
    wallet_address: Mapped[Optional[str]] = mapped_column(String(42), nullable=True)
    # ERC-8004 identity token id, target of reputation feedback
    erc8004_agent_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Status
    status: Mapped[str] = mapped_column(
        String(20),
        default="ACTIVE",
        index=True
    )  # ACTIVE, PAUSED, STOPPED, ERROR
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    auto_execute: Mapped[bool] = mapped_column(Boolean, default=False)

    # Capital & limits
    total_capital: Mapped[float] = mapped_column(Float, default=0.0)
    daily_loss_limit: Mapped[float] = mapped_column(Float, default=10.0)  # percent
    max_daily_trades: Mapped[int] = mapped_column(Integer, default=50)
    fee_bps: Mapped[int] = mapped_column(Integer, default=2000)  # delegator performance fee

    # Performance metrics
    total_pnl: Mapped[float] = mapped_column(Float, default=0.0)
    max_drawdown: Mapped[float] = mapped_column(Float, default=0.0)  # fraction 0-1
    sharpe_ratio: Mapped[float] = mapped_column(Float, default=0.0)
    win_rate: Mapped[float] = mapped_column(Float, default=0.0)  # percent
    total_trades: Mapped[int] = mapped_column(Integer, default=0)

    # Scheduling
    last_run_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False
    )

    # Relationships
    executions: Mapped[list["ExecutionDB"]] = relationship(
        back_populates="agent",
        cascade="all, delete-orphan"
    )
    delegations: Mapped[list["DelegationDB"]] = relationship(
        back_populates="agent",
        cascade="all, delete-orphan"
    )
    holdings: Mapped[list["TokenHoldingDB"]] = relationship(
        back_populates="agent",
        cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Agent {self.name} {self.strategy}/{self.risk_level} status={self.status}>"


class ExecutionDB(Base):
    """
    One attempted trade.

    EXECUTING is the only non-terminal status. Retries happen inside the
    execution router, so a record is finalized exactly once.
    """
    __tablename__ = "executions"

    __table_args__ = (
        Index("ix_executions_agent_status_time", "agent_id", "status", "executed_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    agent_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("agents.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    type: Mapped[str] = mapped_column(String(10), nullable=False)  # BUY, SELL
    # Original signal inputs
    params: Mapped[dict] = mapped_column(JSON, default=dict)

    status: Mapped[str] = mapped_column(
        String(12),
        default="EXECUTING",
        index=True
    )  # EXECUTING -> SUCCESS | FAILED

    # Outcome
    tx_hash: Mapped[Optional[str]] = mapped_column(String(66), nullable=True)
    pnl_usd: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    gas_used: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    # Venue and amounts payload
    result: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    error_msg: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamps
    executed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    agent: Mapped["AgentDB"] = relationship(back_populates="executions")

    def __repr__(self) -> str:
        return f"<Execution {self.type} status={self.status} agent={self.agent_id}>"


class DelegationDB(Base):
    """
    Capital contributed by a third party to an agent.

    accumulated_pnl changes only in settlement, pro-rata to
    amount / agent.total_capital at the time of each trade.
    """
    __tablename__ = "delegations"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    agent_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("agents.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    delegator: Mapped[str] = mapped_column(String(42), nullable=False, index=True)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    status: Mapped[str] = mapped_column(
        String(12),
        default=DelegationStatus.ACTIVE.value,
        index=True
    )
    accumulated_pnl: Mapped[float] = mapped_column(Float, default=0.0)
    lockup_ends_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    on_chain_delegation_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False
    )

    agent: Mapped["AgentDB"] = relationship(back_populates="delegations")


class TokenHoldingDB(Base):
    """
    Weighted-average cost basis of one token held by one agent.

    Prices are MON per token.
    """
    __tablename__ = "token_holdings"

    __table_args__ = (
        UniqueConstraint("agent_id", "token_address", name="uq_token_holdings_agent_token"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    agent_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("agents.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    token_address: Mapped[str] = mapped_column(String(42), nullable=False)  # lowercase
    symbol: Mapped[str] = mapped_column(String(20), default="UNKNOWN")
    balance: Mapped[float] = mapped_column(Float, default=0.0)
    avg_buy_price: Mapped[float] = mapped_column(Float, default=0.0)
    total_cost: Mapped[float] = mapped_column(Float, default=0.0)
    realized_pnl: Mapped[float] = mapped_column(Float, default=0.0)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False
    )

    agent: Mapped["AgentDB"] = relationship(back_populates="holdings")

    def __repr__(self) -> str:
        return f"<TokenHolding {self.symbol} balance={self.balance} avg={self.avg_buy_price}>"


class OutboxTaskDB(Base):
    """
    Persisted best-effort side effect.

    Written in the same transaction as the settlement that produced it and
    consumed by the outbox worker once that transaction has committed.
    """
    __tablename__ = "outbox_tasks"

    __table_args__ = (
        Index("ix_outbox_tasks_status_available", "status", "available_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    kind: Mapped[str] = mapped_column(String(50), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, default=dict)
    status: Mapped[str] = mapped_column(
        String(10),
        default=OutboxStatus.PENDING.value
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    available_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return f"<OutboxTask {self.kind} status={self.status} attempts={self.attempts}>"


class TradeMemoryDB(Base):
    """Outcome of a settled trade, kept for strategy review"""
    __tablename__ = "trade_memories"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    agent_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("agents.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    execution_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    strategy: Mapped[str] = mapped_column(String(20), nullable=False)
    action: Mapped[str] = mapped_column(String(10), nullable=False)
    token_address: Mapped[str] = mapped_column(String(42), nullable=False)
    token_symbol: Mapped[str] = mapped_column(String(20), default="UNKNOWN")
    confidence: Mapped[int] = mapped_column(Integer, default=0)
    pnl_usd: Mapped[float] = mapped_column(Float, default=0.0)
    outcome: Mapped[str] = mapped_column(String(10), default="flat")  # win, loss, flat
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False
    )


class TradeProposalDB(Base):
    """
    Trade proposed by a manual (non auto-execute) agent.

    PENDING until a human approves or rejects it, or until expires_at
    passes. Approval executes the stored signal through the normal
    execution pipeline.
    """
    __tablename__ = "trade_proposals"

    __table_args__ = (
        Index("ix_trade_proposals_agent_status", "agent_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    agent_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("agents.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    action: Mapped[str] = mapped_column(String(10), nullable=False)  # BUY, SELL
    token_address: Mapped[str] = mapped_column(String(42), nullable=False)
    token_symbol: Mapped[str] = mapped_column(String(20), default="UNKNOWN")
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    confidence: Mapped[int] = mapped_column(Integer, default=0)
    slippage_bps: Mapped[int] = mapped_column(Integer, default=100)
    # Full signal as produced by the strategy
    signal: Mapped[dict] = mapped_column(JSON, default=dict)
    proposed_by: Mapped[str] = mapped_column(String(50), default="system")

    status: Mapped[str] = mapped_column(
        String(10),
        default=ProposalStatus.PENDING.value,
        index=True
    )
    approved_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    rejected_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    execution_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)

    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<TradeProposal {self.action} {self.token_symbol} status={self.status}>"
