"""SQLModel ORM tables for the task queue and balance ledger."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text
from sqlmodel import Field, SQLModel


class TaskRecord(SQLModel, table=True):
    __tablename__ = "tasks"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_tasks_eligibility", "status", "next_eligible_at", "created_at"),)

    task_id: str = Field(primary_key=True)
    task_type: str = Field(index=True)
    payload_json: str = Field(sa_column=Column(Text, nullable=False))
    status: str = Field(index=True)
    attempt_count: int = Field(default=0)
    max_attempts: int = Field(default=3)
    cost: float = Field(default=0.0)
    user_id: str | None = Field(default=None, index=True)
    recipient_id: str | None = None
    photo_id: str | None = None
    next_eligible_at: datetime | None = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True)),
    )
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    completed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    result_locator: str | None = Field(default=None, sa_column=Column(Text))
    error_kind: str | None = None
    error_message: str | None = Field(default=None, sa_column=Column(Text))
    error_detail: str | None = Field(default=None, sa_column=Column(Text))
    charged_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    charge_waived: bool = Field(default=False)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class TaskEvent(SQLModel, table=True):
    __tablename__ = "task_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_task_events_task_time", "task_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("tasks.task_id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    event_type: str = Field(index=True)
    status_from: str | None = None
    status_to: str | None = None
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class Account(SQLModel, table=True):
    __tablename__ = "accounts"  # type: ignore[bad-override]

    user_id: str = Field(primary_key=True)
    balance: float = Field(default=0.0)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class LedgerEntry(SQLModel, table=True):
    __tablename__ = "ledger_entries"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    user_id: str = Field(
        sa_column=Column(
            ForeignKey("accounts.user_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    entry_type: str
    amount: float
    reference_id: str = Field(unique=True)
    description: str = Field(sa_column=Column(Text, nullable=False))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
