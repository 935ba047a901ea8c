"""Per-user balance ledger with idempotent debits."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol
from uuid import uuid4

from sqlalchemy import update as sa_update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from photo_jobs.storage.common import to_db_datetime, to_utc_aware_datetime, utc_now
from photo_jobs.storage.sqlmodel_models import Account, LedgerEntry

logger = logging.getLogger(__name__)


class LedgerError(RuntimeError):
    """Base class for balance ledger failures."""


class AccountNotFoundError(LedgerError):
    """Raised when the user has no balance account."""


class InsufficientBalanceError(LedgerError):
    """Raised when a debit exceeds the available balance."""


class BalanceLedger(Protocol):
    """Debit capability used by the side-effect coordinator."""

    def debit(
        self,
        user_id: str,
        amount: float,
        *,
        reference_id: str,
        description: str,
    ) -> None: ...


@dataclass(slots=True)
class LedgerEntryView:
    entry_id: int
    user_id: str
    entry_type: str
    amount: float
    reference_id: str
    description: str
    created_at: datetime


class SqlBalanceLedger:
    """Ledger stored next to the task tables in the same SQLite database."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def debit(
        self,
        user_id: str,
        amount: float,
        *,
        reference_id: str,
        description: str,
    ) -> None:
        """Subtract ``amount`` once per ``reference_id``.

        A repeated reference is a no-op, so a debit that is retried after an
        ambiguous failure can never charge twice.
        """

        if amount <= 0:
            raise ValueError("Debit amount must be positive.")
        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            if self._entry_exists(session, reference_id):
                logger.info("Debit %s already applied, skipping", reference_id)
                return
            account = session.exec(
                select(Account).where(Account.user_id == user_id),
            ).one_or_none()
            if account is None:
                raise AccountNotFoundError(f"User not found: {user_id}")

            result = session.exec(
                sa_update(Account)
                .where(
                    col(Account.user_id) == user_id,
                    col(Account.balance) >= amount,
                )
                .values(balance=col(Account.balance) - amount, updated_at=now),
            )
            if result.rowcount != 1:
                session.rollback()
                raise InsufficientBalanceError(
                    f"Insufficient balance for {user_id}: need {amount}, have {account.balance}",
                )
            session.add(
                LedgerEntry(
                    user_id=user_id,
                    entry_type="debit",
                    amount=amount,
                    reference_id=reference_id,
                    description=description,
                    created_at=now,
                ),
            )
            try:
                session.commit()
            except IntegrityError:
                # A concurrent debit with the same reference won the race.
                session.rollback()
                logger.info("Debit %s applied concurrently, skipping", reference_id)

    def credit(
        self,
        user_id: str,
        amount: float,
        *,
        reference_id: str | None = None,
        description: str = "Balance top-up",
    ) -> float:
        """Add funds, creating the account on first use. Returns the new balance."""

        if amount <= 0:
            raise ValueError("Credit amount must be positive.")
        now = to_db_datetime(utc_now())
        reference = reference_id or f"credit:{uuid4()}"
        with Session(self.engine) as session:
            if self._entry_exists(session, reference):
                return self._balance(session, user_id)
            account = session.exec(
                select(Account).where(Account.user_id == user_id),
            ).one_or_none()
            if account is None:
                account = Account(user_id=user_id, balance=0.0, created_at=now, updated_at=now)
            account.balance += amount
            account.updated_at = now
            session.add(account)
            session.add(
                LedgerEntry(
                    user_id=user_id,
                    entry_type="credit",
                    amount=amount,
                    reference_id=reference,
                    description=description,
                    created_at=now,
                ),
            )
            session.commit()
            return account.balance

    def balance(self, user_id: str) -> float:
        with Session(self.engine) as session:
            return self._balance(session, user_id)

    def entries(self, user_id: str, *, limit: int = 50) -> list[LedgerEntryView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(LedgerEntry)
                .where(LedgerEntry.user_id == user_id)
                .order_by(col(LedgerEntry.created_at).desc(), col(LedgerEntry.id).desc())
                .limit(limit),
            ).all()
        return [
            LedgerEntryView(
                entry_id=row.id or 0,
                user_id=row.user_id,
                entry_type=row.entry_type,
                amount=row.amount,
                reference_id=row.reference_id,
                description=row.description,
                created_at=to_utc_aware_datetime(row.created_at),
            )
            for row in rows
        ]

    @staticmethod
    def _entry_exists(session: Session, reference_id: str) -> bool:
        return (
            session.exec(
                select(LedgerEntry.id).where(LedgerEntry.reference_id == reference_id),
            ).first()
            is not None
        )

    @staticmethod
    def _balance(session: Session, user_id: str) -> float:
        account = session.exec(select(Account).where(Account.user_id == user_id)).one_or_none()
        if account is None:
            raise AccountNotFoundError(f"User not found: {user_id}")
        return account.balance
