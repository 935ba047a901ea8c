"""Controllers for balance ledger CLI commands."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from photo_jobs.billing.ledger import SqlBalanceLedger
from photo_jobs.config import Settings
from photo_jobs.storage.alembic_runner import upgrade_head
from photo_jobs.storage.common import build_sqlite_engine

DEFAULT_BUSY_TIMEOUT_MS = 5000


@dataclass(slots=True)
class LedgerCreditCommand:
    """CLI input for a balance top-up."""

    db_path: Path | None
    user_id: str
    amount: float
    description: str


@dataclass(slots=True)
class LedgerBalanceCommand:
    """CLI input for balance inspection."""

    db_path: Path | None
    user_id: str
    entries: int


class LedgerCliController:
    """Operator access to user balances."""

    def credit(self, command: LedgerCreditCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _ledger(settings) as ledger:
            balance = ledger.credit(
                command.user_id,
                command.amount,
                description=command.description,
            )
        return [f"Credited {command.amount} to {command.user_id}, balance={balance}"]

    def balance(self, command: LedgerBalanceCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _ledger(settings) as ledger:
            balance = ledger.balance(command.user_id)
            entries = ledger.entries(command.user_id, limit=command.entries)

        lines = [f"Balance for {command.user_id}: {balance}"]
        for entry in entries:
            lines.append(
                f"  {entry.created_at.isoformat()} {entry.entry_type} {entry.amount} "
                f"ref={entry.reference_id} {entry.description}",
            )
        return lines


@contextmanager
def _ledger(settings: Settings) -> Iterator[SqlBalanceLedger]:
    upgrade_head(settings.db_path)
    engine = build_sqlite_engine(db_path=settings.db_path, busy_timeout_ms=DEFAULT_BUSY_TIMEOUT_MS)
    try:
        yield SqlBalanceLedger(engine)
    finally:
        engine.dispose()
