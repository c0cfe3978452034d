from __future__ import annotations
import contextlib
from typing import AsyncIterator, Hashable
import structlog
from reward_tracker.errors import ConflictError, NotFoundError, ValidationError
from reward_tracker.schemas.transaction import BalanceChange, Reconciliation, TransactionPublic
from reward_tracker.services.base import Service

log = structlog.get_logger()


def _check(amount, description: str) -> str:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("Amount must be a positive whole number")
    description = (description or "").strip()
    if not description:
        raise ValidationError("A description is required")
    return description


class SubmitGuard:
    """
    Refuses a submission while an identical one is still in flight.

    Keys are whatever identifies "the same submission" to the caller, e.g.
    (actor, student, amount, description).
    """

    def __init__(self) -> None:
        self._in_flight: set[Hashable] = set()

    def busy(self, key: Hashable) -> bool:
        return key in self._in_flight

    @contextlib.asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        if key in self._in_flight:
            raise ConflictError("This request is already being processed")
        self._in_flight.add(key)
        try:
            yield
        finally:
            self._in_flight.discard(key)


class BalanceLedger(Service):
    """Credits and debits go through the backend's atomic procedures only."""

    async def balance(self, student_id) -> int:
        row = await self._read(lambda: self.rows.select_one("students", eq={"id": student_id}), "student balance")
        if row is None:
            raise NotFoundError("Student not found")
        return int(row["balance"])

    async def credit(self, student_id, amount: int, description: str) -> BalanceChange:
        description = _check(amount, description)
        result = await self._write(
            lambda: self.rows.credit_balance(str(student_id), amount, description), "credit balance"
        )
        change = BalanceChange.model_validate(result)
        log.info("balance_credited", student_id=str(student_id), amount=amount, balance=change.balance)
        return change

    async def debit(self, student_id, amount: int, description: str, *, kind: str = "removed") -> BalanceChange:
        if kind not in ("removed", "spent"):
            raise ValidationError("Debit kind must be removed or spent")
        description = _check(amount, description)
        result = await self._write(
            lambda: self.rows.debit_balance(str(student_id), amount, description, kind=kind), "debit balance"
        )
        change = BalanceChange.model_validate(result)
        log.info("balance_debited", student_id=str(student_id), amount=amount, kind=kind, balance=change.balance)
        return change

    async def spend(self, student_id, amount: int, description: str) -> BalanceChange:
        """Debit for a redeemed reward."""
        return await self.debit(student_id, amount, description, kind="spent")

    async def history(self, student_id, limit: int | None = 20) -> list[TransactionPublic]:
        rows = await self._read(
            lambda: self.rows.select(
                "transactions", eq={"student_id": student_id}, order_by="created_at", descending=True, limit=limit
            ),
            "transaction history",
        )
        return [TransactionPublic.model_validate(r) for r in rows]

    async def reconcile(self, student_id) -> Reconciliation:
        stored = await self.balance(student_id)
        txs = await self.history(student_id, limit=None)
        ledger = sum(t.signed_amount for t in txs)
        rec = Reconciliation(student_id=student_id, stored_balance=stored, ledger_balance=ledger, transactions=len(txs))
        if not rec.consistent:
            log.error("balance_mismatch", student_id=str(student_id), stored=stored, ledger=ledger)
        return rec
