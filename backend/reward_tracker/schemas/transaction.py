from __future__ import annotations
from datetime import datetime
from typing import Literal
from uuid import UUID
from pydantic import BaseModel, Field, computed_field

TransactionType = Literal["earned", "spent", "removed"]

SIGN: dict[str, int] = {"earned": 1, "spent": -1, "removed": -1}

class TransactionPublic(BaseModel):
    id: UUID
    student_id: UUID
    amount: int
    type: TransactionType
    description: str
    created_at: datetime | None = None

    @property
    def signed_amount(self) -> int:
        return SIGN[self.type] * self.amount

class BalanceChangeRequest(BaseModel):
    # strict: JSON booleans and floats are refused instead of coerced
    amount: int = Field(strict=True)
    description: str = Field(max_length=255)

class BalanceChange(BaseModel):
    balance: int
    transaction: TransactionPublic

class Reconciliation(BaseModel):
    student_id: UUID
    stored_balance: int
    ledger_balance: int
    transactions: int

    @computed_field
    @property
    def consistent(self) -> bool:
        return self.stored_balance == self.ledger_balance
