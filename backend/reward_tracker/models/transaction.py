from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, DateTime, ForeignKey, CheckConstraint, Uuid, func
from reward_tracker.db import Base
from reward_tracker.models.account import _utcnow

class Transaction(Base):
    """
    Append-only balance log. amount is stored positive; the sign comes from type:
      - earned          => +amount
      - spent | removed => -amount
    Rows are written only by the credit/debit procedures, in the same DB
    transaction that moves students.balance.
    """
    __tablename__ = "transactions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("students.id", ondelete="CASCADE"), index=True, nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)  # earned | spent | removed
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
        CheckConstraint("type IN ('earned','spent','removed')", name="ck_transactions_type"),
    )
