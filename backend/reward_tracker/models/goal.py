from __future__ import annotations
import uuid
from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, DateTime, ForeignKey, Index, CheckConstraint, Text, Uuid, func, text
from reward_tracker.db import Base
from reward_tracker.models.account import _utcnow

class Goal(Base):
    """
    A student's savings goal: either a catalog reward (reward_id) or a custom
    goal (custom_name). target_cost is copied from the reward when the goal is
    created and does not follow later catalog price changes.

    Status flow: pending -> approved | rejected, approved -> completed.
    """
    __tablename__ = "goals"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("students.id", ondelete="CASCADE"), index=True, nullable=False)
    reward_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, ForeignKey("rewards.id", ondelete="SET NULL"), nullable=True)
    custom_name: Mapped[str | None] = mapped_column(String(120), nullable=True)
    custom_description: Mapped[str | None] = mapped_column(Text(), nullable=True)
    goal_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    target_cost: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, server_default=func.now(), nullable=False)

    __table_args__ = (
        CheckConstraint("target_cost > 0", name="ck_goals_target_cost_positive"),
        CheckConstraint("status IN ('pending','approved','rejected','completed')", name="ck_goals_status"),
        # One active (pending/approved) goal per student
        Index(
            "uq_goals_one_active_per_student",
            "student_id",
            unique=True,
            postgresql_where=text("status IN ('pending','approved')"),
            sqlite_where=text("status IN ('pending','approved')"),
        ),
    )
