from __future__ import annotations
from pydantic import BaseModel, Field
from reward_tracker.schemas.goal import GoalProgress, PendingGoal
from reward_tracker.schemas.reward import RewardPublic
from reward_tracker.schemas.student import StudentPublic
from reward_tracker.schemas.transaction import TransactionPublic

class StudentDashboard(BaseModel):
    student: StudentPublic | None = None
    goal: GoalProgress | None = None
    recent_transactions: list[TransactionPublic] = Field(default_factory=list)
    errors: dict[str, str] = Field(default_factory=dict)

class AdminOverview(BaseModel):
    students: list[StudentPublic] = Field(default_factory=list)
    pending_goals: list[PendingGoal] = Field(default_factory=list)
    rewards: list[RewardPublic] = Field(default_factory=list)
    errors: dict[str, str] = Field(default_factory=dict)
