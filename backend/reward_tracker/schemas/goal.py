from __future__ import annotations
from datetime import datetime
from typing import Literal
from uuid import UUID
from pydantic import BaseModel, Field, field_validator, model_validator
from reward_tracker.schemas.transaction import TransactionPublic

GoalStatus = Literal["pending", "approved", "rejected", "completed"]

class CustomGoal(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    description: str | None = None
    target_cost: int = Field(gt=0, strict=True)

    @field_validator("name")
    @classmethod
    def _name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name is required")
        return v

class GoalCreate(BaseModel):
    reward_id: UUID | None = None
    custom: CustomGoal | None = None
    link: str | None = None

    @model_validator(mode="after")
    def _one_target(self):
        if (self.reward_id is None) == (self.custom is None):
            raise ValueError("choose either a catalog reward or a custom goal")
        return self

class RewardSummary(BaseModel):
    id: UUID | None = None
    name: str
    description: str | None = None
    cost: int
    image_url: str | None = None

class GoalPublic(BaseModel):
    id: UUID
    student_id: UUID
    reward_id: UUID | None = None
    custom_name: str | None = None
    custom_description: str | None = None
    goal_url: str | None = None
    target_cost: int
    status: GoalStatus
    created_at: datetime | None = None
    reward: RewardSummary | None = None

    @property
    def title(self) -> str:
        if self.reward is not None:
            return self.reward.name
        return self.custom_name or "Custom goal"

class GoalProgress(BaseModel):
    goal: GoalPublic
    balance: int
    ratio: float
    percent: int
    dollars_needed: int
    reached: bool

class StudentSummary(BaseModel):
    id: UUID
    name: str
    email: str

class PendingGoal(BaseModel):
    goal: GoalPublic
    student: StudentSummary | None = None

class Redemption(BaseModel):
    goal: GoalPublic
    balance: int
    transaction: TransactionPublic
