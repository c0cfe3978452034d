from __future__ import annotations
from uuid import UUID
import structlog
from reward_tracker.errors import ConflictError, NotFoundError, StateError, ValidationError
from reward_tracker.schemas.goal import (
    CustomGoal,
    GoalProgress,
    GoalPublic,
    PendingGoal,
    Redemption,
    RewardSummary,
    StudentSummary,
)
from reward_tracker.services.balance import BalanceLedger
from reward_tracker.services.base import Service

log = structlog.get_logger()

ACTIVE_STATUSES = ("pending", "approved")

# allowed transitions: target -> source
TRANSITIONS = {
    "approved": "pending",
    "rejected": "pending",
    "completed": "approved",
}


def compute_progress(balance: int, goal: GoalPublic) -> float:
    """Share of the goal's frozen target cost already saved, clamped to [0, 1]."""
    if goal.target_cost <= 0:
        raise ValidationError("goal target cost must be positive")
    return max(0.0, min(balance / goal.target_cost, 1.0))


def progress_view(balance: int, goal: GoalPublic) -> GoalProgress:
    ratio = compute_progress(balance, goal)
    return GoalProgress(
        goal=goal,
        balance=balance,
        ratio=ratio,
        percent=round(ratio * 100),
        dollars_needed=max(goal.target_cost - balance, 0),
        reached=ratio >= 1.0,
    )


def _summary(reward: dict | None) -> RewardSummary | None:
    if not reward:
        return None
    return RewardSummary(
        id=reward["id"],
        name=reward["name"],
        description=reward.get("description"),
        cost=reward["cost"],
        image_url=reward.get("image_url"),
    )


class GoalLedger(Service):
    """Submission, approval and progress of a student's savings goal."""

    async def _active(self, student_id) -> dict | None:
        rows = await self._read(
            lambda: self.rows.select(
                "goals",
                eq={"student_id": student_id},
                in_={"status": ACTIVE_STATUSES},
                order_by="created_at",
                descending=True,
                limit=1,
            ),
            "active goal lookup",
        )
        return rows[0] if rows else None

    async def _with_rewards(self, goals: list[dict]) -> list[GoalPublic]:
        reward_ids = sorted({str(g["reward_id"]) for g in goals if g.get("reward_id")})
        rewards: dict[str, dict] = {}
        if reward_ids:
            rows = await self._read(lambda: self.rows.select("rewards", in_={"id": reward_ids}), "goal rewards")
            rewards = {str(r["id"]): r for r in rows}
        out = []
        for g in goals:
            reward = rewards.get(str(g["reward_id"])) if g.get("reward_id") else None
            out.append(GoalPublic.model_validate({**g, "reward": _summary(reward)}))
        return out

    async def get(self, goal_id) -> GoalPublic:
        row = await self._read(lambda: self.rows.select_one("goals", eq={"id": goal_id}), "goal lookup")
        if row is None:
            raise NotFoundError("Goal not found")
        return (await self._with_rewards([row]))[0]

    async def current_goal(self, student_id) -> GoalPublic | None:
        row = await self._active(student_id)
        if row is None:
            return None
        return (await self._with_rewards([row]))[0]

    async def submit_goal(
        self,
        student_id,
        *,
        reward_id: UUID | str | None = None,
        custom: CustomGoal | None = None,
        link: str | None = None,
    ) -> GoalPublic:
        if (reward_id is None) == (custom is None):
            raise ValidationError("Choose either a catalog reward or a custom goal")
        if link and not link.startswith(("http://", "https://")):
            raise ValidationError("Goal link must be an http(s) URL")
        if await self._active(student_id) is not None:
            raise ConflictError("You already have an active goal. Complete it first!")

        row = {"student_id": student_id, "status": "pending", "goal_url": link or None}
        if reward_id is not None:
            reward = await self._read(lambda: self.rows.select_one("rewards", eq={"id": reward_id}), "reward lookup")
            if reward is None or not reward.get("available", True):
                raise NotFoundError("Reward not available")
            row.update(reward_id=reward["id"], target_cost=int(reward["cost"]))
        else:
            row.update(custom_name=custom.name, custom_description=custom.description, target_cost=custom.target_cost)

        try:
            created = await self._write(lambda: self.rows.insert("goals", row), "goal insert")
        except ConflictError:
            # a concurrent submission won the unique index on active goals
            raise ConflictError("You already have an active goal. Complete it first!")
        log.info("goal_submitted", goal_id=str(created["id"]), student_id=str(student_id), custom=custom is not None)
        return (await self._with_rewards([created]))[0]

    async def _transition(self, goal_id, target: str) -> GoalPublic:
        source = TRANSITIONS[target]
        goal = await self.get(goal_id)
        if goal.status == target:
            return goal
        if goal.status != source:
            raise StateError(f"Cannot move a {goal.status} goal to {target}")
        # compare-and-set on the source status
        updated = await self._write(
            lambda: self.rows.update("goals", {"status": target}, eq={"id": goal_id, "status": source}),
            f"goal {target}",
        )
        if not updated:
            goal = await self.get(goal_id)
            if goal.status == target:
                return goal
            raise StateError(f"Cannot move a {goal.status} goal to {target}")
        log.info("goal_transitioned", goal_id=str(goal_id), status=target)
        return (await self._with_rewards(updated))[0]

    async def approve_goal(self, goal_id) -> GoalPublic:
        return await self._transition(goal_id, "approved")

    async def reject_goal(self, goal_id) -> GoalPublic:
        return await self._transition(goal_id, "rejected")

    async def complete_goal(self, goal_id) -> GoalPublic:
        return await self._transition(goal_id, "completed")

    async def redeem_goal(self, goal_id, balances: BalanceLedger) -> Redemption:
        """Charge an approved goal's frozen cost to the student, then mark it completed."""
        goal = await self.get(goal_id)
        if goal.status != "approved":
            raise StateError(f"Only an approved goal can be redeemed; this one is {goal.status}")
        change = await balances.spend(goal.student_id, goal.target_cost, f"Redeemed: {goal.title}")
        completed = await self.complete_goal(goal_id)
        log.info("goal_redeemed", goal_id=str(goal_id), student_id=str(goal.student_id), amount=goal.target_cost)
        return Redemption(goal=completed, balance=change.balance, transaction=change.transaction)

    async def pending_goals(self) -> list[PendingGoal]:
        rows = await self._read(
            lambda: self.rows.select("goals", eq={"status": "pending"}, order_by="created_at", descending=True),
            "pending goals",
        )
        goals = await self._with_rewards(rows)
        student_ids = sorted({str(g.student_id) for g in goals})
        students: dict[str, dict] = {}
        if student_ids:
            srows = await self._read(lambda: self.rows.select("students", in_={"id": student_ids}), "goal students")
            students = {str(s["id"]): s for s in srows}
        out = []
        for g in goals:
            s = students.get(str(g.student_id))
            summary = StudentSummary(id=s["id"], name=s["name"], email=s["email"]) if s else None
            out.append(PendingGoal(goal=g, student=summary))
        return out

    async def progress(self, student_id, balance: int) -> GoalProgress | None:
        goal = await self.current_goal(student_id)
        if goal is None:
            return None
        return progress_view(balance, goal)
