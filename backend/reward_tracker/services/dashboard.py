from __future__ import annotations
import asyncio
from typing import Awaitable
import structlog
from reward_tracker.errors import AppError
from reward_tracker.schemas.dashboard import AdminOverview, StudentDashboard
from reward_tracker.services.balance import BalanceLedger
from reward_tracker.services.catalog import RewardCatalog
from reward_tracker.services.goals import GoalLedger, progress_view
from reward_tracker.services.students import StudentDirectory

log = structlog.get_logger()

GENERIC_FAILURE = "Something went wrong loading this section. Please try again."


async def _gather(parts: dict[str, Awaitable]) -> tuple[dict, dict[str, str]]:
    """Run independent fetches together; a failed part is reported, the rest still load."""
    names = list(parts)
    results = await asyncio.gather(*parts.values(), return_exceptions=True)
    values: dict = {}
    errors: dict[str, str] = {}
    for name, result in zip(names, results):
        if isinstance(result, AppError):
            log.warning("section_failed", section=name, error=result.message, code=result.code)
            errors[name] = result.message
        elif isinstance(result, Exception):
            log.error("section_failed", section=name, exc_info=result)
            errors[name] = GENERIC_FAILURE
        elif isinstance(result, BaseException):
            raise result
        else:
            values[name] = result
    return values, errors


async def student_dashboard(
    student_id, *, directory: StudentDirectory, goals: GoalLedger, ledger: BalanceLedger
) -> StudentDashboard:
    values, errors = await _gather({
        "student": directory.get_student(student_id),
        "goal": goals.current_goal(student_id),
        "recent_transactions": ledger.history(student_id, limit=5),
    })
    student = values.get("student")
    goal = values.get("goal")
    return StudentDashboard(
        student=student,
        goal=progress_view(student.balance, goal) if student is not None and goal is not None else None,
        recent_transactions=values.get("recent_transactions", []),
        errors=errors,
    )


async def admin_overview(*, directory: StudentDirectory, goals: GoalLedger, catalog: RewardCatalog) -> AdminOverview:
    values, errors = await _gather({
        "students": directory.list_students(),
        "pending_goals": goals.pending_goals(),
        "rewards": catalog.list_all(),
    })
    return AdminOverview(errors=errors, **values)
