from __future__ import annotations
from fastapi import APIRouter, Depends, Request
from reward_tracker.auth_deps import require_student
from reward_tracker.deps import get_policy, rows_for
from reward_tracker.schemas.goal import GoalCreate, GoalProgress, GoalPublic
from reward_tracker.services.balance import BalanceLedger
from reward_tracker.services.base import CallPolicy
from reward_tracker.services.goals import GoalLedger
from reward_tracker.session.store import SessionStore

router = APIRouter(prefix="/goals", tags=["goals"])

@router.get("/current", response_model=GoalProgress | None)
async def current_goal(request: Request, store: SessionStore = Depends(require_student), policy: CallPolicy = Depends(get_policy)):
    rows = rows_for(request, store)
    student_id = store.snapshot.principal.id
    balance = await BalanceLedger(rows, policy).balance(student_id)
    return await GoalLedger(rows, policy).progress(student_id, balance)

@router.post("", response_model=GoalPublic, status_code=201)
async def submit_goal(
    payload: GoalCreate,
    request: Request,
    store: SessionStore = Depends(require_student),
    policy: CallPolicy = Depends(get_policy),
):
    goals = GoalLedger(rows_for(request, store), policy)
    return await goals.submit_goal(
        store.snapshot.principal.id,
        reward_id=payload.reward_id,
        custom=payload.custom,
        link=payload.link,
    )
