from __future__ import annotations
from uuid import UUID
from fastapi import APIRouter, Depends, Request, Response
from reward_tracker.auth_deps import require_admin
from reward_tracker.deps import get_backend, get_policy, get_submit_guard, rows_for
from reward_tracker.schemas.goal import GoalPublic, PendingGoal, Redemption
from reward_tracker.schemas.reward import RewardCreate, RewardPublic, RewardUpdate
from reward_tracker.schemas.student import StudentCreate, StudentPublic
from reward_tracker.schemas.transaction import BalanceChange, BalanceChangeRequest, Reconciliation, TransactionPublic
from reward_tracker.services.balance import BalanceLedger, SubmitGuard
from reward_tracker.services.base import CallPolicy
from reward_tracker.services.catalog import RewardCatalog
from reward_tracker.services.goals import GoalLedger
from reward_tracker.services.students import StudentDirectory
from reward_tracker.session.store import SessionStore

router = APIRouter(prefix="/admin", tags=["admin"])

# ---- students ----

@router.get("/students", response_model=list[StudentPublic])
async def list_students(request: Request, store: SessionStore = Depends(require_admin), policy: CallPolicy = Depends(get_policy)):
    return await StudentDirectory(get_backend(request), rows_for(request, store), policy).list_students()

@router.post("/students", response_model=StudentPublic, status_code=201)
async def create_student(
    payload: StudentCreate,
    request: Request,
    store: SessionStore = Depends(require_admin),
    policy: CallPolicy = Depends(get_policy),
):
    return await StudentDirectory(get_backend(request), rows_for(request, store), policy).provision_student(payload)

@router.delete("/students/{student_id}", status_code=204)
async def delete_student(
    student_id: UUID,
    request: Request,
    store: SessionStore = Depends(require_admin),
    policy: CallPolicy = Depends(get_policy),
):
    await StudentDirectory(get_backend(request), rows_for(request, store), policy).delete_student(student_id)
    return Response(status_code=204)

# ---- balance ----

@router.post("/students/{student_id}/credit", response_model=BalanceChange)
async def credit_student(
    student_id: UUID,
    payload: BalanceChangeRequest,
    request: Request,
    store: SessionStore = Depends(require_admin),
    policy: CallPolicy = Depends(get_policy),
    guard: SubmitGuard = Depends(get_submit_guard),
):
    key = ("credit", store.snapshot.principal.id, student_id, payload.amount, payload.description)
    async with guard.hold(key):
        return await BalanceLedger(rows_for(request, store), policy).credit(student_id, payload.amount, payload.description)

@router.post("/students/{student_id}/debit", response_model=BalanceChange)
async def debit_student(
    student_id: UUID,
    payload: BalanceChangeRequest,
    request: Request,
    store: SessionStore = Depends(require_admin),
    policy: CallPolicy = Depends(get_policy),
    guard: SubmitGuard = Depends(get_submit_guard),
):
    key = ("debit", store.snapshot.principal.id, student_id, payload.amount, payload.description)
    async with guard.hold(key):
        return await BalanceLedger(rows_for(request, store), policy).debit(student_id, payload.amount, payload.description)

@router.get("/students/{student_id}/transactions", response_model=list[TransactionPublic])
async def student_transactions(
    student_id: UUID,
    request: Request,
    limit: int = 20,
    store: SessionStore = Depends(require_admin),
    policy: CallPolicy = Depends(get_policy),
):
    return await BalanceLedger(rows_for(request, store), policy).history(student_id, limit=limit)

@router.get("/students/{student_id}/reconcile", response_model=Reconciliation)
async def reconcile_student(
    student_id: UUID,
    request: Request,
    store: SessionStore = Depends(require_admin),
    policy: CallPolicy = Depends(get_policy),
):
    return await BalanceLedger(rows_for(request, store), policy).reconcile(student_id)

# ---- goals ----

@router.get("/goals/pending", response_model=list[PendingGoal])
async def pending_goals(request: Request, store: SessionStore = Depends(require_admin), policy: CallPolicy = Depends(get_policy)):
    return await GoalLedger(rows_for(request, store), policy).pending_goals()

@router.post("/goals/{goal_id}/approve", response_model=GoalPublic)
async def approve_goal(goal_id: UUID, request: Request, store: SessionStore = Depends(require_admin), policy: CallPolicy = Depends(get_policy)):
    return await GoalLedger(rows_for(request, store), policy).approve_goal(goal_id)

@router.post("/goals/{goal_id}/reject", response_model=GoalPublic)
async def reject_goal(goal_id: UUID, request: Request, store: SessionStore = Depends(require_admin), policy: CallPolicy = Depends(get_policy)):
    return await GoalLedger(rows_for(request, store), policy).reject_goal(goal_id)

@router.post("/goals/{goal_id}/complete", response_model=GoalPublic)
async def complete_goal(goal_id: UUID, request: Request, store: SessionStore = Depends(require_admin), policy: CallPolicy = Depends(get_policy)):
    return await GoalLedger(rows_for(request, store), policy).complete_goal(goal_id)

@router.post("/goals/{goal_id}/redeem", response_model=Redemption)
async def redeem_goal(
    goal_id: UUID,
    request: Request,
    store: SessionStore = Depends(require_admin),
    policy: CallPolicy = Depends(get_policy),
    guard: SubmitGuard = Depends(get_submit_guard),
):
    rows = rows_for(request, store)
    # one redemption per goal at a time, whoever submits it
    async with guard.hold(("redeem", goal_id)):
        return await GoalLedger(rows, policy).redeem_goal(goal_id, BalanceLedger(rows, policy))

# ---- rewards ----

@router.get("/rewards", response_model=list[RewardPublic])
async def list_rewards(request: Request, store: SessionStore = Depends(require_admin), policy: CallPolicy = Depends(get_policy)):
    return await RewardCatalog(rows_for(request, store), policy).list_all()

@router.post("/rewards", response_model=RewardPublic, status_code=201)
async def create_reward(
    payload: RewardCreate,
    request: Request,
    store: SessionStore = Depends(require_admin),
    policy: CallPolicy = Depends(get_policy),
):
    return await RewardCatalog(rows_for(request, store), policy).create(payload)

@router.patch("/rewards/{reward_id}", response_model=RewardPublic)
async def update_reward(
    reward_id: UUID,
    payload: RewardUpdate,
    request: Request,
    store: SessionStore = Depends(require_admin),
    policy: CallPolicy = Depends(get_policy),
):
    return await RewardCatalog(rows_for(request, store), policy).update(reward_id, payload)

@router.delete("/rewards/{reward_id}", status_code=204)
async def delete_reward(reward_id: UUID, request: Request, store: SessionStore = Depends(require_admin), policy: CallPolicy = Depends(get_policy)):
    await RewardCatalog(rows_for(request, store), policy).delete(reward_id)
    return Response(status_code=204)
