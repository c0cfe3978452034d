from __future__ import annotations
from fastapi import APIRouter, Depends, Request
from reward_tracker.auth_deps import require_admin, require_student
from reward_tracker.deps import get_backend, get_policy, rows_for
from reward_tracker.schemas.dashboard import AdminOverview, StudentDashboard
from reward_tracker.services.balance import BalanceLedger
from reward_tracker.services.base import CallPolicy
from reward_tracker.services.catalog import RewardCatalog
from reward_tracker.services.dashboard import admin_overview, student_dashboard
from reward_tracker.services.goals import GoalLedger
from reward_tracker.services.students import StudentDirectory
from reward_tracker.session.store import SessionStore

router = APIRouter(tags=["dashboard"])

@router.get("/dashboard", response_model=StudentDashboard)
async def get_dashboard(request: Request, store: SessionStore = Depends(require_student), policy: CallPolicy = Depends(get_policy)):
    rows = rows_for(request, store)
    return await student_dashboard(
        store.snapshot.principal.id,
        directory=StudentDirectory(get_backend(request), rows, policy),
        goals=GoalLedger(rows, policy),
        ledger=BalanceLedger(rows, policy),
    )

@router.get("/admin/overview", response_model=AdminOverview)
async def get_admin_overview(request: Request, store: SessionStore = Depends(require_admin), policy: CallPolicy = Depends(get_policy)):
    rows = rows_for(request, store)
    return await admin_overview(
        directory=StudentDirectory(get_backend(request), rows, policy),
        goals=GoalLedger(rows, policy),
        catalog=RewardCatalog(rows, policy),
    )
