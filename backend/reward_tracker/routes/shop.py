from __future__ import annotations
from fastapi import APIRouter, Depends, Request
from reward_tracker.deps import get_policy, rows_for
from reward_tracker.schemas.reward import RewardPublic
from reward_tracker.services.base import CallPolicy
from reward_tracker.services.catalog import RewardCatalog, filter_rewards

router = APIRouter(prefix="/shop", tags=["shop"])

@router.get("/rewards", response_model=list[RewardPublic])
async def shop_rewards(
    request: Request,
    search: str | None = None,
    category: str = "all",
    price_range: str = "all",
    policy: CallPolicy = Depends(get_policy),
):
    catalog = RewardCatalog(rows_for(request), policy)
    rewards = await catalog.list_available()
    return filter_rewards(rewards, search=search, category=category, price_range=price_range)
