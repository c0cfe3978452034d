from __future__ import annotations
from typing import Iterable
import structlog
from reward_tracker.errors import ConflictError, NotFoundError, ValidationError
from reward_tracker.schemas.reward import CATEGORIES, RewardCreate, RewardPublic, RewardUpdate
from reward_tracker.services.base import Service
from reward_tracker.services.goals import ACTIVE_STATUSES

log = structlog.get_logger()

PRICE_RANGES = {
    "0-50": (0, 50),
    "51-100": (51, 100),
    "101-200": (101, 200),
    "201+": (201, None),
}


def filter_rewards(
    rewards: Iterable[RewardPublic],
    *,
    search: str | None = None,
    category: str | None = None,
    price_range: str | None = None,
) -> list[RewardPublic]:
    """Shop filters: text search on name/description, category, price band."""
    out = list(rewards)
    if search:
        needle = search.lower()
        out = [r for r in out if needle in r.name.lower() or needle in (r.description or "").lower()]
    if category and category != "all":
        if category not in CATEGORIES:
            raise ValidationError(f"unknown category: {category}")
        out = [r for r in out if r.category == category]
    if price_range and price_range != "all":
        if price_range not in PRICE_RANGES:
            raise ValidationError(f"unknown price range: {price_range}")
        low, high = PRICE_RANGES[price_range]
        out = [r for r in out if r.cost >= low and (high is None or r.cost <= high)]
    return out


class RewardCatalog(Service):
    async def list_available(self) -> list[RewardPublic]:
        rows = await self._read(
            lambda: self.rows.select("rewards", eq={"available": True}, order_by="cost"), "available rewards"
        )
        return [RewardPublic.model_validate(r) for r in rows]

    async def list_all(self) -> list[RewardPublic]:
        rows = await self._read(lambda: self.rows.select("rewards", order_by="name"), "rewards")
        return [RewardPublic.model_validate(r) for r in rows]

    async def get(self, reward_id) -> RewardPublic:
        row = await self._read(lambda: self.rows.select_one("rewards", eq={"id": reward_id}), "reward lookup")
        if row is None:
            raise NotFoundError("Reward not found")
        return RewardPublic.model_validate(row)

    async def create(self, fields: RewardCreate) -> RewardPublic:
        row = await self._write(lambda: self.rows.insert("rewards", fields.model_dump()), "reward insert")
        log.info("reward_created", reward_id=str(row["id"]), cost=row["cost"])
        return RewardPublic.model_validate(row)

    async def update(self, reward_id, fields: RewardUpdate) -> RewardPublic:
        values = fields.model_dump(exclude_unset=True)
        if not values:
            return await self.get(reward_id)
        rows = await self._write(lambda: self.rows.update("rewards", values, eq={"id": reward_id}), "reward update")
        if not rows:
            raise NotFoundError("Reward not found")
        log.info("reward_updated", reward_id=str(reward_id), fields=sorted(values))
        return RewardPublic.model_validate(rows[0])

    async def delete(self, reward_id) -> None:
        # goals keep their frozen cost, but an active goal must not lose its reward
        active = await self._read(
            lambda: self.rows.select("goals", eq={"reward_id": reward_id}, in_={"status": ACTIVE_STATUSES}, limit=1),
            "reward goal check",
        )
        if active:
            raise ConflictError("This reward is the target of an active goal; mark it unavailable instead")
        deleted = await self._write(lambda: self.rows.delete("rewards", eq={"id": reward_id}), "reward delete")
        if not deleted:
            raise NotFoundError("Reward not found")
        log.info("reward_deleted", reward_id=str(reward_id))
