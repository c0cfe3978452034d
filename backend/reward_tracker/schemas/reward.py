from __future__ import annotations
from datetime import datetime
from typing import Literal
from uuid import UUID
from pydantic import BaseModel, ConfigDict, Field, field_validator

Category = Literal["toys", "books", "electronics", "gift-cards", "experiences"]
CATEGORIES: tuple[str, ...] = ("toys", "books", "electronics", "gift-cards", "experiences")

def _check_link(value: str | None) -> str | None:
    if value is None or value == "":
        return None
    if not value.startswith(("http://", "https://")):
        raise ValueError("link must be an http(s) URL")
    return value

class RewardPublic(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    description: str | None = None
    purchase_link: str | None = None
    cost: int
    image_url: str | None = None
    category: str
    available: bool = True
    created_at: datetime | None = None

class RewardCreate(BaseModel):
    name: str = Field(min_length=1, max_length=120)
    cost: int = Field(gt=0, strict=True)
    category: Category
    description: str | None = None
    purchase_link: str | None = None
    image_url: str | None = None
    available: bool = True

    @field_validator("name")
    @classmethod
    def _name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name is required")
        return v

    _link = field_validator("purchase_link")(_check_link)

class RewardUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=120)
    cost: int | None = Field(default=None, gt=0, strict=True)
    category: Category | None = None
    description: str | None = None
    purchase_link: str | None = None
    image_url: str | None = None
    available: bool | None = None

    @field_validator("name")
    @classmethod
    def _name(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            raise ValueError("name is required")
        return v.strip() if v else v

    _link = field_validator("purchase_link")(_check_link)
