from __future__ import annotations
from datetime import datetime
from uuid import UUID
from pydantic import BaseModel, EmailStr, Field

class StudentPublic(BaseModel):
    id: UUID
    name: str
    email: str
    level: str = ""
    avatar_url: str | None = None
    balance: int = 0
    created_at: datetime | None = None

class StudentCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    name: str = Field(min_length=1, max_length=120)
    level: str = Field(default="", max_length=32)

class AdminPublic(BaseModel):
    id: UUID
    name: str
    email: str
