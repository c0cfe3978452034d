from __future__ import annotations
from datetime import datetime
from pydantic import BaseModel, EmailStr, Field

class LoginRequest(BaseModel):
    email: EmailStr
    password: str

class PrincipalPublic(BaseModel):
    id: str
    email: str | None = None
    display_name: str | None = None

class SessionPublic(BaseModel):
    state: str
    role: str | None = None
    user: PrincipalPublic | None = None
    expires_at: datetime | None = None
    error: str | None = None
    expiry_warning: str | None = None

class LoginResponse(SessionPublic):
    session_id: str

class ProfileUpdate(BaseModel):
    display_name: str = Field(min_length=1, max_length=120)
