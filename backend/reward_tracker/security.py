from __future__ import annotations
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any
import jwt
from passlib.context import CryptContext
from reward_tracker.errors import AuthError

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

JWT_ALG = "HS256"

def hash_password(password: str) -> str:
    return pwd_context.hash(password)

def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)

def make_token(sub: str, *, secret: str, ttl_min: int, token_type: str) -> tuple[str, datetime]:
    now = datetime.now(timezone.utc)
    exp = now + timedelta(minutes=ttl_min)
    payload = {
        "sub": sub,
        "type": token_type,
        "jti": uuid.uuid4().hex,  # two tokens minted in the same second still differ
        "iat": int(now.timestamp()),
        "exp": int(exp.timestamp()),
    }
    return jwt.encode(payload, secret, algorithm=JWT_ALG), exp

def decode_token(token: str, *, secret: str, expected_type: str) -> dict[str, Any]:
    try:
        data = jwt.decode(token, secret, algorithms=[JWT_ALG])
    except jwt.ExpiredSignatureError:
        raise AuthError("Session expired")
    except jwt.InvalidTokenError:
        raise AuthError("Invalid token")
    if data.get("type") != expected_type:
        raise AuthError("Wrong token type")
    return data
