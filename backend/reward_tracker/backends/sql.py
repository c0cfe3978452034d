from __future__ import annotations
import uuid
from typing import Any
import structlog
from sqlalchemy import select, update, delete, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.types import Uuid

from reward_tracker.backends.base import AuthClient, Backend, Principal, RowStore, Session, check_table
from reward_tracker.db import Base, make_engine, make_sessionmaker
from reward_tracker.errors import AuthError, ConfigError, ConflictError, InsufficientBalanceError, NotFoundError, ValidationError
from reward_tracker.models.account import Admin, AuthUser, Student
from reward_tracker.models.goal import Goal
from reward_tracker.models.reward import Reward
from reward_tracker.models.transaction import Transaction
from reward_tracker.security import decode_token, hash_password, make_token, verify_password

log = structlog.get_logger()

MODELS: dict[str, type[Base]] = {
    "students": Student,
    "admin": Admin,
    "rewards": Reward,
    "goals": Goal,
    "transactions": Transaction,
}

DEBIT_KINDS = ("removed", "spent")


def _row(obj: Base) -> dict:
    return {c.key: getattr(obj, c.key) for c in obj.__table__.columns}


def _column(model: type[Base], name: str):
    col = model.__table__.c.get(name)
    if col is None:
        raise ValidationError(f"unknown column: {model.__tablename__}.{name}")
    return col


def _coerce(model: type[Base], name: str, value: Any) -> Any:
    col = _column(model, name)
    if isinstance(col.type, Uuid) and isinstance(value, str):
        try:
            return uuid.UUID(value)
        except ValueError:
            raise ValidationError(f"{name} is not a valid id")
    return value


def _integrity_error(exc: IntegrityError):
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    errname = getattr(orig, "sqlite_errorname", "") or ""
    unique = errname in ("SQLITE_CONSTRAINT_UNIQUE", "SQLITE_CONSTRAINT_PRIMARYKEY") or "UNIQUE constraint failed" in str(orig)
    if sqlstate == "23505" or unique:
        return ConflictError("Row conflicts with an existing one")
    return ValidationError("Row violates a constraint")


def _check_amount(amount) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("amount must be a positive integer")


def _principal(user: AuthUser) -> Principal:
    return Principal(id=str(user.id), email=user.email, display_name=user.display_name)


class SqlRowStore(RowStore):
    def __init__(self, sessions):
        self._sessions = sessions

    def _where(self, stmt, model, eq, in_):
        for name, value in (eq or {}).items():
            stmt = stmt.where(_column(model, name) == _coerce(model, name, value))
        for name, values in (in_ or {}).items():
            stmt = stmt.where(_column(model, name).in_([_coerce(model, name, v) for v in values]))
        return stmt

    async def select(self, table, *, eq=None, in_=None, order_by=None, descending=False, limit=None) -> list[dict]:
        model = MODELS[check_table(table)]
        stmt = self._where(select(model), model, eq, in_)
        if order_by:
            col = _column(model, order_by)
            stmt = stmt.order_by(col.desc() if descending else col.asc())
        if limit:
            stmt = stmt.limit(limit)
        async with self._sessions() as session:
            objs = (await session.execute(stmt)).scalars().all()
            return [_row(o) for o in objs]

    async def insert(self, table, row) -> dict:
        model = MODELS[check_table(table)]
        obj = model(**{k: _coerce(model, k, v) for k, v in row.items()})
        async with self._sessions() as session:
            session.add(obj)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise _integrity_error(e)
            return _row(obj)

    async def update(self, table, values, *, eq) -> list[dict]:
        model = MODELS[check_table(table)]
        if not eq:
            raise ValidationError("update needs a filter")
        # single UPDATE .. WHERE so a status filter acts as compare-and-set
        stmt = (
            self._where(update(model), model, eq, None)
            .values({_column(model, k).key: _coerce(model, k, v) for k, v in values.items()})
            .returning(model)
            .execution_options(synchronize_session=False)
        )
        async with self._sessions() as session:
            try:
                objs = (await session.scalars(stmt)).all()
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise _integrity_error(e)
            return [_row(o) for o in objs]

    async def delete(self, table, *, eq) -> int:
        model = MODELS[check_table(table)]
        if not eq:
            raise ValidationError("delete needs a filter")
        async with self._sessions() as session:
            try:
                result = await session.execute(self._where(delete(model), model, eq, None))
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise _integrity_error(e)
            return int(result.rowcount or 0)

    async def _move(self, student_id: str, delta: int, tx_type: str, description: str) -> dict:
        sid = _coerce(Student, "id", student_id)
        async with self._sessions() as session:
            async with session.begin():
                stmt = update(Student).where(Student.id == sid).values(balance=Student.balance + delta)
                if delta < 0:
                    # conditional update keeps check and write in one statement
                    stmt = stmt.where(Student.balance >= -delta)
                result = await session.execute(stmt)
                if result.rowcount == 0:
                    exists = await session.scalar(select(func.count()).select_from(Student).where(Student.id == sid))
                    if not exists:
                        raise NotFoundError("Student not found")
                    raise InsufficientBalanceError("Amount exceeds the current balance")
                tx = Transaction(student_id=sid, amount=abs(delta), type=tx_type, description=description)
                session.add(tx)
                await session.flush()
                balance = await session.scalar(select(Student.balance).where(Student.id == sid))
            return {"balance": int(balance), "transaction": _row(tx)}

    async def credit_balance(self, student_id, amount, description) -> dict:
        _check_amount(amount)
        return await self._move(student_id, amount, "earned", description)

    async def debit_balance(self, student_id, amount, description, *, kind="removed") -> dict:
        if kind not in DEBIT_KINDS:
            raise ValidationError(f"debit kind must be one of {', '.join(DEBIT_KINDS)}")
        _check_amount(amount)
        return await self._move(student_id, -amount, kind, description)


class SqlAuthClient(AuthClient):
    def __init__(self, backend: "SqlBackend"):
        super().__init__()
        self._backend = backend

    def _issue(self, user: AuthUser) -> Session:
        b = self._backend
        access, exp = make_token(str(user.id), secret=b.secret, ttl_min=b.access_ttl_min, token_type="access")
        refresh, _ = make_token(str(user.id), secret=b.secret, ttl_min=b.refresh_ttl_min, token_type="refresh")
        return Session(access_token=access, refresh_token=refresh, expires_at=exp, user=_principal(user))

    async def _password_grant(self, email: str, password: str) -> Session:
        async with self._backend.sessions() as session:
            user = await session.scalar(select(AuthUser).where(AuthUser.email == email.strip().lower()))
        if not user or not verify_password(password, user.password_hash):
            raise AuthError("Invalid credentials")
        return self._issue(user)

    async def _refresh_grant(self, refresh_token: str) -> Session:
        data = decode_token(refresh_token, secret=self._backend.secret, expected_type="refresh")
        user = await self._backend.get_user(data["sub"])
        return self._issue(user)

    async def _revoke(self, session: Session) -> None:
        # tokens are stateless; expiry bounds them
        log.info("tokens_released", user_id=session.user.id)

    async def _update_user(self, session: Session, display_name: str) -> Principal:
        async with self._backend.sessions() as db:
            user = await db.get(AuthUser, uuid.UUID(session.user.id))
            if user is None:
                raise AuthError("User not found")
            user.display_name = display_name
            await db.commit()
            return _principal(user)


class SqlBackend(Backend):
    """Self-hosted backend: SQLAlchemy storage, bcrypt credentials, JWT sessions."""

    kind = "sql"

    def __init__(
        self,
        database_url: str | None = None,
        secret: str = "",
        *,
        engine: AsyncEngine | None = None,
        access_ttl_min: int = 60,
        refresh_ttl_min: int = 10080,
    ):
        if not secret:
            raise ConfigError("a signing key is required")
        self.engine = engine or make_engine(database_url)
        self.sessions = make_sessionmaker(self.engine)
        self.secret = secret
        self.access_ttl_min = access_ttl_min
        self.refresh_ttl_min = refresh_ttl_min
        self._rows = SqlRowStore(self.sessions)

    async def create_schema(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    def auth_client(self) -> AuthClient:
        return SqlAuthClient(self)

    def rows(self, access_token: str | None = None) -> RowStore:
        return self._rows

    async def get_user(self, user_id: str) -> AuthUser:
        async with self.sessions() as session:
            user = await session.get(AuthUser, _coerce(AuthUser, "id", user_id))
        if user is None:
            raise AuthError("User not found")
        return user

    async def provision_principal(self, email: str, password: str, display_name: str | None = None) -> Principal:
        if len(password) < 8:
            raise ValidationError("password must be at least 8 characters")
        user = AuthUser(email=email.strip().lower(), password_hash=hash_password(password), display_name=display_name)
        async with self.sessions() as session:
            session.add(user)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise ConflictError("Email already registered")
        log.info("principal_provisioned", user_id=str(user.id))
        return _principal(user)

    async def delete_principal(self, principal_id: str) -> None:
        async with self.sessions() as session:
            await session.execute(delete(AuthUser).where(AuthUser.id == _coerce(AuthUser, "id", principal_id)))
            await session.commit()
        log.info("principal_deleted", user_id=principal_id)

    async def close(self) -> None:
        await self.engine.dispose()
