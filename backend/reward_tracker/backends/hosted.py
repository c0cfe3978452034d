from __future__ import annotations
from datetime import datetime, timedelta, timezone
from typing import Any
import httpx
import structlog
from pydantic_core import to_jsonable_python

from reward_tracker.backends.base import AuthClient, Backend, Principal, RowStore, Session, check_table
from reward_tracker.errors import (
    AppError,
    AuthError,
    ConfigError,
    ConflictError,
    InsufficientBalanceError,
    NetworkError,
    NotFoundError,
    ValidationError,
)

log = structlog.get_logger()

# error codes raised by the balance procedures
INSUFFICIENT_BALANCE_CODE = "RT001"
UNIQUE_VIOLATION_CODE = "23505"


def _error_from_response(resp: httpx.Response, *, auth_endpoint: bool = False) -> AppError:
    try:
        body = resp.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    message = body.get("message") or body.get("msg") or body.get("error_description") or resp.reason_phrase
    code = str(body.get("code") or "")
    status = resp.status_code
    if code == INSUFFICIENT_BALANCE_CODE:
        return InsufficientBalanceError(message)
    if status in (401, 403) or (auth_endpoint and status == 400):
        return AuthError(message)
    if status == 409 or code == UNIQUE_VIOLATION_CODE:
        return ConflictError(message)
    if status == 404:
        return NotFoundError(message)
    if status >= 500:
        return NetworkError(f"backend returned {status}: {message}")
    return ValidationError(message)


def _principal(user: dict) -> Principal:
    meta = user.get("user_metadata") or {}
    return Principal(id=str(user["id"]), email=user.get("email"), display_name=meta.get("name"))


def _session(body: dict) -> Session:
    if body.get("expires_at"):
        expires_at = datetime.fromtimestamp(int(body["expires_at"]), tz=timezone.utc)
    else:
        expires_at = datetime.now(timezone.utc) + timedelta(seconds=int(body.get("expires_in", 3600)))
    return Session(
        access_token=body["access_token"],
        refresh_token=body["refresh_token"],
        expires_at=expires_at,
        user=_principal(body["user"]),
    )


class HostedBackend(Backend):
    """
    Hosted backend reached over HTTPS: GoTrue-style auth under /auth/v1,
    PostgREST-style rows and procedures under /rest/v1.
    """

    kind = "hosted"

    def __init__(self, url: str, api_key: str, *, timeout: float = 15.0, transport: httpx.AsyncBaseTransport | None = None):
        if not url or not api_key:
            raise ConfigError("backend url and api key are required")
        self.api_key = api_key
        self.http = httpx.AsyncClient(
            base_url=url.rstrip("/"),
            headers={"apikey": api_key, "X-Client-Info": "reward-tracker"},
            timeout=timeout,
            transport=transport,
        )

    async def request(
        self,
        method: str,
        path: str,
        *,
        token: str | None = None,
        params: Any = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
        auth_endpoint: bool = False,
    ) -> Any:
        hdrs = {"Authorization": f"Bearer {token or self.api_key}"}
        hdrs.update(headers or {})
        try:
            resp = await self.http.request(method, path, params=params, json=to_jsonable_python(json), headers=hdrs)
        except httpx.TimeoutException as e:
            raise NetworkError(f"{method} {path} timed out", timeout=True) from e
        except httpx.TransportError as e:
            raise NetworkError(f"{method} {path} failed: {e.__class__.__name__}") from e
        if resp.is_error:
            err = _error_from_response(resp, auth_endpoint=auth_endpoint)
            log.warning("backend_error", method=method, path=path, status=resp.status_code, code=err.code)
            raise err
        if not resp.content:
            return None
        return resp.json()

    def auth_client(self) -> AuthClient:
        return HostedAuthClient(self)

    def rows(self, access_token: str | None = None) -> RowStore:
        return HostedRowStore(self, access_token)

    async def provision_principal(self, email: str, password: str, display_name: str | None = None) -> Principal:
        body = await self.request(
            "POST",
            "/auth/v1/signup",
            json={"email": email, "password": password, "data": {"name": display_name}},
            auth_endpoint=True,
        )
        user = body.get("user", body)
        log.info("principal_provisioned", user_id=str(user["id"]))
        return _principal(user)

    async def delete_principal(self, principal_id: str) -> None:
        try:
            await self.request("DELETE", f"/auth/v1/admin/users/{principal_id}", auth_endpoint=True)
        except NotFoundError:
            return
        log.info("principal_deleted", user_id=principal_id)

    async def close(self) -> None:
        await self.http.aclose()


class HostedAuthClient(AuthClient):
    def __init__(self, backend: HostedBackend):
        super().__init__()
        self._backend = backend

    async def _password_grant(self, email: str, password: str) -> Session:
        body = await self._backend.request(
            "POST", "/auth/v1/token", params={"grant_type": "password"},
            json={"email": email, "password": password}, auth_endpoint=True,
        )
        return _session(body)

    async def _refresh_grant(self, refresh_token: str) -> Session:
        body = await self._backend.request(
            "POST", "/auth/v1/token", params={"grant_type": "refresh_token"},
            json={"refresh_token": refresh_token}, auth_endpoint=True,
        )
        return _session(body)

    async def _revoke(self, session: Session) -> None:
        await self._backend.request("POST", "/auth/v1/logout", token=session.access_token, auth_endpoint=True)

    async def _update_user(self, session: Session, display_name: str) -> Principal:
        body = await self._backend.request(
            "PUT", "/auth/v1/user", token=session.access_token,
            json={"data": {"name": display_name}}, auth_endpoint=True,
        )
        return _principal(body)


class HostedRowStore(RowStore):
    def __init__(self, backend: HostedBackend, access_token: str | None):
        self._backend = backend
        self._token = access_token

    @staticmethod
    def _literal(value) -> str:
        value = to_jsonable_python(value)
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value)

    @staticmethod
    def _filters(eq=None, in_=None) -> list[tuple[str, str]]:
        lit = HostedRowStore._literal
        params = [(k, f"eq.{lit(v)}") for k, v in (eq or {}).items()]
        for k, values in (in_ or {}).items():
            params.append((k, "in.(" + ",".join(lit(v) for v in values) + ")"))
        return params

    async def select(self, table, *, eq=None, in_=None, order_by=None, descending=False, limit=None) -> list[dict]:
        params = [("select", "*")] + self._filters(eq, in_)
        if order_by:
            params.append(("order", f"{order_by}.{'desc' if descending else 'asc'}"))
        if limit:
            params.append(("limit", str(limit)))
        return await self._backend.request("GET", f"/rest/v1/{check_table(table)}", token=self._token, params=params) or []

    async def insert(self, table, row) -> dict:
        body = await self._backend.request(
            "POST", f"/rest/v1/{check_table(table)}", token=self._token, json=dict(row),
            headers={"Prefer": "return=representation"},
        )
        return body[0]

    async def update(self, table, values, *, eq) -> list[dict]:
        if not eq:
            raise ValidationError("update needs a filter")
        return await self._backend.request(
            "PATCH", f"/rest/v1/{check_table(table)}", token=self._token, params=self._filters(eq),
            json=dict(values), headers={"Prefer": "return=representation"},
        ) or []

    async def delete(self, table, *, eq) -> int:
        if not eq:
            raise ValidationError("delete needs a filter")
        body = await self._backend.request(
            "DELETE", f"/rest/v1/{check_table(table)}", token=self._token, params=self._filters(eq),
            headers={"Prefer": "return=representation"},
        )
        return len(body or [])

    async def credit_balance(self, student_id, amount, description) -> dict:
        return await self._backend.request(
            "POST", "/rest/v1/rpc/credit_balance", token=self._token,
            json={"student_id": student_id, "amount": amount, "description": description},
        )

    async def debit_balance(self, student_id, amount, description, *, kind="removed") -> dict:
        return await self._backend.request(
            "POST", "/rest/v1/rpc/debit_balance", token=self._token,
            json={"student_id": student_id, "amount": amount, "description": description, "kind": kind},
        )
