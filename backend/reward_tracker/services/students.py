from __future__ import annotations
import structlog
from reward_tracker.backends.base import Backend, RowStore
from reward_tracker.errors import NotFoundError
from reward_tracker.schemas.student import AdminPublic, StudentCreate, StudentPublic
from reward_tracker.services.base import CallPolicy, Service

log = structlog.get_logger()


class StudentDirectory(Service):
    """Admin-side provisioning and listing of student profiles."""

    def __init__(self, backend: Backend, rows: RowStore, policy: CallPolicy | None = None):
        super().__init__(rows, policy)
        self.backend = backend

    async def list_students(self) -> list[StudentPublic]:
        rows = await self._read(lambda: self.rows.select("students", order_by="name"), "students")
        return [StudentPublic.model_validate(r) for r in rows]

    async def get_student(self, student_id) -> StudentPublic:
        row = await self._read(lambda: self.rows.select_one("students", eq={"id": student_id}), "student lookup")
        if row is None:
            raise NotFoundError("Student not found")
        return StudentPublic.model_validate(row)

    async def _provision(self, table: str, email: str, password: str, name: str, profile: dict) -> dict:
        principal = await self._write(
            lambda: self.backend.provision_principal(email, password, name), "principal signup"
        )
        row = {"id": principal.id, "email": principal.email or email, "name": name, **profile}
        try:
            return await self._write(lambda: self.rows.insert(table, row), f"{table} insert")
        except Exception:
            # a principal without a profile could sign in but never get a role
            await self._discard_principal(principal.id)
            raise

    async def _discard_principal(self, principal_id: str) -> None:
        try:
            await self._write(lambda: self.backend.delete_principal(principal_id), "principal cleanup")
        except Exception:
            log.error("orphaned_principal", user_id=principal_id, exc_info=True)
        else:
            log.info("principal_rolled_back", user_id=principal_id)

    async def provision_student(self, fields: StudentCreate) -> StudentPublic:
        row = await self._provision(
            "students", fields.email, fields.password, fields.name, {"level": fields.level, "balance": 0}
        )
        log.info("student_provisioned", student_id=str(row["id"]))
        return StudentPublic.model_validate(row)

    async def provision_admin(self, email: str, password: str, name: str) -> AdminPublic:
        row = await self._provision("admin", email, password, name, {})
        log.info("admin_provisioned", admin_id=str(row["id"]))
        return AdminPublic.model_validate(row)

    async def ensure_admin(self, email: str, password: str, name: str) -> AdminPublic:
        """Provision the admin unless one with this email already exists."""
        email = email.strip().lower()
        existing = await self._read(lambda: self.rows.select_one("admin", eq={"email": email}), "admin lookup")
        if existing is not None:
            log.info("admin_present", admin_id=str(existing["id"]))
            return AdminPublic.model_validate(existing)
        return await self.provision_admin(email, password, name)

    async def delete_student(self, student_id) -> None:
        deleted = await self._write(lambda: self.rows.delete("students", eq={"id": student_id}), "student delete")
        if not deleted:
            raise NotFoundError("Student not found")
        log.info("student_deleted", student_id=str(student_id))
