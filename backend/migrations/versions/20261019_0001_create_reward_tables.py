from __future__ import annotations
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None

ACTIVE_GOAL = "status IN ('pending','approved')"

def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)

def upgrade() -> None:
    op.create_table(
        "auth_users",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("display_name", sa.String(length=120), nullable=True),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_auth_users_email", "auth_users", ["email"], unique=True)

    op.create_table(
        "students",
        sa.Column("id", sa.Uuid(), sa.ForeignKey("auth_users.id", ondelete="CASCADE"), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("level", sa.String(length=32), nullable=False, server_default=""),
        sa.Column("avatar_url", sa.String(length=500), nullable=True),
        sa.Column("balance", sa.Integer(), nullable=False, server_default="0"),
        _created_at(),
        sa.CheckConstraint("balance >= 0", name="ck_students_balance_nonneg"),
    )

    op.create_table(
        "admin",
        sa.Column("id", sa.Uuid(), sa.ForeignKey("auth_users.id", ondelete="CASCADE"), primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        _created_at(),
    )

    op.create_table(
        "rewards",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("purchase_link", sa.String(length=500), nullable=True),
        sa.Column("cost", sa.Integer(), nullable=False),
        sa.Column("image_url", sa.String(length=500), nullable=True),
        sa.Column("category", sa.String(length=32), nullable=False),
        sa.Column("available", sa.Boolean(), nullable=False, server_default=sa.true()),
        _created_at(),
        sa.CheckConstraint("cost > 0", name="ck_rewards_cost_positive"),
    )

    op.create_table(
        "goals",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("student_id", sa.Uuid(), sa.ForeignKey("students.id", ondelete="CASCADE"), nullable=False),
        sa.Column("reward_id", sa.Uuid(), sa.ForeignKey("rewards.id", ondelete="SET NULL"), nullable=True),
        sa.Column("custom_name", sa.String(length=120), nullable=True),
        sa.Column("custom_description", sa.Text(), nullable=True),
        sa.Column("goal_url", sa.String(length=500), nullable=True),
        sa.Column("target_cost", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("target_cost > 0", name="ck_goals_target_cost_positive"),
        sa.CheckConstraint("status IN ('pending','approved','rejected','completed')", name="ck_goals_status"),
    )
    op.create_index("ix_goals_student_id", "goals", ["student_id"])
    # at most one pending/approved goal per student
    op.create_index(
        "uq_goals_one_active_per_student",
        "goals",
        ["student_id"],
        unique=True,
        postgresql_where=sa.text(ACTIVE_GOAL),
        sqlite_where=sa.text(ACTIVE_GOAL),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("student_id", sa.Uuid(), sa.ForeignKey("students.id", ondelete="CASCADE"), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("type", sa.String(length=16), nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        _created_at(),
        sa.CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
        sa.CheckConstraint("type IN ('earned','spent','removed')", name="ck_transactions_type"),
    )
    op.create_index("ix_transactions_student_id", "transactions", ["student_id"])

def downgrade() -> None:
    op.drop_index("ix_transactions_student_id", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("uq_goals_one_active_per_student", table_name="goals")
    op.drop_index("ix_goals_student_id", table_name="goals")
    op.drop_table("goals")
    op.drop_table("rewards")
    op.drop_table("admin")
    op.drop_table("students")
    op.drop_index("ix_auth_users_email", table_name="auth_users")
    op.drop_table("auth_users")
