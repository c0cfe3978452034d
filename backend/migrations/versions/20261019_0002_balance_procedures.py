"""Atomic balance procedures for Postgres

Exposed over RPC by the hosted backend. Each call moves the balance and
appends the matching transaction row in one statement block; a debit larger
than the balance raises SQLSTATE RT001.
"""
from alembic import op


# revision identifiers, used by Alembic.
revision = "20261019_0002"
down_revision = "20261019_0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    if op.get_bind().dialect.name != "postgresql":
        return
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")
    op.execute("""
        CREATE OR REPLACE FUNCTION credit_balance(student_id uuid, amount integer, description text)
        RETURNS json LANGUAGE plpgsql AS $$
        DECLARE
            new_balance integer;
            tx transactions;
        BEGIN
            IF amount IS NULL OR amount <= 0 THEN
                RAISE EXCEPTION 'amount must be a positive integer' USING ERRCODE = '22023';
            END IF;
            UPDATE students s SET balance = s.balance + amount
             WHERE s.id = credit_balance.student_id
            RETURNING s.balance INTO new_balance;
            IF NOT FOUND THEN
                RAISE EXCEPTION 'student not found' USING ERRCODE = 'P0002';
            END IF;
            INSERT INTO transactions (id, student_id, amount, type, description)
            VALUES (gen_random_uuid(), credit_balance.student_id, amount, 'earned', description)
            RETURNING * INTO tx;
            RETURN json_build_object('balance', new_balance, 'transaction', row_to_json(tx));
        END;
        $$
    """)
    op.execute("""
        CREATE OR REPLACE FUNCTION debit_balance(student_id uuid, amount integer, description text, kind text DEFAULT 'removed')
        RETURNS json LANGUAGE plpgsql AS $$
        DECLARE
            new_balance integer;
            tx transactions;
        BEGIN
            IF amount IS NULL OR amount <= 0 THEN
                RAISE EXCEPTION 'amount must be a positive integer' USING ERRCODE = '22023';
            END IF;
            IF kind NOT IN ('removed', 'spent') THEN
                RAISE EXCEPTION 'debit kind must be removed or spent' USING ERRCODE = '22023';
            END IF;
            UPDATE students s SET balance = s.balance - amount
             WHERE s.id = debit_balance.student_id AND s.balance >= amount
            RETURNING s.balance INTO new_balance;
            IF NOT FOUND THEN
                IF EXISTS (SELECT 1 FROM students s WHERE s.id = debit_balance.student_id) THEN
                    RAISE EXCEPTION 'insufficient balance' USING ERRCODE = 'RT001';
                END IF;
                RAISE EXCEPTION 'student not found' USING ERRCODE = 'P0002';
            END IF;
            INSERT INTO transactions (id, student_id, amount, type, description)
            VALUES (gen_random_uuid(), debit_balance.student_id, amount, kind, description)
            RETURNING * INTO tx;
            RETURN json_build_object('balance', new_balance, 'transaction', row_to_json(tx));
        END;
        $$
    """)


def downgrade() -> None:
    if op.get_bind().dialect.name != "postgresql":
        return
    op.execute("DROP FUNCTION IF EXISTS debit_balance(uuid, integer, text, text)")
    op.execute("DROP FUNCTION IF EXISTS credit_balance(uuid, integer, text)")
