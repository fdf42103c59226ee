"""Initial schema -- users, transactions, credit grants, and immutability triggers.

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18
"""

from alembic import op

from imaginify.schema_sql import indexes, tables_core, triggers

revision = "001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def _execute_all(statements: list[str]) -> None:
    """Execute a list of SQL statements sequentially."""
    for stmt in statements:
        op.execute(stmt)


def upgrade() -> None:
    _execute_all(tables_core.ALL)
    _execute_all(indexes.ALL)
    _execute_all(triggers.FUNCTIONS_ALL)
    _execute_all(triggers.TRIGGERS_ALL)


def downgrade() -> None:
    op.execute("DROP TRIGGER IF EXISTS trg_credit_grants_immutable ON credit_grants;")
    op.execute("DROP TRIGGER IF EXISTS trg_transactions_immutable ON transactions;")
    op.execute("DROP FUNCTION IF EXISTS raise_immutable_error();")
    for table in ("credit_grants", "transactions", "users"):
        op.execute(f"DROP TABLE IF EXISTS {table} CASCADE;")
