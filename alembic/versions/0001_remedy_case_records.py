"""0001_remedy_case_records

remedy_case_records: engine suggestions + doctor decision + outcome, RLS fail-closed

Revision ID: 0001_remedy_case_records
Revises:
Create Date: 2026-10-18 10:12:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_remedy_case_records"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto;")

    op.create_table(
        "remedy_case_records",
        sa.Column("id", sa.Uuid(), primary_key=True, server_default=sa.text("gen_random_uuid()")),
        sa.Column("tenant_id", sa.Uuid(), nullable=False),
        sa.Column("patient_id", sa.Text(), nullable=True),
        sa.Column("case_payload", postgresql.JSONB(), nullable=False),
        sa.Column("normalized_case", postgresql.JSONB(), nullable=False),
        sa.Column("suggestions", postgresql.JSONB(), nullable=False),
        sa.Column("ranking_snapshot", postgresql.JSONB(), nullable=False),
        sa.Column("result_signature", sa.Text(), nullable=False),
        sa.Column("engine_version", sa.Text(), nullable=False),
        sa.Column("reference_version", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("chosen_remedy", sa.Text(), nullable=True),
        sa.Column("chosen_potency", sa.Text(), nullable=True),
        sa.Column("chosen_repetition", sa.Text(), nullable=True),
        sa.Column("decision_notes", sa.Text(), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("outcome_status", sa.Text(), nullable=True),
        sa.Column("outcome_notes", sa.Text(), nullable=True),
        sa.Column("outcome_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )

    op.create_check_constraint(
        "chk_remedy_case_outcome_status",
        "remedy_case_records",
        "outcome_status IS NULL OR outcome_status IN ('improved', 'no_change', 'worsened', 'not_followed')",
    )
    op.create_check_constraint(
        "chk_remedy_case_outcome_requires_decision",
        "remedy_case_records",
        "(outcome_status IS NULL) OR (chosen_remedy IS NOT NULL)",
    )

    # repetition-warning lookup: one patient's recent decisions
    op.create_index(
        "idx_remedy_case_records_patient_decided",
        "remedy_case_records",
        ["tenant_id", "patient_id", "decided_at"],
    )

    op.execute("ALTER TABLE remedy_case_records ENABLE ROW LEVEL SECURITY;")
    op.execute("ALTER TABLE remedy_case_records FORCE ROW LEVEL SECURITY;")
    op.execute("""
    CREATE POLICY tenant_isolation_remedy_case_records ON remedy_case_records
    USING (
        tenant_id = NULLIF(current_setting('app.tenant_id', true), '')::uuid
    )
    WITH CHECK (
        tenant_id = NULLIF(current_setting('app.tenant_id', true), '')::uuid
    );
    """)

    op.execute("""
    DO $$
    BEGIN
      IF EXISTS (SELECT 1 FROM pg_roles WHERE rolname = 'clincore_user') THEN
        EXECUTE 'GRANT SELECT, INSERT, UPDATE ON TABLE remedy_case_records TO clincore_user';
      END IF;
    END $$;
    """)


def downgrade() -> None:
    op.execute("DROP POLICY IF EXISTS tenant_isolation_remedy_case_records ON remedy_case_records;")
    op.drop_index("idx_remedy_case_records_patient_decided", table_name="remedy_case_records")
    op.drop_table("remedy_case_records")
