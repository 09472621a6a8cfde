"""add framework plugin tables

Revision ID: 8d4f2b6a0c17
Revises: 5e1a7c3b9d20
Create Date: 2026-10-02 16:40:07.551902

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '8d4f2b6a0c17'
down_revision: Union[str, Sequence[str], None] = '5e1a7c3b9d20'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create compliance_frameworks, implementation_phases, framework_requirements, framework_install_runs."""
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = set(inspector.get_table_names())

    if "compliance_frameworks" not in existing_tables:
        op.create_table(
            "compliance_frameworks",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("short_code", sa.String(100), nullable=False),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("version", sa.String(50), nullable=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("type", sa.String(50), nullable=False, server_default="General"),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("short_code", name="uq_compliance_frameworks_short_code"),
        )

    if "implementation_phases" not in existing_tables:
        op.create_table(
            "implementation_phases",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "framework_id",
                sa.Integer(),
                sa.ForeignKey("compliance_frameworks.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("order", sa.Float(), nullable=False, server_default="0"),
            sa.Column("retired_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("framework_id", "name", name="uq_implementation_phases_framework_name"),
        )
        op.create_index("idx_phase_framework", "implementation_phases", ["framework_id"])

    if "framework_requirements" not in existing_tables:
        op.create_table(
            "framework_requirements",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column(
                "framework_id",
                sa.Integer(),
                sa.ForeignKey("compliance_frameworks.id", ondelete="CASCADE"),
                nullable=False,
            ),
            sa.Column(
                "phase_id",
                sa.Integer(),
                sa.ForeignKey("implementation_phases.id", ondelete="SET NULL"),
                nullable=True,
            ),
            sa.Column("identifier", sa.String(100), nullable=False),
            sa.Column("title", sa.String(500), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("guidance", sa.Text(), nullable=True),
            sa.Column("mapping_tags", sa.JSON().with_variant(postgresql.JSONB(), "postgresql"), nullable=True),
            sa.Column("retired_at", sa.DateTime(), nullable=True),
            sa.Column("created_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.UniqueConstraint("framework_id", "identifier", name="uq_framework_requirements_framework_identifier"),
        )
        op.create_index("idx_req_framework", "framework_requirements", ["framework_id"])
        op.create_index("idx_req_phase", "framework_requirements", ["phase_id"])

    if "framework_install_runs" not in existing_tables:
        op.create_table(
            "framework_install_runs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("ran_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column(
                "framework_id",
                sa.Integer(),
                sa.ForeignKey("compliance_frameworks.id", ondelete="SET NULL"),
                nullable=True,
            ),
            sa.Column("slug", sa.String(100), nullable=False),
            sa.Column("version", sa.String(50), nullable=True),
            sa.Column("source", sa.String(32), nullable=False, server_default="api"),
            sa.Column("framework_created", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("phases_created", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("phases_updated", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("phases_retired", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("requirements_created", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("requirements_updated", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("requirements_retired", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("warnings_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("duration_ms", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("warnings_json", sa.Text(), nullable=True),
            sa.Column(
                "installed_by_user_id",
                sa.Integer(),
                sa.ForeignKey("users.id", ondelete="SET NULL"),
                nullable=True,
            ),
        )
        op.create_index("idx_install_runs_slug", "framework_install_runs", ["slug"])
        op.create_index("idx_install_runs_ran_at", "framework_install_runs", ["ran_at"])


def downgrade() -> None:
    """Drop framework plugin tables."""
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing_tables = set(inspector.get_table_names())

    for table in ("framework_install_runs", "framework_requirements", "implementation_phases", "compliance_frameworks"):
        if table in existing_tables:
            op.drop_table(table)
