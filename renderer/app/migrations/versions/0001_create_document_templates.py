"""Create document_templates

Revision ID: 0001_create_document_templates
Revises:
Create Date: 2024-05-01
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_create_document_templates"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "document_templates",
        sa.Column("id", sa.String(length=128), primary_key=True),
        sa.Column("scope", sa.String(length=32), nullable=False),
        sa.Column("tenant_code", sa.String(length=64)),
        sa.Column("workspace_code", sa.String(length=64)),
        sa.Column("document_type_code", sa.String(length=64), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("placeholders", sa.Text(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("description", sa.Text()),
        # ISO-8601 text, timezone included
        sa.Column("published_at", sa.String(length=40), nullable=False),
        sa.CheckConstraint("version >= 1", name="ck_document_templates_version"),
    )


def downgrade() -> None:
    op.drop_table("document_templates")
