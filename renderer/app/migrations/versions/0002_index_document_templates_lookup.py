"""Index template lookups by document type

Revision ID: 0002_index_document_templates_lookup
Revises: 0001_create_document_templates
Create Date: 2024-05-01
"""
from __future__ import annotations

from alembic import op

# revision identifiers, used by Alembic.
revision = "0002_index_document_templates_lookup"
down_revision = "0001_create_document_templates"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_index(
        "ix_document_templates_lookup",
        "document_templates",
        ["document_type_code", "scope", "active"],
    )


def downgrade() -> None:
    op.drop_index("ix_document_templates_lookup", table_name="document_templates")
