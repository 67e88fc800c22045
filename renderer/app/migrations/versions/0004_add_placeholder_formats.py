"""Store selected placeholder display formats

Revision ID: 0004_add_placeholder_formats
Revises: 0003_unique_document_template_versions
Create Date: 2024-06-12
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "0004_add_placeholder_formats"
down_revision = "0003_unique_document_template_versions"
branch_labels = None
depends_on = None


def upgrade() -> None:
    # JSON object: placeholder name -> pattern
    op.add_column(
        "document_templates",
        sa.Column("placeholder_formats", sa.Text(), nullable=True),
    )


def downgrade() -> None:
    with op.batch_alter_table("document_templates") as batch:
        batch.drop_column("placeholder_formats")
