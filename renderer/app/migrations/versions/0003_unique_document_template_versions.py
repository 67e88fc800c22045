"""One row per version at each template coordinate

Revision ID: 0003_unique_document_template_versions
Revises: 0002_index_document_templates_lookup
Create Date: 2024-05-01
"""
from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "0003_unique_document_template_versions"
down_revision = "0002_index_document_templates_lookup"
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Global templates have NULL coordinates; COALESCE makes them comparable
    op.create_index(
        "ux_document_templates_version",
        "document_templates",
        [
            "scope",
            sa.text("COALESCE(tenant_code, '')"),
            sa.text("COALESCE(workspace_code, '')"),
            "document_type_code",
            "version",
        ],
        unique=True,
    )


def downgrade() -> None:
    op.drop_index("ux_document_templates_version", table_name="document_templates")
