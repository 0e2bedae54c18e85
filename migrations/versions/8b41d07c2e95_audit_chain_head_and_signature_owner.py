"""audit_chain_head_and_signature_owner

Revision ID: 8b41d07c2e95
Revises: 3f2a9c1d7e41
Create Date: 2026-10-18 10:03:27.551902

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8b41d07c2e95'
down_revision: Union[str, Sequence[str], None] = '3f2a9c1d7e41'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Add the audit chain head row and record who created each signature."""
    chain_head = op.create_table(
        "audit_chain_head",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("latest_hash", sa.String(64)),
        sa.Column("length", sa.Integer(), nullable=False, server_default="0"),
    )
    op.bulk_insert(chain_head, [{"id": 1, "length": 0}])
    op.execute(
        """
        UPDATE audit_chain_head SET
            latest_hash = (SELECT entry_hash FROM audit_logs ORDER BY id DESC LIMIT 1),
            length = (SELECT COUNT(*) FROM audit_logs)
        WHERE id = 1
        """
    )

    op.add_column(
        "e_signatures",
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
    )


def downgrade() -> None:
    op.drop_column("e_signatures", "created_by")
    op.drop_table("audit_chain_head")
