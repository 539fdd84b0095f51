"""create_stocks

Revision ID: 0003_stocks
Revises: 0002_companies
Create Date: 2022-07-16 10:30:00.000000+00:00

One row per share unit. Ownership counts are aggregated from these rows, so
both (owner, company) and (company, owner) lookups get an index.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0003_stocks"
down_revision: Union[str, None] = "0002_companies"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the stocks table."""
    op.create_table(
        "stocks",
        sa.Column("id", sa.Integer, autoincrement=True, nullable=False),
        sa.Column("owner_id", sa.Integer, nullable=False),
        sa.Column("company_id", sa.Integer, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id", name="pk_stocks"),
        sa.ForeignKeyConstraint(["owner_id"], ["users.id"], name="fk_stocks_owner_id_users"),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], name="fk_stocks_company_id_companies"),
    )
    op.create_index("idx_stocks_owner_company", "stocks", ["owner_id", "company_id"])
    op.create_index("idx_stocks_company_owner", "stocks", ["company_id", "owner_id"])


def downgrade() -> None:
    """Drop the stocks table."""
    op.drop_index("idx_stocks_company_owner", table_name="stocks")
    op.drop_index("idx_stocks_owner_company", table_name="stocks")
    op.drop_table("stocks")
