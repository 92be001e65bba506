"""Order tracking schema.

- accounts
- orders
- order_items (stage, measurements, soft delete)
- status_events (append-only stage history)
- audit_logs (append-only audit trail)

status_events and audit_logs reject UPDATE and DELETE through a trigger.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "c3a1d9e4f2b7"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


UUID_DEFAULT = sa.text("gen_random_uuid()")
NOW = sa.text("now()")
JSONB_EMPTY = sa.text("'{}'::jsonb")

APPEND_ONLY_TABLES = ("status_events", "audit_logs")


def _timestamps(with_updated: bool = True) -> list:
    cols = [sa.Column("created_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False)]
    if with_updated:
        cols.append(sa.Column("updated_at", sa.DateTime(timezone=True), server_default=NOW, nullable=False))
    return cols


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto";')

    op.create_table(
        "accounts",
        sa.Column("id", sa.UUID(), primary_key=True, server_default=UUID_DEFAULT),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("contact_name", sa.Text(), nullable=True),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("phone", sa.Text(), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "orders",
        sa.Column("id", sa.UUID(), primary_key=True, server_default=UUID_DEFAULT),
        sa.Column("po_number", sa.Text(), nullable=False),
        sa.Column("account_id", sa.UUID(), nullable=False),
        sa.Column("current_stage", sa.Text(), nullable=False, server_default="NEW"),
        sa.Column("rep_id", sa.Text(), nullable=True),
        sa.Column("rep_name", sa.Text(), nullable=True),
        sa.Column("eta_date", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"], ondelete="RESTRICT"),
        sa.Index("ix_orders_account_id", "account_id"),
        sa.Index("ix_orders_created_at", "created_at"),
        sa.Index("ix_orders_current_stage", "current_stage"),
    )

    op.create_table(
        "order_items",
        sa.Column("id", sa.UUID(), primary_key=True, server_default=UUID_DEFAULT),
        sa.Column("order_id", sa.UUID(), nullable=False),
        sa.Column("product_code", sa.Text(), nullable=False),
        sa.Column("qty", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("current_stage", sa.Text(), nullable=False, server_default="NEW"),
        sa.Column("height", sa.Numeric(18, 6), nullable=True),
        sa.Column("width", sa.Numeric(18, 6), nullable=True),
        sa.Column("length", sa.Numeric(18, 6), nullable=True),
        sa.Column("weight", sa.Numeric(18, 6), nullable=True),
        sa.Column("measurement_unit", sa.Text(), nullable=True),
        sa.Column("weight_unit", sa.Text(), nullable=True),
        sa.Column("measured_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("measured_by", sa.Text(), nullable=True),
        sa.Column("item_price", sa.Numeric(18, 2), nullable=True),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], ondelete="CASCADE"),
        sa.Index("ix_order_items_order_id", "order_id"),
    )

    op.create_table(
        "status_events",
        sa.Column("id", sa.UUID(), primary_key=True, server_default=UUID_DEFAULT),
        sa.Column("order_id", sa.UUID(), nullable=False),
        sa.Column("item_id", sa.UUID(), nullable=True),
        sa.Column("stage", sa.Text(), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        *_timestamps(with_updated=False),
        sa.ForeignKeyConstraint(["order_id"], ["orders.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["item_id"], ["order_items.id"], ondelete="CASCADE"),
        sa.Index("ix_status_events_order_id", "order_id"),
        sa.Index("ix_status_events_item_created", "item_id", "created_at"),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.UUID(), primary_key=True, server_default=UUID_DEFAULT),
        sa.Column("entity_type", sa.Text(), nullable=False),
        sa.Column("entity_id", sa.Text(), nullable=False),
        sa.Column("action", sa.Text(), nullable=False),
        sa.Column("metadata", postgresql.JSONB(), nullable=False, server_default=JSONB_EMPTY),
        sa.Column("performed_by_id", sa.Text(), nullable=True),
        sa.Column("performed_by_name", sa.Text(), nullable=True),
        *_timestamps(with_updated=False),
        sa.Index("ix_audit_logs_entity", "entity_type", "entity_id", "created_at"),
    )

    op.execute(
        """
        CREATE OR REPLACE FUNCTION reject_append_only_change()
        RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION '% is append-only', TG_TABLE_NAME;
        END;
        $$ LANGUAGE plpgsql;
        """
    )
    for table in APPEND_ONLY_TABLES:
        op.execute(
            f"""
            CREATE TRIGGER {table}_append_only
            BEFORE UPDATE OR DELETE ON {table}
            FOR EACH ROW EXECUTE FUNCTION reject_append_only_change();
            """
        )


def downgrade() -> None:
    for table in APPEND_ONLY_TABLES:
        op.execute(f"DROP TRIGGER IF EXISTS {table}_append_only ON {table};")
    op.execute("DROP FUNCTION IF EXISTS reject_append_only_change();")
    op.drop_table("audit_logs")
    op.drop_table("status_events")
    op.drop_table("order_items")
    op.drop_table("orders")
    op.drop_table("accounts")
