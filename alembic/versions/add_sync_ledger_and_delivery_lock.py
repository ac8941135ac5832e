"""add inventory_sync_logs ledger, sync_control_logs and delivery sync lock columns

Revision ID: add_sync_ledger
Revises:
Create Date: 2025-06-02

Base tables come from create_tables.py; this revision brings databases created
before the ledger existed up to date.
"""
from alembic import op
import sqlalchemy as sa


revision = "add_sync_ledger"
down_revision = None
branch_labels = None
depends_on = None


DELIVERY_LOCK_COLUMNS = [
    ("synced_to_shopify", "BOOLEAN NOT NULL DEFAULT FALSE", sa.Boolean(), sa.false()),
    ("sync_in_progress", "BOOLEAN NOT NULL DEFAULT FALSE", sa.Boolean(), sa.false()),
    ("last_sync_attempt", "TIMESTAMP", sa.DateTime(), None),
    ("sync_attempts", "INTEGER NOT NULL DEFAULT 0", sa.Integer(), sa.text("0")),
    ("sync_error_message", "TEXT", sa.Text(), None),
]


def upgrade() -> None:
    conn = op.get_bind()
    if conn.dialect.name == "postgresql":
        op.execute("""
            CREATE TABLE IF NOT EXISTS inventory_sync_logs (
                id VARCHAR NOT NULL PRIMARY KEY,
                delivery_id VARCHAR REFERENCES deliveries(id) ON DELETE SET NULL,
                sync_results JSON NOT NULL,
                success_count INTEGER NOT NULL DEFAULT 0,
                error_count INTEGER NOT NULL DEFAULT 0,
                synced_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
            )
        """)
        op.execute("CREATE INDEX IF NOT EXISTS ix_inventory_sync_logs_delivery_id ON inventory_sync_logs (delivery_id)")
        op.execute("CREATE INDEX IF NOT EXISTS ix_inventory_sync_logs_synced_at ON inventory_sync_logs (synced_at)")
        op.execute("""
            CREATE TABLE IF NOT EXISTS sync_control_logs (
                id VARCHAR NOT NULL PRIMARY KEY,
                sync_type VARCHAR NOT NULL,
                sync_mode VARCHAR NOT NULL,
                status VARCHAR NOT NULL DEFAULT 'RUNNING',
                start_time TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP,
                end_time TIMESTAMP,
                days_processed INTEGER DEFAULT 0,
                orders_processed INTEGER DEFAULT 0,
                variants_updated INTEGER DEFAULT 0,
                metrics_created INTEGER DEFAULT 0,
                error_message TEXT,
                execution_details JSON
            )
        """)
        op.execute("CREATE INDEX IF NOT EXISTS ix_sync_control_logs_sync_type ON sync_control_logs (sync_type)")
        for name, ddl, _, _ in DELIVERY_LOCK_COLUMNS:
            op.execute(f"ALTER TABLE deliveries ADD COLUMN IF NOT EXISTS {name} {ddl}")
    else:
        op.create_table(
            "inventory_sync_logs",
            sa.Column("id", sa.String(), nullable=False),
            sa.Column("delivery_id", sa.String(), sa.ForeignKey("deliveries.id", ondelete="SET NULL"), nullable=True),
            sa.Column("sync_results", sa.JSON(), nullable=False),
            sa.Column("success_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("error_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
            sa.Column("synced_at", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_inventory_sync_logs_delivery_id", "inventory_sync_logs", ["delivery_id"])
        op.create_index("ix_inventory_sync_logs_synced_at", "inventory_sync_logs", ["synced_at"])
        op.create_table(
            "sync_control_logs",
            sa.Column("id", sa.String(), nullable=False),
            sa.Column("sync_type", sa.String(), nullable=False),
            sa.Column("sync_mode", sa.String(), nullable=False),
            sa.Column("status", sa.String(), nullable=False, server_default="RUNNING"),
            sa.Column("start_time", sa.DateTime(), nullable=False, server_default=sa.func.now()),
            sa.Column("end_time", sa.DateTime(), nullable=True),
            sa.Column("days_processed", sa.Integer(), server_default=sa.text("0")),
            sa.Column("orders_processed", sa.Integer(), server_default=sa.text("0")),
            sa.Column("variants_updated", sa.Integer(), server_default=sa.text("0")),
            sa.Column("metrics_created", sa.Integer(), server_default=sa.text("0")),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("execution_details", sa.JSON(), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_sync_control_logs_sync_type", "sync_control_logs", ["sync_type"])
        existing = {c["name"] for c in sa.inspect(conn).get_columns("deliveries")}
        with op.batch_alter_table("deliveries") as batch:
            for name, _, col_type, default in DELIVERY_LOCK_COLUMNS:
                if name not in existing:
                    batch.add_column(sa.Column(name, col_type, nullable=default is None, server_default=default))


def downgrade() -> None:
    with op.batch_alter_table("deliveries") as batch:
        for name, _, _, _ in reversed(DELIVERY_LOCK_COLUMNS):
            batch.drop_column(name)
    op.drop_table("sync_control_logs")
    op.drop_table("inventory_sync_logs")
