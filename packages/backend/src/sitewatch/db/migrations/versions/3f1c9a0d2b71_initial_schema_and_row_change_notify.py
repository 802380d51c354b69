"""Initial schema plus row_changes NOTIFY trigger

Learn: PostgreSQL LISTEN/NOTIFY carries durable-storage changes to the
realtime layer. One generic trigger function publishes every INSERT,
UPDATE and DELETE on the watched tables to the 'row_changes' channel as
{table, operation, new, old}. RedisTransport LISTENs on that channel and
routes each change to the channels that asked for it (e.g. a correlator
waiting on response.request_id).

NOTIFY payloads are capped at 8000 bytes, so bridges must keep
response_body small; oversized notifications fail the INSERT.

Revision ID: 3f1c9a0d2b71
Revises:
Create Date: 2026-10-19 09:12:44.180211
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3f1c9a0d2b71'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

WATCHED_TABLES = ("response", "alarm")


def upgrade() -> None:
    # ─── Tables ──────────────────────────────────────────
    op.create_table(
        "site",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("site_name", sa.String(200), nullable=False),
        sa.Column("contact_name", sa.String(200), nullable=True),
        sa.Column("contact_phone", sa.String(50), nullable=True),
        sa.Column("logo_url", sa.Text(), nullable=True),
        sa.Column("arm_status", sa.String(20), nullable=False),
        sa.Column("arm_status_changed_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_table(
        "bridge",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("bridge_name", sa.String(200), nullable=False),
        sa.Column("bridge_uuid", postgresql.UUID(as_uuid=True), nullable=False, unique=True),
        sa.Column("access_token", sa.Text(), nullable=True),
        sa.Column("site_id", sa.Integer(), sa.ForeignKey("site.id"), nullable=True),
        sa.Column("healthy", sa.Boolean(), nullable=False),
        sa.Column("last_checked_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_table(
        "camera",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("bridge_id", sa.Integer(), sa.ForeignKey("bridge.id"), nullable=False),
        sa.Column("camera_name", sa.String(200), nullable=False),
        sa.Column("ip_address", sa.String(64), nullable=False),
        sa.Column("is_registered", sa.Boolean(), nullable=False),
        sa.Column("username", sa.String(100), nullable=True),
        sa.Column("password", sa.String(255), nullable=True),
        sa.Column("healthy", sa.Boolean(), nullable=False),
        sa.Column("last_checked_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_table(
        "alarm",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("site_id", sa.Integer(), sa.ForeignKey("site.id"), nullable=False),
        sa.Column("bridge_id", sa.Integer(), sa.ForeignKey("bridge.id"), nullable=False),
        sa.Column("camera_id", sa.Integer(), sa.ForeignKey("camera.id"), nullable=False),
        sa.Column("alarm_type", sa.String(50), nullable=False),
        sa.Column("alarm_name", sa.String(200), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_alarm_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("snapshot_urls", postgresql.ARRAY(sa.Text()), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint(
            "(is_read AND read_at IS NOT NULL) OR (NOT is_read AND read_at IS NULL)",
            name="ck_alarm_read_state",
        ),
    )
    op.create_index("ix_alarm_site_unread", "alarm", ["site_id", "is_read"])
    op.create_index("ix_alarm_created_at", "alarm", ["created_at"])
    op.create_table(
        "response",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("bridge_id", sa.Integer(), sa.ForeignKey("bridge.id"), nullable=False),
        sa.Column("request_id", sa.String(36), nullable=False),
        sa.Column("requester_id", sa.String(36), nullable=True),
        sa.Column("request_path", sa.String(500), nullable=False),
        sa.Column("response_body", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_response_request_id", "response", ["request_id"])

    # ─── Row change trigger ──────────────────────────────
    op.execute("""
        CREATE OR REPLACE FUNCTION notify_row_change()
        RETURNS TRIGGER AS $$
        BEGIN
            PERFORM pg_notify('row_changes', json_build_object(
                'table', TG_TABLE_NAME,
                'operation', TG_OP,
                'new', CASE WHEN TG_OP = 'DELETE' THEN NULL ELSE row_to_json(NEW) END,
                'old', CASE WHEN TG_OP = 'INSERT' THEN NULL ELSE row_to_json(OLD) END
            )::text);
            RETURN COALESCE(NEW, OLD);
        END;
        $$ LANGUAGE plpgsql;
    """)

    for table in WATCHED_TABLES:
        op.execute(f"""
            CREATE TRIGGER {table}_row_change_notify
                AFTER INSERT OR UPDATE OR DELETE ON {table}
                FOR EACH ROW
                EXECUTE FUNCTION notify_row_change();
        """)


def downgrade() -> None:
    for table in WATCHED_TABLES:
        op.execute(f"DROP TRIGGER IF EXISTS {table}_row_change_notify ON {table};")
    op.execute("DROP FUNCTION IF EXISTS notify_row_change;")

    op.drop_index("ix_response_request_id", table_name="response")
    op.drop_table("response")
    op.drop_index("ix_alarm_created_at", table_name="alarm")
    op.drop_index("ix_alarm_site_unread", table_name="alarm")
    op.drop_table("alarm")
    op.drop_table("camera")
    op.drop_table("bridge")
    op.drop_table("site")
