"""initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- monitored_systems ---
    op.create_table(
        "monitored_systems",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("event_source", sa.String(32), nullable=False, server_default="postgresql"),
        sa.Column("es_connection_id", sa.String(64), nullable=True),
        sa.Column("es_config", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    # --- elasticsearch_connections ---
    op.create_table(
        "elasticsearch_connections",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("url", sa.String(1024), nullable=False),
        sa.Column("auth_type", sa.String(16), nullable=False, server_default="none"),
        sa.Column("credentials", sa.Text(), nullable=True),
        sa.Column("request_timeout_ms", sa.Integer(), nullable=False, server_default="30000"),
        sa.Column("verify_tls", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    # --- events ---
    op.create_table(
        "events",
        sa.Column("id", sa.String(128), nullable=False),
        sa.Column("system_id", sa.String(64), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("severity", sa.String(32), nullable=True),
        sa.Column("host", sa.String(255), nullable=True),
        sa.Column("source_ip", sa.String(64), nullable=True),
        sa.Column("service", sa.String(255), nullable=True),
        sa.Column("program", sa.String(255), nullable=True),
        sa.Column("facility", sa.String(64), nullable=True),
        sa.Column("trace_id", sa.String(128), nullable=True),
        sa.Column("span_id", sa.String(128), nullable=True),
        sa.Column("raw", sa.Text(), nullable=True),
        sa.Column("template_id", sa.String(128), nullable=True),
        sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scored_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_events_system_id", "events", ["system_id"])
    op.create_index("ix_events_acknowledged_at", "events", ["acknowledged_at"])
    op.create_index("ix_events_system_timestamp", "events", ["system_id", "timestamp"])
    op.create_index("ix_events_system_template", "events", ["system_id", "template_id"])
    op.execute(
        "CREATE INDEX IF NOT EXISTS ix_events_message_fts "
        "ON events USING GIN (to_tsvector('english', message))"
    )

    # --- es_event_metadata ---
    op.create_table(
        "es_event_metadata",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("system_id", sa.String(64), nullable=False),
        sa.Column("es_event_id", sa.String(128), nullable=False),
        sa.Column("template_id", sa.String(128), nullable=True),
        sa.Column("event_timestamp", sa.DateTime(timezone=True), nullable=True),
        sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scored_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("system_id", "es_event_id", name="uq_es_event_metadata_system_event"),
    )
    op.create_index("ix_es_meta_system_ts", "es_event_metadata", ["system_id", "event_timestamp"])
    op.create_index("ix_es_meta_system_template", "es_event_metadata", ["system_id", "template_id"])

    # --- event_scores ---
    op.create_table(
        "event_scores",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("event_id", sa.String(128), nullable=False),
        sa.Column("criterion_id", sa.Integer(), nullable=False),
        sa.Column("score", sa.Float(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_event_scores_event_criterion", "event_scores", ["event_id", "criterion_id"])

    # --- windows ---
    op.create_table(
        "windows",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("system_id", sa.String(64), nullable=False),
        sa.Column("from_ts", sa.DateTime(timezone=True), nullable=False),
        sa.Column("to_ts", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_windows_system_to", "windows", ["system_id", "to_ts"])

    # --- effective_scores ---
    op.create_table(
        "effective_scores",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("window_id", sa.String(64), nullable=False),
        sa.Column("system_id", sa.String(64), nullable=False),
        sa.Column("criterion_id", sa.Integer(), nullable=False),
        sa.Column("meta_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("max_event_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("effective_value", sa.Float(), nullable=False, server_default="0"),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "window_id", "system_id", "criterion_id",
            name="uq_effective_scores_window_system_criterion",
        ),
    )
    op.create_index("ix_effective_scores_window_id", "effective_scores", ["window_id"])
    op.create_index("ix_effective_scores_system_id", "effective_scores", ["system_id"])

    # --- findings ---
    op.create_table(
        "findings",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("system_id", sa.String(64), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("severity", sa.String(32), nullable=True),
        sa.Column("status", sa.String(16), nullable=False, server_default="open"),
        sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("acknowledged_by", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_findings_system_status", "findings", ["system_id", "status"])

    # --- app_config ---
    op.create_table(
        "app_config",
        sa.Column("key", sa.String(128), nullable=False),
        sa.Column("value", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("key"),
    )

    # --- audit_log ---
    op.create_table(
        "audit_log",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("actor", sa.String(255), nullable=True),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("resource_type", sa.String(64), nullable=False),
        sa.Column("resource_id", sa.String(128), nullable=True),
        sa.Column("details", sa.Text(), nullable=True),
        sa.Column("ip", sa.String(64), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_log_at", "audit_log", ["at"])
    op.create_index("ix_audit_log_action", "audit_log", ["action"])

    # --- seed dashboard config ---
    op.execute(
        "INSERT INTO app_config (key, value) "
        "VALUES ('dashboard_config', '{\"score_display_window_days\": 7}')"
    )


def downgrade() -> None:
    op.drop_table("audit_log")
    op.drop_table("app_config")
    op.drop_table("findings")
    op.drop_table("effective_scores")
    op.drop_table("windows")
    op.drop_table("event_scores")
    op.drop_table("es_event_metadata")
    op.execute("DROP INDEX IF EXISTS ix_events_message_fts")
    op.drop_table("events")
    op.drop_table("elasticsearch_connections")
    op.drop_table("monitored_systems")
