"""Refund execution columns on pending_refunds.

Revision ID: 002_refund_processing
Revises: 001_initial_schema
Create Date: 2026-10-18
"""

from __future__ import annotations

from pathlib import Path

from alembic import op


revision = "002_refund_processing"
down_revision = "001_initial_schema"
branch_labels = None
depends_on = None


def upgrade() -> None:
    sql_path = Path(__file__).resolve().parents[1] / "sql" / "002_refund_processing.sql"
    sql = sql_path.read_text(encoding="utf-8")
    conn = op.get_bind()
    conn.exec_driver_sql(sql)


def downgrade() -> None:
    conn = op.get_bind()
    conn.exec_driver_sql("DROP INDEX IF EXISTS idx_pending_refunds_status_created")
    for column in ("processed_at", "failure_reason", "gateway_refund_id"):
        conn.exec_driver_sql(f"ALTER TABLE pending_refunds DROP COLUMN IF EXISTS {column}")
