"""audit_trail_review_queue

Creates the audit trail & review workflow tables:
  - test_records                    — current status per WCAG criterion test
  - test_record_audit_log           — append-only status transition history
  - automated_result_review_queue   — human-review tasks with SLA due dates

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via db.create_all()
in a development environment.

Revision ID: 7c3e91a2d4f0
Revises:
Create Date: 2026-10-18 09:12:44.120531
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '7c3e91a2d4f0'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── Test records ──────────────────────────────────────────────────────
    if "test_records" not in existing:
        op.create_table(
            "test_records",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("wcag_criterion", sa.String(length=20), nullable=True,
                      comment="WCAG success criterion number, e.g. 1.4.3"),
            sa.Column("page_url", sa.String(length=500), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False,
                      server_default="pending",
                      comment="pending | passed | failed | needs_review"),
            sa.Column("method_used", sa.String(length=20), nullable=True,
                      comment="automated | manual | both"),
            sa.Column("tool_used", sa.String(length=50), nullable=True),
            sa.Column("confidence_level", sa.String(length=10), nullable=True,
                      comment="low | medium | high"),
            sa.Column("assigned_reviewer", sa.String(length=64), nullable=True),
            sa.Column("notes", sa.JSON(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_test_record_criterion", "test_records", ["wcag_criterion"])
        op.create_index("idx_test_record_status", "test_records", ["status"])

    # ── Audit log ─────────────────────────────────────────────────────────
    if "test_record_audit_log" not in existing:
        op.create_table(
            "test_record_audit_log",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("test_record_id", sa.Integer(), nullable=False),
            sa.Column("status_from", sa.String(length=20), nullable=True),
            sa.Column("status_to", sa.String(length=20), nullable=False),
            sa.Column("changed_by_type", sa.String(length=20), nullable=False,
                      comment="automated_tool | manual_tester"),
            sa.Column("changed_by_user", sa.String(length=64), nullable=True),
            sa.Column("tool_name", sa.String(length=50), nullable=True),
            sa.Column("change_reason", sa.String(length=40), nullable=False,
                      comment="initial_automated_result | manual_review"),
            sa.Column("change_description", sa.Text(), nullable=True),
            sa.Column("reviewer_notes", sa.Text(), nullable=True),
            sa.Column("evidence", sa.JSON(), nullable=False),
            sa.Column("raw_tool_output", sa.JSON(), nullable=True),
            sa.Column("screenshots", sa.JSON(), nullable=False),
            sa.Column("supporting_files", sa.JSON(), nullable=False),
            sa.Column("automated_result_id", sa.String(length=64), nullable=True),
            sa.Column("tool_confidence_score", sa.Float(), nullable=True),
            sa.Column("tool_execution_time_ms", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["test_record_id"], ["test_records.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_test_record_audit_log_test_record_id", "test_record_audit_log",
                        ["test_record_id"])
        op.create_index("idx_audit_record_ts", "test_record_audit_log",
                        ["test_record_id", "created_at"])
        op.create_index("idx_audit_changed_by", "test_record_audit_log", ["changed_by_type"])
        op.create_index("idx_audit_automated_result", "test_record_audit_log",
                        ["automated_result_id"])

    # ── Review queue ──────────────────────────────────────────────────────
    if "automated_result_review_queue" not in existing:
        op.create_table(
            "automated_result_review_queue",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("test_record_id", sa.Integer(), nullable=False),
            sa.Column("automated_result_id", sa.String(length=64), nullable=True),
            sa.Column("tool_name", sa.String(length=50), nullable=True),
            sa.Column("tool_result", sa.String(length=10), nullable=False,
                      comment="pass | fail"),
            sa.Column("wcag_criterion", sa.String(length=20), nullable=True),
            sa.Column("automated_evidence", sa.JSON(), nullable=False),
            sa.Column("priority", sa.String(length=10), nullable=False,
                      server_default="medium",
                      comment="critical | high | medium | low"),
            sa.Column("review_category", sa.String(length=30), nullable=False,
                      server_default="standard"),
            sa.Column("complexity_score", sa.Float(), nullable=True),
            sa.Column("false_positive_risk", sa.Float(), nullable=True),
            sa.Column("tool_confidence", sa.Float(), nullable=True),
            sa.Column("review_status", sa.String(length=25), nullable=False,
                      server_default="pending",
                      comment="pending | assigned | in_review | needs_clarification | completed"),
            sa.Column("assigned_reviewer", sa.String(length=64), nullable=True),
            sa.Column("review_decision", sa.String(length=10), nullable=True,
                      comment="accept | reject | modify"),
            sa.Column("reviewer_notes", sa.Text(), nullable=True),
            sa.Column("review_evidence", sa.JSON(), nullable=True),
            sa.Column("due_date", sa.DateTime(timezone=True), nullable=False),
            sa.Column("escalated_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("review_completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("time_to_completion", sa.Float(), nullable=True, comment="minutes"),
            sa.ForeignKeyConstraint(["test_record_id"], ["test_records.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_automated_result_review_queue_test_record_id",
                        "automated_result_review_queue", ["test_record_id"])
        op.create_index("ix_automated_result_review_queue_wcag_criterion",
                        "automated_result_review_queue", ["wcag_criterion"])
        op.create_index("idx_review_queue_status_priority", "automated_result_review_queue",
                        ["review_status", "priority"])
        op.create_index("idx_review_queue_record_result", "automated_result_review_queue",
                        ["test_record_id", "automated_result_id"])
        op.create_index("idx_review_queue_reviewer", "automated_result_review_queue",
                        ["assigned_reviewer"])
        op.create_index("idx_review_queue_due", "automated_result_review_queue", ["due_date"])


def downgrade():
    op.drop_table("automated_result_review_queue")
    op.drop_table("test_record_audit_log")
    op.drop_table("test_records")
