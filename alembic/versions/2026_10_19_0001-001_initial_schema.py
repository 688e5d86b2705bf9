"""initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-19

All 9 tables as defined in app/models/database_models.py:
disciplines, community_syllabi, saved_syllabi, step_resources,
step_summaries, reported_links, capstone_assignments, learning_schedules,
schedule_events.
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps(updated: bool = True) -> list:
    cols = [sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)]
    if updated:
        cols.append(sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False))
    return cols


def upgrade() -> None:
    # ── disciplines ───────────────────────────────────────────────────────
    op.create_table(
        "disciplines",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("locale", sa.String(8), nullable=False, server_default="en", index=True),
        sa.Column("l1", sa.String(255), nullable=False, index=True),
        sa.Column("l2", sa.String(255), nullable=True),
        sa.Column("l3", sa.String(255), nullable=True),
        sa.Column("l4", sa.String(255), nullable=True),
        sa.Column("l5", sa.String(255), nullable=True),
        sa.Column("l6", sa.String(255), nullable=True),
        sa.Column("search_text", sa.Text, nullable=False, server_default=""),
        *_timestamps(updated=False),
    )

    # ── community_syllabi ─────────────────────────────────────────────────
    op.create_table(
        "community_syllabi",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("discipline", sa.String(255), nullable=False, unique=True, index=True),
        sa.Column("discipline_path", sa.Text, nullable=True),
        sa.Column("modules", sa.JSON, nullable=False),
        sa.Column("raw_sources", sa.JSON, nullable=True),
        sa.Column("source", sa.Text, nullable=True),
        sa.Column("source_url", sa.Text, nullable=True),
        sa.Column("topic_pillars", sa.JSON, nullable=True),
        sa.Column("narrative_flow", sa.Text, nullable=True),
        sa.Column("composition_type", sa.String(50), nullable=True),
        sa.Column("course_grammar", sa.JSON, nullable=True),
        sa.Column("synthesis_rationale", sa.Text, nullable=True),
        *_timestamps(),
    )

    # ── saved_syllabi ─────────────────────────────────────────────────────
    op.create_table(
        "saved_syllabi",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(255), nullable=False, index=True),
        sa.Column("discipline", sa.String(255), nullable=False),
        sa.Column("discipline_path", sa.Text, nullable=True),
        sa.Column("modules", sa.JSON, nullable=False),
        sa.Column("source", sa.Text, nullable=True),
        sa.Column("source_url", sa.Text, nullable=True),
        sa.Column("raw_sources", sa.JSON, nullable=True),
        sa.Column("mission_state", sa.JSON, nullable=True),
        *_timestamps(),
    )

    # ── step_resources ────────────────────────────────────────────────────
    op.create_table(
        "step_resources",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("step_title", sa.String(500), nullable=False, index=True),
        sa.Column("discipline", sa.String(255), nullable=False, index=True),
        sa.Column("syllabus_urls", sa.JSON, nullable=True),
        sa.Column("resources", sa.JSON, nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("step_title", "discipline", name="uq_step_resources_step"),
    )

    # ── step_summaries ────────────────────────────────────────────────────
    op.create_table(
        "step_summaries",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("step_title", sa.String(500), nullable=False, index=True),
        sa.Column("discipline", sa.String(255), nullable=False),
        sa.Column("length", sa.String(20), nullable=False, server_default="standard"),
        sa.Column("locale", sa.String(8), nullable=False, server_default="en"),
        sa.Column("summary", sa.Text, nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("step_title", "discipline", "length", "locale", name="uq_step_summaries_key"),
    )

    # ── reported_links ────────────────────────────────────────────────────
    op.create_table(
        "reported_links",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("url", sa.Text, nullable=False, unique=True),
        sa.Column("resource_type", sa.String(50), nullable=False),
        sa.Column("step_title", sa.String(500), nullable=True),
        sa.Column("discipline", sa.String(255), nullable=True, index=True),
        sa.Column("reported_by", sa.String(255), nullable=True),
        sa.Column("report_reason", sa.Text, nullable=True),
        sa.Column("report_count", sa.Integer, nullable=False, server_default="1"),
        *_timestamps(),
    )

    # ── capstone_assignments ──────────────────────────────────────────────
    op.create_table(
        "capstone_assignments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("step_title", sa.String(500), nullable=False),
        sa.Column("discipline", sa.String(255), nullable=False),
        sa.Column("assignment_title", sa.Text, nullable=False),
        sa.Column("scenario", sa.Text, nullable=True),
        sa.Column("instructions", sa.Text, nullable=True),
        sa.Column("deliverable_format", sa.Text, nullable=True),
        sa.Column("estimated_time", sa.String(100), nullable=True),
        sa.Column("role", sa.Text, nullable=True),
        sa.Column("audience", sa.Text, nullable=True),
        sa.Column("resource_attachments", sa.JSON, nullable=True),
        sa.Column("modules_covered", sa.JSON, nullable=True),
        sa.Column("source_tier", sa.String(30), nullable=False),
        sa.Column("source_label", sa.Text, nullable=True),
        sa.Column("source_url", sa.Text, nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("step_title", "discipline", name="uq_capstone_assignments_step"),
    )

    # ── learning_schedules ────────────────────────────────────────────────
    op.create_table(
        "learning_schedules",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(255), nullable=False, index=True),
        sa.Column("saved_syllabus_id", sa.String(36), sa.ForeignKey("saved_syllabi.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("availability", sa.JSON, nullable=False),
        sa.Column("start_date", sa.Date, nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    # ── schedule_events ───────────────────────────────────────────────────
    op.create_table(
        "schedule_events",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("schedule_id", sa.String(36), sa.ForeignKey("learning_schedules.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("module_index", sa.Integer, nullable=False),
        sa.Column("step_title", sa.String(500), nullable=False),
        sa.Column("estimated_minutes", sa.Integer, nullable=False, server_default="45"),
        sa.Column("scheduled_date", sa.Date, nullable=False),
        sa.Column("is_done", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
    )


def downgrade() -> None:
    op.drop_table("schedule_events")
    op.drop_table("learning_schedules")
    op.drop_table("capstone_assignments")
    op.drop_table("reported_links")
    op.drop_table("step_summaries")
    op.drop_table("step_resources")
    op.drop_table("saved_syllabi")
    op.drop_table("community_syllabi")
    op.drop_table("disciplines")
