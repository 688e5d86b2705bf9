"""
SQLAlchemy ORM models for Hermes database.

Primary keys are UUID strings generated client-side so the same models work
on PostgreSQL and on the SQLite database used by the test-suite.  Curriculum
payloads (modules, resources, pillars) are stored as JSON documents.
"""
import uuid

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


DISCIPLINE_LEVELS = ("l1", "l2", "l3", "l4", "l5", "l6")


class Discipline(Base):
    """One row of the six-level academic discipline taxonomy."""

    __tablename__ = "disciplines"

    id = Column(String(36), primary_key=True, default=_uuid)
    locale = Column(String(8), nullable=False, default="en", index=True)
    l1 = Column(String(255), nullable=False, index=True)
    l2 = Column(String(255), nullable=True)
    l3 = Column(String(255), nullable=True)
    l4 = Column(String(255), nullable=True)
    l5 = Column(String(255), nullable=True)
    l6 = Column(String(255), nullable=True)
    # Lower-cased concatenation of all levels, used for fuzzy matching
    search_text = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    @property
    def levels(self):
        return [getattr(self, name) for name in DISCIPLINE_LEVELS if getattr(self, name)]

    @property
    def path(self) -> str:
        return " > ".join(self.levels)


class CommunitySyllabus(Base):
    """Shared syllabus cache, one row per discipline."""

    __tablename__ = "community_syllabi"

    id = Column(String(36), primary_key=True, default=_uuid)
    discipline = Column(String(255), nullable=False, unique=True, index=True)
    discipline_path = Column(Text, nullable=True)
    modules = Column(JSON, nullable=False, default=list)
    raw_sources = Column(JSON, nullable=True)
    source = Column(Text, nullable=True)
    source_url = Column(Text, nullable=True)
    topic_pillars = Column(JSON, nullable=True)
    narrative_flow = Column(Text, nullable=True)
    composition_type = Column(String(50), nullable=True)
    course_grammar = Column(JSON, nullable=True)
    synthesis_rationale = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class SavedSyllabus(Base):
    """A learner's personal copy of a syllabus, with its Mission Control state."""

    __tablename__ = "saved_syllabi"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(255), nullable=False, index=True)
    discipline = Column(String(255), nullable=False)
    discipline_path = Column(Text, nullable=True)
    modules = Column(JSON, nullable=False, default=list)
    source = Column(Text, nullable=True)
    source_url = Column(Text, nullable=True)
    raw_sources = Column(JSON, nullable=True)
    # {mode, confirmed_step_titles, confirmed_step_indices, active_step_index,
    #  selected_step_indices, step_titles}
    mission_state = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    schedules = relationship(
        "LearningSchedule", back_populates="saved_syllabus", cascade="all, delete-orphan"
    )


class StepResource(Base):
    """Cached curated resources (video, reading, book, alternatives) for a step."""

    __tablename__ = "step_resources"
    __table_args__ = (UniqueConstraint("step_title", "discipline", name="uq_step_resources_step"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    step_title = Column(String(500), nullable=False, index=True)
    discipline = Column(String(255), nullable=False, index=True)
    syllabus_urls = Column(JSON, nullable=True)
    resources = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class StepSummary(Base):
    """Cached AI course notes (HTML) per step, length and locale."""

    __tablename__ = "step_summaries"
    __table_args__ = (
        UniqueConstraint("step_title", "discipline", "length", "locale", name="uq_step_summaries_key"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    step_title = Column(String(500), nullable=False, index=True)
    discipline = Column(String(255), nullable=False)
    length = Column(String(20), nullable=False, default="standard")
    locale = Column(String(8), nullable=False, default="en")
    summary = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class ReportedLink(Base):
    """Resource URL reported as broken; excluded from future recommendations."""

    __tablename__ = "reported_links"

    id = Column(String(36), primary_key=True, default=_uuid)
    url = Column(Text, nullable=False, unique=True)
    resource_type = Column(String(50), nullable=False)
    step_title = Column(String(500), nullable=True)
    discipline = Column(String(255), nullable=True, index=True)
    reported_by = Column(String(255), nullable=True)
    report_reason = Column(Text, nullable=True)
    report_count = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class CapstoneAssignment(Base):
    """Cached capstone assignment brief for a capstone step."""

    __tablename__ = "capstone_assignments"
    __table_args__ = (
        UniqueConstraint("step_title", "discipline", name="uq_capstone_assignments_step"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    step_title = Column(String(500), nullable=False)
    discipline = Column(String(255), nullable=False)
    assignment_title = Column(Text, nullable=False)
    scenario = Column(Text, nullable=True)
    # HTML fragment (<h3>, <p>, <ul>)
    instructions = Column(Text, nullable=True)
    deliverable_format = Column(Text, nullable=True)
    estimated_time = Column(String(100), nullable=True)
    role = Column(Text, nullable=True)
    audience = Column(Text, nullable=True)
    resource_attachments = Column(JSON, nullable=True)
    modules_covered = Column(JSON, nullable=True)
    source_tier = Column(String(30), nullable=False)
    source_label = Column(Text, nullable=True)
    source_url = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class LearningSchedule(Base):
    """Weekly availability plan mapped onto a saved syllabus."""

    __tablename__ = "learning_schedules"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(255), nullable=False, index=True)
    saved_syllabus_id = Column(
        String(36), ForeignKey("saved_syllabi.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # {"monday": 60, "tuesday": 0, ...} minutes per weekday
    availability = Column(JSON, nullable=False)
    start_date = Column(Date, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    saved_syllabus = relationship("SavedSyllabus", back_populates="schedules")
    events = relationship(
        "ScheduleEvent",
        back_populates="schedule",
        cascade="all, delete-orphan",
        order_by="ScheduleEvent.module_index",
    )


class ScheduleEvent(Base):
    """One study session: a single step placed on a calendar date."""

    __tablename__ = "schedule_events"

    id = Column(String(36), primary_key=True, default=_uuid)
    schedule_id = Column(
        String(36), ForeignKey("learning_schedules.id", ondelete="CASCADE"), nullable=False, index=True
    )
    module_index = Column(Integer, nullable=False)
    step_title = Column(String(500), nullable=False)
    estimated_minutes = Column(Integer, nullable=False, default=45)
    scheduled_date = Column(Date, nullable=False)
    is_done = Column(Boolean, nullable=False, default=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    schedule = relationship("LearningSchedule", back_populates="events")
