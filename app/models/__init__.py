"""Database and schema models for Hermes."""
from app.models.database_models import (
    Discipline,
    CommunitySyllabus,
    SavedSyllabus,
    StepResource,
    StepSummary,
    ReportedLink,
    CapstoneAssignment,
    LearningSchedule,
    ScheduleEvent,
)
from app.models.schemas import (
    SyllabusModule,
    SyllabusResponse,
    SavedSyllabusResponse,
    MissionControlResponse,
    StepResourcesResponse,
    StepSummaryResponse,
    CapstoneAssignmentResponse,
    ScheduleResponse,
    HealthCheckResponse,
)

__all__ = [
    # Database models
    "Discipline",
    "CommunitySyllabus",
    "SavedSyllabus",
    "StepResource",
    "StepSummary",
    "ReportedLink",
    "CapstoneAssignment",
    "LearningSchedule",
    "ScheduleEvent",
    # Pydantic schemas
    "SyllabusModule",
    "SyllabusResponse",
    "SavedSyllabusResponse",
    "MissionControlResponse",
    "StepResourcesResponse",
    "StepSummaryResponse",
    "CapstoneAssignmentResponse",
    "ScheduleResponse",
    "HealthCheckResponse",
]
