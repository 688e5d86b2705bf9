"""
Pydantic schemas for request/response validation.
"""
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List, Dict, Any
from datetime import date, datetime
from enum import Enum


# Enums
class GenerationMode(str, Enum):
    """How a syllabus is produced."""

    TIERED = "tiered"
    ARCHITECT = "architect"


class CompositionType(str, Enum):
    SINGLE = "single"
    COMPOSITE_PROGRAM = "composite_program"
    VOCATIONAL = "vocational"


class PillarPriority(str, Enum):
    CORE = "core"
    IMPORTANT = "important"
    NICE_TO_HAVE = "nice-to-have"


class ResourceType(str, Enum):
    """Kinds of extra resources a learner can ask for."""

    VIDEO = "video"
    READING = "reading"
    PODCAST = "podcast"
    MOOC = "mooc"


class SummaryLength(str, Enum):
    BRIEF = "brief"
    STANDARD = "standard"
    COMPREHENSIVE = "comprehensive"


class MissionMode(str, Enum):
    DRAFT = "draft"
    ACTIVE = "active"


class SkillLevel(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


# Syllabus Schemas
class SyllabusModule(BaseModel):
    """One curriculum step (module) of a syllabus."""

    title: str
    tag: str = "General"
    source: str = ""
    source_url: Optional[str] = None
    source_urls: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    is_capstone: bool = False
    estimated_hours: Optional[float] = None
    priority: Optional[str] = None
    pillar: Optional[str] = None
    # Course-grammar metadata
    learning_objective: Optional[str] = None
    pedagogical_function: Optional[str] = None
    cognitive_level: Optional[str] = None
    narrative_position: Optional[str] = None
    evidence_of_mastery: Optional[str] = None
    selection_rationale: Optional[str] = None
    # Provenance / visibility flags
    origin: Optional[str] = None
    is_ai_discovered: bool = False
    from_custom_pillar: Optional[str] = None
    is_hidden_for_time: bool = False
    is_hidden_for_depth: bool = False
    # Nested sub-steps, when a module groups several study sessions
    steps: Optional[List[Dict[str, Any]]] = None

    model_config = ConfigDict(extra="ignore")


class Pillar(BaseModel):
    """Thematic grouping of curriculum topics."""

    name: str
    search_terms: List[str] = Field(default_factory=list)
    recommended_sources: List[str] = Field(default_factory=list)
    priority: PillarPriority = PillarPriority.IMPORTANT


class GrammarValidation(BaseModel):
    valid: bool
    score: int
    violations: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)


class SyllabusGenerateRequest(BaseModel):
    discipline: str = Field(..., min_length=1, max_length=255)
    discipline_path: Optional[str] = None
    mode: GenerationMode = GenerationMode.TIERED
    force_refresh: bool = False


class SyllabusResponse(BaseModel):
    discipline: str
    discipline_path: Optional[str] = None
    modules: List[SyllabusModule]
    source: Optional[str] = None
    source_url: Optional[str] = None
    raw_sources: Optional[List[Dict[str, Any]]] = None
    topic_pillars: Optional[List[Pillar]] = None
    narrative_flow: Optional[str] = None
    composition_type: Optional[str] = None
    course_grammar: Optional[Dict[str, Any]] = None
    grammar_validation: Optional[GrammarValidation] = None
    synthesis_rationale: Optional[str] = None
    cached: bool = False
    timestamp: datetime


class CommunitySyllabusSummary(BaseModel):
    discipline: str
    discipline_path: Optional[str] = None
    source: Optional[str] = None
    module_count: int
    composition_type: Optional[str] = None
    updated_at: datetime


class PillarInferenceRequest(BaseModel):
    # Optional so a missing field is answered with a 400 like the other
    # validation failures of this endpoint
    discipline: Optional[str] = None
    modules: Optional[List[SyllabusModule]] = None


class PillarInferenceResponse(BaseModel):
    pillars: List[Pillar]
    narrative_flow: Optional[str] = None
    composition_type: Optional[str] = None


class GrammarValidationRequest(BaseModel):
    modules: List[SyllabusModule]
    course_grammar: Optional[Dict[str, Any]] = None


# Discipline Schemas
class DisciplineResponse(BaseModel):
    id: str
    locale: str
    l1: str
    l2: Optional[str] = None
    l3: Optional[str] = None
    l4: Optional[str] = None
    l5: Optional[str] = None
    l6: Optional[str] = None
    path: str

    model_config = ConfigDict(from_attributes=True)


class DisciplineMatch(DisciplineResponse):
    similarity_score: float
    match_type: str  # prefix | fuzzy | ai
    rationale: Optional[str] = None


class DisciplineChild(BaseModel):
    name: str
    has_children: bool


class DisciplineBrowseResponse(BaseModel):
    locale: str
    path: List[str]
    level: int
    children: List[DisciplineChild]


class DisciplineSearchResponse(BaseModel):
    query: str
    results: List[DisciplineMatch]


class AIMatchRequest(BaseModel):
    query: Optional[str] = None
    limit: int = Field(10, ge=1, le=50)
    locale: str = "en"


class AIMatchResponse(BaseModel):
    query: str
    matches: List[DisciplineMatch]
    candidates_considered: int = 0
    error: Optional[str] = None
    message: Optional[str] = None


class DisciplineImportRequest(BaseModel):
    locale: str = "en"
    replace: bool = False


class DisciplineImportResponse(BaseModel):
    locale: str
    imported: int
    skipped: int
    replaced: bool
    message: Optional[str] = None


class DisciplineTranslateRequest(BaseModel):
    target_locale: str
    offset: int = Field(0, ge=0)
    batch_size: int = Field(25, ge=1, le=100)


class DisciplineTranslateResponse(BaseModel):
    target_locale: str
    translated: int
    offset: int
    next_offset: int
    remaining: int
    message: Optional[str] = None


# Saved Syllabus + Mission Control Schemas
class SavedSyllabusCreate(BaseModel):
    discipline: str = Field(..., min_length=1, max_length=255)
    discipline_path: Optional[str] = None
    modules: List[SyllabusModule] = Field(..., min_length=1)
    source: Optional[str] = None
    source_url: Optional[str] = None
    raw_sources: Optional[List[Dict[str, Any]]] = None


class SavedSyllabusModulesUpdate(BaseModel):
    modules: List[SyllabusModule] = Field(..., min_length=1)


class SavedSyllabusResponse(BaseModel):
    id: str
    user_id: str
    discipline: str
    discipline_path: Optional[str] = None
    modules: List[SyllabusModule]
    source: Optional[str] = None
    source_url: Optional[str] = None
    mission_state: Optional[Dict[str, Any]] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class StepIndexRequest(BaseModel):
    index: int = Field(..., ge=0)


class ConfirmPathRequest(BaseModel):
    prefetch: bool = True


class MissionStep(SyllabusModule):
    original_index: int


class MissionStats(BaseModel):
    total: int
    selected: int
    estimated_hours: float


class PrefetchStatusResponse(BaseModel):
    syllabus_id: str
    phase: str
    total: int
    progress: int
    current_step: Optional[str] = None
    completed_steps: List[str] = Field(default_factory=list)
    failed_steps: List[str] = Field(default_factory=list)
    is_running: bool
    elapsed_seconds: float


class MissionControlResponse(BaseModel):
    syllabus_id: str
    mode: MissionMode
    selected_steps: List[int]
    active_step_index: Optional[int] = None
    confirmed_steps: List[MissionStep]
    current_step: Optional[MissionStep] = None
    stats: MissionStats
    prefetch: Optional[PrefetchStatusResponse] = None


# Resource Schemas
class StepResourcesRequest(BaseModel):
    step_title: str = Field(..., min_length=1)
    discipline: str = Field(..., min_length=1)
    syllabus_urls: List[str] = Field(default_factory=list)
    used_video_urls: List[str] = Field(default_factory=list)
    force_refresh: bool = False


class StepResources(BaseModel):
    step_details: Optional[Dict[str, Any]] = None
    primary_video: Optional[Dict[str, Any]] = None
    deep_reading: Optional[Dict[str, Any]] = None
    book: Optional[Dict[str, Any]] = None
    alternatives: List[Dict[str, Any]] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")


class StepResourcesResponse(BaseModel):
    step_title: str
    discipline: str
    resources: StepResources
    cached: bool = False


class AdditionalResourceRequest(BaseModel):
    resource_type: ResourceType
    step_title: str = Field(..., min_length=1)
    discipline: str = Field(..., min_length=1)
    existing_urls: List[str] = Field(default_factory=list)


class AdditionalResourceResponse(BaseModel):
    found: bool
    resource: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    message: Optional[str] = None


class ReportResourceRequest(BaseModel):
    broken_url: str = Field(..., min_length=1)
    resource_type: str = Field(..., min_length=1)
    step_title: str = Field(..., min_length=1)
    discipline: str = Field(..., min_length=1)
    report_reason: Optional[str] = None


class ReportResourceResponse(BaseModel):
    reported: bool
    report_count: int
    replacement: Optional[Dict[str, Any]] = None
    verified: bool = False
    message: Optional[str] = None


class RecoverPodcastRequest(BaseModel):
    title: str = Field(..., min_length=1)
    source: Optional[str] = None
    original_url: Optional[str] = None


class RecoverPodcastResponse(BaseModel):
    recovered_url: Optional[str] = None
    was_recovered: bool = False
    message: Optional[str] = None


# Summary Schemas
class StepSummaryRequest(BaseModel):
    step_title: str = Field(..., min_length=1)
    discipline: str = Field(..., min_length=1)
    step_description: Optional[str] = None
    source_content: Optional[str] = None
    resources: Optional[StepResources] = None
    length: str = SummaryLength.STANDARD.value
    locale: str = "en"
    force_refresh: bool = False
    learning_objective: Optional[str] = None
    pedagogical_function: Optional[str] = None
    cognitive_level: Optional[str] = None
    narrative_position: Optional[str] = None
    evidence_of_mastery: Optional[str] = None


class StepSummaryResponse(BaseModel):
    step_title: str
    discipline: str
    length: str
    locale: str
    summary: str
    cached: bool = False


# Capstone Assignment Schemas
class CapstoneAssignmentRequest(BaseModel):
    step_title: str = Field(..., min_length=1)
    discipline: str = Field(..., min_length=1)
    source_urls: List[str] = Field(default_factory=list)
    modules_covered: List[str] = Field(default_factory=list)
    force_refresh: bool = False


class CapstoneAssignmentResponse(BaseModel):
    step_title: str
    discipline: str
    assignment_title: str
    scenario: Optional[str] = None
    instructions: Optional[str] = None
    deliverable_format: Optional[str] = None
    estimated_time: Optional[str] = None
    role: Optional[str] = None
    audience: Optional[str] = None
    resource_attachments: Optional[List[Any]] = None
    modules_covered: Optional[List[str]] = None
    source_tier: str
    source_label: Optional[str] = None
    source_url: Optional[str] = None
    cached: bool = False

    model_config = ConfigDict(from_attributes=True)


# Schedule Schemas
class ScheduleCreate(BaseModel):
    saved_syllabus_id: str
    availability: Dict[str, int]
    start_date: date
    existing_schedule_id: Optional[str] = None


class ScheduleCreateResponse(BaseModel):
    success: bool
    schedule_id: str
    events_count: int


class ScheduleEventResponse(BaseModel):
    id: str
    module_index: int
    step_title: str
    estimated_minutes: int
    scheduled_date: date
    is_done: bool
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ScheduleResponse(BaseModel):
    id: str
    saved_syllabus_id: str
    availability: Dict[str, int]
    start_date: date
    is_active: bool
    events: List[ScheduleEventResponse]

    model_config = ConfigDict(from_attributes=True)


class ScheduleEventUpdate(BaseModel):
    is_done: bool


class FeasibilityRequest(BaseModel):
    hours_per_week: float = Field(..., gt=0)
    duration_weeks: float = Field(..., gt=0)
    skill_level: SkillLevel = SkillLevel.INTERMEDIATE


class FeasibilityResponse(BaseModel):
    status: str  # valid | warning | impossible
    total_hours: float
    recommended_depth: Optional[str] = None
    coverage_percent: Optional[int] = None
    message: Optional[str] = None
    suggested_hours_per_week: Optional[int] = None
    suggested_weeks: Optional[int] = None
    estimated_completion_date: date


# Health Check Schema
class HealthCheckResponse(BaseModel):
    """Schema for health check responses."""

    status: str
    database: str
    providers: Dict[str, str]
    timestamp: datetime
