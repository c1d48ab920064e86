"""
Pydantic models for the Concept Path Engine.

Graph: concepts, topics, courses (authored externally, immutable here).
Progress: per-concept progress, per-topic and per-course aggregates, and the
per-(user, course) progress document.
Paths: path-generation request/response and the course-level plan.

Field names are snake_case in Python and camelCase on the wire
(``model_dump(by_alias=True)``); both spellings are accepted on input.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel


# =========================================================================
# Literals
# =========================================================================

ConceptStatus = Literal["not_started", "in_progress", "completed"]
GateState = Literal["locked", "unlocked", "in_progress", "completed"]
CourseStatus = Literal["not_started", "in_progress", "completed"]
SkillLevel = Literal["beginner", "intermediate", "advanced"]
PathType = Literal["concept", "course"]


class WireModel(BaseModel):
    """Base model with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class FrozenWireModel(WireModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )


# =========================================================================
# Graph models
# =========================================================================


class Concept(FrozenWireModel):
    """Smallest unit of learnable material."""

    id: str
    title: str
    description: Optional[str] = None
    complexity: int = Field(default=3, ge=1, le=5)
    estimated_learning_time_hours: float = Field(default=1.0, ge=0)
    prerequisites: List[str] = Field(default_factory=list)
    is_fundamental: bool = False


class Topic(FrozenWireModel):
    """Ordered group of concepts within a course."""

    id: str
    title: str = ""
    concept_ids: List[str] = Field(default_factory=list)

    def unique_concept_ids(self) -> List[str]:
        """Concept ids in authored order, first occurrence wins."""
        return list(dict.fromkeys(self.concept_ids))


class Course(FrozenWireModel):
    """Ordered group of topics; unit of enrollment."""

    id: str
    title: str
    short_description: str = ""
    category: str = ""
    tags: List[str] = Field(default_factory=list)
    level: str = "Beginner"
    average_rating: float = Field(default=0.0, ge=0)
    total_hours: float = Field(default=0.0, ge=0)
    topics: List[Topic] = Field(default_factory=list)

    def concept_ids(self) -> List[str]:
        """All concept ids across topics, in topic order, first occurrence wins."""
        seen = set()
        ordered: List[str] = []
        for topic in self.topics:
            for cid in topic.concept_ids:
                if cid not in seen:
                    seen.add(cid)
                    ordered.append(cid)
        return ordered


# =========================================================================
# Progress models
# =========================================================================


class UserConceptProgress(FrozenWireModel):
    """Per (user, concept) learning state. Only ever replaced, never deleted."""

    user_id: str
    concept_id: str
    course_id: Optional[str] = None
    status: ConceptStatus = "not_started"
    mastery_score: float = Field(default=0.0, ge=0, le=100)
    time_spent: int = 0  # seconds
    attempts: int = 0
    failed_attempts: int = 0
    description_read: bool = False
    video_watched: bool = False
    quiz_passed: bool = False
    mastered: bool = False
    mastered_at: Optional[datetime] = None
    last_quiz_attempt: Optional[datetime] = None
    last_updated: Optional[datetime] = None


class TopicProgress(WireModel):
    topic_id: str
    title: str = ""
    completed_concepts: int = 0
    total_concepts: int = 0
    progress: int = 0


class UserCourseProgress(WireModel):
    """Per (user, course) aggregate, derived from concept progress."""

    user_id: str
    course_id: str
    overall_progress: int = 0
    status: CourseStatus = "not_started"
    concepts_completed: int = 0
    total_concepts: int = 0
    total_time_spent: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_accessed_at: Optional[datetime] = None


class CourseProgressDocument(WireModel):
    """The persisted per-(user, course) snapshot."""

    user_id: str
    course_id: str
    version: int = 0
    concepts: Dict[str, UserConceptProgress] = Field(default_factory=dict)
    topics: List[TopicProgress] = Field(default_factory=list)
    course: Optional[UserCourseProgress] = None


# =========================================================================
# Concept path request / response
# =========================================================================


class PathRequest(WireModel):
    goal: str = ""
    concept_id: Optional[str] = None
    current_skill_level: SkillLevel = "beginner"
    time_available: str = "1-2 hours/day"
    selected_courses: List[str] = Field(default_factory=list)


class PrerequisiteMastery(WireModel):
    prerequisite_id: str
    score: float


class PathNode(WireModel):
    concept_id: str
    title: str
    locked: bool
    state: GateState
    mastery_score: float = 0.0
    prerequisite_masteries: List[PrerequisiteMastery] = Field(default_factory=list)


class DetailedPath(WireModel):
    strategy: str
    path: List[str]
    detailed_path: List[PathNode]
    total_hours: float = 0.0
    total_cost: float = 0.0


class PathResponse(WireModel):
    goals: List[str]
    concepts: List[Concept]
    path: List[Concept]
    best_path: DetailedPath
    all_paths: List[DetailedPath]


# =========================================================================
# Course-level plan
# =========================================================================


class CompletionCriteria(WireModel):
    minimum_score: int
    required_activities: List[str]
    mastery_threshold: int


class PathStep(WireModel):
    order: int
    course_id: str
    title: str
    description: str = ""
    type: str = "course"
    difficulty: str
    estimated_hours: int
    completion_criteria: CompletionCriteria


class CoursePath(WireModel):
    title: str
    goals: List[str]
    current_skill_level: SkillLevel
    time_available: str
    steps: List[PathStep]
    total_hours: int
    estimated_weeks: int

    @computed_field(alias="estimatedDuration")
    @property
    def estimated_duration(self) -> str:
        return f"{self.estimated_weeks} weeks"


# =========================================================================
# Sequential view
# =========================================================================


class SequentialConcept(WireModel):
    concept_id: str
    title: str
    complexity: int
    estimated_learning_time_hours: float
    prerequisites: List[str]
    mastery_score: float
    status: ConceptStatus
    state: GateState
    is_unlocked: bool
    time_spent: int = 0
    attempts: int = 0


# =========================================================================
# Saved learning path
# =========================================================================


class SavedLearningPath(WireModel):
    user_id: str
    path_type: PathType
    selected_goal: str = ""
    selected_concept: Optional[str] = None
    generated_path: Dict[str, Any] = Field(default_factory=dict)
    alternative_routes: List[Dict[str, Any]] = Field(default_factory=list)
    selected_route: int = 0
    saved_at: Optional[datetime] = None
