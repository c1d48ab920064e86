"""
Progress events and their reduction into per-concept progress.

Each learner action is an immutable event; the current
``UserConceptProgress`` of a concept is a left fold of ``apply_event`` over
that concept's events. Replaying the same log always yields the same
state, which is what the persistence layer relies on when it rebuilds a
document after a write conflict.
"""

import logging
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, Iterable, Literal, Mapping, Optional, Union

from pydantic import Field, TypeAdapter

from conceptpath.config import DEFAULT_CONFIG, EngineConfig
from conceptpath.models import FrozenWireModel, UserConceptProgress
from conceptpath.progress_gate import derive_status
from conceptpath.result import InvalidTransition, Ok

logger = logging.getLogger(__name__)


# =========================================================================
# Events
# =========================================================================


class _Event(FrozenWireModel):
    user_id: str
    concept_id: str
    course_id: Optional[str] = None
    occurred_at: datetime


class DescriptionRead(_Event):
    action: Literal["mark_description_read"] = "mark_description_read"


class VideoWatched(_Event):
    action: Literal["mark_video_watched"] = "mark_video_watched"
    watch_time_seconds: int = Field(default=0, ge=0)


class QuizSubmitted(_Event):
    action: Literal["quiz_submit"] = "quiz_submit"
    score: float = Field(ge=0, le=100)
    passing_score: Optional[float] = Field(default=None, ge=0, le=100)
    time_spent_seconds: int = Field(default=0, ge=0)


ProgressEvent = Annotated[
    Union[DescriptionRead, VideoWatched, QuizSubmitted],
    Field(discriminator="action"),
]

_EVENT_ADAPTER = TypeAdapter(ProgressEvent)

ACTIONS = ("mark_description_read", "mark_video_watched", "quiz_submit")


def parse_progress_update(
    payload: Mapping[str, Any],
    user_id: str,
    occurred_at: Optional[datetime] = None,
):
    """Turn a progress-update request into an event.

    ``payload`` has the wire shape
    ``{action, conceptId, courseId, ...actionPayload}``.

    Returns:
        ``Ok(event)`` or ``InvalidTransition`` for an unknown action.

    Raises:
        pydantic.ValidationError: malformed payload for a known action.
    """
    action = payload.get("action")
    if action not in ACTIONS:
        return InvalidTransition(
            reason=f"unknown action {action!r}; expected one of {list(ACTIONS)}",
            concept_id=payload.get("conceptId") or payload.get("concept_id"),
        )
    data = dict(payload)
    data["userId"] = user_id
    if "occurredAt" not in data and "occurred_at" not in data:
        data["occurredAt"] = occurred_at or datetime.now(timezone.utc)
    return Ok(_EVENT_ADAPTER.validate_python(data))


def event_from_json(raw: str):
    """Decode one stored event."""
    return _EVENT_ADAPTER.validate_json(raw)


# =========================================================================
# Reduction
# =========================================================================


def _initial(event) -> UserConceptProgress:
    return UserConceptProgress(
        user_id=event.user_id,
        concept_id=event.concept_id,
        course_id=event.course_id,
    )


def _status(current: UserConceptProgress, **flags) -> str:
    if current.status == "completed":
        return "completed"
    merged = {
        "description_read": current.description_read,
        "video_watched": current.video_watched,
        "quiz_passed": current.quiz_passed,
    }
    merged.update(flags)
    return derive_status(**merged)


def apply_event(
    progress: Optional[UserConceptProgress],
    event,
    config: EngineConfig = DEFAULT_CONFIG,
):
    """Apply one event to a concept's progress.

    Returns:
        ``Ok(new_progress)`` or ``InvalidTransition``. The input is never
        modified.
    """
    current = progress or _initial(event)
    if current.concept_id != event.concept_id or current.user_id != event.user_id:
        return InvalidTransition(
            reason="event does not belong to this progress record",
            concept_id=event.concept_id,
        )

    if isinstance(event, DescriptionRead):
        return Ok(current.model_copy(update={
            "description_read": True,
            "status": _status(current, description_read=True),
            "last_updated": event.occurred_at,
        }))

    if isinstance(event, VideoWatched):
        return Ok(current.model_copy(update={
            "video_watched": True,
            "time_spent": current.time_spent + event.watch_time_seconds,
            "status": _status(current, video_watched=True),
            "last_updated": event.occurred_at,
        }))

    if isinstance(event, QuizSubmitted):
        return _apply_quiz(current, event, config)

    return InvalidTransition(reason=f"unsupported event {type(event).__name__}",
                             concept_id=event.concept_id)


def _apply_quiz(current: UserConceptProgress, event: QuizSubmitted, config: EngineConfig):
    if not (current.description_read and current.video_watched):
        return InvalidTransition(
            reason="quiz submitted before the description was read and the video watched",
            concept_id=event.concept_id,
        )

    passing = (
        event.passing_score
        if event.passing_score is not None
        else config.default_quiz_passing_score
    )
    passed = event.score >= passing
    mastery = max(current.mastery_score, event.score)
    update: Dict[str, Any] = {
        "attempts": current.attempts + 1,
        "last_quiz_attempt": event.occurred_at,
        "last_updated": event.occurred_at,
        "mastery_score": mastery,
        "time_spent": current.time_spent + event.time_spent_seconds,
    }
    if mastery >= config.mastery_threshold and not current.mastered:
        update["mastered"] = True
        update["mastered_at"] = event.occurred_at

    if passed:
        update["quiz_passed"] = True
        update["failed_attempts"] = 0
        update["status"] = _status(current, quiz_passed=True)
        return Ok(current.model_copy(update=update))

    if current.status == "completed":
        # a failed retake is recorded but never reopens a completed concept
        return Ok(current.model_copy(update=update))

    failed = current.failed_attempts + 1
    update["quiz_passed"] = False
    update["failed_attempts"] = failed
    update["status"] = "in_progress"
    if failed >= config.max_failed_quiz_attempts:
        logger.info(
            "Concept %s: %d failed quiz attempts — sub-activities reset.",
            current.concept_id, failed,
        )
        update.update({
            "description_read": False,
            "video_watched": False,
            "failed_attempts": 0,
        })
    return Ok(current.model_copy(update=update))


def reduce_events(
    events: Iterable,
    initial: Optional[Mapping[str, UserConceptProgress]] = None,
    config: EngineConfig = DEFAULT_CONFIG,
):
    """Fold an ordered event log into ``{concept_id: UserConceptProgress}``.

    Returns:
        ``Ok(snapshot)`` or the first ``InvalidTransition`` encountered.
    """
    snapshot: Dict[str, UserConceptProgress] = dict(initial or {})
    for event in events:
        result = apply_event(snapshot.get(event.concept_id), event, config)
        if not isinstance(result, Ok):
            return result
        snapshot[event.concept_id] = result.value
    return Ok(snapshot)
