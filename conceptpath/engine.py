"""
Request-level orchestration.

Path requests: goal → graph store → path generator → progress gate.
Progress updates: request → event → unlock check → reduction → topic and
course aggregates → new document snapshot.

``persist_progress`` is the only function here that touches storage; the
rest are pure over (graph snapshot, progress snapshot).
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence

from conceptpath import db
from conceptpath.config import DEFAULT_CONFIG, EngineConfig
from conceptpath.models import Course, CourseProgressDocument, PathRequest, UserConceptProgress
from conceptpath.path_generator import PathGenerator, generate_course_path
from conceptpath.progress_events import apply_event, parse_progress_update, reduce_events
from conceptpath.progress_gate import ProgressGate
from conceptpath.result import InvalidTransition, NotFound, Ok
from conceptpath.utils import timed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProgressUpdate:
    """Outcome of one accepted progress event."""

    document: CourseProgressDocument
    event: Any
    unlocked: List[str] = field(default_factory=list)


# =========================================================================
# Paths
# =========================================================================


def recommend_path(
    store,
    request: PathRequest,
    progress: Optional[Mapping[str, UserConceptProgress]] = None,
    courses: Optional[Sequence[Course]] = None,
    config: EngineConfig = DEFAULT_CONFIG,
):
    """Best and alternative concept paths for *request*, annotated for *progress*."""
    generator = PathGenerator(store, config)
    by_id = {c.id: c for c in courses or ()}
    with timed("Path generation"):
        result = generator.generate_for_request(request, progress or {}, by_id)
    if not isinstance(result, Ok):
        logger.warning("Path generation failed: %s", result)
    return result


def plan_courses(
    request: PathRequest,
    catalog: Sequence[Course],
    config: EngineConfig = DEFAULT_CONFIG,
):
    """Course-level plan (one step per course) for *request*."""
    return generate_course_path(request, catalog, config)


def sequential_view(
    store,
    course: Course,
    progress: Mapping[str, UserConceptProgress],
    config: EngineConfig = DEFAULT_CONFIG,
):
    """All concepts of *course* in path order with live ``is_unlocked``."""
    order = PathGenerator(store, config).course_order(course)
    if not isinstance(order, Ok):
        return order
    return Ok(ProgressGate(store, config).sequential_concepts(order.value, progress))


# =========================================================================
# Progress
# =========================================================================


def _aggregate(
    gate: ProgressGate,
    course: Course,
    document: CourseProgressDocument,
    concepts: Dict[str, UserConceptProgress],
    now: Optional[datetime],
) -> CourseProgressDocument:
    return document.model_copy(update={
        "concepts": concepts,
        "topics": [gate.topic_progress(t, concepts) for t in course.topics],
        "course": gate.course_progress(
            document.user_id, course, concepts, previous=document.course, now=now
        ),
    })


def record_progress(
    store,
    course: Course,
    document: CourseProgressDocument,
    payload: Mapping[str, Any],
    other_progress: Optional[Mapping[str, UserConceptProgress]] = None,
    config: EngineConfig = DEFAULT_CONFIG,
    occurred_at: Optional[datetime] = None,
):
    """Apply one progress-update request to a course progress document.

    *other_progress* carries the learner's progress in other courses, for
    prerequisites that live outside *course*.

    Returns:
        ``Ok(ProgressUpdate)``, ``NotFound`` or ``InvalidTransition``.
    """
    parsed = parse_progress_update(payload, document.user_id, occurred_at)
    if not isinstance(parsed, Ok):
        return parsed
    event = parsed.value

    if event.course_id is not None and event.course_id != course.id:
        return NotFound(kind="course", ref=event.course_id,
                        message=f"Event is for course '{event.course_id}', not '{course.id}'")
    if event.concept_id not in course.concept_ids():
        return NotFound(kind="concept", ref=event.concept_id,
                        message=f"Concept '{event.concept_id}' is not part of course '{course.id}'")
    if event.concept_id not in store:
        return NotFound(kind="concept", ref=event.concept_id)

    gate = ProgressGate(store, config)
    before: Dict[str, UserConceptProgress] = dict(other_progress or {})
    before.update(document.concepts)
    if not gate.is_unlocked(event.concept_id, before):
        return InvalidTransition(reason="concept is locked", concept_id=event.concept_id)

    applied = apply_event(document.concepts.get(event.concept_id), event, config)
    if not isinstance(applied, Ok):
        logger.warning("Progress event rejected: %s", applied)
        return applied

    concepts = dict(document.concepts)
    concepts[event.concept_id] = applied.value
    after = dict(before)
    after[event.concept_id] = applied.value

    new_doc = _aggregate(gate, course, document, concepts, event.occurred_at)
    logger.info(
        "Progress %s/%s: %s on %s → %s (course %d%%).",
        document.user_id, course.id, event.action, event.concept_id,
        applied.value.status, new_doc.course.overall_progress,
    )
    return Ok(ProgressUpdate(
        document=new_doc,
        event=event,
        unlocked=gate.newly_unlocked(before, after),
    ))


def rebuild_document(
    store,
    course: Course,
    user_id: str,
    events: Sequence,
    config: EngineConfig = DEFAULT_CONFIG,
):
    """Replay an event log into a fresh course progress document.

    Aggregates are refreshed after every event so the course timestamps
    land on the same events they did when the log was written.
    """
    gate = ProgressGate(store, config)
    document = CourseProgressDocument(user_id=user_id, course_id=course.id)
    for event in events:
        if event.course_id not in (None, course.id):
            continue
        reduced = reduce_events([event], initial=document.concepts, config=config)
        if not isinstance(reduced, Ok):
            return reduced
        document = _aggregate(gate, course, document, reduced.value, event.occurred_at)
    return Ok(document)


def persist_progress(
    conn,
    store,
    course: Course,
    user_id: str,
    payload: Mapping[str, Any],
    config: EngineConfig = DEFAULT_CONFIG,
    occurred_at: Optional[datetime] = None,
):
    """Read-modify-write of one progress update against SQLite.

    The document is read with its version, updated in memory and written
    back only if nobody else wrote in between. The document and its event
    are committed in one transaction. Prerequisites are checked against the
    learner's progress in every course, not just *course*.

    Returns:
        ``Ok(ProgressUpdate)`` or any failure from ``record_progress`` /
        ``db.save_progress_document`` (``ConcurrencyConflict``).
    """
    document = db.load_progress_document(conn, user_id, course.id)
    other = db.load_user_progress(conn, user_id, exclude_course_id=course.id)
    result = record_progress(
        store, course, document, payload,
        other_progress=other, config=config, occurred_at=occurred_at,
    )
    if not isinstance(result, Ok):
        return result
    saved = db.save_progress_document(
        conn, result.value.document, document.version, event=result.value.event
    )
    if not isinstance(saved, Ok):
        return saved
    return Ok(ProgressUpdate(
        document=saved.value,
        event=result.value.event,
        unlocked=result.value.unlocked,
    ))
