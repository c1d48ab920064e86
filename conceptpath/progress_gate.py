"""
Mastery-gated unlock state and bottom-up progress aggregation.

Pure functions over (graph snapshot, progress snapshot). A progress
snapshot is a mapping ``concept_id → UserConceptProgress``; concepts that
are missing from it count as not started with a mastery score of 0.

Per-concept gate states::

    locked ──(all prerequisites ≥ threshold)──▶ unlocked
    unlocked ──(any sub-activity done)──▶ in_progress
    in_progress ──(description + video + quiz passed)──▶ completed
"""

import logging
from datetime import datetime
from typing import Iterable, List, Mapping, Optional, Tuple

import numpy as np

from conceptpath.config import DEFAULT_CONFIG, EngineConfig
from conceptpath.models import (
    ConceptStatus,
    Course,
    CourseStatus,
    GateState,
    PathNode,
    PrerequisiteMastery,
    SequentialConcept,
    Topic,
    TopicProgress,
    UserConceptProgress,
    UserCourseProgress,
)
from conceptpath.utils import round_half_up

logger = logging.getLogger(__name__)

ProgressSnapshot = Mapping[str, UserConceptProgress]

SUB_ACTIVITIES = ("description_read", "video_watched", "quiz_passed")


# =========================================================================
# Sub-activity status
# =========================================================================


def derive_status(
    description_read: bool, video_watched: bool, quiz_passed: bool
) -> ConceptStatus:
    """Concept status from its three sub-activity flags."""
    done = sum((description_read, video_watched, quiz_passed))
    if done == 3:
        return "completed"
    if done > 0:
        return "in_progress"
    return "not_started"


def concept_progress_percent(progress: Optional[UserConceptProgress]) -> int:
    """Individual concept progress: 100 when completed, else share of sub-activities."""
    if progress is None:
        return 0
    if progress.status == "completed":
        return 100
    done = sum(bool(getattr(progress, flag)) for flag in SUB_ACTIVITIES)
    return round_half_up(done / len(SUB_ACTIVITIES) * 100)


def overall_progress(percentages: Iterable[float]) -> int:
    """Uniform arithmetic mean of concept percentages, rounded half-up."""
    values = np.fromiter(percentages, dtype=np.float64)
    if values.size == 0:
        return 0
    return round_half_up(float(values.mean()))


def course_status(
    overall: int,
    started_at: Optional[datetime],
    completed_at: Optional[datetime],
    now: Optional[datetime],
) -> Tuple[CourseStatus, Optional[datetime], Optional[datetime]]:
    """Course status and its once-only timestamps for *overall* progress.

    ``started_at`` is set on the first move away from 0, ``completed_at`` on
    the first arrival at 100; neither is overwritten afterwards.
    """
    if overall == 0:
        return "not_started", started_at, completed_at
    if started_at is None:
        started_at = now
    if overall >= 100:
        if completed_at is None:
            completed_at = now
        return "completed", started_at, completed_at
    return "in_progress", started_at, completed_at


# =========================================================================
# Gate
# =========================================================================


class ProgressGate:
    """Evaluates unlock state and aggregates progress for one graph snapshot."""

    def __init__(self, store, config: EngineConfig = DEFAULT_CONFIG):
        self.store = store
        self.config = config

    @property
    def threshold(self) -> int:
        return self.config.mastery_threshold

    # ------------------------------------------------------------------
    # Per-concept
    # ------------------------------------------------------------------

    @staticmethod
    def mastery(progress: ProgressSnapshot, concept_id: str) -> float:
        entry = progress.get(concept_id)
        return entry.mastery_score if entry is not None else 0.0

    def is_unlocked(self, concept_id: str, progress: ProgressSnapshot) -> bool:
        """``True`` iff every direct prerequisite is mastered (or there are none)."""
        return all(
            self.mastery(progress, p) >= self.threshold
            for p in self.store.get_prerequisites(concept_id)
        )

    def concept_state(self, concept_id: str, progress: ProgressSnapshot) -> GateState:
        entry = progress.get(concept_id)
        if entry is not None and entry.status == "completed":
            return "completed"
        if not self.is_unlocked(concept_id, progress):
            return "locked"
        if entry is not None and entry.status == "in_progress":
            return "in_progress"
        return "unlocked"

    def prerequisite_masteries(
        self, concept_id: str, progress: ProgressSnapshot
    ) -> List[PrerequisiteMastery]:
        return [
            PrerequisiteMastery(prerequisite_id=p, score=self.mastery(progress, p))
            for p in self.store.get_prerequisites(concept_id)
        ]

    def unlocked_concepts(self, progress: ProgressSnapshot) -> List[str]:
        """Every concept of the graph that is currently unlocked, ordered by id."""
        return [
            c.id for c in self.store.concepts() if self.is_unlocked(c.id, progress)
        ]

    def newly_unlocked(
        self, before: ProgressSnapshot, after: ProgressSnapshot
    ) -> List[str]:
        """Concepts that were locked in *before* and are unlocked in *after*.

        Only dependents of concepts whose mastery changed can flip, so the
        check is limited to those.
        """
        changed = {
            cid
            for cid in set(before) | set(after)
            if self.mastery(before, cid) != self.mastery(after, cid)
        }
        candidates = sorted(
            {dep for cid in changed for dep in self.store.get_dependents(cid)}
        )
        flipped = [
            cid
            for cid in candidates
            if not self.is_unlocked(cid, before) and self.is_unlocked(cid, after)
        ]
        if flipped:
            logger.info("Unlocked %d concept(s): %s", len(flipped), ", ".join(flipped))
        return flipped

    # ------------------------------------------------------------------
    # Path annotation
    # ------------------------------------------------------------------

    def annotate(self, concept_ids: Iterable[str], progress: ProgressSnapshot) -> List[PathNode]:
        """Attach lock/mastery state to each element of an ordered path."""
        nodes: List[PathNode] = []
        for cid in concept_ids:
            concept = self.store.get_concept(cid).value
            state = self.concept_state(cid, progress)
            nodes.append(
                PathNode(
                    concept_id=cid,
                    title=concept.title,
                    locked=state == "locked",
                    state=state,
                    mastery_score=self.mastery(progress, cid),
                    prerequisite_masteries=self.prerequisite_masteries(cid, progress),
                )
            )
        return nodes

    def path_cost(self, concept_ids: Iterable[str], progress: ProgressSnapshot) -> float:
        """Remaining effort: ``1 - mastery/100`` for every concept not yet mastered."""
        cost = 0.0
        for cid in concept_ids:
            score = self.mastery(progress, cid)
            if score < self.threshold:
                cost += 1 - score / 100
        return round(cost, 4)

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    @staticmethod
    def topic_progress(topic: Topic, progress: ProgressSnapshot) -> TopicProgress:
        """Completed concepts / total concepts, discrete per concept."""
        concept_ids = topic.unique_concept_ids()
        total = len(concept_ids)
        completed = sum(
            1
            for cid in concept_ids
            if cid in progress and progress[cid].status == "completed"
        )
        percent = round_half_up(completed / total * 100) if total else 0
        return TopicProgress(
            topic_id=topic.id,
            title=topic.title,
            completed_concepts=completed,
            total_concepts=total,
            progress=percent,
        )

    def course_progress(
        self,
        user_id: str,
        course: Course,
        progress: ProgressSnapshot,
        previous: Optional[UserCourseProgress] = None,
        now: Optional[datetime] = None,
    ) -> UserCourseProgress:
        """Recompute the course aggregate from concept progress.

        ``overall_progress`` is the plain mean of every concept's individual
        percentage; topics do not weight it.
        """
        concept_ids = course.concept_ids()
        overall = overall_progress(
            concept_progress_percent(progress.get(cid)) for cid in concept_ids
        )
        completed = sum(
            1
            for cid in concept_ids
            if cid in progress and progress[cid].status == "completed"
        )
        status, started_at, completed_at = course_status(
            overall,
            previous.started_at if previous else None,
            previous.completed_at if previous else None,
            now,
        )
        return UserCourseProgress(
            user_id=user_id,
            course_id=course.id,
            overall_progress=overall,
            status=status,
            concepts_completed=completed,
            total_concepts=len(concept_ids),
            total_time_spent=sum(
                progress[cid].time_spent for cid in concept_ids if cid in progress
            ),
            started_at=started_at,
            completed_at=completed_at,
            last_accessed_at=now if now is not None else (
                previous.last_accessed_at if previous else None
            ),
        )

    def sequential_concepts(
        self, ordered_ids: Iterable[str], progress: ProgressSnapshot
    ) -> List[SequentialConcept]:
        """The course's concepts in path order with live unlock state."""
        result: List[SequentialConcept] = []
        for cid in ordered_ids:
            concept = self.store.get_concept(cid).value
            entry = progress.get(cid)
            result.append(
                SequentialConcept(
                    concept_id=cid,
                    title=concept.title,
                    complexity=concept.complexity,
                    estimated_learning_time_hours=concept.estimated_learning_time_hours,
                    prerequisites=list(concept.prerequisites),
                    mastery_score=entry.mastery_score if entry else 0.0,
                    status=entry.status if entry else "not_started",
                    state=self.concept_state(cid, progress),
                    is_unlocked=self.is_unlocked(cid, progress),
                    time_spent=entry.time_spent if entry else 0,
                    attempts=entry.attempts if entry else 0,
                )
            )
        return result
