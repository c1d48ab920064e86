"""
Learning-path generation over the concept prerequisite graph.

Concept paths
    The goal set is widened to all of its ancestors, the induced subgraph is
    ordered with a Kahn-style topological sort
    (``networkx.lexicographical_topological_sort``) and ties between ready
    concepts are broken by a strategy key. The ``best`` strategy orders by
    complexity, then estimated hours, then title; the other strategies
    reorder the secondary keys to produce alternatives that are still
    topologically valid.

Course paths
    Candidate courses are picked by keyword over title/category/tags (or
    taken verbatim from the caller's selection), ranked by distance between
    course level and the learner's skill level, then by rating, and turned
    into one step per course with a duration estimate in weeks.
"""

import functools
import logging
import math
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import networkx as nx

from conceptpath.config import DEFAULT_CONFIG, EngineConfig
from conceptpath.models import (
    CompletionCriteria,
    Concept,
    Course,
    CoursePath,
    DetailedPath,
    PathRequest,
    PathResponse,
    PathStep,
)
from conceptpath.progress_gate import ProgressGate, ProgressSnapshot
from conceptpath.result import CycleDetected, NotFound, Ok
from conceptpath.utils import any_tag_matches, keyword_matches, split_goals

logger = logging.getLogger(__name__)


# =========================================================================
# Tie-break strategies
# =========================================================================


@functools.total_ordering
class _Descending:
    """Wraps a value so that it sorts in reverse inside a key tuple."""

    __slots__ = ("value",)

    def __init__(self, value):
        self.value = value

    def __eq__(self, other):
        return self.value == other.value

    def __lt__(self, other):
        return self.value > other.value


def _best_key(c: Concept) -> Tuple:
    return (c.complexity, c.estimated_learning_time_hours, c.title, c.id)


def _quick_wins_key(c: Concept) -> Tuple:
    return (c.estimated_learning_time_hours, c.complexity, c.title, c.id)


def _fundamentals_first_key(c: Concept) -> Tuple:
    return (not c.is_fundamental,) + _best_key(c)


def _reverse_secondary_key(c: Concept) -> Tuple:
    return (
        c.complexity,
        _Descending(c.estimated_learning_time_hours),
        _Descending(c.title),
        c.id,
    )


BEST_STRATEGY = "best"

STRATEGIES: Dict[str, Callable[[Concept], Tuple]] = {
    BEST_STRATEGY: _best_key,
    "quick-wins": _quick_wins_key,
    "fundamentals-first": _fundamentals_first_key,
    "reverse-secondary": _reverse_secondary_key,
}


# =========================================================================
# Concept paths
# =========================================================================


class PathGenerator:
    """Computes ranked, topologically valid learning paths toward goals."""

    def __init__(self, store, config: EngineConfig = DEFAULT_CONFIG):
        self.store = store
        self.config = config
        self.gate = ProgressGate(store, config)

    # ------------------------------------------------------------------
    # Ordering
    # ------------------------------------------------------------------

    def order(self, scope: Iterable[str], strategy: str = BEST_STRATEGY):
        """Topologically order *scope* using the *strategy* tie-break.

        Returns:
            ``Ok(list_of_ids)``, ``NotFound`` for an unknown id, or
            ``CycleDetected`` if *scope* contains a prerequisite cycle.
        """
        scope = list(scope)
        for cid in scope:
            if cid not in self.store:
                return NotFound(kind="concept", ref=cid)

        cycle = self.store.find_cycle(scope)
        if cycle:
            logger.warning("Cycle in requested scope: %s", " → ".join(cycle))
            return CycleDetected(cycle=tuple(cycle))

        key = STRATEGIES[strategy]
        concept_key = lambda cid: key(self.store.get_concept(cid).value)  # noqa: E731
        try:
            ordered = list(
                nx.lexicographical_topological_sort(
                    self.store.subgraph(scope), key=concept_key
                )
            )
        except nx.NetworkXUnfeasible:
            return CycleDetected(cycle=tuple(self.store.find_cycle(scope) or ()))
        return Ok(ordered)

    def course_order(self, course: Course):
        """Concepts of *course* in best-path order (prerequisites outside the course are ignored)."""
        return self.order(course.concept_ids(), BEST_STRATEGY)

    # ------------------------------------------------------------------
    # Goal resolution
    # ------------------------------------------------------------------

    def resolve_goals(
        self,
        request: PathRequest,
        courses: Optional[Mapping[str, Course]] = None,
    ):
        """Turn a path request into the goal concept set.

        Priority: explicit ``concept_id``, then ``selected_courses`` (every
        concept of those courses), then the free-text ``goal`` matched
        against concept titles (exact first, substring as fallback).
        """
        if request.concept_id:
            if request.concept_id not in self.store:
                return NotFound(kind="concept", ref=request.concept_id)
            return Ok([request.concept_id])

        if request.selected_courses:
            courses = courses or {}
            goals: List[str] = []
            for course_id in request.selected_courses:
                course = courses.get(course_id)
                if course is None:
                    return NotFound(kind="course", ref=course_id)
                for cid in course.concept_ids():
                    if cid not in self.store:
                        return NotFound(
                            kind="concept",
                            ref=cid,
                            message=f"Course '{course_id}' references unknown concept '{cid}'",
                        )
                    if cid not in goals:
                        goals.append(cid)
            if not goals:
                return NotFound(kind="goal", ref=",".join(request.selected_courses),
                                message="Selected courses contain no concepts")
            return Ok(goals)

        keywords = split_goals(request.goal)
        if not keywords:
            return NotFound(kind="goal", ref=request.goal, message="No goal given")

        concepts = self.store.concepts()
        goals = []
        for keyword in keywords:
            exact = [c.id for c in concepts if c.title.lower() == keyword.lower()]
            matched = exact or [c.id for c in concepts if keyword_matches(keyword, c.title)]
            if not matched:
                return NotFound(kind="goal", ref=keyword,
                                message=f"No concept matches goal '{keyword}'")
            goals.extend(cid for cid in matched if cid not in goals)
        return Ok(goals)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def generate(
        self,
        goal_ids: Sequence[str],
        progress: Optional[ProgressSnapshot] = None,
        strategies: Optional[Sequence[str]] = None,
    ):
        """Best path plus alternatives toward *goal_ids*.

        Returns:
            ``Ok(PathResponse)``, ``NotFound`` or ``CycleDetected``.
        """
        progress = progress or {}
        strategies = list(strategies or STRATEGIES)
        if BEST_STRATEGY in strategies:
            strategies.remove(BEST_STRATEGY)
        strategies.insert(0, BEST_STRATEGY)

        ancestors = self.store.ancestors_of(goal_ids)
        if not isinstance(ancestors, Ok):
            return ancestors
        scope = ancestors.value | set(goal_ids)
        logger.info(
            "Generating path toward %d goal(s) over %d concept(s).",
            len(goal_ids), len(scope),
        )

        orderings: List[Tuple[str, List[str]]] = []
        for name in strategies:
            result = self.order(scope, name)
            if not isinstance(result, Ok):
                return result
            if any(existing == result.value for _, existing in orderings):
                logger.debug("Strategy %r duplicates an earlier ordering — skipped.", name)
                continue
            orderings.append((name, result.value))

        all_paths = [self._detailed(name, ids, progress) for name, ids in orderings]
        best_ids = orderings[0][1]

        response = PathResponse(
            goals=list(goal_ids),
            concepts=[self.store.get_concept(cid).value for cid in sorted(scope)],
            path=[self.store.get_concept(cid).value for cid in best_ids],
            best_path=all_paths[0],
            all_paths=all_paths,
        )
        return Ok(response)

    def generate_for_request(
        self,
        request: PathRequest,
        progress: Optional[ProgressSnapshot] = None,
        courses: Optional[Mapping[str, Course]] = None,
    ):
        goals = self.resolve_goals(request, courses)
        if not isinstance(goals, Ok):
            return goals
        return self.generate(goals.value, progress)

    def _detailed(self, strategy: str, ids: List[str], progress: ProgressSnapshot) -> DetailedPath:
        hours = sum(
            self.store.get_concept(cid).value.estimated_learning_time_hours for cid in ids
        )
        return DetailedPath(
            strategy=strategy,
            path=list(ids),
            detailed_path=self.gate.annotate(ids, progress),
            total_hours=round(hours, 2),
            total_cost=self.gate.path_cost(ids, progress),
        )


# =========================================================================
# Course paths
# =========================================================================


def select_courses(
    goals: Sequence[str],
    catalog: Sequence[Course],
    selected_ids: Sequence[str] = (),
    limit: int = DEFAULT_CONFIG.max_candidate_courses,
):
    """Pick candidate courses by explicit selection or keyword match.

    Returns:
        ``Ok(list_of_courses)`` or ``NotFound`` (unknown selected id, or no
        course matching any goal).
    """
    if selected_ids:
        by_id = {c.id: c for c in catalog}
        picked = []
        for course_id in selected_ids:
            if course_id not in by_id:
                return NotFound(kind="course", ref=course_id)
            picked.append(by_id[course_id])
        return Ok(picked)

    if not goals:
        return NotFound(kind="goal", ref="", message="No goal or course selection given")

    matched = [
        c
        for c in catalog
        if any(
            keyword_matches(g, c.title)
            or keyword_matches(g, c.category)
            or any_tag_matches(g, c.tags)
            for g in goals
        )
    ]
    if not matched:
        return NotFound(kind="goal", ref=", ".join(goals),
                        message=f"No course matches goals {list(goals)}")
    return Ok(matched[:limit])


def rank_courses(
    courses: Sequence[Course],
    skill_level: str,
    config: EngineConfig = DEFAULT_CONFIG,
) -> List[Course]:
    """Closest level to the learner first; higher rating breaks ties."""
    start = config.skill_level(skill_level)
    return sorted(
        courses,
        key=lambda c: (abs(config.course_level(c.level) - start), -c.average_rating),
    )


def build_steps(courses: Sequence[Course], config: EngineConfig = DEFAULT_CONFIG) -> List[PathStep]:
    criteria = config.completion
    return [
        PathStep(
            order=index + 1,
            course_id=course.id,
            title=course.title,
            description=course.short_description,
            difficulty=course.level,
            estimated_hours=math.ceil(course.total_hours),
            completion_criteria=CompletionCriteria(
                minimum_score=criteria.minimum_score,
                required_activities=list(criteria.required_activities),
                mastery_threshold=criteria.mastery_threshold,
            ),
        )
        for index, course in enumerate(courses)
    ]


def estimate_weeks(
    total_hours: float, time_available: str, config: EngineConfig = DEFAULT_CONFIG
) -> int:
    """``ceil(total_hours / weekly hours for the availability bucket)``."""
    return math.ceil(total_hours / config.weekly_hours(time_available))


def generate_course_path(
    request: PathRequest,
    catalog: Sequence[Course],
    config: EngineConfig = DEFAULT_CONFIG,
):
    """Course-level plan for free-text goals or selected courses.

    Returns:
        ``Ok(CoursePath)`` or ``NotFound``.
    """
    goals = split_goals(request.goal)
    picked = select_courses(
        goals, catalog, request.selected_courses, limit=config.max_candidate_courses
    )
    if not isinstance(picked, Ok):
        logger.warning("Course path: %s", picked)
        return picked

    ranked = rank_courses(picked.value, request.current_skill_level, config)
    total_hours = sum(c.total_hours for c in ranked)
    weeks = estimate_weeks(total_hours, request.time_available, config)

    logger.info(
        "Course path: %d course(s), %.1f h, %d week(s) at %r.",
        len(ranked), total_hours, weeks, request.time_available,
    )
    return Ok(
        CoursePath(
            title=f"Custom Path: {', '.join(goals) if goals else 'Personalized Learning'}",
            goals=goals,
            current_skill_level=request.current_skill_level,
            time_available=request.time_available,
            steps=build_steps(ranked, config),
            total_hours=math.ceil(total_hours),
            estimated_weeks=weeks,
        )
    )
