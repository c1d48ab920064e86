"""
pytest suite for mastery gating and progress aggregation.
"""

import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from conceptpath.config import EngineConfig
from conceptpath.graph_store import ConceptGraphStore
from conceptpath.models import Concept, Course, Topic, UserConceptProgress
from conceptpath.progress_gate import (
    ProgressGate,
    concept_progress_percent,
    course_status,
    derive_status,
    overall_progress,
)

T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


# =========================================================================
# Helpers
# =========================================================================


def _concept(cid, prereqs=()):
    return Concept(id=cid, title=cid, prerequisites=list(prereqs))


def _entry(cid, mastery=0.0, **flags):
    status = flags.pop("status", None) or derive_status(
        flags.get("description_read", False),
        flags.get("video_watched", False),
        flags.get("quiz_passed", False),
    )
    return UserConceptProgress(
        user_id="u1", concept_id=cid, mastery_score=mastery, status=status, **flags
    )


def _done(cid, mastery=90.0, **kw):
    return _entry(cid, mastery, description_read=True, video_watched=True,
                  quiz_passed=True, **kw)


# =========================================================================
# Fixtures
# =========================================================================


@pytest.fixture()
def gate():
    """A, B ← A, C ← A + B, D (independent)."""
    store = ConceptGraphStore.build(
        [_concept("A"), _concept("B", ["A"]), _concept("C", ["A", "B"]), _concept("D")]
    ).value
    return ProgressGate(store, EngineConfig())


@pytest.fixture()
def course():
    return Course(
        id="course-1",
        title="Course",
        topics=[
            Topic(id="t1", title="One", concept_ids=["A", "B"]),
            Topic(id="t2", title="Two", concept_ids=["C"]),
        ],
    )


# =========================================================================
# Tests: unlock
# =========================================================================


class TestUnlock:
    def test_mastered_prerequisite_unlocks(self, gate):
        progress = {"A": _entry("A", 80), "B": _entry("B", 0)}
        assert gate.is_unlocked("B", progress) is True
        assert gate.is_unlocked("C", progress) is False

    def test_threshold_is_inclusive(self, gate):
        assert gate.is_unlocked("B", {"A": _entry("A", 75)}) is True
        assert gate.is_unlocked("B", {"A": _entry("A", 74.9)}) is False

    def test_no_prerequisites_always_unlocked(self, gate):
        assert gate.is_unlocked("A", {}) is True
        assert gate.is_unlocked("D", {}) is True

    def test_unlock_matches_prerequisite_mastery(self, gate):
        scores = [0, 50, 74, 75, 100]
        for a in scores:
            for b in scores:
                progress = {"A": _entry("A", a), "B": _entry("B", b)}
                for cid in ("A", "B", "C", "D"):
                    expected = all(
                        progress[p].mastery_score >= 75
                        for p in gate.store.get_prerequisites(cid)
                    )
                    assert gate.is_unlocked(cid, progress) is expected

    def test_completion_without_mastery_does_not_unlock(self, gate):
        # quiz passed at a lower custom passing score: completed but not mastered
        progress = {"A": _done("A", mastery=60)}
        assert gate.is_unlocked("B", progress) is False

    def test_custom_threshold(self):
        store = ConceptGraphStore.build([_concept("A"), _concept("B", ["A"])]).value
        gate = ProgressGate(store, EngineConfig(mastery_threshold=50))
        assert gate.is_unlocked("B", {"A": _entry("A", 50)}) is True

    def test_unlocked_concepts(self, gate):
        assert gate.unlocked_concepts({"A": _entry("A", 80)}) == ["A", "B", "D"]

    def test_newly_unlocked(self, gate):
        before = {"A": _entry("A", 40)}
        after = {"A": _entry("A", 80)}
        assert gate.newly_unlocked(before, after) == ["B"]

    def test_newly_unlocked_chain(self, gate):
        before = {"A": _entry("A", 80), "B": _entry("B", 10)}
        after = {"A": _entry("A", 80), "B": _entry("B", 90)}
        assert gate.newly_unlocked(before, after) == ["C"]

    def test_no_change_unlocks_nothing(self, gate):
        progress = {"A": _entry("A", 80)}
        assert gate.newly_unlocked(progress, progress) == []


# =========================================================================
# Tests: concept state
# =========================================================================


class TestConceptState:
    @pytest.mark.parametrize(
        "flags, expected",
        [
            ((False, False, False), "not_started"),
            ((True, False, False), "in_progress"),
            ((True, True, False), "in_progress"),
            ((True, False, True), "in_progress"),
            ((False, True, True), "in_progress"),
            ((True, True, True), "completed"),
        ],
    )
    def test_derive_status(self, flags, expected):
        assert derive_status(*flags) == expected

    def test_locked(self, gate):
        assert gate.concept_state("B", {}) == "locked"

    def test_unlocked(self, gate):
        assert gate.concept_state("B", {"A": _entry("A", 80)}) == "unlocked"

    def test_in_progress(self, gate):
        progress = {"A": _entry("A", 80), "B": _entry("B", description_read=True)}
        assert gate.concept_state("B", progress) == "in_progress"

    def test_completed_wins_over_locked(self, gate):
        progress = {"B": _done("B")}
        assert gate.concept_state("B", progress) == "completed"


# =========================================================================
# Tests: aggregation
# =========================================================================


class TestAggregation:
    def test_concept_percent(self):
        assert concept_progress_percent(None) == 0
        assert concept_progress_percent(_entry("A")) == 0
        assert concept_progress_percent(_entry("A", description_read=True)) == 33
        assert concept_progress_percent(
            _entry("A", description_read=True, video_watched=True)
        ) == 67
        assert concept_progress_percent(_done("A")) == 100

    def test_overall_is_uniform_mean(self):
        assert overall_progress([100, 50, 0]) == 50
        assert overall_progress([]) == 0

    def test_overall_rounds_half_up(self):
        assert overall_progress([33, 0]) == 17
        assert overall_progress([1, 0]) == 1

    def test_topic_progress(self, gate, course):
        progress = {"A": _done("A"), "B": _entry("B", description_read=True)}
        topics = [gate.topic_progress(t, progress) for t in course.topics]
        assert [(t.completed_concepts, t.total_concepts, t.progress) for t in topics] == [
            (1, 2, 50), (0, 1, 0),
        ]

    def test_empty_topic(self, gate):
        assert gate.topic_progress(Topic(id="empty"), {}).progress == 0

    def test_repeated_concept_counts_once(self, gate):
        topic = Topic(id="dup", concept_ids=["A", "A", "B"])
        assert topic.unique_concept_ids() == ["A", "B"]
        result = gate.topic_progress(topic, {"A": _done("A")})
        assert (result.completed_concepts, result.total_concepts, result.progress) == (1, 2, 50)

    def test_course_progress(self, gate, course):
        progress = {
            "A": _done("A"),
            "B": _entry("B", description_read=True, video_watched=True, time_spent=120),
        }
        agg = gate.course_progress("u1", course, progress, now=T0)
        # (100 + 67 + 0) / 3
        assert agg.overall_progress == 56
        assert agg.status == "in_progress"
        assert agg.concepts_completed == 1
        assert agg.total_concepts == 3
        assert agg.total_time_spent == 120
        assert agg.started_at == T0
        assert agg.completed_at is None

    def test_course_timestamps_set_once(self, gate, course):
        partial = {"A": _done("A")}
        first = gate.course_progress("u1", course, partial, now=T0)
        later = T0 + timedelta(days=1)
        second = gate.course_progress("u1", course, partial, previous=first, now=later)
        assert second.started_at == T0
        assert second.last_accessed_at == later

        full = {cid: _done(cid) for cid in ("A", "B", "C")}
        done = gate.course_progress("u1", course, full, previous=second, now=later)
        assert done.status == "completed"
        assert done.overall_progress == 100
        assert done.completed_at == later

        again = gate.course_progress(
            "u1", course, full, previous=done, now=later + timedelta(days=1)
        )
        assert again.completed_at == later
        assert again.started_at == T0

    def test_course_status_direct_to_complete(self):
        status, started, completed = course_status(100, None, None, T0)
        assert (status, started, completed) == ("completed", T0, T0)

    def test_course_status_not_started(self):
        assert course_status(0, None, None, T0) == ("not_started", None, None)


# =========================================================================
# Tests: sequential view
# =========================================================================


class TestSequentialView:
    def test_sequential_concepts(self, gate):
        progress = {"A": _done("A", mastery=80, time_spent=60, attempts=1)}
        view = gate.sequential_concepts(["A", "B", "C"], progress)
        assert [v.concept_id for v in view] == ["A", "B", "C"]
        assert [v.is_unlocked for v in view] == [True, True, False]
        assert [v.state for v in view] == ["completed", "unlocked", "locked"]
        assert view[0].mastery_score == 80
        assert view[0].attempts == 1
        assert view[1].status == "not_started"

    def test_path_cost(self, gate):
        progress = {"A": _entry("A", 80), "B": _entry("B", 25)}
        assert gate.path_cost(["A", "B", "C"], progress) == pytest.approx(1.75)
