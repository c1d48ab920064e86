"""
pytest suite for progress events: parsing, per-event transitions and
event-log reduction.
"""

import os
import sys
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from conceptpath.config import EngineConfig
from conceptpath.models import UserConceptProgress
from conceptpath.progress_events import (
    DescriptionRead,
    QuizSubmitted,
    VideoWatched,
    apply_event,
    event_from_json,
    parse_progress_update,
    reduce_events,
)
from conceptpath.result import InvalidTransition, Ok

T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


# =========================================================================
# Helpers
# =========================================================================


def _at(minutes):
    return T0 + timedelta(minutes=minutes)


def _read(cid="A", t=0):
    return DescriptionRead(user_id="u1", concept_id=cid, course_id="c1", occurred_at=_at(t))


def _watch(cid="A", t=1, seconds=300):
    return VideoWatched(user_id="u1", concept_id=cid, course_id="c1",
                        occurred_at=_at(t), watch_time_seconds=seconds)


def _quiz(score, cid="A", t=2, passing=None):
    return QuizSubmitted(user_id="u1", concept_id=cid, course_id="c1",
                         occurred_at=_at(t), score=score, passing_score=passing)


def _run(events, config=None):
    result = reduce_events(events, config=config or EngineConfig())
    assert isinstance(result, Ok), result
    return result.value


# =========================================================================
# Tests: parsing
# =========================================================================


class TestParse:
    def test_description_read(self):
        result = parse_progress_update(
            {"action": "mark_description_read", "conceptId": "A", "courseId": "c1"},
            "u1",
            occurred_at=T0,
        )
        event = result.value
        assert isinstance(event, DescriptionRead)
        assert (event.user_id, event.concept_id, event.course_id) == ("u1", "A", "c1")
        assert event.occurred_at == T0

    def test_quiz_payload(self):
        result = parse_progress_update(
            {"action": "quiz_submit", "conceptId": "A", "score": 82,
             "passingScore": 60, "timeSpentSeconds": 90},
            "u1",
        )
        event = result.value
        assert isinstance(event, QuizSubmitted)
        assert event.score == 82
        assert event.passing_score == 60
        assert event.time_spent_seconds == 90
        assert event.occurred_at.tzinfo is not None

    def test_video_payload(self):
        result = parse_progress_update(
            {"action": "mark_video_watched", "conceptId": "A", "watchTimeSeconds": 240},
            "u1",
        )
        assert result.value.watch_time_seconds == 240

    def test_unknown_action(self):
        result = parse_progress_update({"action": "skip", "conceptId": "A"}, "u1")
        assert isinstance(result, InvalidTransition)
        assert result.concept_id == "A"

    def test_malformed_score_raises(self):
        with pytest.raises(ValidationError):
            parse_progress_update(
                {"action": "quiz_submit", "conceptId": "A", "score": 150}, "u1"
            )

    def test_json_round_trip_keeps_type(self):
        event = _quiz(80)
        decoded = event_from_json(event.model_dump_json(by_alias=True))
        assert decoded == event


# =========================================================================
# Tests: transitions
# =========================================================================


class TestTransitions:
    def test_description_starts_concept(self):
        state = _run([_read()])["A"]
        assert state.description_read is True
        assert state.status == "in_progress"
        assert state.last_updated == _at(0)

    def test_video_adds_time(self):
        state = _run([_read(), _watch(seconds=300)])["A"]
        assert state.video_watched is True
        assert state.time_spent == 300
        assert state.status == "in_progress"

    def test_all_three_complete(self):
        state = _run([_read(), _watch(), _quiz(90)])["A"]
        assert state.status == "completed"
        assert state.quiz_passed is True
        assert state.mastery_score == 90
        assert state.mastered is True
        assert state.mastered_at == _at(2)
        assert state.attempts == 1

    def test_order_of_read_and_watch_is_free(self):
        state = _run([_watch(t=0), _read(t=1), _quiz(80)])["A"]
        assert state.status == "completed"

    def test_quiz_before_activities_rejected(self):
        result = reduce_events([_read(), _quiz(90)], config=EngineConfig())
        assert isinstance(result, InvalidTransition)
        assert result.concept_id == "A"

    def test_failed_quiz_stays_in_progress(self):
        state = _run([_read(), _watch(), _quiz(40)])["A"]
        assert state.status == "in_progress"
        assert state.failed_attempts == 1
        assert state.quiz_passed is False
        assert state.mastery_score == 40

    def test_three_failures_reset_activities(self):
        events = [_read(), _watch(), _quiz(40, t=2), _quiz(50, t=3), _quiz(60, t=4)]
        state = _run(events)["A"]
        assert state.description_read is False
        assert state.video_watched is False
        assert state.failed_attempts == 0
        assert state.attempts == 3
        assert state.status == "in_progress"
        assert state.mastery_score == 60

    def test_quiz_after_reset_needs_activities_again(self):
        events = [_read(), _watch(), _quiz(40, t=2), _quiz(50, t=3), _quiz(60, t=4),
                  _quiz(95, t=5)]
        assert isinstance(reduce_events(events, config=EngineConfig()), InvalidTransition)

    def test_pass_clears_failed_attempts(self):
        state = _run([_read(), _watch(), _quiz(40, t=2), _quiz(80, t=3)])["A"]
        assert state.failed_attempts == 0
        assert state.status == "completed"

    def test_failed_retake_keeps_completion(self):
        state = _run([_read(), _watch(), _quiz(90, t=2), _quiz(30, t=3)])["A"]
        assert state.status == "completed"
        assert state.mastery_score == 90
        assert state.attempts == 2
        assert state.mastered_at == _at(2)

    def test_custom_passing_score(self):
        state = _run([_read(), _watch(), _quiz(65, passing=60)])["A"]
        assert state.status == "completed"
        # passed, but below the mastery threshold
        assert state.mastered is False
        assert state.mastered_at is None

    def test_default_passing_score_from_config(self):
        config = EngineConfig(default_quiz_passing_score=50)
        state = _run([_read(), _watch(), _quiz(55)], config)["A"]
        assert state.quiz_passed is True

    def test_max_failed_attempts_from_config(self):
        config = EngineConfig(max_failed_quiz_attempts=1)
        state = _run([_read(), _watch(), _quiz(10)], config)["A"]
        assert state.description_read is False

    def test_input_is_not_modified(self):
        before = UserConceptProgress(user_id="u1", concept_id="A")
        result = apply_event(before, _read())
        assert before.description_read is False
        assert result.value.description_read is True

    def test_event_for_other_concept_rejected(self):
        before = UserConceptProgress(user_id="u1", concept_id="B")
        assert isinstance(apply_event(before, _read("A")), InvalidTransition)

    def test_event_for_other_user_rejected(self):
        before = UserConceptProgress(user_id="u2", concept_id="A")
        assert isinstance(apply_event(before, _read("A")), InvalidTransition)


# =========================================================================
# Tests: reduction
# =========================================================================


class TestReduction:
    def test_replay_is_deterministic(self):
        events = [_read("A"), _watch("A"), _read("B", t=3), _quiz(85, "A", t=4)]
        assert _run(events) == _run(events)

    def test_concepts_are_independent(self):
        snapshot = _run([_read("A"), _read("B", t=1), _watch("A", t=2)])
        assert snapshot["A"].video_watched is True
        assert snapshot["B"].video_watched is False

    def test_initial_snapshot_is_extended(self):
        initial = _run([_read(), _watch()])
        snapshot = reduce_events([_quiz(80, t=5)], initial=initial).value
        assert snapshot["A"].status == "completed"
        assert initial["A"].status == "in_progress"

    def test_empty_log(self):
        assert _run([]) == {}
