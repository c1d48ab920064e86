"""
Engine configuration: thresholds, lookup tables and JSON load/save.

The defaults reproduce the production behaviour; a JSON file written by
``save_config`` can override any subset of fields.
"""

import json
import logging
import os
from typing import Dict, List

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


# =========================================================================
# Defaults
# =========================================================================

MASTERY_THRESHOLD = 75

WEEKLY_HOURS_BY_AVAILABILITY: Dict[str, int] = {
    "1-2 hours/day": 10,
    "2-3 hours/day": 17,
    "3-4 hours/day": 24,
    "4+ hours/day": 30,
}

COURSE_LEVEL_ORDINALS: Dict[str, float] = {
    "Beginner": 1,
    "Intermediate": 2,
    "Advanced": 3,
    "All Levels": 1.5,
}

SKILL_LEVEL_ORDINALS: Dict[str, int] = {
    "beginner": 1,
    "intermediate": 2,
    "advanced": 3,
}


class CompletionDefaults(BaseModel):
    """Completion criterion attached to every generated course step."""

    minimum_score: int = Field(default=70, ge=0, le=100)
    required_activities: List[str] = Field(
        default_factory=lambda: ["description", "video", "quiz"]
    )
    mastery_threshold: int = Field(default=MASTERY_THRESHOLD, ge=0, le=100)


class EngineConfig(BaseModel):
    """All tunables of the path generator and the progress gate."""

    mastery_threshold: int = Field(default=MASTERY_THRESHOLD, ge=0, le=100)
    default_quiz_passing_score: int = Field(default=MASTERY_THRESHOLD, ge=0, le=100)
    max_failed_quiz_attempts: int = Field(default=3, ge=1)
    max_candidate_courses: int = Field(default=10, ge=1)
    default_weekly_hours: int = Field(default=10, gt=0)
    default_course_level: float = 2
    weekly_hours_by_availability: Dict[str, int] = Field(
        default_factory=lambda: dict(WEEKLY_HOURS_BY_AVAILABILITY)
    )
    course_level_ordinals: Dict[str, float] = Field(
        default_factory=lambda: dict(COURSE_LEVEL_ORDINALS)
    )
    skill_level_ordinals: Dict[str, int] = Field(
        default_factory=lambda: dict(SKILL_LEVEL_ORDINALS)
    )
    completion: CompletionDefaults = Field(default_factory=CompletionDefaults)

    def weekly_hours(self, time_available: str) -> int:
        return self.weekly_hours_by_availability.get(
            time_available, self.default_weekly_hours
        )

    def course_level(self, level: str) -> float:
        return self.course_level_ordinals.get(level, self.default_course_level)

    def skill_level(self, skill: str) -> int:
        return self.skill_level_ordinals[skill]


DEFAULT_CONFIG = EngineConfig()


# =========================================================================
# JSON load / save
# =========================================================================


def load_config(path: str) -> EngineConfig:
    """Read an ``EngineConfig`` from a JSON file (missing keys use defaults)."""
    with open(path, "r", encoding="utf-8") as fh:
        data = json.load(fh)
    config = EngineConfig.model_validate(data)
    logger.info("Config loaded ← %s", path)
    return config


def save_config(config: EngineConfig, path: str) -> None:
    """Write *config* as indented JSON."""
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, "w", encoding="utf-8") as fh:
        json.dump(config.model_dump(), fh, indent=2)
    logger.info("Config saved → %s", path)
