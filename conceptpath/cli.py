"""
Command-line interface for the Concept Path Engine.

Usage::

    # Check the prerequisite graph for cycles and print metrics
    python -m conceptpath.cli validate --concepts tests/data/sample_concepts.json

    # Best + alternative paths toward a goal concept
    python -m conceptpath.cli path --concepts tests/data/sample_concepts.json \\
        --concept-id py-decorators --progress progress.json

    # Course-level plan for free-text goals
    python -m conceptpath.cli course-path --courses tests/data/sample_courses.json \\
        --goal python --skill-level beginner --time-available "2-3 hours/day"

    # Load concepts/courses into SQLite, then record progress against it
    python -m conceptpath.cli import --db ./data/paths.db \\
        --concepts tests/data/sample_concepts.json --courses tests/data/sample_courses.json
    python -m conceptpath.cli progress --db ./data/paths.db --user u1 \\
        --course py-basics --concept py-variables --action mark_description_read

Exit code 0 when the operation succeeds, 1 on any typed failure.
"""

import argparse
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from conceptpath import db
from conceptpath.config import DEFAULT_CONFIG, EngineConfig, load_config, save_config
from conceptpath.dag_validator import compute_metrics
from conceptpath.engine import persist_progress, plan_courses, recommend_path
from conceptpath.graph_store import ConceptGraphStore
from conceptpath.models import Concept, Course, PathRequest, UserConceptProgress
from conceptpath.result import Ok
from conceptpath.utils import setup_logging

logger = logging.getLogger(__name__)


# =========================================================================
# Input helpers
# =========================================================================


def _read_json(path: str) -> Any:
    with open(path, "r", encoding="utf-8") as fh:
        return json.load(fh)


def _load_concepts(args) -> List[Concept]:
    if getattr(args, "concepts", None):
        return [Concept.model_validate(c) for c in _read_json(args.concepts)]
    conn = db.get_connection(args.db)
    try:
        return db.load_concepts(conn)
    finally:
        conn.close()


def _load_courses(args) -> List[Course]:
    if getattr(args, "courses", None):
        return [Course.model_validate(c) for c in _read_json(args.courses)]
    if getattr(args, "db", None):
        conn = db.get_connection(args.db)
        try:
            return db.load_courses(conn)
        finally:
            conn.close()
    return []


def _load_progress(path: Optional[str]) -> Dict[str, UserConceptProgress]:
    """Progress file: a list of concept progress records, or a ``{conceptId: mastery}`` map."""
    if not path:
        return {}
    data = _read_json(path)
    if isinstance(data, dict):
        return {
            cid: UserConceptProgress(user_id="cli", concept_id=cid, mastery_score=score)
            for cid, score in data.items()
        }
    records = [UserConceptProgress.model_validate(r) for r in data]
    return {r.concept_id: r for r in records}


def _split_ids(value: Optional[str]) -> List[str]:
    return [v.strip() for v in (value or "").split(",") if v.strip()]


def _emit(payload: Any, out: Optional[str]) -> None:
    text = json.dumps(payload, indent=2, default=str)
    if out:
        with open(out, "w", encoding="utf-8") as fh:
            fh.write(text)
        logger.info("📄 Output → %s", out)
    else:
        print(text)


def _fail(result) -> int:
    logger.error("❌ %s: %s", type(result).__name__, result)
    return 1


def _build_store(args):
    built = ConceptGraphStore.build(_load_concepts(args))
    if not isinstance(built, Ok):
        return None, built
    return built.value, None


# =========================================================================
# Commands
# =========================================================================


def cmd_validate(args, config: EngineConfig) -> int:
    store, failure = _build_store(args)
    if failure is not None:
        return _fail(failure)
    metrics = compute_metrics(store)
    cycle = store.find_cycle()
    metrics["cycle"] = cycle
    _emit(metrics, args.out)
    if cycle:
        logger.error("❌ Prerequisite cycle: %s", " → ".join(cycle + cycle[:1]))
        return 1
    logger.info("✅ Graph is acyclic — %d concepts, %d edges.",
                metrics["total_concepts"], metrics["total_edges"])
    return 0


def cmd_path(args, config: EngineConfig) -> int:
    store, failure = _build_store(args)
    if failure is not None:
        return _fail(failure)
    request = PathRequest(
        goal=args.goal or "",
        concept_id=args.concept_id,
        selected_courses=_split_ids(args.selected_courses),
    )
    result = recommend_path(
        store, request, _load_progress(args.progress), _load_courses(args), config
    )
    if not isinstance(result, Ok):
        return _fail(result)
    _emit(result.value.to_wire(), args.out)
    return 0


def cmd_course_path(args, config: EngineConfig) -> int:
    request = PathRequest(
        goal=args.goal or "",
        current_skill_level=args.skill_level,
        time_available=args.time_available,
        selected_courses=_split_ids(args.selected_courses),
    )
    result = plan_courses(request, _load_courses(args), config)
    if not isinstance(result, Ok):
        return _fail(result)
    _emit(result.value.to_wire(), args.out)
    return 0


def cmd_import(args, config: EngineConfig) -> int:
    db.migrate_db(args.db)
    conn = db.get_connection(args.db)
    try:
        if args.concepts:
            concepts = [Concept.model_validate(c) for c in _read_json(args.concepts)]
            built = ConceptGraphStore.build(concepts)
            if not isinstance(built, Ok):
                return _fail(built)
            cycle = built.value.find_cycle()
            if cycle:
                logger.warning("Importing a graph with a prerequisite cycle: %s",
                               " → ".join(cycle))
            n = db.insert_concepts_batch(conn, concepts)
            logger.info("Imported %d concept(s).", n)
        if args.courses:
            courses = [Course.model_validate(c) for c in _read_json(args.courses)]
            n = db.insert_courses_batch(conn, courses)
            logger.info("Imported %d course(s).", n)
    finally:
        conn.close()
    return 0


def cmd_progress(args, config: EngineConfig) -> int:
    db.migrate_db(args.db)
    store, failure = _build_store(args)
    if failure is not None:
        return _fail(failure)
    course = next((c for c in _load_courses(args) if c.id == args.course), None)
    if course is None:
        logger.error("❌ Course '%s' not found.", args.course)
        return 1

    payload: Dict[str, Any] = {
        "action": args.action,
        "conceptId": args.concept,
        "courseId": args.course,
    }
    if args.score is not None:
        payload["score"] = args.score
    if args.passing_score is not None:
        payload["passingScore"] = args.passing_score
    if args.watch_time:
        payload["watchTimeSeconds"] = args.watch_time

    conn = db.get_connection(args.db)
    try:
        result = persist_progress(conn, store, course, args.user, payload, config)
    finally:
        conn.close()
    if not isinstance(result, Ok):
        return _fail(result)
    _emit(
        {
            "document": result.value.document.to_wire(),
            "unlocked": result.value.unlocked,
        },
        args.out,
    )
    return 0


# =========================================================================
# CLI
# =========================================================================


def _parse_args(argv=None):
    parser = argparse.ArgumentParser(
        prog="python -m conceptpath.cli",
        description="Concept prerequisite paths and mastery-gated progress.",
    )
    parser.add_argument("--config", default=None, help="Engine config JSON to apply.")
    parser.add_argument(
        "--save-config", default=None,
        help="Write the effective config to this JSON file and exit.",
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command")

    def _graph_source(p):
        src = p.add_mutually_exclusive_group(required=True)
        src.add_argument("--concepts", help="Concepts JSON file.")
        src.add_argument("--db", help="SQLite database with imported concepts.")
        p.add_argument("--out", default=None, help="Write JSON output here.")

    p = sub.add_parser("validate", help="Check the graph for cycles and print metrics.")
    _graph_source(p)

    p = sub.add_parser("path", help="Generate concept learning paths.")
    _graph_source(p)
    p.add_argument("--courses", default=None, help="Courses JSON file.")
    p.add_argument("--goal", default="")
    p.add_argument("--concept-id", default=None)
    p.add_argument("--selected-courses", default=None, help="Comma-separated course ids.")
    p.add_argument("--progress", default=None, help="Progress JSON file.")

    p = sub.add_parser("course-path", help="Generate a course-level plan.")
    src = p.add_mutually_exclusive_group(required=True)
    src.add_argument("--courses", help="Courses JSON file.")
    src.add_argument("--db", help="SQLite database with imported courses.")
    p.add_argument("--goal", default="")
    p.add_argument("--skill-level", default="beginner",
                   choices=["beginner", "intermediate", "advanced"])
    p.add_argument("--time-available", default="1-2 hours/day")
    p.add_argument("--selected-courses", default=None)
    p.add_argument("--out", default=None)

    p = sub.add_parser("import", help="Load concepts/courses JSON into SQLite.")
    p.add_argument("--db", required=True)
    p.add_argument("--concepts", default=None)
    p.add_argument("--courses", default=None)

    p = sub.add_parser("progress", help="Record one progress event.")
    p.add_argument("--db", required=True)
    p.add_argument("--user", required=True)
    p.add_argument("--course", required=True)
    p.add_argument("--concept", required=True)
    p.add_argument("--action", required=True,
                   choices=["mark_description_read", "mark_video_watched", "quiz_submit"])
    p.add_argument("--score", type=float, default=None)
    p.add_argument("--passing-score", type=float, default=None)
    p.add_argument("--watch-time", type=int, default=0)
    p.add_argument("--out", default=None)

    return parser.parse_args(argv)


_COMMANDS = {
    "validate": cmd_validate,
    "path": cmd_path,
    "course-path": cmd_course_path,
    "import": cmd_import,
    "progress": cmd_progress,
}


def main(argv=None) -> int:
    """CLI entry-point."""
    args = _parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    config = load_config(args.config) if args.config else DEFAULT_CONFIG

    # --save-config: just dump settings and exit
    if args.save_config:
        save_config(config, args.save_config)
        return 0

    if not args.command:
        logger.error("No command given. Use --help for usage.")
        return 2

    return _COMMANDS[args.command](args, config)


if __name__ == "__main__":
    sys.exit(main())
