"""
SQLite persistence for the Concept Path Engine.

Graph snapshot: ``Concepts`` and ``Courses`` tables + import/load helpers.
Learner state: ``LearningPaths`` (one saved path per user),
``ProgressDocuments`` (one versioned document per user and course) and the
append-only ``ProgressEvents`` log.

Writes to ``ProgressDocuments`` use optimistic versioning: a save names the
version it was read at and is rejected with ``ConcurrencyConflict`` if the
stored version moved in between.
"""

import json
import logging
import os
import sqlite3
import time
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from conceptpath.models import (
    Concept,
    Course,
    CourseProgressDocument,
    SavedLearningPath,
    UserConceptProgress,
)
from conceptpath.progress_events import event_from_json
from conceptpath.result import ConcurrencyConflict, Ok

logger = logging.getLogger(__name__)

# =========================================================================
# Schema constants
# =========================================================================

_CREATE_CONCEPTS = """\
CREATE TABLE IF NOT EXISTS Concepts (
    id               TEXT    PRIMARY KEY,
    title            TEXT    NOT NULL,
    description      TEXT,
    complexity       INTEGER NOT NULL CHECK(complexity BETWEEN 1 AND 5),
    est_hours        REAL    NOT NULL,
    prerequisites    TEXT    NOT NULL DEFAULT '[]',
    is_fundamental   INTEGER NOT NULL DEFAULT 0,
    created_at       TIMESTAMP
);
"""

_CREATE_COURSES = """\
CREATE TABLE IF NOT EXISTS Courses (
    id          TEXT PRIMARY KEY,
    title       TEXT NOT NULL,
    payload     TEXT NOT NULL,
    created_at  TIMESTAMP
);
"""

_CREATE_LEARNING_PATHS = """\
CREATE TABLE IF NOT EXISTS LearningPaths (
    user_id     TEXT PRIMARY KEY,
    path_type   TEXT CHECK(path_type IN ('concept','course')),
    payload     TEXT NOT NULL,
    saved_at    TIMESTAMP
);
"""

_CREATE_PROGRESS_DOCUMENTS = """\
CREATE TABLE IF NOT EXISTS ProgressDocuments (
    user_id     TEXT    NOT NULL,
    course_id   TEXT    NOT NULL,
    version     INTEGER NOT NULL,
    payload     TEXT    NOT NULL,
    updated_at  TIMESTAMP,
    PRIMARY KEY (user_id, course_id)
);
"""

_CREATE_PROGRESS_EVENTS = """\
CREATE TABLE IF NOT EXISTS ProgressEvents (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id     TEXT NOT NULL,
    course_id   TEXT,
    concept_id  TEXT NOT NULL,
    action      TEXT NOT NULL,
    payload     TEXT NOT NULL,
    occurred_at TIMESTAMP
);
"""

_CREATE_IDX_EVENTS_USER = """\
CREATE INDEX IF NOT EXISTS idx_events_user_course
    ON ProgressEvents(user_id, course_id);
"""


# =========================================================================
# Connection helper
# =========================================================================


def get_connection(db_path: str) -> sqlite3.Connection:
    """Return a new SQLite connection with WAL mode and row-factory enabled."""
    os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
    conn = sqlite3.connect(db_path, timeout=10)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL;")
    return conn


# =========================================================================
# Migration
# =========================================================================


def migrate_db(db_path: str) -> None:
    """Create (or verify) every table and index."""
    conn = get_connection(db_path)
    try:
        for ddl in (
            _CREATE_CONCEPTS,
            _CREATE_COURSES,
            _CREATE_LEARNING_PATHS,
            _CREATE_PROGRESS_DOCUMENTS,
            _CREATE_PROGRESS_EVENTS,
            _CREATE_IDX_EVENTS_USER,
        ):
            conn.execute(ddl)
        conn.commit()
        logger.info("Migration OK at %s", os.path.abspath(db_path))
    finally:
        conn.close()


# =========================================================================
# Lock-retry helper
# =========================================================================

_SQLITE_LOCK_RETRIES = 5
_SQLITE_LOCK_BASE_DELAY = 0.1


def _retry_on_lock(fn, *args, **kwargs):  # type: ignore[no-untyped-def]
    """Wrap *fn* with SQLite-lock retry."""
    for attempt in range(1, _SQLITE_LOCK_RETRIES + 1):
        try:
            return fn(*args, **kwargs)
        except sqlite3.OperationalError as exc:
            if "locked" in str(exc).lower() and attempt < _SQLITE_LOCK_RETRIES:
                delay = _SQLITE_LOCK_BASE_DELAY * (2 ** (attempt - 1))
                logger.warning(
                    "SQLite locked (attempt %d/%d) — retrying in %.2fs",
                    attempt, _SQLITE_LOCK_RETRIES, delay,
                )
                time.sleep(delay)
            else:
                raise


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# =========================================================================
# Concepts & courses
# =========================================================================


def insert_concepts_batch(conn: sqlite3.Connection, concepts: Iterable[Concept]) -> int:
    """Upsert concepts in a single transaction. Returns number of rows written."""
    now = _now()

    def _do_insert() -> int:
        count = 0
        for c in concepts:
            conn.execute(
                """
                INSERT INTO Concepts
                    (id, title, description, complexity, est_hours,
                     prerequisites, is_fundamental, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    title          = excluded.title,
                    description    = excluded.description,
                    complexity     = excluded.complexity,
                    est_hours      = excluded.est_hours,
                    prerequisites  = excluded.prerequisites,
                    is_fundamental = excluded.is_fundamental
                """,
                (c.id, c.title, c.description, c.complexity,
                 c.estimated_learning_time_hours, json.dumps(c.prerequisites),
                 int(c.is_fundamental), now),
            )
            count += 1
        conn.commit()
        return count

    return _retry_on_lock(_do_insert)


def load_concepts(conn: sqlite3.Connection) -> List[Concept]:
    """Return every concept ordered by ``id``."""
    rows = conn.execute("SELECT * FROM Concepts ORDER BY id").fetchall()
    return [
        Concept(
            id=r["id"],
            title=r["title"],
            description=r["description"],
            complexity=r["complexity"],
            estimated_learning_time_hours=r["est_hours"],
            prerequisites=json.loads(r["prerequisites"] or "[]"),
            is_fundamental=bool(r["is_fundamental"]),
        )
        for r in rows
    ]


def insert_courses_batch(conn: sqlite3.Connection, courses: Iterable[Course]) -> int:
    """Upsert courses (topics stored inline as JSON)."""
    now = _now()

    def _do_insert() -> int:
        count = 0
        for course in courses:
            conn.execute(
                """
                INSERT INTO Courses (id, title, payload, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    title   = excluded.title,
                    payload = excluded.payload
                """,
                (course.id, course.title, course.model_dump_json(by_alias=True), now),
            )
            count += 1
        conn.commit()
        return count

    return _retry_on_lock(_do_insert)


def load_courses(conn: sqlite3.Connection) -> List[Course]:
    """Return every course in insertion order."""
    rows = conn.execute("SELECT payload FROM Courses ORDER BY rowid").fetchall()
    return [Course.model_validate_json(r["payload"]) for r in rows]


# =========================================================================
# Saved learning paths
# =========================================================================


def save_learning_path(conn: sqlite3.Connection, saved: SavedLearningPath) -> SavedLearningPath:
    """Store *saved* as the user's current path (replaces any previous one)."""
    saved = saved.model_copy(update={"saved_at": saved.saved_at or datetime.now(timezone.utc)})

    def _do_save() -> None:
        conn.execute(
            """
            INSERT INTO LearningPaths (user_id, path_type, payload, saved_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                path_type = excluded.path_type,
                payload   = excluded.payload,
                saved_at  = excluded.saved_at
            """,
            (saved.user_id, saved.path_type, saved.model_dump_json(by_alias=True),
             saved.saved_at.isoformat()),
        )
        conn.commit()

    _retry_on_lock(_do_save)
    logger.info("Learning path saved for user %s.", saved.user_id)
    return saved


def get_learning_path(conn: sqlite3.Connection, user_id: str) -> Optional[SavedLearningPath]:
    """Return the user's saved path, or ``None``."""
    row = conn.execute(
        "SELECT payload FROM LearningPaths WHERE user_id = ?", (user_id,)
    ).fetchone()
    return SavedLearningPath.model_validate_json(row["payload"]) if row else None


# =========================================================================
# Progress documents (optimistic versioning)
# =========================================================================


def _stored_version(conn: sqlite3.Connection, user_id: str, course_id: str) -> int:
    row = conn.execute(
        "SELECT version FROM ProgressDocuments WHERE user_id = ? AND course_id = ?",
        (user_id, course_id),
    ).fetchone()
    return row["version"] if row else 0


def load_progress_document(
    conn: sqlite3.Connection, user_id: str, course_id: str
) -> CourseProgressDocument:
    """Return the stored document, or an empty version-0 document."""
    row = conn.execute(
        "SELECT payload, version FROM ProgressDocuments WHERE user_id = ? AND course_id = ?",
        (user_id, course_id),
    ).fetchone()
    if row is None:
        return CourseProgressDocument(user_id=user_id, course_id=course_id)
    doc = CourseProgressDocument.model_validate_json(row["payload"])
    return doc.model_copy(update={"version": row["version"]})


def _write_document(
    conn: sqlite3.Connection, payload: str, doc: CourseProgressDocument, expected_version: int
) -> bool:
    """Versioned INSERT/UPDATE inside the caller's transaction (no commit)."""
    new_version = expected_version + 1
    if expected_version == 0:
        try:
            conn.execute(
                """
                INSERT INTO ProgressDocuments
                    (user_id, course_id, version, payload, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (doc.user_id, doc.course_id, new_version, payload, _now()),
            )
        except sqlite3.IntegrityError:
            return False
        return True
    cursor = conn.execute(
        """
        UPDATE ProgressDocuments
           SET version = ?, payload = ?, updated_at = ?
         WHERE user_id = ? AND course_id = ? AND version = ?
        """,
        (new_version, payload, _now(), doc.user_id, doc.course_id, expected_version),
    )
    return cursor.rowcount == 1


def _insert_event(conn: sqlite3.Connection, event) -> int:
    cursor = conn.execute(
        """
        INSERT INTO ProgressEvents
            (user_id, course_id, concept_id, action, payload, occurred_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (event.user_id, event.course_id, event.concept_id, event.action,
         event.model_dump_json(by_alias=True), event.occurred_at.isoformat()),
    )
    return cursor.lastrowid  # type: ignore[return-value]


def _conflict(conn: sqlite3.Connection, doc: CourseProgressDocument, expected_version: int):
    conflict = ConcurrencyConflict(
        user_id=doc.user_id,
        course_id=doc.course_id,
        expected_version=expected_version,
        actual_version=_stored_version(conn, doc.user_id, doc.course_id),
    )
    logger.warning("Progress write rejected: %s", conflict)
    return conflict


def save_progress_document(
    conn: sqlite3.Connection,
    doc: CourseProgressDocument,
    expected_version: int,
    event=None,
):
    """Write *doc* if the stored version still equals *expected_version*.

    When *event* is given it is appended to ``ProgressEvents`` in the same
    transaction: either both rows land or neither does.

    Returns:
        ``Ok(saved_doc)`` carrying the new version, or
        ``ConcurrencyConflict``. Never retries on conflict.
    """
    stored = doc.model_copy(update={"version": expected_version + 1})
    payload = stored.model_dump_json(by_alias=True)

    def _do_save() -> bool:
        try:
            if not _write_document(conn, payload, doc, expected_version):
                conn.rollback()
                return False
            if event is not None:
                _insert_event(conn, event)
        except sqlite3.Error:
            conn.rollback()
            raise
        conn.commit()
        return True

    if not _retry_on_lock(_do_save):
        return _conflict(conn, doc, expected_version)
    return Ok(stored)


# =========================================================================
# Progress event log
# =========================================================================


def append_event(conn: sqlite3.Connection, event) -> int:
    """Append one progress event. Returns the row ID."""

    def _do_insert() -> int:
        rowid = _insert_event(conn, event)
        conn.commit()
        return rowid

    return _retry_on_lock(_do_insert)


def load_user_progress(
    conn: sqlite3.Connection, user_id: str, exclude_course_id: Optional[str] = None
) -> Dict[str, UserConceptProgress]:
    """Merge concept progress across all of a user's course documents.

    A concept tracked in several courses keeps the entry with the highest
    mastery score.
    """
    rows = conn.execute(
        "SELECT course_id, payload FROM ProgressDocuments WHERE user_id = ? ORDER BY course_id",
        (user_id,),
    ).fetchall()
    merged: Dict[str, UserConceptProgress] = {}
    for r in rows:
        if r["course_id"] == exclude_course_id:
            continue
        doc = CourseProgressDocument.model_validate_json(r["payload"])
        for cid, entry in doc.concepts.items():
            current = merged.get(cid)
            if current is None or entry.mastery_score > current.mastery_score:
                merged[cid] = entry
    return merged


def load_events(
    conn: sqlite3.Connection, user_id: str, course_id: Optional[str] = None
) -> list:
    """Return a user's events in append order, optionally for one course."""
    if course_id is None:
        rows = conn.execute(
            "SELECT payload FROM ProgressEvents WHERE user_id = ? ORDER BY id",
            (user_id,),
        ).fetchall()
    else:
        rows = conn.execute(
            """SELECT payload FROM ProgressEvents
               WHERE user_id = ? AND course_id = ? ORDER BY id""",
            (user_id, course_id),
        ).fetchall()
    return [event_from_json(r["payload"]) for r in rows]
