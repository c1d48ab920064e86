import sqlite3
import os
import sys

DB_PATH = sys.argv[1] if len(sys.argv) > 1 else "./data/paths.db"

def verify():
    if not os.path.exists(DB_PATH):
        print(f"Error: {DB_PATH} not found.")
        return

    con = sqlite3.connect(DB_PATH)
    con.row_factory = sqlite3.Row
    cur = con.cursor()

    total_concepts = cur.execute("SELECT count(*) FROM Concepts").fetchone()[0]
    total_courses = cur.execute("SELECT count(*) FROM Courses").fetchone()[0]
    roots = cur.execute(
        "SELECT count(*) FROM Concepts WHERE prerequisites = '[]'"
    ).fetchone()[0]

    documents = cur.execute("SELECT count(*) FROM ProgressDocuments").fetchone()[0]
    events = cur.execute("SELECT count(*) FROM ProgressEvents").fetchone()[0]

    # Events per action
    by_action = cur.execute("""
        SELECT action, count(*) AS n FROM ProgressEvents
        GROUP BY action ORDER BY n DESC
    """).fetchall()

    # Most-written documents
    top5 = cur.execute("""
        SELECT user_id, course_id, version, updated_at
        FROM ProgressDocuments
        ORDER BY version DESC LIMIT 5
    """).fetchall()

    print("-" * 40)
    print("PROGRESS VERIFICATION REPORT")
    print("-" * 40)
    print(f"Concepts:    {total_concepts} ({roots} without prerequisites)")
    print(f"Courses:     {total_courses}")
    print(f"Documents:   {documents}")
    print(f"Events:      {events}")
    for r in by_action:
        print(f"  {r['action']:<24} {r['n']}")
    print("\nTop 5 Documents by Version:")
    for r in top5:
        print(f"  {r['user_id']} / {r['course_id']} (v{r['version']}, updated {r['updated_at']})")
    print("-" * 40)
    con.close()

if __name__ == "__main__":
    verify()
