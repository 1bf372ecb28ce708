from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from flashquiz.models import Question, QuizEntry, TopicKey

SCHEMA = """
CREATE TABLE IF NOT EXISTS subjects (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    slug TEXT NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS lessons (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    subject_id INTEGER NOT NULL REFERENCES subjects(id),
    name TEXT NOT NULL,
    UNIQUE (subject_id, name)
);

CREATE TABLE IF NOT EXISTS topics (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    lesson_id INTEGER NOT NULL REFERENCES lessons(id),
    name TEXT NOT NULL,
    mastery_count INTEGER DEFAULT 0,
    last_mastered TEXT,
    updated_at TEXT,
    UNIQUE (lesson_id, name)
);

CREATE TABLE IF NOT EXISTS questions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    topic_id INTEGER NOT NULL REFERENCES topics(id),
    question TEXT NOT NULL,
    answer TEXT NOT NULL,
    note TEXT,
    image_before TEXT,
    image_after TEXT,
    source_file TEXT
);

CREATE TABLE IF NOT EXISTS sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    topic_id INTEGER REFERENCES topics(id),
    started_at TEXT NOT NULL,
    ended_at TEXT,
    score INTEGER DEFAULT 0,
    attempts INTEGER DEFAULT 0,
    wrong_count INTEGER DEFAULT 0
);

CREATE TABLE IF NOT EXISTS audio_cache (
    sentence_hash TEXT PRIMARY KEY,
    file_path TEXT NOT NULL,
    tts_provider TEXT,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS file_mtimes (
    file_path TEXT PRIMARY KEY,
    mtime_ns INTEGER NOT NULL
);
"""

_TOPIC_SELECT = (
    "SELECT t.id, s.slug AS subject, l.name AS lesson, t.name AS topic, "
    "t.mastery_count, t.last_mastered, t.updated_at "
    "FROM topics t JOIN lessons l ON t.lesson_id = l.id "
    "JOIN subjects s ON l.subject_id = s.id"
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_question(row: sqlite3.Row) -> Question:
    return Question(
        prompt=row["question"],
        accepted_answer=row["answer"],
        note=row["note"] or "",
        image_before=row["image_before"],
        image_after=row["image_after"],
        id=row["id"],
    )


class Database:
    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self._init_schema()

    def _init_schema(self) -> None:
        self.conn.executescript(SCHEMA)
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()

    # ── Topics ────────────────────────────────────────────────────────────

    def ensure_topic(self, key: TopicKey) -> int:
        """Create subject/lesson/topic rows as needed and return the topic id."""
        self.conn.execute(
            "INSERT OR IGNORE INTO subjects (slug) VALUES (?)", (key.subject,)
        )
        subject_id = self.conn.execute(
            "SELECT id FROM subjects WHERE slug = ?", (key.subject,)
        ).fetchone()[0]
        self.conn.execute(
            "INSERT OR IGNORE INTO lessons (subject_id, name) VALUES (?, ?)",
            (subject_id, key.lesson),
        )
        lesson_id = self.conn.execute(
            "SELECT id FROM lessons WHERE subject_id = ? AND name = ?",
            (subject_id, key.lesson),
        ).fetchone()[0]
        self.conn.execute(
            "INSERT OR IGNORE INTO topics (lesson_id, name, updated_at) VALUES (?, ?, ?)",
            (lesson_id, key.topic, _now()),
        )
        self.conn.commit()
        return self.conn.execute(
            "SELECT id FROM topics WHERE lesson_id = ? AND name = ?",
            (lesson_id, key.topic),
        ).fetchone()[0]

    def get_topic(self, key: TopicKey) -> dict | None:
        row = self.conn.execute(
            _TOPIC_SELECT + " WHERE s.slug = ? AND l.name = ? AND t.name = ?",
            (key.subject, key.lesson, key.topic),
        ).fetchone()
        return dict(row) if row else None

    def _topic_id(self, key: TopicKey) -> int:
        topic = self.get_topic(key)
        if topic is None:
            raise KeyError(key.label)
        return topic["id"]

    def list_topics(self) -> list[dict]:
        rows = self.conn.execute(
            "SELECT sub.*, (SELECT COUNT(*) FROM questions q WHERE q.topic_id = sub.id) "
            "AS question_count FROM (" + _TOPIC_SELECT + ") sub "
            "ORDER BY sub.subject, sub.lesson, sub.topic"
        ).fetchall()
        return [dict(r) for r in rows]

    def get_topic_count(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM topics").fetchone()[0]

    # ── Questions ─────────────────────────────────────────────────────────

    def get_questions(self, key: TopicKey) -> list[Question]:
        topic_id = self._topic_id(key)
        rows = self.conn.execute(
            "SELECT * FROM questions WHERE topic_id = ? ORDER BY id", (topic_id,)
        ).fetchall()
        return [_row_to_question(r) for r in rows]

    def get_question(self, question_id: int) -> dict | None:
        row = self.conn.execute(
            "SELECT q.*, s.slug AS subject, l.name AS lesson, t.name AS topic "
            "FROM questions q JOIN topics t ON q.topic_id = t.id "
            "JOIN lessons l ON t.lesson_id = l.id JOIN subjects s ON l.subject_id = s.id "
            "WHERE q.id = ?",
            (question_id,),
        ).fetchone()
        return dict(row) if row else None

    def list_questions(self, key: TopicKey | None = None) -> list[dict]:
        sql = (
            "SELECT q.*, s.slug AS subject, l.name AS lesson, t.name AS topic "
            "FROM questions q JOIN topics t ON q.topic_id = t.id "
            "JOIN lessons l ON t.lesson_id = l.id JOIN subjects s ON l.subject_id = s.id"
        )
        params: tuple = ()
        if key is not None:
            sql += " WHERE s.slug = ? AND l.name = ? AND t.name = ?"
            params = (key.subject, key.lesson, key.topic)
        rows = self.conn.execute(sql + " ORDER BY q.id", params).fetchall()
        return [dict(r) for r in rows]

    def add_question(
        self,
        key: TopicKey,
        question: str,
        answer: str,
        note: str | None = None,
        image_before: str | None = None,
        image_after: str | None = None,
        source_file: str | None = None,
    ) -> int:
        """Insert a question under *key*, creating the topic if needed."""
        # Validates the answer string before it reaches the bank.
        Question(prompt=question, accepted_answer=answer)
        topic_id = self.ensure_topic(key)
        cur = self.conn.execute(
            "INSERT INTO questions "
            "(topic_id, question, answer, note, image_before, image_after, source_file) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (topic_id, question, answer, note or None, image_before or None,
             image_after or None, source_file),
        )
        self.conn.commit()
        return cur.lastrowid

    def update_question(self, question_id: int, **fields) -> bool:
        allowed = {"question", "answer", "note", "image_before", "image_after"}
        updates = {k: v for k, v in fields.items() if k in allowed}
        if not updates:
            return self.get_question(question_id) is not None
        current = self.get_question(question_id)
        if current is None:
            return False
        Question(
            prompt=updates.get("question", current["question"]),
            accepted_answer=updates.get("answer", current["answer"]),
        )
        assignments = ", ".join(f"{k}=?" for k in updates)
        self.conn.execute(
            f"UPDATE questions SET {assignments} WHERE id=?",
            (*updates.values(), question_id),
        )
        self.conn.commit()
        return True

    def delete_question(self, question_id: int) -> bool:
        cur = self.conn.execute("DELETE FROM questions WHERE id = ?", (question_id,))
        self.conn.commit()
        return cur.rowcount > 0

    def get_question_count(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM questions").fetchone()[0]

    # ── Import ────────────────────────────────────────────────────────────

    def delete_questions_by_source(self, source_file: str) -> int:
        """Remove all questions originally imported from *source_file*."""
        cur = self.conn.execute(
            "DELETE FROM questions WHERE source_file = ?", (source_file,)
        )
        self.conn.commit()
        return cur.rowcount

    def import_entries(self, entries: list[QuizEntry]) -> int:
        count = 0
        for e in entries:
            self.add_question(
                TopicKey(e.subject, e.lesson, e.topic),
                e.prompt,
                e.answer,
                note=e.note,
                source_file=e.source_file,
            )
            count += 1
        return count

    # ── File mtimes ─────────────────────────────────────────────────────

    def get_file_mtime(self, file_path: str) -> int | None:
        row = self.conn.execute(
            "SELECT mtime_ns FROM file_mtimes WHERE file_path = ?", (file_path,)
        ).fetchone()
        return row[0] if row else None

    def set_file_mtime(self, file_path: str, mtime_ns: int) -> None:
        self.conn.execute(
            "INSERT OR REPLACE INTO file_mtimes (file_path, mtime_ns) VALUES (?, ?)",
            (file_path, mtime_ns),
        )
        self.conn.commit()

    # ── Mastery ───────────────────────────────────────────────────────────

    def increment_mastery(self, key: TopicKey, increment: int = 1) -> dict:
        topic_id = self._topic_id(key)
        now = _now()
        self.conn.execute(
            "UPDATE topics SET mastery_count = COALESCE(mastery_count, 0) + ?, "
            "last_mastered = ?, updated_at = ? WHERE id = ?",
            (increment, now, now, topic_id),
        )
        self.conn.commit()
        return self.get_topic(key)

    def get_mastery(self, key: TopicKey) -> int:
        topic = self.get_topic(key)
        if topic is None:
            raise KeyError(key.label)
        return topic["mastery_count"] or 0

    def get_all_progress(self) -> list[dict]:
        return [
            {
                "subject": t["subject"],
                "lesson": t["lesson"],
                "topic": t["topic"],
                "mastery_count": t["mastery_count"] or 0,
                "last_mastered": t["last_mastered"],
            }
            for t in self.list_topics()
        ]

    # ── Sessions ──────────────────────────────────────────────────────────

    def start_session(self, key: TopicKey | None = None) -> int:
        topic_id = self._topic_id(key) if key is not None else None
        cur = self.conn.execute(
            "INSERT INTO sessions (topic_id, started_at) VALUES (?, ?)",
            (topic_id, _now()),
        )
        self.conn.commit()
        return cur.lastrowid

    def end_session(self, session_id: int, score: int, attempts: int, wrong_count: int) -> None:
        self.conn.execute(
            "UPDATE sessions SET ended_at=?, score=?, attempts=?, wrong_count=? "
            "WHERE id=?",
            (_now(), score, attempts, wrong_count, session_id),
        )
        self.conn.commit()

    def get_session_history(self, limit: int = 20) -> list[dict]:
        rows = self.conn.execute(
            "SELECT * FROM sessions ORDER BY id DESC LIMIT ?", (limit,)
        ).fetchall()
        return [dict(r) for r in rows]

    def get_stats(self) -> dict:
        totals = self.conn.execute(
            "SELECT COUNT(*) AS cnt, "
            "COALESCE(SUM(attempts), 0) AS attempts, "
            "COALESCE(SUM(wrong_count), 0) AS wrong "
            "FROM sessions WHERE ended_at IS NOT NULL"
        ).fetchone()
        mastery = self.conn.execute(
            "SELECT COALESCE(SUM(mastery_count), 0) FROM topics"
        ).fetchone()[0]

        attempts = totals["attempts"]
        correct = attempts - totals["wrong"]
        return {
            "total_topics": self.get_topic_count(),
            "total_questions": self.get_question_count(),
            "completed_sessions": totals["cnt"],
            "total_attempts": attempts,
            "total_correct": correct,
            "total_mastery": mastery,
            "accuracy": round(correct / attempts * 100, 1) if attempts > 0 else 0,
        }

    # ── Audio cache ───────────────────────────────────────────────────────

    def get_audio_cache(self, sentence_hash: str) -> str | None:
        row = self.conn.execute(
            "SELECT file_path FROM audio_cache WHERE sentence_hash = ?",
            (sentence_hash,),
        ).fetchone()
        return row["file_path"] if row else None

    def set_audio_cache(
        self, sentence_hash: str, file_path: str, tts_provider: str
    ) -> None:
        self.conn.execute(
            "INSERT OR REPLACE INTO audio_cache "
            "(sentence_hash, file_path, tts_provider, created_at) VALUES (?, ?, ?, ?)",
            (sentence_hash, file_path, tts_provider, _now()),
        )
        self.conn.commit()

    def delete_audio_cache(self, sentence_hash: str) -> None:
        self.conn.execute(
            "DELETE FROM audio_cache WHERE sentence_hash = ?",
            (sentence_hash,),
        )
        self.conn.commit()
