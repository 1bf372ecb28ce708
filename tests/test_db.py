"""Tests for the database layer."""
from __future__ import annotations

import pytest

from flashquiz.models import QuizEntry, TopicKey


class TestTopics:
    def test_ensure_topic_idempotent(self, tmp_db, capitals_key):
        a = tmp_db.ensure_topic(capitals_key)
        b = tmp_db.ensure_topic(capitals_key)
        assert a == b
        assert tmp_db.get_topic_count() == 1

    def test_get_topic(self, tmp_db, capitals_key):
        tmp_db.ensure_topic(capitals_key)
        t = tmp_db.get_topic(capitals_key)
        assert t["subject"] == "geography"
        assert t["lesson"] == "europe"
        assert t["topic"] == "capitals"
        assert t["mastery_count"] == 0

    def test_get_unknown_topic(self, tmp_db):
        assert tmp_db.get_topic(TopicKey("x", "y", "z")) is None

    def test_same_topic_name_in_different_lessons(self, tmp_db):
        tmp_db.ensure_topic(TopicKey("geo", "europe", "capitals"))
        tmp_db.ensure_topic(TopicKey("geo", "asia", "capitals"))
        assert tmp_db.get_topic_count() == 2

    def test_list_topics_counts_questions(self, populated_db):
        topics = populated_db.list_topics()
        assert len(topics) == 1
        assert topics[0]["question_count"] == 4


class TestQuestions:
    def test_get_questions(self, populated_db, capitals_key):
        qs = populated_db.get_questions(capitals_key)
        assert len(qs) == 4
        assert qs[0].prompt == "Capital of France?"
        assert qs[1].note == "On the Thames."
        assert qs[3].answer_count == 2
        assert all(q.id is not None for q in qs)

    def test_get_questions_unknown_topic(self, tmp_db):
        with pytest.raises(KeyError):
            tmp_db.get_questions(TopicKey("x", "y", "z"))

    def test_add_question_rejects_empty_answer(self, tmp_db, capitals_key):
        with pytest.raises(ValueError):
            tmp_db.add_question(capitals_key, "Broken", "@")
        assert tmp_db.get_question_count() == 0

    def test_update_question(self, populated_db, capitals_key):
        qid = populated_db.get_questions(capitals_key)[0].id
        assert populated_db.update_question(qid, answer="Paris@Lutetia", ignored="x")
        assert populated_db.get_question(qid)["answer"] == "Paris@Lutetia"

    def test_update_question_validates(self, populated_db, capitals_key):
        qid = populated_db.get_questions(capitals_key)[0].id
        with pytest.raises(ValueError):
            populated_db.update_question(qid, answer=" ")

    def test_update_missing_question(self, tmp_db):
        assert not tmp_db.update_question(999, answer="x")

    def test_delete_question(self, populated_db, capitals_key):
        qid = populated_db.get_questions(capitals_key)[0].id
        assert populated_db.delete_question(qid)
        assert not populated_db.delete_question(qid)
        assert len(populated_db.get_questions(capitals_key)) == 3

    def test_list_questions_filtered(self, populated_db, capitals_key):
        populated_db.add_question(TopicKey("geo", "asia", "capitals"), "Capital of Japan?", "Tokyo")
        assert len(populated_db.list_questions()) == 5
        assert len(populated_db.list_questions(capitals_key)) == 4


class TestImport:
    def _entries(self, source="geo.md"):
        return [
            QuizEntry("geo", "europe", "capitals", "Capital of France?", "Paris", "", source),
            QuizEntry("geo", "europe", "rivers", "River through Paris?", "Seine", "", source),
        ]

    def test_import_entries(self, tmp_db):
        assert tmp_db.import_entries(self._entries()) == 2
        assert tmp_db.get_topic_count() == 2

    def test_reimport_by_source(self, tmp_db):
        tmp_db.import_entries(self._entries())
        assert tmp_db.delete_questions_by_source("geo.md") == 2
        tmp_db.import_entries(self._entries())
        assert tmp_db.get_question_count() == 2

    def test_file_mtime(self, tmp_db):
        assert tmp_db.get_file_mtime("geo.md") is None
        tmp_db.set_file_mtime("geo.md", 123)
        assert tmp_db.get_file_mtime("geo.md") == 123


class TestMastery:
    def test_increment(self, populated_db, capitals_key):
        row = populated_db.increment_mastery(capitals_key)
        assert row["mastery_count"] == 1
        assert row["last_mastered"] is not None
        populated_db.increment_mastery(capitals_key, 2)
        assert populated_db.get_mastery(capitals_key) == 3

    def test_increment_unknown_topic(self, tmp_db):
        with pytest.raises(KeyError):
            tmp_db.increment_mastery(TopicKey("x", "y", "z"))

    def test_all_progress(self, populated_db, capitals_key):
        populated_db.increment_mastery(capitals_key)
        progress = populated_db.get_all_progress()
        assert progress == [{
            "subject": "geography",
            "lesson": "europe",
            "topic": "capitals",
            "mastery_count": 1,
            "last_mastered": progress[0]["last_mastered"],
        }]


class TestSessions:
    def test_session_lifecycle(self, populated_db, capitals_key):
        sid = populated_db.start_session(capitals_key)
        populated_db.end_session(sid, score=4, attempts=6, wrong_count=2)
        history = populated_db.get_session_history()
        assert history[0]["id"] == sid
        assert history[0]["score"] == 4
        assert history[0]["ended_at"] is not None

    def test_stats(self, populated_db, capitals_key):
        sid = populated_db.start_session(capitals_key)
        populated_db.end_session(sid, score=4, attempts=5, wrong_count=1)
        populated_db.start_session(capitals_key)  # unfinished, not counted
        stats = populated_db.get_stats()
        assert stats["total_topics"] == 1
        assert stats["total_questions"] == 4
        assert stats["completed_sessions"] == 1
        assert stats["total_correct"] == 4
        assert stats["accuracy"] == 80.0

    def test_empty_stats(self, tmp_db):
        stats = tmp_db.get_stats()
        assert stats["accuracy"] == 0
        assert stats["total_mastery"] == 0


class TestAudioCache:
    def test_set_get_delete(self, tmp_db):
        assert tmp_db.get_audio_cache("abc") is None
        tmp_db.set_audio_cache("abc", "/tmp/abc.mp3", "fake-tts")
        assert tmp_db.get_audio_cache("abc") == "/tmp/abc.mp3"
        tmp_db.delete_audio_cache("abc")
        assert tmp_db.get_audio_cache("abc") is None
