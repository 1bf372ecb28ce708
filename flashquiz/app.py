"""FastAPI application with all routes."""
from __future__ import annotations

import logging
import os
import random
import sqlite3
import time
from itertools import count
from pathlib import Path

logging.basicConfig(level=logging.INFO, format="%(name)s | %(message)s")

from fastapi import FastAPI, File, HTTPException, Request, UploadFile
from fastapi.responses import FileResponse

from flashquiz.audio import clean_for_speech, get_or_create_audio, sentence_hash
from flashquiz.config import Settings, load_settings, save_settings
from flashquiz.db import Database
from flashquiz.engine import InitializationError, Phase, QuizSession, SessionStateError
from flashquiz.matcher import matches_any
from flashquiz.models import Question, TopicKey
from flashquiz.parsers.quiz_parser import parse_quiz_file

app = FastAPI(title="Flashquiz")

# Global state (initialized in startup)
_db: Database | None = None
_settings: Settings | None = None
_active_sessions: dict[int, dict] = {}  # session_id -> {"quiz": QuizSession, "db_session_id": int}
_session_ids = count(1)
_question_cache: dict[TopicKey, list[Question]] = {}  # reused unless fetch_from_db is set

log = logging.getLogger("flashquiz.app")


def get_db() -> Database:
    assert _db is not None
    return _db


def get_settings() -> Settings:
    assert _settings is not None
    return _settings


def _get_tts():
    s = get_settings()
    if s.tts_provider == "edge-tts":
        from flashquiz.providers.tts_edge import EdgeTTSProvider
        return EdgeTTSProvider(voice=s.tts_voice)
    raise ValueError(f"Unknown TTS provider: {s.tts_provider}")


def _import_file(db: Database, path: Path) -> int:
    db.delete_questions_by_source(path.name)
    n = db.import_entries(parse_quiz_file(path))
    db.set_file_mtime(str(path), path.stat().st_mtime_ns)
    _question_cache.clear()
    return n


def _load_questions(key: TopicKey) -> list[Question]:
    """Questions for *key*, from the in-process cache unless fetch_from_db is on.

    Edits made through this app clear the cache; fetch_from_db covers changes
    written by another process, such as ``flashquiz import``.
    """
    if not get_settings().fetch_from_db and key in _question_cache:
        return _question_cache[key]
    questions = get_db().get_questions(key)
    _question_cache[key] = questions
    return questions


def _auto_import_if_changed(db: Database, settings: Settings) -> None:
    """Re-import question files whose mtime has changed since the last import."""
    for qf in settings.resolved_quiz_files():
        if not qf.exists():
            continue
        if db.get_file_mtime(str(qf)) == qf.stat().st_mtime_ns:
            continue
        log.info("Changed: %s, re-importing", qf.name)
        log.info("  %d questions imported", _import_file(db, qf))


@app.on_event("startup")
async def startup():
    global _db, _settings
    if _db is not None:
        return  # Already initialized (e.g. by tests)
    _settings = load_settings()
    _db = Database(_settings.db_full_path)
    if not os.environ.get("FLASHQUIZ_NO_AUTO_IMPORT"):
        _auto_import_if_changed(_db, _settings)


@app.on_event("shutdown")
async def shutdown():
    if _db:
        _db.close()


def _topic_from(body: dict) -> TopicKey:
    subject = body.get("subject")
    lesson = body.get("lesson")
    topic = body.get("topic")
    if not subject or not lesson or not topic:
        raise HTTPException(400, "Missing subject, lesson, or topic")
    return TopicKey(str(subject), str(lesson), str(topic))


# ── API: Topics & stats ───────────────────────────────────────────────────

@app.get("/api/topics")
async def api_topics():
    return get_db().list_topics()


@app.get("/api/stats")
async def api_stats():
    return get_db().get_stats()


@app.post("/api/import")
async def api_import():
    db = get_db()
    total = 0
    files = 0
    for qf in get_settings().resolved_quiz_files():
        if not qf.exists():
            continue
        total += _import_file(db, qf)
        files += 1
    return {
        "files_imported": files,
        "questions_imported": total,
        "total_questions": db.get_question_count(),
        "total_topics": db.get_topic_count(),
    }


# ── API: Quiz session ─────────────────────────────────────────────────────

def _get_session(session_id) -> dict:
    if session_id not in _active_sessions:
        raise HTTPException(404, "Session not found")
    return _active_sessions[session_id]


def _session_state(session_id: int, quiz: QuizSession) -> dict:
    state: dict = {
        "session_id": session_id,
        "phase": quiz.phase.value,
        "score": quiz.score,
        "remaining": quiz.remaining,
        "question_number": quiz.question_number,
        "submissions": quiz.submissions,
        "last_submit_ignored": quiz.last_submit_ignored,
        "timer_seconds": get_settings().quiz_timer_seconds,
        "auto_speak": get_settings().auto_speak,
    }
    q = quiz.current_question
    if q is not None:
        state["question"] = {
            "prompt": q.prompt,
            "expected_count": q.answer_count,
            "multi_answer": q.answer_count > 1,
            "image_before": q.image_before,
        }
        if quiz.phase is Phase.AWAITING_INPUT:
            # Per-answer ticks for the chips shown while collecting answers
            state["submission_marks"] = [
                matches_any(a, q.expected_answers, quiz.config.threshold)
                for a in quiz.submissions
            ]
    if quiz.phase is Phase.SHOWING_FEEDBACK and quiz.last_outcome is not None:
        state["feedback"] = {
            "correct": quiz.last_outcome.is_correct,
            "answer": quiz.last_outcome.matched_against,
            "submitted": list(quiz.last_outcome.submitted),
            "note": q.note if q else "",
            "image_after": q.image_after if q else None,
        }
    if quiz.phase is Phase.FINISHED:
        state["summary"] = quiz.summary()
    return state


def _run(session_id: int, action):
    session = _get_session(session_id)
    try:
        action(session["quiz"])
    except SessionStateError as e:
        raise HTTPException(409, str(e))
    return _session_state(session_id, session["quiz"])


@app.post("/api/session/start")
async def api_session_start(request: Request):
    body = await request.json()
    key = _topic_from(body)
    db = get_db()
    s = get_settings()
    try:
        questions = _load_questions(key)
    except KeyError:
        raise HTTPException(404, "Topic not found")

    seed = body.get("seed")
    quiz = QuizSession(
        config=s.session_config(),
        topic=key,
        mastery_sink=lambda topic, increment: db.increment_mastery(topic, increment),
        rng=random.Random(seed) if seed is not None else None,
    )
    try:
        quiz.initialize(questions)
    except InitializationError as e:
        raise HTTPException(404, str(e))

    session_id = next(_session_ids)
    _active_sessions[session_id] = {
        "quiz": quiz,
        "db_session_id": db.start_session(key),
    }
    log.info("Session %d: %s (%d questions)", session_id, key.label, len(questions))
    return _session_state(session_id, quiz)


@app.post("/api/session/answer")
async def api_session_answer(request: Request):
    body = await request.json()
    return _run(body.get("session_id"), lambda quiz: quiz.add_answer(body.get("text", "")))


@app.post("/api/session/submit")
async def api_session_submit(request: Request):
    body = await request.json()
    return _run(body.get("session_id"), lambda quiz: quiz.submit_answer(body.get("text", "")))


@app.post("/api/session/timeout")
async def api_session_timeout(request: Request):
    """Countdown expired: score whatever has been entered so far."""
    body = await request.json()
    return _run(body.get("session_id"), lambda quiz: quiz.evaluate())


@app.post("/api/session/remove")
async def api_session_remove(request: Request):
    body = await request.json()
    position = body.get("position")
    if not isinstance(position, int):
        raise HTTPException(400, "position must be an integer")
    return _run(body.get("session_id"), lambda quiz: quiz.remove_answer(position))


@app.post("/api/session/next")
async def api_session_next(request: Request):
    body = await request.json()
    session_id = body.get("session_id")
    session = _get_session(session_id)
    quiz: QuizSession = session["quiz"]
    was_finished = quiz.is_finished
    try:
        quiz.advance()
    except SessionStateError as e:
        raise HTTPException(409, str(e))
    except (KeyError, sqlite3.Error) as e:
        # Mastery sink failed; the session itself is already finished.
        log.warning("Mastery update failed for %s: %s", quiz.topic.label, e)
        mastery_ok = False
    else:
        mastery_ok = True

    state = _session_state(session_id, quiz)
    if quiz.is_finished and not was_finished:
        get_db().end_session(
            session["db_session_id"], quiz.score, quiz.attempts, len(quiz.wrong_answers)
        )
        if mastery_ok:
            state["mastery_count"] = get_db().get_mastery(quiz.topic)
    return state


@app.get("/api/session/{session_id}")
async def api_session_state(session_id: int):
    session = _get_session(session_id)
    return _session_state(session_id, session["quiz"])


@app.delete("/api/session/{session_id}")
async def api_session_end(session_id: int):
    _get_session(session_id)
    del _active_sessions[session_id]
    return {"ok": True}


@app.get("/api/session-history")
async def api_session_history():
    return {"sessions": get_db().get_session_history(limit=10)}


# ── API: Mastery ─────────────────────────────────────────────────────────

@app.get("/api/mastery")
async def api_get_mastery(subject: str = "", lesson: str = "", topic: str = ""):
    key = _topic_from({"subject": subject, "lesson": lesson, "topic": topic})
    found = get_db().get_topic(key)
    if found is None:
        raise HTTPException(404, "Topic not found")
    return found


@app.post("/api/mastery")
async def api_update_mastery(request: Request):
    body = await request.json()
    key = _topic_from(body)
    increment = body.get("increment")
    if not isinstance(increment, int) or increment <= 0:
        raise HTTPException(400, "increment must be a positive integer")
    try:
        return get_db().increment_mastery(key, increment)
    except KeyError:
        raise HTTPException(404, "Topic not found")


@app.get("/api/progress")
async def api_progress():
    return get_db().get_all_progress()


# ── API: Admin question CRUD ─────────────────────────────────────────────

@app.get("/api/admin/questions")
async def api_admin_questions(subject: str = "", lesson: str = "", topic: str = ""):
    key = None
    if subject or lesson or topic:
        key = _topic_from({"subject": subject, "lesson": lesson, "topic": topic})
    return get_db().list_questions(key)


_REQUIRED_FIELDS = ("question", "answer")
_OPTIONAL_FIELDS = ("note", "image_before", "image_after")


def _question_fields(body: dict, required: bool) -> dict:
    """Editable question columns from *body*, type-checked."""
    fields = {}
    for name in _REQUIRED_FIELDS:
        if name not in body:
            continue
        value = body[name]
        if not isinstance(value, str) or not value.strip():
            raise HTTPException(400, f"{name} must be a non-empty string")
        fields[name] = value.strip()
    for name in _OPTIONAL_FIELDS:
        if name not in body:
            continue
        value = body[name]
        if value is not None and not isinstance(value, str):
            raise HTTPException(400, f"{name} must be a string or null")
        fields[name] = value
    if required and any(name not in fields for name in _REQUIRED_FIELDS):
        raise HTTPException(400, "Missing required fields")
    return fields


@app.post("/api/admin/questions")
async def api_admin_add_question(request: Request):
    body = await request.json()
    key = _topic_from(body)
    fields = _question_fields(body, required=True)
    try:
        question_id = get_db().add_question(
            key, fields["question"], fields["answer"],
            note=fields.get("note"),
            image_before=fields.get("image_before"),
            image_after=fields.get("image_after"),
        )
    except ValueError as e:
        raise HTTPException(400, str(e))
    _question_cache.clear()
    return get_db().get_question(question_id)


@app.put("/api/admin/questions/{question_id}")
async def api_admin_update_question(question_id: int, request: Request):
    body = await request.json()
    fields = _question_fields(body, required=False)
    try:
        found = get_db().update_question(question_id, **fields)
    except ValueError as e:
        raise HTTPException(400, str(e))
    if not found:
        raise HTTPException(404, "Question not found")
    _question_cache.clear()
    return get_db().get_question(question_id)


@app.delete("/api/admin/questions/{question_id}")
async def api_admin_delete_question(question_id: int):
    if not get_db().delete_question(question_id):
        raise HTTPException(404, "Question not found")
    _question_cache.clear()
    return {"question_id": question_id, "deleted": True}


@app.post("/api/admin/upload-image")
async def api_admin_upload_image(file: UploadFile = File(...)):
    """Store an image for a question's before/after slot. Returns its URL."""
    name = Path(file.filename or "").name
    if not name:
        raise HTTPException(400, "Invalid or missing file")
    filename = f"{int(time.time() * 1000)}-{name}"
    image_dir = get_settings().image_full_path
    image_dir.mkdir(parents=True, exist_ok=True)
    (image_dir / filename).write_bytes(await file.read())
    log.info("Stored image %s", filename)
    return {"url": f"/api/images/{filename}"}


@app.get("/api/images/{filename}")
async def api_image(filename: str):
    image_path = get_settings().image_full_path / Path(filename).name
    if not image_path.is_file():
        raise HTTPException(404, "Image not found")
    return FileResponse(image_path)


# ── API: Audio ────────────────────────────────────────────────────────────

@app.get("/api/audio/{audio_hash}.mp3")
async def api_audio(audio_hash: str):
    s = get_settings()
    audio_path = s.audio_cache_full_path / f"{audio_hash}.mp3"
    if not audio_path.exists():
        raise HTTPException(404, "Audio not found")
    return FileResponse(audio_path, media_type="audio/mpeg")


@app.post("/api/tts/generate")
async def api_tts_generate(request: Request):
    """Generate TTS for a question prompt or note. Returns audio hash."""
    body = await request.json()
    text = clean_for_speech(body.get("text", ""))
    if not text:
        raise HTTPException(400, "No text provided")

    try:
        tts = _get_tts()
    except ValueError as e:
        raise HTTPException(500, f"TTS error: {e}")
    s = get_settings()
    audio_path = await get_or_create_audio(text, tts, get_db(), s.audio_cache_full_path)
    if audio_path is None:
        raise HTTPException(500, "TTS generation failed")
    return {"audio_hash": sentence_hash(text)}


# ── API: Settings ─────────────────────────────────────────────────────────

@app.get("/api/settings")
async def api_get_settings():
    return get_settings().to_dict()


@app.put("/api/settings")
async def api_update_settings(request: Request):
    body = await request.json()
    s = get_settings()
    known = {f.name for f in Settings.__dataclass_fields__.values()}
    candidate = Settings(**{**s.to_dict(), **{k: v for k, v in body.items() if k in known}})
    try:
        candidate.session_config()
    except (TypeError, ValueError) as e:
        raise HTTPException(400, f"Invalid settings: {e}")
    for k, v in candidate.to_dict().items():
        setattr(s, k, v)
    save_settings(s)
    return s.to_dict()
