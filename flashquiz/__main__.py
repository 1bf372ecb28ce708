"""CLI entry point for flashquiz.

Usage:
  python -m flashquiz serve [--port PORT] [--host HOST] [--no-auto-import]
  python -m flashquiz stop
  python -m flashquiz status
  python -m flashquiz import
  python -m flashquiz topics
  python -m flashquiz quiz SUBJECT LESSON TOPIC
  python -m flashquiz stats
"""
from __future__ import annotations

import os
import signal
import sys
from pathlib import Path

PID_FILE = Path(__file__).resolve().parent.parent / ".server.pid"


def main():
    args = sys.argv[1:]
    command = args[0] if args else "serve"

    if command == "serve":
        _serve(args[1:])
    elif command == "stop":
        _stop()
    elif command == "status":
        _status()
    elif command == "import":
        _import_questions()
    elif command == "topics":
        _topics()
    elif command == "quiz":
        _quiz(args[1:])
    elif command == "stats":
        _stats()
    else:
        print(f"Unknown command: {command}")
        print("Commands: serve, stop, status, import, topics, quiz, stats")
        sys.exit(1)


def _parse_flag(args: list[str], name: str, default: str) -> str:
    for i, a in enumerate(args):
        if a == name and i + 1 < len(args):
            return args[i + 1]
    return default


def _read_pid() -> int | None:
    """Read PID from file, return None if stale or missing."""
    if not PID_FILE.exists():
        return None
    try:
        pid = int(PID_FILE.read_text().strip())
        os.kill(pid, 0)
        return pid
    except (ValueError, ProcessLookupError, PermissionError):
        PID_FILE.unlink(missing_ok=True)
        return None


def _stop() -> bool:
    pid = _read_pid()
    if pid is None:
        print("Server is not running.")
        return False
    try:
        os.kill(pid, signal.SIGTERM)
        print(f"Stopped server (PID {pid}).")
        return True
    except ProcessLookupError:
        print("Server was not running (stale PID file removed).")
        return False
    finally:
        PID_FILE.unlink(missing_ok=True)


def _status():
    pid = _read_pid()
    if pid is None:
        print("Server is not running.")
    else:
        print(f"Server is running (PID {pid}).")


def _serve(args: list[str]):
    import uvicorn

    existing = _read_pid()
    if existing is not None:
        print(f"Server already running (PID {existing}). Use 'stop' first.")
        sys.exit(1)

    if "--no-auto-import" in args:
        os.environ["FLASHQUIZ_NO_AUTO_IMPORT"] = "1"

    port = int(_parse_flag(args, "--port", "8765"))
    host = _parse_flag(args, "--host", "127.0.0.1")
    PID_FILE.write_text(str(os.getpid()))

    print(f"Starting Flashquiz on http://{host}:{port}")
    print("Press Ctrl+C to stop\n")
    try:
        uvicorn.run(
            "flashquiz.app:app",
            host=host,
            port=port,
            reload=False,
            timeout_graceful_shutdown=5,
        )
    finally:
        PID_FILE.unlink(missing_ok=True)
        os.environ.pop("FLASHQUIZ_NO_AUTO_IMPORT", None)


def _open_db():
    from flashquiz.config import load_settings
    from flashquiz.db import Database

    settings = load_settings()
    return settings, Database(settings.db_full_path)


def _import_questions():
    from flashquiz.parsers.quiz_parser import parse_quiz_file

    settings, db = _open_db()
    total = 0
    for qf in settings.resolved_quiz_files():
        if not qf.exists():
            print(f"  Skipping (not found): {qf}")
            continue
        print(f"  Parsing: {qf.name}")
        db.delete_questions_by_source(qf.name)
        n = db.import_entries(parse_quiz_file(qf))
        db.set_file_mtime(str(qf), qf.stat().st_mtime_ns)
        total += n
        print(f"    {n} questions")

    print(f"\nTotal in DB: {db.get_question_count()} questions, {db.get_topic_count()} topics")
    db.close()


def _topics():
    _, db = _open_db()
    for t in db.list_topics():
        print(
            f"{t['subject']:12s} {t['lesson']:20s} {t['topic']:24s} "
            f"{t['question_count']:4d} questions  mastery {t['mastery_count'] or 0}"
        )
    db.close()


def _quiz(args: list[str]):
    """Play one topic in the terminal. An empty line submits what was typed."""
    from flashquiz.engine import InitializationError, Phase, QuizSession
    from flashquiz.models import TopicKey

    if len(args) < 3:
        print("Usage: python -m flashquiz quiz SUBJECT LESSON TOPIC")
        sys.exit(1)

    settings, db = _open_db()
    key = TopicKey(*args[:3])
    try:
        questions = db.get_questions(key)
    except KeyError:
        print(f"Topic not found: {key.label}")
        db.close()
        sys.exit(1)

    quiz = QuizSession(
        config=settings.session_config(),
        topic=key,
        mastery_sink=lambda topic, increment: db.increment_mastery(topic, increment),
    )
    try:
        quiz.initialize(questions)
    except InitializationError as e:
        print(e)
        db.close()
        sys.exit(1)

    session_id = db.start_session(key)
    try:
        while not quiz.is_finished:
            q = quiz.current_question
            suffix = f" ({q.answer_count} answers)" if q.answer_count > 1 else ""
            print(f"\n[{quiz.question_number}] {q.prompt}{suffix}")
            while quiz.phase is Phase.AWAITING_INPUT:
                text = input("> ")
                if text.strip():
                    quiz.add_answer(text)
                    if quiz.last_submit_ignored:
                        print("  (already entered)")
                elif quiz.submissions:
                    quiz.submit_answer()
            outcome = quiz.last_outcome
            print("  Correct!" if outcome.is_correct else f"  Wrong. Answer: {outcome.matched_against}")
            if q.note:
                print(f"  Note: {q.note}")
            quiz.advance()
    except (EOFError, KeyboardInterrupt):
        print("\nAborted.")
        db.close()
        return

    summary = quiz.summary()
    db.end_session(session_id, quiz.score, quiz.attempts, summary["wrong_count"])
    print(f"\nScore: {summary['score']}/{summary['total_questions']} "
          f"({summary['accuracy']}% of {summary['attempts']} attempts)")
    for w in summary["wrong_answers"]:
        print(f"  Q: {w['question']}\n     you: {w['user']}  correct: {w['correct']}")
    print(f"Mastery for {key.label}: {db.get_mastery(key)}")
    db.close()


def _stats():
    _, db = _open_db()
    stats = db.get_stats()

    print("Flashquiz Stats")
    print("=" * 40)
    print(f"Topics:             {stats['total_topics']}")
    print(f"Questions:          {stats['total_questions']}")
    print(f"Sessions completed: {stats['completed_sessions']}")
    print(f"Attempts:           {stats['total_attempts']}")
    print(f"Overall accuracy:   {stats['accuracy']}%")
    print(f"Total mastery:      {stats['total_mastery']}")
    db.close()


if __name__ == "__main__":
    main()
