"""Parse markdown question files into QuizEntry objects.

Layout:
  # Subject                    (optional; defaults to the file stem)
  ## Lesson
  ### Topic
  | Question | Answer | Note |  (note column optional)

Multiple accepted answers go in one cell separated by ``@``.
"""
from __future__ import annotations

import logging
import re
from pathlib import Path

from flashquiz.models import QuizEntry, split_answers

log = logging.getLogger("flashquiz.parser")


def _cells(line: str) -> list[str]:
    return [c.strip() for c in line.strip().strip("|").split("|")]


def parse_quiz_file(path: Path) -> list[QuizEntry]:
    text = path.read_text()
    source = path.name
    entries: list[QuizEntry] = []
    subject = path.stem.lower()
    lesson = "General"
    topic = "General"

    for lineno, line in enumerate(text.splitlines(), start=1):
        m = re.match(r"^(#{1,3})\s+(.+)", line)
        if m:
            level, title = len(m.group(1)), m.group(2).strip()
            if level == 1:
                subject = title.lower()
            elif level == 2:
                lesson = title
            else:
                topic = title
            continue

        if not line.startswith("|"):
            continue

        cells = _cells(line)
        if len(cells) < 2:
            continue
        # Header and separator rows
        if cells[0].lower() == "question" or set(cells[0]) <= set("-: "):
            continue

        prompt, answer = cells[0], cells[1]
        note = cells[2] if len(cells) > 2 else ""
        if not prompt or not split_answers(answer):
            log.warning("%s:%d: skipping row without question or answer", source, lineno)
            continue

        entries.append(QuizEntry(
            subject=subject,
            lesson=lesson,
            topic=topic,
            prompt=prompt,
            answer=answer,
            note=note,
            source_file=source,
        ))

    return entries
