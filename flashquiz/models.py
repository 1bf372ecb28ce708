from __future__ import annotations

from dataclasses import dataclass, field

ANSWER_DELIMITER = "@"


def split_answers(accepted_answer: str) -> list[str]:
    """Split an ``a@b@c`` answer string into trimmed, lower-cased segments.

    Repeated segments are kept once, in first-seen order, so ``a@a`` asks for
    a single answer.
    """
    segments: list[str] = []
    for seg in accepted_answer.split(ANSWER_DELIMITER):
        seg = seg.strip().lower()
        if seg and seg not in segments:
            segments.append(seg)
    return segments


@dataclass(frozen=True)
class Question:
    prompt: str
    accepted_answer: str
    note: str = ""
    image_before: str | None = None
    image_after: str | None = None
    id: int | None = None  # question bank row, opaque to the engine

    def __post_init__(self) -> None:
        if not split_answers(self.accepted_answer):
            raise ValueError(f"Question has no accepted answer: {self.prompt!r}")

    @property
    def expected_answers(self) -> list[str]:
        return split_answers(self.accepted_answer)

    @property
    def answer_count(self) -> int:
        return len(self.expected_answers)


@dataclass(frozen=True)
class TopicKey:
    subject: str
    lesson: str
    topic: str

    @property
    def label(self) -> str:
        return f"{self.subject} / {self.lesson} / {self.topic}"


@dataclass
class WrongAnswer:
    prompt: str
    accepted_answer: str
    submitted: str
    note: str = ""


@dataclass(frozen=True)
class Outcome:
    is_correct: bool
    matched_against: str
    submitted: tuple[str, ...] = field(default_factory=tuple)


@dataclass
class QuizEntry:
    subject: str
    lesson: str
    topic: str
    prompt: str
    answer: str
    note: str
    source_file: str
