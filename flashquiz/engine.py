"""Quiz session state machine: question queue, answer collection, re-queueing.

A session walks LOADING -> AWAITING_INPUT <-> SHOWING_FEEDBACK -> FINISHED.
The queue holds indices into the question list and represents remaining
work; a missed question is put back ``practice_count`` times, a correct
answer retires one copy. When the queue drains the mastery sink is told
exactly once.

The engine is synchronous and knows nothing about wall-clock time: a UI
countdown simply calls ``evaluate()`` with whatever has been typed so far.
"""
from __future__ import annotations

import enum
import logging
import random
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from flashquiz.matcher import is_fuzzy_match, matches_any
from flashquiz.models import Outcome, Question, TopicKey, WrongAnswer

log = logging.getLogger("flashquiz.engine")

MasterySink = Callable[[TopicKey | None, int], None]

MASTERY_INCREMENT = 1
NO_ANSWER = "[No answer]"


class QuizError(Exception):
    pass


class InitializationError(QuizError):
    """A session cannot start without questions."""


class SessionStateError(QuizError):
    """An operation was called from a phase where it is not valid."""


class Phase(str, enum.Enum):
    LOADING = "loading"
    AWAITING_INPUT = "awaiting_input"
    SHOWING_FEEDBACK = "showing_feedback"
    FINISHED = "finished"


@dataclass(frozen=True)
class SessionConfig:
    threshold: float = 0.4
    shuffle_enabled: bool = False
    practice_count: int = 2

    def __post_init__(self) -> None:
        if not 0.0 <= self.threshold <= 1.0:
            raise ValueError(f"threshold must be within [0, 1], got {self.threshold}")
        if self.practice_count < 1:
            raise ValueError(f"practice_count must be >= 1, got {self.practice_count}")


class QuizSession:
    def __init__(
        self,
        config: SessionConfig | None = None,
        topic: TopicKey | None = None,
        mastery_sink: MasterySink | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config or SessionConfig()
        self.topic = topic
        self._mastery_sink = mastery_sink
        self._rng = rng or random.Random()

        self.phase = Phase.LOADING
        self.questions: list[Question] = []
        self._queue: list[int] = []
        self.current_index: int | None = None
        self._submissions: list[str] = []
        self._correct_indices: set[int] = set()
        self.attempts = 0
        self.wrong_answers: list[WrongAnswer] = []
        self.last_outcome: Outcome | None = None
        self.last_submit_ignored = False
        self.question_number = 0
        self._mastery_reported = False

    # ── Lifecycle ─────────────────────────────────────────────────────────

    def initialize(self, questions: Sequence[Question]) -> None:
        if not questions:
            raise InitializationError("Cannot start a session with zero questions")

        self.questions = list(questions)
        self._queue = list(range(len(self.questions)))
        if self.config.shuffle_enabled:
            self._shuffle_queue()

        self._submissions = []
        self._correct_indices = set()
        self.attempts = 0
        self.wrong_answers = []
        self.last_outcome = None
        self.last_submit_ignored = False
        self._mastery_reported = False

        self.current_index = self._queue[0]
        self.question_number = 1
        self.phase = Phase.AWAITING_INPUT
        log.info(
            "Session started: %d questions, threshold=%.2f, shuffle=%s, practice=%d",
            len(self.questions), self.config.threshold,
            self.config.shuffle_enabled, self.config.practice_count,
        )

    def _shuffle_queue(self) -> None:
        # random.Random.shuffle is an in-place Fisher-Yates
        self._rng.shuffle(self._queue)

    # ── Answer collection ────────────────────────────────────────────────

    def add_answer(self, text: str) -> Outcome | None:
        """Add one answer and evaluate when the question is ready to be scored.

        Single-answer questions are scored immediately. Multi-answer
        questions accumulate correct answers until every slot is filled,
        but the first answer that fits no expected segment is scored
        straight away. Returns the outcome when scoring happened.
        """
        self._require(Phase.AWAITING_INPUT, "add_answer")
        answer = self._accept(text)
        if answer is None:
            return None

        question = self.current_question
        expected = question.expected_answers
        if len(expected) == 1:
            return self.evaluate()
        if not matches_any(answer, expected, self.config.threshold):
            log.debug("Wrong answer %r on multi-answer question, scoring early", answer)
            return self.evaluate()
        if len(self._submissions) >= len(expected):
            return self.evaluate()
        return None

    def submit_answer(self, text: str = "") -> Outcome | None:
        """Explicit submit: add ``text`` if given, then score what is there.

        Blank text on an empty submission set is ignored like any other
        blank entry; use ``evaluate()`` directly for timeouts.
        """
        self._require(Phase.AWAITING_INPUT, "submit_answer")
        self._accept(text)
        if not self._submissions:
            return None
        return self.evaluate()

    def remove_answer(self, position: int) -> bool:
        self._require(Phase.AWAITING_INPUT, "remove_answer")
        if not 0 <= position < len(self._submissions):
            return False
        del self._submissions[position]
        return True

    def _accept(self, text: str) -> str | None:
        answer = (text or "").strip().lower()
        if not answer or answer in self._submissions:
            self.last_submit_ignored = True
            return None
        self.last_submit_ignored = False
        self._submissions.append(answer)
        return answer

    # ── Scoring ──────────────────────────────────────────────────────────

    def evaluate(self) -> Outcome:
        """Score the current submission set and update the queue.

        Must be called at most once per question; the shell gates
        re-submission.
        """
        self._require(Phase.AWAITING_INPUT, "evaluate")
        idx = self.current_index
        question = self.questions[idx]
        submitted = tuple(self._submissions)
        correct = is_fuzzy_match(submitted, question.expected_answers, self.config.threshold)

        self.attempts += 1
        # Retire the first copy only; later practice copies stay queued.
        self._queue.remove(idx)
        if correct:
            self._correct_indices.add(idx)
        else:
            self.wrong_answers.append(WrongAnswer(
                prompt=question.prompt,
                accepted_answer=question.accepted_answer,
                submitted=", ".join(submitted) or NO_ANSWER,
                note=question.note,
            ))
            self._queue.extend([idx] * self.config.practice_count)
            # The whole remaining queue is reshuffled, not only the new copies.
            if self.config.shuffle_enabled:
                self._shuffle_queue()

        outcome = Outcome(
            is_correct=correct,
            matched_against=question.accepted_answer,
            submitted=submitted,
        )
        self.last_outcome = outcome
        self.phase = Phase.SHOWING_FEEDBACK
        log.debug(
            "Q%d %s (submitted=%s), %d left in queue",
            idx, "correct" if correct else "wrong", submitted, len(self._queue),
        )
        return outcome

    # ── Transitions ──────────────────────────────────────────────────────

    def advance(self) -> Phase:
        if self.phase is Phase.FINISHED:
            return self.phase
        self._require(Phase.SHOWING_FEEDBACK, "advance")

        self._submissions = []
        self.last_submit_ignored = False
        self.last_outcome = None

        if not self._queue:
            self.current_index = None
            self.phase = Phase.FINISHED
            log.info(
                "Session finished: score %d/%d, %d wrong attempts",
                self.score, len(self.questions), len(self.wrong_answers),
            )
            self._report_mastery()
            return self.phase

        self.current_index = self._queue[0]
        self.question_number += 1
        self.phase = Phase.AWAITING_INPUT
        return self.phase

    def _report_mastery(self) -> None:
        if self._mastery_reported:
            return
        self._mastery_reported = True
        if self._mastery_sink is not None:
            self._mastery_sink(self.topic, MASTERY_INCREMENT)

    def _require(self, phase: Phase, operation: str) -> None:
        if self.phase is not phase:
            raise SessionStateError(
                f"{operation}() is not valid while {self.phase.value}"
            )

    # ── State ────────────────────────────────────────────────────────────

    @property
    def queue(self) -> list[int]:
        return list(self._queue)

    @property
    def remaining(self) -> int:
        return len(self._queue)

    @property
    def submissions(self) -> list[str]:
        return list(self._submissions)

    @property
    def current_question(self) -> Question | None:
        if self.current_index is None:
            return None
        return self.questions[self.current_index]

    @property
    def score(self) -> int:
        """Distinct questions answered correctly at least once."""
        return len(self._correct_indices)

    @property
    def is_finished(self) -> bool:
        return self.phase is Phase.FINISHED

    def summary(self) -> dict:
        return {
            "score": self.score,
            "total_questions": len(self.questions),
            "attempts": self.attempts,
            "wrong_count": len(self.wrong_answers),
            "accuracy": round(
                (self.attempts - len(self.wrong_answers)) / max(self.attempts, 1) * 100, 1
            ),
            "wrong_answers": [
                {
                    "question": w.prompt,
                    "correct": w.accepted_answer,
                    "user": w.submitted,
                    "note": w.note,
                }
                for w in self.wrong_answers
            ],
        }
