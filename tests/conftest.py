"""Shared test fixtures."""
from __future__ import annotations

import pytest

from flashquiz.db import Database
from flashquiz.models import Question, TopicKey


@pytest.fixture
def tmp_db(tmp_path):
    """Create a fresh temporary database."""
    db = Database(tmp_path / "test.db")
    yield db
    db.close()


@pytest.fixture
def capitals_key():
    return TopicKey("geography", "europe", "capitals")


@pytest.fixture
def capitals():
    """Three single-answer questions."""
    return [
        Question("Capital of France?", "Paris"),
        Question("Capital of the UK?", "London", note="On the Thames."),
        Question("Capital of Japan?", "Tokyo"),
    ]


@pytest.fixture
def multi_question():
    """A question that needs two answers."""
    return Question(
        "Name the two countries that share the Iberian peninsula.",
        "Spain@Portugal",
        note="Andorra and Gibraltar are tiny extras.",
    )


@pytest.fixture
def populated_db(tmp_db, capitals_key, capitals, multi_question):
    """A database pre-loaded with one topic of four questions."""
    for q in [*capitals, multi_question]:
        tmp_db.add_question(capitals_key, q.prompt, q.accepted_answer, note=q.note)
    return tmp_db


@pytest.fixture
def quiz_md_content():
    """Minimal question file content for parser testing."""
    return """\
# Geography

## Europe

### Capitals

| Question | Answer | Note |
|----------|--------|------|
| Capital of France? | Paris | |
| Capital of Italy? | Rome | Also the Vatican's surroundings. |

### Rivers

| Question | Answer |
|----------|--------|
| Two rivers through Budapest and Vienna? | Danube |
| Name two rivers of Germany | Rhine @ Elbe |
| Broken row without answer | @ |

## Asia

### Capitals

| Question | Answer | Note |
|---|---|---|
| Capital of Japan? | Tokyo | Formerly Edo. |
"""
