"""Shared fixtures: in-memory response lists and a throwaway SQLite store."""

import pytest

from fieldsurvey.db.models import Question, ResponseRecord, Survey
from fieldsurvey.db.repository import SQLiteRepository


@pytest.fixture
def make_responses():
    """Build ResponseRecords from answer mappings (ids r1, r2, ...)."""

    def _make(*answer_maps, version=1, survey_id="s1"):
        return [
            ResponseRecord(
                response_id=f"r{i}",
                survey_id=survey_id,
                answers=dict(answers),
                survey_version=version,
            )
            for i, answers in enumerate(answer_maps, start=1)
        ]

    return _make


@pytest.fixture
def repo(tmp_path):
    """Empty SQLite store with the schema applied."""
    r = SQLiteRepository(str(tmp_path / "survey.db"))
    r.init_schema()
    return r


@pytest.fixture
def seeded_repo(repo):
    """One survey (current version 2) with questions in both versions."""
    repo.upsert_survey(Survey(survey_id="s1", title="Pesquisa Recife", version=2))
    repo.upsert_question(Question("q1", "s1", "Em quem você votaria?", "text", "espontanea", order_index=1, version=1))
    repo.upsert_question(Question("q2", "s1", "Avaliação do governo", "radio", None, order_index=2,
                                  options=("Bom", "Ruim"), version=1))
    repo.upsert_question(Question("q1v2", "s1", "Em quem você votaria hoje?", "text", "espontanea",
                                  order_index=1, version=2))
    return repo
