from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from fieldsurvey.db.models import Question, ResponseRecord, Survey
from fieldsurvey.db.repository import SQLiteRepository

from .aggregate import FrequencyTable, QuestionAnalysis, aggregate_question, analyze_questions
from .crosstab import CrossTabMatrix, cross_tabulate
from .versions import available_versions, filter_responses, questions_for_version, version_counts


@dataclass(frozen=True)
class VersionedResults:
    # Questions and responses of one schema version (version=None: all responses).
    version: Optional[int]
    questions: Tuple[Question, ...]
    responses: Tuple[ResponseRecord, ...]

    @property
    def total_responses(self) -> int:
        return len(self.responses)

    def analysis(self) -> List[QuestionAnalysis]:
        return analyze_questions(self.questions, self.responses)

    def frequency(self, question_id: str) -> FrequencyTable:
        return aggregate_question(question_id, self.responses)

    def cross_tab(self, row_question_id: str, col_question_id: str) -> Optional[CrossTabMatrix]:
        return cross_tabulate(row_question_id, col_question_id, self.responses)

    def question(self, question_id: str) -> Optional[Question]:
        for q in self.questions:
            if q.question_id == question_id:
                return q
        return None


@dataclass(frozen=True)
class ResultsSnapshot:
    """Survey, questions and responses fetched once for one analysis render.

    Aggregation and cross-tab only read it. A merge writes through the store
    and updates the answers of the records it rewrote, so the snapshot
    matches the store for the merged question; other sessions' writes need a
    reload.
    """

    survey: Survey
    questions: Tuple[Question, ...]
    responses: Tuple[ResponseRecord, ...]

    @staticmethod
    def load(repo: SQLiteRepository, survey_id: str) -> "ResultsSnapshot":
        return ResultsSnapshot(
            survey=repo.fetch_survey(survey_id),
            questions=tuple(repo.fetch_questions(survey_id)),
            responses=tuple(repo.fetch_responses(survey_id)),
        )

    @property
    def versions(self) -> List[int]:
        return available_versions(self.responses)

    @property
    def version_counts(self) -> Dict[int, int]:
        return version_counts(self.responses)

    def for_version(self, version: Optional[int] = None) -> VersionedResults:
        return VersionedResults(
            version=version,
            questions=tuple(questions_for_version(self.survey, self.questions, version)),
            responses=tuple(filter_responses(self.responses, version)),
        )
