from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Sequence, Tuple

import pandas as pd

from fieldsurvey.db.models import Question, ResponseRecord

from .extract import extract_values

TOTAL_LABEL = "Total Geral"
RANK_LABEL = "#"


def percentage(count: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return count / total * 100


def format_percentage(count: int, total: int) -> str:
    return f"{percentage(count, total):.1f}%"


@dataclass(frozen=True)
class FrequencyTable:
    """Distribution of one question's normalized answers.

    ``entries`` is sorted by descending count; equal counts keep the order in
    which the categories were first seen. ``total_answered`` counts responses,
    not values: a multi-choice answer with two options adds one response and
    two category hits.
    """

    question_id: str
    entries: Tuple[Tuple[str, int], ...]
    total_answered: int

    @property
    def counts(self) -> Dict[str, int]:
        return dict(self.entries)

    @property
    def is_empty(self) -> bool:
        return not self.entries

    def percentage(self, value: str) -> float:
        return percentage(self.counts.get(value, 0), self.total_answered)

    def rows(self) -> List[Dict[str, object]]:
        return [
            {"value": value, "count": count, "percentage": format_percentage(count, self.total_answered)}
            for value, count in self.entries
        ]

    def to_dataframe(self, with_total: bool = True) -> pd.DataFrame:
        # Indexed by rank; the total row is keyed TOTAL_LABEL with a blank answer,
        # so it never reads as an answer spelled the same way.
        df = pd.DataFrame(
            [(value, count, format_percentage(count, self.total_answered)) for value, count in self.entries],
            columns=["Resposta", "Contagem", "Porcentagem"],
            index=pd.Index([str(i) for i in range(1, len(self.entries) + 1)], name=RANK_LABEL),
        )
        # The total row only makes sense once someone answered.
        if with_total and self.total_answered > 0:
            total = pd.DataFrame(
                [["", self.total_answered, "100.0%"]],
                columns=df.columns,
                index=pd.Index([TOTAL_LABEL], name=RANK_LABEL),
            )
            df = pd.concat([df, total])
        return df


def aggregate_question(question_id: str, responses: Iterable[ResponseRecord]) -> FrequencyTable:
    counts: Dict[str, int] = {}
    total_answered = 0

    for resp in responses:
        values = extract_values(resp.answers.get(question_id))
        if not values:
            continue
        total_answered += 1
        for v in values:
            counts[v] = counts.get(v, 0) + 1

    # sorted() is stable, so ties keep first-seen order.
    entries = tuple(sorted(counts.items(), key=lambda kv: -kv[1]))
    return FrequencyTable(question_id=question_id, entries=entries, total_answered=total_answered)


@dataclass(frozen=True)
class QuestionAnalysis:
    question: Question
    index: int  # 1-based position in the displayed question list
    table: FrequencyTable

    @property
    def mergeable(self) -> bool:
        # Merging needs an open-ended question with at least two variants to unify.
        return self.question.is_open_ended and len(self.table.entries) > 1


def analyze_questions(questions: Sequence[Question], responses: Sequence[ResponseRecord]) -> List[QuestionAnalysis]:
    if not questions or not responses:
        return []
    return [
        QuestionAnalysis(question=q, index=idx, table=aggregate_question(q.question_id, responses))
        for idx, q in enumerate(questions, start=1)
    ]
