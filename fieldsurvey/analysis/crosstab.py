from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Optional, Tuple

import pandas as pd

from fieldsurvey.app.logging import get_logger
from fieldsurvey.db.models import ResponseRecord

from .aggregate import TOTAL_LABEL
from .extract import extract_values

logger = get_logger(__name__)


@dataclass(frozen=True)
class CrossTabMatrix:
    """Row x column co-occurrence counts for two questions.

    Both axes are assumed single-valued: when a response holds several values
    for an axis question only the first one is counted, and
    ``truncated_responses`` says how many responses were affected.
    """

    row_question_id: str
    col_question_id: str
    rows: Tuple[str, ...]
    cols: Tuple[str, ...]
    cells: Mapping[str, Mapping[str, int]]
    truncated_responses: int = 0

    def cell(self, row: str, col: str) -> int:
        return self.cells.get(row, {}).get(col, 0)

    def row_total(self, row: str) -> int:
        return sum(self.cell(row, c) for c in self.cols)

    def col_total(self, col: str) -> int:
        return sum(self.cell(r, col) for r in self.rows)

    @property
    def row_totals(self) -> Dict[str, int]:
        return {r: self.row_total(r) for r in self.rows}

    @property
    def col_totals(self) -> Dict[str, int]:
        return {c: self.col_total(c) for c in self.cols}

    @property
    def grand_total(self) -> int:
        return sum(self.col_totals.values())

    def to_dataframe(self, with_totals: bool = True) -> pd.DataFrame:
        """Counts as a DataFrame, rows and columns in label order.

        With totals, both axes get an outer level: answers sit under ``""``
        and the totals under ``TOTAL_LABEL``, so an answer that happens to
        read "Total Geral" keeps its own row and column.
        """
        body = pd.DataFrame(
            [[self.cell(r, c) for c in self.cols] for r in self.rows],
            index=list(self.rows),
            columns=list(self.cols),
        )
        if not with_totals:
            return body

        row_totals = pd.DataFrame({"": [self.row_total(r) for r in self.rows]}, index=body.index)
        wide = pd.concat([body, row_totals], axis=1, keys=["", TOTAL_LABEL])
        bottom = pd.DataFrame(
            [[self.col_total(c) for c in self.cols] + [self.grand_total]],
            index=[""],
            columns=wide.columns,
        )
        return pd.concat([wide, bottom], keys=["", TOTAL_LABEL])


def cross_tabulate(
    row_question_id: str,
    col_question_id: str,
    responses: Iterable[ResponseRecord],
) -> Optional[CrossTabMatrix]:
    """Count (row value, column value) pairs across responses.

    Responses missing either answer are skipped. Returns ``None`` when no
    response contributes a pair, which callers render as "no data" rather
    than as an all-zero table.
    """
    cells: Dict[str, Dict[str, int]] = {}
    row_labels = set()
    col_labels = set()
    truncated = 0

    for resp in responses:
        row_values = extract_values(resp.answers.get(row_question_id))
        col_values = extract_values(resp.answers.get(col_question_id))
        if not row_values or not col_values:
            continue
        if len(row_values) > 1 or len(col_values) > 1:
            truncated += 1

        rv, cv = row_values[0], col_values[0]
        row_labels.add(rv)
        col_labels.add(cv)
        row = cells.setdefault(rv, {})
        row[cv] = row.get(cv, 0) + 1

    if not row_labels:
        return None

    if truncated:
        logger.warning(
            "Cross-tab axes hold multi-valued answers; only the first value was counted",
            extra={
                "row_question_id": row_question_id,
                "col_question_id": col_question_id,
                "truncated_responses": truncated,
            },
        )

    return CrossTabMatrix(
        row_question_id=row_question_id,
        col_question_id=col_question_id,
        rows=tuple(sorted(row_labels)),
        cols=tuple(sorted(col_labels)),
        cells=cells,
        truncated_responses=truncated,
    )
