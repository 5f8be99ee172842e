# fieldsurvey/reports/export.py
from __future__ import annotations

import csv
import re
from datetime import date
from pathlib import Path
from typing import Optional, Sequence

import pandas as pd

from fieldsurvey.analysis.aggregate import QuestionAnalysis
from fieldsurvey.analysis.crosstab import CrossTabMatrix
from fieldsurvey.analysis.extract import extract_values
from fieldsurvey.app.errors import ExportError
from fieldsurvey.app.logging import get_logger
from fieldsurvey.db.models import Question, ResponseRecord
from fieldsurvey.db.repository import UNKNOWN_INTERVIEWER

logger = get_logger(__name__)

CSV_SEPARATOR = ";"
UTF8_BOM = "\ufeff"
_MAX_SHEET_NAME = 31
_INVALID_SHEET_CHARS = re.compile(r"[\[\]:*?/\\]")


def export_filename(prefix: str, title: str, day: Optional[date] = None, ext: str = "csv") -> str:
    day = day or date.today()
    slug = re.sub(r"\s+", "_", title)
    return f"{prefix}_{slug}_{day.isoformat()}.{ext}"


def responses_to_dataframe(questions: Sequence[Question], responses: Sequence[ResponseRecord]) -> pd.DataFrame:
    # One row per response, one column per question; multi-valued answers joined with ", ".
    columns = ["#", "Entrevistador", "Data"] + [f"P{i}: {q.text}" for i, q in enumerate(questions, start=1)]
    rows = []
    for idx, r in enumerate(responses, start=1):
        when = pd.to_datetime(r.created_at, errors="coerce", utc=True) if r.created_at else pd.NaT
        rows.append(
            [str(idx), r.interviewer_name or UNKNOWN_INTERVIEWER, "" if pd.isna(when) else when.strftime("%d/%m/%Y %H:%M")]
            + [", ".join(extract_values(r.answers.get(q.question_id))) for q in questions]
        )
    return pd.DataFrame(rows, columns=columns)


def responses_to_csv(questions: Sequence[Question], responses: Sequence[ResponseRecord]) -> str:
    # Spreadsheet-friendly: ';' separator, every field quoted, BOM so Excel reads UTF-8.
    df = responses_to_dataframe(questions, responses)
    body = df.to_csv(sep=CSV_SEPARATOR, index=False, quoting=csv.QUOTE_ALL, lineterminator="\n")
    return UTF8_BOM + body.rstrip("\n")


def _sheet_name(label: str, used: set) -> str:
    base = _INVALID_SHEET_CHARS.sub("", label)[:_MAX_SHEET_NAME] or "Sheet"
    name, n = base, 2
    while name in used:
        suffix = f" ({n})"
        name = base[: _MAX_SHEET_NAME - len(suffix)] + suffix
        n += 1
    used.add(name)
    return name


def export_workbook(
    path: str,
    analyses: Sequence[QuestionAnalysis],
    cross_tab: Optional[CrossTabMatrix] = None,
) -> Path:
    """Write one sheet per question frequency table, plus the cross-tab if given."""
    if not analyses and cross_tab is None:
        raise ExportError("Nothing to export: no question analysis and no cross-tab.")

    out = Path(path)
    used: set = set()
    try:
        out.parent.mkdir(parents=True, exist_ok=True)
        with pd.ExcelWriter(out, engine="openpyxl") as writer:
            for a in analyses:
                a.table.to_dataframe().to_excel(writer, sheet_name=_sheet_name(f"P{a.index}", used))
            if cross_tab is not None:
                cross_tab.to_dataframe().to_excel(writer, sheet_name=_sheet_name("Cruzamento", used))
    except (OSError, ValueError) as e:
        raise ExportError(f"Failed to write workbook: {e}") from e

    logger.info("Workbook exported", extra={"path": str(out), "sheets": len(used)})
    return out
