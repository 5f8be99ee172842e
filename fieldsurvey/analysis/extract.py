from __future__ import annotations

from typing import Any, Iterable, List, Optional

from fieldsurvey.db.models import ChoiceWithOther, MultiChoice, PlainText, parse_answer

from .normalize import normalize_value


def _normalized_strings(items: Iterable[Any]) -> List[str]:
    out: List[str] = []
    for item in items:
        if not isinstance(item, str):
            continue
        n = normalize_value(item)
        if n:
            out.append(n)
    return out


def extract_values(value: Any) -> List[str]:
    """Flatten one stored answer into its normalized, non-empty strings.

    Accepts an AnswerValue or the raw JSON value from ``respostas``. Order is
    preserved and duplicates are kept. Unknown shapes yield ``[]``; this never
    raises.
    """
    answer = parse_answer(value)

    if isinstance(answer, PlainText):
        n = normalize_value(answer.text)
        return [n] if n else []

    if isinstance(answer, MultiChoice):
        return _normalized_strings(answer.items)

    if isinstance(answer, ChoiceWithOther):
        results: List[str] = []
        if isinstance(answer.choice, str):
            n = normalize_value(answer.choice)
            if n:
                results.append(n)
        elif isinstance(answer.choice, tuple):
            results.extend(_normalized_strings(answer.choice))
        if isinstance(answer.other, str) and answer.other.strip():
            results.append(normalize_value(answer.other))
        return results

    return []


def extract_single_value(value: Any) -> Optional[str]:
    # Callers treating a question as single-valued only see the first value.
    values = extract_values(value)
    return values[0] if values else None
