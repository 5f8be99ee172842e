from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from fieldsurvey.db.models import DEFAULT_VERSION, Question, ResponseRecord, Survey


def response_version(record: ResponseRecord) -> int:
    return record.survey_version or DEFAULT_VERSION


def available_versions(responses: Sequence[ResponseRecord]) -> List[int]:
    versions = sorted({response_version(r) for r in responses})
    return versions or [DEFAULT_VERSION]


def version_counts(responses: Sequence[ResponseRecord]) -> Dict[int, int]:
    counts: Dict[int, int] = {}
    for r in responses:
        v = response_version(r)
        counts[v] = counts.get(v, 0) + 1
    return dict(sorted(counts.items()))


def filter_responses(responses: Sequence[ResponseRecord], version: Optional[int]) -> List[ResponseRecord]:
    # version=None means every version.
    if version is None:
        return list(responses)
    return [r for r in responses if response_version(r) == version]


def questions_for_version(
    survey: Survey,
    questions: Sequence[Question],
    version: Optional[int],
) -> List[Question]:
    """Question list to analyze for one schema version.

    With ``version=None`` (all responses) the survey's current version is
    used. If no question carries the requested version, the whole question
    list is returned so older data is still readable.
    """
    target = version if version is not None else (survey.version or DEFAULT_VERSION)
    ordered = sorted(questions, key=lambda q: q.order_index)
    matching = [q for q in ordered if (q.version or DEFAULT_VERSION) == target]
    return matching or ordered
