from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from typing import Any, Dict, FrozenSet, Iterable, List, Sequence, Tuple

from fieldsurvey.app.errors import MergePersistenceError, MergeUsageError
from fieldsurvey.app.logging import get_logger, run_context
from fieldsurvey.db.models import ChoiceWithOther, MultiChoice, PlainText, ResponseRecord, parse_answer

from .extract import extract_values
from .normalize import normalize_value

logger = get_logger(__name__)

MIN_SOURCE_VALUES = 2


@dataclass(frozen=True)
class MergeRequest:
    question_id: str
    old_values: FrozenSet[str]
    new_value: str

    @staticmethod
    def build(question_id: str, old_values: Iterable[str], new_value: str) -> "MergeRequest":
        # Usage checks run before any response is touched.
        if not question_id:
            raise MergeUsageError("A question must be selected to merge answers.")

        normalized = frozenset(
            n for n in (normalize_value(v) for v in old_values if isinstance(v, str)) if n
        )
        if len(normalized) < MIN_SOURCE_VALUES:
            raise MergeUsageError(f"Select at least {MIN_SOURCE_VALUES} distinct values to merge.")

        target = new_value.strip() if isinstance(new_value, str) else ""
        if not target:
            raise MergeUsageError("The merged value must not be empty.")

        return MergeRequest(question_id=question_id, old_values=normalized, new_value=target)


@dataclass(frozen=True)
class MergeResult:
    question_id: str
    updated: int
    affected: int
    response_ids: Tuple[str, ...]


def find_affected(question_id: str, old_values: FrozenSet[str], responses: Iterable[ResponseRecord]) -> List[ResponseRecord]:
    # Input order is kept; it is the write order.
    return [
        r for r in responses
        if any(v in old_values for v in extract_values(r.answers.get(question_id)))
    ]


def _swap(item: Any, old_values: FrozenSet[str], new_value: str) -> Any:
    if isinstance(item, str) and normalize_value(item) in old_values:
        return new_value
    return item


def rewrite_answer(raw: Any, old_values: FrozenSet[str], new_value: str) -> Any:
    """Replace matching values inside one stored answer, keeping its shape.

    A plain string is replaced whole; list elements are replaced one by one
    (duplicates may appear and are kept); for a choice-with-other object the
    choice and the ``outro`` text are checked independently. Unknown shapes
    come back unchanged.
    """
    answer = parse_answer(raw)

    if isinstance(answer, PlainText):
        return _swap(answer.text, old_values, new_value)

    if isinstance(answer, MultiChoice):
        return MultiChoice(tuple(_swap(i, old_values, new_value) for i in answer.items)).to_raw()

    if isinstance(answer, ChoiceWithOther):
        choice = answer.choice
        if isinstance(choice, str):
            choice = _swap(choice, old_values, new_value)
        elif isinstance(choice, tuple):
            choice = tuple(_swap(i, old_values, new_value) for i in choice)
        return replace(answer, choice=choice, other=_swap(answer.other, old_values, new_value)).to_raw()

    return raw


def _apply_locally(record: ResponseRecord, answers: Dict[str, Any]) -> None:
    # Keep the caller's records in step with the store so a repeated merge finds nothing.
    record.answers.update(answers)


class AnswerMerger:
    """Unifies free-text answer variants of one question into a canonical value.

    The store must provide ``update_response_answers(response_id, answers)``;
    with ``atomic=True`` and a store exposing
    ``update_responses_answers_batch(updates)``, all rewrites commit in one
    transaction instead.

    Default writes are independent and fail-fast: the first failing write
    stops the merge, earlier writes stay applied, and the raised
    MergePersistenceError reports how many went through. Running the same
    merge again only touches responses that still hold an old value, so a
    partial merge is finished by re-running it. There is no version check on
    writes: a response submitted while a merge runs is missed until the next
    run, and two merges over the same responses must not run concurrently.
    """

    def __init__(self, store: Any, atomic: bool = False):
        self.store = store
        self.atomic = atomic

    def _rewrite(self, request: MergeRequest, affected: Sequence[ResponseRecord]) -> List[Tuple[ResponseRecord, Dict[str, Any]]]:
        # Rewrites go to copies; records change only once their write succeeded.
        planned: List[Tuple[ResponseRecord, Dict[str, Any]]] = []
        for record in affected:
            current = record.answers.get(request.question_id)
            rewritten = rewrite_answer(current, request.old_values, request.new_value)
            if rewritten == current:
                continue
            answers = dict(record.answers)
            answers[request.question_id] = rewritten
            planned.append((record, answers))
        return planned

    def merge(
        self,
        question_id: str,
        old_values: Iterable[str],
        new_value: str,
        responses: Sequence[ResponseRecord],
    ) -> MergeResult:
        request = MergeRequest.build(question_id, old_values, new_value)

        with run_context("merge"):
            affected = find_affected(request.question_id, request.old_values, responses)
            planned = self._rewrite(request, affected)
            logger.info(
                "Merging answers",
                extra={
                    "question_id": request.question_id,
                    "old_values": sorted(request.old_values),
                    "new_value": request.new_value,
                    "affected": len(affected),
                    "to_write": len(planned),
                },
            )

            if self.atomic and hasattr(self.store, "update_responses_answers_batch"):
                written = self._write_batch(planned)
            else:
                written = self._write_each(planned)

            logger.info("Merge finished", extra={"question_id": request.question_id, "updated": len(written)})
            return MergeResult(
                question_id=request.question_id,
                updated=len(written),
                affected=len(affected),
                response_ids=tuple(written),
            )

    async def merge_async(
        self,
        question_id: str,
        old_values: Iterable[str],
        new_value: str,
        responses: Sequence[ResponseRecord],
    ) -> MergeResult:
        # Store calls block; keep them off the event loop.
        return await asyncio.to_thread(self.merge, question_id, list(old_values), new_value, responses)

    def _write_each(self, planned: List[Tuple[ResponseRecord, Dict[str, Any]]]) -> List[str]:
        written: List[str] = []
        for record, answers in planned:
            try:
                self.store.update_response_answers(record.response_id, answers)
            except Exception as e:
                logger.error(
                    "Merge aborted by a failed write; earlier writes stay applied",
                    extra={"response_id": record.response_id, "updated": len(written)},
                )
                raise MergePersistenceError(str(e), updated=len(written), response_id=record.response_id) from e
            _apply_locally(record, answers)
            written.append(record.response_id)
        return written

    def _write_batch(self, planned: List[Tuple[ResponseRecord, Dict[str, Any]]]) -> List[str]:
        if not planned:
            return []
        try:
            self.store.update_responses_answers_batch([(r.response_id, a) for r, a in planned])
        except Exception as e:
            logger.error("Atomic merge rolled back", extra={"to_write": len(planned)})
            raise MergePersistenceError(str(e), updated=0) from e
        for record, answers in planned:
            _apply_locally(record, answers)
        return [r.response_id for r, _ in planned]
