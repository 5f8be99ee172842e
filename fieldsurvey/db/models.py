# models.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Literal, Optional, Tuple


QuestionType = Literal["text", "radio", "checkbox", "select"]
PromptType = Literal["espontanea", "estimulada", "mista"]

DEFAULT_PROMPT_TYPE: PromptType = "estimulada"
DEFAULT_VERSION = 1

# Keys of the structured choice answer as stored in the respostas JSON.
CHOICE_KEY = "opcao"
OTHER_KEY = "outro"


@dataclass(frozen=True)
class Survey:
    survey_id: str
    title: str
    version: int = DEFAULT_VERSION
    description: Optional[str] = None
    active: bool = True
    created_at: Optional[str] = None


@dataclass(frozen=True)
class Question:
    question_id: str
    survey_id: str
    text: str
    type: QuestionType
    prompt_type: Optional[PromptType] = None
    order_index: int = 0
    options: Optional[Tuple[str, ...]] = None
    version: int = DEFAULT_VERSION
    allows_other: bool = False
    required: bool = False

    @property
    def effective_prompt_type(self) -> str:
        return self.prompt_type or DEFAULT_PROMPT_TYPE

    @property
    def is_open_ended(self) -> bool:
        # Unprompted or free-text questions collect spelling variants worth merging.
        return self.effective_prompt_type == "espontanea" or self.type == "text"


# -------------------------
# Answer values (tagged union over the three stored shapes)
# -------------------------
class AnswerValue:
    """Base class of the answer shapes found in a response's ``respostas`` mapping."""

    def to_raw(self) -> Any:
        raise NotImplementedError


@dataclass(frozen=True)
class PlainText(AnswerValue):
    text: str

    def to_raw(self) -> Any:
        return self.text


@dataclass(frozen=True)
class MultiChoice(AnswerValue):
    # Elements are kept as stored; non-string elements survive a rewrite untouched.
    items: Tuple[Any, ...]

    def to_raw(self) -> Any:
        return list(self.items)


@dataclass(frozen=True)
class ChoiceWithOther(AnswerValue):
    """Choice answer (``opcao``: str or list) with an optional free-text ``outro``.

    Keys other than ``opcao``/``outro`` are kept in ``extra``, and ``keys``
    remembers which keys the stored object had (in order), so a rewrite
    writes back the same keys, explicit nulls included, and only changes
    values.
    """

    choice: Any = None
    other: Any = None
    extra: Dict[str, Any] = field(default_factory=dict)
    keys: Tuple[str, ...] = field(default=(), compare=False)

    def to_raw(self) -> Any:
        own = {
            CHOICE_KEY: list(self.choice) if isinstance(self.choice, tuple) else self.choice,
            OTHER_KEY: self.other,
        }
        raw: Dict[str, Any] = {k: own[k] if k in own else self.extra.get(k) for k in self.keys}
        for key, value in own.items():
            if key not in raw and value is not None:
                raw[key] = value
        for key, value in self.extra.items():
            raw.setdefault(key, value)
        return raw


def parse_answer(raw: Any) -> Optional[AnswerValue]:
    # JSON string -> PlainText, array -> MultiChoice, object -> ChoiceWithOther.
    # Anything else (null, numbers, booleans) is "no answer".
    if isinstance(raw, AnswerValue):
        return raw
    if isinstance(raw, str):
        return PlainText(raw)
    if isinstance(raw, (list, tuple)):
        return MultiChoice(tuple(raw))
    if isinstance(raw, dict):
        choice = raw.get(CHOICE_KEY)
        if isinstance(choice, list):
            choice = tuple(choice)
        extra = {k: v for k, v in raw.items() if k not in (CHOICE_KEY, OTHER_KEY)}
        return ChoiceWithOther(choice=choice, other=raw.get(OTHER_KEY), extra=extra, keys=tuple(raw))
    return None


@dataclass(frozen=True)
class ResponseRecord:
    """One collected response.

    ``answers`` is always a plain dict owned by the record: a merge updates
    it in place after each successful write, so re-running the same merge
    over the same records finds nothing left to rewrite. Read-only mappings
    are copied on construction.
    """

    response_id: str
    survey_id: str
    answers: Dict[str, Any] = field(default_factory=dict)
    survey_version: int = DEFAULT_VERSION
    created_at: Optional[str] = None
    interviewer_id: Optional[str] = None
    interviewer_name: Optional[str] = None

    def __post_init__(self) -> None:
        if not isinstance(self.answers, dict):
            object.__setattr__(self, "answers", dict(self.answers))

    def answer(self, question_id: str) -> Optional[AnswerValue]:
        return parse_answer(self.answers.get(question_id))
