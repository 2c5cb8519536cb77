"""
Store-boundary normalisation for question payloads.

Question records arrive in several shapes (choices vs options, correct_answer vs
correctAnswer, "Multiple Choice" vs "multiple-choice" ...). Everything entering
or leaving the store goes through this module and comes out as one canonical
tagged variant per question type.
"""

from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator, model_validator


# ─── Alias tables ─────────────────────────────────────────────────────────────

FIELD_ALIASES: Dict[str, str] = {
    "question": "question_text",
    "text": "question_text",
    "options": "choices",
    "correctAnswer": "correct_answer",
    "answer": "correct_answer",
    "topicName": "topic",
    "type": "question_type",
    "questionType": "question_type",
    "bloomLevel": "bloom_level",
    "knowledgeDimension": "knowledge_dimension",
}

QUESTION_TYPE_ALIASES: Dict[str, str] = {
    "multiple choice": "multiple_choice",
    "multiple-choice": "multiple_choice",
    "multiple_choice": "multiple_choice",
    "mcq": "multiple_choice",
    "true or false": "true_false",
    "true-false": "true_false",
    "true_false": "true_false",
    "truefalse": "true_false",
    "tf": "true_false",
    "essay": "essay",
    "short answer": "essay",
    "short-answer": "essay",
    "descriptive": "essay",
    "fill in the blank": "fill_blank",
    "fill-blank": "fill_blank",
    "fill_blank": "fill_blank",
    "fill-in-the-blank": "fill_blank",
    "matching": "matching",
    "matching type": "matching",
}

# Bloom string normalisation (authors and LLMs use variations)
BLOOM_ALIASES: Dict[str, str] = {
    "remember": "remember",
    "remembering": "remember",
    "recall": "remember",
    "knowledge": "remember",
    "understand": "understand",
    "understanding": "understand",
    "comprehension": "understand",
    "apply": "apply",
    "applying": "apply",
    "application": "apply",
    "analyze": "analyze",
    "analyse": "analyze",
    "analyzing": "analyze",
    "analysis": "analyze",
    "evaluate": "evaluate",
    "evaluating": "evaluate",
    "evaluation": "evaluate",
    "create": "create",
    "creating": "create",
    "synthesis": "create",
}

DIFFICULTY_ALIASES: Dict[str, str] = {
    "easy": "easy",
    "e": "easy",
    "average": "average",
    "medium": "average",
    "moderate": "average",
    "m": "average",
    "difficult": "difficult",
    "hard": "difficult",
    "h": "difficult",
}

_TRUE_STRINGS = {"true", "t", "yes", "1"}
_FALSE_STRINGS = {"false", "f", "no", "0"}


def _label(index: int) -> str:
    return chr(ord("A") + index)


def normalise_question_type(raw: Optional[str]) -> Optional[str]:
    if raw is None:
        return None
    return QUESTION_TYPE_ALIASES.get(str(raw).strip().lower(), str(raw).strip().lower())


def normalise_bloom(raw: Optional[str]) -> Optional[str]:
    if not raw:
        return None
    return BLOOM_ALIASES.get(str(raw).strip().lower())


def normalise_difficulty(raw: Optional[str]) -> Optional[str]:
    if not raw:
        return None
    return DIFFICULTY_ALIASES.get(str(raw).strip().lower())


def _normalise_choices(choices: Any) -> Optional[Dict[str, str]]:
    """List → {"A": ..., "B": ...}; dict passes through with string keys."""
    if choices is None:
        return None
    if isinstance(choices, (list, tuple)):
        return {_label(i): str(c) for i, c in enumerate(choices)}
    if isinstance(choices, dict):
        return {str(k): str(v) for k, v in choices.items()}
    raise ValueError(f"choices must be a list or mapping, got {type(choices).__name__}")


def _normalise_mcq_answer(answer: Any, choices: Dict[str, str]) -> Any:
    """Accept a label, a 0-based index, or the option text itself; return the label."""
    if isinstance(answer, bool):
        return answer
    if isinstance(answer, int) and 0 <= answer < len(choices):
        return list(choices.keys())[answer]
    if isinstance(answer, str):
        stripped = answer.strip()
        if stripped.upper() in choices:
            return stripped.upper()
        if stripped in choices:
            return stripped
        for label, text in choices.items():
            if text.strip().lower() == stripped.lower():
                return label
    return answer


def _normalise_bool(answer: Any) -> Any:
    if isinstance(answer, bool):
        return answer
    if isinstance(answer, str):
        lowered = answer.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    return answer


def normalise_payload(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Rename aliased keys and canonicalise enums/choices. Unknown keys are kept."""
    data: Dict[str, Any] = {}
    for key, value in raw.items():
        canonical = FIELD_ALIASES.get(key, key)
        # Canonical key wins when both spellings are present
        if canonical in data and key != canonical:
            continue
        data[canonical] = value

    qtype = normalise_question_type(data.get("question_type")) or "multiple_choice"
    data["question_type"] = qtype

    if "bloom_level" in data and data["bloom_level"] is not None:
        data["bloom_level"] = normalise_bloom(data["bloom_level"]) or data["bloom_level"]
    if "difficulty" in data and data["difficulty"] is not None:
        data["difficulty"] = normalise_difficulty(data["difficulty"]) or data["difficulty"]

    if data.get("choices") is not None:
        data["choices"] = _normalise_choices(data["choices"])

    if qtype == "multiple_choice" and data.get("choices"):
        data["correct_answer"] = _normalise_mcq_answer(data.get("correct_answer"), data["choices"])
    elif qtype == "true_false":
        data["correct_answer"] = _normalise_bool(data.get("correct_answer"))
    return data


# ─── Canonical tagged variants ────────────────────────────────────────────────

class MultipleChoiceContent(BaseModel):
    question_type: Literal["multiple_choice"] = "multiple_choice"
    question_text: str
    choices: Dict[str, str]
    correct_answer: str

    @model_validator(mode="after")
    def _answer_is_a_choice(self):
        if len(self.choices) < 2:
            raise ValueError("multiple_choice needs at least two choices")
        if self.correct_answer not in self.choices:
            raise ValueError(f"correct_answer '{self.correct_answer}' is not one of {sorted(self.choices)}")
        return self


class TrueFalseContent(BaseModel):
    question_type: Literal["true_false"] = "true_false"
    question_text: str
    correct_answer: bool


class EssayContent(BaseModel):
    question_type: Literal["essay"] = "essay"
    question_text: str
    correct_answer: Optional[str] = None   # model answer / rubric, may be authored later


class FillBlankContent(BaseModel):
    question_type: Literal["fill_blank"] = "fill_blank"
    question_text: str
    correct_answer: str


class MatchingContent(BaseModel):
    """choices maps each premise to its correct response."""
    question_type: Literal["matching"] = "matching"
    question_text: str
    choices: Dict[str, str]

    @field_validator("choices")
    @classmethod
    def _at_least_two_pairs(cls, v):
        if len(v) < 2:
            raise ValueError("matching needs at least two pairs")
        return v

    @property
    def correct_answer(self) -> Dict[str, str]:
        return dict(self.choices)


QuestionContent = Annotated[
    Union[MultipleChoiceContent, TrueFalseContent, EssayContent, FillBlankContent, MatchingContent],
    Field(discriminator="question_type"),
]

content_adapter: TypeAdapter = TypeAdapter(QuestionContent)

CONTENT_FIELDS = ("question_type", "question_text", "choices", "correct_answer")


def parse_content(data: Dict[str, Any]):
    """Validate an already-normalised payload into its canonical variant."""
    return content_adapter.validate_python({k: data.get(k) for k in CONTENT_FIELDS if data.get(k) is not None})


def content_to_columns(content) -> Dict[str, Any]:
    """Canonical variant → Question column values."""
    if isinstance(content, TrueFalseContent):
        answer = "true" if content.correct_answer else "false"
    elif isinstance(content, MatchingContent):
        answer = None
    else:
        answer = content.correct_answer
    return {
        "question_type": content.question_type,
        "question_text": content.question_text,
        "choices": getattr(content, "choices", None),
        "correct_answer": answer,
    }


def content_from_row(question) -> Any:
    """Question row → canonical variant (the read side of the boundary)."""
    data = normalise_payload({
        "question_type": question.question_type,
        "question_text": question.question_text,
        "choices": question.choices,
        "correct_answer": question.correct_answer,
    })
    return parse_content(data)


def answer_for_key(content) -> Any:
    """JSON-friendly correct answer for an answer key (matching → premise→response map)."""
    return content.correct_answer
