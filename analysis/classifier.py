"""
Question Classifier

Rule-based Bloom / knowledge-dimension / difficulty classification with
quality and readability checks:
  1. Bloom level      — action-verb evidence, leading imperative weighted double
  2. Confidence       — how decisively the evidence points at one level
  3. Difficulty       — collapsed from the Bloom level
  4. Knowledge dim.   — cue phrases, falling back to the Bloom level
  5. Readability      — Flesch–Kincaid grade estimate
  6. Quality          — length, punctuation, vagueness and option checks
  7. (optional) LLM   — GPT verifier may override the Bloom level

classify() is pure; classify_question() persists onto the Question row and
writes QualityMetric rows in one transaction.
"""

import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from openai import OpenAIError
from sqlalchemy.orm import Session

from config import (
    CLASSIFIER_CONFIDENCE_THRESHOLD,
    CLASSIFIER_QUALITY_THRESHOLD,
    CLASSIFIER_USE_LLM,
    READABILITY_GRADE_LIMIT,
    SIMILARITY_THRESHOLD,
)
from database import crud
from database.models import BLOOM_ORDER, BLOOM_TO_DIFFICULTY, ValidationStatus
from database.normalize import normalise_bloom
from database.schemas import Classification
from analysis.quality_metrics import record_metric
from analysis.similarity import find_similar_questions
from generation.gpt_client import ai_configured, call_gpt, extract_json_object
from services.errors import ClassificationFailed, ServiceError

log = logging.getLogger(__name__)

CLASSIFIER_METHOD = "ml_classifier_v1"
QUALITY_METHOD = "quality_assessor_v1"

# ─── Bloom verb heuristics ────────────────────────────────────────────────────

BLOOM_VERBS: Dict[str, List[str]] = {
    "remember": ["define", "list", "name", "identify", "recall", "state", "recognize", "label", "memorize", "repeat"],
    "understand": ["explain", "describe", "summarize", "interpret", "classify", "compare", "discuss", "paraphrase", "infer", "restate"],
    "apply": ["apply", "use", "demonstrate", "implement", "solve", "illustrate", "calculate", "compute", "execute", "operate"],
    "analyze": ["analyze", "analyse", "differentiate", "examine", "contrast", "distinguish", "investigate", "organize", "categorize", "deconstruct"],
    "evaluate": ["evaluate", "assess", "justify", "critique", "argue", "support", "judge", "defend", "appraise", "recommend"],
    "create": ["design", "create", "develop", "construct", "propose", "formulate", "compose", "invent", "devise", "generate"],
}

BLOOM_PHRASES: Dict[str, List[str]] = {
    "remember": ["what is the", "which of the following is", "who was", "when did"],
    "understand": ["in your own words", "what is meant by", "why does"],
    "apply": ["how would you use", "what would happen if"],
    "analyze": ["what is the relationship between", "what are the differences"],
    "evaluate": ["do you agree", "which is better", "what is the most"],
    "create": ["what would you design", "how would you improve", "come up with"],
}

KNOWLEDGE_CUES: Dict[str, List[str]] = {
    "metacognitive": ["reflect", "your own learning", "your strategy", "self-assess", "how did you", "what did you learn", "monitor your"],
    "procedural": ["how to", "steps", "procedure", "calculate", "compute", "solve", "method", "algorithm", "technique", "implement"],
    "conceptual": ["why", "relationship", "principle", "theory", "model", "category", "classify", "compare", "structure", "explain"],
    "factual": ["define", "what is", "who", "when", "term", "name", "list", "date", "fact"],
}

# Tie-break order when cue counts are equal
_KNOWLEDGE_PRECEDENCE = ["metacognitive", "procedural", "conceptual", "factual"]

_BLOOM_TO_KNOWLEDGE = {
    "remember": "factual",
    "understand": "conceptual",
    "apply": "procedural",
    "analyze": "conceptual",
    "evaluate": "conceptual",
    "create": "procedural",
}

_VAGUE_TERMS = ["etc", "something", "stuff", "things", "somehow", "and so on"]
_NEGATIONS = re.compile(r"\b(not|no|never|none|neither|nor)\b|n't\b")
_WORD = re.compile(r"[a-z][a-z'-]*")


def _inflections(verb: str) -> List[str]:
    forms = {verb, verb + "s", verb + "es", verb + "ed", verb + "ing"}
    if verb.endswith("e"):
        forms |= {verb + "d", verb[:-1] + "ing"}
    if verb.endswith("y"):
        forms |= {verb[:-1] + "ies", verb[:-1] + "ied"}
    return list(forms)


VERB_LOOKUP: Dict[str, str] = {
    form: level
    for level, verbs in BLOOM_VERBS.items()
    for verb in verbs
    for form in _inflections(verb)
}


def _words(text: str) -> List[str]:
    return _WORD.findall((text or "").lower())


def bloom_evidence(text: str) -> Tuple[Dict[str, float], Optional[str]]:
    """Verb/phrase hit weights per Bloom level, plus the level of the leading verb (if any)."""
    words = _words(text)
    scores: Dict[str, float] = {level: 0.0 for level in BLOOM_ORDER}
    leading = VERB_LOOKUP.get(words[0]) if words else None
    for i, word in enumerate(words):
        level = VERB_LOOKUP.get(word)
        if level:
            scores[level] += 2.0 if i == 0 else 1.0
    lowered = " ".join(words)
    for level, phrases in BLOOM_PHRASES.items():
        for phrase in phrases:
            if phrase in lowered:
                scores[level] += 1.0
    return scores, leading


def bloom_rule_guess(text: str) -> Tuple[str, float]:
    """
    Rule-based Bloom level and confidence.
    No evidence → "understand" at 0.4. Otherwise confidence is
    0.5 + 0.45 × (top score / total score), +0.05 when the leading verb agrees,
    capped at 0.95. Equal top scores resolve to the leading verb's level,
    then to the higher level.
    """
    scores, leading = bloom_evidence(text)
    total = sum(scores.values())
    if total == 0:
        return "understand", 0.4

    top_score = max(scores.values())
    tied = [level for level in BLOOM_ORDER if scores[level] == top_score]
    if leading in tied:
        level = leading
    else:
        level = tied[-1]

    confidence = 0.5 + 0.45 * (top_score / total)
    if leading == level:
        confidence += 0.05
    return level, round(min(confidence, 0.95), 2)


def knowledge_dimension_guess(text: str, bloom_level: str) -> str:
    lowered = " ".join(_words(text))
    counts = {}
    for dimension, cues in KNOWLEDGE_CUES.items():
        counts[dimension] = sum(1 for cue in cues if re.search(rf"\b{re.escape(cue)}\b", lowered))
    best = max(counts.values())
    if best == 0:
        return _BLOOM_TO_KNOWLEDGE[bloom_level]
    for dimension in _KNOWLEDGE_PRECEDENCE:
        if counts[dimension] == best:
            return dimension
    return _BLOOM_TO_KNOWLEDGE[bloom_level]


# ─── Readability ──────────────────────────────────────────────────────────────

def _syllables(word: str) -> int:
    word = word.lower().strip("'-")
    if not word:
        return 0
    groups = re.findall(r"[aeiouy]+", word)
    count = len(groups)
    if word.endswith("e") and not word.endswith(("le", "ee")) and count > 1:
        count -= 1
    return max(count, 1)


def readability_grade(text: str) -> float:
    """Flesch–Kincaid grade level, clamped to [0, 20]."""
    words = _words(text)
    if not words:
        return 0.0
    sentences = max(len(re.findall(r"[.!?]+", text or "")), 1)
    syllables = sum(_syllables(w) for w in words)
    grade = 0.39 * (len(words) / sentences) + 11.8 * (syllables / len(words)) - 15.59
    return round(min(max(grade, 0.0), 20.0), 1)


# ─── Quality ──────────────────────────────────────────────────────────────────

def quality_score(text: str, metadata: Optional[Dict[str, Any]] = None) -> float:
    """Start at 1.0 and subtract a fixed penalty per detected problem."""
    metadata = metadata or {}
    stripped = (text or "").strip()
    words = _words(stripped)
    score = 1.0

    if len(words) < 4:
        score -= 0.3
    elif len(words) > 80:
        score -= 0.15

    if not stripped.endswith(("?", ".", ":")) and "___" not in stripped:
        score -= 0.1

    lowered = " ".join(words)
    vague = sum(1 for term in _VAGUE_TERMS if re.search(rf"\b{re.escape(term)}\b", lowered))
    score -= min(vague * 0.1, 0.2)

    if len(_NEGATIONS.findall(stripped.lower())) >= 2:
        score -= 0.1

    if len(stripped) > 10 and stripped.isupper():
        score -= 0.1

    choices = metadata.get("choices")
    if metadata.get("question_type") == "multiple_choice":
        options = list(choices.values()) if isinstance(choices, dict) else list(choices or [])
        if len(options) < 2:
            score -= 0.3
        else:
            normalised = [str(o).strip().lower() for o in options]
            if len(set(normalised)) < len(normalised):
                score -= 0.2
            if any(o in ("all of the above", "none of the above") for o in normalised):
                score -= 0.1

    return round(min(max(score, 0.0), 1.0), 2)


# ─── Classification ───────────────────────────────────────────────────────────

def _build(
    bloom_level: str,
    knowledge_dimension: str,
    quality: float,
    readability: float,
    confidence: float,
    confidence_threshold: float,
    quality_threshold: float,
) -> Classification:
    issues = []
    if quality < quality_threshold:
        issues.append("Question quality below threshold")
    if readability > READABILITY_GRADE_LIMIT:
        issues.append("Question may be too complex for target audience")
    if confidence < confidence_threshold:
        issues.append("Low classification confidence - needs human review")
    return Classification(
        bloom_level=bloom_level,
        knowledge_dimension=knowledge_dimension,
        difficulty=BLOOM_TO_DIFFICULTY[bloom_level],
        quality_score=quality,
        readability_score=readability,
        confidence=confidence,
        needs_review=confidence < confidence_threshold or quality < quality_threshold,
        quality_issues=issues,
    )


def classify(
    text: str,
    metadata: Optional[Dict[str, Any]] = None,
    confidence_threshold: float = CLASSIFIER_CONFIDENCE_THRESHOLD,
    quality_threshold: float = CLASSIFIER_QUALITY_THRESHOLD,
) -> Classification:
    """Heuristic classification of a question text. Pure; never touches the store."""
    bloom_level, confidence = bloom_rule_guess(text)
    return _build(
        bloom_level,
        knowledge_dimension_guess(text, bloom_level),
        quality_score(text, metadata),
        readability_grade(text),
        confidence,
        confidence_threshold,
        quality_threshold,
    )


BLOOM_VERIFIER_PROMPT = """Given this exam question, assign the correct Bloom's taxonomy level
(remember, understand, apply, analyze, evaluate, create). Current guess: {suggested}.
Question: {question_text}
Reply with JSON only: {{"bloom_level": "understand", "justification": "one line"}}"""


async def verify_bloom_with_llm(text: str, suggested: str) -> Tuple[str, str]:
    """LLM verifier for Bloom level. Returns (bloom_final, one_line_justification)."""
    prompt = BLOOM_VERIFIER_PROMPT.format(suggested=suggested, question_text=text[:500])
    raw = await call_gpt(prompt, temperature=0.0, max_tokens=128)
    obj = extract_json_object(raw)
    level = normalise_bloom(obj.get("bloom_level"))
    return level or suggested, obj.get("justification", "")


async def classify_with_verifier(text: str, metadata: Optional[Dict[str, Any]] = None) -> Classification:
    """
    classify(), then let the GPT verifier confirm or override the Bloom level
    when CLASSIFIER_USE_LLM is on. Agreement lifts confidence to at least 0.85;
    an override keeps the LLM's level at 0.65 so a human still looks at it.
    A failed verifier call leaves the heuristic result as is.
    """
    result = classify(text, metadata)
    if not (CLASSIFIER_USE_LLM and ai_configured()):
        return result
    try:
        level, justification = await verify_bloom_with_llm(text, result.bloom_level)
    except (OpenAIError, RuntimeError, ValueError) as e:
        log.warning("Bloom verifier unavailable, keeping heuristic level: %s", e)
        return result

    if level == result.bloom_level:
        confidence = max(result.confidence, 0.85)
    else:
        log.info("Bloom verifier override %s → %s (%s)", result.bloom_level, level, justification)
        confidence = 0.65
    return _build(
        level,
        knowledge_dimension_guess(text, level),
        result.quality_score,
        result.readability_score,
        confidence,
        CLASSIFIER_CONFIDENCE_THRESHOLD,
        CLASSIFIER_QUALITY_THRESHOLD,
    )


async def classify_question(
    db: Session,
    question_id: int,
    check_similarity: bool = True,
    force: bool = False,
) -> Classification:
    """
    Classify a stored question and persist the result onto it, together with
    the ml_confidence and quality_score metrics.

    A question whose classification a reviewer already validated keeps its
    validated Bloom level / knowledge dimension / difficulty unless force=True;
    quality, readability and the metrics are refreshed either way.

    Raises ClassificationFailed on any internal error; the session is rolled
    back so the prior classification stays as it was.
    """
    question = crud.get_question(db, question_id)
    try:
        result = await classify_with_verifier(
            question.question_text,
            {"question_type": question.question_type, "choices": question.choices},
        )

        if check_similarity:
            similar = find_similar_questions(
                db, question.question_text, SIMILARITY_THRESHOLD, exclude_ids=[question.id],
            )
            if similar:
                result.quality_issues.append(f"Found {len(similar[:5])} similar questions")

        keep_validated = question.validation_status == ValidationStatus.VALIDATED.value and not force
        if not keep_validated:
            question.bloom_level = result.bloom_level
            question.knowledge_dimension = result.knowledge_dimension
            question.difficulty = result.difficulty
            question.classification_confidence = result.confidence
            # A rejected question stays flagged until a reviewer validates it
            question.needs_review = (
                result.needs_review or question.validation_status == ValidationStatus.REJECTED.value
            )
        question.quality_score = result.quality_score
        question.readability_score = result.readability_score

        record_metric(
            db, "question", question.id, "classification_quality", "ml_confidence",
            result.confidence, unit="ratio", measurement_method=CLASSIFIER_METHOD,
        )
        record_metric(
            db, "question", question.id, "content_quality", "quality_score",
            result.quality_score, unit="ratio", measurement_method=QUALITY_METHOD,
        )
        db.commit()
    except Exception as e:
        db.rollback()
        log.error("Classification failed for question %s: %s", question_id, e)
        if isinstance(e, ClassificationFailed):
            raise
        raise ClassificationFailed(f"Classification failed for question {question_id}: {e}") from e

    db.refresh(question)
    return result


async def batch_classify(db: Session, question_ids: List[int], check_similarity: bool = False) -> List[dict]:
    """Classify many questions; one failure is reported and does not stop the batch."""
    results = []
    for qid in question_ids:
        try:
            classification = await classify_question(db, qid, check_similarity=check_similarity)
            results.append({"question_id": qid, "ok": True, "classification": classification.model_dump()})
        except ServiceError as e:
            results.append({"question_id": qid, "ok": False, "error": e.message})
    log.info(
        "Batch classification: %d/%d succeeded",
        sum(1 for r in results if r["ok"]), len(results),
    )
    return results
