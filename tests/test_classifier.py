import asyncio

import pytest

from analysis import classifier
from analysis.classifier import (
    batch_classify, bloom_rule_guess, classify, classify_question,
    knowledge_dimension_guess, quality_score, readability_grade,
)
from database.models import QualityMetric, ValidationStatus
from services.errors import ClassificationFailed
from services.validation import reject_validation


@pytest.mark.parametrize("text, level, difficulty", [
    ("Define photosynthesis.", "remember", "easy"),
    ("Explain why leaves change colour in autumn.", "understand", "easy"),
    ("Calculate the speed of a car that travels 100 km in 2 hours.", "apply", "average"),
    ("Differentiate between mitosis and meiosis.", "analyze", "average"),
    ("Evaluate the effectiveness of renewable energy policies.", "evaluate", "difficult"),
    ("Design an experiment to test plant growth under coloured light.", "create", "difficult"),
])
def test_leading_verb_decides_level(text, level, difficulty):
    result = classify(text)
    assert result.bloom_level == level
    assert result.difficulty == difficulty
    assert result.confidence >= 0.9


def test_no_verb_evidence_defaults_to_understand_with_low_confidence():
    result = classify("The mitochondria is the powerhouse of the cell.")
    assert (result.bloom_level, result.confidence) == ("understand", 0.4)
    assert result.needs_review is True
    assert "Low classification confidence - needs human review" in result.quality_issues


def test_mixed_evidence_lowers_confidence():
    level, confidence = bloom_rule_guess("Explain, evaluate and justify, then critique the argument.")
    assert level == "evaluate"
    assert 0.5 < confidence < 0.9


def test_knowledge_dimension_cues():
    assert knowledge_dimension_guess("Calculate the steps to solve the equation.", "apply") == "procedural"
    assert knowledge_dimension_guess("Reflect on your own learning this term.", "evaluate") == "metacognitive"
    assert knowledge_dimension_guess("Zygote formation.", "remember") == "factual"


def test_quality_penalties():
    assert quality_score("Describe the process of cellular respiration in detail.") == 1.0
    assert quality_score("Osmosis") == pytest.approx(0.6)
    vague = quality_score("Explain stuff and things about cells etc.")
    assert vague == pytest.approx(0.8)
    mcq = quality_score(
        "Which gas do plants absorb?",
        {"question_type": "multiple_choice", "choices": {"A": "Oxygen", "B": "oxygen", "C": "All of the above"}},
    )
    assert mcq == pytest.approx(0.7)


def test_readability_grade_is_bounded():
    assert readability_grade("") == 0.0
    long_words = "Characterize the epistemological ramifications of institutionalized interdisciplinarity."
    assert readability_grade(long_words) == 20.0
    assert "Question may be too complex for target audience" in classify(long_words).quality_issues


def test_classify_question_persists_and_records_metrics(db, make_question):
    q = make_question("Define photosynthesis.", bloom_level=None)
    result = asyncio.run(classify_question(db, q.id, check_similarity=False))

    db.expire_all()
    assert q.bloom_level == result.bloom_level == "remember"
    assert q.difficulty == "easy"
    assert q.classification_confidence == result.confidence
    names = {m.metric_name for m in db.query(QualityMetric).filter(QualityMetric.entity_id == q.id)}
    assert names == {"ml_confidence", "quality_score"}


def test_classify_question_reports_similar_questions(db, make_question):
    make_question("Define photosynthesis in plants.")
    q = make_question("Define photosynthesis in plants!")
    result = asyncio.run(classify_question(db, q.id))
    assert "Found 1 similar questions" in result.quality_issues


def test_validated_classification_is_kept_unless_forced(db, make_question):
    q = make_question("Define photosynthesis.", bloom_level="analyze")
    q.validation_status = ValidationStatus.VALIDATED.value
    db.commit()

    asyncio.run(classify_question(db, q.id, check_similarity=False))
    db.expire_all()
    assert q.bloom_level == "analyze"

    asyncio.run(classify_question(db, q.id, check_similarity=False, force=True))
    db.expire_all()
    assert q.bloom_level == "remember"


def test_classify_question_failure_rolls_back(db, make_question, monkeypatch):
    q = make_question("Define photosynthesis.", bloom_level="create")

    def boom(*args, **kwargs):
        raise RuntimeError("metrics store unavailable")

    monkeypatch.setattr(classifier, "record_metric", boom)
    with pytest.raises(ClassificationFailed) as exc:
        asyncio.run(classify_question(db, q.id, check_similarity=False))

    assert str(q.id) in exc.value.message
    db.expire_all()
    assert q.bloom_level == "create"
    assert db.query(QualityMetric).count() == 0


def test_batch_classify_reports_per_question(db, make_question):
    q = make_question("Define photosynthesis.")
    results = asyncio.run(batch_classify(db, [q.id, 9999]))
    assert [r["ok"] for r in results] == [True, False]
    assert results[1]["error"] == "Question 9999 not found"


def test_reclassifying_a_rejected_question_keeps_it_flagged(db, ctx, make_question):
    clean = make_question("Define photosynthesis.")
    rejected = make_question("Define photosynthesis.", topic="Plants")
    reject_validation(db, ctx["validator"], rejected.id, "wrong level")

    asyncio.run(classify_question(db, clean.id, check_similarity=False))
    asyncio.run(classify_question(db, rejected.id, check_similarity=False))

    db.expire_all()
    assert clean.needs_review is False
    assert rejected.validation_status == "rejected"
    assert rejected.needs_review is True
