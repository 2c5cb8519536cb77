import pytest

from database.models import ClassificationValidation, ReviewStatus
from database.schemas import ValidationResult
from services import validation as workflow
from services.errors import AuthorizationDenied, ConflictError, NotFoundError


def _result(bloom="apply", kd="procedural", difficulty="average", confidence=0.9):
    return ValidationResult(
        validated_classification={"bloom_level": bloom, "knowledge_dimension": kd, "difficulty": difficulty},
        validation_confidence=confidence,
        notes="checked against the syllabus",
    )


@pytest.fixture
def question(db, make_question):
    q = make_question("Define photosynthesis.", bloom_level="remember", knowledge_dimension="factual", difficulty="easy")
    q.classification_confidence = 0.6
    q.needs_review = True
    db.commit()
    return q


def test_submit_snapshots_original_and_updates_question(db, ctx, question):
    outcome = workflow.submit_validation(db, ctx["validator"], question.id, _result())

    record = outcome["validation"]
    assert record.original_classification == {
        "bloom_level": "remember", "knowledge_dimension": "factual", "difficulty": "easy", "confidence": 0.6,
    }
    assert record.validated_classification == {
        "bloom_level": "apply", "knowledge_dimension": "procedural", "difficulty": "average",
    }
    db.expire_all()
    assert question.bloom_level == "apply"
    assert question.classification_confidence == 0.9
    assert question.validation_status == "validated"
    assert question.validated_by == ctx["validator"].user_id
    assert question.needs_review is False
    assert outcome["stats"].total_validations == 1


def test_second_submit_snapshots_first_result(db, ctx, question):
    workflow.submit_validation(db, ctx["validator"], question.id, _result())
    workflow.submit_validation(db, ctx["admin"], question.id, _result(bloom="analyze", kd="conceptual"))

    history = workflow.validation_history(db, question.id)
    assert len(history) == 2
    assert history[1].original_classification["bloom_level"] == "apply"
    assert history[1].original_classification["confidence"] == 0.9


def test_teachers_cannot_validate(db, ctx, question):
    with pytest.raises(AuthorizationDenied):
        workflow.submit_validation(db, ctx["teacher"], question.id, _result())
    with pytest.raises(AuthorizationDenied):
        workflow.reject_validation(db, ctx["teacher"], question.id, "wrong level")


def test_reject_is_idempotent(db, ctx, question):
    first = workflow.reject_validation(db, ctx["validator"], question.id, "verb is misleading")
    db.expire_all()
    state_after_first = (question.validation_status, question.needs_review, question.bloom_level)

    workflow.reject_validation(db, ctx["validator"], question.id, "verb is misleading")
    db.expire_all()
    assert (question.validation_status, question.needs_review, question.bloom_level) == state_after_first
    assert state_after_first == ("rejected", True, "remember")

    assert first.notes == "Rejected: verb is misleading"
    assert first.original_classification == {} and first.validation_confidence == 0.0
    assert db.query(ClassificationValidation).count() == 2


def test_request_lifecycle(db, ctx, question):
    request = workflow.request_validation(db, ctx["teacher"], question.id, "peer_review", ctx["validator"].user_id)
    assert request.status == ReviewStatus.PENDING.value

    pending = workflow.list_pending(db, ctx["validator"])
    assert [p["id"] for p in pending] == [request.id]
    assert pending[0]["question_text"] == "Define photosynthesis."
    assert pending[0]["original_classification"]["bloom_level"] == "remember"

    started = workflow.start_review(db, ctx["validator"], request.id)
    assert started.status == ReviewStatus.IN_PROGRESS.value

    workflow.submit_validation(db, ctx["validator"], question.id, _result())
    db.expire_all()
    assert request.status == ReviewStatus.COMPLETED.value
    assert workflow.list_pending(db, ctx["validator"]) == []

    with pytest.raises(ConflictError):
        workflow.cancel_request(db, ctx["teacher"], request.id)


def test_cancel_pending_request(db, ctx, question):
    request = workflow.request_validation(db, ctx["teacher"], question.id, "expert_review")
    cancelled = workflow.cancel_request(db, ctx["teacher"], request.id)
    assert cancelled.status == ReviewStatus.CANCELLED.value
    with pytest.raises(ConflictError):
        workflow.start_review(db, ctx["validator"], request.id)


def test_request_for_missing_question(db, ctx):
    with pytest.raises(NotFoundError):
        workflow.request_validation(db, ctx["teacher"], 4242, "peer_review")


def test_stats_agreement_and_confidence_improvement(db, ctx, question, make_question):
    other = make_question("Explain osmosis.", bloom_level="understand")
    other.classification_confidence = 0.5
    db.commit()

    workflow.submit_validation(db, ctx["validator"], question.id, _result())
    workflow.submit_validation(db, ctx["validator"], other.id, _result(bloom="understand", kd="conceptual", difficulty="easy", confidence=0.8))
    workflow.reject_validation(db, ctx["validator"], other.id, "ambiguous")

    stats = workflow.validation_stats(db, ctx["validator"])
    assert stats.total_validations == 3
    assert stats.accuracy_rate == 0.5
    assert stats.avg_confidence_improvement == pytest.approx(0.3)
    assert workflow.validation_stats(db, ctx["admin"]).total_validations == 3
