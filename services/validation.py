"""
Validation Workflow
Human-in-the-loop review of classifier output.

Question:        pending → validated | rejected
Review request:  pending → in_progress → completed | cancelled

Validation records are append-only snapshots; nothing here updates or
deletes one. Concurrent reviewers are not locked out: the last submit wins.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from auth.security import UserContext
from database import crud
from database.models import (
    ClassificationValidation, Question, ReviewRequest, ReviewStatus, ValidationStatus,
)
from database.schemas import ValidationResult, ValidationStats
from services.errors import AuthorizationDenied, ConflictError, NotFoundError

log = logging.getLogger(__name__)

REVIEWER_ROLES = ("admin", "validator")
OPEN_STATUSES = (ReviewStatus.PENDING.value, ReviewStatus.IN_PROGRESS.value)

# Allowed request transitions
TRANSITIONS = {
    ReviewStatus.PENDING.value: {ReviewStatus.IN_PROGRESS.value, ReviewStatus.COMPLETED.value, ReviewStatus.CANCELLED.value},
    ReviewStatus.IN_PROGRESS.value: {ReviewStatus.COMPLETED.value, ReviewStatus.CANCELLED.value},
    ReviewStatus.COMPLETED.value: set(),
    ReviewStatus.CANCELLED.value: set(),
}


def _require_reviewer(ctx: UserContext, action: str) -> None:
    if ctx.role not in REVIEWER_ROLES:
        raise AuthorizationDenied(f"Role '{ctx.role}' cannot {action}")


def _get_request(db: Session, request_id: int) -> ReviewRequest:
    request = db.query(ReviewRequest).filter(ReviewRequest.id == request_id).first()
    if request is None:
        raise NotFoundError("Review request", request_id)
    return request


def _transition(request: ReviewRequest, target: str) -> None:
    if target not in TRANSITIONS[request.status]:
        raise ConflictError(f"Review request {request.id} cannot go from {request.status} to {target}")
    request.status = target


def _complete_open_requests(db: Session, question_id: int) -> int:
    open_requests = (
        db.query(ReviewRequest)
        .filter(ReviewRequest.question_id == question_id, ReviewRequest.status.in_(OPEN_STATUSES))
        .all()
    )
    for request in open_requests:
        _transition(request, ReviewStatus.COMPLETED.value)
    return len(open_requests)


# ─── Requests ─────────────────────────────────────────────────────────────────

def request_validation(
    db: Session,
    ctx: UserContext,
    question_id: int,
    request_type: str,
    assigned_to: Optional[int] = None,
) -> ReviewRequest:
    crud.get_question(db, question_id)
    if assigned_to is not None and crud.get_user(db, assigned_to) is None:
        raise NotFoundError("User", assigned_to)
    request = ReviewRequest(
        question_id=question_id,
        request_type=request_type,
        requested_by=ctx.user_id,
        assigned_to=assigned_to,
        status=ReviewStatus.PENDING.value,
    )
    db.add(request)
    db.commit()
    db.refresh(request)
    log.info("Review request %s: question %s (%s) → user %s", request.id, question_id, request_type, assigned_to)
    return request


def start_review(db: Session, ctx: UserContext, request_id: int) -> ReviewRequest:
    _require_reviewer(ctx, "start a review")
    request = _get_request(db, request_id)
    if request.assigned_to is not None and request.assigned_to != ctx.user_id and not ctx.is_admin:
        raise AuthorizationDenied(f"Review request {request_id} is assigned to another reviewer")
    _transition(request, ReviewStatus.IN_PROGRESS.value)
    if request.assigned_to is None:
        request.assigned_to = ctx.user_id
    db.commit()
    db.refresh(request)
    return request


def cancel_request(db: Session, ctx: UserContext, request_id: int) -> ReviewRequest:
    request = _get_request(db, request_id)
    if not (ctx.is_admin or request.requested_by == ctx.user_id):
        raise AuthorizationDenied(f"Not allowed to cancel review request {request_id}")
    _transition(request, ReviewStatus.CANCELLED.value)
    db.commit()
    db.refresh(request)
    return request


def request_to_dict(request: ReviewRequest) -> dict:
    question = request.question
    return {
        "id": request.id,
        "question_id": request.question_id,
        "question_text": question.question_text if question else "",
        "original_classification": question.classification_snapshot() if question else {},
        "request_type": request.request_type,
        "requested_by": request.requested_by,
        "assigned_to": request.assigned_to,
        "status": request.status,
        "created_at": request.created_at,
    }


def list_pending(db: Session, ctx: UserContext) -> List[dict]:
    """Open requests for the caller: assigned to them or unassigned. Admins see all."""
    q = db.query(ReviewRequest).filter(ReviewRequest.status.in_(OPEN_STATUSES))
    if not ctx.is_admin:
        q = q.filter(or_(ReviewRequest.assigned_to == ctx.user_id, ReviewRequest.assigned_to.is_(None)))
    requests = q.order_by(ReviewRequest.created_at.desc(), ReviewRequest.id.desc()).all()
    return [request_to_dict(r) for r in requests]


# ─── Decisions ────────────────────────────────────────────────────────────────

def submit_validation(db: Session, ctx: UserContext, question_id: int, result: ValidationResult) -> dict:
    """
    Record the reviewer's classification and apply it to the question.
    original_classification is the question's classification immediately before this call.
    """
    _require_reviewer(ctx, "validate classifications")
    question = crud.get_question(db, question_id)
    original = question.classification_snapshot()
    validated = result.validated_classification.model_dump(mode="json")

    record = ClassificationValidation(
        question_id=question.id,
        original_classification=original,
        validated_classification=validated,
        validator_id=ctx.user_id,
        validation_confidence=result.validation_confidence,
        notes=result.notes,
    )
    db.add(record)

    question.bloom_level = validated["bloom_level"]
    question.knowledge_dimension = validated["knowledge_dimension"]
    question.difficulty = validated["difficulty"]
    question.classification_confidence = result.validation_confidence
    question.validation_status = ValidationStatus.VALIDATED.value
    question.validated_by = ctx.user_id
    question.validated_at = datetime.now(timezone.utc)
    question.needs_review = False

    completed = _complete_open_requests(db, question.id)
    db.commit()
    db.refresh(record)
    log.info(
        "Question %s validated by %s (%s → %s), %d request(s) completed",
        question_id, ctx.user_id, original.get("bloom_level"), validated["bloom_level"], completed,
    )
    return {
        "validation": record,
        "pending": list_pending(db, ctx),
        "stats": validation_stats(db, ctx),
    }


def reject_validation(db: Session, ctx: UserContext, question_id: int, reason: str) -> ClassificationValidation:
    """
    Mark the classification rejected and flag the question for re-review.
    Repeating the call leaves the question in the same state (each call is logged).
    """
    _require_reviewer(ctx, "reject classifications")
    question = crud.get_question(db, question_id)

    question.validation_status = ValidationStatus.REJECTED.value
    question.needs_review = True
    question.validated_by = ctx.user_id
    question.validated_at = datetime.now(timezone.utc)

    record = ClassificationValidation(
        question_id=question.id,
        original_classification={},
        validated_classification={},
        validator_id=ctx.user_id,
        validation_confidence=0.0,
        notes=f"Rejected: {reason}",
    )
    db.add(record)
    _complete_open_requests(db, question.id)
    db.commit()
    db.refresh(record)
    log.info("Question %s classification rejected by %s: %s", question_id, ctx.user_id, reason)
    return record


# ─── History & stats ──────────────────────────────────────────────────────────

def validation_history(db: Session, question_id: int) -> List[ClassificationValidation]:
    crud.get_question(db, question_id, include_deleted=True)
    return (
        db.query(ClassificationValidation)
        .filter(ClassificationValidation.question_id == question_id)
        .order_by(ClassificationValidation.id.asc())
        .all()
    )


def validation_stats(db: Session, ctx: UserContext) -> ValidationStats:
    """
    Stats over the caller's records (all records for admins).
    accuracy_rate: share of validations where the reviewer kept the classifier's Bloom level.
    avg_confidence_improvement: mean of validation confidence minus the original confidence.
    Rejection records carry no classification and only count towards the total.
    """
    q = db.query(ClassificationValidation)
    if not ctx.is_admin:
        q = q.filter(ClassificationValidation.validator_id == ctx.user_id)
    records = q.all()

    scored = [r for r in records if r.validated_classification]
    if not scored:
        return ValidationStats(total_validations=len(records), accuracy_rate=0.0, avg_confidence_improvement=0.0)

    agreed = sum(
        1 for r in scored
        if (r.original_classification or {}).get("bloom_level") == r.validated_classification.get("bloom_level")
    )
    improvement = sum(
        r.validation_confidence - ((r.original_classification or {}).get("confidence") or 0.0)
        for r in scored
    )
    return ValidationStats(
        total_validations=len(records),
        accuracy_rate=round(agreed / len(scored), 4),
        avg_confidence_improvement=round(improvement / len(scored), 4),
    )


def questions_needing_review(db: Session, limit: int = 50) -> List[Question]:
    return (
        db.query(Question)
        .filter(Question.needs_review.is_(True), Question.deleted.is_(False))
        .order_by(Question.id.asc())
        .limit(limit)
        .all()
    )
