"""
Validation router — /validation
Review requests, reviewer decisions, history and reviewer stats.
"""

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from auth.security import UserContext
from database.database import get_db
from database.schemas import (
    QuestionResponse, RejectRequest, ReviewRequestResponse, ValidationRecordResponse,
    ValidationRequestCreate, ValidationResult, ValidationStats,
)
from routers.auth import get_user_context, require_role
from services import validation as workflow

router = APIRouter(prefix="/validation", tags=["validation"])

require_reviewer = require_role("admin", "validator")


# ─── Requests ─────────────────────────────────────────────────────────────────

@router.post("/requests", response_model=ReviewRequestResponse, status_code=201)
def request_validation(
    payload: ValidationRequestCreate,
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(get_user_context),
):
    request = workflow.request_validation(
        db, ctx, payload.question_id, payload.request_type.value, payload.assigned_to,
    )
    return workflow.request_to_dict(request)


@router.get("/pending", response_model=List[ReviewRequestResponse])
def list_pending(
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(require_reviewer),
):
    return workflow.list_pending(db, ctx)


@router.post("/requests/{request_id}/start", response_model=ReviewRequestResponse)
def start_review(
    request_id: int,
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(require_reviewer),
):
    return workflow.request_to_dict(workflow.start_review(db, ctx, request_id))


@router.post("/requests/{request_id}/cancel", response_model=ReviewRequestResponse)
def cancel_request(
    request_id: int,
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(get_user_context),
):
    return workflow.request_to_dict(workflow.cancel_request(db, ctx, request_id))


# ─── Decisions ────────────────────────────────────────────────────────────────

@router.post("/questions/{question_id}/submit")
def submit_validation(
    question_id: int,
    result: ValidationResult,
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(require_reviewer),
):
    outcome = workflow.submit_validation(db, ctx, question_id, result)
    return {
        "validation": ValidationRecordResponse.model_validate(outcome["validation"]),
        "pending": outcome["pending"],
        "stats": outcome["stats"],
    }


@router.post("/questions/{question_id}/reject", response_model=ValidationRecordResponse)
def reject_validation(
    question_id: int,
    payload: RejectRequest,
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(require_reviewer),
):
    return workflow.reject_validation(db, ctx, question_id, payload.reason)


@router.get("/questions/{question_id}/history", response_model=List[ValidationRecordResponse])
def validation_history(
    question_id: int,
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(get_user_context),
):
    return workflow.validation_history(db, question_id)


@router.get("/needs-review", response_model=List[QuestionResponse])
def needs_review(
    limit: int = 50,
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(require_reviewer),
):
    return workflow.questions_needing_review(db, limit)


@router.get("/stats", response_model=ValidationStats)
def validation_stats(
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(require_reviewer),
):
    return workflow.validation_stats(db, ctx)
