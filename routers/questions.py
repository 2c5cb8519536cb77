"""
Question bank router — /questions
Create → Classify → (Validate) → Approve → used by the test generator.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from analysis.classifier import classify_question
from auth.security import UserContext
from database import crud
from database.database import get_db
from database.models import ApprovalStatus, BloomLevel, Difficulty, QuestionSource
from database.schemas import Classification, QuestionCreate, QuestionResponse, QuestionUpdate
from routers.auth import get_user_context, require_role
from services.errors import AuthorizationDenied, ClassificationFailed

router = APIRouter(prefix="/questions", tags=["questions"])

log = logging.getLogger(__name__)


@router.post("", response_model=QuestionResponse, status_code=201)
async def create_question(
    payload: QuestionCreate,
    auto_classify: bool = Query(True, description="Run the classifier right after saving"),
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(get_user_context),
):
    question = crud.create_question(db, payload, ctx)
    log.info(f"[CREATE] question_id={question.id} topic='{question.topic}' type={question.question_type}")
    if auto_classify:
        try:
            await classify_question(db, question.id)
        except ClassificationFailed as e:
            log.warning(f"[CREATE] question_id={question.id} saved unclassified: {e.message}")
    return crud.get_question(db, question.id)


@router.get("", response_model=List[QuestionResponse])
def list_questions(
    topic: Optional[str] = None,
    bloom_level: Optional[BloomLevel] = None,
    difficulty: Optional[Difficulty] = None,
    status: Optional[ApprovalStatus] = None,
    created_by: Optional[QuestionSource] = None,
    search: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(get_user_context),
):
    return crud.list_questions(
        db,
        topic=topic,
        bloom_level=bloom_level.value if bloom_level else None,
        difficulty=difficulty.value if difficulty else None,
        status=status.value if status else None,
        created_by=created_by.value if created_by else None,
        search=search,
        skip=skip,
        limit=limit,
    )


@router.get("/{question_id}", response_model=QuestionResponse)
def get_question(
    question_id: int,
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(get_user_context),
):
    return crud.get_question(db, question_id)


@router.put("/{question_id}", response_model=QuestionResponse)
def update_question(
    question_id: int,
    payload: QuestionUpdate,
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(get_user_context),
):
    return crud.update_question(db, ctx, question_id, payload)


@router.delete("/{question_id}", status_code=204)
def delete_question(
    question_id: int,
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(get_user_context),
):
    crud.soft_delete_question(db, ctx, question_id)


# ─── Approval ─────────────────────────────────────────────────────────────────

@router.post("/{question_id}/approve", response_model=QuestionResponse)
def approve_question(
    question_id: int,
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(require_role("admin", "validator")),
):
    return crud.set_question_status(db, ctx, question_id, ApprovalStatus.APPROVED.value)


@router.post("/{question_id}/reject", response_model=QuestionResponse)
def reject_question(
    question_id: int,
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(require_role("admin", "validator")),
):
    return crud.set_question_status(db, ctx, question_id, ApprovalStatus.REJECTED.value)


# ─── Classification ───────────────────────────────────────────────────────────

@router.post("/{question_id}/classify", response_model=Classification)
async def classify_stored_question(
    question_id: int,
    force: bool = Query(False, description="Overwrite a reviewer-validated classification"),
    check_similarity: bool = True,
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(get_user_context),
):
    question = crud.get_question(db, question_id)
    # Authors re-classify their own items; reviewers any item
    if not (ctx.owns(question.author_id) or ctx.role in ("admin", "validator")):
        raise AuthorizationDenied(f"Not allowed to classify question {question_id}")
    return await classify_question(db, question_id, check_similarity=check_similarity, force=force)
