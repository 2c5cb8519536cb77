"""
CRUD operations for users and the question store
Authorization predicates (owner or admin) are applied here, against the explicit caller context.
"""

from typing import List, Optional

from sqlalchemy.orm import Session

from auth.security import UserContext, hash_password
from database import models, schemas
from database.normalize import normalise_payload, parse_content, content_to_columns
from services.errors import NotFoundError, AuthorizationDenied, ValidationFailure


# ==========================================
# USER CRUD
# ==========================================

def get_user(db: Session, user_id: int) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.id == user_id).first()


def get_user_by_email(db: Session, email: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.email == email).first()


def create_user(db: Session, user: schemas.UserCreate) -> models.User:
    db_user = models.User(
        email=user.email,
        hashed_password=hash_password(user.password),
        full_name=user.full_name,
        role=user.role.value,
    )
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    return db_user


# ==========================================
# QUESTION CRUD
# ==========================================

def get_question(db: Session, question_id: int, include_deleted: bool = False) -> models.Question:
    """Get a question by id or raise NotFoundError."""
    q = db.query(models.Question).filter(models.Question.id == question_id)
    if not include_deleted:
        q = q.filter(models.Question.deleted.is_(False))
    question = q.first()
    if question is None:
        raise NotFoundError("Question", question_id)
    return question


def create_question(
    db: Session,
    question: schemas.QuestionCreate,
    ctx: Optional[UserContext] = None,
    commit: bool = True,
) -> models.Question:
    """Create a question from a validated payload. Only reviewers may store it already approved."""
    if question.status == models.ApprovalStatus.APPROVED and (ctx is None or not _can_approve(ctx)):
        who = f"Role '{ctx.role}'" if ctx else "An anonymous caller"
        raise AuthorizationDenied(f"{who} cannot create an approved question")
    db_question = models.Question(
        **question.content_columns(),
        topic=question.topic.strip(),
        bloom_level=question.bloom_level.value if question.bloom_level else None,
        knowledge_dimension=question.knowledge_dimension.value if question.knowledge_dimension else None,
        difficulty=question.difficulty.value if question.difficulty else None,
        status=question.status.value,
        created_by=question.created_by.value,
        author_id=ctx.user_id if ctx else None,
    )
    db.add(db_question)
    if commit:
        db.commit()
        db.refresh(db_question)
    else:
        db.flush()
    return db_question


def list_questions(
    db: Session,
    topic: Optional[str] = None,
    bloom_level: Optional[str] = None,
    difficulty: Optional[str] = None,
    status: Optional[str] = None,
    created_by: Optional[str] = None,
    search: Optional[str] = None,
    include_deleted: bool = False,
    skip: int = 0,
    limit: int = 50,
) -> List[models.Question]:
    """Question bank listing with the filters the bank screen offers."""
    q = db.query(models.Question)
    if not include_deleted:
        q = q.filter(models.Question.deleted.is_(False))
    if topic is not None:
        q = q.filter(models.Question.topic == topic)
    if bloom_level is not None:
        q = q.filter(models.Question.bloom_level == bloom_level)
    if difficulty is not None:
        q = q.filter(models.Question.difficulty == difficulty)
    if status is not None:
        q = q.filter(models.Question.status == status)
    if created_by is not None:
        q = q.filter(models.Question.created_by == created_by)
    if search:
        pattern = f"%{search.strip()}%"
        q = q.filter(
            models.Question.question_text.ilike(pattern) | models.Question.topic.ilike(pattern)
        )
    return q.order_by(models.Question.id.desc()).offset(skip).limit(limit).all()


def _can_approve(ctx: UserContext) -> bool:
    return ctx.role in ("admin", "validator")


def _require_owner(ctx: UserContext, question: models.Question, action: str) -> None:
    if not ctx.owns(question.author_id):
        raise AuthorizationDenied(f"Not allowed to {action} question {question.id}")


def update_question(
    db: Session,
    ctx: UserContext,
    question_id: int,
    update: schemas.QuestionUpdate,
) -> models.Question:
    """Teacher edit: patch fields; content is re-validated against the merged record."""
    question = get_question(db, question_id)
    _require_owner(ctx, question, "edit")

    data = update.model_dump(exclude_unset=True, mode="json")
    if data.get("status") == models.ApprovalStatus.APPROVED.value and not _can_approve(ctx):
        raise AuthorizationDenied(f"Role '{ctx.role}' cannot approve question {question_id}")
    content_keys = {"question_text", "question_type", "choices", "correct_answer"}
    if content_keys & data.keys():
        merged = normalise_payload({
            "question_type": data.get("question_type", question.question_type),
            "question_text": data.get("question_text", question.question_text),
            "choices": data["choices"] if "choices" in data else question.choices,
            "correct_answer": data["correct_answer"] if "correct_answer" in data else question.correct_answer,
        })
        try:
            content = parse_content(merged)
        except ValueError as e:
            raise ValidationFailure(f"Invalid content for question {question_id}: {e}")
        for key, value in content_to_columns(content).items():
            setattr(question, key, value)

    for key, value in data.items():
        if key in content_keys:
            continue
        if key == "topic" and value:
            value = value.strip()
        setattr(question, key, value)

    db.commit()
    db.refresh(question)
    return question


def set_question_status(db: Session, ctx: UserContext, question_id: int, status: str) -> models.Question:
    """Approve / reject / reset to pending. Only admins and validators approve."""
    if status == models.ApprovalStatus.APPROVED.value and not _can_approve(ctx):
        raise AuthorizationDenied(f"Role '{ctx.role}' cannot approve question {question_id}")
    question = get_question(db, question_id)
    question.status = status
    db.commit()
    db.refresh(question)
    return question


def soft_delete_question(db: Session, ctx: UserContext, question_id: int) -> models.Question:
    question = get_question(db, question_id)
    _require_owner(ctx, question, "delete")
    question.deleted = True
    db.commit()
    return question
