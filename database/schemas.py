"""
Pydantic schemas for request/response validation
Separate from SQLAlchemy models for clean API contracts
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from database.models import (
    ApprovalStatus, BloomLevel, Difficulty, KnowledgeDimension,
    QuestionSource, QuestionType, ReviewStatus, ReviewType, UserRole,
)
from database.normalize import normalise_payload, parse_content, content_to_columns


# ==========================================
# USER SCHEMAS
# ==========================================

class LoginRequest(BaseModel):
    email: str
    password: str


class UserCreate(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=4)
    full_name: str = Field(..., min_length=1, max_length=255)
    role: UserRole = UserRole.TEACHER


class UserResponse(BaseModel):
    id: int
    email: str
    full_name: str
    role: str
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse


# ==========================================
# QUESTION SCHEMAS
# ==========================================

class QuestionCreate(BaseModel):
    """
    Inbound question. Accepts the legacy spellings (options, correctAnswer,
    "Multiple Choice", ...) and validates the content against the canonical
    variant for its question_type.
    """
    question_text: str = Field(..., min_length=1)
    question_type: QuestionType = QuestionType.MULTIPLE_CHOICE
    topic: str = Field(..., min_length=1, max_length=255)
    choices: Optional[Dict[str, str]] = None
    correct_answer: Optional[Any] = None
    bloom_level: Optional[BloomLevel] = None
    knowledge_dimension: Optional[KnowledgeDimension] = None
    difficulty: Optional[Difficulty] = None
    status: ApprovalStatus = ApprovalStatus.PENDING
    created_by: QuestionSource = QuestionSource.HUMAN

    @model_validator(mode="before")
    @classmethod
    def _normalise(cls, data):
        if isinstance(data, dict):
            return normalise_payload(data)
        return data

    @model_validator(mode="after")
    def _check_content(self):
        parse_content(self.model_dump(mode="json"))
        return self

    def content_columns(self) -> Dict[str, Any]:
        return content_to_columns(parse_content(self.model_dump(mode="json")))


class QuestionUpdate(BaseModel):
    """Partial edit. Content fields are re-validated against the merged record."""
    question_text: Optional[str] = Field(None, min_length=1)
    question_type: Optional[QuestionType] = None
    topic: Optional[str] = Field(None, min_length=1, max_length=255)
    choices: Optional[Dict[str, str]] = None
    correct_answer: Optional[Any] = None
    bloom_level: Optional[BloomLevel] = None
    knowledge_dimension: Optional[KnowledgeDimension] = None
    difficulty: Optional[Difficulty] = None
    status: Optional[ApprovalStatus] = None

    @model_validator(mode="before")
    @classmethod
    def _normalise(cls, data):
        if isinstance(data, dict):
            had_type = any(k in data for k in ("question_type", "type", "questionType"))
            data = normalise_payload(data)
            if not had_type:
                data.pop("question_type", None)
        return data


class QuestionResponse(BaseModel):
    id: int
    question_text: str
    question_type: str
    topic: str
    choices: Optional[Dict[str, Any]] = None
    correct_answer: Optional[str] = None
    bloom_level: Optional[str] = None
    knowledge_dimension: Optional[str] = None
    difficulty: Optional[str] = None
    classification_confidence: Optional[float] = None
    quality_score: Optional[float] = None
    status: str
    approved: bool
    validation_status: str
    needs_review: bool
    usage_count: int
    created_by: str
    author_id: Optional[int] = None
    deleted: bool
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# ==========================================
# CLASSIFICATION & SIMILARITY SCHEMAS
# ==========================================

class ClassifyTextRequest(BaseModel):
    text: str = Field(..., min_length=1)
    question_type: Optional[str] = None
    topic: Optional[str] = None


class Classification(BaseModel):
    bloom_level: str
    knowledge_dimension: str
    difficulty: str
    quality_score: float
    readability_score: float
    confidence: float
    needs_review: bool
    quality_issues: List[str] = Field(default_factory=list)


class BatchClassifyRequest(BaseModel):
    question_ids: List[int] = Field(..., min_length=1)


class SimilarQuestionsRequest(BaseModel):
    text: str = Field(..., min_length=1)
    threshold: Optional[float] = Field(None, ge=0.0, le=1.0)
    exclude_ids: List[int] = Field(default_factory=list)
    store_results: bool = False
    source_question_id: Optional[int] = None


class RedundancyRequest(BaseModel):
    text: str = Field(..., min_length=1)
    existing_question_ids: Optional[List[int]] = None
    threshold: Optional[float] = Field(None, ge=0.0, le=1.0)


class ClusterRequest(BaseModel):
    question_ids: List[int] = Field(..., min_length=1)
    threshold: Optional[float] = Field(None, ge=0.0, le=1.0)


class BankAnalysisRequest(BaseModel):
    topic: Optional[str] = None
    threshold: Optional[float] = Field(None, ge=0.0, le=1.0)
    store_results: bool = True


# ==========================================
# VALIDATION WORKFLOW SCHEMAS
# ==========================================

class ValidatedClassification(BaseModel):
    bloom_level: BloomLevel
    knowledge_dimension: KnowledgeDimension
    difficulty: Difficulty


class ValidationResult(BaseModel):
    validated_classification: ValidatedClassification
    validation_confidence: float = Field(..., ge=0.0, le=1.0)
    notes: Optional[str] = None
    changes_made: List[str] = Field(default_factory=list)


class ValidationRequestCreate(BaseModel):
    question_id: int
    request_type: ReviewType
    assigned_to: Optional[int] = None


class RejectRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class ReviewRequestResponse(BaseModel):
    id: int
    question_id: int
    question_text: str = ""
    original_classification: Dict[str, Any] = Field(default_factory=dict)
    request_type: str
    requested_by: Optional[int] = None
    assigned_to: Optional[int] = None
    status: ReviewStatus
    created_at: Optional[datetime] = None


class ValidationRecordResponse(BaseModel):
    id: int
    question_id: int
    original_classification: Dict[str, Any]
    validated_classification: Dict[str, Any]
    validator_id: Optional[int] = None
    validation_confidence: float
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ValidationStats(BaseModel):
    total_validations: int
    accuracy_rate: float
    avg_confidence_improvement: float


# ==========================================
# TOS SCHEMAS
# ==========================================

class TopicWeight(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    weight: float = Field(..., description="Relative weight (hours, percent, ...); normalised by the sum")


class TOSCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    subject_no: Optional[str] = None
    course: Optional[str] = None
    description: Optional[str] = None
    exam_period: Optional[str] = None
    school_year: Optional[str] = None
    total_items: int = Field(..., description="Number of test items")
    topics: List[TopicWeight]
    bloom_distribution: Optional[Dict[str, float]] = Field(
        None, description="Percent per Bloom level; defaults to 15/15/20/20/15/15",
    )
    difficulty_split: Optional[Dict[str, float]] = Field(
        None, description="easy/average/difficult percent; must agree with bloom_distribution",
    )


class TOSResponse(BaseModel):
    id: int
    title: str
    subject_no: Optional[str] = None
    course: Optional[str] = None
    description: Optional[str] = None
    exam_period: Optional[str] = None
    school_year: Optional[str] = None
    total_items: int
    topics: List[Dict[str, Any]]
    bloom_distribution: Dict[str, float]
    distribution: Dict[str, Dict[str, List[int]]]
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None
    summary: Dict[str, Any] = Field(default_factory=dict)
    locked: bool = False

    model_config = ConfigDict(from_attributes=True)
