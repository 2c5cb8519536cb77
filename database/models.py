"""
SQLAlchemy models for the TOS builder
Users → Questions (+ reviews, validations, similarities, metrics) → TOS blueprints → generated tests

Status-like columns are stored as plain strings; the allowed values are the
str enums below.
"""

import enum

from sqlalchemy import Column, Integer, String, Boolean, ForeignKey, DateTime, Text, Float, JSON, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database.database import Base


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    TEACHER = "teacher"
    VALIDATOR = "validator"


class QuestionType(str, enum.Enum):
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    ESSAY = "essay"
    FILL_BLANK = "fill_blank"
    MATCHING = "matching"


class BloomLevel(str, enum.Enum):
    REMEMBER = "remember"
    UNDERSTAND = "understand"
    APPLY = "apply"
    ANALYZE = "analyze"
    EVALUATE = "evaluate"
    CREATE = "create"


class KnowledgeDimension(str, enum.Enum):
    FACTUAL = "factual"
    CONCEPTUAL = "conceptual"
    PROCEDURAL = "procedural"
    METACOGNITIVE = "metacognitive"


class Difficulty(str, enum.Enum):
    EASY = "easy"
    AVERAGE = "average"
    DIFFICULT = "difficult"


class ApprovalStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ValidationStatus(str, enum.Enum):
    PENDING = "pending"
    VALIDATED = "validated"
    REJECTED = "rejected"


class ReviewType(str, enum.Enum):
    PEER = "peer_review"
    EXPERT = "expert_review"


class ReviewStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class QuestionSource(str, enum.Enum):
    HUMAN = "human"
    AI = "ai"
    TEMPLATE = "template"


# Canonical ordering used by the TOS matrix: level → difficulty band
BLOOM_ORDER = [level.value for level in BloomLevel]
BLOOM_TO_DIFFICULTY = {
    "remember": "easy",
    "understand": "easy",
    "apply": "average",
    "analyze": "average",
    "evaluate": "difficult",
    "create": "difficult",
}


# ==========================================
# AUTH: USERS
# ==========================================

class User(Base):
    """
    Application user. role decides what the user may do:
    admin (everything), teacher (blueprints, tests, own questions), validator (review queue).
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    hashed_password = Column(String(255), nullable=False)
    full_name = Column(String(255), nullable=False)
    role = Column(String(20), default=UserRole.TEACHER.value, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', role='{self.role}')>"


# ==========================================
# QUESTION STORE
# ==========================================

class Question(Base):
    """
    Question in the bank.
    status is the single approval field (pending | approved | rejected);
    validation_status tracks the human review of the classifier output.
    deleted is a soft-delete flag: rows are never physically removed.
    """
    __tablename__ = "questions"

    id = Column(Integer, primary_key=True, index=True)
    question_text = Column(Text, nullable=False)
    question_type = Column(String(20), nullable=False, default=QuestionType.MULTIPLE_CHOICE.value)
    choices = Column(JSON, nullable=True)           # {"A": "...", ...} or {"left": [...], "right": [...]}
    correct_answer = Column(Text, nullable=True)
    topic = Column(String(255), nullable=False, index=True)

    bloom_level = Column(String(20), nullable=True, index=True)
    knowledge_dimension = Column(String(20), nullable=True)
    difficulty = Column(String(20), nullable=True)
    classification_confidence = Column(Float, nullable=True)
    quality_score = Column(Float, nullable=True)
    readability_score = Column(Float, nullable=True)

    status = Column(String(20), default=ApprovalStatus.PENDING.value, nullable=False, index=True)
    validation_status = Column(String(20), default=ValidationStatus.PENDING.value, nullable=False)
    needs_review = Column(Boolean, default=False, nullable=False)
    validated_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    validated_at = Column(DateTime(timezone=True), nullable=True)

    usage_count = Column(Integer, default=0, nullable=False)
    created_by = Column(String(20), default=QuestionSource.HUMAN.value, nullable=False)
    author_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    deleted = Column(Boolean, default=False, nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    validations = relationship(
        "ClassificationValidation", back_populates="question", order_by="ClassificationValidation.id",
    )

    __table_args__ = (
        Index("ix_questions_selection", "topic", "bloom_level", "status", "deleted"),
    )

    @property
    def approved(self) -> bool:
        """Derived from status; kept for clients that still read the boolean."""
        return self.status == ApprovalStatus.APPROVED.value

    def classification_snapshot(self) -> dict:
        return {
            "bloom_level": self.bloom_level,
            "knowledge_dimension": self.knowledge_dimension,
            "difficulty": self.difficulty,
            "confidence": self.classification_confidence,
        }

    def __repr__(self):
        return f"<Question(id={self.id}, topic='{self.topic}', bloom='{self.bloom_level}', status='{self.status}')>"


class ReviewRequest(Base):
    """Human-in-the-loop review request: pending → in_progress → completed | cancelled."""
    __tablename__ = "review_requests"

    id = Column(Integer, primary_key=True, index=True)
    question_id = Column(Integer, ForeignKey("questions.id", ondelete="CASCADE"), nullable=False, index=True)
    request_type = Column(String(20), nullable=False)
    requested_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    assigned_to = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    status = Column(String(20), default=ReviewStatus.PENDING.value, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    question = relationship("Question")


class ClassificationValidation(Base):
    """
    Append-only history of reviewer decisions on a question's classification.
    original_classification / validated_classification are snapshots; never updated.
    """
    __tablename__ = "classification_validations"

    id = Column(Integer, primary_key=True, index=True)
    question_id = Column(Integer, ForeignKey("questions.id", ondelete="CASCADE"), nullable=False, index=True)
    original_classification = Column(JSON, nullable=False, default=dict)
    validated_classification = Column(JSON, nullable=False, default=dict)
    validator_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    validation_confidence = Column(Float, nullable=False, default=0.0)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    question = relationship("Question", back_populates="validations")


class QuestionSimilarity(Base):
    """Informational similarity record. question1_id < question2_id."""
    __tablename__ = "question_similarities"

    id = Column(Integer, primary_key=True, index=True)
    question1_id = Column(Integer, ForeignKey("questions.id", ondelete="CASCADE"), nullable=False, index=True)
    question2_id = Column(Integer, ForeignKey("questions.id", ondelete="CASCADE"), nullable=False, index=True)
    similarity_score = Column(Float, nullable=False)
    algorithm_used = Column(String(50), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class QualityMetric(Base):
    """Measurement row for aggregate reporting (classifier confidence, cluster coherence, bank stats)."""
    __tablename__ = "quality_metrics"

    id = Column(Integer, primary_key=True, index=True)
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(Integer, nullable=True, index=True)
    characteristic = Column(String(100), nullable=False)
    metric_name = Column(String(100), nullable=False, index=True)
    value = Column(Float, nullable=False)
    unit = Column(String(20), nullable=True)
    measurement_method = Column(String(100), nullable=True)
    automated = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


# ==========================================
# TOS BLUEPRINTS & GENERATED TESTS
# ==========================================

class TOSBlueprint(Base):
    """
    Table of Specifications.
    distribution: {topic: {bloom_level: [item numbers]}} covering exactly 1..total_items.
    Locked once a generated test references it.
    """
    __tablename__ = "tos_blueprints"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    subject_no = Column(String(50), nullable=True)
    course = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    exam_period = Column(String(50), nullable=True)
    school_year = Column(String(20), nullable=True)
    total_items = Column(Integer, nullable=False)
    topics = Column(JSON, nullable=False)               # [{"name": str, "weight": float}]
    bloom_distribution = Column(JSON, nullable=False)   # {bloom_level: percent}
    distribution = Column(JSON, nullable=False)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    tests = relationship("GeneratedTest", back_populates="blueprint")

    def __repr__(self):
        return f"<TOSBlueprint(id={self.id}, title='{self.title}', items={self.total_items})>"


class GeneratedTest(Base):
    """
    A test assembled from a blueprint. items / answer_key are snapshots taken at
    generation time; the row is otherwise read-only.
    """
    __tablename__ = "generated_tests"

    id = Column(Integer, primary_key=True, index=True)
    tos_id = Column(Integer, ForeignKey("tos_blueprints.id", ondelete="RESTRICT"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    subject_no = Column(String(50), nullable=True)
    course = Column(String(255), nullable=True)
    exam_period = Column(String(50), nullable=True)
    school_year = Column(String(20), nullable=True)
    items = Column(JSON, nullable=False)
    answer_key = Column(JSON, nullable=False)
    total_points = Column(Float, nullable=False, default=0)
    generation_metadata = Column(JSON, nullable=False, default=dict)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    blueprint = relationship("TOSBlueprint", back_populates="tests")

    def __repr__(self):
        return f"<GeneratedTest(id={self.id}, tos_id={self.tos_id}, items={len(self.items or [])})>"
