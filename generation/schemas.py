"""
Pydantic schemas for the test generation pipeline.

GenerationOptions → (per TOS cell) CellPlan → ItemSnapshot → GeneratedTestResponse
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from database.models import QuestionType


# ─── Input ─────────────────────────────────────────────────────────────────────

class GenerationOptions(BaseModel):
    """User-facing request to generate a test from a TOS blueprint."""
    title: Optional[str] = Field(None, description="Defaults to '<blueprint title> Test'")
    check_redundancy: bool = True
    redundancy_threshold: float = Field(0.85, ge=0.0, le=1.0)
    author_missing: bool = Field(True, description="Draft new questions (AI, then templates) for empty slots")
    fill_policy: Literal["partial", "strict"] = "partial"
    points_per_item: float = Field(1.0, gt=0)
    question_type: QuestionType = Field(
        QuestionType.MULTIPLE_CHOICE, description="Question type requested for AI-authored items",
    )


class GenerateTestRequest(GenerationOptions):
    tos_id: int


# ─── Internal pipeline types ───────────────────────────────────────────────────

class CellPlan(BaseModel):
    """One TOS cell after selection: bank picks first, then drafts, then unfilled numbers."""
    topic: str
    bloom_level: str
    item_numbers: List[int]
    selected_ids: List[int] = Field(default_factory=list)
    drafts: List[Dict[str, Any]] = Field(default_factory=list)
    skipped_redundant: List[int] = Field(default_factory=list)

    @property
    def needed(self) -> int:
        return len(self.item_numbers) - len(self.selected_ids) - len(self.drafts)

    @property
    def unfilled(self) -> List[int]:
        filled = len(self.selected_ids) + len(self.drafts)
        return self.item_numbers[filled:]


class ItemSnapshot(BaseModel):
    """Question snapshot as stored in GeneratedTest.items."""
    item_number: int
    question_id: int
    question_type: str
    question_text: str
    choices: Optional[Dict[str, Any]] = None
    topic: str
    bloom_level: str
    knowledge_dimension: Optional[str] = None
    difficulty: Optional[str] = None
    points: float = 1.0
    source: Literal["bank", "ai", "template"] = "bank"


class AnswerKeyEntry(BaseModel):
    item_number: int
    question_id: int
    question_type: str
    answer: Any = None


# ─── Output ────────────────────────────────────────────────────────────────────

class GeneratedTestResponse(BaseModel):
    id: int
    tos_id: int
    title: str
    subject_no: Optional[str] = None
    course: Optional[str] = None
    exam_period: Optional[str] = None
    school_year: Optional[str] = None
    items: List[Dict[str, Any]]
    answer_key: List[Dict[str, Any]]
    total_points: float
    generation_metadata: Dict[str, Any] = Field(default_factory=dict)
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class GeneratedTestSummary(BaseModel):
    id: int
    tos_id: int
    title: str
    course: Optional[str] = None
    exam_period: Optional[str] = None
    total_points: float
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
