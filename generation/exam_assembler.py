"""
Test Assembly

Builds the stored item snapshots and the separate answer key from selected
questions. Snapshots carry the canonical content variant, so later edits to a
bank question never change an already generated test.
"""

from typing import Dict, List, Tuple

from database.models import Question
from database.normalize import content_from_row
from generation.schemas import AnswerKeyEntry, ItemSnapshot


def build_item(question: Question, item_number: int, points: float, source: str) -> Tuple[dict, dict]:
    """One (item snapshot, answer key entry) pair for a placed question."""
    content = content_from_row(question)
    item = ItemSnapshot(
        item_number=item_number,
        question_id=question.id,
        question_type=content.question_type,
        question_text=content.question_text,
        choices=getattr(content, "choices", None),
        topic=question.topic,
        bloom_level=question.bloom_level,
        knowledge_dimension=question.knowledge_dimension,
        difficulty=question.difficulty,
        points=points,
        source=source,
    )
    key = AnswerKeyEntry(
        item_number=item_number,
        question_id=question.id,
        question_type=content.question_type,
        answer=content.correct_answer,
    )
    return item.model_dump(mode="json"), key.model_dump(mode="json")


def assemble_test(placements: List[Tuple[int, Question, str]], points_per_item: float) -> Dict[str, object]:
    """
    placements: (item_number, question, source) in any order.

    Returns:
        {"items": [...], "answer_key": [...], "total_points": float} ordered by item number
    """
    items, answer_key = [], []
    for item_number, question, source in sorted(placements, key=lambda p: p[0]):
        item, key = build_item(question, item_number, points_per_item, source)
        items.append(item)
        answer_key.append(key)
    return {
        "items": items,
        "answer_key": answer_key,
        "total_points": float(sum(item["points"] for item in items)),
    }
