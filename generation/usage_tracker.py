"""
Usage Tracker

Increments usage_count on Question rows placed in a generated test.
Least-used questions are picked first next time, so counts spread reuse across the bank.
"""

from typing import Iterable, List

from sqlalchemy.orm import Session

from database.models import Question


def increment_usage(db: Session, question_ids: Iterable[int]) -> int:
    """
    Add one to usage_count for each id. Does not commit: the caller commits it
    together with the test insert.

    Returns:
        Number of rows updated
    """
    ids = sorted(set(question_ids))
    if not ids:
        return 0
    return (
        db.query(Question)
        .filter(Question.id.in_(ids))
        .update({Question.usage_count: Question.usage_count + 1}, synchronize_session=False)
    )


def collect_used_question_ids(items: List[dict]) -> List[int]:
    """Deduplicated question ids referenced by a test's items."""
    return sorted({item["question_id"] for item in items})
