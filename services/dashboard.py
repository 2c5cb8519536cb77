"""
Dashboard and report statistics.
Teachers see their own tests; admins see everything. Question counts are bank-wide.
"""

from typing import Any, Dict

from sqlalchemy import func
from sqlalchemy.orm import Session

from auth.security import UserContext
from database.models import BLOOM_ORDER, ApprovalStatus, GeneratedTest, Question, TOSBlueprint


def _tests_query(db: Session, ctx: UserContext):
    q = db.query(GeneratedTest)
    if not ctx.is_admin:
        q = q.filter(GeneratedTest.created_by == ctx.user_id)
    return q


def _live_questions(db: Session):
    return db.query(Question).filter(Question.deleted.is_(False))


def teacher_stats(db: Session, ctx: UserContext) -> Dict[str, Any]:
    tests = _tests_query(db, ctx)
    recent = tests.order_by(GeneratedTest.created_at.desc(), GeneratedTest.id.desc()).limit(5).all()
    return {
        "total_tests": tests.count(),
        "recent_tests": [
            {
                "id": t.id,
                "title": t.title,
                "tos_id": t.tos_id,
                "total_items": len(t.items or []),
                "created_at": t.created_at,
            }
            for t in recent
        ],
        "total_questions": _live_questions(db).count(),
    }


def report_stats(db: Session, ctx: UserContext) -> Dict[str, Any]:
    """Coverage report: tests generated, questions per topic and Bloom level, approval breakdown."""
    topic_rows = (
        db.query(Question.topic, func.count(Question.id))
        .filter(Question.deleted.is_(False))
        .group_by(Question.topic)
        .order_by(Question.topic)
        .all()
    )
    bloom_rows = dict(
        db.query(Question.bloom_level, func.count(Question.id))
        .filter(Question.deleted.is_(False))
        .group_by(Question.bloom_level)
        .all()
    )
    status_rows = dict(
        db.query(Question.status, func.count(Question.id))
        .filter(Question.deleted.is_(False))
        .group_by(Question.status)
        .all()
    )

    blueprints = db.query(TOSBlueprint)
    if not ctx.is_admin:
        blueprints = blueprints.filter(TOSBlueprint.created_by == ctx.user_id)

    bloom_coverage = {level: bloom_rows.get(level, 0) for level in BLOOM_ORDER}
    if bloom_rows.get(None):
        bloom_coverage["unclassified"] = bloom_rows[None]

    return {
        "tests_generated": _tests_query(db, ctx).count(),
        "blueprints": blueprints.count(),
        "topic_coverage": {topic: count for topic, count in topic_rows},
        "bloom_coverage": bloom_coverage,
        "approval_breakdown": {s.value: status_rows.get(s.value, 0) for s in ApprovalStatus},
        "needs_review": _live_questions(db).filter(Question.needs_review.is_(True)).count(),
    }
