"""
Test Generator

Fills a TOS blueprint with questions and stores the result as a GeneratedTest.

Steps:
1. Blueprint        — load + ownership check
2. Selection        — per cell: approved, not deleted, topic + Bloom, least-used first,
                      skipping candidates redundant with anything already picked
3. Authoring        — draft the remainder (AI → templates) when author_missing
4. Inventory policy — partial: report unfilled item numbers; strict: fail, persist nothing
5. Persist          — re-read blueprint, insert drafts + test, bump usage counts, one commit
"""

import logging
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from auth.security import UserContext
from analysis.classifier import classify
from analysis.similarity import calculate_similarity
from database import crud
from database.models import ApprovalStatus, GeneratedTest, Question, TOSBlueprint
from database.schemas import QuestionCreate
from generation import tos_builder
from generation.exam_assembler import assemble_test
from generation.question_author import author_questions
from generation.schemas import CellPlan, GenerationOptions
from generation.usage_tracker import collect_used_question_ids, increment_usage
from services.errors import AuthorizationDenied, InsufficientInventory, NotFoundError

log = logging.getLogger("generation.pipeline")


# ─── Selection ─────────────────────────────────────────────────────────────────

def candidate_query(db: Session, topic: str, bloom_level: str):
    """Approved, not deleted, matching topic + Bloom level; least-used first, then oldest."""
    return (
        db.query(Question)
        .filter(
            Question.topic == topic,
            Question.bloom_level == bloom_level,
            Question.status == ApprovalStatus.APPROVED.value,
            Question.deleted.is_(False),
        )
        .order_by(Question.usage_count.asc(), Question.id.asc())
    )


def _is_redundant(text: str, picked_texts: List[str], threshold: float) -> bool:
    return any(calculate_similarity(text, other) >= threshold for other in picked_texts)


def select_for_cell(
    db: Session,
    topic: str,
    bloom_level: str,
    item_numbers: List[int],
    picked: Dict[int, str],
    options: GenerationOptions,
) -> CellPlan:
    """
    Pick up to len(item_numbers) bank questions for one cell.
    picked maps question id → text for everything already in this test and is updated in place.
    """
    plan = CellPlan(topic=topic, bloom_level=bloom_level, item_numbers=item_numbers)
    for question in candidate_query(db, topic, bloom_level):
        if len(plan.selected_ids) == len(item_numbers):
            break
        if question.id in picked:
            continue
        if options.check_redundancy and _is_redundant(
            question.question_text, list(picked.values()), options.redundancy_threshold,
        ):
            plan.skipped_redundant.append(question.id)
            continue
        plan.selected_ids.append(question.id)
        picked[question.id] = question.question_text
    return plan


# ─── Pipeline ──────────────────────────────────────────────────────────────────

async def generate_test(
    db: Session,
    ctx: UserContext,
    tos_id: int,
    options: Optional[GenerationOptions] = None,
) -> GeneratedTest:
    """
    Generate and store a test for a blueprint.

    Raises:
        NotFoundError: blueprint missing (at start or right before the insert); no row is written
        AuthorizationDenied: caller does not own the blueprint
        InsufficientInventory: fill_policy="strict" and some item could not be filled
    """
    options = options or GenerationOptions()
    log.info("=" * 60)
    log.info(f"[PIPELINE START] tos={tos_id}, user={ctx.user_id}, policy={options.fill_policy}")

    # ── STEP 1: Blueprint ─────────────────────────────────────────────────────
    blueprint = tos_builder.get_blueprint(db, ctx, tos_id)
    log.info(f"[STEP 1] OK — '{blueprint.title}', {blueprint.total_items} items, {len(blueprint.topics)} topics")

    # ── STEP 2: Selection ─────────────────────────────────────────────────────
    picked: Dict[int, str] = {}
    plans: List[CellPlan] = []
    for topic, bloom_level, item_numbers in tos_builder.iter_cells(blueprint.distribution):
        plan = select_for_cell(db, topic, bloom_level, item_numbers, picked, options)
        plans.append(plan)
        log.info(
            f"[STEP 2] {topic}/{bloom_level}: need {len(item_numbers)}, "
            f"picked {len(plan.selected_ids)}, skipped {len(plan.skipped_redundant)} redundant"
        )

    # ── STEP 3: Authoring ─────────────────────────────────────────────────────
    if options.author_missing:
        for plan in plans:
            if plan.needed <= 0:
                continue
            log.info(f"[STEP 3] {plan.topic}/{plan.bloom_level}: authoring {plan.needed} question(s)...")
            plan.drafts = await author_questions(
                plan.topic,
                plan.bloom_level,
                plan.needed,
                question_type=options.question_type.value,
                avoid_texts=list(picked.values()),
            )

    # ── STEP 4: Inventory policy ──────────────────────────────────────────────
    shortfall = [
        {"topic": p.topic, "bloom_level": p.bloom_level, "item_numbers": p.unfilled}
        for p in plans if p.unfilled
    ]
    if shortfall and options.fill_policy == "strict":
        missing = sum(len(s["item_numbers"]) for s in shortfall)
        log.warning(f"[STEP 4] FAILED — {missing} item(s) unfilled under strict policy")
        raise InsufficientInventory(
            f"TOS blueprint {tos_id}: {missing} of {blueprint.total_items} items could not be filled",
            shortfall,
        )
    warnings = [
        f"{s['topic']} / {s['bloom_level']}: items {tos_builder.format_item_numbers(s['item_numbers'])} left unfilled"
        for s in shortfall
    ]
    for w in warnings:
        log.warning(f"[STEP 4] {w}")

    # ── STEP 5: Persist ───────────────────────────────────────────────────────
    return _persist(db, ctx, tos_id, plans, options, shortfall, warnings)


def _persist(
    db: Session,
    ctx: UserContext,
    tos_id: int,
    plans: List[CellPlan],
    options: GenerationOptions,
    shortfall: List[dict],
    warnings: List[str],
) -> GeneratedTest:
    # Read-before-write; a delete landing after this check is an accepted gap
    blueprint = db.query(TOSBlueprint).filter(TOSBlueprint.id == tos_id).first()
    if blueprint is None:
        log.error(f"[STEP 5] FAILED — TOS blueprint {tos_id} disappeared before save")
        raise NotFoundError("TOS blueprint", tos_id)

    try:
        placements: List[Tuple[int, Question, str]] = []
        authored_ids = []
        for plan in plans:
            numbers = iter(plan.item_numbers)
            for qid in plan.selected_ids:
                placements.append((next(numbers), crud.get_question(db, qid), "bank"))
            for draft in plan.drafts:
                question = _persist_draft(db, ctx, draft)
                authored_ids.append(question.id)
                placements.append((next(numbers), question, question.created_by))

        assembled = assemble_test(placements, options.points_per_item)
        test = GeneratedTest(
            tos_id=blueprint.id,
            title=options.title or f"{blueprint.title} Test",
            subject_no=blueprint.subject_no,
            course=blueprint.course,
            exam_period=blueprint.exam_period,
            school_year=blueprint.school_year,
            items=assembled["items"],
            answer_key=assembled["answer_key"],
            total_points=assembled["total_points"],
            generation_metadata={
                "blueprint_total_items": blueprint.total_items,
                "filled_items": len(assembled["items"]),
                "fill_policy": options.fill_policy,
                "sources": _count_sources(assembled["items"]),
                "authored_question_ids": authored_ids,
                "skipped_redundant": sorted({qid for p in plans for qid in p.skipped_redundant}),
                "redundancy_threshold": options.redundancy_threshold if options.check_redundancy else None,
                "shortfall": shortfall,
                "warnings": warnings,
            },
            created_by=ctx.user_id,
        )
        db.add(test)
        increment_usage(db, collect_used_question_ids(assembled["items"]))
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(test)
    log.info(f"[STEP 5] Saved test_id={test.id}: {len(test.items)} items, {test.total_points:g} points")
    log.info("=" * 60)
    return test


def _persist_draft(db: Session, ctx: UserContext, draft: dict) -> Question:
    """Store an authored draft as a pending question flagged for review. Flushes, does not commit."""
    question = crud.create_question(db, QuestionCreate(**draft), ctx, commit=False)
    result = classify(question.question_text, {"question_type": question.question_type, "choices": question.choices})
    question.knowledge_dimension = result.knowledge_dimension
    question.classification_confidence = result.confidence
    question.quality_score = result.quality_score
    question.readability_score = result.readability_score
    question.needs_review = True
    return question


def _count_sources(items: List[dict]) -> Dict[str, int]:
    counts = {"bank": 0, "ai": 0, "template": 0}
    for item in items:
        counts[item["source"]] += 1
    return counts


# ─── Generated test CRUD ───────────────────────────────────────────────────────

def get_test(db: Session, ctx: Optional[UserContext], test_id: int) -> GeneratedTest:
    test = db.query(GeneratedTest).filter(GeneratedTest.id == test_id).first()
    if test is None:
        raise NotFoundError("Generated test", test_id)
    if ctx is not None and not ctx.owns(test.created_by):
        raise AuthorizationDenied(f"Not allowed to access generated test {test_id}")
    return test


def list_tests(db: Session, ctx: UserContext, tos_id: Optional[int] = None, skip: int = 0, limit: int = 50) -> List[GeneratedTest]:
    q = db.query(GeneratedTest)
    if not ctx.is_admin:
        q = q.filter(GeneratedTest.created_by == ctx.user_id)
    if tos_id is not None:
        q = q.filter(GeneratedTest.tos_id == tos_id)
    return q.order_by(GeneratedTest.created_at.desc(), GeneratedTest.id.desc()).offset(skip).limit(limit).all()


def delete_test(db: Session, ctx: UserContext, test_id: int) -> None:
    test = get_test(db, ctx, test_id)
    db.delete(test)
    db.commit()
    log.info(f"[DELETE] test_id={test_id}")
