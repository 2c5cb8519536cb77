import asyncio

import pytest

from database.models import GeneratedTest, Question, TOSBlueprint
from database.schemas import TOSCreate
from generation import exam_generator, question_author, tos_builder
from generation.exam_generator import generate_test, get_test, list_tests, delete_test
from generation.question_author import author_questions, template_drafts
from generation.schemas import GenerationOptions
from services.errors import AuthorizationDenied, InsufficientInventory, NotFoundError

# 4 items over one topic: remember 1-2, understand 3-4
SPLIT = {"remember": 50, "understand": 50}


@pytest.fixture
def blueprint(db, ctx):
    return tos_builder.create_blueprint(db, ctx["teacher"], TOSCreate(
        title="Cells Quiz",
        course="Biology 101",
        total_items=4,
        topics=[{"name": "Cells", "weight": 1}],
        bloom_distribution=SPLIT,
    ))


@pytest.fixture
def stocked_bank(make_question):
    return [
        make_question("Define the cell membrane.", bloom_level="remember"),
        make_question("Name the organelle that stores DNA.", bloom_level="remember"),
        make_question("Explain how diffusion moves molecules across membranes.", bloom_level="understand"),
        make_question("Describe the role of ribosomes in protein synthesis.", bloom_level="understand"),
    ]


def _generate(db, ctx, tos_id, **options):
    return asyncio.run(generate_test(db, ctx, tos_id, GenerationOptions(**options)))


def test_full_bank_fills_every_item(db, ctx, blueprint, stocked_bank):
    test = _generate(db, ctx["teacher"], blueprint.id)

    assert [item["item_number"] for item in test.items] == [1, 2, 3, 4]
    assert [item["question_id"] for item in test.items] == [q.id for q in stocked_bank]
    assert {item["source"] for item in test.items} == {"bank"}
    assert test.total_points == 4.0
    assert test.title == "Cells Quiz Test"
    assert test.course == "Biology 101"
    assert test.answer_key[0] == {"item_number": 1, "question_id": stocked_bank[0].id, "question_type": "multiple_choice", "answer": "A"}
    assert test.generation_metadata["shortfall"] == []


def test_usage_counts_increment_with_the_insert(db, ctx, blueprint, stocked_bank):
    _generate(db, ctx["teacher"], blueprint.id)
    db.expire_all()
    assert [q.usage_count for q in stocked_bank] == [1, 1, 1, 1]


def test_least_used_questions_are_picked_first(db, ctx, blueprint, stocked_bank, make_question):
    extra = make_question("Identify the parts of a plant cell.", bloom_level="remember")
    stocked_bank[0].usage_count = 3
    db.commit()

    test = _generate(db, ctx["teacher"], blueprint.id)
    remember_ids = [item["question_id"] for item in test.items if item["bloom_level"] == "remember"]
    assert remember_ids == [stocked_bank[1].id, extra.id]


def test_pending_and_deleted_questions_are_not_selected(db, ctx, blueprint, make_question):
    from database import crud

    make_question("Define the cell wall.", bloom_level="remember", status="pending")
    gone = make_question("Define the nucleus.", bloom_level="remember")
    crud.soft_delete_question(db, ctx["admin"], gone.id)

    test = _generate(db, ctx["teacher"], blueprint.id, author_missing=False)
    assert test.items == []
    assert test.generation_metadata["filled_items"] == 0


def test_redundant_candidates_are_skipped(db, ctx, blueprint, make_question):
    first = make_question("Define the cell membrane.", bloom_level="remember")
    dup = make_question("Define the cell membrane!", bloom_level="remember")
    other = make_question("Name the organelle that stores DNA.", bloom_level="remember")

    test = _generate(db, ctx["teacher"], blueprint.id, author_missing=False)
    remember_ids = [item["question_id"] for item in test.items if item["bloom_level"] == "remember"]
    assert remember_ids == [first.id, other.id]
    assert test.generation_metadata["skipped_redundant"] == [dup.id]


def test_partial_policy_reports_unfilled_items(db, ctx, blueprint, make_question):
    make_question("Define the cell membrane.", bloom_level="remember")

    test = _generate(db, ctx["teacher"], blueprint.id, author_missing=False)
    assert [item["item_number"] for item in test.items] == [1]
    shortfall = test.generation_metadata["shortfall"]
    assert shortfall == [
        {"topic": "Cells", "bloom_level": "remember", "item_numbers": [2]},
        {"topic": "Cells", "bloom_level": "understand", "item_numbers": [3, 4]},
    ]
    assert test.generation_metadata["warnings"][1] == "Cells / understand: items (3-4) left unfilled"


def test_strict_policy_raises_and_persists_nothing(db, ctx, blueprint, make_question):
    q = make_question("Define the cell membrane.", bloom_level="remember")

    with pytest.raises(InsufficientInventory) as exc:
        _generate(db, ctx["teacher"], blueprint.id, author_missing=False, fill_policy="strict")

    assert len(exc.value.shortfall) == 2
    assert db.query(GeneratedTest).count() == 0
    db.expire_all()
    assert q.usage_count == 0


def test_template_fallback_authors_missing_items(db, ctx, blueprint, make_question):
    make_question("Define the cell membrane.", bloom_level="remember")

    test = _generate(db, ctx["teacher"], blueprint.id)
    assert [item["item_number"] for item in test.items] == [1, 2, 3, 4]
    assert test.generation_metadata["sources"] == {"bank": 1, "ai": 0, "template": 3}

    authored = db.query(Question).filter(Question.id.in_(test.generation_metadata["authored_question_ids"])).all()
    assert len(authored) == 3
    for q in authored:
        assert q.status == "pending"
        assert q.needs_review is True
        assert q.created_by == "template"
        assert q.question_type == "essay"
        assert q.topic == "Cells"
        assert q.usage_count == 1


def test_missing_blueprint_writes_nothing(db, ctx):
    with pytest.raises(NotFoundError):
        _generate(db, ctx["teacher"], 999)
    assert db.query(GeneratedTest).count() == 0


def test_blueprint_deleted_before_insert(db, ctx, blueprint, stocked_bank, monkeypatch):
    real_persist = exam_generator._persist

    def delete_then_persist(db_, ctx_, tos_id, *args):
        db_.query(TOSBlueprint).filter(TOSBlueprint.id == tos_id).delete()
        db_.commit()
        return real_persist(db_, ctx_, tos_id, *args)

    monkeypatch.setattr(exam_generator, "_persist", delete_then_persist)
    with pytest.raises(NotFoundError):
        _generate(db, ctx["teacher"], blueprint.id)

    assert db.query(GeneratedTest).count() == 0
    db.expire_all()
    assert all(q.usage_count == 0 for q in stocked_bank)


def test_other_teachers_cannot_generate_or_read(db, ctx, blueprint, stocked_bank):
    with pytest.raises(AuthorizationDenied):
        _generate(db, ctx["validator"], blueprint.id)

    test = _generate(db, ctx["teacher"], blueprint.id)
    with pytest.raises(AuthorizationDenied):
        get_test(db, ctx["validator"], test.id)
    assert get_test(db, ctx["admin"], test.id).id == test.id
    assert [t.id for t in list_tests(db, ctx["teacher"])] == [test.id]
    assert list_tests(db, ctx["validator"]) == []

    delete_test(db, ctx["teacher"], test.id)
    with pytest.raises(NotFoundError):
        get_test(db, ctx["teacher"], test.id)


def test_template_drafts_cycle_with_part_numbers():
    drafts = template_drafts("Genetics", "analyze", 4)
    assert len({d["question_text"] for d in drafts}) == 4
    assert drafts[3]["question_text"].endswith("(Part 2)")
    assert all(d["created_by"] == "template" and d["difficulty"] == "average" for d in drafts)


def test_author_questions_without_ai_uses_templates():
    drafts = asyncio.run(author_questions("Genetics", "create", 2))
    assert [d["created_by"] for d in drafts] == ["template", "template"]
    assert asyncio.run(author_questions("Genetics", "create", 0)) == []


def test_ai_drafts_are_always_pending(monkeypatch):
    async def fake_gpt(prompt, **kwargs):
        return ('[{"question_text": "Which organelle stores DNA?", "choices": {"A": "Nucleus", "B": "Ribosome"}, '
                '"correct_answer": "A", "status": "approved", "created_by": "human"}]')

    monkeypatch.setattr(question_author, "call_gpt", fake_gpt)
    drafts = asyncio.run(question_author.ai_drafts("Cells", "remember", 1, "multiple_choice", []))

    assert len(drafts) == 1
    assert drafts[0]["status"] == "pending"
    assert drafts[0]["created_by"] == "ai"
