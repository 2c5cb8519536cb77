import pytest

from database.models import BLOOM_ORDER
from database.schemas import TOSCreate
from generation import tos_builder
from generation.tos_builder import (
    compute_distribution, format_item_numbers, matrix_summary, validate_config,
)
from services.errors import AuthorizationDenied, ConflictError, NotFoundError, ValidationFailure


def _config(total_items=100, topics=(("Cells", 1), ("Genetics", 1)), **extra):
    return TOSCreate(
        title="Biology Midterm",
        total_items=total_items,
        topics=[{"name": n, "weight": w} for n, w in topics],
        **extra,
    )


def _all_numbers(distribution):
    return sorted(n for row in distribution.values() for cell in row.values() for n in cell)


def test_even_split_matches_worked_example():
    topics, split = validate_config(_config())
    dist = compute_distribution(topics, split, 100)
    counts = {t: {l: len(dist[t][l]) for l in BLOOM_ORDER} for t in dist}

    assert counts["Cells"] == {"remember": 8, "understand": 8, "apply": 10, "analyze": 10, "evaluate": 7, "create": 7}
    assert counts["Genetics"] == {"remember": 7, "understand": 7, "apply": 10, "analyze": 10, "evaluate": 8, "create": 8}
    assert dist["Cells"]["remember"] == list(range(1, 9))
    assert dist["Genetics"]["remember"][0] == 51


@pytest.mark.parametrize("total_items, topics", [
    (1, (("Only", 1),)),
    (7, (("A", 3), ("B", 2), ("C", 1))),
    (50, (("A", 40), ("B", 35), ("C", 25))),
    (33, (("A", 1.5), ("B", 2.5))),
])
def test_items_are_exactly_one_to_total(total_items, topics):
    t, split = validate_config(_config(total_items, topics))
    dist = compute_distribution(t, split, total_items)
    assert _all_numbers(dist) == list(range(1, total_items + 1))


@pytest.mark.parametrize("total_items, topics", [
    (12, (("A", 14), ("B", 14), ("C", 4))),
    (7, (("A", 3), ("B", 2), ("C", 1))),
    (33, (("A", 1.5), ("B", 2.5))),
])
def test_topic_and_level_totals_hit_their_apportioned_targets(total_items, topics):
    t, split = validate_config(_config(total_items, topics))
    counts = tos_builder.compute_counts(t, split, total_items)

    total_weight = sum(topic["weight"] for topic in t)
    topic_exact = [topic["weight"] / total_weight * total_items for topic in t]
    level_exact = [split[level] / 100 * total_items for level in BLOOM_ORDER]
    assert [sum(row) for row in counts] == tos_builder._largest_remainder(topic_exact, total_items)
    assert [sum(col) for col in zip(*counts)] == tos_builder._largest_remainder(level_exact, total_items)


def test_custom_bloom_distribution():
    config = _config(
        20, (("Cells", 1),),
        bloom_distribution={"remember": 50, "understand": 50},
    )
    topics, split = validate_config(config)
    dist = compute_distribution(topics, split, 20)
    assert dist["Cells"]["remember"] == list(range(1, 11))
    assert dist["Cells"]["understand"] == list(range(11, 21))
    assert dist["Cells"]["create"] == []


@pytest.mark.parametrize("config", [
    _config(bloom_distribution={"remember": 60, "understand": 30}),
    _config(bloom_distribution={"remember": 120, "understand": -20}),
    _config(bloom_distribution={"memorise": 100}),
    _config(topics=(("Cells", 1), ("cells", 2))),
    _config(topics=(("Cells", 0),)),
    _config(topics=()),
    _config(total_items=0),
    _config(difficulty_split={"easy": 40, "average": 30, "difficult": 30}),
])
def test_invalid_configs_are_rejected(config):
    with pytest.raises(ValidationFailure):
        validate_config(config)


def test_matching_difficulty_split_is_accepted():
    validate_config(_config(difficulty_split={"Easy": 30, "Medium": 40, "Hard": 30}))


def test_format_item_numbers():
    assert format_item_numbers([1, 2, 3, 4, 5, 6, 7, 9]) == "(1-7, 9)"
    assert format_item_numbers([4]) == "4"
    assert format_item_numbers([]) == "-"
    assert format_item_numbers([1, 3, 5]) == "(1, 3, 5)"


def test_matrix_summary_totals():
    topics, split = validate_config(_config())
    dist = compute_distribution(topics, split, 100)
    summary = matrix_summary(dist, split)
    assert summary["grand_total"] == 100
    assert summary["topics"]["Cells"]["total"] == 50
    assert summary["level_totals"]["apply"] == 20
    assert summary["difficulty_totals"] == {"easy": 30, "average": 40, "difficult": 30}
    assert summary["topics"]["Cells"]["items"]["remember"] == "(1-8)"


def test_blueprint_crud_and_ownership(db, ctx):
    bp = tos_builder.create_blueprint(db, ctx["teacher"], _config())
    assert bp.created_by == ctx["teacher"].user_id

    assert tos_builder.get_blueprint(db, ctx["admin"], bp.id).id == bp.id
    with pytest.raises(AuthorizationDenied):
        tos_builder.get_blueprint(db, ctx["validator"], bp.id)
    assert tos_builder.list_blueprints(db, ctx["validator"]) == []

    updated = tos_builder.update_blueprint(db, ctx["teacher"], bp.id, _config(total_items=40))
    assert _all_numbers(updated.distribution) == list(range(1, 41))

    tos_builder.delete_blueprint(db, ctx["teacher"], bp.id)
    with pytest.raises(NotFoundError):
        tos_builder.get_blueprint(db, ctx["teacher"], bp.id)


def test_blueprint_locked_once_a_test_exists(db, ctx):
    from database.models import GeneratedTest

    bp = tos_builder.create_blueprint(db, ctx["teacher"], _config(10))
    db.add(GeneratedTest(tos_id=bp.id, title="T", items=[], answer_key=[], created_by=ctx["teacher"].user_id))
    db.commit()

    assert tos_builder.to_response(db, bp)["locked"] is True
    with pytest.raises(ConflictError):
        tos_builder.update_blueprint(db, ctx["teacher"], bp.id, _config(12))
    with pytest.raises(ConflictError):
        tos_builder.delete_blueprint(db, ctx["teacher"], bp.id)
