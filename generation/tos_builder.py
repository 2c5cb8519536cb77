"""
TOS Builder

Turns a blueprint configuration (topics with weights, Bloom percentage split,
total item count) into the topic × Bloom distribution matrix:

    {topic: {bloom_level: [item numbers]}}

Quota per cell = weight / Σweights × pct / 100 × total_items.

Remainder policy (deterministic):
  1. Every cell gets floor(quota).
  2. Row (topic) and column (Bloom level) targets are fixed by largest
     remainder over their exact totals.
  3. Leftover items go one per cell, visiting cells by (larger fractional
     part, larger topic weight, earlier topic, earlier Bloom level) and
     bumping a cell only while its topic and its level are both under target.
  4. When that greedy pass stalls, bumps are rerouted along augmenting paths
     (topic -> level -> topic ...) until every topic and level total meets
     its target. Only if no path exists (logged) does the leftover go to the
     remaining cells in the step-3 order.

Numbering is topic-major, Bloom-minor, contiguous from 1.
"""

import logging
import math
from collections import deque
from typing import Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from auth.security import UserContext
from database.models import BLOOM_ORDER, BLOOM_TO_DIFFICULTY, GeneratedTest, TOSBlueprint
from database.normalize import normalise_bloom, normalise_difficulty
from database.schemas import TOSCreate
from services.errors import AuthorizationDenied, ConflictError, NotFoundError, ValidationFailure

log = logging.getLogger("generation.pipeline")

DEFAULT_BLOOM_DISTRIBUTION: Dict[str, float] = {
    "remember": 15,
    "understand": 15,
    "apply": 20,
    "analyze": 20,
    "evaluate": 15,
    "create": 15,
}

DIFFICULTY_ORDER = ["easy", "average", "difficult"]

_TOLERANCE = 1e-6


# ─── Validation ───────────────────────────────────────────────────────────────

def normalise_bloom_distribution(raw: Optional[Dict[str, float]]) -> Dict[str, float]:
    """Canonical six-level split; unnamed levels are 0. Raises ValidationFailure."""
    if raw is None:
        return dict(DEFAULT_BLOOM_DISTRIBUTION)
    split = {level: 0.0 for level in BLOOM_ORDER}
    for key, pct in raw.items():
        level = normalise_bloom(key)
        if level is None:
            raise ValidationFailure(f"Unknown Bloom level '{key}' in bloom_distribution")
        if pct is None or pct < 0:
            raise ValidationFailure(f"Bloom percentage for '{key}' must be >= 0, got {pct}")
        split[level] += float(pct)
    total = sum(split.values())
    if abs(total - 100) > _TOLERANCE:
        raise ValidationFailure(f"Bloom percentages must sum to 100, got {total:g}")
    return split


def difficulty_bands(bloom_split: Dict[str, float]) -> Dict[str, float]:
    """Collapse the six-level split to easy / average / difficult."""
    bands = {band: 0.0 for band in DIFFICULTY_ORDER}
    for level, pct in bloom_split.items():
        bands[BLOOM_TO_DIFFICULTY[level]] += pct
    return bands


def check_difficulty_split(bloom_split: Dict[str, float], requested: Optional[Dict[str, float]]) -> Dict[str, float]:
    bands = difficulty_bands(bloom_split)
    if abs(sum(bands.values()) - 100) > _TOLERANCE:
        raise ValidationFailure(f"Easy/Average/Difficult must sum to 100, got {sum(bands.values()):g}")
    if requested is None:
        return bands

    wanted = {}
    for key, pct in requested.items():
        band = normalise_difficulty(key)
        if band is None:
            raise ValidationFailure(f"Unknown difficulty band '{key}' in difficulty_split")
        wanted[band] = wanted.get(band, 0.0) + float(pct)
    if abs(sum(wanted.values()) - 100) > _TOLERANCE:
        raise ValidationFailure(f"difficulty_split must sum to 100, got {sum(wanted.values()):g}")
    for band in DIFFICULTY_ORDER:
        if abs(wanted.get(band, 0.0) - bands[band]) > 0.01:
            raise ValidationFailure(
                f"difficulty_split {band}={wanted.get(band, 0.0):g} does not match the Bloom split ({bands[band]:g})"
            )
    return bands


def validate_config(config: TOSCreate) -> Tuple[List[dict], Dict[str, float]]:
    """Returns (topics, bloom_split) in canonical form or raises ValidationFailure."""
    if config.total_items < 1:
        raise ValidationFailure(f"total_items must be at least 1, got {config.total_items}")
    if not config.topics:
        raise ValidationFailure("A TOS needs at least one topic")

    topics, seen = [], set()
    for t in config.topics:
        name = t.name.strip()
        if not name:
            raise ValidationFailure("Topic names cannot be blank")
        if name.lower() in seen:
            raise ValidationFailure(f"Duplicate topic '{name}'")
        if not (t.weight > 0) or math.isinf(t.weight):
            raise ValidationFailure(f"Topic '{name}' weight must be positive, got {t.weight}")
        seen.add(name.lower())
        topics.append({"name": name, "weight": float(t.weight)})

    bloom_split = normalise_bloom_distribution(config.bloom_distribution)
    check_difficulty_split(bloom_split, config.difficulty_split)
    return topics, bloom_split


# ─── Distribution ─────────────────────────────────────────────────────────────

def _largest_remainder(exact: List[float], total: int) -> List[int]:
    """Integer apportionment of total; ties go to the earlier entry."""
    counts = [math.floor(x + _TOLERANCE) for x in exact]
    order = sorted(range(len(exact)), key=lambda i: (-(exact[i] - counts[i]), i))
    for i in order[: total - sum(counts)]:
        counts[i] += 1
    return counts


def _reroute(
    eligible: set,
    bumped: set,
    row_short: List[int],
    col_short: List[int],
) -> Optional[List[Tuple[str, Tuple[int, int]]]]:
    """
    Shortest topic → level → topic → ... → level path that frees one more item:
    it starts at a topic under target, ends at a level under target, adds
    unbumped cells and takes back bumped ones along the way.
    Returns [("add" | "drop", cell), ...] or None when no such path exists.
    """
    parent = {("t", t): None for t, short in enumerate(row_short) if short > 0}
    queue = deque(parent)
    while queue:
        node = queue.popleft()
        kind, i = node
        if kind == "t":
            steps = [(("l", l), ("add", (i, l))) for l in range(len(col_short))
                     if (i, l) in eligible and (i, l) not in bumped]
        else:
            steps = [(("t", t), ("drop", (t, i))) for t in range(len(row_short)) if (t, i) in bumped]
        for nxt, move in steps:
            if nxt in parent:
                continue
            parent[nxt] = (node, move)
            if nxt[0] == "l" and col_short[nxt[1]] > 0:
                path = []
                while parent[nxt] is not None:
                    nxt, move = parent[nxt]
                    path.append(move)
                return path
            queue.append(nxt)
    return None


def compute_counts(topics: List[dict], bloom_split: Dict[str, float], total_items: int) -> List[List[int]]:
    """Integer item count per (topic, level) cell, summing to total_items exactly."""
    total_weight = sum(t["weight"] for t in topics)
    exact = [
        [t["weight"] / total_weight * bloom_split[level] / 100 * total_items for level in BLOOM_ORDER]
        for t in topics
    ]
    counts = [[math.floor(q + _TOLERANCE) for q in row] for row in exact]

    row_target = _largest_remainder([sum(row) for row in exact], total_items)
    col_target = _largest_remainder(
        [sum(exact[t][l] for t in range(len(topics))) for l in range(len(BLOOM_ORDER))], total_items,
    )
    row_short = [row_target[t] - sum(counts[t]) for t in range(len(topics))]
    col_short = [col_target[l] - sum(row[l] for row in counts) for l in range(len(BLOOM_ORDER))]

    cells = sorted(
        ((t, l) for t in range(len(topics)) for l in range(len(BLOOM_ORDER))),
        key=lambda c: (-(exact[c[0]][c[1]] - counts[c[0]][c[1]]), -topics[c[0]]["weight"], c[0], c[1]),
    )
    eligible = {(t, l) for t, l in cells if exact[t][l] - counts[t][l] > _TOLERANCE}
    remaining = total_items - sum(map(sum, counts))
    bumped = set()

    for t, l in cells:
        if remaining == 0:
            break
        if (t, l) in eligible and row_short[t] > 0 and col_short[l] > 0:
            bumped.add((t, l))
            row_short[t] -= 1
            col_short[l] -= 1
            remaining -= 1

    while remaining > 0:
        path = _reroute(eligible, bumped, row_short, col_short)
        if path is None:
            break
        for move, cell in path:
            if move == "add":
                bumped.add(cell)
            else:
                bumped.discard(cell)
        row_short[path[-1][1][0]] -= 1
        col_short[path[0][1][1]] -= 1
        remaining -= 1

    if remaining:
        log.warning(f"[TOS] topic/level targets not reachable for {total_items} items, spreading {remaining} leftover item(s)")
    for t, l in cells:
        if remaining == 0:
            break
        if (t, l) not in bumped:
            bumped.add((t, l))
            remaining -= 1

    for t, l in bumped:
        counts[t][l] += 1
    return counts


def compute_distribution(topics: List[dict], bloom_split: Dict[str, float], total_items: int) -> Dict[str, Dict[str, List[int]]]:
    counts = compute_counts(topics, bloom_split, total_items)
    distribution: Dict[str, Dict[str, List[int]]] = {}
    next_item = 1
    for t, topic in enumerate(topics):
        row = {}
        for l, level in enumerate(BLOOM_ORDER):
            row[level] = list(range(next_item, next_item + counts[t][l]))
            next_item += counts[t][l]
        distribution[topic["name"]] = row
    check_numbering(distribution, total_items)
    return distribution


def check_numbering(distribution: Dict[str, Dict[str, List[int]]], total_items: int) -> None:
    """Item numbers across all cells must be exactly 1..total_items, no gaps, no overlaps."""
    numbers = [n for row in distribution.values() for cell in row.values() for n in cell]
    if len(numbers) != len(set(numbers)):
        raise ValidationFailure("Item numbering has overlapping item numbers")
    if sorted(numbers) != list(range(1, total_items + 1)):
        missing = sorted(set(range(1, total_items + 1)) - set(numbers))
        extra = sorted(set(numbers) - set(range(1, total_items + 1)))
        raise ValidationFailure(f"Item numbering is not 1..{total_items} (missing {missing[:10]}, unexpected {extra[:10]})")


def iter_cells(distribution: Dict[str, Dict[str, List[int]]]):
    """(topic, bloom_level, item numbers) in topic-major, Bloom-minor order."""
    for topic, row in distribution.items():
        for level in BLOOM_ORDER:
            items = row.get(level, [])
            if items:
                yield topic, level, items


# ─── Summary ──────────────────────────────────────────────────────────────────

def format_item_numbers(items: List[int]) -> str:
    """[1,2,3,4,5,6,7,9] → "(1-7, 9)"; [] → "-"."""
    if not items:
        return "-"
    if len(items) == 1:
        return str(items[0])
    groups = []
    start = end = items[0]
    for n in items[1:]:
        if n == end + 1:
            end = n
        else:
            groups.append(str(start) if start == end else f"{start}-{end}")
            start = end = n
    groups.append(str(start) if start == end else f"{start}-{end}")
    return f"({', '.join(groups)})"


def matrix_summary(distribution: Dict[str, Dict[str, List[int]]], bloom_split: Dict[str, float]) -> dict:
    topics = {}
    level_totals = {level: 0 for level in BLOOM_ORDER}
    for topic, row in distribution.items():
        counts = {level: len(row.get(level, [])) for level in BLOOM_ORDER}
        for level, n in counts.items():
            level_totals[level] += n
        topics[topic] = {
            "counts": counts,
            "items": {level: format_item_numbers(row.get(level, [])) for level in BLOOM_ORDER},
            "total": sum(counts.values()),
        }
    difficulty_totals = {band: 0 for band in DIFFICULTY_ORDER}
    for level, n in level_totals.items():
        difficulty_totals[BLOOM_TO_DIFFICULTY[level]] += n
    return {
        "topics": topics,
        "level_totals": level_totals,
        "difficulty_totals": difficulty_totals,
        "difficulty_percentages": difficulty_bands(bloom_split),
        "grand_total": sum(level_totals.values()),
    }


# ─── Persistence ──────────────────────────────────────────────────────────────

def is_locked(db: Session, tos_id: int) -> bool:
    return db.query(GeneratedTest.id).filter(GeneratedTest.tos_id == tos_id).first() is not None


def to_response(db: Session, blueprint: TOSBlueprint) -> dict:
    return {
        "id": blueprint.id,
        "title": blueprint.title,
        "subject_no": blueprint.subject_no,
        "course": blueprint.course,
        "description": blueprint.description,
        "exam_period": blueprint.exam_period,
        "school_year": blueprint.school_year,
        "total_items": blueprint.total_items,
        "topics": blueprint.topics,
        "bloom_distribution": blueprint.bloom_distribution,
        "distribution": blueprint.distribution,
        "created_by": blueprint.created_by,
        "created_at": blueprint.created_at,
        "summary": matrix_summary(blueprint.distribution, blueprint.bloom_distribution),
        "locked": is_locked(db, blueprint.id),
    }


def _apply_config(blueprint: TOSBlueprint, config: TOSCreate) -> None:
    topics, bloom_split = validate_config(config)
    blueprint.title = config.title
    blueprint.subject_no = config.subject_no
    blueprint.course = config.course
    blueprint.description = config.description
    blueprint.exam_period = config.exam_period
    blueprint.school_year = config.school_year
    blueprint.total_items = config.total_items
    blueprint.topics = topics
    blueprint.bloom_distribution = bloom_split
    blueprint.distribution = compute_distribution(topics, bloom_split, config.total_items)


def create_blueprint(db: Session, ctx: UserContext, config: TOSCreate) -> TOSBlueprint:
    blueprint = TOSBlueprint(created_by=ctx.user_id)
    _apply_config(blueprint, config)
    db.add(blueprint)
    db.commit()
    db.refresh(blueprint)
    log.info("TOS %s created: %d items over %d topics", blueprint.id, blueprint.total_items, len(blueprint.topics))
    return blueprint


def get_blueprint(db: Session, ctx: Optional[UserContext], tos_id: int) -> TOSBlueprint:
    """Load a blueprint; ctx=None skips the ownership check (internal callers)."""
    blueprint = db.query(TOSBlueprint).filter(TOSBlueprint.id == tos_id).first()
    if blueprint is None:
        raise NotFoundError("TOS blueprint", tos_id)
    if ctx is not None and not ctx.owns(blueprint.created_by):
        raise AuthorizationDenied(f"Not allowed to access TOS blueprint {tos_id}")
    return blueprint


def list_blueprints(db: Session, ctx: UserContext, skip: int = 0, limit: int = 50) -> List[TOSBlueprint]:
    q = db.query(TOSBlueprint)
    if not ctx.is_admin:
        q = q.filter(TOSBlueprint.created_by == ctx.user_id)
    return q.order_by(TOSBlueprint.created_at.desc(), TOSBlueprint.id.desc()).offset(skip).limit(limit).all()


def update_blueprint(db: Session, ctx: UserContext, tos_id: int, config: TOSCreate) -> TOSBlueprint:
    blueprint = get_blueprint(db, ctx, tos_id)
    if is_locked(db, tos_id):
        raise ConflictError(f"TOS blueprint {tos_id} already has a generated test and cannot be changed")
    _apply_config(blueprint, config)
    db.commit()
    db.refresh(blueprint)
    return blueprint


def delete_blueprint(db: Session, ctx: UserContext, tos_id: int) -> None:
    blueprint = get_blueprint(db, ctx, tos_id)
    if is_locked(db, tos_id):
        raise ConflictError(f"TOS blueprint {tos_id} already has a generated test and cannot be deleted")
    db.delete(blueprint)
    db.commit()
    log.info("TOS %s deleted", tos_id)
