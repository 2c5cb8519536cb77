"""
Similarity Analyzer

Pairwise question similarity, threshold search over the bank, greedy
clustering, redundancy checks and whole-bank analysis.

Algorithms (SIMILARITY_ALGORITHM):
  token_cosine — term-frequency cosine over normalised, stop-word-filtered tokens (local, default)
  embedding    — cosine over OpenAI embeddings

Every score is in [0, 1] and symmetric. Flagging always compares with >=, so
raising a threshold can only shrink the flagged set.
"""

import logging
import math
import re
from collections import Counter
from itertools import combinations
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from config import (
    LOW_COHERENCE_THRESHOLD,
    REDUNDANCY_THRESHOLD,
    SIMILARITY_ALGORITHM,
    SIMILARITY_BANK_WARN_SIZE,
    SIMILARITY_THRESHOLD,
)
from database.models import Question, QuestionSimilarity
from analysis.quality_metrics import record_metric
from services.errors import ValidationFailure

log = logging.getLogger(__name__)

ALGORITHMS = ("token_cosine", "embedding")

STOPWORDS = {
    "a", "an", "the", "and", "or", "of", "to", "in", "on", "for", "with", "by", "at", "from",
    "is", "are", "was", "were", "be", "been", "it", "its", "this", "that", "these", "those",
    "as", "which", "what", "following", "does", "do", "did", "can", "will", "would", "your",
}

_TOKEN = re.compile(r"[a-z0-9]+")

QuestionText = Tuple[int, str]


# ─── Scoring ──────────────────────────────────────────────────────────────────

def tokenize(text: str) -> List[str]:
    tokens = _TOKEN.findall((text or "").lower())
    content = [t for t in tokens if t not in STOPWORDS]
    return content or tokens


def _cosine(a: Sequence[float], b: Sequence[float]) -> float:
    if not a or not b:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b))
    na = math.sqrt(sum(x * x for x in a))
    nb = math.sqrt(sum(y * y for y in b))
    return dot / (na * nb) if na and nb else 0.0


def token_cosine(a: str, b: str) -> float:
    ca, cb = Counter(tokenize(a)), Counter(tokenize(b))
    if not ca or not cb:
        return 0.0
    dot = sum(ca[t] * cb[t] for t in ca.keys() & cb.keys())
    na = math.sqrt(sum(v * v for v in ca.values()))
    nb = math.sqrt(sum(v * v for v in cb.values()))
    return dot / (na * nb)


def _check_algorithm(algorithm: str) -> str:
    if algorithm not in ALGORITHMS:
        raise ValidationFailure(f"Unknown similarity algorithm '{algorithm}'; expected one of {ALGORITHMS}")
    return algorithm


def calculate_similarity(a: str, b: str, algorithm: Optional[str] = None) -> float:
    """Similarity of two question texts, rounded to 4 places and clamped to [0, 1]."""
    algorithm = _check_algorithm(algorithm or SIMILARITY_ALGORITHM)
    if algorithm == "embedding":
        from analysis.embeddings import get_embedding_generator

        gen = get_embedding_generator()
        score = _cosine(gen.generate_embedding(a), gen.generate_embedding(b))
    else:
        score = token_cosine(a, b)
    return round(min(max(score, 0.0), 1.0), 4)


def pairwise_similarities(items: Sequence[QuestionText], algorithm: Optional[str] = None) -> Dict[Tuple[int, int], float]:
    """Score every unordered pair once. Keys are (lower id, higher id)."""
    algorithm = _check_algorithm(algorithm or SIMILARITY_ALGORITHM)
    if algorithm == "embedding":
        from analysis.embeddings import get_embedding_generator

        get_embedding_generator().generate_embeddings_batch([text for _, text in items])
    scores = {}
    for (id1, t1), (id2, t2) in combinations(items, 2):
        scores[_pair_key(id1, id2)] = calculate_similarity(t1, t2, algorithm)
    return scores


def _pair_key(id1: int, id2: int) -> Tuple[int, int]:
    return (id1, id2) if id1 <= id2 else (id2, id1)


# ─── Search & persistence ─────────────────────────────────────────────────────

def find_similar_questions(
    db: Session,
    text: str,
    threshold: Optional[float] = None,
    exclude_ids: Iterable[int] = (),
    algorithm: Optional[str] = None,
) -> List[dict]:
    """
    Every non-deleted stored question scoring >= threshold against text,
    sorted by descending similarity (then id).
    """
    threshold = SIMILARITY_THRESHOLD if threshold is None else threshold
    algorithm = _check_algorithm(algorithm or SIMILARITY_ALGORITHM)
    excluded = set(exclude_ids)

    rows = (
        db.query(Question.id, Question.question_text, Question.topic, Question.bloom_level)
        .filter(Question.deleted.is_(False))
        .all()
    )
    matches = []
    for qid, qtext, topic, bloom in rows:
        if qid in excluded:
            continue
        score = calculate_similarity(text, qtext, algorithm)
        if score >= threshold:
            matches.append({
                "question_id": qid,
                "question_text": qtext,
                "topic": topic,
                "bloom_level": bloom,
                "similarity": score,
                "algorithm": algorithm,
            })
    matches.sort(key=lambda m: (-m["similarity"], m["question_id"]))
    return matches


def store_similarity(db: Session, id1: int, id2: int, score: float, algorithm: str) -> QuestionSimilarity:
    """Upsert one pair in canonical order (lower id first). Caller commits."""
    low, high = _pair_key(id1, id2)
    row = (
        db.query(QuestionSimilarity)
        .filter(
            QuestionSimilarity.question1_id == low,
            QuestionSimilarity.question2_id == high,
            QuestionSimilarity.algorithm_used == algorithm,
        )
        .first()
    )
    if row is None:
        row = QuestionSimilarity(question1_id=low, question2_id=high, algorithm_used=algorithm)
        db.add(row)
    row.similarity_score = score
    return row


def store_matches(db: Session, source_question_id: int, matches: List[dict]) -> int:
    stored = 0
    for m in matches:
        if m["question_id"] == source_question_id:
            continue
        store_similarity(db, source_question_id, m["question_id"], m["similarity"], m["algorithm"])
        stored += 1
    db.commit()
    return stored


# ─── Clustering & redundancy ──────────────────────────────────────────────────

def cluster_questions(
    items: Sequence[QuestionText],
    threshold: Optional[float] = None,
    algorithm: Optional[str] = None,
    scores: Optional[Dict[Tuple[int, int], float]] = None,
) -> List[dict]:
    """
    Greedy clustering: each unassigned question seeds a cluster and pulls in
    every later unassigned question scoring >= threshold against the seed.
    coherence is the mean pairwise similarity inside the cluster (1.0 for singletons).
    """
    threshold = SIMILARITY_THRESHOLD if threshold is None else threshold
    if scores is None:
        scores = pairwise_similarities(items, algorithm)

    assigned = set()
    clusters = []
    for i, (seed_id, _) in enumerate(items):
        if seed_id in assigned:
            continue
        members = [seed_id]
        assigned.add(seed_id)
        for other_id, _ in items[i + 1:]:
            if other_id in assigned:
                continue
            if scores.get(_pair_key(seed_id, other_id), 0.0) >= threshold:
                members.append(other_id)
                assigned.add(other_id)

        if len(members) == 1:
            coherence = 1.0
        else:
            pair_scores = [scores.get(_pair_key(a, b), 0.0) for a, b in combinations(members, 2)]
            coherence = round(sum(pair_scores) / len(pair_scores), 4)
        clusters.append({
            "cluster_id": len(clusters) + 1,
            "question_ids": members,
            "size": len(members),
            "coherence": coherence,
            "low_coherence": coherence < LOW_COHERENCE_THRESHOLD,
        })
    return clusters


def detect_redundancy(
    new_text: str,
    existing: Sequence[QuestionText],
    threshold: Optional[float] = None,
    algorithm: Optional[str] = None,
) -> dict:
    """Is new_text a near-duplicate of any existing question?"""
    threshold = REDUNDANCY_THRESHOLD if threshold is None else threshold
    similar = []
    for qid, text in existing:
        score = calculate_similarity(new_text, text, algorithm)
        if score >= threshold:
            similar.append({"question_id": qid, "question_text": text, "similarity": score})
    similar.sort(key=lambda s: (-s["similarity"], s["question_id"]))

    if similar:
        ids = ", ".join(str(s["question_id"]) for s in similar[:5])
        recommendation = (
            f"Highly similar to existing question(s) {ids}; revise the wording or reuse the existing item"
        )
    else:
        recommendation = "No redundancy detected"
    return {"is_redundant": bool(similar), "similar_questions": similar, "recommendation": recommendation}


# ─── Whole-bank analysis ──────────────────────────────────────────────────────

def analyze_question_bank(
    db: Session,
    topic: Optional[str] = None,
    threshold: Optional[float] = None,
    store_results: bool = True,
    algorithm: Optional[str] = None,
) -> dict:
    """
    Pairwise redundancy scan + clustering over the (optionally topic-filtered)
    non-deleted bank. Quadratic in bank size.
    """
    threshold = SIMILARITY_THRESHOLD if threshold is None else threshold
    algorithm = _check_algorithm(algorithm or SIMILARITY_ALGORITHM)

    q = db.query(Question.id, Question.question_text).filter(Question.deleted.is_(False))
    if topic is not None:
        q = q.filter(Question.topic == topic)
    items = [(qid, text) for qid, text in q.order_by(Question.id).all()]

    if len(items) > SIMILARITY_BANK_WARN_SIZE:
        log.warning(
            "Bank analysis over %d questions (%d pairs); this is O(n^2) and may be slow",
            len(items), len(items) * (len(items) - 1) // 2,
        )

    scores = pairwise_similarities(items, algorithm)
    similar_pairs = [
        {"question1_id": a, "question2_id": b, "similarity": s}
        for (a, b), s in sorted(scores.items())
        if s >= threshold
    ]
    clusters = cluster_questions(items, threshold, algorithm, scores=scores)

    recommendations = []
    if similar_pairs:
        recommendations.append(f"Found {len(similar_pairs)} potentially redundant question pairs")
        recommendations.append("Review similar questions for consolidation opportunities")
    low = [c for c in clusters if c["low_coherence"]]
    if low:
        recommendations.append(f"{len(low)} question clusters have low coherence")

    if store_results:
        for pair in similar_pairs:
            store_similarity(db, pair["question1_id"], pair["question2_id"], pair["similarity"], algorithm)
        for cluster in clusters:
            if cluster["size"] > 1:
                record_metric(
                    db, "question_cluster", cluster["question_ids"][0], "clustering", "cluster_coherence",
                    cluster["coherence"], unit="ratio", measurement_method=algorithm,
                )
        db.commit()

    log.info(
        "Bank analysis: %d questions, %d similar pairs, %d clusters",
        len(items), len(similar_pairs), len(clusters),
    )
    return {
        "questions_analyzed": len(items),
        "duplicates_found": len(similar_pairs),
        "similar_pairs": similar_pairs,
        "clusters": clusters,
        "recommendations": recommendations,
    }
