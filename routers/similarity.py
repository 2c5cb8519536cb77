"""
Similarity router — /similarity
Endpoints:
  POST /similarity/score        — similarity of two texts
  POST /similarity/find         — stored questions similar to a text
  POST /similarity/redundancy   — is a draft a near-duplicate?
  POST /similarity/cluster      — group a set of stored questions
  POST /similarity/analyze-bank — whole-bank redundancy scan (O(n²))
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from analysis.similarity import (
    analyze_question_bank, calculate_similarity, cluster_questions,
    detect_redundancy, find_similar_questions, store_matches,
)
from auth.security import UserContext
from database import crud
from database.database import get_db
from database.models import Question
from database.schemas import BankAnalysisRequest, ClusterRequest, RedundancyRequest, SimilarQuestionsRequest
from routers.auth import get_user_context

router = APIRouter(prefix="/similarity", tags=["similarity"])


class ScoreRequest(BaseModel):
    text_a: str = Field(..., min_length=1)
    text_b: str = Field(..., min_length=1)
    algorithm: Optional[str] = None


def _texts_for(db: Session, question_ids: Optional[List[int]]):
    """(id, text) pairs for the given ids, or for the whole live bank when ids is None."""
    if question_ids is None:
        rows = (
            db.query(Question.id, Question.question_text)
            .filter(Question.deleted.is_(False))
            .order_by(Question.id)
            .all()
        )
        return [(qid, text) for qid, text in rows]
    return [(qid, crud.get_question(db, qid).question_text) for qid in dict.fromkeys(question_ids)]


@router.post("/score")
def score(request: ScoreRequest, ctx: UserContext = Depends(get_user_context)):
    value = calculate_similarity(request.text_a, request.text_b, request.algorithm)
    return {"similarity": value}


@router.post("/find")
def find_similar(
    request: SimilarQuestionsRequest,
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(get_user_context),
):
    if request.store_results and request.source_question_id is None:
        raise HTTPException(status_code=400, detail="store_results requires source_question_id")
    exclude = list(request.exclude_ids)
    if request.source_question_id is not None:
        crud.get_question(db, request.source_question_id)
        exclude.append(request.source_question_id)

    matches = find_similar_questions(db, request.text, request.threshold, exclude_ids=exclude)
    stored = store_matches(db, request.source_question_id, matches) if request.store_results else 0
    return {"matches": matches, "count": len(matches), "stored": stored}


@router.post("/redundancy")
def check_redundancy(
    request: RedundancyRequest,
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(get_user_context),
):
    existing = _texts_for(db, request.existing_question_ids)
    return detect_redundancy(request.text, existing, request.threshold)


@router.post("/cluster")
def cluster(
    request: ClusterRequest,
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(get_user_context),
):
    items = _texts_for(db, request.question_ids)
    clusters = cluster_questions(items, request.threshold)
    return {"clusters": clusters, "total_clusters": len(clusters)}


@router.post("/analyze-bank")
def analyze_bank(
    request: BankAnalysisRequest,
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(get_user_context),
):
    return analyze_question_bank(db, request.topic, request.threshold, store_results=request.store_results)
