"""
Classification router — /classification
Ad-hoc classification of unsaved text, batch re-classification of stored questions,
and read access to the recorded quality metrics.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from analysis.classifier import batch_classify, classify_with_verifier
from analysis.quality_metrics import list_metrics
from auth.security import UserContext
from database.database import get_db
from database.schemas import BatchClassifyRequest, Classification, ClassifyTextRequest
from routers.auth import get_user_context, require_role

router = APIRouter(prefix="/classification", tags=["classification"])


@router.post("/classify", response_model=Classification)
async def classify_text(
    request: ClassifyTextRequest,
    ctx: UserContext = Depends(get_user_context),
):
    """Classify text without storing anything (question editor preview)."""
    metadata = {"question_type": request.question_type, "topic": request.topic}
    return await classify_with_verifier(request.text, metadata)


@router.post("/batch")
async def classify_batch(
    request: BatchClassifyRequest,
    check_similarity: bool = False,
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(require_role("admin", "validator")),
):
    results = await batch_classify(db, request.question_ids, check_similarity=check_similarity)
    return {
        "total": len(results),
        "succeeded": sum(1 for r in results if r["ok"]),
        "results": results,
    }


@router.get("/metrics")
def get_metrics(
    metric_name: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(get_user_context),
) -> List[dict]:
    return [
        {
            "id": m.id,
            "entity_type": m.entity_type,
            "entity_id": m.entity_id,
            "characteristic": m.characteristic,
            "metric_name": m.metric_name,
            "value": m.value,
            "unit": m.unit,
            "measurement_method": m.measurement_method,
            "automated": m.automated,
            "created_at": m.created_at,
        }
        for m in list_metrics(db, metric_name, entity_type, entity_id, limit)
    ]
