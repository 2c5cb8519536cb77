"""
QualityMetric persistence.
Rows are added to the caller's session; committing is the caller's job so a
metric lands in the same transaction as the change it measures.
"""

from typing import List, Optional

from sqlalchemy.orm import Session

from database.models import QualityMetric


def record_metric(
    db: Session,
    entity_type: str,
    entity_id: Optional[int],
    characteristic: str,
    metric_name: str,
    value: float,
    unit: Optional[str] = None,
    measurement_method: Optional[str] = None,
    automated: bool = True,
) -> QualityMetric:
    metric = QualityMetric(
        entity_type=entity_type,
        entity_id=entity_id,
        characteristic=characteristic,
        metric_name=metric_name,
        value=float(value),
        unit=unit,
        measurement_method=measurement_method,
        automated=automated,
    )
    db.add(metric)
    return metric


def list_metrics(
    db: Session,
    metric_name: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    limit: int = 100,
) -> List[QualityMetric]:
    q = db.query(QualityMetric)
    if metric_name is not None:
        q = q.filter(QualityMetric.metric_name == metric_name)
    if entity_type is not None:
        q = q.filter(QualityMetric.entity_type == entity_type)
    if entity_id is not None:
        q = q.filter(QualityMetric.entity_id == entity_id)
    return q.order_by(QualityMetric.id.desc()).limit(limit).all()
