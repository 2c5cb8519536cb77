"""
Background quality metrics.

Aggregate bank statistics are written as QualityMetric rows at most once per
METRICS_MIN_INTERVAL_MINUTES, however often collect_if_due() is called.
"""

import asyncio
import logging
import time
from typing import Dict, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from analysis.quality_metrics import record_metric
from config import METRICS_MIN_INTERVAL_MINUTES
from database.models import ApprovalStatus, GeneratedTest, Question

logger = logging.getLogger(__name__)


class MetricsCollector:
    """In-process interval guard around the bank metric snapshot."""

    def __init__(self, min_interval_minutes: int = METRICS_MIN_INTERVAL_MINUTES):
        self.min_interval_seconds = min_interval_minutes * 60
        self._last_run: Optional[float] = None

    def is_due(self, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return self._last_run is None or now - self._last_run >= self.min_interval_seconds

    def reset(self) -> None:
        self._last_run = None

    def collect(self, db: Session) -> Dict[str, float]:
        """Snapshot the bank and write one metric row per value."""
        live = db.query(Question).filter(Question.deleted.is_(False))
        bank_size = live.count()
        approved = live.filter(Question.status == ApprovalStatus.APPROVED.value).count()
        flagged = live.filter(Question.needs_review.is_(True)).count()
        avg_quality = db.query(func.avg(Question.quality_score)).filter(Question.deleted.is_(False)).scalar()
        avg_confidence = (
            db.query(func.avg(Question.classification_confidence))
            .filter(Question.deleted.is_(False))
            .scalar()
        )

        values = {
            "bank_size": float(bank_size),
            "approved_ratio": round(approved / bank_size, 4) if bank_size else 0.0,
            "needs_review_count": float(flagged),
            "avg_quality_score": round(float(avg_quality or 0.0), 4),
            "avg_classification_confidence": round(float(avg_confidence or 0.0), 4),
            "tests_generated": float(db.query(GeneratedTest).count()),
        }
        units = {"bank_size": "count", "needs_review_count": "count", "tests_generated": "count"}
        for name, value in values.items():
            record_metric(
                db,
                entity_type="question_bank",
                entity_id=None,
                characteristic="bank_health",
                metric_name=name,
                value=value,
                unit=units.get(name, "ratio"),
                measurement_method="metrics_collector_v1",
            )
        db.commit()
        return values

    def collect_if_due(self, db: Session, now: Optional[float] = None) -> Optional[Dict[str, float]]:
        """Collect when the interval has elapsed; otherwise return None."""
        now = time.time() if now is None else now
        if not self.is_due(now):
            logger.debug("Metrics collection skipped (ran %.0fs ago)", now - self._last_run)
            return None
        values = self.collect(db)
        self._last_run = now
        logger.info("Quality metrics recorded: %s", values)
        return values


metrics_collector = MetricsCollector()


async def run_metrics_loop(session_factory, poll_seconds: float = 60.0) -> None:
    """Lifespan task: poll the collector until cancelled."""
    logger.info("Metrics loop started (interval %d min)", METRICS_MIN_INTERVAL_MINUTES)
    while True:
        db = session_factory()
        try:
            metrics_collector.collect_if_due(db)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Metrics collection failed: %s", e)
        finally:
            db.close()
        await asyncio.sleep(poll_seconds)
