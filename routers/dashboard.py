"""
Dashboard router — /dashboard
Teacher landing page numbers and the coverage report.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from auth.security import UserContext
from database.database import get_db
from routers.auth import get_user_context
from services.dashboard import report_stats, teacher_stats

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("/stats")
def get_teacher_stats(
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(get_user_context),
):
    return teacher_stats(db, ctx)


@router.get("/reports")
def get_report_stats(
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(get_user_context),
):
    return report_stats(db, ctx)
