"""
Generated Test Router — /tests

Endpoints:
  POST   /tests/generate                  — fill a TOS blueprint and store the test
  GET    /tests                           — list own tests (admin: all)
  GET    /tests/{id}                      — full test JSON
  DELETE /tests/{id}
  GET    /tests/{id}/preview              — grouped view, ?show_answer_key=true adds the key
  GET    /tests/{id}/print                — printable view (never carries the key)
  GET    /tests/{id}/export/pdf           — question paper PDF
  GET    /tests/{id}/export/answer-key    — answer key PDF
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from auth.security import UserContext
from database.database import get_db
from generation.exam_generator import delete_test, generate_test, get_test, list_tests
from generation.exam_preview import build_preview, build_print_view
from generation.schemas import (
    GenerateTestRequest, GeneratedTestResponse, GeneratedTestSummary, GenerationOptions,
)
from routers.auth import get_user_context

router = APIRouter(prefix="/tests", tags=["tests"])


@router.post("/generate", response_model=GeneratedTestResponse, status_code=201)
async def generate(
    request: GenerateTestRequest,
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(get_user_context),
):
    options = GenerationOptions(**request.model_dump(exclude={"tos_id"}))
    return await generate_test(db, ctx, request.tos_id, options)


@router.get("", response_model=List[GeneratedTestSummary])
def list_generated_tests(
    tos_id: Optional[int] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(get_user_context),
):
    return list_tests(db, ctx, tos_id, skip, limit)


@router.get("/{test_id}", response_model=GeneratedTestResponse)
def get_generated_test(
    test_id: int,
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(get_user_context),
):
    return get_test(db, ctx, test_id)


@router.delete("/{test_id}", status_code=204)
def delete_generated_test(
    test_id: int,
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(get_user_context),
):
    delete_test(db, ctx, test_id)


# ─── Preview ───────────────────────────────────────────────────────────────────

@router.get("/{test_id}/preview")
def preview(
    test_id: int,
    show_answer_key: bool = False,
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(get_user_context),
):
    return build_preview(get_test(db, ctx, test_id), show_answer_key=show_answer_key)


@router.get("/{test_id}/print")
def print_view(
    test_id: int,
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(get_user_context),
):
    return build_print_view(get_test(db, ctx, test_id))


# ─── Export: PDF ───────────────────────────────────────────────────────────────

@router.get("/{test_id}/export/pdf")
def export_question_paper(
    test_id: int,
    institution_name: Optional[str] = None,
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(get_user_context),
):
    """Question paper PDF, no answers."""
    from generation.exam_exporter import generate_question_paper

    test = get_test(db, ctx, test_id)
    pdf_buffer = generate_question_paper(test, institution_name=institution_name)
    return StreamingResponse(
        pdf_buffer,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f"attachment; filename=test_{test_id}.pdf"
        }
    )


@router.get("/{test_id}/export/answer-key")
def export_answer_key(
    test_id: int,
    institution_name: Optional[str] = None,
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(get_user_context),
):
    from generation.exam_exporter import generate_answer_key

    test = get_test(db, ctx, test_id)
    pdf_buffer = generate_answer_key(test, institution_name=institution_name)
    return StreamingResponse(
        pdf_buffer,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f"attachment; filename=answer_key_{test_id}.pdf"
        }
    )
