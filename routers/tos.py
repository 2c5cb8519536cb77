"""
TOS router — /tos
Table of Specifications blueprints: compute, save, list, edit (until a test uses it), delete.
"""

from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from auth.security import UserContext
from database.database import get_db
from database.schemas import TOSCreate, TOSResponse
from generation import tos_builder
from routers.auth import get_user_context

router = APIRouter(prefix="/tos", tags=["tos"])


@router.post("/preview")
def preview_blueprint(
    config: TOSCreate,
    ctx: UserContext = Depends(get_user_context),
):
    """Compute the matrix without saving it (TOS builder screen)."""
    topics, bloom_split = tos_builder.validate_config(config)
    distribution = tos_builder.compute_distribution(topics, bloom_split, config.total_items)
    return {
        "total_items": config.total_items,
        "topics": topics,
        "bloom_distribution": bloom_split,
        "distribution": distribution,
        "summary": tos_builder.matrix_summary(distribution, bloom_split),
    }


@router.post("", response_model=TOSResponse, status_code=201)
def create_blueprint(
    config: TOSCreate,
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(get_user_context),
):
    blueprint = tos_builder.create_blueprint(db, ctx, config)
    return tos_builder.to_response(db, blueprint)


@router.get("", response_model=List[TOSResponse])
def list_blueprints(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(get_user_context),
):
    return [tos_builder.to_response(db, bp) for bp in tos_builder.list_blueprints(db, ctx, skip, limit)]


@router.get("/{tos_id}", response_model=TOSResponse)
def get_blueprint(
    tos_id: int,
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(get_user_context),
):
    return tos_builder.to_response(db, tos_builder.get_blueprint(db, ctx, tos_id))


@router.put("/{tos_id}", response_model=TOSResponse)
def update_blueprint(
    tos_id: int,
    config: TOSCreate,
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(get_user_context),
):
    blueprint = tos_builder.update_blueprint(db, ctx, tos_id, config)
    return tos_builder.to_response(db, blueprint)


@router.delete("/{tos_id}", status_code=204)
def delete_blueprint(
    tos_id: int,
    db: Session = Depends(get_db),
    ctx: UserContext = Depends(get_user_context),
):
    tos_builder.delete_blueprint(db, ctx, tos_id)
