"""
TOS Builder API — Main Application
FastAPI application for Table-of-Specifications exam blueprints.
Manages the question bank, classification, similarity analysis, reviewer
validation, blueprint building, test generation and export.
"""

from dotenv import load_dotenv
load_dotenv()

import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from auth.security import hash_password
from config import DEFAULT_ADMIN_EMAIL, DEFAULT_ADMIN_PASSWORD, METRICS_LOOP_ENABLED
from database.database import engine, Base, SessionLocal
from database.models import User, UserRole
from services.errors import InsufficientInventory, ServiceError
from services.metrics_collector import run_metrics_loop

from routers import (
    auth, questions, classification, similarity,
    validation, tos, generated_tests, dashboard,
)

logging.basicConfig(level=logging.INFO, format="%(asctime)s  %(levelname)s  %(message)s")
log = logging.getLogger(__name__)


def _seed_defaults():
    """Create the default admin if no user exists yet."""
    db = SessionLocal()
    try:
        if db.query(User).count() == 0:
            admin = User(
                email=DEFAULT_ADMIN_EMAIL,
                hashed_password=hash_password(DEFAULT_ADMIN_PASSWORD),
                full_name="Admin",
                role=UserRole.ADMIN.value,
                is_active=True,
            )
            db.add(admin)
            db.commit()
            log.info(f"✓ Default admin created: {DEFAULT_ADMIN_EMAIL}")
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup: create tables + seed admin + start the metrics loop."""
    Base.metadata.create_all(bind=engine)
    _seed_defaults()
    metrics_task = None
    if METRICS_LOOP_ENABLED:
        metrics_task = asyncio.create_task(run_metrics_loop(SessionLocal))
    yield
    if metrics_task is not None:
        metrics_task.cancel()
        with suppress(asyncio.CancelledError):
            await metrics_task


app = FastAPI(
    title="TOS Builder API",
    description="Table of Specifications, question bank analysis, and test generation",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    body = {"detail": exc.message}
    if isinstance(exc, InsufficientInventory):
        body["shortfall"] = exc.shortfall
    if exc.status_code >= 500:
        log.error(f"{request.method} {request.url.path} → {exc.status_code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=body)


# ─── Routers ───────────────────────────────────────────────────────────────────

app.include_router(auth.router)              # /auth/*

# Question bank
app.include_router(questions.router)
app.include_router(classification.router)
app.include_router(similarity.router)
app.include_router(validation.router)

# Blueprints and tests
app.include_router(tos.router)
app.include_router(generated_tests.router)    # /tests/*
app.include_router(dashboard.router)


@app.get("/")
def root():
    return {
        "name": "TOS Builder API",
        "version": "1.0.0",
        "endpoints": {
            "docs": "/docs",
            "auth": "/auth",
            "questions": "/questions",
            "tos": "/tos",
            "tests": "/tests",
            "validation": "/validation",
            "dashboard": "/dashboard",
        },
    }


@app.get("/health")
def health_check():
    return {"status": "healthy", "service": "tos-builder-api"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
