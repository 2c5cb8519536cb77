import os

# Must be set before any application module reads config
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["AI_GENERATION_ENABLED"] = "false"
os.environ["CLASSIFIER_USE_LLM"] = "false"
os.environ["METRICS_LOOP_ENABLED"] = "false"
os.environ["SIMILARITY_ALGORITHM"] = "token_cosine"
os.environ.pop("OPENAI_API_KEY", None)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from auth.security import UserContext, create_access_token
from database import crud
from database.database import Base, get_db
from database.schemas import QuestionCreate, UserCreate


@pytest.fixture
def db():
    """Fresh in-memory SQLite database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def users(db):
    """One user per role."""
    return {
        role: crud.create_user(db, UserCreate(
            email=f"{role}@school.test", password="secret", full_name=role.title(), role=role,
        ))
        for role in ("admin", "teacher", "validator")
    }


@pytest.fixture
def ctx(users):
    """UserContext per role."""
    return {role: UserContext(user_id=u.id, role=u.role) for role, u in users.items()}


@pytest.fixture
def headers(users):
    """Bearer headers per role."""
    return {
        role: {"Authorization": f"Bearer {create_access_token(u.id, u.role)}"}
        for role, u in users.items()
    }


@pytest.fixture
def client(db):
    from main import app

    def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_question(db, ctx):
    """Store a question as the admin; approved multiple choice unless told otherwise."""
    def _make(text, topic="Cells", bloom_level="remember", status="approved", **extra):
        payload = {
            "question_text": text,
            "question_type": extra.pop("question_type", "multiple_choice"),
            "topic": topic,
            "bloom_level": bloom_level,
            "status": status,
        }
        if payload["question_type"] == "multiple_choice":
            payload["choices"] = extra.pop("choices", ["Alpha", "Bravo", "Charlie", "Delta"])
            payload["correct_answer"] = extra.pop("correct_answer", "A")
        payload.update(extra)
        return crud.create_question(db, QuestionCreate(**payload), ctx["admin"])
    return _make
