"""
Authentication router.
JWT sent as Bearer token; the token carries user id and role.
Every other router depends on get_user_context to obtain the caller as a UserContext.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from auth.security import UserContext, create_access_token, decode_token, verify_password
from database import crud
from database.database import get_db
from database.models import User
from database.schemas import LoginRequest, TokenResponse, UserCreate, UserResponse

_bearer = HTTPBearer(auto_error=False)


# ─── Auth dependencies ────────────────────────────────────────────────────────

def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
    db: Session = Depends(get_db),
) -> User:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    payload = decode_token(credentials.credentials)
    if payload is None or payload.get("sub") is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid token")

    user = crud.get_user(db, user_id)
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found or inactive")
    return user


def get_user_context(current: User = Depends(get_current_user)) -> UserContext:
    return UserContext(user_id=current.id, role=current.role)


def require_role(*roles: str):
    """Dependency factory: the caller's role must be one of roles."""
    def _check(ctx: UserContext = Depends(get_user_context)) -> UserContext:
        if ctx.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires role: {', '.join(roles)}",
            )
        return ctx
    return _check


require_admin = require_role("admin")


# ─── Router ───────────────────────────────────────────────────────────────────

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=TokenResponse)
def login(payload: LoginRequest, db: Session = Depends(get_db)):
    user = crud.get_user_by_email(db, payload.email)
    if not user or not verify_password(payload.password, user.hashed_password):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="Account is inactive")

    return TokenResponse(
        access_token=create_access_token(user.id, user.role),
        user=UserResponse.model_validate(user),
    )


@router.get("/me", response_model=UserResponse)
def me(current: User = Depends(get_current_user)):
    return current


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(
    payload: UserCreate,
    db: Session = Depends(get_db),
    _: UserContext = Depends(require_admin),
):
    if crud.get_user_by_email(db, payload.email):
        raise HTTPException(status_code=409, detail=f"Email {payload.email} already registered")
    return crud.create_user(db, payload)


@router.get("/users", response_model=List[UserResponse])
def list_users(
    db: Session = Depends(get_db),
    _: UserContext = Depends(require_admin),
):
    return db.query(User).order_by(User.id).all()
