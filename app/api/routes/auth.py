from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.dependencies import raise_app_error
from app.core.exceptions import AppError
from app.core.security import create_access_token, get_current_user
from app.database import get_db
from app.models import User
from app.schemas.auth import LoginRequest, LoginResponse, SignupRequest, UserOut
from app.services.accounts import authenticate, serialize_user, signup

router = APIRouter()


def _token_response(user: User) -> LoginResponse:
    out = UserOut(**serialize_user(user))
    token = create_access_token(user.email, {"uid": out.id, "roles": out.roles})
    return LoginResponse(access_token=token, user=out)


@router.post("/signup", response_model=LoginResponse, status_code=201)
async def signup_user(payload: SignupRequest, db: Session = Depends(get_db)) -> LoginResponse:
    try:
        user = signup(db, **payload.model_dump())
    except AppError as exc:
        raise_app_error(exc)
    return _token_response(user)


@router.post("/login", response_model=LoginResponse)
async def login(payload: LoginRequest, db: Session = Depends(get_db)) -> LoginResponse:
    try:
        user = authenticate(db, payload.email, payload.password)
    except AppError as exc:
        raise_app_error(exc)
    return _token_response(user)


@router.post("/logout")
async def logout() -> dict:
    return {"success": True}


@router.get("/me", response_model=UserOut)
async def me(user: User = Depends(get_current_user)) -> UserOut:
    return UserOut(**serialize_user(user))
