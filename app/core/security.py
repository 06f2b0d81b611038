"""Security and authentication helpers for JWT auth with role checks."""
from __future__ import annotations

import binascii
import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.models import User

ALGORITHM = "HS256"
AUTH_SCHEME = HTTPBearer(auto_error=False)


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _secret_key() -> str:
    return settings.secret_key.get_secret_value()


def hash_password(password: str, salt_hex: str | None = None, iterations: int = 210000) -> str:
    """Create pbkdf2_sha256 hash string."""
    salt_hex = salt_hex or secrets.token_hex(16)
    dk = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), bytes.fromhex(salt_hex), iterations
    )
    digest_hex = binascii.hexlify(dk).decode("ascii")
    return f"pbkdf2_sha256${iterations}${salt_hex}${digest_hex}"


def verify_password(password: str, encoded_hash: str) -> bool:
    """Verify pbkdf2_sha256 hash format: pbkdf2_sha256$iters$salt_hex$digest_hex."""
    try:
        algorithm, iter_str, salt_hex, _digest_hex = encoded_hash.split("$", 3)
    except ValueError:
        return False
    if algorithm != "pbkdf2_sha256":
        return False
    expected = hash_password(password, salt_hex=salt_hex, iterations=int(iter_str))
    return hmac.compare_digest(expected, encoded_hash)


def create_access_token(subject: str, extra: Dict[str, Any] | None = None) -> str:
    payload: Dict[str, Any] = {
        "sub": subject,
        "iat": int(now_utc().timestamp()),
        "exp": int((now_utc() + timedelta(minutes=settings.token_ttl_minutes)).timestamp()),
    }
    if extra:
        payload.update(extra)
    return jwt.encode(payload, _secret_key(), algorithm=ALGORITHM)


def decode_token(token: str) -> Dict[str, Any]:
    return jwt.decode(token, _secret_key(), algorithms=[ALGORITHM])


def _user_from_credentials(
    creds: HTTPAuthorizationCredentials | None, db: Session
) -> User | None:
    if creds is None or not creds.credentials:
        return None
    try:
        payload = decode_token(creds.credentials)
    except jwt.PyJWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token"
        )
    email = str(payload.get("sub", "")).strip().lower()
    user = db.query(User).filter(User.email == email).first()
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token subject"
        )
    return user


def get_current_user(
    creds: HTTPAuthorizationCredentials | None = Depends(AUTH_SCHEME),
    db: Session = Depends(get_db),
) -> User:
    user = _user_from_credentials(creds, db)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return user


def get_optional_user(
    creds: HTTPAuthorizationCredentials | None = Depends(AUTH_SCHEME),
    db: Session = Depends(get_db),
) -> User | None:
    return _user_from_credentials(creds, db)


def require_roles(*roles: str) -> Callable[..., User]:
    """Dependency factory: the current user must hold at least one of ``roles``."""

    def dependency(user: User = Depends(get_current_user)) -> User:
        if not set(roles) & set(user.roles or []):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"{' or '.join(roles).capitalize()} access required",
            )
        return user

    return dependency
