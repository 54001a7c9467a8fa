from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi.security import OAuth2PasswordBearer
from werkzeug.security import generate_password_hash, check_password_hash

from .config import settings

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/token")


def get_password_hash(password: str) -> str:
    return generate_password_hash(password)


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        return False
    return check_password_hash(hashed_password, plain_password)


def _encode(data: Dict[str, Any], token_type: str, expires_delta: timedelta) -> str:
    now = datetime.now(timezone.utc)
    payload = data.copy()
    payload.update({"type": token_type, "iat": now, "exp": now + expires_delta})
    return jwt.encode(payload, settings.secret_key, algorithm=settings.algorithm)


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    return _encode(
        data,
        "access",
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes),
    )


def create_refresh_token(data: Dict[str, Any]) -> str:
    return _encode(
        data,
        "refresh",
        timedelta(minutes=settings.refresh_token_expire_minutes),
    )


def verify_token(token: str, token_type: Optional[str] = None) -> Optional[str]:
    """Return the token subject (user email) or None when the token is unusable."""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except jwt.PyJWTError:
        return None

    if token_type and payload.get("type") != token_type:
        return None
    return payload.get("sub")
