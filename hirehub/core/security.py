# hirehub/core/security.py
"""
AuthN provider: validates bearer credentials and yields the caller's identity.
Token issuance lives with the identity service; `create_access_token` exists
for local development and tests.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from pydantic import BaseModel

from hirehub.core.config import settings
from hirehub.core.errors import AuthenticationError


class Principal(BaseModel):
    user_id: str
    email: Optional[str] = None
    role: Optional[str] = None


def create_access_token(user_id: str, email: Optional[str] = None, role: Optional[str] = None,
                        expires_delta: Optional[timedelta] = None) -> str:
    now = datetime.now(timezone.utc)
    exp = now + (expires_delta if expires_delta else timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    payload = {"sub": user_id, "userId": user_id, "iat": now, "exp": exp}
    if email:
        payload["email"] = email
    if role:
        payload["role"] = role
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: Optional[str]) -> Principal:
    if not token:
        raise AuthenticationError("Authentication token required")
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as exc:
        raise AuthenticationError("Invalid or expired token") from exc
    # identity-service tokens carry `userId`, locally minted ones also set `sub`
    user_id = payload.get("userId") or payload.get("sub")
    if not user_id:
        raise AuthenticationError("Invalid token payload - user id not found")
    return Principal(user_id=str(user_id), email=payload.get("email"), role=payload.get("role"))
