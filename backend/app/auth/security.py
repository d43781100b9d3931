from datetime import datetime, timedelta
from typing import Any, Dict

from jose import JWTError, jwt

from app.core.config import settings

JWT_ALG = "HS256"


def create_access_token(user_id: str, tenant_id: str, **claims: Any) -> str:
    """Caller tokens normally come from the identity provider; this one is for tooling and tests."""
    payload = dict(claims)
    payload.update(
        {
            "sub": user_id,
            "tenant_id": tenant_id,
            "typ": "access",
            "exp": datetime.utcnow() + timedelta(minutes=settings.JWT_ACCESS_EXP_MINUTES),
        }
    )
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=JWT_ALG)


def decode_token(token: str) -> Dict[str, Any]:
    return jwt.decode(token, settings.JWT_SECRET, algorithms=[JWT_ALG])


__all__ = [
    "JWTError",
    "create_access_token",
    "decode_token",
]
