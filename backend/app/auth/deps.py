from dataclasses import dataclass

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.auth.security import JWTError, decode_token

bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CallerContext:
    """Tenant and user of the current request, passed explicitly to every operation."""

    tenant_id: str
    user_id: str
    authorization: str | None = None


def get_caller_context(creds: HTTPAuthorizationCredentials = Depends(bearer)) -> CallerContext:
    if not creds:
        raise HTTPException(status_code=401, detail="Missing token")

    try:
        payload = decode_token(creds.credentials)
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")

    token_type = payload.get("typ")
    if token_type and token_type != "access":
        raise HTTPException(status_code=401, detail="Invalid token type")

    user_id = payload.get("sub")
    tenant_id = payload.get("tenant_id")
    if not user_id or not tenant_id:
        raise HTTPException(status_code=401, detail="Invalid token payload")

    return CallerContext(
        tenant_id=str(tenant_id),
        user_id=str(user_id),
        authorization=f"Bearer {creds.credentials}",
    )
