from __future__ import annotations

from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer

from taskflow.domain.permissions import claims_role, is_privileged_role
from taskflow.infra.auth import decode_access_token
from taskflow.infra.context import set_request_context

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/identity/dev-login")


def get_current_claims(
    request: Request,
    token: str = Depends(oauth2_scheme),
) -> dict[str, Any]:
    try:
        claims = decode_access_token(token)
    except Exception as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        ) from exc
    request.state.claims = claims
    set_request_context(claims.get("sub"), claims_role(claims))
    return claims


def require_privileged(
    claims: Annotated[dict[str, Any], Depends(get_current_claims)],
) -> dict[str, Any]:
    if not is_privileged_role(claims_role(claims)):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Privileged role required",
        )
    return claims
