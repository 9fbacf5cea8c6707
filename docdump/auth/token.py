"""
JWT Token Verification

Tokens are issued by the external identity service and signed with a shared
secret (HS256 by default, configurable via JWT_ALGORITHM). The `sub` claim
is the owner id: it scopes every document query and is never taken from the
request body.

create_access_token exists for local development and the test suite.
"""

from __future__ import annotations

import logging
import time
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt
from pydantic import BaseModel

from docdump.core.config import Settings

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# HTTP Bearer extractor
# ---------------------------------------------------------------------------

bearer_scheme = HTTPBearer(auto_error=True)


# ---------------------------------------------------------------------------
# Verified token payload
# ---------------------------------------------------------------------------

class TokenPayload(BaseModel):
    """Parsed, validated JWT claims."""
    sub:   str          # owner id
    email: str = ""
    exp:   int


def verify_token(token: str, settings: Settings) -> TokenPayload:
    try:
        claims = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"verify_exp": True, "verify_aud": False},
        )
    except ExpiredSignatureError:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, detail="Token has expired")
    except JWTError as exc:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, detail=f"Invalid token: {exc}")

    sub = claims.get("sub")
    if not sub or "exp" not in claims:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, detail="Token missing sub or exp claim")

    return TokenPayload(sub=str(sub), email=claims.get("email", ""), exp=int(claims["exp"]))


def create_access_token(
    owner_id: str,
    settings: Settings,
    *,
    expires_in_seconds: int = 3600,
    email: str = "",
) -> str:
    claims = {
        "sub":   owner_id,
        "email": email,
        "exp":   int(time.time()) + expires_in_seconds,
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


# ---------------------------------------------------------------------------
# FastAPI dependency
# ---------------------------------------------------------------------------

async def get_current_user(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
) -> TokenPayload:
    """
    Extracts and validates the Bearer token:

        @router.get("/documents")
        async def list_docs(owner_id: CurrentOwner):
            ...
    """
    settings: Settings = request.app.state.container.settings
    return verify_token(credentials.credentials, settings)


async def get_current_owner(
    user: Annotated[TokenPayload, Depends(get_current_user)],
) -> str:
    return user.sub


CurrentOwner = Annotated[str, Depends(get_current_owner)]
