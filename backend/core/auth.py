"""
Auth dependencies for the Inkwell API.

Resolves the caller into an explicit Actor (identity + role):
1. Clerk JWT from the Authorization header
2. X-User-Id header (outside production only; local dev and tests)
3. 401 Unauthorized

The identity is upserted on first sight and its role is always read from
the ledger store, never from token claims.
"""
import logging
from typing import Optional, Tuple, Dict, Any

import jwt
from fastapi import Depends, Header, HTTPException, Request

from backend.core.clerk_auth import verify_jwt_token
from backend.core.config import settings
from backend.core.errors import PermissionError
from backend.features.users.service import ensure_user
from backend.models.actor import Actor

logger = logging.getLogger("inkwell")


def _resolve_identity(request: Request, x_user_id: Optional[str]) -> Optional[Tuple[str, Dict[str, Any]]]:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        try:
            claims = verify_jwt_token(auth_header[7:])
        except jwt.ExpiredSignatureError:
            raise HTTPException(status_code=401, detail="Token expired")
        except jwt.PyJWTError as e:
            logger.debug(f"Invalid token: {e}")
            raise HTTPException(status_code=401, detail="Invalid token")
        user_id = claims.get("sub")
        if not user_id:
            raise HTTPException(status_code=401, detail="Invalid token")
        return user_id, claims

    if x_user_id and settings.ENV.lower() != "production":
        return x_user_id, {}

    return None


def _actor_for(identity: str, claims: Dict[str, Any]) -> Actor:
    user = ensure_user(identity, email=claims.get("email"), name=claims.get("name"))
    return Actor(
        identity=user.identity,
        role=user.role,
        email=user.email or claims.get("email"),
        name=user.name,
    )


def get_current_actor(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Dev/test user ID"),
) -> Actor:
    """
    Raises:
        HTTPException 401: Missing or invalid authentication
    """
    resolved = _resolve_identity(request, x_user_id)
    if resolved is None:
        raise HTTPException(
            status_code=401,
            detail="Missing Authorization (Bearer JWT) or X-User-Id header",
        )
    return _actor_for(*resolved)


def get_optional_actor(
    request: Request,
    x_user_id: Optional[str] = Header(None, description="Dev/test user ID"),
) -> Optional[Actor]:
    """Actor for public routes that show more to authenticated callers."""
    resolved = _resolve_identity(request, x_user_id)
    if resolved is None:
        return None
    return _actor_for(*resolved)


def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_admin:
        raise PermissionError("Admin access required")
    return actor
