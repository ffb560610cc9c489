"""Authentication dependencies for FastAPI routes."""

from collections.abc import Callable
from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request

from app.services.jwt import get_jwt_service

ROLE_SUPERADMIN = "SUPERADMIN"
ROLE_WORKER = "WORKER"


@dataclass
class CurrentUser:
    """Authenticated caller context."""

    subject: str
    role: str


def get_current_user(request: Request) -> CurrentUser:
    """Extract and validate the caller from a Bearer token. Raises 401 if invalid."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Not authenticated")

    jwt_service = get_jwt_service()
    payload = jwt_service.decode_token(auth_header[7:])
    if not payload or "sub" not in payload:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    return CurrentUser(subject=str(payload["sub"]), role=str(payload.get("role", "")))


def require_roles(*roles: str) -> Callable[..., CurrentUser]:
    """Build a dependency that admits only callers holding one of ``roles``."""

    def dependency(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in roles:
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user

    return dependency


require_admin = require_roles(ROLE_SUPERADMIN)
require_worker_or_admin = require_roles(ROLE_SUPERADMIN, ROLE_WORKER)
