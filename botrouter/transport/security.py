# botrouter/transport/security.py
"""
Admin endpoint authentication.

Admin routes require ``Authorization: Bearer <ADMIN_TOKEN>``. Tokens are
compared in constant time. If no token is configured, admin routes are
unavailable (503) rather than open.
"""
from __future__ import annotations

import hmac

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from botrouter.infra.logging_config import get_logger

logger = get_logger(__name__)

bearer_scheme = HTTPBearer(
    auto_error=False,
    description="Admin token: Authorization: Bearer <ADMIN_TOKEN>",
)


def _verify_bearer_token(
    credentials: HTTPAuthorizationCredentials | None,
    expected: str,
) -> tuple[bool, str | None]:
    """Verify Bearer token. Returns (is_valid, error_message)."""
    if not credentials:
        return False, "Missing Authorization header"

    if not hmac.compare_digest(credentials.credentials.encode(), expected.encode()):
        return False, "Invalid token"

    return True, None


async def require_admin_auth(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> None:
    """
    Usage:
        @app.get("/admin/endpoint", dependencies=[Depends(require_admin_auth)])
    """
    admin_token = request.app.state.settings.admin_token
    if not admin_token:
        logger.critical("ADMIN_TOKEN not configured but admin endpoint accessed")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service unavailable",
        )

    valid, error = _verify_bearer_token(credentials, admin_token)
    if not valid:
        client = request.client.host if request.client else "unknown"
        logger.warning(f"Admin auth failed from {client}: {error}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
