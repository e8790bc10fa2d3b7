# invoicing/deps.py
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Optional

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from invoicing.core.database import get_db
from invoicing.core.errors import AuthenticationError, PermissionDeniedError
from invoicing.core.request_context import set_request_context
from invoicing.models.user import User
from invoicing.services.auth import decode_access_token

# Swagger "Authorize" chama este endpoint
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/users/token", auto_error=False)

logger = logging.getLogger(__name__)


def _extract_user_id(payload: Dict[str, Any]) -> Optional[str]:
    raw = payload.get("sub")
    if raw is None:
        return None
    raw = str(raw).strip()
    return raw or None


def get_current_user(
    request: Request,
    token: Optional[str] = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> User:
    """Lê o JWT, valida e retorna o usuário do banco."""
    if not token:
        raise AuthenticationError("Not authenticated")
    try:
        payload = decode_access_token(token)
    except ValueError:
        raise AuthenticationError("Invalid or expired token")

    user_id = _extract_user_id(payload)
    if user_id is None:
        raise AuthenticationError("Invalid token (no subject)")

    user = db.query(User).filter(User.id == user_id).first()
    if not user or not user.is_active:
        raise AuthenticationError("User not found or inactive")

    request.state.user = user
    # Cada usuário é o próprio tenant
    set_request_context(user_id=user.id, tenant_id=user.id)
    return user


def _log_access_denied(*, reason: str, user: User, request: Request) -> None:
    logger.warning(
        "Access denied (%s): user_id=%s user_role=%s endpoint=%s",
        reason,
        getattr(user, "id", None),
        getattr(user, "role", None),
        f"{request.method} {request.url.path}",
    )


def require_role(roles: Iterable[str]):
    allowed = {role.strip().lower() for role in roles}

    def _dependency(request: Request, user: User = Depends(get_current_user)) -> User:
        if (user.role or "").strip().lower() not in allowed:
            _log_access_denied(reason="role_denied", user=user, request=request)
            raise PermissionDeniedError("You do not have permission to perform this action")
        return user

    return _dependency
