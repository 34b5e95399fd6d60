from __future__ import annotations

import secrets

from fastapi import Depends, HTTPException, Request, Security, status
from fastapi.security import (
    HTTPAuthorizationCredentials,
    HTTPBasic,
    HTTPBasicCredentials,
    HTTPBearer,
)

from app.config import Settings

_basic_scheme = HTTPBasic()
_bearer_scheme = HTTPBearer(auto_error=False, scheme_name="BearerAuth")


def _app_settings(request: Request) -> Settings:
    return request.app.state.container.settings


def _unauthorized(scheme: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
        headers={"WWW-Authenticate": scheme},
    )


def require_basic_auth(
    request: Request,
    credentials: HTTPBasicCredentials = Depends(_basic_scheme),
) -> None:
    """Guard for the API docs."""
    cfg = _app_settings(request)
    username_valid = secrets.compare_digest(credentials.username or "", cfg.api_basic_username)
    password_valid = secrets.compare_digest(credentials.password or "", cfg.api_basic_password)
    if not (username_valid and password_valid):
        raise _unauthorized("Basic")


def verify_bearer_token(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer_scheme),
) -> None:
    """Validate Bearer token matches the configured API token.

    Gateway callbacks cannot present it, so webhook routes do not use this.
    """
    if credentials is None:
        raise _unauthorized("Bearer")
    token = credentials.credentials.strip()
    if not token or not secrets.compare_digest(token, _app_settings(request).api_bearer_token):
        raise _unauthorized("Bearer")
