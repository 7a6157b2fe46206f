# =============================================================================
# Authentication Dependencies
# =============================================================================
# Resolves the caller of /runs from HTTP Basic credentials. The resolved user
# becomes the requested_by of any run it admits.
# =============================================================================

from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from app.auth.providers import AuthenticatedUser, AuthProvider, BasicAuthProvider
from app.config import Settings, get_settings

# Missing credentials are reported by get_current_user, not by FastAPI
basic_credentials = HTTPBasic(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Basic"},
    )


def get_auth_provider(settings: Settings = Depends(get_settings)) -> AuthProvider:
    return BasicAuthProvider(settings.webapp_username, settings.webapp_password)


def get_current_user(
    credentials: Optional[HTTPBasicCredentials] = Depends(basic_credentials),
    provider: AuthProvider = Depends(get_auth_provider),
) -> AuthenticatedUser:
    """
    Authenticated caller of the request.

    Raises:
        HTTPException: 401 when credentials are missing or rejected
    """
    if credentials is None:
        raise _unauthorized("Credentials required to start or inspect inference runs")

    user = provider.authenticate(credentials.username, credentials.password)
    if user is None:
        raise _unauthorized("Invalid credentials")
    return user
