"""
Authentication router: password sign-up, sign-in, token refresh and logout.

Sign-in is protected twice: per-IP request quotas (rate_limit) and a
per-email lockout after repeated failures (AccountLockout).
"""

from fastapi import APIRouter, Depends, status

from core.services import AuthService

from ..auth.dependencies import CurrentUser, get_current_user
from ..dependencies import get_auth_service
from ..dependencies.rate_limit import rate_limit
from ..schemas import AuthResponse, LoginRequest, RefreshRequest, RegisterRequest, UserResponse

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post(
    "/register",
    response_model=AuthResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("auth.register"))],
)
def register(body: RegisterRequest, auth: AuthService = Depends(get_auth_service)):
    """Create an account and return a token pair."""
    return auth.register(body.email, body.password, body.name)


@router.post("/login", response_model=AuthResponse, dependencies=[Depends(rate_limit("auth.login"))])
def login(body: LoginRequest, auth: AuthService = Depends(get_auth_service)):
    return auth.login(body.email, body.password)


@router.post("/refresh", response_model=AuthResponse, dependencies=[Depends(rate_limit("auth.refresh"))])
def refresh(body: RefreshRequest, auth: AuthService = Depends(get_auth_service)):
    """Exchange a refresh token for a new pair; the presented token is revoked."""
    return auth.refresh(body.refresh_token)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(
    current_user: CurrentUser = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service),
):
    """Revoke the current access token."""
    auth.logout(current_user.id, current_user.jti, current_user.exp)


@router.get("/me", response_model=UserResponse)
def me(
    current_user: CurrentUser = Depends(get_current_user),
    auth: AuthService = Depends(get_auth_service),
):
    return auth.get_user(current_user.id)
