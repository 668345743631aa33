"""Authentication routes. Prefix: /api/auth"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request

from sps.models.user import LoginRequest, RefreshRequest

from ..deps import ServiceContainer, client_ip, current_user, get_container

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/login")
def login(request: Request, login_data: LoginRequest, container: ServiceContainer = Depends(get_container)):
    """Exchange email/password for an access and refresh token pair"""
    result = container.tokens.login(
        login_data.email,
        login_data.password,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return {"success": True, "message": "Login successful", "data": result}


@router.post("/refresh")
def refresh(body: RefreshRequest, container: ServiceContainer = Depends(get_container)):
    """Single-use: the presented refresh token is replaced by the new one"""
    tokens = container.tokens.refresh(body.refreshToken)
    return {"success": True, "message": "Token refreshed", "data": tokens}


@router.post("/logout")
def logout(
    request: Request,
    user: Dict[str, Any] = Depends(current_user),
    container: ServiceContainer = Depends(get_container),
):
    container.tokens.logout(user["id"], claims=user, ip_address=client_ip(request))
    return {"success": True, "message": "Logout successful"}


@router.get("/stats")
def auth_stats(
    user: Dict[str, Any] = Depends(current_user),
    container: ServiceContainer = Depends(get_container),
):
    return {"success": True, "data": container.tokens.stats()}


@router.post("/cleanup")
def cleanup_tokens(
    user: Dict[str, Any] = Depends(current_user),
    container: ServiceContainer = Depends(get_container),
):
    return {"success": True, "message": "Token cleanup finished", "data": container.tokens.cleanup()}
