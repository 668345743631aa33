"""User management routes. Prefix: /api/users (bearer token required)"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Request, Response

from sps.models.user import UserCreate, UserUpdate
from sps.services import pagination
from sps.utils.exceptions import ValidationError

from ..deps import ServiceContainer, client_ip, current_user, get_container

router = APIRouter(prefix="/api/users", tags=["users"])


def parse_user_id(user_id: str) -> int:
    """Path ids must be positive integers"""
    if not user_id.isdigit() or int(user_id) < 1:
        raise ValidationError(
            "Invalid ID",
            details=[{"field": "id", "message": "ID must be a positive integer"}],
        )
    return int(user_id)


@router.get("")
def list_users(
    page: Optional[str] = None,
    limit: Optional[str] = None,
    name: Optional[str] = None,
    email: Optional[str] = None,
    type: Optional[str] = None,
    user: Dict[str, Any] = Depends(current_user),
    container: ServiceContainer = Depends(get_container),
):
    result = container.users.list(
        page or 1,
        limit or pagination.DEFAULT_LIMIT,
        {"name": name, "email": email, "type": type},
    )
    return {"success": True, "data": result}


@router.get("/{user_id}")
def get_user(
    user_id: str,
    user: Dict[str, Any] = Depends(current_user),
    container: ServiceContainer = Depends(get_container),
):
    found = container.users.get(parse_user_id(user_id))
    return {"success": True, "data": found.model_dump()}


@router.post("", status_code=201)
def create_user(
    request: Request,
    user_data: UserCreate,
    user: Dict[str, Any] = Depends(current_user),
    container: ServiceContainer = Depends(get_container),
):
    created = container.users.create(user_data.model_dump(), actor=user, ip_address=client_ip(request))
    return {"success": True, "message": "User created successfully", "data": created.model_dump()}


@router.put("/{user_id}")
def update_user(
    request: Request,
    user_id: str,
    user_data: UserUpdate,
    user: Dict[str, Any] = Depends(current_user),
    container: ServiceContainer = Depends(get_container),
):
    updated = container.users.update(
        parse_user_id(user_id),
        user_data.model_dump(exclude_none=True),
        actor=user,
        ip_address=client_ip(request),
    )
    return {"success": True, "message": "User updated successfully", "data": updated.model_dump()}


@router.delete("/{user_id}", status_code=204)
def delete_user(
    request: Request,
    user_id: str,
    user: Dict[str, Any] = Depends(current_user),
    container: ServiceContainer = Depends(get_container),
):
    container.users.delete(parse_user_id(user_id), actor=user, ip_address=client_ip(request))
    return Response(status_code=204)
