"""
User resource service.

Wraps the credential store with pagination, cache invalidation, audit
records and daily counters. Read-through caching of GET responses happens in
the request pipeline; this service only invalidates.
"""

import threading
from typing import Any, Dict, Mapping, Optional

from ..cache.backend import CacheBackend
from ..models.audit import AuditAction
from ..models.user import User
from ..stores.credential_store import CredentialStore
from ..utils.exceptions import DuplicateEmail, ForbiddenOperation, NotFound
from ..utils.logger import get_logger
from . import pagination
from .audit_service import AuditService

logger = get_logger(__name__)

USERS_BASE_URL = "/api/users"
LIST_CACHE_PATTERN = "users:list:*"
FILTER_FIELDS = ("name", "email", "type")


def item_cache_key(user_id: int) -> str:
    return f"user:{user_id}"


class UserService:
    def __init__(self, store: CredentialStore, backend: CacheBackend, audit: AuditService):
        self.store = store
        self.backend = backend
        self.audit = audit
        self._generation = 0
        self._generation_lock = threading.Lock()

    @staticmethod
    def clean_filters(raw: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        """Keep the supported filter fields that carry a value"""
        raw = raw or {}
        return {k: raw[k] for k in FILTER_FIELDS if raw.get(k) not in (None, "")}

    def list(self, page: Any = 1, limit: Any = pagination.DEFAULT_LIMIT, filters: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        filters = self.clean_filters(filters)
        users = [u.model_dump() for u in self.store.list()]
        result = pagination.paginate(users, page, limit, filters)
        return {
            "users": result["data"],
            "pagination": result["pagination"],
            "links": pagination.build_links(USERS_BASE_URL, result["pagination"], filters),
        }

    def get(self, user_id: int) -> User:
        user = self.store.get(user_id)
        if user is None:
            raise NotFound("User not found")
        return user

    @property
    def generation(self) -> int:
        """Bumped on every invalidation. Responses read under an older value are stale."""
        return self._generation

    def invalidate(self, user_id: Optional[int] = None) -> None:
        """Drop every cached list page and, when given, the item entry"""
        with self._generation_lock:
            self._generation += 1
        removed = self.backend.delete_pattern(LIST_CACHE_PATTERN)
        if user_id is not None:
            self.backend.delete(item_cache_key(user_id))
        logger.debug("User cache invalidated", user_id=user_id, list_pages=removed)

    def create(self, data: Dict[str, Any], actor: Optional[Dict[str, Any]] = None, ip_address: Optional[str] = None) -> User:
        if self.store.email_exists(data["email"]):
            raise DuplicateEmail()
        user = self.store.create(data)
        self.invalidate()

        self.audit.log_user_action(
            actor,
            AuditAction.USER_CREATED,
            "users",
            user.id,
            details={"createdUser": {"name": user.name, "email": user.email, "type": user.type}},
            ip_address=ip_address,
        )
        self.backend.increment_counter("users_created")
        logger.info("User created", user_id=user.id, email=user.email)
        return user

    def update(self, user_id: int, partial: Dict[str, Any], actor: Optional[Dict[str, Any]] = None, ip_address: Optional[str] = None) -> User:
        existing = self.get(user_id)
        email = partial.get("email")
        if email and email != existing.email and self.store.email_exists(email, exclude_id=existing.id):
            raise DuplicateEmail()

        user = self.store.update(existing.id, partial)
        if user is None:
            raise NotFound("User not found")
        self.invalidate(user.id)

        changed = sorted(k for k, v in partial.items() if v is not None)
        self.audit.log_user_action(
            actor,
            AuditAction.USER_UPDATED,
            "users",
            user.id,
            details={"changedFields": changed},
            ip_address=ip_address,
        )
        self.backend.increment_counter("users_updated")
        logger.info("User updated", user_id=user.id, fields=changed)
        return user

    def delete(self, user_id: int, actor: Optional[Dict[str, Any]] = None, ip_address: Optional[str] = None) -> None:
        existing = self.get(user_id)
        if self.store.is_primary_admin(existing):
            raise ForbiddenOperation("Cannot delete the primary admin user")
        if not self.store.delete(existing.id):
            raise NotFound("User not found")
        self.invalidate(existing.id)

        self.audit.log_user_action(
            actor,
            AuditAction.USER_DELETED,
            "users",
            existing.id,
            details={"deletedUser": {"name": existing.name, "email": existing.email}},
            ip_address=ip_address,
        )
        self.backend.increment_counter("users_deleted")
        logger.info("User deleted", user_id=existing.id)
