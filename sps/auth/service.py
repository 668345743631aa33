"""
Token service: JWT access/refresh tokens and the login/logout flows.

Access claims:  {id, email, type, iat, exp, jti}
Refresh claims: {id, email, type: "refresh", iat, exp, jti}

Exactly one live refresh token per user is kept under refresh_token:{id};
issuing a new one overwrites it, which revokes the previous one.
"""

from __future__ import annotations

import secrets
import time
from typing import Any, Callable, Dict, Optional

import jwt

from ..cache.backend import CacheBackend
from ..core.locks import acquire_lock, lock_key_refresh
from ..models.audit import AuditAction, Severity
from ..models.user import User
from ..services.audit_service import AuditService
from ..stores.credential_store import CredentialStore
from ..utils.config import JWTSettings
from ..utils.exceptions import ExpiredToken, InvalidRefreshToken, InvalidToken, Unauthorized
from ..utils.logger import get_logger

logger = get_logger(__name__)

REFRESH_PREFIX = "refresh_token:"
REFRESH_TYPE = "refresh"


def refresh_key(user_id: int) -> str:
    return f"{REFRESH_PREFIX}{user_id}"


class TokenService:
    def __init__(
        self,
        store: CredentialStore,
        backend: CacheBackend,
        audit: AuditService,
        jwt_settings: Optional[JWTSettings] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.backend = backend
        self.audit = audit
        self.settings = jwt_settings or JWTSettings()
        self._clock = clock

    def _encode(self, claims: Dict[str, Any], ttl: int) -> str:
        now = int(self._clock())
        payload = dict(claims, iat=now, exp=now + ttl, jti=secrets.token_hex(8))
        return jwt.encode(payload, self.settings.secret, algorithm=self.settings.algorithm)

    def _decode(self, token: str) -> Dict[str, Any]:
        return jwt.decode(token, self.settings.secret, algorithms=[self.settings.algorithm])

    def issue_access_token(self, user: User) -> str:
        return self._encode(
            {"id": user.id, "email": user.email, "type": user.type},
            self.settings.access_ttl,
        )

    def issue_refresh_token(self, user: User) -> str:
        """Issue a refresh token and make it the user's only active one"""
        token = self._encode(
            {"id": user.id, "email": user.email, "type": REFRESH_TYPE},
            self.settings.refresh_ttl,
        )
        self.backend.set(refresh_key(user.id), token, self.settings.refresh_ttl)
        return token

    def verify_access(self, token: str) -> Dict[str, Any]:
        """
        Validate an access token and return its claims.

        Raises:
            ExpiredToken: token past its exp
            InvalidToken: bad signature, malformed, or a refresh token
        """
        try:
            claims = self._decode(token)
        except jwt.ExpiredSignatureError:
            raise ExpiredToken("Token expired")
        except jwt.InvalidTokenError:
            raise InvalidToken("Invalid token")
        if claims.get("type") == REFRESH_TYPE or "id" not in claims:
            raise InvalidToken("Invalid token")
        return claims

    def _token_pair(self, user: User) -> Dict[str, Any]:
        return {
            "accessToken": self.issue_access_token(user),
            "refreshToken": self.issue_refresh_token(user),
            "expiresIn": self.settings.expires_in,
        }

    def refresh(self, token: str) -> Dict[str, Any]:
        """Exchange the active refresh token for a new pair; the old token stops working"""
        try:
            claims = self._decode(token)
        except jwt.InvalidTokenError:
            raise InvalidRefreshToken("Invalid refresh token")
        if claims.get("type") != REFRESH_TYPE or "id" not in claims:
            raise InvalidRefreshToken("Invalid refresh token")

        user_id = claims["id"]
        with acquire_lock(lock_key_refresh(user_id)):
            stored = self.backend.get(refresh_key(user_id))
            if stored is None or not secrets.compare_digest(str(stored), token):
                raise InvalidRefreshToken("Invalid refresh token")
            user = self.store.get(user_id)
            if user is None:
                raise InvalidRefreshToken("User not found")
            pair = self._token_pair(user)

        self.audit.record(
            AuditAction.TOKEN_REFRESH,
            user_id=user.id,
            user_email=user.email,
            user_type=user.type,
            resource="auth",
            severity=Severity.LOW,
        )
        return pair

    def login(
        self,
        email: str,
        password: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Dict[str, Any]:
        user = self.store.verify_credentials(email, password)
        if user is None:
            known = self.store.get_by_email(email)
            self.audit.log_login(
                known.id if known else None,
                email,
                known.type if known else None,
                success=False,
                ip_address=ip_address,
                user_agent=user_agent,
                error_message="Invalid credentials",
            )
            self.backend.increment_counter("auth_login_failed")
            logger.warning("Login failed", email=email, ip=ip_address)
            raise Unauthorized("Invalid credentials")

        result = {"user": user.model_dump(), **self._token_pair(user)}
        self.audit.log_login(
            user.id,
            user.email,
            user.type,
            success=True,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self.backend.increment_counter("auth_login_success")
        logger.info("Login successful", user_id=user.id, email=user.email)
        return result

    def logout(self, user_id: int, claims: Optional[Dict[str, Any]] = None, ip_address: Optional[str] = None) -> bool:
        """Revoke the user's refresh token. Outstanding access tokens stay valid until exp."""
        with acquire_lock(lock_key_refresh(user_id)):
            removed = self.backend.delete(refresh_key(user_id))
        claims = claims or {}
        self.audit.record(
            AuditAction.LOGOUT,
            user_id=user_id,
            user_email=claims.get("email"),
            user_type=claims.get("type"),
            resource="auth",
            severity=Severity.LOW,
            ip_address=ip_address,
        )
        logger.info("Logout", user_id=user_id)
        return removed

    def stats(self) -> Dict[str, Any]:
        return {
            "activeRefreshTokens": len(self.backend.keys(f"{REFRESH_PREFIX}*")),
            "loginsToday": self.backend.get_counter("auth_login_success"),
            "failedLoginsToday": self.backend.get_counter("auth_login_failed"),
        }

    def cleanup(self) -> Dict[str, int]:
        """Drop stored refresh tokens that no longer verify"""
        keys = self.backend.keys(f"{REFRESH_PREFIX}*")
        removed = 0
        for key in keys:
            token = self.backend.get(key)
            try:
                self._decode(str(token))
            except jwt.InvalidTokenError:
                if self.backend.delete(key):
                    removed += 1
        logger.info("Refresh token cleanup finished", scanned=len(keys), removed=removed)
        return {"scanned": len(keys), "removed": removed}
