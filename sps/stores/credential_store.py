"""
In-memory credential store.
Owns the user collection; seeds the primary admin on construction.
"""

from threading import RLock
from typing import Any, Dict, List, Optional

from ..auth.passwords import DEFAULT_ROUNDS, hash_password, verify_password
from ..models.user import StoredUser, User
from ..utils.exceptions import DuplicateEmail, ForbiddenOperation
from ..utils.logger import get_logger

logger = get_logger(__name__)

PRIMARY_ADMIN_ID = 1


class CredentialStore:
    """User storage. Mutations are serialized by one lock; hashing runs outside it."""

    def __init__(
        self,
        admin_email: str = "admin@spsgroup.com.br",
        admin_password: str = "1234",
        admin_name: str = "admin",
        bcrypt_rounds: int = DEFAULT_ROUNDS,
    ):
        self.bcrypt_rounds = bcrypt_rounds
        self._users: Dict[int, StoredUser] = {}
        self._next_id = PRIMARY_ADMIN_ID
        self._lock = RLock()
        self._create_default_admin(admin_name, admin_email, admin_password)

    def _create_default_admin(self, name: str, email: str, password: str) -> None:
        """Seed the primary admin (id 1)"""
        admin = StoredUser(
            id=PRIMARY_ADMIN_ID,
            name=name,
            email=email,
            type="admin",
            password_hash=hash_password(password, self.bcrypt_rounds),
        )
        with self._lock:
            self._users[admin.id] = admin
            self._next_id = admin.id + 1
        logger.info("Primary admin seeded", email=email)

    def is_primary_admin(self, user: User) -> bool:
        # Identified by id alone; the record stays protected after an email change
        return user.id == PRIMARY_ADMIN_ID

    def list(self) -> List[User]:
        """All users in id order"""
        with self._lock:
            return [u.public() for _, u in sorted(self._users.items())]

    def count(self) -> int:
        with self._lock:
            return len(self._users)

    def get(self, user_id: int) -> Optional[User]:
        with self._lock:
            user = self._users.get(int(user_id))
            return user.public() if user else None

    def get_by_email(self, email: str) -> Optional[User]:
        with self._lock:
            user = self._find_by_email(email)
            return user.public() if user else None

    def _find_by_email(self, email: str) -> Optional[StoredUser]:
        return next((u for u in self._users.values() if u.email == email), None)

    def email_exists(self, email: str, exclude_id: Optional[int] = None) -> bool:
        with self._lock:
            return any(
                u.email == email and u.id != exclude_id for u in self._users.values()
            )

    def create(self, data: Dict[str, Any]) -> User:
        """Create a user from {name, email, type, password}"""
        password_hash = hash_password(data["password"], self.bcrypt_rounds)
        with self._lock:
            if self._find_by_email(data["email"]):
                raise DuplicateEmail()
            user = StoredUser(
                id=self._next_id,
                name=data["name"],
                email=data["email"],
                type=data["type"],
                password_hash=password_hash,
            )
            self._users[user.id] = user
            self._next_id += 1
        return user.public()

    def update(self, user_id: int, partial: Dict[str, Any]) -> Optional[User]:
        """Merge ``partial`` into the user; a new password is re-hashed"""
        updates = {k: v for k, v in partial.items() if v is not None}
        if "password" in updates:
            updates["password_hash"] = hash_password(updates.pop("password"), self.bcrypt_rounds)
        with self._lock:
            current = self._users.get(int(user_id))
            if current is None:
                return None
            if "email" in updates and any(
                u.email == updates["email"] and u.id != current.id for u in self._users.values()
            ):
                raise DuplicateEmail()
            updated = current.model_copy(update=updates)
            self._users[current.id] = updated
        return updated.public()

    def delete(self, user_id: int) -> bool:
        with self._lock:
            user = self._users.get(int(user_id))
            if user is None:
                return False
            if self.is_primary_admin(user):
                raise ForbiddenOperation("Cannot delete the primary admin user")
            del self._users[user.id]
            return True

    def verify_credentials(self, email: str, password: str) -> Optional[User]:
        """Return the user if the password matches, else None."""
        with self._lock:
            user = self._find_by_email(email)
        if user is None or not verify_password(password, user.password_hash):
            return None
        return user.public()
