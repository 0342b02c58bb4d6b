"""
User Accounts Module

Registration, login and profile management for the people who keep loan
books. Passwords are hashed with scrypt and a random per-user salt.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, Optional
import hashlib
import hmac
import secrets
import uuid

from .storage import StorageInterface, StorageRecord
from .exceptions import ValidationError, AuthenticationError, ConflictError, UserNotFound
from .logging_config import get_logger, log_action


logger = get_logger("loan_ledger.users")


@dataclass
class User(StorageRecord):
    """Registered user"""
    username: str
    password_hash: str
    password_salt: str
    full_name: Optional[str] = None
    deleted_at: Optional[datetime] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def to_public_dict(self) -> Dict:
        """User fields safe to return to clients"""
        return {
            "id": self.id,
            "username": self.username,
            "full_name": self.full_name,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "User":
        return cls(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            username=data['username'],
            password_hash=data['password_hash'],
            password_salt=data['password_salt'],
            full_name=data.get('full_name'),
            deleted_at=datetime.fromisoformat(data['deleted_at']) if data.get('deleted_at') else None,
        )


class UserManager:
    """Manages user accounts and credentials"""

    def __init__(self, storage: StorageInterface, password_min_length: int = 6,
                 table: str = "users"):
        self.storage = storage
        self.password_min_length = password_min_length
        self.table = table

    def register(self, username: str, password: str, full_name: Optional[str] = None) -> User:
        """
        Create a new user

        Args:
            username: Unique login name, 3-50 characters
            password: Plain password, at least password_min_length characters
            full_name: Optional display name, 2-100 characters

        Returns:
            The created user

        Raises:
            ValidationError: Invalid username, password or full name
            ConflictError: Username already taken
        """
        username = self._validate_username(username)
        self._validate_password(password)
        full_name = self._validate_full_name(full_name) if full_name else None

        now = datetime.now(timezone.utc)
        salt = self._generate_salt()
        user = User(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            username=username,
            password_hash=self._hash_password(password, salt),
            password_salt=salt,
            full_name=full_name,
        )

        with self.storage.atomic():
            self.storage.lock_name(f"{self.table}:username:{username}")
            if self.get_by_username(username) is not None:
                raise ConflictError("Username already exists")
            self.storage.save(self.table, user.id, user.to_dict())

        log_action(logger, "info", "User registered", user_id=user.id,
                   action="register", resource=f"user:{user.id}")
        return user

    def authenticate(self, username: str, password: str) -> User:
        """Check credentials; the error never says which half was wrong"""
        user = self.get_by_username((username or "").strip())
        if user is None or not self._verify_password(user, password or ""):
            log_action(logger, "warning", "Authentication failed", action="login_failed",
                       resource="auth", extra={"username": username})
            raise AuthenticationError("Invalid username or password")

        log_action(logger, "info", "User authenticated successfully", user_id=user.id,
                   action="login", resource="auth")
        return user

    def get_user(self, user_id: str) -> User:
        data = self.storage.load(self.table, user_id)
        if not data:
            raise UserNotFound(user_id)
        user = User.from_dict(data)
        if user.is_deleted:
            raise UserNotFound(user_id)
        return user

    def get_by_username(self, username: str) -> Optional[User]:
        for data in self.storage.find(self.table, {"username": username}):
            user = User.from_dict(data)
            if not user.is_deleted:
                return user
        return None

    def update_profile(self, user_id: str, full_name: str) -> User:
        full_name = self._validate_full_name(full_name)
        user = self.get_user(user_id)
        user.full_name = full_name
        self._save_user(user)

        log_action(logger, "info", "Profile updated", user_id=user_id,
                   action="update_profile", resource=f"user:{user_id}")
        return user

    def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        user = self.get_user(user_id)
        if not self._verify_password(user, current_password or ""):
            log_action(logger, "warning", "Password change rejected", user_id=user_id,
                       action="change_password", resource=f"user:{user_id}")
            raise AuthenticationError("Current password is incorrect")
        self._validate_password(new_password)

        user.password_salt = self._generate_salt()
        user.password_hash = self._hash_password(new_password, user.password_salt)
        self._save_user(user)

        log_action(logger, "info", "Password changed", user_id=user_id,
                   action="change_password", resource=f"user:{user_id}")

    def _save_user(self, user: User) -> None:
        user.updated_at = datetime.now(timezone.utc)
        self.storage.save(self.table, user.id, user.to_dict())

    def _validate_username(self, username: Optional[str]) -> str:
        username = (username or "").strip()
        if len(username) < 3 or len(username) > 50:
            raise ValidationError("Username must be between 3 and 50 characters")
        return username

    def _validate_password(self, password: Optional[str]) -> None:
        if not password or len(password) < self.password_min_length:
            raise ValidationError(
                f"Password must be at least {self.password_min_length} characters long"
            )

    def _validate_full_name(self, full_name: Optional[str]) -> str:
        full_name = (full_name or "").strip()
        if len(full_name) < 2 or len(full_name) > 100:
            raise ValidationError("Full name must be between 2 and 100 characters")
        return full_name

    def _generate_salt(self) -> str:
        """Generate random salt for password hashing"""
        return secrets.token_hex(16)

    def _hash_password(self, password: str, salt: str) -> str:
        """Hash password with salt using scrypt"""
        return hashlib.scrypt(
            password.encode(),
            salt=salt.encode(),
            n=16384, r=8, p=1
        ).hex()

    def _verify_password(self, user: User, password: str) -> bool:
        expected = self._hash_password(password, user.password_salt)
        return hmac.compare_digest(expected, user.password_hash)
