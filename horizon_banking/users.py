"""
User Store Module

User documents hold identity, role, verification flag, fiat and crypto
balances and recurring-transfer definitions. Transaction history lives in
the ledger collection, not inside the user document.
"""

import hashlib
import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from .audit import AuditTrail, AuditEventType
from .errors import (
    AdminAlreadyRegistered, ConcurrentModification, Conflict, InvalidInput, Unauthorized, UserNotFound
)
from .logging_config import get_logger, log_action
from .outbox import Outbox, MessageKind
from .storage import StorageInterface, StorageRecord


logger = get_logger("horizon.users")

USERS_TABLE = "users"


class Role(Enum):
    USER = "user"
    ADMIN = "admin"


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def generate_account_number() -> str:
    """10 digits, never starting with zero"""
    return str(secrets.randbelow(9) + 1) + "".join(str(secrets.randbelow(10)) for _ in range(9))


def generate_routing_number() -> str:
    return "".join(str(secrets.randbelow(10)) for _ in range(9))


@dataclass
class User(StorageRecord):
    """Identity plus financial state"""
    name: str
    email: str
    password_hash: str
    password_salt: str
    role: Role = Role.USER
    verified: bool = False
    balance: Decimal = Decimal("0")
    crypto_balance: Decimal = Decimal("0")
    account_number: Optional[str] = None
    routing_number: Optional[str] = None
    recurring: List[Dict[str, Any]] = field(default_factory=list)
    version: int = 0

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['role'] = self.role.value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'User':
        data['role'] = Role(data.get('role', Role.USER.value))
        data['balance'] = Decimal(str(data.get('balance', '0')))
        data['crypto_balance'] = Decimal(str(data.get('crypto_balance', '0')))
        return super().from_dict(data)

    def to_public_dict(self) -> Dict[str, Any]:
        """Serializable view without credentials"""
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role.value,
            "verified": self.verified,
            "balance": str(self.balance),
            "crypto_balance": str(self.crypto_balance),
            "account_number": self.account_number,
            "routing_number": self.routing_number,
            "recurring": self.recurring,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat()
        }


class UserManager:
    """Creates, authenticates and updates users"""

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail,
                 outbox: Optional[Outbox] = None, password_min_length: int = 8,
                 max_retries: int = 5):
        self.storage = storage
        self.audit = audit_trail
        self.outbox = outbox
        self.password_min_length = password_min_length
        self.max_retries = max_retries

    # Passwords

    @staticmethod
    def _hash_password(password: str, salt: str) -> str:
        return hashlib.scrypt(
            password.encode(),
            salt=salt.encode(),
            n=16384, r=8, p=1
        ).hex()

    def _verify_password(self, user: User, password: str) -> bool:
        if not user.password_hash or not user.password_salt:
            return False
        expected = self._hash_password(password, user.password_salt)
        return secrets.compare_digest(expected, user.password_hash)

    # Creation

    def _build_user(self, name: str, email: str, password: str, role: Role) -> User:
        name = (name or "").strip()
        email = normalize_email(email)
        if not name or not email or not password:
            raise InvalidInput("Name, email, and password are required")
        if "@" not in email:
            raise InvalidInput("Invalid email")
        if len(password) < self.password_min_length:
            raise InvalidInput(f"Password must be at least {self.password_min_length} characters")

        now = datetime.now(timezone.utc)
        salt = secrets.token_hex(16)
        return User(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            name=name,
            email=email,
            password_hash=self._hash_password(password, salt),
            password_salt=salt,
            role=role,
            account_number=generate_account_number(),
            routing_number=generate_routing_number()
        )

    def create_user(self, name: str, email: str, password: str,
                    role: Role = Role.USER) -> User:
        """
        Register a new user.

        Raises:
            InvalidInput: if a required field is missing or the password is too short
            Conflict: if the email is already registered
        """
        user = self._build_user(name, email, password, role)

        with self.storage.atomic():
            if self.get_user_by_email(user.email):
                raise Conflict("A user with that email already exists")
            self.storage.save(USERS_TABLE, user.id, user.to_dict())
            if self.outbox:
                self.outbox.enqueue(MessageKind.WELCOME, user.id, user.email, {
                    "name": user.name,
                    "email": user.email,
                    "account_number": user.account_number,
                    "routing_number": user.routing_number
                })

        event = AuditEventType.ADMIN_REGISTERED if role == Role.ADMIN else AuditEventType.USER_REGISTERED
        self.audit.log_event(event, "user", user.id, {"email": user.email})
        log_action(logger, "info", "User registered", user_id=user.id,
                   action=event.value, resource="user")
        return user

    def register_first_admin(self, name: str, email: str, password: str) -> User:
        """
        Self-registration for the very first admin.

        Raises:
            AdminAlreadyRegistered: if any admin already exists
        """
        with self.storage.atomic():
            if self.count_admins() > 0:
                raise AdminAlreadyRegistered()
            return self.create_user(name, email, password, role=Role.ADMIN)

    # Lookup

    def get_user(self, user_id: str) -> Optional[User]:
        data = self.storage.load(USERS_TABLE, user_id)
        return User.from_dict(data) if data else None

    def require_user(self, user_id: str) -> User:
        user = self.get_user(user_id)
        if not user:
            raise UserNotFound(user_id)
        return user

    def get_user_by_email(self, email: str) -> Optional[User]:
        matches = self.storage.find(USERS_TABLE, {"email": normalize_email(email)})
        return User.from_dict(matches[0]) if matches else None

    def list_users(self) -> List[User]:
        """All users, newest first"""
        users = [User.from_dict(data) for data in self.storage.load_all(USERS_TABLE)]
        users.sort(key=lambda u: u.created_at, reverse=True)
        return users

    def count_admins(self) -> int:
        return len(self.storage.find(USERS_TABLE, {"role": Role.ADMIN.value}))

    # Authentication

    def authenticate(self, email: str, password: str, role: Optional[Role] = None) -> User:
        """
        Check credentials, optionally requiring a role.

        Raises:
            Unauthorized: on unknown email, wrong password or role mismatch
        """
        user = self.get_user_by_email(email)
        reason = None
        if not user:
            reason = "user_not_found"
        elif not self._verify_password(user, password or ""):
            reason = "invalid_password"
        elif role is not None and user.role != role:
            reason = "role_mismatch"

        if reason:
            self.audit.log_event(
                AuditEventType.LOGIN_FAILED, "user",
                user.id if user else normalize_email(email),
                {"reason": reason}
            )
            log_action(logger, "warning", "Login failed",
                       user_id=user.id if user else None,
                       action="login_failed", extra={"reason": reason})
            if reason == "user_not_found" and role == Role.ADMIN:
                raise Unauthorized("Admin account not found")
            raise Unauthorized("Invalid credentials")

        self.audit.log_event(AuditEventType.LOGIN_SUCCESS, "user", user.id, {}, actor_id=user.id)
        return user

    # Updates

    def save_user_versioned(self, user: User) -> bool:
        """
        Persist user if nobody else wrote it since it was loaded.

        Bumps ``user.version`` on success; leaves it untouched on conflict.
        """
        expected = user.version
        user.version = expected + 1
        user.updated_at = datetime.now(timezone.utc)
        saved = self.storage.save_if_version(USERS_TABLE, user.id, user.to_dict(), expected)
        if not saved:
            user.version = expected
        return saved

    def _update_verified(self, user_id: str, compute, actor_id: Optional[str]) -> User:
        for _ in range(self.max_retries):
            user = self.require_user(user_id)
            previous = user.verified
            user.verified = compute(previous)
            if self.save_user_versioned(user):
                break
        else:
            raise ConcurrentModification(user_id)

        self.audit.log_event(
            AuditEventType.VERIFICATION_CHANGED, "user", user.id,
            {"from": previous, "to": user.verified}, actor_id=actor_id
        )
        return user

    def set_verified(self, user_id: str, actor_id: Optional[str] = None) -> User:
        """Mark the user verified. Idempotent."""
        return self._update_verified(user_id, lambda _: True, actor_id)

    def toggle_verified(self, user_id: str, actor_id: Optional[str] = None) -> User:
        """Flip the verification flag."""
        return self._update_verified(user_id, lambda current: not current, actor_id)
