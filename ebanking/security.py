"""
Security Module

Identity and bearer tokens for the API layer. Users come from configuration
and are held only as salted scrypt hashes; nothing is hard-coded.
"""

import hashlib
import hmac
import secrets
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone, timedelta
from typing import Any, Dict, FrozenSet, Iterable, List, Optional

import jwt

from .errors import AuthenticationError
from .logging_config import get_logger, log_action

ROLE_USER = "USER"
ROLE_ADMIN = "ADMIN"


@dataclass(frozen=True)
class Principal:
    """Authenticated caller"""
    id: str
    roles: FrozenSet[str] = field(default_factory=frozenset)

    def has_role(self, role: str) -> bool:
        return role in self.roles


class IdentityProvider(ABC):
    """Source of truth for usernames, passwords and roles"""

    @abstractmethod
    def authenticate(self, username: str, password: str) -> Principal:
        """
        Check credentials

        Raises:
            AuthenticationError: If the user is unknown or the password is wrong
        """
        pass


@dataclass
class _StoredUser:
    username: str
    password_hash: str
    password_salt: str
    roles: FrozenSet[str]


class InMemoryIdentityProvider(IdentityProvider):
    """Identity provider seeded from configured user entries"""

    def __init__(self, users: Optional[Iterable[Dict[str, Any]]] = None):
        self._users: Dict[str, _StoredUser] = {}
        self.logger = get_logger("ebanking.security")
        for entry in users or []:
            self.add_user(entry["username"], entry["password"], entry.get("roles", [ROLE_USER]))

    def add_user(self, username: str, password: str, roles: Iterable[str]) -> None:
        """Register a user, replacing any previous entry with the same name"""
        if not username or not password:
            raise ValueError("Username and password are required")
        salt = self._generate_salt()
        self._users[username] = _StoredUser(
            username=username,
            password_hash=self._hash_password(password, salt),
            password_salt=salt,
            roles=frozenset(role.upper() for role in roles)
        )

    def authenticate(self, username: str, password: str) -> Principal:
        user = self._users.get(username)
        if user is None or not self._verify_password(user, password):
            log_action(
                self.logger, "warning", "Login failed",
                user_id=username, action="login"
            )
            raise AuthenticationError("Invalid username or password", reason="bad_credentials")
        return Principal(id=user.username, roles=user.roles)

    def _generate_salt(self) -> str:
        """Generate random salt"""
        return secrets.token_hex(16)

    def _hash_password(self, password: str, salt: str) -> str:
        """Hash password with salt using scrypt"""
        return hashlib.scrypt(
            password.encode(),
            salt=salt.encode(),
            n=16384, r=8, p=1
        ).hex()

    def _verify_password(self, user: _StoredUser, password: str) -> bool:
        candidate = self._hash_password(password, user.password_salt)
        return hmac.compare_digest(candidate, user.password_hash)


class TokenService:
    """
    Issues and verifies signed bearer tokens

    Claims: sub (principal id), scope (space separated roles), iat, exp.
    """

    def __init__(self, secret: str, algorithm: str = "HS512", expiry_minutes: int = 10):
        if not secret:
            raise ValueError("Token secret must not be empty")
        self.secret = secret
        self.algorithm = algorithm
        self.expiry_minutes = expiry_minutes

    def issue(self, principal: Principal, now: Optional[datetime] = None) -> str:
        issued_at = now or datetime.now(timezone.utc)
        payload = {
            "sub": principal.id,
            "scope": " ".join(sorted(principal.roles)),
            "iat": issued_at,
            "exp": issued_at + timedelta(minutes=self.expiry_minutes)
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def verify(self, token: str) -> Principal:
        """
        Decode a token into the principal it was issued for

        Raises:
            AuthenticationError: If the token is expired, tampered with or
                lacks a subject
        """
        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            raise AuthenticationError("Token expired", reason="expired")
        except jwt.InvalidTokenError:
            raise AuthenticationError("Invalid token", reason="invalid")

        subject = payload.get("sub")
        if not subject:
            raise AuthenticationError("Invalid token", reason="missing_subject")
        roles: List[str] = payload.get("scope", "").split()
        return Principal(id=subject, roles=frozenset(roles))

    def expires_at(self, now: Optional[datetime] = None) -> datetime:
        return (now or datetime.now(timezone.utc)) + timedelta(minutes=self.expiry_minutes)
