"""
Authentication and authorization dependencies
"""

from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..accounts import AccountManager
from ..config import EBankingConfig, get_config
from ..customers import CustomerManager
from ..errors import AuthenticationError
from ..history import HistoryService
from ..ledger import LedgerStore
from ..locking import AccountLockManager
from ..operations import OperationEngine
from ..security import (
    IdentityProvider, InMemoryIdentityProvider, Principal, TokenService,
    ROLE_ADMIN, ROLE_USER
)
from ..storage import StorageInterface, create_storage


class BankingSystem:
    """Ledger core with all components initialized"""

    def __init__(
        self,
        config: Optional[EBankingConfig] = None,
        storage: Optional[StorageInterface] = None,
        identity: Optional[IdentityProvider] = None
    ):
        self.config = config or get_config()

        # Initialize storage
        self.storage = storage or create_storage(
            self.config.storage_backend,
            self.config.database_path,
            lock_timeout=self.config.lock_timeout_seconds
        )

        # Initialize core components
        self.locks = AccountLockManager(timeout=self.config.lock_timeout_seconds)
        self.ledger = LedgerStore(self.storage)
        self.customer_manager = CustomerManager(self.storage, self.locks)
        self.account_manager = AccountManager(self.ledger, self.customer_manager, self.locks)
        self.operation_engine = OperationEngine(
            self.ledger,
            self.locks,
            max_retries=self.config.max_retries,
            retry_backoff=self.config.retry_backoff_seconds
        )
        self.history_service = HistoryService(
            self.ledger, max_page_size=self.config.max_page_size
        )

        # Security collaborators
        self.identity = identity or InMemoryIdentityProvider(self.config.users)
        self.tokens = TokenService(
            self.config.jwt_secret,
            algorithm=self.config.jwt_algorithm,
            expiry_minutes=self.config.jwt_expiry_minutes
        )
        self.auth_enabled = self.config.auth_enabled


# Global banking system instance, created on first use
banking_system: Optional[BankingSystem] = None


# Dependency to get banking system
def get_banking_system() -> BankingSystem:
    global banking_system
    if banking_system is None:
        banking_system = BankingSystem()
    return banking_system


# JWT Security
security = HTTPBearer(auto_error=False)

# Used when auth is disabled (tests, local tooling)
TEST_PRINCIPAL = Principal(id="test_user", roles=frozenset({ROLE_USER, ROLE_ADMIN}))


def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    system: BankingSystem = Depends(get_banking_system)
) -> Principal:
    """Dependency that validates the bearer token and returns the caller"""
    if not system.auth_enabled:
        return TEST_PRINCIPAL

    if not credentials:
        raise AuthenticationError("Not authenticated", reason="missing_token")
    return system.tokens.verify(credentials.credentials)


def require_role(role: str):
    """Dependency factory for role checking"""
    def check(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not principal.has_role(role):
            raise HTTPException(status_code=403, detail=f"Role {role} required")
        return principal
    return check
