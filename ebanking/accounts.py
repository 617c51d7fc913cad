"""
Account Management Module

Accounts are a single record type tagged with their kind. Current accounts
may go negative down to their overdraft limit; savings accounts never go
below zero. The floor is looked up by kind, so callers apply deltas without
knowing which variant they hold.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, TYPE_CHECKING
from enum import Enum
import uuid

from .errors import AccountNotOperationalError, InsufficientFundsError, InvalidAmountError
from .locking import AccountLockManager, customer_key
from .logging_config import get_logger, log_action
from .money import ZERO, AmountLike, to_amount, to_non_negative, to_rate
from .storage import StorageRecord

if TYPE_CHECKING:
    from .customers import CustomerManager
    from .ledger import LedgerStore


class AccountKind(Enum):
    """Account variants"""
    CURRENT = "current"  # Overdraft allowed up to overdraft_limit
    SAVINGS = "savings"  # Interest bearing, never negative


class AccountStatus(Enum):
    """Account lifecycle states"""
    ACTIVE = "ACTIVE"        # Normal operation
    SUSPENDED = "SUSPENDED"  # Credits only
    BLOCKED = "BLOCKED"      # No operations


_BALANCE_FLOORS: Dict[AccountKind, Callable[['Account'], Decimal]] = {
    AccountKind.CURRENT: lambda account: -account.overdraft_limit,
    AccountKind.SAVINGS: lambda account: ZERO,
}


def balance_floor(account: 'Account') -> Decimal:
    """Lowest balance the account may hold"""
    return _BALANCE_FLOORS[account.kind](account)


@dataclass
class Account(StorageRecord):
    """
    Bank account state as held by the ledger store

    Only the operation engine mutates balance, through apply_delta().
    """
    customer_id: str
    kind: AccountKind
    balance: Decimal
    status: AccountStatus = AccountStatus.ACTIVE
    overdraft_limit: Optional[Decimal] = None  # CURRENT only
    interest_rate: Optional[Decimal] = None    # SAVINGS only
    version: int = 1

    def __post_init__(self):
        if self.kind == AccountKind.CURRENT:
            if self.overdraft_limit is None:
                raise InvalidAmountError("Current account requires an overdraft limit")
            if self.interest_rate is not None:
                raise InvalidAmountError("Current account cannot carry an interest rate")
            if self.overdraft_limit < ZERO:
                raise InvalidAmountError("Overdraft limit must not be negative")
        else:
            if self.interest_rate is None:
                raise InvalidAmountError("Savings account requires an interest rate")
            if self.overdraft_limit is not None:
                raise InvalidAmountError("Savings account cannot carry an overdraft limit")
            if self.interest_rate < 0:
                raise InvalidAmountError("Interest rate must not be negative")

        if self.balance < balance_floor(self):
            raise InvalidAmountError(
                f"Balance {self.balance} is below the allowed floor {balance_floor(self)}"
            )

    @property
    def floor(self) -> Decimal:
        return balance_floor(self)

    @property
    def available(self) -> Decimal:
        """Amount that can still be debited"""
        return self.balance - self.floor

    def apply_delta(self, amount: Decimal) -> Decimal:
        """
        Add a signed amount to the balance

        Returns:
            The new balance

        Raises:
            InsufficientFundsError: If the result would fall below the floor;
                the balance is left untouched
        """
        new_balance = self.balance + amount
        floor = self.floor
        if new_balance < floor:
            raise InsufficientFundsError(self.id, self.balance, amount, floor)
        self.balance = new_balance
        return new_balance

    def can_debit(self) -> bool:
        """Check if account can be debited"""
        return self.status == AccountStatus.ACTIVE

    def can_credit(self) -> bool:
        """Check if account can receive credits"""
        return self.status != AccountStatus.BLOCKED

    def ensure_operational(self, operation: str) -> None:
        """Raise if the account status forbids a 'debit' or 'credit'"""
        allowed = self.can_debit() if operation == "debit" else self.can_credit()
        if not allowed:
            raise AccountNotOperationalError(self.id, self.status.value, operation)

    def terms(self) -> Dict[str, str]:
        """Variant-specific attributes for display"""
        if self.kind == AccountKind.CURRENT:
            return {"overdraft_limit": str(self.overdraft_limit)}
        return {"interest_rate": str(self.interest_rate)}


class AccountManager:
    """
    Creates accounts and manages their status

    Balances are never changed here; see OperationEngine.
    """

    def __init__(
        self,
        ledger: 'LedgerStore',
        customer_manager: 'CustomerManager',
        locks: Optional[AccountLockManager] = None
    ):
        self.ledger = ledger
        self.customer_manager = customer_manager
        self.locks = locks or customer_manager.locks
        self.logger = get_logger("ebanking.accounts")

    def create_current_account(
        self,
        customer_id: str,
        initial_balance: AmountLike = ZERO,
        overdraft_limit: AmountLike = ZERO,
        account_id: Optional[str] = None
    ) -> Account:
        """
        Open a current account with an authorized overdraft

        Raises:
            CustomerNotFoundError: If the owner does not exist
            InvalidAmountError: If amounts are malformed or the initial
                balance is below -overdraft_limit
            ConflictError: If account_id is already taken
        """
        return self._open(
            customer_id=customer_id,
            kind=AccountKind.CURRENT,
            initial_balance=initial_balance,
            account_id=account_id,
            overdraft_limit=to_non_negative(overdraft_limit, "overdraft_limit")
        )

    def create_savings_account(
        self,
        customer_id: str,
        initial_balance: AmountLike = ZERO,
        interest_rate: AmountLike = ZERO,
        account_id: Optional[str] = None
    ) -> Account:
        """Open an interest-bearing savings account"""
        return self._open(
            customer_id=customer_id,
            kind=AccountKind.SAVINGS,
            initial_balance=initial_balance,
            account_id=account_id,
            interest_rate=to_rate(interest_rate)
        )

    def _open(self, customer_id, kind, initial_balance, account_id, **terms) -> Account:
        now = datetime.now(timezone.utc)
        account = Account(
            id=account_id or str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            customer_id=customer_id,
            kind=kind,
            balance=to_amount(initial_balance, "initial_balance"),
            **terms
        )

        # The owner cannot be deleted and the id cannot be taken until commit
        with self.locks.hold([customer_key(customer_id), account.id]):
            with self.ledger.transaction():
                self.customer_manager.get_customer(customer_id)
                self.ledger.insert_account(account)

        log_action(
            self.logger, "info", f"Account opened: {kind.value}",
            action="create_account", resource=f"account:{account.id}",
            extra={
                "customer_id": customer_id,
                "kind": kind.value,
                "initial_balance": str(account.balance),
                **account.terms()
            }
        )
        return account

    def get_account(self, account_id: str) -> Account:
        """Get account by ID, raising AccountNotFoundError if absent"""
        return self.ledger.get_account(account_id)

    def list_accounts_for_customer(self, customer_id: str) -> List[Account]:
        """All accounts owned by a customer, oldest first"""
        self.customer_manager.get_customer(customer_id)
        return self.ledger.list_accounts_for_customer(customer_id)

    def update_status(self, account_id: str, status: AccountStatus) -> Account:
        """Change account status under the account lock"""
        with self.locks.hold([account_id]):
            with self.ledger.transaction():
                account = self.ledger.get_account(account_id)
                old_status = account.status
                account.status = status
                account.updated_at = datetime.now(timezone.utc)
                self.ledger.save_account(account)

        log_action(
            self.logger, "info", f"Account status changed to {status.value}",
            action="update_account_status", resource=f"account:{account_id}",
            extra={"old_status": old_status.value, "new_status": status.value}
        )
        return account
