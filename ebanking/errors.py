"""
Domain Error Module

Typed failures raised by the ledger core. The API layer maps each kind to a
response code, so callers never see a generic or storage-level error.
"""

from typing import Optional


class BankingError(Exception):
    """Base class for every failure surfaced by the ledger core"""

    code = "banking_error"

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        """Serializable form used in API error bodies and log records"""
        result = {"code": self.code, "message": self.message}
        if self.context:
            result["context"] = {k: str(v) for k, v in self.context.items()}
        return result


class NotFoundError(BankingError):
    """A customer or account does not exist"""
    code = "not_found"


class CustomerNotFoundError(NotFoundError):
    code = "customer_not_found"

    def __init__(self, customer_id: str):
        super().__init__(f"Customer {customer_id} not found", customer_id=customer_id)
        self.customer_id = customer_id


class AccountNotFoundError(NotFoundError):
    code = "account_not_found"

    def __init__(self, account_id: str):
        super().__init__(f"Account {account_id} not found", account_id=account_id)
        self.account_id = account_id


class InvalidAmountError(BankingError, ValueError):
    """Amount is non-positive, malformed, or otherwise unusable"""
    code = "invalid_amount"


class InsufficientFundsError(BankingError):
    """Mutation would breach the account's balance floor"""
    code = "insufficient_funds"

    def __init__(self, account_id: str, balance, requested_delta, floor):
        super().__init__(
            f"Insufficient funds on account {account_id}: balance {balance}, "
            f"delta {requested_delta}, floor {floor}",
            account_id=account_id,
            balance=balance,
            delta=requested_delta,
            floor=floor,
        )
        self.account_id = account_id


class AccountNotOperationalError(BankingError):
    """Account status does not allow the requested operation"""
    code = "account_not_operational"

    def __init__(self, account_id: str, status: str, operation: str):
        super().__init__(
            f"Account {account_id} is {status} and cannot accept a {operation}",
            account_id=account_id,
            status=status,
            operation=operation,
        )
        self.account_id = account_id


class ContentionError(BankingError):
    """Lock or transaction wait exceeded its bound"""
    code = "contention"


class ConflictError(BankingError):
    """Concurrent modification or uniqueness clash detected"""
    code = "conflict"


class CustomerHasAccountsError(ConflictError):
    code = "customer_has_accounts"

    def __init__(self, customer_id: str, account_count: int):
        super().__init__(
            f"Customer {customer_id} still owns {account_count} account(s)",
            customer_id=customer_id,
            account_count=account_count,
        )


class InvalidPageError(BankingError, ValueError):
    """Page index or page size out of range"""
    code = "invalid_page"


class AuthenticationError(BankingError):
    """Credentials or bearer token rejected"""
    code = "authentication_failed"

    def __init__(self, message: str = "Not authenticated", reason: Optional[str] = None):
        if reason:
            super().__init__(message, reason=reason)
        else:
            super().__init__(message)


# Failures that may succeed when the same call is repeated
RETRYABLE_ERRORS = (ContentionError, ConflictError)
