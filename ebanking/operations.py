"""
Operation Engine Module

The only code path that changes an account balance. Every balance change is
paired with exactly one Operation appended to the ledger, and both are
committed in the same store transaction.
"""

import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, List, Optional, Tuple, TypeVar

from .errors import BankingError, InvalidAmountError, RETRYABLE_ERRORS
from .ledger import LedgerStore, Operation, OperationType
from .locking import AccountLockManager
from .logging_config import get_logger, log_action
from .money import AmountLike, to_positive_amount

T = TypeVar("T")


class OperationEngine:
    """
    Applies credits, debits and transfers

    Mutations of one account are serialized by the lock manager; the
    version check in LedgerStore.save_account catches writers that bypass it.
    Contention and version conflicts are retried, business failures are not.
    """

    def __init__(
        self,
        ledger: LedgerStore,
        locks: Optional[AccountLockManager] = None,
        max_retries: int = 3,
        retry_backoff: float = 0.01
    ):
        self.ledger = ledger
        self.locks = locks or AccountLockManager()
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff
        self.logger = get_logger("ebanking.operations")

    def credit(
        self,
        account_id: str,
        amount: AmountLike,
        description: str = "",
        principal_id: Optional[str] = None
    ) -> Operation:
        """
        Add funds to an account

        Args:
            account_id: Account to credit
            amount: Strictly positive amount
            description: Free text recorded on the operation
            principal_id: Caller identity, used for logging only

        Returns:
            The appended CREDIT operation

        Raises:
            InvalidAmountError: If amount is not strictly positive
            AccountNotFoundError: If the account does not exist
            AccountNotOperationalError: If the account is BLOCKED
        """
        value = to_positive_amount(amount)
        operation = self._run(
            "credit", [account_id], principal_id,
            lambda: self._apply(account_id, OperationType.CREDIT, value, description)
        )
        self._log_success("credit", [operation], principal_id)
        return operation

    def debit(
        self,
        account_id: str,
        amount: AmountLike,
        description: str = "",
        principal_id: Optional[str] = None
    ) -> Operation:
        """
        Withdraw funds from an account

        Raises:
            InvalidAmountError: If amount is not strictly positive
            AccountNotFoundError: If the account does not exist
            AccountNotOperationalError: If the account is not ACTIVE
            InsufficientFundsError: If the balance would fall below its floor
        """
        value = to_positive_amount(amount)
        operation = self._run(
            "debit", [account_id], principal_id,
            lambda: self._apply(account_id, OperationType.DEBIT, value, description)
        )
        self._log_success("debit", [operation], principal_id)
        return operation

    def transfer(
        self,
        source_id: str,
        dest_id: str,
        amount: AmountLike,
        principal_id: Optional[str] = None
    ) -> Tuple[Operation, Operation]:
        """
        Move funds between two accounts atomically

        Both legs run in one store transaction while both account locks are
        held, so either both balances change or neither does.

        Returns:
            (debit operation on source, credit operation on destination)
        """
        value = to_positive_amount(amount)
        if source_id == dest_id:
            raise InvalidAmountError(
                "Source and destination accounts must differ",
                account_id=source_id
            )

        def both_legs() -> Tuple[Operation, Operation]:
            # Existence of both accounts is checked before either leg runs
            self.ledger.get_account(source_id)
            self.ledger.get_account(dest_id)
            debit_op = self._apply(
                source_id, OperationType.DEBIT, value, f"Transfer to {dest_id}"
            )
            credit_op = self._apply(
                dest_id, OperationType.CREDIT, value, f"Transfer from {source_id}"
            )
            return debit_op, credit_op

        operations = self._run("transfer", [source_id, dest_id], principal_id, both_legs)
        self._log_success("transfer", list(operations), principal_id)
        return operations

    def _apply(
        self,
        account_id: str,
        operation_type: OperationType,
        amount: Decimal,
        description: str
    ) -> Operation:
        """One balance change and its operation; caller holds lock and transaction"""
        account = self.ledger.get_account(account_id)

        if operation_type == OperationType.CREDIT:
            account.ensure_operational("credit")
            account.apply_delta(amount)
        else:
            account.ensure_operational("debit")
            account.apply_delta(-amount)

        now = datetime.now(timezone.utc)
        operation = Operation(
            id=self.ledger.next_operation_id(),
            account_id=account_id,
            type=operation_type,
            amount=amount,
            timestamp=now,
            description=description or ""
        )
        account.updated_at = now

        self.ledger.append_operation(operation)
        self.ledger.save_account(account)
        return operation

    def _run(
        self,
        action: str,
        account_ids: List[str],
        principal_id: Optional[str],
        body: Callable[[], T]
    ) -> T:
        """Run body under the account locks and one transaction, with retries"""
        attempt = 0
        while True:
            try:
                with self.locks.hold(account_ids):
                    with self.ledger.transaction():
                        return body()
            except RETRYABLE_ERRORS as e:
                if attempt >= self.max_retries:
                    self._log_failure(action, account_ids, principal_id, e, attempt)
                    raise
                attempt += 1
                self.logger.debug(
                    f"Retrying {action} on {account_ids} after {e.code} "
                    f"(attempt {attempt}/{self.max_retries})"
                )
                time.sleep(self.retry_backoff * attempt)
            except BankingError as e:
                self._log_failure(action, account_ids, principal_id, e, attempt)
                raise

    def _log_success(
        self,
        action: str,
        operations: List[Operation],
        principal_id: Optional[str]
    ) -> None:
        first = operations[0]
        log_action(
            self.logger, "info", f"{action.capitalize()} applied",
            user_id=principal_id, action=action,
            resource=", ".join(f"account:{op.account_id}" for op in operations),
            extra={
                "amount": str(first.amount),
                "operation_ids": [op.id for op in operations]
            }
        )

    def _log_failure(
        self,
        action: str,
        account_ids: List[str],
        principal_id: Optional[str],
        error: BankingError,
        retries: int
    ) -> None:
        log_action(
            self.logger, "warning", f"{action.capitalize()} failed: {error.message}",
            user_id=principal_id, action=action,
            resource=", ".join(f"account:{account_id}" for account_id in account_ids),
            extra={"error": error.code, "retries": retries}
        )
