"""
Account History Module

Read-only views over the operation ledger: a paginated page for display and
the complete list for statements. Both are ordered newest first.
"""

import math
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .errors import InvalidPageError
from .ledger import LedgerStore, Operation, SortOrder


@dataclass
class AccountHistory:
    """One page of an account's operations"""
    account_id: str
    current_balance: Decimal
    page: int
    page_size: int
    total_pages: int
    total_operations: int
    operations: List[Operation] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "current_balance": str(self.current_balance),
            "page": self.page,
            "page_size": self.page_size,
            "total_pages": self.total_pages,
            "total_operations": self.total_operations,
            "operations": [
                {
                    "id": op.id,
                    "type": op.type.value,
                    "amount": str(op.amount),
                    "timestamp": op.timestamp.isoformat(),
                    "description": op.description
                }
                for op in self.operations
            ]
        }


class HistoryService:
    """Paginated and full account history"""

    def __init__(self, ledger: LedgerStore, max_page_size: Optional[int] = None):
        self.ledger = ledger
        self.max_page_size = max_page_size

    def get_history(self, account_id: str, page: int, page_size: int) -> AccountHistory:
        """
        Get one page of operations, newest first

        Args:
            account_id: Account to inspect
            page: Zero-based page index
            page_size: Operations per page

        Returns:
            AccountHistory; a page past the end carries no operations

        Raises:
            AccountNotFoundError: If the account does not exist
            InvalidPageError: If page < 0, page_size <= 0 or page_size is
                above the configured maximum
        """
        if page < 0:
            raise InvalidPageError(f"Page must not be negative, got {page}", page=page)
        if page_size <= 0:
            raise InvalidPageError(
                f"Page size must be positive, got {page_size}", page_size=page_size
            )
        if self.max_page_size is not None and page_size > self.max_page_size:
            raise InvalidPageError(
                f"Page size must not exceed {self.max_page_size}, got {page_size}",
                page_size=page_size
            )

        # Balance and page are read in one transaction so they agree
        with self.ledger.transaction():
            account = self.ledger.get_account(account_id)
            total = self.ledger.count_operations(account_id)
            operations = self.ledger.list_operations(
                account_id,
                offset=page * page_size,
                limit=page_size,
                order=SortOrder.NEWEST_FIRST
            )

        return AccountHistory(
            account_id=account_id,
            current_balance=account.balance,
            page=page,
            page_size=page_size,
            total_pages=math.ceil(total / page_size),
            total_operations=total,
            operations=operations
        )

    def get_full_history(self, account_id: str) -> List[Operation]:
        """All operations of an account, newest first"""
        with self.ledger.transaction():
            self.ledger.get_account(account_id)
            return self.ledger.list_operations(account_id, order=SortOrder.NEWEST_FIRST)
