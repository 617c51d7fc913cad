"""
Operation Ledger

The ledger is the append-only sequence of Operations recording every balance
mutation. Operations are immutable once appended and are never deleted.
LedgerStore is the narrow persistence interface the operation engine and the
history service work through: accounts, operations and the transaction
boundary that spans a single engine call.
"""

from decimal import Decimal
from datetime import datetime
from dataclasses import dataclass
from typing import Dict, List, Optional
from enum import Enum

from .accounts import Account, AccountKind, AccountStatus
from .errors import AccountNotFoundError, InvalidAmountError
from .storage import StorageInterface


class OperationType(Enum):
    """Direction of a balance mutation"""
    CREDIT = "CREDIT"  # Increases balance
    DEBIT = "DEBIT"    # Decreases balance


class SortOrder(Enum):
    NEWEST_FIRST = "desc"
    OLDEST_FIRST = "asc"


@dataclass(frozen=True)
class Operation:
    """
    Immutable record of one balance mutation

    id is assigned from a monotonically increasing store sequence, so for a
    single account id order and timestamp order agree.
    """
    id: int
    account_id: str
    type: OperationType
    amount: Decimal
    timestamp: datetime
    description: str

    def __post_init__(self):
        if self.amount <= Decimal('0'):
            raise InvalidAmountError("Operation amount must be strictly positive")

    @property
    def signed_amount(self) -> Decimal:
        """Amount as applied to the balance"""
        return self.amount if self.type == OperationType.CREDIT else -self.amount


class LedgerStore:
    """
    Persistent keyed storage for accounts and operations

    All methods participate in the storage transaction opened by
    transaction(), so an engine call commits its account and operation
    writes together or not at all.
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.accounts_table = "accounts"
        self.operations_table = "operations"
        self.operation_sequence = "operation_id"

    def transaction(self):
        """Context manager: commit on success, roll back on any exception"""
        return self.storage.atomic()

    def get_account(self, account_id: str) -> Account:
        """Load an account, raising AccountNotFoundError if absent"""
        account_dict = self.storage.load(self.accounts_table, account_id)
        if not account_dict:
            raise AccountNotFoundError(account_id)
        return self._account_from_dict(account_dict)

    def insert_account(self, account: Account) -> None:
        """Persist a new account; ConflictError if the id is taken"""
        self.storage.insert(self.accounts_table, account.id, self._account_to_dict(account))

    def save_account(self, account: Account) -> None:
        """
        Persist a modified account if nobody else changed it since it was read

        Raises:
            ConflictError: If the stored version differs from account.version
        """
        expected_version = account.version
        data = self._account_to_dict(account)
        data['version'] = expected_version + 1
        self.storage.compare_and_save(
            self.accounts_table, account.id, data, expected_version
        )
        account.version = expected_version + 1

    def list_accounts_for_customer(self, customer_id: str) -> List[Account]:
        """Accounts owned by a customer"""
        accounts_data = self.storage.find(self.accounts_table, {"customer_id": customer_id})
        accounts = [self._account_from_dict(data) for data in accounts_data]
        accounts.sort(key=lambda a: a.created_at)
        return accounts

    def next_operation_id(self) -> int:
        return self.storage.next_sequence(self.operation_sequence)

    def append_operation(self, operation: Operation) -> None:
        """Append an operation; existing ids are never overwritten"""
        self.storage.insert(
            self.operations_table, str(operation.id), self._operation_to_dict(operation)
        )

    def list_operations(
        self,
        account_id: str,
        offset: int = 0,
        limit: Optional[int] = None,
        order: SortOrder = SortOrder.NEWEST_FIRST
    ) -> List[Operation]:
        """Page through one account's operations in id order"""
        rows = self.storage.query(
            self.operations_table,
            {"account_id": account_id},
            order_by="id",
            descending=order == SortOrder.NEWEST_FIRST,
            offset=offset,
            limit=limit
        )
        return [self._operation_from_dict(row) for row in rows]

    def count_operations(self, account_id: str) -> int:
        return self.storage.count_where(self.operations_table, {"account_id": account_id})

    def _account_to_dict(self, account: Account) -> Dict:
        """Convert Account to dictionary for storage"""
        result = account.to_dict()
        result['kind'] = account.kind.value
        result['status'] = account.status.value
        result['balance'] = str(account.balance)

        if account.overdraft_limit is not None:
            result['overdraft_limit'] = str(account.overdraft_limit)

        if account.interest_rate is not None:
            result['interest_rate'] = str(account.interest_rate)

        return result

    def _account_from_dict(self, data: Dict) -> Account:
        """Convert dictionary to Account"""
        overdraft_limit = None
        if data.get('overdraft_limit') is not None:
            overdraft_limit = Decimal(data['overdraft_limit'])

        interest_rate = None
        if data.get('interest_rate') is not None:
            interest_rate = Decimal(data['interest_rate'])

        return Account(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            customer_id=data['customer_id'],
            kind=AccountKind(data['kind']),
            balance=Decimal(data['balance']),
            status=AccountStatus(data['status']),
            overdraft_limit=overdraft_limit,
            interest_rate=interest_rate,
            version=data.get('version', 1)
        )

    def _operation_to_dict(self, operation: Operation) -> Dict:
        """Convert Operation to dictionary for storage"""
        return {
            'id': operation.id,
            'account_id': operation.account_id,
            'type': operation.type.value,
            'amount': str(operation.amount),
            'timestamp': operation.timestamp.isoformat(),
            'description': operation.description
        }

    def _operation_from_dict(self, data: Dict) -> Operation:
        """Convert dictionary to Operation"""
        return Operation(
            id=int(data['id']),
            account_id=data['account_id'],
            type=OperationType(data['type']),
            amount=Decimal(data['amount']),
            timestamp=datetime.fromisoformat(data['timestamp']),
            description=data['description']
        )
