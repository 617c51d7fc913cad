"""
Tests for operations and the ledger store
"""

import pytest
from dataclasses import FrozenInstanceError
from decimal import Decimal
from datetime import datetime, timezone

from ebanking.accounts import AccountManager
from ebanking.customers import CustomerManager
from ebanking.errors import ConflictError, InvalidAmountError
from ebanking.ledger import LedgerStore, Operation, OperationType, SortOrder
from ebanking.storage import InMemoryStorage, SQLiteStorage


def make_operation(op_id: int, account_id: str = "acc-1", op_type=OperationType.CREDIT,
                   amount: str = "10.00") -> Operation:
    return Operation(
        id=op_id,
        account_id=account_id,
        type=op_type,
        amount=Decimal(amount),
        timestamp=datetime.now(timezone.utc),
        description=f"op {op_id}"
    )


class TestOperation:
    """Immutable operation records"""

    def test_amount_must_be_positive(self):
        with pytest.raises(InvalidAmountError):
            make_operation(1, amount="0.00")
        with pytest.raises(InvalidAmountError):
            make_operation(1, amount="-1.00")

    def test_signed_amount(self):
        assert make_operation(1).signed_amount == Decimal("10.00")
        assert make_operation(2, op_type=OperationType.DEBIT).signed_amount == Decimal("-10.00")

    def test_is_frozen(self):
        operation = make_operation(1)
        with pytest.raises(FrozenInstanceError):
            operation.amount = Decimal("99.00")


class TestLedgerStore:
    """Ledger store over the in-memory backend"""

    def make_storage(self):
        return InMemoryStorage()

    def setup_method(self):
        self.storage = self.make_storage()
        self.ledger = LedgerStore(self.storage)
        customer_manager = CustomerManager(self.storage)
        account_manager = AccountManager(self.ledger, customer_manager)
        customer = customer_manager.create_customer("Ledger Owner", "owner@example.com")
        self.account = account_manager.create_current_account(
            customer.id, initial_balance="100", overdraft_limit="25", account_id="acc-1"
        )

    def teardown_method(self):
        self.storage.close()

    def test_operations_round_trip(self):
        original = make_operation(self.ledger.next_operation_id())
        self.ledger.append_operation(original)

        [loaded] = self.ledger.list_operations("acc-1")
        assert loaded == original

    def test_list_order_and_paging(self):
        for _ in range(5):
            self.ledger.append_operation(make_operation(self.ledger.next_operation_id()))
        self.ledger.append_operation(make_operation(self.ledger.next_operation_id(), "acc-2"))

        newest = self.ledger.list_operations("acc-1")
        assert [op.id for op in newest] == [5, 4, 3, 2, 1]

        oldest = self.ledger.list_operations("acc-1", order=SortOrder.OLDEST_FIRST)
        assert [op.id for op in oldest] == [1, 2, 3, 4, 5]

        page = self.ledger.list_operations("acc-1", offset=2, limit=2)
        assert [op.id for op in page] == [3, 2]

        assert self.ledger.count_operations("acc-1") == 5
        assert self.ledger.count_operations("acc-2") == 1

    def test_operations_are_append_only(self):
        self.ledger.append_operation(make_operation(1))
        with pytest.raises(ConflictError):
            self.ledger.append_operation(make_operation(1, amount="99.00"))
        assert self.ledger.list_operations("acc-1")[0].amount == Decimal("10.00")

    def test_save_account_bumps_version(self):
        account = self.ledger.get_account("acc-1")
        account.apply_delta(Decimal("-50.00"))
        self.ledger.save_account(account)
        assert account.version == 2

        loaded = self.ledger.get_account("acc-1")
        assert loaded.balance == Decimal("50.00")
        assert loaded.version == 2

    def test_save_account_rejects_stale_version(self):
        first = self.ledger.get_account("acc-1")
        second = self.ledger.get_account("acc-1")

        first.apply_delta(Decimal("10.00"))
        self.ledger.save_account(first)

        second.apply_delta(Decimal("20.00"))
        with pytest.raises(ConflictError):
            self.ledger.save_account(second)

        assert self.ledger.get_account("acc-1").balance == Decimal("110.00")

    def test_transaction_rolls_back_account_and_operation(self):
        with pytest.raises(RuntimeError):
            with self.ledger.transaction():
                account = self.ledger.get_account("acc-1")
                account.apply_delta(Decimal("5.00"))
                self.ledger.save_account(account)
                self.ledger.append_operation(make_operation(self.ledger.next_operation_id()))
                raise RuntimeError("boom")

        assert self.ledger.get_account("acc-1").balance == Decimal("100.00")
        assert self.ledger.count_operations("acc-1") == 0

    def test_list_accounts_for_customer(self):
        accounts = self.ledger.list_accounts_for_customer(self.account.customer_id)
        assert [a.id for a in accounts] == ["acc-1"]
        assert self.ledger.list_accounts_for_customer("nobody") == []


class TestLedgerStoreSQLite(TestLedgerStore):
    """Same checks against SQLite"""

    def make_storage(self):
        return SQLiteStorage(":memory:")
