"""
Tests for the operation engine: credits, debits, transfers, concurrency
"""

import pytest
import threading
from decimal import Decimal

from ebanking.accounts import AccountManager, AccountStatus
from ebanking.customers import CustomerManager
from ebanking.errors import (
    AccountNotFoundError, AccountNotOperationalError, ConflictError, ContentionError,
    InsufficientFundsError, InvalidAmountError
)
from ebanking.ledger import LedgerStore, OperationType
from ebanking.locking import AccountLockManager, customer_key
from ebanking.operations import OperationEngine
from ebanking.storage import InMemoryStorage, SQLiteStorage


class FlakyLedger(LedgerStore):
    """Ledger whose save_account fails with ConflictError a set number of times"""

    def __init__(self, storage, failures):
        super().__init__(storage)
        self.failures = failures
        self.save_attempts = 0

    def save_account(self, account):
        self.save_attempts += 1
        if self.save_attempts <= self.failures:
            raise ConflictError("simulated concurrent writer", account_id=account.id)
        super().save_account(account)


class TestOperationEngine:
    """Engine over the in-memory backend"""

    def make_storage(self):
        return InMemoryStorage()

    def make_ledger(self, storage):
        return LedgerStore(storage)

    def setup_method(self):
        self.storage = self.make_storage()
        self.ledger = self.make_ledger(self.storage)
        self.locks = AccountLockManager(timeout=5.0)
        self.customer_manager = CustomerManager(self.storage, self.locks)
        self.account_manager = AccountManager(self.ledger, self.customer_manager, self.locks)
        self.engine = OperationEngine(self.ledger, self.locks, max_retries=3, retry_backoff=0)

        self.customer = self.customer_manager.create_customer("Test Holder", "holder@example.com")

    def teardown_method(self):
        self.storage.close()

    def current(self, account_id, balance="0", overdraft="0"):
        return self.account_manager.create_current_account(
            self.customer.id, initial_balance=balance, overdraft_limit=overdraft,
            account_id=account_id
        )

    def balance(self, account_id) -> Decimal:
        return self.account_manager.get_account(account_id).balance

    def test_credit(self):
        self.current("A", balance="10")
        operation = self.engine.credit("A", "25.50", "Salary")

        assert operation.type == OperationType.CREDIT
        assert operation.amount == Decimal("25.50")
        assert operation.description == "Salary"
        assert operation.timestamp.tzinfo is not None
        assert self.balance("A") == Decimal("35.50")
        assert self.ledger.list_operations("A") == [operation]

    def test_debit_into_overdraft_then_refused(self):
        self.current("A", balance="100", overdraft="50")

        self.engine.debit("A", 120, "Rent")
        assert self.balance("A") == Decimal("-20.00")

        with pytest.raises(InsufficientFundsError):
            self.engine.debit("A", 40, "Too much")
        assert self.balance("A") == Decimal("-20.00")
        assert self.ledger.count_operations("A") == 1

    def test_debit_savings_to_zero(self):
        self.account_manager.create_savings_account(
            self.customer.id, initial_balance="30", interest_rate="0.02", account_id="S"
        )
        self.engine.debit("S", "30")
        assert self.balance("S") == Decimal("0.00")
        with pytest.raises(InsufficientFundsError):
            self.engine.debit("S", "0.01")

    def test_credit_missing_account_leaves_no_trace(self):
        with pytest.raises(AccountNotFoundError):
            self.engine.credit("missing", 10)
        assert self.storage.count("operations") == 0

    @pytest.mark.parametrize("amount", [0, "-5", "abc", "0.004", "1" + "0" * 30])
    def test_invalid_amounts(self, amount):
        self.current("A", balance="10")
        with pytest.raises(InvalidAmountError):
            self.engine.credit("A", amount)
        with pytest.raises(InvalidAmountError):
            self.engine.debit("A", amount)
        assert self.balance("A") == Decimal("10.00")

    def test_amount_is_validated_before_existence(self):
        with pytest.raises(InvalidAmountError):
            self.engine.debit("missing", -1)

    def test_status_checked_before_funds(self):
        self.current("A", balance="0")
        self.account_manager.update_status("A", AccountStatus.SUSPENDED)
        with pytest.raises(AccountNotOperationalError):
            self.engine.debit("A", 1000)

    def test_suspended_account_accepts_credits_only(self):
        self.current("A", balance="10")
        self.account_manager.update_status("A", AccountStatus.SUSPENDED)

        with pytest.raises(AccountNotOperationalError):
            self.engine.debit("A", 1)
        self.engine.credit("A", 5)
        assert self.balance("A") == Decimal("15.00")

    def test_blocked_account_refuses_everything(self):
        self.current("A", balance="10")
        self.account_manager.update_status("A", AccountStatus.BLOCKED)

        with pytest.raises(AccountNotOperationalError):
            self.engine.credit("A", 1)
        with pytest.raises(AccountNotOperationalError):
            self.engine.debit("A", 1)
        assert self.ledger.count_operations("A") == 0

    def test_transfer(self):
        self.current("A", balance="100")
        self.current("B", balance="5")

        debit_op, credit_op = self.engine.transfer("A", "B", "30")

        assert debit_op.type == OperationType.DEBIT
        assert debit_op.account_id == "A"
        assert debit_op.description == "Transfer to B"
        assert credit_op.type == OperationType.CREDIT
        assert credit_op.account_id == "B"
        assert credit_op.description == "Transfer from A"
        assert debit_op.id < credit_op.id

        assert self.balance("A") == Decimal("70.00")
        assert self.balance("B") == Decimal("35.00")

    def test_transfer_insufficient_funds_changes_nothing(self):
        self.current("A", balance="10")
        self.current("B", balance="0")

        with pytest.raises(InsufficientFundsError):
            self.engine.transfer("A", "B", 30)

        assert self.balance("A") == Decimal("10.00")
        assert self.balance("B") == Decimal("0.00")
        assert self.storage.count("operations") == 0

    def test_transfer_failing_credit_leg_rolls_back_debit(self):
        self.current("A", balance="100")
        self.current("B", balance="0")
        self.account_manager.update_status("B", AccountStatus.BLOCKED)

        with pytest.raises(AccountNotOperationalError):
            self.engine.transfer("A", "B", 30)

        assert self.balance("A") == Decimal("100.00")
        assert self.ledger.count_operations("A") == 0
        assert self.ledger.count_operations("B") == 0

    def test_transfer_to_self_is_invalid(self):
        self.current("A", balance="100")
        with pytest.raises(InvalidAmountError):
            self.engine.transfer("A", "A", 10)

    def test_transfer_missing_account(self):
        self.current("A", balance="100")
        with pytest.raises(AccountNotFoundError):
            self.engine.transfer("A", "missing", 10)
        with pytest.raises(AccountNotFoundError):
            self.engine.transfer("missing", "A", 10)
        assert self.balance("A") == Decimal("100.00")
        assert self.storage.count("operations") == 0

    def test_balance_equals_initial_plus_operations(self):
        self.current("A", balance="50", overdraft="100")
        self.current("B", balance="0")

        self.engine.credit("A", "12.34")
        self.engine.debit("A", "100")
        self.engine.transfer("A", "B", "7.66")
        self.engine.transfer("B", "A", "2.00")
        with pytest.raises(InsufficientFundsError):
            self.engine.debit("A", "500")

        for account_id, initial in (("A", Decimal("50.00")), ("B", Decimal("0.00"))):
            net = sum(op.signed_amount for op in self.ledger.list_operations(account_id))
            assert self.balance(account_id) == initial + net

    def test_concurrent_debits_apply_exactly_once(self):
        self.current("A", balance="100")
        successes = []
        failures = []

        def withdraw():
            try:
                successes.append(self.engine.debit("A", 10))
            except InsufficientFundsError as e:
                failures.append(e)

        threads = [threading.Thread(target=withdraw) for _ in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(successes) == 10
        assert len(failures) == 10
        assert self.balance("A") == Decimal("0.00")
        assert len({op.id for op in successes}) == 10
        assert self.ledger.count_operations("A") == 10

    def test_opposite_transfers_do_not_deadlock(self):
        self.current("A", balance="1000")
        self.current("B", balance="1000")
        errors = []

        def move(source, dest):
            try:
                for _ in range(5):
                    self.engine.transfer(source, dest, 1)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=move, args=("A", "B")) for _ in range(4)]
        threads += [threading.Thread(target=move, args=("B", "A")) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(30)

        assert errors == []
        assert not any(t.is_alive() for t in threads)
        assert self.balance("A") + self.balance("B") == Decimal("2000.00")
        assert self.ledger.count_operations("A") == 40

    def hold_in_background(self, locks, keys):
        """Hold keys from another thread until the returned event is set"""
        held = threading.Event()
        release = threading.Event()

        def holder():
            with locks.hold(keys):
                held.set()
                release.wait(5)

        thread = threading.Thread(target=holder)
        thread.start()
        assert held.wait(5)
        return release, thread

    def test_lock_timeout_surfaces_contention_after_retries(self):
        self.current("A", balance="100")
        locks = AccountLockManager(timeout=0.05)
        engine = OperationEngine(self.ledger, locks, max_retries=2, retry_backoff=0)

        release, thread = self.hold_in_background(locks, ["A"])
        try:
            with pytest.raises(ContentionError):
                engine.debit("A", 10)
        finally:
            release.set()
            thread.join()

        assert self.balance("A") == Decimal("100.00")
        assert self.ledger.count_operations("A") == 0
        assert locks.active_keys() == []

    def test_lock_map_is_emptied_after_missing_accounts(self):
        for i in range(50):
            with pytest.raises(AccountNotFoundError):
                self.engine.credit(f"missing-{i}", 1)
        assert self.locks.active_keys() == []

    def test_concurrent_duplicate_account_ids(self):
        barrier = threading.Barrier(8)
        created = []
        conflicts = []

        def open_account(n):
            barrier.wait(5)
            try:
                created.append(self.current("DUP", balance=str(n)))
            except ConflictError as e:
                conflicts.append(e)

        threads = [threading.Thread(target=open_account, args=(n,)) for n in range(1, 9)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(30)

        assert len(created) == 1
        assert len(conflicts) == 7
        assert self.balance("DUP") == created[0].balance

    def test_account_opening_waits_for_customer_lock(self):
        locks = AccountLockManager(timeout=0.05)
        account_manager = AccountManager(self.ledger, self.customer_manager, locks)

        release, thread = self.hold_in_background(locks, [customer_key(self.customer.id)])
        try:
            with pytest.raises(ContentionError):
                account_manager.create_current_account(self.customer.id, account_id="A")
        finally:
            release.set()
            thread.join()

        assert self.ledger.list_accounts_for_customer(self.customer.id) == []


class TestOperationEngineSQLite(TestOperationEngine):
    """Same behaviour against SQLite"""

    def make_storage(self):
        return SQLiteStorage(":memory:")


class TestOperationRetries:
    """Conflicts are retried, up to max_retries"""

    def setup_account(self, failures, max_retries=3):
        self.storage = InMemoryStorage()
        self.ledger = FlakyLedger(self.storage, failures=0)
        customer_manager = CustomerManager(self.storage)
        customer = customer_manager.create_customer("Retry Holder", "retry@example.com")
        AccountManager(self.ledger, customer_manager).create_current_account(
            customer.id, initial_balance="100", account_id="A"
        )
        self.ledger.failures = failures
        self.engine = OperationEngine(self.ledger, max_retries=max_retries, retry_backoff=0)

    def test_conflict_is_retried(self):
        self.setup_account(failures=2)

        operation = self.engine.debit("A", 10)

        assert self.ledger.save_attempts == 3
        assert self.ledger.get_account("A").balance == Decimal("90.00")
        assert self.ledger.list_operations("A") == [operation]

    def test_gives_up_after_max_retries(self):
        self.setup_account(failures=10, max_retries=3)

        with pytest.raises(ConflictError):
            self.engine.credit("A", 10)

        assert self.ledger.save_attempts == 4
        assert self.ledger.get_account("A").balance == Decimal("100.00")
        assert self.ledger.count_operations("A") == 0

    def test_business_failures_are_not_retried(self):
        self.setup_account(failures=0)

        with pytest.raises(InsufficientFundsError):
            self.engine.debit("A", 1000)

        assert self.ledger.save_attempts == 0
