"""
Customer Management Module

Customer identity records. Accounts are not embedded in the customer; they
are looked up with AccountManager.list_accounts_for_customer().
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, Optional
import re
import uuid

from .errors import CustomerHasAccountsError, CustomerNotFoundError
from .locking import AccountLockManager, customer_key
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord

EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')


@dataclass
class Customer(StorageRecord):
    """Bank customer"""
    name: str
    email: str

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise ValueError("Customer name is required")

        if not EMAIL_PATTERN.match(self.email):
            raise ValueError("Invalid email format")


class CustomerManager:
    """
    Administrative lifecycle of customers
    """

    def __init__(self, storage: StorageInterface, locks: Optional[AccountLockManager] = None):
        self.storage = storage
        # Shared with AccountManager so deletion and account opening serialize
        self.locks = locks or AccountLockManager()
        self.table_name = "customers"
        self.accounts_table = "accounts"
        self.logger = get_logger("ebanking.customers")

    def create_customer(self, name: str, email: str) -> Customer:
        """
        Create a new customer

        Args:
            name: Customer's display name
            email: Customer's email address

        Returns:
            Created Customer object
        """
        now = datetime.now(timezone.utc)
        customer = Customer(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            name=name.strip(),
            email=email
        )
        self._save_customer(customer)

        log_action(
            self.logger, "info", "Customer created",
            action="create_customer", resource=f"customer:{customer.id}"
        )
        return customer

    def get_customer(self, customer_id: str) -> Customer:
        """Get customer by ID, raising CustomerNotFoundError if absent"""
        customer_dict = self.storage.load(self.table_name, customer_id)
        if not customer_dict:
            raise CustomerNotFoundError(customer_id)
        return self._customer_from_dict(customer_dict)

    def update_customer(
        self,
        customer_id: str,
        name: Optional[str] = None,
        email: Optional[str] = None
    ) -> Customer:
        """Update the fields that were supplied"""
        customer = self.get_customer(customer_id)

        updated = Customer(
            id=customer.id,
            created_at=customer.created_at,
            updated_at=datetime.now(timezone.utc),
            name=name.strip() if name is not None else customer.name,
            email=email if email is not None else customer.email
        )
        self._save_customer(updated)

        log_action(
            self.logger, "info", "Customer updated",
            action="update_customer", resource=f"customer:{customer_id}",
            extra={"fields": [f for f, v in (("name", name), ("email", email)) if v is not None]}
        )
        return updated

    def delete_customer(self, customer_id: str) -> None:
        """
        Delete a customer that owns no accounts

        Raises:
            CustomerNotFoundError: If the customer does not exist
            CustomerHasAccountsError: If any account still references it
        """
        with self.locks.hold([customer_key(customer_id)]), self.storage.atomic():
            self.get_customer(customer_id)
            account_count = self.storage.count_where(
                self.accounts_table, {"customer_id": customer_id}
            )
            if account_count:
                raise CustomerHasAccountsError(customer_id, account_count)
            self.storage.delete(self.table_name, customer_id)

        log_action(
            self.logger, "info", "Customer deleted",
            action="delete_customer", resource=f"customer:{customer_id}"
        )

    def _save_customer(self, customer: Customer) -> None:
        """Save customer to storage"""
        self.storage.save(self.table_name, customer.id, customer.to_dict())

    def _customer_from_dict(self, data: Dict) -> Customer:
        """Convert dictionary to Customer"""
        return Customer(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            name=data['name'],
            email=data['email']
        )
