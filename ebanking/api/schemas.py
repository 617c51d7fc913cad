"""
Pydantic schemas for API requests and responses
"""

from typing import Any, Dict, Optional
from pydantic import BaseModel, Field

from ..accounts import Account
from ..customers import Customer
from ..ledger import Operation


# Auth schemas
class LoginRequest(BaseModel):
    username: str
    password: str


# Customer schemas
class CreateCustomerRequest(BaseModel):
    name: str
    email: str


class UpdateCustomerRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None


# Account schemas
class CreateCurrentAccountRequest(BaseModel):
    customer_id: str
    account_id: Optional[str] = None
    initial_balance: str = Field("0", description="Decimal amount as string")
    overdraft_limit: str = Field("0", description="Decimal amount as string")


class CreateSavingsAccountRequest(BaseModel):
    customer_id: str
    account_id: Optional[str] = None
    initial_balance: str = Field("0", description="Decimal amount as string")
    interest_rate: str = Field("0", description="Annual rate as decimal fraction string")


class UpdateAccountStatusRequest(BaseModel):
    status: str = Field(..., description="Account status (ACTIVE, SUSPENDED, BLOCKED)")


# Operation schemas
class AmountRequest(BaseModel):
    account_id: str
    amount: str = Field(..., description="Decimal amount as string")
    description: str = ""


class TransferRequest(BaseModel):
    source_id: str
    dest_id: str
    amount: str = Field(..., description="Decimal amount as string")


def customer_to_response(customer: Customer) -> Dict[str, Any]:
    return {
        "id": customer.id,
        "name": customer.name,
        "email": customer.email,
        "created_at": customer.created_at.isoformat(),
        "updated_at": customer.updated_at.isoformat()
    }


def account_to_response(account: Account) -> Dict[str, Any]:
    return {
        "id": account.id,
        "customer_id": account.customer_id,
        "kind": account.kind.value,
        "status": account.status.value,
        "balance": str(account.balance),
        "available": str(account.available),
        **account.terms(),
        "created_at": account.created_at.isoformat(),
        "updated_at": account.updated_at.isoformat()
    }


def operation_to_response(operation: Operation) -> Dict[str, Any]:
    return {
        "id": operation.id,
        "account_id": operation.account_id,
        "type": operation.type.value,
        "amount": str(operation.amount),
        "timestamp": operation.timestamp.isoformat(),
        "description": operation.description
    }
