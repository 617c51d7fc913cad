"""
Customer management endpoints
"""

from fastapi import APIRouter, HTTPException, Depends, status

from .auth import BankingSystem, get_banking_system, require_role
from .schemas import (
    CreateCustomerRequest, UpdateCustomerRequest,
    account_to_response, customer_to_response
)
from ..security import ROLE_ADMIN, ROLE_USER


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
def create_customer(
    request: CreateCustomerRequest,
    system: BankingSystem = Depends(get_banking_system),
    _principal=Depends(require_role(ROLE_ADMIN))
):
    """Create a new customer"""
    try:
        customer = system.customer_manager.create_customer(request.name, request.email)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return customer_to_response(customer)


@router.get("/{customer_id}")
def get_customer(
    customer_id: str,
    system: BankingSystem = Depends(get_banking_system),
    _principal=Depends(require_role(ROLE_USER))
):
    """Get customer details"""
    return customer_to_response(system.customer_manager.get_customer(customer_id))


@router.put("/{customer_id}")
def update_customer(
    customer_id: str,
    request: UpdateCustomerRequest,
    system: BankingSystem = Depends(get_banking_system),
    _principal=Depends(require_role(ROLE_ADMIN))
):
    """Update customer information"""
    try:
        customer = system.customer_manager.update_customer(
            customer_id, name=request.name, email=request.email
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return customer_to_response(customer)


@router.delete("/{customer_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_customer(
    customer_id: str,
    system: BankingSystem = Depends(get_banking_system),
    _principal=Depends(require_role(ROLE_ADMIN))
):
    """Delete a customer that owns no accounts"""
    system.customer_manager.delete_customer(customer_id)


@router.get("/{customer_id}/accounts")
def list_customer_accounts(
    customer_id: str,
    system: BankingSystem = Depends(get_banking_system),
    _principal=Depends(require_role(ROLE_USER))
):
    """Accounts owned by a customer"""
    accounts = system.account_manager.list_accounts_for_customer(customer_id)
    return {"accounts": [account_to_response(account) for account in accounts]}
