"""
Account management and history endpoints
"""

from typing import Optional
from fastapi import APIRouter, HTTPException, Depends, Query, status

from .auth import BankingSystem, get_banking_system, require_role
from .schemas import (
    CreateCurrentAccountRequest, CreateSavingsAccountRequest,
    UpdateAccountStatusRequest, account_to_response, operation_to_response
)
from ..accounts import AccountStatus
from ..security import ROLE_ADMIN, ROLE_USER


router = APIRouter()


@router.post("/current", status_code=status.HTTP_201_CREATED)
def create_current_account(
    request: CreateCurrentAccountRequest,
    system: BankingSystem = Depends(get_banking_system),
    _principal=Depends(require_role(ROLE_ADMIN))
):
    """Open a current account with an overdraft limit"""
    account = system.account_manager.create_current_account(
        customer_id=request.customer_id,
        initial_balance=request.initial_balance,
        overdraft_limit=request.overdraft_limit,
        account_id=request.account_id
    )
    return account_to_response(account)


@router.post("/savings", status_code=status.HTTP_201_CREATED)
def create_savings_account(
    request: CreateSavingsAccountRequest,
    system: BankingSystem = Depends(get_banking_system),
    _principal=Depends(require_role(ROLE_ADMIN))
):
    """Open a savings account with an interest rate"""
    account = system.account_manager.create_savings_account(
        customer_id=request.customer_id,
        initial_balance=request.initial_balance,
        interest_rate=request.interest_rate,
        account_id=request.account_id
    )
    return account_to_response(account)


@router.get("/{account_id}")
def get_account(
    account_id: str,
    system: BankingSystem = Depends(get_banking_system),
    _principal=Depends(require_role(ROLE_USER))
):
    """Get account details"""
    return account_to_response(system.account_manager.get_account(account_id))


@router.put("/{account_id}/status")
def update_account_status(
    account_id: str,
    request: UpdateAccountStatusRequest,
    system: BankingSystem = Depends(get_banking_system),
    _principal=Depends(require_role(ROLE_ADMIN))
):
    """Activate, suspend or block an account"""
    try:
        new_status = AccountStatus(request.status.upper())
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown account status: {request.status}")
    account = system.account_manager.update_status(account_id, new_status)
    return account_to_response(account)


@router.get("/{account_id}/history")
def get_account_history(
    account_id: str,
    page: int = 0,
    size: Optional[int] = Query(None, description="Page size; configured default when omitted"),
    system: BankingSystem = Depends(get_banking_system),
    _principal=Depends(require_role(ROLE_USER))
):
    """One page of operations, newest first"""
    page_size = size if size is not None else system.config.default_page_size
    history = system.history_service.get_history(account_id, page, page_size)
    return history.to_dict()


@router.get("/{account_id}/operations")
def get_account_operations(
    account_id: str,
    system: BankingSystem = Depends(get_banking_system),
    _principal=Depends(require_role(ROLE_USER))
):
    """Every operation of the account, newest first"""
    operations = system.history_service.get_full_history(account_id)
    return {
        "account_id": account_id,
        "operations": [operation_to_response(op) for op in operations]
    }
