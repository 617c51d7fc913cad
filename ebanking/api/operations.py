"""
Balance operation endpoints
"""

from fastapi import APIRouter, Depends, status

from .auth import BankingSystem, get_banking_system, require_role
from .schemas import AmountRequest, TransferRequest, operation_to_response
from ..security import ROLE_USER, Principal


router = APIRouter()


@router.post("/credit", status_code=status.HTTP_201_CREATED)
def credit(
    request: AmountRequest,
    system: BankingSystem = Depends(get_banking_system),
    principal: Principal = Depends(require_role(ROLE_USER))
):
    """Add funds to an account"""
    operation = system.operation_engine.credit(
        request.account_id, request.amount, request.description, principal_id=principal.id
    )
    return operation_to_response(operation)


@router.post("/debit", status_code=status.HTTP_201_CREATED)
def debit(
    request: AmountRequest,
    system: BankingSystem = Depends(get_banking_system),
    principal: Principal = Depends(require_role(ROLE_USER))
):
    """Withdraw funds from an account"""
    operation = system.operation_engine.debit(
        request.account_id, request.amount, request.description, principal_id=principal.id
    )
    return operation_to_response(operation)


@router.post("/transfer", status_code=status.HTTP_201_CREATED)
def transfer(
    request: TransferRequest,
    system: BankingSystem = Depends(get_banking_system),
    principal: Principal = Depends(require_role(ROLE_USER))
):
    """Move funds between two accounts; both legs or neither"""
    debit_op, credit_op = system.operation_engine.transfer(
        request.source_id, request.dest_id, request.amount, principal_id=principal.id
    )
    return {
        "debit": operation_to_response(debit_op),
        "credit": operation_to_response(credit_op)
    }
