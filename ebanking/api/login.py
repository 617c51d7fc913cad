"""
Login and profile endpoints
"""

from fastapi import APIRouter, Depends

from .auth import BankingSystem, get_banking_system, get_current_principal
from .schemas import LoginRequest
from ..logging_config import get_logger, log_action
from ..security import Principal


router = APIRouter()
logger = get_logger("ebanking.api.auth")


@router.post("/login")
def login(
    request: LoginRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Authenticate user and return a bearer token"""
    principal = system.identity.authenticate(request.username, request.password)
    token = system.tokens.issue(principal)

    log_action(
        logger, "info", "User authenticated successfully",
        user_id=principal.id, action="login", resource="auth"
    )

    return {
        "access_token": token,
        "token_type": "bearer",
        "expires_at": system.tokens.expires_at().isoformat(),
        "roles": sorted(principal.roles)
    }


@router.get("/profile")
def profile(principal: Principal = Depends(get_current_principal)):
    """Identity carried by the presented token"""
    return {"username": principal.id, "roles": sorted(principal.roles)}
