"""
eBanking Ledger API Application Factory
"""

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from .auth import BankingSystem, get_banking_system
from .login import router as login_router
from .customers import router as customers_router
from .accounts import router as accounts_router
from .operations import router as operations_router
from .. import __version__
from ..config import get_config
from ..errors import (
    AccountNotOperationalError, AuthenticationError, BankingError, ConflictError,
    ContentionError, InsufficientFundsError, InvalidAmountError, InvalidPageError,
    NotFoundError
)
from ..logging_config import get_logger, setup_logging

logger = get_logger("ebanking.api")

# Checked in order; subclasses before their bases
ERROR_STATUS_CODES = (
    (NotFoundError, 404),
    (InvalidAmountError, 400),
    (InvalidPageError, 400),
    (InsufficientFundsError, 422),
    (AccountNotOperationalError, 409),
    (ConflictError, 409),
    (ContentionError, 503),
    (AuthenticationError, 401),
)


def status_code_for(error: BankingError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            return status_code
    return 400


async def banking_error_handler(request: Request, exc: BankingError) -> JSONResponse:
    """Translate domain failures into their response codes"""
    status_code = status_code_for(exc)
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    if status_code >= 500:
        logger.warning(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "error": exc.to_dict()},
        headers=headers
    )


def create_app(system: Optional[BankingSystem] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    config = system.config if system else get_config()

    app = FastAPI(
        title="eBanking Ledger API",
        description="Accounts, balance operations and history for a banking back office",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(BankingError, banking_error_handler)

    if system is not None:
        app.dependency_overrides[get_banking_system] = lambda: system

    # Include routers
    app.include_router(login_router, prefix="/auth", tags=["Auth"])
    app.include_router(customers_router, prefix="/customers", tags=["Customers"])
    app.include_router(accounts_router, prefix="/accounts", tags=["Accounts"])
    app.include_router(operations_router, prefix="/operations", tags=["Operations"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "ebanking_ledger_api",
            "version": __version__
        }

    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Start the API under uvicorn using configured defaults"""
    config = get_config()
    setup_logging(config.log_level, log_file=config.log_file)
    uvicorn.run(
        create_app(),
        host=host or config.api_host,
        port=port or config.api_port,
        log_level=config.log_level.lower()
    )
