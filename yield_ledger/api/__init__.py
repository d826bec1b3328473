"""
Yield Ledger API Application Factory
"""

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .accounts import router as accounts_router
from .admin import router as admin_router
from .plans import router as plans_router
from ..errors import (
    InvalidStateError, LedgerError, NotFoundError, PermissionDeniedError, ValidationError
)
from ..system import LedgerSystem
from .. import __version__


ERROR_STATUS = {
    NotFoundError: 404,
    InvalidStateError: 409,
    ValidationError: 400,
    PermissionDeniedError: 403,
}


def _error_handler(status_code: int):
    async def handler(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})
    return handler


def create_app(system: Optional[LedgerSystem] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Yield Ledger API",
        description="Deposit accrual, withdrawal settlement and referral commission ledger",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.system = system or LedgerSystem()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Map ledger errors to HTTP responses; anything else ValueError is a bad request
    for error_type, status_code in ERROR_STATUS.items():
        app.add_exception_handler(error_type, _error_handler(status_code))
    app.add_exception_handler(LedgerError, _error_handler(400))
    app.add_exception_handler(ValueError, _error_handler(400))

    # Include routers
    app.include_router(accounts_router, prefix="/accounts", tags=["Accounts"])
    app.include_router(admin_router, prefix="/admin", tags=["Admin"])
    app.include_router(plans_router, prefix="/plans", tags=["Plans"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "yield_ledger_api",
            "version": __version__
        }

    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Run the FastAPI server"""
    import uvicorn
    from ..config import get_config
    from ..logging_config import setup_logging

    config = get_config()
    setup_logging(config.log_level, log_format=config.log_format)
    uvicorn.run(
        "yield_ledger.api:create_app",
        factory=True,
        host=host or config.api_host,
        port=port or config.api_port,
        reload=debug,
        log_level=config.log_level.lower()
    )
