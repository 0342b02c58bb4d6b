"""
Loan Ledger API Application Factory
"""

from typing import Optional

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .auth import LedgerSystem
from .users import router as users_router
from .loans import router as loans_router
from .transactions import router as transactions_router
from .dashboard import router as dashboard_router
from .. import __version__
from ..config import get_config
from ..logging_config import setup_logging, get_logger


API_PREFIX = "/api/v1"

logger = get_logger("loan_ledger.api")


def _describe_validation_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request body"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    if location:
        return f"Invalid request: {location}: {first.get('msg')}"
    return f"Invalid request: {first.get('msg')}"


def create_app(system: Optional[LedgerSystem] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    config = system.config if system is not None else get_config()
    if system is None:
        system = LedgerSystem.from_config(config)

    app = FastAPI(
        title="Loan Ledger API",
        description="Personal loan bookkeeping with a consistent repayment ledger",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.system = system

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": _describe_validation_error(exc)}
        )

    # Include routers
    app.include_router(users_router, prefix=API_PREFIX, tags=["Users"])
    app.include_router(loans_router, prefix=f"{API_PREFIX}/loans", tags=["Loans"])
    app.include_router(transactions_router, prefix=f"{API_PREFIX}/transactions", tags=["Transactions"])
    app.include_router(dashboard_router, prefix=f"{API_PREFIX}/dashboard", tags=["Dashboard"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "loan_ledger_api",
            "version": __version__
        }

    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Run the FastAPI server, with logging configured from settings"""
    config = get_config()
    host = host or config.api_host
    port = port or config.api_port

    setup_logging(level=config.log_level, log_format=config.log_format, log_file=config.log_file)
    logger.info("Starting loan ledger API on %s:%s", host, port)
    uvicorn.run(create_app(), host=host, port=port, log_level=config.log_level.lower())
