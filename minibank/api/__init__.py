"""
Minibank API Application Factory
"""

from contextlib import asynccontextmanager
from typing import Optional
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from .. import __version__
from ..config import MinibankConfig, get_config
from ..errors import BankingError, InternalError
from ..logging_config import log_action, setup_logging
from .accounts import router as accounts_router
from .sessions import router as sessions_router
from .system import BankingSystem, build_system
from .users import router as users_router


logger = logging.getLogger(__name__)


def create_app(system: Optional[BankingSystem] = None,
               config: Optional[MinibankConfig] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    When `system` is given it is used as-is (tests pass one built on
    InMemoryStorage). Otherwise the lifespan connects to the configured
    database, waiting for it to come up, and closes it on shutdown.
    """
    config = config or (system.config if system else get_config())
    setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.banking_system is None
        if owned:
            app.state.banking_system = build_system(config)
            logger.info("Banking system initialized")
        yield
        if owned:
            app.state.banking_system.close()
            app.state.banking_system = None
            logger.info("Storage closed")

    app = FastAPI(
        title="Minibank API",
        description="User registration, token sessions and deposits",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.banking_system = system

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(BankingError)
    async def banking_error_handler(request: Request, exc: BankingError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        log_action(logger, "error", f"Unhandled error on {request.method} {request.url.path}",
                   action="unhandled_error", resource=request.url.path, exc_info=exc)
        return JSONResponse(status_code=500, content=InternalError().to_dict())

    app.include_router(users_router, prefix="/users", tags=["Users"])
    app.include_router(sessions_router, prefix="/sessions", tags=["Sessions"])
    app.include_router(accounts_router, prefix="/me/accounts", tags=["Accounts"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "minibank_api",
            "version": __version__
        }

    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Minibank API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "register": "POST /users",
                "login": "POST /sessions",
                "logout": "POST /sessions/logout",
                "balance": "POST /me/accounts",
                "deposit": "POST /me/accounts/transactions",
            }
        }

    return app


def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Run the FastAPI server"""
    config = get_config()
    uvicorn.run(
        "minibank.api:create_app",
        factory=True,
        host=host or config.api_host,
        port=port or config.api_port,
        reload=debug,
        log_level=config.log_level.lower()
    )
