"""
Horizon Banking API Application Factory
"""

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .admin import router as admin_router
from .auth import router as auth_router
from .check_deposits import router as check_deposits_router
from .limits import router as limits_router
from .statements import router as statements_router
from .transactions import router as transactions_router
from .user import router as user_router
from .. import __version__
from ..errors import BankingError
from ..logging_config import get_logger, log_action


logger = get_logger("horizon.api")


async def banking_error_handler(request: Request, exc: BankingError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}", exc_info=exc)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = [".".join(str(part) for part in err.get("loc", ())) for err in exc.errors()]
    return JSONResponse(status_code=400, content={"error": "Invalid request", "fields": fields})


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    log_action(logger, "error", f"Unhandled error on {request.method} {request.url.path}: {exc}",
               action="unhandled_error", resource=request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Internal Server Error"})


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Horizon Banking API",
        description="Banking dashboard API with USD and BTC balances",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(BankingError, banking_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    # Include routers
    app.include_router(auth_router, prefix="/api/auth", tags=["Auth"])
    app.include_router(admin_router, prefix="/api/admin", tags=["Admin"])
    app.include_router(transactions_router, prefix="/api/transactions", tags=["Transactions"])
    app.include_router(user_router, prefix="/api/user", tags=["User"])
    app.include_router(statements_router, prefix="/api/statements", tags=["Statements"])
    app.include_router(limits_router, prefix="/api/limits", tags=["Limits"])
    app.include_router(check_deposits_router, prefix="/api/check-deposits", tags=["Check Deposits"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "horizon_banking_api",
            "version": __version__
        }

    # Root endpoint
    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Horizon Banking API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "auth": "/api/auth",
                "admin": "/api/admin",
                "transactions": "/api/transactions",
                "user": "/api/user",
                "statements": "/api/statements",
                "limits": "/api/limits",
                "check_deposits": "/api/check-deposits",
            }
        }

    return app


app = create_app()


def run_server(host: str = "0.0.0.0", port: int = 8090, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "horizon_banking.api:app",
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )
