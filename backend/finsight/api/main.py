"""
FastAPI application entry point.

Main API server for the Finsight portfolio analytics engine.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from finsight.core.config import settings
from finsight.core.logging import setup_logging
from finsight.core.database import close_db, create_tables
from finsight.core.redis import close_redis

# Setup logging
setup_logging()

# Create FastAPI application
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Portfolio Valuation & Risk Analytics",
    debug=settings.DEBUG,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup() -> None:
    """Run on application startup."""
    if settings.ENVIRONMENT == "local":
        await create_tables()


@app.on_event("shutdown")
async def shutdown() -> None:
    """Run on application shutdown."""
    await close_db()
    await close_redis()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
    }


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "message": f"Welcome to {settings.APP_NAME} API",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }


from finsight.api.portfolio import router as portfolio_router

app.include_router(portfolio_router, prefix="/api/v1/portfolio", tags=["portfolio"])
