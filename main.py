"""
BloomFund FastAPI Application

Entry point for the crowdfunding payout backend.
"""

import os
from typing import Optional
from fastapi import FastAPI, Request
from fastapi.exceptions import HTTPException as FastAPIHTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
import logging

# Load environment variables
load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

from bloomfund.errors import BloomFundError
from bloomfund.routers import campaigns, connect, payments, payouts, webhooks
from services.eligibility_service import PayoutPolicy
from services.stripe_service import StripeService

APP_VERSION = "1.0.0"


def create_app(
    stripe_service: Optional[StripeService] = None,
    payout_policy: Optional[PayoutPolicy] = None
) -> FastAPI:
    """
    Build the API with its services.

    Services live on ``app.state`` for the lifetime of the app instead of as
    module globals; tests pass their own.
    """
    app = FastAPI(
        title="BloomFund API",
        description="Crowdfunding donations, creator payouts and Stripe webhooks",
        version=APP_VERSION
    )

    # CORS configuration (allow web dashboard to call API)
    allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.stripe_service = stripe_service or StripeService()
    app.state.payout_policy = payout_policy or PayoutPolicy.from_env()

    # ============================================
    # Error rendering: every failure is {"error": ...}
    # ============================================

    @app.exception_handler(BloomFundError)
    async def bloomfund_error_handler(request: Request, exc: BloomFundError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_response())

    @app.exception_handler(FastAPIHTTPException)
    async def http_error_handler(request: Request, exc: FastAPIHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None)
        )

    # ============================================
    # Health Check Endpoints
    # ============================================

    @app.get("/health")
    async def health_check():
        """
        Health check endpoint for monitoring.

        Used by load balancers and deployment systems.
        """
        return {
            "status": "healthy",
            "service": "BloomFund API",
            "version": APP_VERSION,
            "environment": os.getenv("APP_ENV", "development"),
            "stripe_mode": "mock" if app.state.stripe_service.is_mock else "live"
        }

    @app.get("/")
    async def root():
        """Root endpoint with API information."""
        return {
            "message": "Welcome to BloomFund API",
            "documentation": "/docs",
            "health": "/health"
        }

    # ============================================
    # Routers
    # ============================================

    app.include_router(payouts.router)
    app.include_router(webhooks.router)
    app.include_router(payments.router)
    app.include_router(connect.router)
    app.include_router(campaigns.router)

    # ============================================
    # Startup/Shutdown Events
    # ============================================

    @app.on_event("startup")
    async def startup_event():
        """Run on application startup."""
        logger.info("BloomFund API starting up...")
        logger.info(f"Environment: {os.getenv('APP_ENV', 'development')}")
        policy = app.state.payout_policy
        logger.info(
            f"Payout policy: {policy.days_after_end}d cooldown, "
            f"{policy.claim_window_days}d claim window, goal required={policy.minimum_goal_required}"
        )

    @app.on_event("shutdown")
    async def shutdown_event():
        """Run on application shutdown."""
        from database.db import engine
        engine.dispose()
        logger.info("BloomFund API shut down")

    return app


app = create_app()


# ============================================
# Run Server (Development Only)
# ============================================

if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("APP_PORT", 8000))
    host = os.getenv("APP_HOST", "0.0.0.0")

    logger.info(f"Starting server on {host}:{port}")

    uvicorn.run(
        "main:app",
        host=host,
        port=port,
        reload=True,  # Auto-reload on code changes (dev only!)
        log_level="info"
    )
