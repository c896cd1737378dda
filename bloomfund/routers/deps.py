"""
Shared FastAPI dependencies.

Services are built once in main.py and parked on ``app.state``; routes
reach them through these functions so tests can override any of them.
"""

from datetime import datetime, timezone

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from bloomfund.handlers.payout_handler import PayoutOrchestrator
from bloomfund.handlers.webhook_handler import WebhookReconciler
from database.db import get_db
from database.models import User
from database.store import CampaignStore
from services.auth_service import decode_access_token
from services.stripe_service import StripeService

security = HTTPBearer(auto_error=False)


def get_stripe_service(request: Request) -> StripeService:
    return request.app.state.stripe_service


def get_clock():
    """Current time source; overridden in tests to pin ``now``."""
    return lambda: datetime.now(timezone.utc)


def get_store(db: Session = Depends(get_db)) -> CampaignStore:
    return CampaignStore(db)


def get_orchestrator(
    request: Request,
    store: CampaignStore = Depends(get_store),
    stripe_service: StripeService = Depends(get_stripe_service)
) -> PayoutOrchestrator:
    return PayoutOrchestrator(store, stripe_service, request.app.state.payout_policy)


def get_reconciler(store: CampaignStore = Depends(get_store)) -> WebhookReconciler:
    return WebhookReconciler(store)


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """Extract and validate user from JWT token."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required"
        )

    payload = decode_access_token(credentials.credentials)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token"
        )

    user_id = payload.get("user_id")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload"
        )

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found"
        )

    return user
