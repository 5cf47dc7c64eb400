"""
Billing API routes - pre-flight checks, checkout and payment webhooks
"""
from fastapi import APIRouter, Depends, HTTPException, status, Request, Query
from sqlalchemy.orm import Session
import logging

import stripe

from .auth import CurrentUser, get_current_user
from .config import config
from .db.engine import get_db
from .exceptions import CollectionNotFoundError, CredentialError, WebhookVerificationError, WebhookPayloadError
from .schemas import CheckBillingStatusRequest, CheckoutRequestBody
from .services.billing_calculator import check_billing_status
from .services.billing_gateway import BillingGateway, get_billing_gateway
from .services.checkout_service import CheckoutRequest, CheckoutSessionFactory
from .services.credentials import CollectionResolver, CredentialStore, ResolvedCollection
from .services.free_tier_ledger import FreeTierLedger
from .services.webhook_reconciler import WebhookReconciler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/billing", tags=["billing"])


def get_gateway() -> BillingGateway:
    """Configured payment gateway; 503 when billing is not set up"""
    try:
        return get_billing_gateway(config)
    except ValueError as e:
        logger.error(f"Billing gateway unavailable: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Billing is not configured")


def get_credential_store() -> CredentialStore:
    return CredentialStore()


def resolve_collection_or_404(db: Session, collection_id: int, user_id: str) -> ResolvedCollection:
    try:
        return CollectionResolver(db).resolve(collection_id, user_id)
    except CollectionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.post("/check-status")
async def check_status(
    request: CheckBillingStatusRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    credentials: CredentialStore = Depends(get_credential_store),
):
    """
    Billing pre-flight for a planned batch

    Tells the UI whether the batch fits in the free tier, is covered by the
    user's own API key, or needs a checkout first.
    """
    collection = resolve_collection_or_404(db, request.collection_id, current_user.id)
    try:
        credential = credentials.resolve_generation_credential(collection)
    except CredentialError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    allowance = FreeTierLedger(db).read_allowance(current_user.id)
    return check_billing_status(credential, allowance, request.field_count)


@router.post("/checkout")
async def create_checkout(
    request: CheckoutRequestBody,
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: BillingGateway = Depends(get_gateway),
):
    """Create a checkout session for the paid part of a batch"""
    if not current_user.email:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User email is required for checkout")

    collection = resolve_collection_or_404(db, request.collection_id, current_user.id)
    checkout_request = CheckoutRequest(
        user_id=current_user.id,
        email=current_user.email,
        collection_id=collection.id,
        external_collection_id=collection.external_collection_id,
        item_ids=request.item_ids,
        item_count=request.item_count or len(request.item_ids),
        collection_name=request.collection_name or collection.display_name,
    )
    customer_id = FreeTierLedger(db).get_customer_id(current_user.id)

    try:
        session = CheckoutSessionFactory(gateway).create_checkout_session(checkout_request, customer_id=customer_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except stripe.StripeError as e:
        logger.error(f"Checkout creation failed for user {current_user.id}: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Payment provider error")

    return {"session_id": session.session_id, "url": session.redirect_url}


@router.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    gateway: BillingGateway = Depends(get_gateway),
):
    """
    Stripe webhook endpoint with signature verification and replay protection

    Duplicate deliveries are acknowledged. Database failures surface as 500 so
    Stripe retries.
    """
    signature = request.headers.get("stripe-signature") or ""
    body = await request.body()

    try:
        result = WebhookReconciler(db, gateway).handle_webhook(body, signature)
    except WebhookVerificationError as e:
        logger.warning(f"Rejected Stripe webhook: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except WebhookPayloadError as e:
        logger.error(f"Unusable Stripe webhook: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return result.to_dict()


@router.get("/payment-status")
async def payment_status(
    session_id: str = Query(..., min_length=1, description="Checkout session id"),
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Poll for the payment recorded by the webhook for a checkout session"""
    return WebhookReconciler(db).get_payment_status(current_user.id, session_id)
