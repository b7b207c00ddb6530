import logging
from typing import Optional

import stripe
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from pymongo.errors import PyMongoError
from starlette.concurrency import run_in_threadpool

from config import STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET
from database import get_db
from errors import ExternalServiceError, ValidationError
from orders import apply_payment_event

logger = logging.getLogger(__name__)

if STRIPE_SECRET_KEY:
    stripe.api_key = STRIPE_SECRET_KEY

router = APIRouter(prefix="/api", tags=["payments"])

CHECKOUT_SOURCE = "jewelry-store-checkout"


class PaymentIntentInput(BaseModel):
    amount: float = Field(..., gt=0)
    currency: str = "usd"
    customerEmail: Optional[str] = None
    orderNumber: Optional[str] = None


@router.post("/create-payment-intent")
def create_payment_intent(payload: PaymentIntentInput):
    amount_cents = int(round(payload.amount * 100))
    if amount_cents < 50:
        raise ValidationError("Amount must be at least 0.50")
    metadata = {"source": CHECKOUT_SOURCE}
    if payload.orderNumber:
        metadata["orderNumber"] = payload.orderNumber
    try:
        intent = stripe.PaymentIntent.create(
            amount=amount_cents,
            currency=payload.currency.lower(),
            automatic_payment_methods={"enabled": True},
            receipt_email=payload.customerEmail,
            metadata=metadata,
        )
    except stripe.StripeError as e:
        logger.error("Stripe error creating payment intent: %s", e)
        raise ExternalServiceError("Failed to create payment intent")
    return {"clientSecret": intent.client_secret, "paymentIntentId": intent.id}


@router.post("/webhooks/stripe")
async def stripe_webhook(request: Request, db=Depends(get_db)):
    payload = (await request.body()).decode("utf-8")
    sig_header = request.headers.get("stripe-signature")

    if not sig_header or not STRIPE_WEBHOOK_SECRET:
        raise ValidationError("Missing webhook signature or secret")

    try:
        event = stripe.Webhook.construct_event(payload, sig_header, STRIPE_WEBHOOK_SECRET).to_dict()
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning("Rejected Stripe webhook: %s", e)
        raise ValidationError(f"Webhook error: {e}")

    logger.info("Stripe event %s (%s)", event.get("type"), event.get("id"))
    try:
        # handlers use blocking pymongo and stripe calls
        await run_in_threadpool(apply_payment_event, db, event)
    except (PyMongoError, stripe.StripeError) as e:
        logger.error("Webhook handler failed for %s: %s", event.get("type"), e)
        raise ExternalServiceError("Webhook handler failed")
    return {"received": True}
