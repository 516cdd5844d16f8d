import logging
from typing import Optional, Tuple

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from slotbook.db.session import get_db
from slotbook.db.unit_of_work import UnitOfWork
from slotbook.api.deps import get_notifier, get_reconciliation
from slotbook.core.config import settings
from slotbook.services.notifier import Notifier
from slotbook.services.payment_gateway import STATUS_FAILED, STATUS_SUCCEEDED, StubPaymentGateway
from slotbook.services.reconciliation import PaymentReconciliationService
from slotbook.schemas.payment import PaymentConfirmation, PaymentWebhook
from slotbook.schemas.common import ErrorResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])

STRIPE_EVENT_STATUSES = {
    "payment_intent.succeeded": STATUS_SUCCEEDED,
    "payment_intent.payment_failed": STATUS_FAILED,
    "payment_intent.canceled": STATUS_FAILED,
}


def _parse_stripe_event(payload: bytes, signature: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    if not signature:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing Stripe-Signature header")
    try:
        event = stripe.Webhook.construct_event(payload, signature, settings.STRIPE_WEBHOOK_SECRET)
    except ValueError:
        logger.warning("Rejected payment webhook: invalid payload")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")
    except stripe.SignatureVerificationError:
        logger.warning("Rejected payment webhook: invalid signature")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid signature")

    outcome = STRIPE_EVENT_STATUSES.get(event["type"])
    if outcome is None:
        logger.info("Ignoring Stripe event %s", event["type"])
        return None, None
    return event["data"]["object"]["id"], outcome


def _parse_plain_payload(payload: bytes) -> Tuple[str, str]:
    try:
        body = PaymentWebhook.model_validate_json(payload)
    except ValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.errors())
    return body.gateway_transaction_id, body.status


def _reconcile(
    db: Session,
    reconciliation: PaymentReconciliationService,
    notifier: Notifier,
    gateway_transaction_id: str,
    outcome: str,
    signed: bool,
) -> PaymentConfirmation:
    with UnitOfWork(db, publisher=notifier.publish) as uow:
        if signed:
            payment = reconciliation.confirm_payment(uow, gateway_transaction_id, outcome)
        else:
            payment = reconciliation.confirm_reported_payment(uow, gateway_transaction_id, outcome)

    return PaymentConfirmation(
        gateway_transaction_id=payment.gateway_transaction_id,
        payment_status=payment.status,
        booking_status=payment.booking.status,
    )


@router.post(
    "/payments",
    response_model=Optional[PaymentConfirmation],
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def payment_webhook(
    request: Request,
    db: Session = Depends(get_db),
    reconciliation: PaymentReconciliationService = Depends(get_reconciliation),
    notifier: Notifier = Depends(get_notifier),
):
    """
    Payment outcome pushed by the gateway.

    With `STRIPE_WEBHOOK_SECRET` set, the body must be a signed Stripe event.
    Without it, only the stub gateway takes the plain
    `{gateway_transaction_id, status}` body, and the status must match what the
    gateway reports for the intent. Duplicate deliveries are harmless. Errors
    are returned so the gateway retries.
    """
    payload = await request.body()

    if settings.STRIPE_WEBHOOK_SECRET:
        gateway_transaction_id, outcome = _parse_stripe_event(
            payload, request.headers.get("stripe-signature")
        )
        if gateway_transaction_id is None:
            return None
        signed = True
    elif reconciliation.gateway.name == StubPaymentGateway.name:
        gateway_transaction_id, outcome = _parse_plain_payload(payload)
        signed = False
    else:
        logger.error("No webhook secret configured for the %s gateway", reconciliation.gateway.name)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Webhook configuration error")

    logger.info("Payment webhook for %s: %s", gateway_transaction_id, outcome)
    return await run_in_threadpool(
        _reconcile, db, reconciliation, notifier, gateway_transaction_id, outcome, signed
    )
