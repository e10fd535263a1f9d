"""Billing router - FastAPI endpoints for contract payments"""

import logging

import stripe
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from ...auth import get_current_contractor
from ...database import get_db
from ...errors import ErrorKind, LifecycleError, not_found
from ...models import Contractor
from ..contracts.repository import ContractRepository
from .payment_service import PaymentService
from .schemas import ChargeRemainingBalanceResponse, WebhookResponse
from .stripe_service import StripeService, get_stripe_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Billing"])


def get_payment_service(
    db: Session = Depends(get_db),
    stripe_client: StripeService = Depends(get_stripe_service),
) -> PaymentService:
    """Dependency injection for PaymentService"""
    return PaymentService(db, stripe_client)


# ============================================================================
# STRIPE WEBHOOK
# ============================================================================


@router.post("/stripe/webhook", response_model=WebhookResponse, response_model_exclude_none=True)
async def stripe_webhook(
    request: Request,
    service: PaymentService = Depends(get_payment_service),
):
    """
    Receive Stripe events.

    Signature failures are rejected. Once verified, the event is always
    acknowledged with 200 so a processing error does not cause endless
    redelivery; the error is logged and returned in the body.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    if not sig_header:
        logger.warning("🚫 Stripe webhook without signature header")
        raise LifecycleError(ErrorKind.VALIDATION_FAILED, "Missing Stripe-Signature header")

    try:
        event = service.stripe.construct_webhook_event(payload, sig_header)
    except RuntimeError as e:
        logger.error(f"❌ {e}")
        raise LifecycleError(ErrorKind.INTERNAL_ERROR, "Webhook secret not configured") from e
    except ValueError as e:
        logger.warning(f"🚫 Invalid Stripe webhook payload: {e}")
        raise LifecycleError(ErrorKind.VALIDATION_FAILED, "Invalid payload") from e
    except stripe.SignatureVerificationError as e:
        logger.warning(f"🚫 Invalid Stripe webhook signature: {e}")
        raise LifecycleError(ErrorKind.VALIDATION_FAILED, "Invalid signature") from e

    try:
        result = await service.handle_webhook_event(event)
    except Exception as e:
        service.db.rollback()
        logger.error(f"❌ Error processing Stripe event {event.get('id')}: {e}")
        return {"received": True, "error": str(e)}

    return {"received": True, "status": result.get("status")}


# ============================================================================
# REMAINING BALANCE
# ============================================================================


@router.post(
    "/contracts/{contract_id}/charge-remaining-balance",
    response_model=ChargeRemainingBalanceResponse,
)
async def charge_remaining_balance(
    contract_id: str,
    contractor: Contractor = Depends(get_current_contractor),
    db: Session = Depends(get_db),
    service: PaymentService = Depends(get_payment_service),
):
    """Charge the client's saved card for the balance left after the deposit"""
    contract = ContractRepository.get_contract_for_company(db, contract_id, contractor.company_id)
    if not contract:
        raise not_found()

    result = service.charge_remaining_balance(contract, contractor)
    return {
        "success": True,
        "message": f"Charged {result['amountCharged']:.2f} to the saved payment method",
        **result,
    }
