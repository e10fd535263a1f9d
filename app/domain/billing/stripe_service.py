"""Stripe service - Integration with the Stripe API for contract payments"""

import logging
from typing import Optional

import stripe

from ... import config

logger = logging.getLogger(__name__)


def to_cents(amount: float) -> int:
    return int(round(float(amount) * 100))


def from_cents(amount: Optional[int]) -> float:
    return (amount or 0) / 100


class StripeService:
    """Service for Stripe API operations"""

    def __init__(self):
        self.api_key = config.STRIPE_SECRET_KEY
        self.webhook_secret = config.STRIPE_WEBHOOK_SECRET
        self.currency = config.STRIPE_CURRENCY

        if not self.api_key:
            logger.warning("STRIPE_SECRET_KEY not set; payment endpoints will fail until configured")
        else:
            stripe.api_key = self.api_key
            logger.info("Stripe client configured")

    def is_available(self) -> bool:
        """Check if Stripe is configured"""
        return bool(self.api_key)

    def _require(self) -> None:
        if not self.is_available():
            raise RuntimeError("Stripe client not configured")

    def create_deposit_checkout_session(
        self,
        contract_id: str,
        company_id: str,
        title: str,
        deposit_amount: float,
        client_email: str,
        signing_token: str,
    ):
        """Create a one-off Checkout Session for a contract deposit"""
        self._require()

        metadata = {"contractId": contract_id, "companyId": company_id, "type": "deposit"}
        try:
            return stripe.checkout.Session.create(
                mode="payment",
                payment_method_types=["card"],
                line_items=[
                    {
                        "price_data": {
                            "currency": self.currency,
                            "product_data": {
                                "name": f"Deposit for {title}",
                                "description": f"Contract deposit payment - Contract #{contract_id[:8]}",
                            },
                            "unit_amount": to_cents(deposit_amount),
                        },
                        "quantity": 1,
                    }
                ],
                success_url=f"{config.APP_BASE_URL}/sign/{signing_token}/complete?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{config.APP_BASE_URL}/sign/{signing_token}?canceled=1",
                customer_email=client_email,
                metadata=metadata,
                payment_intent_data={"metadata": metadata},
            )
        except stripe.StripeError as e:
            logger.error(f"Failed to create deposit checkout session for {contract_id}: {e}")
            raise

    def retrieve_payment_intent(self, payment_intent_id: str):
        self._require()
        return stripe.PaymentIntent.retrieve(payment_intent_id)

    def create_customer(self, email: str, name: Optional[str] = None, metadata: Optional[dict] = None):
        self._require()
        return stripe.Customer.create(email=email, name=name, metadata=metadata or {})

    def attach_payment_method(self, payment_method_id: str, customer_id: str):
        """Attach a card to a customer and make it the default for invoices"""
        self._require()
        payment_method = stripe.PaymentMethod.attach(payment_method_id, customer=customer_id)
        stripe.Customer.modify(
            customer_id,
            invoice_settings={"default_payment_method": payment_method_id},
        )
        return payment_method

    def detach_payment_method(self, payment_method_id: str):
        self._require()
        return stripe.PaymentMethod.detach(payment_method_id)

    def charge_saved_payment_method(
        self,
        customer_id: str,
        payment_method_id: str,
        amount: float,
        description: str,
        metadata: Optional[dict] = None,
    ):
        """Charge a saved card off-session and confirm immediately"""
        self._require()
        return stripe.PaymentIntent.create(
            amount=to_cents(amount),
            currency=self.currency,
            customer=customer_id,
            payment_method=payment_method_id,
            off_session=True,
            confirm=True,
            description=description,
            metadata=metadata or {},
        )

    def construct_webhook_event(self, payload: bytes, sig_header: Optional[str]):
        """Verify the Stripe-Signature header and parse the event"""
        if not self.webhook_secret:
            raise RuntimeError("STRIPE_WEBHOOK_SECRET not configured")
        return stripe.Webhook.construct_event(payload, sig_header, self.webhook_secret)


# Singleton instance
stripe_service = StripeService()


def get_stripe_service() -> StripeService:
    """Dependency injection for StripeService"""
    return stripe_service
