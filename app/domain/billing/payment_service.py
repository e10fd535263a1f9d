"""Payment service - Deposits, saved cards and Stripe webhook processing"""

import logging
from datetime import datetime
from typing import Optional

import stripe
from sqlalchemy.orm import Session

from ...errors import ErrorKind, LifecycleError, not_found, precondition_failed
from ...models import ActorType, Contract, ContractEventType, ContractStatus, Contractor
from ..contracts.finalization import finalize_contract, mark_paid
from ..contracts.repository import ContractRepository
from .repository import PaymentRepository
from .stripe_service import StripeService, from_cents, stripe_service

logger = logging.getLogger(__name__)

# Amounts closer than a cent are treated as equal
AMOUNT_TOLERANCE = 0.01

RECEIPT_URL_TEMPLATE = "https://pay.stripe.com/receipts/{charge_id}"


class PaymentService:
    """Service for contract payment operations"""

    def __init__(self, db: Session, stripe_client: Optional[StripeService] = None):
        self.db = db
        self.stripe = stripe_client or stripe_service
        self.repo = PaymentRepository()
        self.contracts = ContractRepository()

    # ========================================================================
    # DEPOSIT CHECKOUT
    # ========================================================================

    def start_deposit_checkout(self, contract: Contract, signing_token: str) -> Optional[str]:
        """
        Create a Checkout Session for the contract deposit.

        Returns the hosted checkout URL, or None when Stripe is unavailable or
        the session could not be created. Signing never fails because of this.
        """
        deposit = float(contract.deposit_amount or 0)
        if deposit <= 0:
            return None

        if not self.stripe.is_available():
            logger.warning(f"⚠️ Stripe not configured, no checkout session for contract {contract.id}")
            return None

        client_email = contract.client.email if contract.client else None
        try:
            session = self.stripe.create_deposit_checkout_session(
                contract_id=contract.id,
                company_id=contract.company_id,
                title=contract.title,
                deposit_amount=deposit,
                client_email=client_email,
                signing_token=signing_token,
            )
            self.repo.create_payment(
                self.db,
                contract_id=contract.id,
                company_id=contract.company_id,
                amount=deposit,
                currency=contract.currency or self.stripe.currency,
                provider_reference=session["id"],
            )
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to start deposit checkout for contract {contract.id}: {e}")
            return None

        logger.info(f"💳 Deposit checkout session {session['id']} created for contract {contract.id}")
        return session["url"]

    # ========================================================================
    # WEBHOOKS
    # ========================================================================

    async def handle_webhook_event(self, event) -> dict:
        """Dispatch a verified Stripe event"""
        event_type = event["type"]
        data = event["data"]["object"]
        logger.info(f"📨 Stripe webhook received: {event_type} ({event.get('id')})")

        if event_type == "checkout.session.completed":
            return await self._handle_checkout_completed(data)
        if event_type == "payment_intent.succeeded":
            return await self._handle_payment_intent_succeeded(data)
        if event_type == "payment_intent.payment_failed":
            return self._handle_payment_failed(data)

        logger.info(f"Unhandled Stripe event type: {event_type}")
        return {"status": "ignored"}

    async def _handle_checkout_completed(self, session) -> dict:
        metadata = session.get("metadata") or {}
        contract_id = metadata.get("contractId")
        if metadata.get("type") != "deposit" or not contract_id:
            logger.info(f"Checkout session {session['id']} is not a contract deposit, ignoring")
            return {"status": "ignored"}

        if session.get("payment_status") != "paid":
            logger.info(f"Checkout session {session['id']} not paid yet ({session.get('payment_status')})")
            return {"status": "ignored"}

        receipt = self._fetch_receipt(session.get("payment_intent"))
        return await self._confirm_deposit(
            contract_id=contract_id,
            reference=session["id"],
            amount=from_cents(session.get("amount_total")),
            receipt=receipt,
        )

    async def _handle_payment_intent_succeeded(self, intent) -> dict:
        metadata = intent.get("metadata") or {}
        contract_id = metadata.get("contractId")
        if metadata.get("type") != "deposit" or not contract_id:
            # Remaining-balance charges are recorded when they are made
            return {"status": "ignored"}

        charge_id = intent.get("latest_charge")
        receipt = {
            "receipt_id": charge_id,
            "receipt_url": RECEIPT_URL_TEMPLATE.format(charge_id=charge_id) if charge_id else None,
        }
        return await self._confirm_deposit(
            contract_id=contract_id,
            reference=intent["id"],
            amount=from_cents(intent.get("amount_received") or intent.get("amount")),
            receipt=receipt,
        )

    def _handle_payment_failed(self, intent) -> dict:
        payment = self.repo.get_by_reference(self.db, intent["id"])
        if not payment:
            contract_id = (intent.get("metadata") or {}).get("contractId")
            if contract_id:
                payment = self.repo.get_pending_deposit(self.db, contract_id)

        if not payment or payment.status != "pending":
            return {"status": "ignored"}

        self.repo.mark_failed(self.db, payment)
        self.db.commit()
        error = (intent.get("last_payment_error") or {}).get("message")
        logger.warning(f"⚠️ Payment {payment.id} for contract {payment.contract_id} failed: {error}")
        return {"status": "failed", "contractId": payment.contract_id}

    def _fetch_receipt(self, payment_intent_id: Optional[str]) -> dict:
        """Best-effort receipt lookup; a missing receipt never blocks confirmation"""
        if not payment_intent_id:
            return {}
        try:
            intent = self.stripe.retrieve_payment_intent(payment_intent_id)
        except Exception as e:
            logger.warning(f"⚠️ Could not retrieve payment intent {payment_intent_id}: {e}")
            return {}

        charge_id = intent.get("latest_charge")
        if not charge_id:
            return {}
        return {"receipt_id": charge_id, "receipt_url": RECEIPT_URL_TEMPLATE.format(charge_id=charge_id)}

    async def _confirm_deposit(self, contract_id: str, reference: str, amount: float, receipt: dict) -> dict:
        """Record a confirmed deposit, mark the contract paid and finalize it"""
        now = datetime.utcnow()
        contract = self.contracts.get_contract_by_id(self.db, contract_id)
        if not contract:
            raise not_found()

        if self.repo.get_completed_deposit(self.db, contract_id):
            logger.info(f"Deposit for contract {contract_id} already recorded, skipping ({reference})")
            if ContractStatus(contract.status) == ContractStatus.PAID:
                await finalize_contract(self.db, contract_id, payment_info=receipt)
            return {"status": "already_processed", "contractId": contract_id}

        status = ContractStatus(contract.status)
        if status != ContractStatus.SIGNED:
            raise precondition_failed(f"Contract must be signed to accept payment (status: {status.value})")

        expected = float(contract.deposit_amount or 0)
        if abs(amount - expected) > AMOUNT_TOLERANCE:
            logger.error(
                f"❌ Deposit amount mismatch for contract {contract_id}: paid {amount:.2f}, expected {expected:.2f}"
            )
            raise LifecycleError(ErrorKind.VALIDATION_FAILED, "Payment amount does not match the deposit")

        payment = self.repo.get_by_reference(self.db, reference) or self.repo.get_pending_deposit(
            self.db, contract_id
        )
        if payment:
            self.repo.mark_completed(self.db, payment, now, receipt.get("receipt_url"))
        else:
            payment = self.repo.create_payment(
                self.db,
                contract_id=contract_id,
                company_id=contract.company_id,
                amount=amount,
                currency=contract.currency or self.stripe.currency,
                provider_reference=reference,
                status="completed",
                completed_at=now,
                receipt_url=receipt.get("receipt_url"),
            )

        self.contracts.add_event(
            self.db,
            contract_id,
            ContractEventType.PAYMENT_COMPLETED,
            ActorType.WEBHOOK,
            metadata={
                "provider": "stripe",
                "reference": reference,
                "amount": amount,
                "receiptId": receipt.get("receipt_id"),
            },
        )
        self.db.commit()
        logger.info(f"💰 Deposit of {amount:.2f} received for contract {contract_id}")

        mark_paid(
            self.db,
            contract_id,
            actor_type=ActorType.WEBHOOK,
            metadata={"provider": "stripe", "reference": reference, "amount": amount},
        )
        result = await finalize_contract(self.db, contract_id, payment_info={"amount": amount, **receipt})

        return {
            "status": "processed",
            "contractId": contract_id,
            "finalized": result.success,
        }

    # ========================================================================
    # SAVED PAYMENT METHODS
    # ========================================================================

    def save_payment_method(self, contract: Contract, payment_method_id: str) -> dict:
        """Attach a client's card for a later remaining-balance charge"""
        status = ContractStatus(contract.status)
        if status in (ContractStatus.DRAFT, ContractStatus.CANCELLED):
            raise precondition_failed(f"Cannot save a payment method while the contract is {status.value}")

        client = contract.client
        saved = dict((contract.field_values or {}).get("_payment") or {})

        try:
            customer_id = saved.get("savedCustomerId")
            if not customer_id:
                customer = self.stripe.create_customer(
                    email=client.email if client else None,
                    name=client.name if client else None,
                    metadata={"contractId": contract.id, "companyId": contract.company_id},
                )
                customer_id = customer["id"]
            self.stripe.attach_payment_method(payment_method_id, customer_id)
        except stripe.StripeError as e:
            logger.error(f"❌ Failed to save payment method for contract {contract.id}: {e}")
            raise LifecycleError(ErrorKind.DEPENDENCY_FAILED, "Could not save the payment method") from e
        except RuntimeError as e:
            raise LifecycleError(ErrorKind.DEPENDENCY_FAILED, str(e)) from e

        previous_method = saved.get("savedPaymentMethodId")
        if previous_method and previous_method != payment_method_id:
            try:
                self.stripe.detach_payment_method(previous_method)
            except stripe.StripeError as e:
                logger.warning(f"⚠️ Could not detach replaced payment method {previous_method}: {e}")

        remaining = float(contract.total_amount or 0) - float(contract.deposit_amount or 0)
        saved.update(
            {
                "savedPaymentMethodId": payment_method_id,
                "savedCustomerId": customer_id,
                "autoPayEnabled": True,
                "remainingBalance": round(max(remaining, 0.0), 2),
            }
        )
        # Reassign so the JSON column is flagged as changed
        contract.field_values = {**(contract.field_values or {}), "_payment": saved}

        self.contracts.add_event(
            self.db,
            contract.id,
            ContractEventType.PAYMENT_METHOD_SAVED,
            ActorType.CLIENT,
            actor_id=contract.client_id,
            metadata={"customerId": customer_id, "remainingBalance": saved["remainingBalance"]},
        )
        self.db.commit()
        logger.info(f"💳 Payment method saved for contract {contract.id}")
        return {"autoPayEnabled": True, "remainingBalance": saved["remainingBalance"]}

    def charge_remaining_balance(self, contract: Contract, contractor: Contractor) -> dict:
        """Charge the saved card off-session for whatever is still owed"""
        status = ContractStatus(contract.status)
        if status not in (ContractStatus.SIGNED, ContractStatus.PAID, ContractStatus.COMPLETED):
            raise precondition_failed(f"Contract must be signed before charging (status: {status.value})")

        paid_so_far = self.contracts.sum_completed_payments(self.db, contract.id)
        remaining = round(float(contract.total_amount or 0) - paid_so_far, 2)
        if remaining <= AMOUNT_TOLERANCE:
            raise precondition_failed("No remaining balance to charge")

        saved = (contract.field_values or {}).get("_payment") or {}
        if not (saved.get("savedPaymentMethodId") and saved.get("savedCustomerId") and saved.get("autoPayEnabled")):
            raise precondition_failed("No saved payment method for this contract")

        try:
            intent = self.stripe.charge_saved_payment_method(
                customer_id=saved["savedCustomerId"],
                payment_method_id=saved["savedPaymentMethodId"],
                amount=remaining,
                description=f"Remaining balance for {contract.title}",
                metadata={
                    "contractId": contract.id,
                    "companyId": contract.company_id,
                    "type": "remaining_balance",
                },
            )
        except stripe.CardError as e:
            logger.warning(f"⚠️ Card declined for remaining balance on contract {contract.id}: {e}")
            raise LifecycleError(
                ErrorKind.DEPENDENCY_FAILED, e.user_message or "The card was declined"
            ) from e
        except stripe.StripeError as e:
            logger.error(f"❌ Remaining balance charge failed for contract {contract.id}: {e}")
            raise LifecycleError(ErrorKind.DEPENDENCY_FAILED, "Payment provider error") from e
        except RuntimeError as e:
            raise LifecycleError(ErrorKind.DEPENDENCY_FAILED, str(e)) from e

        if intent["status"] != "succeeded":
            logger.warning(f"⚠️ Remaining balance charge for {contract.id} ended as {intent['status']}")
            raise LifecycleError(ErrorKind.DEPENDENCY_FAILED, f"Payment {intent['status']}")

        now = datetime.utcnow()
        charge_id = intent.get("latest_charge")
        self.repo.create_payment(
            self.db,
            contract_id=contract.id,
            company_id=contract.company_id,
            amount=remaining,
            currency=contract.currency or self.stripe.currency,
            provider_reference=intent["id"],
            status="completed",
            kind="remaining_balance",
            completed_at=now,
            receipt_url=RECEIPT_URL_TEMPLATE.format(charge_id=charge_id) if charge_id else None,
        )
        contract.field_values = {
            **(contract.field_values or {}),
            "_payment": {**saved, "remainingBalance": 0},
        }
        self.contracts.add_event(
            self.db,
            contract.id,
            ContractEventType.BALANCE_CHARGED,
            ActorType.CONTRACTOR,
            actor_id=contractor.id,
            metadata={"amount": remaining, "paymentIntentId": intent["id"]},
        )
        self.db.commit()
        logger.info(f"💰 Charged remaining balance {remaining:.2f} for contract {contract.id}")

        return {"amountCharged": remaining, "paymentIntentId": intent["id"]}
