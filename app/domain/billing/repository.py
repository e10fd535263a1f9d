"""Billing repository - Database operations for contract payments"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...models import Payment


class PaymentRepository:
    """Repository for payment database operations"""

    @staticmethod
    def get_by_reference(db: Session, provider_reference: str) -> Optional[Payment]:
        """Get a payment by Stripe checkout session or payment intent ID"""
        return db.query(Payment).filter(Payment.provider_reference == provider_reference).first()

    @staticmethod
    def get_completed_deposit(db: Session, contract_id: str) -> Optional[Payment]:
        return (
            db.query(Payment)
            .filter(
                Payment.contract_id == contract_id,
                Payment.kind == "deposit",
                Payment.status == "completed",
            )
            .first()
        )

    @staticmethod
    def get_pending_deposit(db: Session, contract_id: str) -> Optional[Payment]:
        return (
            db.query(Payment)
            .filter(
                Payment.contract_id == contract_id,
                Payment.kind == "deposit",
                Payment.status == "pending",
            )
            .order_by(Payment.id.desc())
            .first()
        )

    @staticmethod
    def create_payment(
        db: Session,
        contract_id: str,
        company_id: str,
        amount: float,
        currency: str,
        provider_reference: Optional[str] = None,
        status: str = "pending",
        kind: str = "deposit",
        completed_at: Optional[datetime] = None,
        receipt_url: Optional[str] = None,
    ) -> Payment:
        """Stage a payment record; the caller commits"""
        payment = Payment(
            contract_id=contract_id,
            company_id=company_id,
            amount=amount,
            currency=currency,
            provider_reference=provider_reference,
            status=status,
            kind=kind,
            completed_at=completed_at,
            receipt_url=receipt_url,
        )
        db.add(payment)
        db.flush()
        return payment

    @staticmethod
    def mark_completed(
        db: Session,
        payment: Payment,
        completed_at: datetime,
        receipt_url: Optional[str] = None,
    ) -> Payment:
        payment.status = "completed"
        payment.completed_at = completed_at
        if receipt_url:
            payment.receipt_url = receipt_url
        db.flush()
        return payment

    @staticmethod
    def mark_failed(db: Session, payment: Payment) -> Payment:
        payment.status = "failed"
        db.flush()
        return payment
