"""Billing domain schemas - Pydantic models for validation"""

from typing import Optional

from pydantic import BaseModel, field_validator


class SavePaymentMethodRequest(BaseModel):
    """Card saved by the client for a deferred balance charge"""

    paymentMethodId: str
    password: Optional[str] = None

    @field_validator("paymentMethodId")
    @classmethod
    def validate_payment_method_id(cls, v: str) -> str:
        v = v.strip()
        if not v.startswith("pm_"):
            raise ValueError("paymentMethodId must be a Stripe payment method ID")
        return v


class SavePaymentMethodResponse(BaseModel):
    success: bool = True
    message: str
    autoPayEnabled: bool
    remainingBalance: float


class ChargeRemainingBalanceResponse(BaseModel):
    success: bool = True
    message: str
    amountCharged: float
    paymentIntentId: str


class WebhookResponse(BaseModel):
    received: bool = True
    status: Optional[str] = None
    error: Optional[str] = None
