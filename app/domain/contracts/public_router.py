"""Public contract router - Signing-link endpoints for clients (no login)"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.orm import Session

from ...database import get_db
from ...models import ContractStatus
from ..billing.payment_service import PaymentService
from ..billing.router import get_payment_service
from ..billing.schemas import SavePaymentMethodRequest, SavePaymentMethodResponse
from .public_service import PublicContractService
from .router import signing_context
from .schemas import PublicAccessRequest, SignatureRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/public/contracts", tags=["Public Contracts"])


def get_public_contract_service(
    db: Session = Depends(get_db),
    payments: PaymentService = Depends(get_payment_service),
) -> PublicContractService:
    """Dependency injection for PublicContractService"""
    return PublicContractService(db, payments)


@router.get("/{token}")
async def view_contract(
    token: str,
    request: Request,
    x_contract_password: Optional[str] = Header(None),
    service: PublicContractService = Depends(get_public_contract_service),
):
    """Contract content for the signing page"""
    return service.view_contract(token, signing_context(request), password=x_contract_password)


@router.post("/{token}/sign")
async def sign_contract(
    token: str,
    data: SignatureRequest,
    request: Request,
    x_contract_password: Optional[str] = Header(None),
    service: PublicContractService = Depends(get_public_contract_service),
):
    """Client signature"""
    result, checkout_url = await service.sign_contract(
        token,
        data.fullName,
        signing_context(request),
        signature_data_url=data.signatureDataUrl,
        password=data.password or x_contract_password,
    )
    contract = result.contract
    requires_payment = result.fully_signed and (contract.deposit_amount or 0) > 0
    return {
        "success": True,
        "message": "Contract signed successfully",
        "status": ContractStatus(contract.status).value,
        "fullySigned": result.fully_signed,
        "requiresPayment": requires_payment,
        "checkoutUrl": checkout_url,
        "signedAt": result.signature.signed_at,
    }


@router.post("/{token}/finalize")
async def finalize_contract(
    token: str,
    request: Request,
    data: Optional[PublicAccessRequest] = None,
    x_contract_password: Optional[str] = Header(None),
    service: PublicContractService = Depends(get_public_contract_service),
):
    """Complete a signed contract that has no deposit; safe to call repeatedly"""
    password = (data.password if data else None) or x_contract_password
    result = await service.finalize_contract(token, signing_context(request), password=password)
    return {
        "success": True,
        "message": "Contract already finalized" if result.already_finalized else "Contract finalized",
        "alreadyFinalized": result.already_finalized,
        "status": ContractStatus(result.contract.status).value,
        "completedAt": result.contract.completed_at,
        "hasPdf": bool(result.contract.pdf_key),
    }


@router.post("/{token}/payment-method", response_model=SavePaymentMethodResponse)
async def save_payment_method(
    token: str,
    data: SavePaymentMethodRequest,
    request: Request,
    x_contract_password: Optional[str] = Header(None),
    service: PublicContractService = Depends(get_public_contract_service),
):
    """Save the client's card so the remaining balance can be charged later"""
    result = service.save_payment_method(
        token,
        data.paymentMethodId,
        signing_context(request),
        password=data.password or x_contract_password,
    )
    return {"success": True, "message": "Payment method saved", **result}


@router.get("/{token}/pdf")
async def get_contract_pdf(
    token: str,
    request: Request,
    x_contract_password: Optional[str] = Header(None),
    service: PublicContractService = Depends(get_public_contract_service),
):
    """Download link for the client's copy of the contract"""
    url = service.get_pdf_url(token, signing_context(request), password=x_contract_password)
    return {"success": True, "pdfUrl": url, "available": url is not None}
