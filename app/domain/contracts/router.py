"""Contract router - FastAPI endpoints for contractor-side contract operations"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from ...auth import get_current_contractor
from ...database import get_db
from ...models import Contractor, ContractStatus
from ...security_utils import get_client_ip, get_user_agent
from .schemas import (
    BrandingRequest,
    CancelRequest,
    ContractCreate,
    ContractEventResponse,
    ContractResponse,
    ContractStatusResponse,
    ContractUpdate,
    PasswordRequest,
    SignatureRequest,
    SignatureResponse,
)
from .service import ContractService, contract_to_response
from .signatures import SigningContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/contracts", tags=["Contracts"])


def get_contract_service(db: Session = Depends(get_db)) -> ContractService:
    """Dependency injection for ContractService"""
    return ContractService(db)


def signing_context(request: Request) -> SigningContext:
    return SigningContext(ip_address=get_client_ip(request), user_agent=get_user_agent(request))


# ============================================================================
# CREATE / SEND
# ============================================================================


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_contract(
    data: ContractCreate,
    contractor: Contractor = Depends(get_current_contractor),
    service: ContractService = Depends(get_contract_service),
):
    """Create a contract and, by default, send the signing link to the client"""
    contract, signing_url = await service.create_contract(data, contractor)
    sent = signing_url is not None
    return {
        "success": True,
        "message": "Contract created and sent" if sent else "Contract created",
        "contract": ContractResponse(**contract_to_response(contract)),
        "signingUrl": signing_url,
    }


@router.post("/{contract_id}/send")
async def send_contract(
    contract_id: str,
    contractor: Contractor = Depends(get_current_contractor),
    service: ContractService = Depends(get_contract_service),
):
    """Send a draft contract"""
    contract, signing_url = await service.send_contract(contract_id, contractor)
    return {
        "success": True,
        "message": "Contract sent",
        "contract": ContractResponse(**contract_to_response(contract)),
        "signingUrl": signing_url,
    }


@router.post("/{contract_id}/resend")
async def resend_contract(
    contract_id: str,
    contractor: Contractor = Depends(get_current_contractor),
    service: ContractService = Depends(get_contract_service),
):
    """Issue a new signing link; the previous one stops working"""
    contract, signing_url, email_sent = await service.resend_contract(contract_id, contractor)
    return {
        "success": True,
        "message": "Signing link resent" if email_sent else "Signing link regenerated but the email could not be sent",
        "signingUrl": signing_url,
        "emailSent": email_sent,
        "expiresAt": contract.signing_token_expires_at,
    }


# ============================================================================
# READ / EDIT
# ============================================================================


@router.get("/{contract_id}", response_model=ContractResponse)
async def get_contract(
    contract_id: str,
    contractor: Contractor = Depends(get_current_contractor),
    service: ContractService = Depends(get_contract_service),
):
    return contract_to_response(service.get_contract(contract_id, contractor))


@router.patch("/{contract_id}")
async def update_contract(
    contract_id: str,
    data: ContractUpdate,
    contractor: Contractor = Depends(get_current_contractor),
    service: ContractService = Depends(get_contract_service),
):
    """Edit contract terms before anyone has signed"""
    contract = service.update_contract(contract_id, data, contractor)
    return {
        "success": True,
        "message": "Contract updated",
        "contract": ContractResponse(**contract_to_response(contract)),
    }


@router.get("/{contract_id}/status", response_model=ContractStatusResponse)
async def get_contract_status(
    contract_id: str,
    contractor: Contractor = Depends(get_current_contractor),
    service: ContractService = Depends(get_contract_service),
):
    return service.get_status(contract_id, contractor)


@router.get("/{contract_id}/events", response_model=list[ContractEventResponse])
async def get_contract_events(
    contract_id: str,
    contractor: Contractor = Depends(get_current_contractor),
    service: ContractService = Depends(get_contract_service),
):
    """Audit log, oldest first"""
    return service.list_events(contract_id, contractor)


@router.get("/{contract_id}/signatures", response_model=list[SignatureResponse])
async def get_contract_signatures(
    contract_id: str,
    contractor: Contractor = Depends(get_current_contractor),
    service: ContractService = Depends(get_contract_service),
):
    return service.list_signatures(contract_id, contractor)


@router.get("/{contract_id}/pdf")
async def get_contract_pdf(
    contract_id: str,
    contractor: Contractor = Depends(get_current_contractor),
    service: ContractService = Depends(get_contract_service),
):
    """Presigned download link for the final PDF"""
    url = service.get_pdf_url(contract_id, contractor)
    return {"success": True, "pdfUrl": url, "available": url is not None}


# ============================================================================
# ACCESS CONTROL
# ============================================================================


@router.patch("/{contract_id}/password")
async def set_contract_password(
    contract_id: str,
    data: PasswordRequest,
    contractor: Contractor = Depends(get_current_contractor),
    service: ContractService = Depends(get_contract_service),
):
    service.set_password(contract_id, data.password, contractor)
    return {"success": True, "message": "Password set", "hasPassword": True}


@router.delete("/{contract_id}/password")
async def clear_contract_password(
    contract_id: str,
    contractor: Contractor = Depends(get_current_contractor),
    service: ContractService = Depends(get_contract_service),
):
    service.clear_password(contract_id, contractor)
    return {"success": True, "message": "Password removed", "hasPassword": False}


@router.patch("/{contract_id}/branding")
async def update_contract_branding(
    contract_id: str,
    data: BrandingRequest,
    contractor: Contractor = Depends(get_current_contractor),
    service: ContractService = Depends(get_contract_service),
):
    contract = service.update_branding(contract_id, data, contractor)
    return {
        "success": True,
        "message": "Branding updated",
        "branding": (contract.field_values or {}).get("_branding", {}),
    }


# ============================================================================
# SIGN / CANCEL
# ============================================================================


@router.post("/{contract_id}/contractor-sign")
async def contractor_sign_contract(
    contract_id: str,
    data: SignatureRequest,
    request: Request,
    contractor: Contractor = Depends(get_current_contractor),
    service: ContractService = Depends(get_contract_service),
):
    """Contractor signature; may come before or after the client's"""
    result = service.contractor_sign(contract_id, data, contractor, signing_context(request))
    return {
        "success": True,
        "message": "Contract signed",
        "status": ContractStatus(result.contract.status).value,
        "fullySigned": result.fully_signed,
        "signedAt": result.signature.signed_at,
    }


@router.post("/{contract_id}/cancel")
@router.post("/{contract_id}/void")
async def cancel_contract(
    contract_id: str,
    data: Optional[CancelRequest] = None,
    contractor: Contractor = Depends(get_current_contractor),
    service: ContractService = Depends(get_contract_service),
):
    """Cancel a contract; its signing link stops working"""
    contract = service.cancel_contract(contract_id, contractor, data.reason if data else None)
    return {
        "success": True,
        "message": "Contract cancelled",
        "status": ContractStatus(contract.status).value,
    }
