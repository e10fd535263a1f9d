"""Public contract service - What a client can do with a signing link"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...email_service import (
    send_client_signature_confirmation,
    send_contract_signed_notification,
    send_payment_link_email,
)
from ...errors import precondition_failed
from ...models import ActorType, Contract, ContractEventType, ContractStatus, SignatureParty
from ...services.storage import generate_presigned_url
from ..billing.payment_service import PaymentService
from .access import authorize_public_access
from .finalization import FinalizationResult, finalize_from_token
from .repository import ContractRepository
from .signatures import SignatureResult, SigningContext, record_signature

logger = logging.getLogger(__name__)

# Statuses in which the client may download the contract document
PDF_DOWNLOAD_STATUSES = frozenset({ContractStatus.SIGNED, ContractStatus.PAID, ContractStatus.COMPLETED})


class PublicContractService:
    """Token-authorized operations for clients"""

    def __init__(self, db: Session, payments: PaymentService):
        self.db = db
        self.repo = ContractRepository()
        self.payments = payments

    def _authorize(self, token: str, context: SigningContext, password: Optional[str]) -> Contract:
        return authorize_public_access(self.db, token, context.ip_address, password=password)

    def view_contract(self, token: str, context: SigningContext, password: Optional[str] = None) -> dict:
        """Contract content for the signing page; the first view is audited"""
        contract = self._authorize(token, context, password)

        if not contract.first_viewed_at:
            now = datetime.utcnow()
            claimed = (
                self.db.query(Contract)
                .filter(Contract.id == contract.id, Contract.first_viewed_at.is_(None))
                .update({Contract.first_viewed_at: now}, synchronize_session=False)
            )
            if claimed:
                self.repo.add_event(
                    self.db,
                    contract.id,
                    ContractEventType.VIEWED,
                    ActorType.CLIENT,
                    actor_id=contract.client_id,
                    metadata={"ip": context.ip_address, "userAgent": context.user_agent},
                )
                logger.info(f"👀 Contract {contract.id} viewed for the first time")
            self.db.commit()
            self.db.refresh(contract)

        return self.public_view(contract)

    def public_view(self, contract: Contract) -> dict:
        company = self.repo.get_company(self.db, contract.company_id)
        contractor = contract.contractor
        client = contract.client
        field_values = {k: v for k, v in (contract.field_values or {}).items() if k != "_payment"}

        return {
            "id": contract.id,
            "title": contract.title,
            "content": contract.content,
            "fieldValues": field_values,
            "status": ContractStatus(contract.status).value,
            "depositAmount": contract.deposit_amount or 0,
            "totalAmount": contract.total_amount or 0,
            "currency": contract.currency,
            "requiresContractorSignature": bool(contract.requires_contractor_signature),
            "companyName": company.name if company else None,
            "contractorName": contractor.name if contractor else None,
            "clientName": client.name if client else None,
            "signatures": [
                {
                    "party": SignatureParty(s.party).value,
                    "fullName": s.full_name,
                    "signedAt": s.signed_at,
                }
                for s in self.repo.get_signatures(self.db, contract.id)
            ],
            "signedAt": contract.signed_at,
            "paidAt": contract.paid_at,
            "completedAt": contract.completed_at,
            "expiresAt": contract.signing_token_expires_at,
        }

    async def sign_contract(
        self,
        token: str,
        full_name: str,
        context: SigningContext,
        signature_data_url: Optional[str] = None,
        password: Optional[str] = None,
    ) -> tuple[SignatureResult, Optional[str]]:
        """
        Record the client's signature.

        Returns the result and, for a fully signed contract with a deposit,
        the checkout URL for paying it.
        """
        contract = self._authorize(token, context, password)
        result = record_signature(
            self.db,
            contract,
            SignatureParty.CLIENT,
            full_name,
            context,
            signature_data_url=signature_data_url,
            signer_id=contract.client_id,
        )
        contract = result.contract

        checkout_url = None
        if result.fully_signed and (contract.deposit_amount or 0) > 0:
            checkout_url = self.payments.start_deposit_checkout(contract, token)

        await self._notify_signed(contract, result, checkout_url)
        return result, checkout_url

    async def _notify_signed(self, contract: Contract, result: SignatureResult, checkout_url: Optional[str]) -> None:
        """Signing emails; failures are logged and never fail the signature"""
        client = contract.client
        contractor = contract.contractor
        company = self.repo.get_company(self.db, contract.company_id)
        company_name = company.name if company else ""

        if client:
            try:
                await send_client_signature_confirmation(
                    to=client.email,
                    client_name=client.name,
                    company_name=company_name,
                    contract_title=contract.title,
                    awaiting_contractor=not result.fully_signed,
                )
            except Exception as e:
                logger.error(f"❌ Failed to send signature confirmation for contract {contract.id}: {e}")

            if checkout_url:
                try:
                    await send_payment_link_email(
                        to=client.email,
                        client_name=client.name,
                        company_name=company_name,
                        contract_title=contract.title,
                        deposit_amount=contract.deposit_amount,
                        payment_url=checkout_url,
                    )
                except Exception as e:
                    logger.error(f"❌ Failed to send payment link for contract {contract.id}: {e}")

        if contractor and contractor.notify_contract_signed:
            try:
                await send_contract_signed_notification(
                    to=contractor.email,
                    contractor_name=contractor.name or contractor.email,
                    client_name=client.name if client else "",
                    contract_title=contract.title,
                    contract_id=contract.id,
                )
            except Exception as e:
                logger.error(f"❌ Failed to notify contractor about signed contract {contract.id}: {e}")

    async def finalize_contract(
        self, token: str, context: SigningContext, password: Optional[str] = None
    ) -> FinalizationResult:
        self._authorize(token, context, password)
        return await finalize_from_token(self.db, token)

    def save_payment_method(
        self,
        token: str,
        payment_method_id: str,
        context: SigningContext,
        password: Optional[str] = None,
    ) -> dict:
        contract = self._authorize(token, context, password)
        return self.payments.save_payment_method(contract, payment_method_id)

    def get_pdf_url(self, token: str, context: SigningContext, password: Optional[str] = None) -> Optional[str]:
        """Presigned link to the final PDF, or None while it is not stored yet"""
        contract = self._authorize(token, context, password)
        if ContractStatus(contract.status) not in PDF_DOWNLOAD_STATUSES:
            raise precondition_failed("Contract must be signed first")
        if not contract.pdf_key:
            return None
        return generate_presigned_url(contract.pdf_key)
