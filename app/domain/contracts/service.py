"""Contract service - Business logic for contractor-side contract operations"""

import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from ...email_service import send_contract_link_email
from ...errors import ErrorKind, LifecycleError, not_found, precondition_failed, validation_failed
from ...models import (
    ActorType,
    Contract,
    ContractEventType,
    ContractStatus,
    Contractor,
    SignatureParty,
)
from ...plan_limits import can_create_contract, has_feature, increment_contract_usage
from ...security_utils import hash_password_bcrypt
from ...services.storage import generate_presigned_url
from ...utils.sanitization import sanitize_contract_html, sanitize_dict, sanitize_string
from .access import build_signing_url, issue_signing_token
from .repository import ContractRepository
from .schemas import BrandingRequest, ContractCreate, ContractUpdate, SignatureRequest
from .signatures import (
    RESERVED_FIELD_KEYS,
    SignatureResult,
    SigningContext,
    record_signature,
    verify_signature_binding,
)
from .state_machine import (
    TERMINAL_STATUSES,
    ContractAction,
    assert_mutable,
    is_terminal,
    next_status,
    validate_amounts,
)

logger = logging.getLogger(__name__)

NON_TERMINAL_STATUSES = [s for s in ContractStatus if s not in TERMINAL_STATUSES]


def _user_field_values(values: Optional[dict[str, Any]]) -> dict[str, Any]:
    """Field values as supplied by a contractor, without the reserved keys"""
    values = {k: v for k, v in (values or {}).items() if k not in RESERVED_FIELD_KEYS}
    return sanitize_dict(values)


def contract_to_response(contract: Contract) -> dict:
    client = contract.client
    return {
        "id": contract.id,
        "title": contract.title,
        "status": ContractStatus(contract.status).value,
        "clientId": contract.client_id,
        "clientName": client.name if client else None,
        "clientEmail": client.email if client else None,
        "depositAmount": contract.deposit_amount or 0,
        "totalAmount": contract.total_amount or 0,
        "requiresContractorSignature": bool(contract.requires_contractor_signature),
        "hasPassword": bool(contract.password_hash),
        "signingTokenExpiresAt": contract.signing_token_expires_at,
        "signedAt": contract.signed_at,
        "paidAt": contract.paid_at,
        "completedAt": contract.completed_at,
        "hasPdf": bool(contract.pdf_key),
        "createdAt": contract.created_at,
    }


class ContractService:
    """Service layer for contract business logic"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = ContractRepository()

    def get_contract(self, contract_id: str, contractor: Contractor) -> Contract:
        """Get a contract owned by the contractor's company"""
        contract = self.repo.get_contract_for_company(self.db, contract_id, contractor.company_id)
        if not contract:
            raise not_found()
        return contract

    def _check_entitlement(self, contractor: Contractor) -> None:
        """Sending counts against the plan's contract limit"""
        allowed, message = can_create_contract(contractor.company)
        if not allowed:
            logger.warning(f"🚫 Contract limit reached for company {contractor.company_id}")
            raise LifecycleError(ErrorKind.FORBIDDEN, message)

    # ========================================================================
    # CREATE / SEND
    # ========================================================================

    async def create_contract(self, data: ContractCreate, contractor: Contractor) -> tuple[Contract, Optional[str]]:
        """
        Create a contract, and send it straight away unless data.send is False.

        Returns the contract and the signing URL (None for drafts). The
        plaintext token is not stored anywhere, so the URL is only available
        here and in the email to the client.
        """
        company = contractor.company
        logger.info(f"📝 Creating contract for company {contractor.company_id} by contractor {contractor.id}")

        if data.send:
            self._check_entitlement(contractor)

        validate_amounts(data.depositAmount, data.totalAmount)

        content = sanitize_contract_html(data.content)
        if not content.strip():
            raise validation_failed("Contract content cannot be empty", "content")

        client = self.repo.get_client_by_email(self.db, contractor.company_id, data.clientEmail)
        if not client:
            client = self.repo.create_client(
                self.db,
                company_id=contractor.company_id,
                name=sanitize_string(data.clientName),
                email=data.clientEmail,
                phone=sanitize_string(data.clientPhone) if data.clientPhone else None,
            )
            logger.info(f"👤 Created client {client.id} for company {contractor.company_id}")

        contract = self.repo.create_contract(
            self.db,
            company_id=contractor.company_id,
            contractor_id=contractor.id,
            client_id=client.id,
            title=sanitize_string(data.title),
            content=content,
            field_values=_user_field_values(data.fieldValues),
            deposit_amount=data.depositAmount,
            total_amount=data.totalAmount,
            requires_contractor_signature=data.requiresContractorSignature,
            status=ContractStatus.DRAFT,
        )
        self.repo.add_event(
            self.db, contract.id, ContractEventType.CREATED, ActorType.CONTRACTOR, actor_id=contractor.id
        )

        token = None
        if data.send:
            contract.status = next_status(ContractStatus.DRAFT, ContractAction.SEND)
            token = issue_signing_token(contract)
            self.repo.add_event(
                self.db,
                contract.id,
                ContractEventType.SENT,
                ActorType.CONTRACTOR,
                actor_id=contractor.id,
                metadata={"expiresAt": contract.signing_token_expires_at.isoformat()},
            )

        self.db.commit()
        self.db.refresh(contract)
        logger.info(f"✅ Contract {contract.id} created ({ContractStatus(contract.status).value})")

        if token is None:
            return contract, None

        increment_contract_usage(company, self.db)
        signing_url = build_signing_url(token)
        await self._email_signing_link(contract, contractor, signing_url)
        return contract, signing_url

    async def send_contract(self, contract_id: str, contractor: Contractor) -> tuple[Contract, str]:
        """Move a draft to sent and email the signing link"""
        contract = self.get_contract(contract_id, contractor)
        next_status(contract.status, ContractAction.SEND)

        if not contract.client_id:
            raise precondition_failed("Contract has no client")
        if not (contract.content or "").strip():
            raise precondition_failed("Contract has no content")
        self._check_entitlement(contractor)

        token = issue_signing_token(contract)
        moved = self.repo.transition_status(self.db, contract.id, ContractStatus.DRAFT, ContractStatus.SENT)
        if not moved:
            self.db.rollback()
            raise precondition_failed("Contract was changed by another request")

        self.repo.add_event(
            self.db,
            contract.id,
            ContractEventType.SENT,
            ActorType.CONTRACTOR,
            actor_id=contractor.id,
            metadata={"expiresAt": contract.signing_token_expires_at.isoformat()},
        )
        self.db.commit()
        self.db.refresh(contract)
        logger.info(f"📤 Contract {contract.id} sent")

        increment_contract_usage(contractor.company, self.db)
        signing_url = build_signing_url(token)
        await self._email_signing_link(contract, contractor, signing_url)
        return contract, signing_url

    async def resend_contract(self, contract_id: str, contractor: Contractor) -> tuple[Contract, str, bool]:
        """Rotate the signing token and email a fresh link"""
        contract = self.get_contract(contract_id, contractor)
        status = ContractStatus(contract.status)
        if is_terminal(status):
            raise precondition_failed(f"Contract is {status.value} and cannot be resent")
        if status == ContractStatus.DRAFT:
            raise precondition_failed("Contract has not been sent yet")

        token = issue_signing_token(contract)
        self.repo.add_event(
            self.db,
            contract.id,
            ContractEventType.RESENT,
            ActorType.CONTRACTOR,
            actor_id=contractor.id,
            metadata={"expiresAt": contract.signing_token_expires_at.isoformat()},
        )
        self.db.commit()
        self.db.refresh(contract)
        logger.info(f"🔁 Signing link rotated for contract {contract.id}")

        signing_url = build_signing_url(token)
        email_sent = await self._email_signing_link(contract, contractor, signing_url, is_reminder=True)
        return contract, signing_url, email_sent

    async def _email_signing_link(
        self, contract: Contract, contractor: Contractor, signing_url: str, is_reminder: bool = False
    ) -> bool:
        client = contract.client
        if not client or not client.email:
            return False

        company = contractor.company
        try:
            await send_contract_link_email(
                to=client.email,
                client_name=client.name,
                contractor_name=contractor.name or contractor.email,
                company_name=company.name if company else "",
                contract_title=contract.title,
                signing_url=signing_url,
                deposit_amount=contract.deposit_amount or 0,
                total_amount=contract.total_amount or 0,
                is_reminder=is_reminder,
            )
            return True
        except Exception as e:
            logger.error(f"❌ Failed to email signing link for contract {contract.id}: {e}")
            return False

    # ========================================================================
    # EDIT
    # ========================================================================

    def update_contract(self, contract_id: str, data: ContractUpdate, contractor: Contractor) -> Contract:
        """Edit terms while the contract is still a draft or unsigned"""
        contract = self.get_contract(contract_id, contractor)
        assert_mutable(contract)

        deposit = data.depositAmount if data.depositAmount is not None else contract.deposit_amount
        total = data.totalAmount if data.totalAmount is not None else contract.total_amount
        validate_amounts(deposit, total)

        updates = {
            "deposit_amount": data.depositAmount,
            "total_amount": data.totalAmount,
            "requires_contractor_signature": data.requiresContractorSignature,
        }
        if data.title is not None:
            updates["title"] = sanitize_string(data.title)
        if data.content is not None:
            content = sanitize_contract_html(data.content)
            if not content.strip():
                raise validation_failed("Contract content cannot be empty", "content")
            updates["content"] = content
        if data.fieldValues is not None:
            reserved = {k: v for k, v in (contract.field_values or {}).items() if k in RESERVED_FIELD_KEYS}
            updates["field_values"] = {**_user_field_values(data.fieldValues), **reserved}

        self.repo.update_contract(self.db, contract, **updates)
        self.db.commit()
        self.db.refresh(contract)
        logger.info(f"✏️ Contract {contract.id} updated")
        return contract

    @staticmethod
    def _ensure_not_final(contract: Contract) -> None:
        """Settings changes are refused once a contract is completed or cancelled"""
        status = ContractStatus(contract.status)
        if status == ContractStatus.CANCELLED:
            raise precondition_failed("Contract has been cancelled")
        if is_terminal(status):
            raise precondition_failed(f"Contract is {status.value} and can no longer be changed")

    def set_password(self, contract_id: str, password: str, contractor: Contractor) -> Contract:
        contract = self.get_contract(contract_id, contractor)
        self._ensure_not_final(contract)

        contract.password_hash = hash_password_bcrypt(password)
        self.repo.add_event(
            self.db, contract.id, ContractEventType.PASSWORD_SET, ActorType.CONTRACTOR, actor_id=contractor.id
        )
        self.db.commit()
        self.db.refresh(contract)
        logger.info(f"🔒 Password set for contract {contract.id}")
        return contract

    def clear_password(self, contract_id: str, contractor: Contractor) -> Contract:
        contract = self.get_contract(contract_id, contractor)
        self._ensure_not_final(contract)
        if not contract.password_hash:
            return contract

        contract.password_hash = None
        self.repo.add_event(
            self.db, contract.id, ContractEventType.PASSWORD_CLEARED, ActorType.CONTRACTOR, actor_id=contractor.id
        )
        self.db.commit()
        self.db.refresh(contract)
        logger.info(f"🔓 Password cleared for contract {contract.id}")
        return contract

    def update_branding(self, contract_id: str, data: BrandingRequest, contractor: Contractor) -> Contract:
        """Store presentation settings; gated on the customBranding entitlement"""
        contract = self.get_contract(contract_id, contractor)
        if not has_feature(contractor.company, "customBranding"):
            raise LifecycleError(ErrorKind.FORBIDDEN, "Custom branding is not available on your current plan")
        self._ensure_not_final(contract)

        branding = data.model_dump(exclude_none=True)
        # Reassign so the JSON column is flagged as changed
        contract.field_values = {**(contract.field_values or {}), "_branding": branding}
        self.repo.add_event(
            self.db,
            contract.id,
            ContractEventType.BRANDING_UPDATED,
            ActorType.CONTRACTOR,
            actor_id=contractor.id,
            metadata=branding,
        )
        self.db.commit()
        self.db.refresh(contract)
        return contract

    # ========================================================================
    # SIGN / CANCEL
    # ========================================================================

    def contractor_sign(
        self,
        contract_id: str,
        data: SignatureRequest,
        contractor: Contractor,
        context: SigningContext,
    ) -> SignatureResult:
        contract = self.get_contract(contract_id, contractor)
        if ContractStatus(contract.status) == ContractStatus.DRAFT:
            raise precondition_failed("Send the contract before signing it")

        return record_signature(
            self.db,
            contract,
            SignatureParty.CONTRACTOR,
            data.fullName,
            context,
            signature_data_url=data.signatureDataUrl,
            signer_id=contractor.id,
        )

    def cancel_contract(self, contract_id: str, contractor: Contractor, reason: Optional[str] = None) -> Contract:
        """Cancel a contract that has not reached a terminal status"""
        contract = self.get_contract(contract_id, contractor)
        next_status(contract.status, ContractAction.CANCEL)

        moved = self.repo.transition_status(
            self.db, contract.id, NON_TERMINAL_STATUSES, ContractStatus.CANCELLED
        )
        if not moved:
            self.db.rollback()
            self.db.refresh(contract)
            raise precondition_failed(
                f"Contract is {ContractStatus(contract.status).value} and can no longer be cancelled"
            )

        self.repo.add_event(
            self.db,
            contract.id,
            ContractEventType.CANCELLED,
            ActorType.CONTRACTOR,
            actor_id=contractor.id,
            metadata={"reason": sanitize_string(reason)} if reason else None,
        )
        self.db.commit()
        self.db.refresh(contract)
        logger.info(f"🛑 Contract {contract.id} cancelled")
        return contract

    # ========================================================================
    # READ
    # ========================================================================

    def get_status(self, contract_id: str, contractor: Contractor) -> dict:
        contract = self.get_contract(contract_id, contractor)
        return {
            "id": contract.id,
            "status": ContractStatus(contract.status).value,
            "signedAt": contract.signed_at,
            "paidAt": contract.paid_at,
            "completedAt": contract.completed_at,
            "signingTokenExpiresAt": contract.signing_token_expires_at,
            "hasPdf": bool(contract.pdf_key),
        }

    def list_events(self, contract_id: str, contractor: Contractor) -> list[dict]:
        contract = self.get_contract(contract_id, contractor)
        return [
            {
                "id": event.id,
                "eventType": ContractEventType(event.event_type).value,
                "actorType": ActorType(event.actor_type).value,
                "actorId": event.actor_id,
                "metadata": event.event_metadata or {},
                "createdAt": event.created_at,
            }
            for event in self.repo.list_events(self.db, contract.id)
        ]

    def list_signatures(self, contract_id: str, contractor: Contractor) -> list[dict]:
        """Signatures with a check that the contract still matches what was signed"""
        contract = self.get_contract(contract_id, contractor)
        return [
            {
                "id": signature.id,
                "party": SignatureParty(signature.party).value,
                "fullName": signature.full_name,
                "signedAt": signature.signed_at,
                "ipAddress": signature.ip_address,
                "userAgent": signature.user_agent,
                "contractHash": signature.contract_hash,
                "hasImage": bool(signature.image_key),
                "matchesCurrentContent": verify_signature_binding(signature, contract),
            }
            for signature in self.repo.get_signatures(self.db, contract.id)
        ]

    def get_pdf_url(self, contract_id: str, contractor: Contractor) -> Optional[str]:
        contract = self.get_contract(contract_id, contractor)
        if not contract.pdf_key:
            return None
        return generate_presigned_url(contract.pdf_key)


