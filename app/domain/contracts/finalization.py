"""
Finalization protocol.

Turns a signed and paid contract into a completed record with a final PDF.
Completion is claimed with a conditional paid -> completed update, so however
many callers race (public link, payment webhook, retries) exactly one of them
produces the completion timestamp, the artifact and the notifications.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ...email_service import send_contract_completed_email
from ...errors import ErrorKind, LifecycleError, not_found, precondition_failed
from ...models import ActorType, Contract, ContractEventType, ContractStatus
from ...services import storage
from ...services.contract_pdf_generator import ContractPDFGenerator
from .access import verify_signing_token
from .repository import ContractRepository

logger = logging.getLogger(__name__)

# Presigned links in completion emails (S3 maximum)
FINAL_PDF_URL_EXPIRATION = 7 * 24 * 3600

# A render claim older than this is treated as abandoned
ARTIFACT_CLAIM_LEASE = timedelta(minutes=5)


@dataclass
class FinalizationResult:
    contract: Contract
    already_finalized: bool = False
    pdf_key: Optional[str] = None
    regenerated: bool = False
    artifact_error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.artifact_error is None


def mark_paid(
    db: Session,
    contract_id: str,
    actor_type: ActorType = ActorType.SYSTEM,
    metadata: Optional[dict] = None,
    now: Optional[datetime] = None,
) -> bool:
    """
    Move a signed contract to paid.

    Returns True when this call made the transition, False when the contract
    was already paid or completed. Any other status is a precondition failure.
    """
    now = now or datetime.utcnow()

    moved = ContractRepository.transition_status(
        db, contract_id, ContractStatus.SIGNED, ContractStatus.PAID, paid_at=now
    )
    if moved:
        ContractRepository.add_event(
            db, contract_id, ContractEventType.PAID, actor_type, metadata=metadata
        )
        db.commit()
        logger.info(f"💰 Contract {contract_id} marked as paid")
        return True

    db.rollback()
    contract = ContractRepository.get_contract_by_id(db, contract_id)
    if not contract:
        raise not_found()

    status = ContractStatus(contract.status)
    if status in (ContractStatus.PAID, ContractStatus.COMPLETED):
        logger.info(f"Contract {contract_id} already {status.value}, skipping mark-paid")
        return False

    raise precondition_failed(f"Contract must be signed before payment (status: {status.value})")


def _load_signature_images(contract: Contract) -> dict[str, bytes]:
    images = {}
    for signature in contract.signatures:
        if not signature.image_key:
            continue
        try:
            images[signature.party.value] = storage.download_object(signature.image_key)
        except Exception as e:
            logger.warning(f"⚠️ Could not load signature image {signature.image_key}: {e}")
    return images


def _produce_artifact(db: Session, contract: Contract, payment_info: Optional[dict]) -> str:
    """Render and store the final PDF from persisted state, then record it"""
    repo = ContractRepository
    generator = ContractPDFGenerator(
        contract=contract,
        client=contract.client,
        contractor=contract.contractor,
        company=repo.get_company(db, contract.company_id),
        signatures=repo.get_signatures(db, contract.id),
        payment_info=payment_info,
        signature_images=_load_signature_images(contract),
    )
    pdf_bytes = generator.generate()
    pdf_hash = ContractPDFGenerator.calculate_hash(pdf_bytes)
    pdf_key = storage.upload_contract_pdf(pdf_bytes, contract.company_id, contract.id)

    contract.pdf_key = pdf_key
    contract.pdf_hash = pdf_hash
    repo.add_event(
        db,
        contract.id,
        ContractEventType.FINALIZED,
        ActorType.SYSTEM,
        metadata={"pdfKey": pdf_key, "pdfHash": pdf_hash, "finalizedAt": datetime.utcnow().isoformat()},
    )
    db.commit()
    return pdf_key


def _release_artifact_claim(db: Session, contract_id: str) -> None:
    try:
        ContractRepository.release_artifact_claim(db, contract_id)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.warning(f"⚠️ Could not release PDF claim for contract {contract_id}: {e}")


async def _notify_completion(db: Session, contract: Contract, pdf_key: Optional[str]) -> None:
    """Send completion emails; failures are logged and never fail finalization"""
    client = contract.client
    contractor = contract.contractor
    company = ContractRepository.get_company(db, contract.company_id)
    company_name = company.name if company else (contractor.name if contractor else "")

    pdf_url = None
    if pdf_key:
        try:
            pdf_url = storage.generate_presigned_url(pdf_key, FINAL_PDF_URL_EXPIRATION)
        except Exception as e:
            logger.warning(f"⚠️ Could not create PDF link for contract {contract.id}: {e}")

    common = {
        "contract_title": contract.title,
        "company_name": company_name,
        "client_name": client.name if client else "",
        "deposit_amount": contract.deposit_amount,
        "total_amount": contract.total_amount,
        "pdf_url": pdf_url,
    }

    if client:
        try:
            await send_contract_completed_email(
                to=client.email, recipient_name=client.name, is_client=True, **common
            )
        except Exception as e:
            logger.error(f"❌ Failed to send completion email to client for {contract.id}: {e}")

    if contractor and contractor.notify_contract_paid:
        try:
            await send_contract_completed_email(
                to=contractor.email,
                recipient_name=contractor.name or contractor.email,
                is_client=False,
                **common,
            )
        except Exception as e:
            logger.error(f"❌ Failed to send completion email to contractor for {contract.id}: {e}")


async def finalize_contract(
    db: Session,
    contract_id: str,
    payment_info: Optional[dict] = None,
    now: Optional[datetime] = None,
) -> FinalizationResult:
    """
    Complete a paid contract exactly once.

    Calling this again on a completed contract is a no-op, except that a
    missing PDF (a failed earlier render or upload) is regenerated without
    re-sending emails. Rendering is guarded by artifact_claimed_at, so a call
    that overlaps an in-flight render returns without rendering.
    """
    now = now or datetime.utcnow()

    db.expire_all()
    contract = ContractRepository.get_contract_by_id(db, contract_id)
    if not contract:
        raise not_found()

    status = ContractStatus(contract.status)

    if status == ContractStatus.COMPLETED:
        if contract.pdf_key:
            return FinalizationResult(contract=contract, already_finalized=True, pdf_key=contract.pdf_key)

        claimed = ContractRepository.claim_artifact(
            db, contract_id, now, stale_before=now - ARTIFACT_CLAIM_LEASE
        )
        if not claimed:
            db.rollback()
            logger.info(f"PDF for contract {contract_id} is being rendered by another request")
            return FinalizationResult(contract=contract, already_finalized=True)
        db.commit()

        logger.info(f"🔁 Regenerating missing PDF for completed contract {contract_id}")
        try:
            pdf_key = _produce_artifact(db, contract, payment_info)
        except Exception as e:
            db.rollback()
            _release_artifact_claim(db, contract_id)
            logger.error(f"❌ PDF regeneration failed for contract {contract_id}: {e}")
            return FinalizationResult(
                contract=contract, already_finalized=True, artifact_error=str(e)
            )
        return FinalizationResult(
            contract=contract, already_finalized=True, pdf_key=pdf_key, regenerated=True
        )

    if status != ContractStatus.PAID:
        raise precondition_failed(f"Contract status is {status.value}, expected 'paid'")
    if not contract.signed_at:
        raise precondition_failed("Contract is not signed")
    if not contract.paid_at:
        raise precondition_failed("Contract payment not confirmed")

    claimed = ContractRepository.transition_status(
        db,
        contract_id,
        ContractStatus.PAID,
        ContractStatus.COMPLETED,
        completed_at=now,
        artifact_claimed_at=now,
    )
    if not claimed:
        db.rollback()
        db.expire_all()
        contract = ContractRepository.get_contract_by_id(db, contract_id)
        logger.info(f"Contract {contract_id} was finalized by another request")
        return FinalizationResult(
            contract=contract, already_finalized=True, pdf_key=contract.pdf_key if contract else None
        )

    ContractRepository.add_event(db, contract_id, ContractEventType.COMPLETED, ActorType.SYSTEM)
    db.commit()
    db.refresh(contract)
    logger.info(f"✅ Contract {contract_id} completed")

    pdf_key = None
    artifact_error = None
    try:
        pdf_key = _produce_artifact(db, contract, payment_info)
    except Exception as e:
        # The contract stays completed; a later finalize call regenerates the PDF
        db.rollback()
        _release_artifact_claim(db, contract_id)
        artifact_error = str(e)
        logger.error(f"❌ Final PDF generation failed for contract {contract_id}: {e}")

    db.refresh(contract)
    await _notify_completion(db, contract, pdf_key)

    return FinalizationResult(contract=contract, pdf_key=pdf_key, artifact_error=artifact_error)


async def finalize_from_token(
    db: Session, token: str, now: Optional[datetime] = None
) -> FinalizationResult:
    """
    Public finalize for contracts with no deposit.

    Contracts with a deposit only reach paid through payment confirmation.
    """
    now = now or datetime.utcnow()
    contract = verify_signing_token(db, token, now)
    status = ContractStatus(contract.status)

    if status == ContractStatus.COMPLETED:
        return await finalize_contract(db, contract.id, now=now)

    if status not in (ContractStatus.SIGNED, ContractStatus.PAID):
        raise precondition_failed(f"Contract must be signed before it can be finalized (status: {status.value})")

    if (contract.deposit_amount or 0) > 0 and status == ContractStatus.SIGNED:
        raise LifecycleError(ErrorKind.PRECONDITION_FAILED, "Contract requires payment")

    if status == ContractStatus.SIGNED:
        mark_paid(
            db,
            contract.id,
            actor_type=ActorType.CLIENT,
            metadata={"method": "no_deposit", "amount": 0},
            now=now,
        )

    return await finalize_contract(db, contract.id, now=datetime.utcnow())
