"""
Dual-party signature protocol.

Contractor and client sign independently and in either order. Each
signature stores a SHA-256 hash of the contract terms at signing time so a
later edit is detectable. A signature row and its audit event are written in
one transaction.
"""

import base64
import binascii
import hashlib
import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...errors import ErrorKind, LifecycleError, not_found, precondition_failed, validation_failed
from ...models import (
    ActorType,
    Contract,
    ContractEventType,
    ContractStatus,
    Signature,
    SignatureParty,
)
from ...services import storage
from ...utils.sanitization import normalize_full_name
from .repository import ContractRepository
from .state_machine import is_terminal, required_parties

logger = logging.getLogger(__name__)

MAX_SIGNATURE_DATA_URL_LENGTH = 500_000

SIGNATURE_DATA_URL_PATTERN = re.compile(r"^data:image/(png|jpeg|jpg|webp);base64,([A-Za-z0-9+/=\s]+)$")

# Presentation and payment bookkeeping live in field_values but are not terms
RESERVED_FIELD_KEYS = frozenset({"_branding", "_payment"})

SIGNED_EVENTS = {
    SignatureParty.CLIENT: ContractEventType.CLIENT_SIGNED,
    SignatureParty.CONTRACTOR: ContractEventType.CONTRACTOR_SIGNED,
}


@dataclass
class SigningContext:
    """Where a signature came from"""

    ip_address: str = "unknown"
    user_agent: str = "unknown"


@dataclass
class SignatureResult:
    signature: Signature
    contract: Contract
    fully_signed: bool


def contract_terms(contract: Contract) -> dict:
    """The parts of a contract a signature is bound to"""
    field_values = {k: v for k, v in (contract.field_values or {}).items() if k not in RESERVED_FIELD_KEYS}
    return {
        "title": contract.title,
        "content": contract.content,
        "deposit_amount": float(contract.deposit_amount or 0),
        "total_amount": float(contract.total_amount or 0),
        "field_values": field_values,
    }


def compute_contract_hash(contract: Contract) -> str:
    canonical = json.dumps(contract_terms(contract), sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def verify_signature_binding(signature: Signature, contract: Contract) -> bool:
    """True while the contract terms still match what was signed"""
    return signature.contract_hash == compute_contract_hash(contract)


def decode_signature_image(data_url: Optional[str]) -> Optional[tuple[bytes, str]]:
    """
    Decode a signature image data URL.

    Returns (image_bytes, content_type) or None when no image was supplied.
    """
    if not data_url:
        return None

    if len(data_url) > MAX_SIGNATURE_DATA_URL_LENGTH:
        raise validation_failed("Signature image is too large", "signatureDataUrl")

    match = SIGNATURE_DATA_URL_PATTERN.match(data_url.strip())
    if not match:
        raise validation_failed(
            "Signature must be a PNG, JPEG or WEBP image data URL", "signatureDataUrl"
        )

    subtype = "jpeg" if match.group(1) == "jpg" else match.group(1)
    try:
        image_bytes = base64.b64decode(match.group(2), validate=False)
    except (binascii.Error, ValueError) as e:
        raise validation_failed("Signature image is not valid base64", "signatureDataUrl") from e

    return image_bytes, f"image/{subtype}"


def _check_can_sign(contract: Contract, party: SignatureParty) -> None:
    status = ContractStatus(contract.status)

    if status == ContractStatus.CANCELLED:
        raise LifecycleError(ErrorKind.CONTRACT_CANCELLED, "This contract has been cancelled")
    if is_terminal(status):
        raise precondition_failed(f"Contract is {status.value} and can no longer be signed")

    if party == SignatureParty.CLIENT and status != ContractStatus.SENT:
        raise precondition_failed(f"Contract cannot be signed while {status.value}")


def complete_if_fully_signed(db: Session, contract_id: str, now: Optional[datetime] = None) -> bool:
    """
    Move a sent contract to signed when every required party has a committed
    signature row.

    Two parties signing at once can each commit without seeing the other's
    row; whichever runs this afterwards sees both. Returns True when the
    contract is signed (by this call or earlier).
    """
    now = now or datetime.utcnow()
    db.expire_all()

    contract = ContractRepository.get_contract_by_id(db, contract_id)
    if not contract:
        return False

    status = ContractStatus(contract.status)
    if status != ContractStatus.SENT:
        return status == ContractStatus.SIGNED

    signed_parties = {s.party for s in ContractRepository.get_signatures(db, contract_id)}
    if not required_parties(contract).issubset(signed_parties):
        return False

    moved = ContractRepository.transition_status(
        db, contract_id, ContractStatus.SENT, ContractStatus.SIGNED, signed_at=now
    )
    db.commit()
    if moved:
        logger.info(f"✅ Contract {contract_id} fully signed after concurrent signatures")
    db.refresh(contract)
    return ContractStatus(contract.status) == ContractStatus.SIGNED


def _already_signed(db: Session, contract_id: str, party: SignatureParty) -> None:
    if ContractRepository.get_signature(db, contract_id, party):
        raise LifecycleError(ErrorKind.CONFLICT, f"The {party.value} has already signed this contract")


def record_signature(
    db: Session,
    contract: Contract,
    party: SignatureParty,
    full_name: str,
    context: SigningContext,
    signature_data_url: Optional[str] = None,
    signer_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> SignatureResult:
    """
    Record one party's signature and advance the contract once every
    required party has signed.

    The status and duplicate checks are repeated under a row lock on the
    contract, so parties signing concurrently are serialized and the last
    one to commit sees every signature. Raises CONFLICT when this party
    already signed.
    """
    now = now or datetime.utcnow()

    try:
        full_name = normalize_full_name(full_name)
    except ValueError as e:
        raise validation_failed(str(e), "fullName") from e

    _check_can_sign(contract, party)
    _already_signed(db, contract.id, party)

    image = decode_signature_image(signature_data_url)

    image_key = None
    if image:
        image_bytes, content_type = image
        try:
            image_key = storage.upload_signature_image(
                image_bytes, contract.company_id, contract.id, party.value, content_type
            )
        except Exception as e:
            logger.error(f"❌ Failed to store {party.value} signature image for {contract.id}: {e}")
            raise LifecycleError(
                ErrorKind.DEPENDENCY_FAILED, "Could not store the signature image. Please try again."
            ) from e

    actor_type = ActorType.CLIENT if party == SignatureParty.CLIENT else ActorType.CONTRACTOR

    try:
        # Held until commit; signatures read below reflect every earlier signer
        locked = ContractRepository.lock_contract(db, contract.id)
        if not locked:
            raise not_found()
        _check_can_sign(locked, party)
        _already_signed(db, locked.id, party)

        contract_hash = compute_contract_hash(locked)
        signature = ContractRepository.add_signature(
            db,
            Signature(
                contract_id=locked.id,
                party=party,
                signer_id=signer_id,
                full_name=full_name,
                image_key=image_key,
                ip_address=context.ip_address,
                user_agent=context.user_agent,
                contract_hash=contract_hash,
                signed_at=now,
            ),
        )
        ContractRepository.add_event(
            db,
            locked.id,
            SIGNED_EVENTS[party],
            actor_type,
            actor_id=signer_id,
            metadata={
                "fullName": full_name,
                "ip": context.ip_address,
                "userAgent": context.user_agent,
                "contractHash": contract_hash,
            },
        )

        signed_parties = {s.party for s in ContractRepository.get_signatures(db, locked.id)}
        fully_signed = required_parties(locked).issubset(signed_parties)

        if fully_signed and ContractStatus(locked.status) == ContractStatus.SENT:
            moved = ContractRepository.transition_status(
                db, locked.id, ContractStatus.SENT, ContractStatus.SIGNED, signed_at=now
            )
            if not moved:
                raise precondition_failed("Contract changed while signing. Please reload and try again.")

        db.commit()
    except IntegrityError as e:
        db.rollback()
        logger.info(f"Duplicate {party.value} signature rejected for contract {contract.id}")
        raise LifecycleError(
            ErrorKind.CONFLICT, f"The {party.value} has already signed this contract"
        ) from e
    except LifecycleError:
        db.rollback()
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"❌ Failed to record {party.value} signature for {contract.id}: {e}")
        raise LifecycleError(ErrorKind.INTERNAL_ERROR, "Failed to record signature") from e

    if not fully_signed:
        fully_signed = complete_if_fully_signed(db, contract.id, now)

    db.refresh(contract)
    db.refresh(signature)
    logger.info(f"✅ {party.value.capitalize()} signed contract {contract.id} (fully signed: {fully_signed})")
    return SignatureResult(signature=signature, contract=contract, fully_signed=fully_signed)
