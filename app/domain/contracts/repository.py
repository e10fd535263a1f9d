"""Contract repository - Database operations for contracts"""

from datetime import datetime
from typing import Iterable, Optional, Union

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ...models import (
    ActorType,
    Client,
    Company,
    Contract,
    ContractEvent,
    ContractEventType,
    ContractStatus,
    Payment,
    Signature,
    SignatureParty,
    SigningAttempt,
)


class ContractRepository:
    """Repository for contract database operations"""

    @staticmethod
    def get_contract_by_id(db: Session, contract_id: str) -> Optional[Contract]:
        return db.query(Contract).filter(Contract.id == contract_id).first()

    @staticmethod
    def get_contract_for_company(db: Session, contract_id: str, company_id: str) -> Optional[Contract]:
        """Get a contract owned by the caller's company"""
        return (
            db.query(Contract)
            .filter(Contract.id == contract_id, Contract.company_id == company_id)
            .first()
        )

    @staticmethod
    def get_contract_by_token_hash(db: Session, token_hash: str) -> Optional[Contract]:
        return db.query(Contract).filter(Contract.signing_token_hash == token_hash).first()

    @staticmethod
    def create_contract(db: Session, **contract_data) -> Contract:
        """Stage a new contract; the caller commits"""
        contract = Contract(**contract_data)
        db.add(contract)
        db.flush()
        return contract

    @staticmethod
    def update_contract(db: Session, contract: Contract, **updates) -> Contract:
        """Stage field updates on a contract; the caller commits"""
        for key, value in updates.items():
            if value is not None and hasattr(contract, key):
                setattr(contract, key, value)
        db.flush()
        return contract

    @staticmethod
    def transition_status(
        db: Session,
        contract_id: str,
        expected: Union[ContractStatus, Iterable[ContractStatus]],
        target: ContractStatus,
        **values,
    ) -> bool:
        """
        Conditionally move a contract to a new status.

        Issues UPDATE ... WHERE id = :id AND status = :expected so the database
        decides who wins concurrent transitions. Returns True if this caller
        made the change. The caller commits.
        """
        expected_statuses = [expected] if isinstance(expected, ContractStatus) else list(expected)
        changes = {Contract.status: target}
        for key, value in values.items():
            changes[getattr(Contract, key)] = value

        updated = (
            db.query(Contract)
            .filter(Contract.id == contract_id, Contract.status.in_(expected_statuses))
            .update(changes, synchronize_session=False)
        )
        return updated == 1

    @staticmethod
    def lock_contract(db: Session, contract_id: str) -> Optional[Contract]:
        """
        Reload a contract with SELECT ... FOR UPDATE.

        Concurrent writers on the same contract queue behind the lock until
        this transaction ends. SQLite ignores FOR UPDATE and serializes writes.
        """
        return (
            db.query(Contract)
            .filter(Contract.id == contract_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    @staticmethod
    def claim_artifact(db: Session, contract_id: str, now: datetime, stale_before: datetime) -> bool:
        """
        Take the right to render a completed contract's missing PDF.

        Succeeds only when no PDF is stored and no other caller holds a claim
        newer than stale_before. The caller commits.
        """
        updated = (
            db.query(Contract)
            .filter(
                Contract.id == contract_id,
                Contract.status == ContractStatus.COMPLETED,
                Contract.pdf_key.is_(None),
                or_(Contract.artifact_claimed_at.is_(None), Contract.artifact_claimed_at < stale_before),
            )
            .update({Contract.artifact_claimed_at: now}, synchronize_session=False)
        )
        return updated == 1

    @staticmethod
    def release_artifact_claim(db: Session, contract_id: str) -> None:
        """Drop a claim after a failed render so the next finalize call retries at once"""
        db.query(Contract).filter(Contract.id == contract_id, Contract.pdf_key.is_(None)).update(
            {Contract.artifact_claimed_at: None}, synchronize_session=False
        )

    # ------------------------------------------------------------------
    # Parties
    # ------------------------------------------------------------------

    @staticmethod
    def get_company(db: Session, company_id: str) -> Optional[Company]:
        return db.query(Company).filter(Company.id == company_id).first()

    @staticmethod
    def get_client_by_email(db: Session, company_id: str, email: str) -> Optional[Client]:
        return (
            db.query(Client)
            .filter(Client.company_id == company_id, func.lower(Client.email) == email.lower())
            .first()
        )

    @staticmethod
    def create_client(db: Session, company_id: str, name: str, email: str, phone: Optional[str] = None) -> Client:
        client = Client(company_id=company_id, name=name, email=email.lower(), phone=phone)
        db.add(client)
        db.flush()
        return client

    # ------------------------------------------------------------------
    # Signatures & audit log
    # ------------------------------------------------------------------

    @staticmethod
    def get_signatures(db: Session, contract_id: str) -> list[Signature]:
        return (
            db.query(Signature)
            .filter(Signature.contract_id == contract_id)
            .order_by(Signature.signed_at)
            .all()
        )

    @staticmethod
    def get_signature(db: Session, contract_id: str, party: SignatureParty) -> Optional[Signature]:
        return (
            db.query(Signature)
            .filter(Signature.contract_id == contract_id, Signature.party == party)
            .first()
        )

    @staticmethod
    def add_signature(db: Session, signature: Signature) -> Signature:
        db.add(signature)
        db.flush()
        return signature

    @staticmethod
    def add_event(
        db: Session,
        contract_id: str,
        event_type: ContractEventType,
        actor_type: ActorType,
        actor_id: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> ContractEvent:
        """Stage an audit event in the current transaction"""
        event = ContractEvent(
            contract_id=contract_id,
            event_type=event_type,
            actor_type=actor_type,
            actor_id=actor_id,
            event_metadata=metadata or {},
        )
        db.add(event)
        db.flush()
        return event

    @staticmethod
    def list_events(db: Session, contract_id: str) -> list[ContractEvent]:
        return (
            db.query(ContractEvent)
            .filter(ContractEvent.contract_id == contract_id)
            .order_by(ContractEvent.id)
            .all()
        )

    # ------------------------------------------------------------------
    # Signing-link rate limiting
    # ------------------------------------------------------------------

    @staticmethod
    def count_signing_attempts(db: Session, ip_address: str, since: datetime) -> int:
        return (
            db.query(func.count(SigningAttempt.id))
            .filter(SigningAttempt.ip_address == ip_address, SigningAttempt.created_at >= since)
            .scalar()
            or 0
        )

    @staticmethod
    def record_signing_attempt(
        db: Session,
        ip_address: str,
        success: bool,
        created_at: datetime,
        contract_id: Optional[str] = None,
    ) -> None:
        db.add(
            SigningAttempt(
                ip_address=ip_address,
                contract_id=contract_id,
                success=success,
                created_at=created_at,
            )
        )
        db.commit()

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    @staticmethod
    def sum_completed_payments(db: Session, contract_id: str) -> float:
        return float(
            db.query(func.coalesce(func.sum(Payment.amount), 0.0))
            .filter(Payment.contract_id == contract_id, Payment.status == "completed")
            .scalar()
            or 0.0
        )
