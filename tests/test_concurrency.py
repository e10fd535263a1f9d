"""Two requests working on the same contract through separate database sessions."""
import asyncio
import threading
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.database import Base
from app.domain.contracts.finalization import finalize_contract
from app.domain.contracts.repository import ContractRepository
from app.domain.contracts.signatures import SigningContext, complete_if_fully_signed, record_signature
from app.errors import ErrorKind, LifecycleError
from app.models import Contract, ContractEvent, ContractEventType, ContractStatus, Signature, SignatureParty
from app.services.contract_pdf_generator import ContractPDFGenerator

CONTEXT = SigningContext(ip_address="203.0.113.5", user_agent="pytest-browser/1.0")


@pytest.fixture
def engine(tmp_path):
    """File-backed SQLite so every session gets its own connection."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'contracts.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def other_db(engine):
    """A second request's session."""
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()


def _count_events(db, contract_id, event_type):
    return (
        db.query(ContractEvent)
        .filter(ContractEvent.contract_id == contract_id, ContractEvent.event_type == event_type)
        .count()
    )


def _pdf_uploads(r2_client):
    return [c for c in r2_client.put_object.call_args_list if c.kwargs.get("ContentType") == "application/pdf"]


class TestOverlappingFinalize:
    async def test_second_call_during_render_does_not_render_again(
        self, db, other_db, make_contract, r2_client, sent_emails
    ):
        now = datetime.utcnow()
        contract, _ = make_contract(
            status=ContractStatus.PAID,
            deposit_amount=100.0,
            signed_at=now - timedelta(hours=1),
            paid_at=now - timedelta(minutes=5),
        )
        overlapping = {}

        def run_second_finalize():
            try:
                overlapping["result"] = asyncio.run(finalize_contract(other_db, contract.id))
            except Exception as e:
                overlapping["error"] = e

        def slow_generate(generator):
            # The second request arrives while the first is still rendering
            if not overlapping:
                worker = threading.Thread(target=run_second_finalize)
                worker.start()
                worker.join(timeout=30)
            return b"%PDF-1.4 final"

        with patch.object(ContractPDFGenerator, "generate", new=slow_generate):
            first = await finalize_contract(db, contract.id)

        assert "error" not in overlapping
        second = overlapping["result"]

        assert first.success
        assert first.pdf_key is not None
        assert second.already_finalized is True
        assert second.regenerated is False
        assert second.pdf_key is None
        assert len(_pdf_uploads(r2_client)) == 1
        assert _count_events(db, contract.id, ContractEventType.COMPLETED) == 1
        assert _count_events(db, contract.id, ContractEventType.FINALIZED) == 1
        assert sent_emails.await_count == 2

    async def test_finalize_after_render_sees_stored_pdf(self, db, other_db, make_contract, r2_client):
        now = datetime.utcnow()
        contract, _ = make_contract(
            status=ContractStatus.PAID,
            signed_at=now - timedelta(hours=1),
            paid_at=now - timedelta(minutes=5),
        )
        # Loaded before the first request finishes
        other_db.get(Contract, contract.id)

        first = await finalize_contract(db, contract.id)
        second = await finalize_contract(other_db, contract.id)

        assert second.already_finalized is True
        assert second.pdf_key == first.pdf_key
        assert len(_pdf_uploads(r2_client)) == 1


class TestConcurrentSigning:
    def test_signer_with_stale_view_completes_contract(self, db, other_db, make_contract):
        contract, _ = make_contract(requires_contractor_signature=True)
        stale = other_db.get(Contract, contract.id)
        assert stale.signatures == []

        record_signature(db, contract, SignatureParty.CLIENT, "Jane Doe", CONTEXT)
        result = record_signature(other_db, stale, SignatureParty.CONTRACTOR, "Sam Owner", CONTEXT)

        assert result.fully_signed is True
        assert result.contract.status == ContractStatus.SIGNED
        db.expire_all()
        assert db.get(Contract, contract.id).status == ContractStatus.SIGNED

    def test_same_party_from_two_sessions_conflicts(self, db, other_db, make_contract):
        contract, _ = make_contract(requires_contractor_signature=True)
        stale = other_db.get(Contract, contract.id)

        record_signature(db, contract, SignatureParty.CLIENT, "Jane Doe", CONTEXT)
        with pytest.raises(LifecycleError) as exc_info:
            record_signature(other_db, stale, SignatureParty.CLIENT, "Jane Doe", CONTEXT)

        assert exc_info.value.kind == ErrorKind.CONFLICT
        assert db.query(Signature).filter(Signature.contract_id == contract.id).count() == 1

    def test_signature_missed_inside_transaction_is_picked_up_after_commit(self, db, other_db, make_contract):
        contract, _ = make_contract(requires_contractor_signature=True)
        record_signature(db, contract, SignatureParty.CLIENT, "Jane Doe", CONTEXT)

        original = ContractRepository.get_signatures
        calls = []

        def miss_client_signature(db_, contract_id):
            # First read behaves as if the client's row were not yet committed
            calls.append(contract_id)
            signatures = original(db_, contract_id)
            if len(calls) == 1:
                return [s for s in signatures if s.party == SignatureParty.CONTRACTOR]
            return signatures

        stale = other_db.get(Contract, contract.id)
        with patch.object(ContractRepository, "get_signatures", side_effect=miss_client_signature):
            result = record_signature(other_db, stale, SignatureParty.CONTRACTOR, "Sam Owner", CONTEXT)

        assert result.fully_signed is True
        assert result.contract.status == ContractStatus.SIGNED
        assert result.contract.signed_at is not None


class TestCompleteIfFullySigned:
    def _add_signature(self, db, contract, party):
        db.add(
            Signature(
                contract_id=contract.id,
                party=party,
                full_name="Someone Signing",
                contract_hash="0" * 64,
                signed_at=datetime.utcnow(),
            )
        )
        db.commit()

    def test_both_rows_committed_moves_to_signed(self, db, other_db, make_contract):
        contract, _ = make_contract(requires_contractor_signature=True)
        self._add_signature(db, contract, SignatureParty.CLIENT)
        self._add_signature(db, contract, SignatureParty.CONTRACTOR)

        assert complete_if_fully_signed(other_db, contract.id) is True

        db.expire_all()
        signed = db.get(Contract, contract.id)
        assert signed.status == ContractStatus.SIGNED
        assert signed.signed_at is not None

    def test_repeat_keeps_first_signed_at(self, db, make_contract):
        contract, _ = make_contract(requires_contractor_signature=True)
        self._add_signature(db, contract, SignatureParty.CLIENT)
        self._add_signature(db, contract, SignatureParty.CONTRACTOR)

        complete_if_fully_signed(db, contract.id, now=datetime(2026, 3, 1, 9, 0))
        assert complete_if_fully_signed(db, contract.id, now=datetime(2026, 3, 2, 9, 0)) is True

        assert db.get(Contract, contract.id).signed_at == datetime(2026, 3, 1, 9, 0)

    def test_missing_party_leaves_contract_sent(self, db, make_contract):
        contract, _ = make_contract(requires_contractor_signature=True)
        self._add_signature(db, contract, SignatureParty.CLIENT)

        assert complete_if_fully_signed(db, contract.id) is False
        assert db.get(Contract, contract.id).status == ContractStatus.SENT
