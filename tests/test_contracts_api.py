"""Tests for the authenticated contract endpoints."""
from datetime import timedelta

from app.models import Contract, ContractEvent, ContractEventType, ContractStatus
from app.security_utils import hash_signing_token
from tests.conftest import SAMPLE_CONTENT, make_session_token


def contract_payload(**overrides):
    payload = {
        "clientName": "Jane Doe",
        "clientEmail": "jane@example.com",
        "title": "Weekly Office Cleaning",
        "content": SAMPLE_CONTENT,
        "fieldValues": {"frequency": "weekly"},
        "depositAmount": 100,
        "totalAmount": 500,
    }
    payload.update(overrides)
    return payload


def token_from_url(url):
    return url.rsplit("/", 1)[-1]


class TestCreateContract:
    """Creating a contract sends it unless it is saved as a draft."""

    def test_create_and_send(self, client, db, auth_headers, company, sent_emails):
        response = client.post("/contracts", json=contract_payload(), headers=auth_headers)

        assert response.status_code == 201
        body = response.json()
        assert body["contract"]["status"] == "sent"
        assert body["contract"]["depositAmount"] == 100

        token = token_from_url(body["signingUrl"])
        assert len(token) == 64
        contract = db.get(Contract, body["contract"]["id"])
        assert contract.signing_token_hash == hash_signing_token(token)
        assert contract.signing_token is None
        assert contract.signing_token_expires_at is not None

        events = [e.event_type for e in db.query(ContractEvent).filter(ContractEvent.contract_id == contract.id)]
        assert events == [ContractEventType.CREATED, ContractEventType.SENT]

        db.refresh(company)
        assert company.contracts_used == 1
        assert sent_emails.await_count == 1

    def test_draft_is_not_sent(self, client, db, auth_headers, company, sent_emails):
        response = client.post("/contracts", json=contract_payload(send=False), headers=auth_headers)

        assert response.status_code == 201
        assert response.json()["contract"]["status"] == "draft"
        assert response.json()["signingUrl"] is None
        assert sent_emails.await_count == 0
        db.refresh(company)
        assert company.contracts_used == 0

    def test_send_draft_later(self, client, auth_headers):
        created = client.post("/contracts", json=contract_payload(send=False), headers=auth_headers).json()
        contract_id = created["contract"]["id"]

        sent = client.post(f"/contracts/{contract_id}/send", headers=auth_headers)
        again = client.post(f"/contracts/{contract_id}/send", headers=auth_headers)

        assert sent.status_code == 200
        assert sent.json()["contract"]["status"] == "sent"
        assert again.status_code == 409

    def test_reuses_existing_client(self, client, db, auth_headers, client_record):
        response = client.post("/contracts", json=contract_payload(), headers=auth_headers)
        assert response.json()["contract"]["clientId"] == client_record.id

    def test_script_tags_are_stripped(self, client, db, auth_headers):
        content = "<p>Terms</p><script>alert(1)</script>"
        response = client.post("/contracts", json=contract_payload(content=content), headers=auth_headers)

        contract = db.get(Contract, response.json()["contract"]["id"])
        assert "<script>" not in contract.content
        assert "<p>Terms</p>" in contract.content

    def test_reserved_field_keys_are_dropped(self, client, db, auth_headers):
        field_values = {"frequency": "weekly", "_payment": {"autoPayEnabled": True}}
        response = client.post("/contracts", json=contract_payload(fieldValues=field_values), headers=auth_headers)

        contract = db.get(Contract, response.json()["contract"]["id"])
        assert "_payment" not in contract.field_values

    def test_free_tier_cannot_send(self, client, db, auth_headers, company):
        company.subscription_tier = "free"
        db.commit()

        response = client.post("/contracts", json=contract_payload(), headers=auth_headers)

        assert response.status_code == 403
        assert response.json()["error"] == "forbidden"
        assert db.query(Contract).count() == 0

    def test_deposit_above_total(self, client, auth_headers):
        response = client.post("/contracts", json=contract_payload(depositAmount=600), headers=auth_headers)

        assert response.status_code == 400
        assert response.json()["errors"][0]["field"] == "depositAmount"

    def test_invalid_email(self, client, auth_headers):
        response = client.post("/contracts", json=contract_payload(clientEmail="not-an-email"), headers=auth_headers)
        assert response.status_code == 400
        assert response.json()["error"] == "validation_failed"


class TestAuthentication:
    def test_missing_token(self, client):
        response = client.post("/contracts", json=contract_payload())
        assert response.status_code == 401

    def test_expired_token(self, client, contractor):
        token = make_session_token(contractor.auth_user_id, expires_in=timedelta(seconds=-10))
        response = client.get("/contracts/anything", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_unknown_user(self, client, contractor):
        token = make_session_token("someone-else")
        response = client.get("/contracts/anything", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_other_company_contract_is_not_found(self, client, db, make_contract, auth_headers):
        contract, _ = make_contract()
        contract.company_id = "another-company"
        db.commit()

        response = client.get(f"/contracts/{contract.id}", headers=auth_headers)

        assert response.status_code == 404


class TestUpdateContract:
    def test_update_before_signing(self, client, db, make_contract, auth_headers):
        contract, _ = make_contract()

        response = client.patch(
            f"/contracts/{contract.id}", json={"title": "Biweekly Cleaning", "totalAmount": 650}, headers=auth_headers
        )

        assert response.status_code == 200
        assert response.json()["contract"]["title"] == "Biweekly Cleaning"
        assert response.json()["contract"]["totalAmount"] == 650

    def test_update_after_signing_is_rejected(self, client, make_contract, auth_headers):
        contract, token = make_contract()
        client.post(f"/public/contracts/{token}/sign", json={"fullName": "Jane Doe"})

        response = client.patch(f"/contracts/{contract.id}", json={"totalAmount": 900}, headers=auth_headers)

        assert response.status_code == 409
        assert response.json()["error"] == "precondition_failed"

    def test_update_keeps_reserved_keys(self, client, db, make_contract, auth_headers):
        contract, _ = make_contract(field_values={"frequency": "weekly", "_branding": {"primaryColor": "#000000"}})

        client.patch(f"/contracts/{contract.id}", json={"fieldValues": {"frequency": "daily"}}, headers=auth_headers)

        db.expire_all()
        db.refresh(contract)
        assert contract.field_values == {"frequency": "daily", "_branding": {"primaryColor": "#000000"}}


class TestCancelContract:
    def test_cancel_revokes_signing_link(self, client, make_contract, auth_headers):
        contract, token = make_contract()

        response = client.post(f"/contracts/{contract.id}/cancel", json={"reason": "Client moved"}, headers=auth_headers)
        public = client.get(f"/public/contracts/{token}")

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert public.status_code == 410
        assert public.json()["error"] == "contract_cancelled"

    def test_void_alias_without_body(self, client, make_contract, auth_headers):
        contract, _ = make_contract(status=ContractStatus.DRAFT)
        response = client.post(f"/contracts/{contract.id}/void", headers=auth_headers)
        assert response.json()["status"] == "cancelled"

    def test_completed_contract_cannot_be_cancelled(self, client, make_contract, auth_headers):
        contract, _ = make_contract(status=ContractStatus.COMPLETED)

        response = client.post(f"/contracts/{contract.id}/cancel", headers=auth_headers)

        assert response.status_code == 409


class TestResendContract:
    def test_old_link_stops_working(self, client, make_contract, auth_headers, sent_emails):
        contract, old_token = make_contract()

        response = client.post(f"/contracts/{contract.id}/resend", headers=auth_headers)
        new_token = token_from_url(response.json()["signingUrl"])

        assert response.json()["emailSent"] is True
        assert new_token != old_token
        assert client.get(f"/public/contracts/{old_token}").status_code == 404
        assert client.get(f"/public/contracts/{new_token}").status_code == 200

    def test_draft_cannot_be_resent(self, client, make_contract, auth_headers):
        contract, _ = make_contract(status=ContractStatus.DRAFT)
        response = client.post(f"/contracts/{contract.id}/resend", headers=auth_headers)
        assert response.status_code == 409


class TestPasswordAndBranding:
    def test_set_and_clear_password(self, client, make_contract, auth_headers):
        contract, token = make_contract()

        set_response = client.patch(f"/contracts/{contract.id}/password", json={"password": "s3cret"}, headers=auth_headers)
        locked = client.get(f"/public/contracts/{token}")
        client.delete(f"/contracts/{contract.id}/password", headers=auth_headers)
        unlocked = client.get(f"/public/contracts/{token}")

        assert set_response.json()["hasPassword"] is True
        assert locked.status_code == 401
        assert unlocked.status_code == 200

    def test_branding_on_pro(self, client, make_contract, auth_headers):
        contract, _ = make_contract()

        response = client.patch(
            f"/contracts/{contract.id}/branding", json={"primaryColor": "#112233"}, headers=auth_headers
        )

        assert response.status_code == 200
        assert response.json()["branding"] == {"primaryColor": "#112233"}

    def test_branding_requires_entitlement(self, client, db, make_contract, auth_headers, company):
        company.subscription_tier = "starter"
        db.commit()
        contract, _ = make_contract()

        response = client.patch(
            f"/contracts/{contract.id}/branding", json={"primaryColor": "#112233"}, headers=auth_headers
        )

        assert response.status_code == 403

    def test_completed_contract_branding_is_frozen(self, client, db, make_contract, auth_headers):
        contract, _ = make_contract(status=ContractStatus.COMPLETED)

        response = client.patch(
            f"/contracts/{contract.id}/branding", json={"primaryColor": "#112233"}, headers=auth_headers
        )

        assert response.status_code == 409
        db.refresh(contract)
        assert contract.field_values == {"frequency": "weekly"}

    def test_completed_contract_password_is_frozen(self, client, db, make_contract, auth_headers):
        contract, _ = make_contract(status=ContractStatus.COMPLETED, password="s3cret")
        original_hash = contract.password_hash

        set_response = client.patch(
            f"/contracts/{contract.id}/password", json={"password": "n3w-secret"}, headers=auth_headers
        )
        clear_response = client.delete(f"/contracts/{contract.id}/password", headers=auth_headers)

        assert set_response.status_code == 409
        assert clear_response.status_code == 409
        db.refresh(contract)
        assert contract.password_hash == original_hash

    def test_cancelled_contract_password_is_frozen(self, client, make_contract, auth_headers):
        contract, _ = make_contract(status=ContractStatus.CANCELLED)

        response = client.patch(f"/contracts/{contract.id}/password", json={"password": "s3cret"}, headers=auth_headers)

        assert response.status_code == 409
        assert response.json()["message"] == "Contract has been cancelled"


class TestSigningFlow:
    def test_counter_signed_contract(self, client, make_contract, auth_headers):
        contract, token = make_contract(requires_contractor_signature=True)

        client_sign = client.post(f"/public/contracts/{token}/sign", json={"fullName": "Jane Doe"})
        contractor_sign = client.post(
            f"/contracts/{contract.id}/contractor-sign", json={"fullName": "Sam Owner"}, headers=auth_headers
        )

        assert client_sign.json()["fullySigned"] is False
        assert client_sign.json()["status"] == "sent"
        assert contractor_sign.json()["fullySigned"] is True
        assert contractor_sign.json()["status"] == "signed"

    def test_events_and_signatures(self, client, make_contract, auth_headers):
        contract, token = make_contract()
        client.get(f"/public/contracts/{token}")
        client.get(f"/public/contracts/{token}")
        client.post(f"/public/contracts/{token}/sign", json={"fullName": "Jane Doe"})

        events = client.get(f"/contracts/{contract.id}/events", headers=auth_headers).json()
        signatures = client.get(f"/contracts/{contract.id}/signatures", headers=auth_headers).json()

        assert [e["eventType"] for e in events] == ["viewed", "client_signed"]
        assert events[1]["metadata"]["contractHash"] == signatures[0]["contractHash"]
        assert signatures[0]["party"] == "client"
        assert signatures[0]["matchesCurrentContent"] is True

    def test_zero_deposit_lifecycle(self, client, make_contract, auth_headers, r2_client):
        contract, token = make_contract(deposit_amount=0, total_amount=500)

        client.post(f"/public/contracts/{token}/sign", json={"fullName": "Jane Doe"})
        finalized = client.post(f"/public/contracts/{token}/finalize")
        repeat = client.post(f"/public/contracts/{token}/finalize")
        status = client.get(f"/contracts/{contract.id}/status", headers=auth_headers).json()
        pdf = client.get(f"/contracts/{contract.id}/pdf", headers=auth_headers).json()

        assert finalized.json()["status"] == "completed"
        assert finalized.json()["alreadyFinalized"] is False
        assert repeat.json()["alreadyFinalized"] is True
        assert status["status"] == "completed"
        assert status["hasPdf"] is True
        assert pdf["pdfUrl"] == "https://r2.example.com/presigned/final.pdf"
