"""Tests for signing links: hashing, expiry, cancellation, password gate and rate limiting."""
from datetime import datetime, timedelta

import pytest

from app import config
from app.domain.contracts.access import (
    authorize_public_access,
    build_signing_url,
    check_contract_password,
    check_token,
    verify_signing_token,
)
from app.errors import ErrorKind, LifecycleError
from app.models import ContractStatus, Signature, SigningAttempt
from app.security_utils import generate_signing_token, hash_signing_token


def _kind(func, *args, **kwargs):
    with pytest.raises(LifecycleError) as exc_info:
        func(*args, **kwargs)
    return exc_info.value.kind


class TestCheckToken:
    """Verification is a pure function of token, stored hash, expiry and status."""

    def setup_method(self):
        self.token = generate_signing_token()
        self.token_hash = hash_signing_token(self.token)
        self.now = datetime(2026, 1, 1, 12, 0, 0)
        self.expires_at = self.now + timedelta(days=7)

    def test_valid_token_passes(self):
        check_token(self.token, self.token_hash, self.expires_at, ContractStatus.SENT, self.now)

    def test_token_is_64_hex_chars(self):
        assert len(self.token) == 64
        int(self.token, 16)

    def test_wrong_token_is_invalid(self):
        kind = _kind(check_token, "f" * 64, self.token_hash, self.expires_at, ContractStatus.SENT, self.now)
        assert kind == ErrorKind.TOKEN_INVALID

    def test_expired_token_fails_even_when_hash_matches(self):
        later = self.expires_at + timedelta(seconds=1)
        kind = _kind(check_token, self.token, self.token_hash, self.expires_at, ContractStatus.SENT, later)
        assert kind == ErrorKind.TOKEN_EXPIRED

    def test_missing_expiry_counts_as_expired(self):
        kind = _kind(check_token, self.token, self.token_hash, None, ContractStatus.SENT, self.now)
        assert kind == ErrorKind.TOKEN_EXPIRED

    def test_cancelled_contract_fails(self):
        kind = _kind(check_token, self.token, self.token_hash, self.expires_at, "cancelled", self.now)
        assert kind == ErrorKind.CONTRACT_CANCELLED

    def test_mismatch_is_reported_before_expiry(self):
        later = self.expires_at + timedelta(days=1)
        kind = _kind(check_token, "0" * 64, self.token_hash, self.expires_at, ContractStatus.CANCELLED, later)
        assert kind == ErrorKind.TOKEN_INVALID

    def test_expiry_is_reported_before_cancellation(self):
        later = self.expires_at + timedelta(days=1)
        kind = _kind(
            check_token, self.token, self.token_hash, self.expires_at, ContractStatus.CANCELLED, later
        )
        assert kind == ErrorKind.TOKEN_EXPIRED

    @pytest.mark.parametrize(
        "status", [ContractStatus.SIGNED, ContractStatus.PAID, ContractStatus.COMPLETED]
    )
    def test_links_stay_usable_after_signing(self, status):
        check_token(self.token, self.token_hash, self.expires_at, status, self.now)

    def test_hash_depends_on_secret(self):
        assert hash_signing_token(self.token, "secret-a") != hash_signing_token(self.token, "secret-b")


class TestVerifySigningToken:
    def test_resolves_contract_by_hash(self, db, make_contract):
        contract, token = make_contract()
        assert verify_signing_token(db, token).id == contract.id

    def test_plaintext_is_never_stored(self, db, make_contract):
        contract, token = make_contract()
        assert contract.signing_token is None
        assert contract.signing_token_hash == hash_signing_token(token)
        assert build_signing_url(token) == f"{config.APP_BASE_URL}/sign/{token}"

    def test_unknown_token(self, db, make_contract):
        make_contract()
        assert _kind(verify_signing_token, db, generate_signing_token()) == ErrorKind.TOKEN_INVALID

    def test_empty_token(self, db):
        assert _kind(verify_signing_token, db, "") == ErrorKind.TOKEN_INVALID

    def test_expired(self, db, make_contract):
        _, token = make_contract(issued_at=datetime.utcnow() - timedelta(days=8))
        assert _kind(verify_signing_token, db, token) == ErrorKind.TOKEN_EXPIRED


class TestPasswordGate:
    def test_no_password_configured(self, make_contract):
        contract, _ = make_contract()
        check_contract_password(contract, None)

    def test_missing_password(self, make_contract):
        contract, _ = make_contract(password="s3cret")
        assert _kind(check_contract_password, contract, None) == ErrorKind.UNAUTHORIZED

    def test_wrong_password(self, make_contract):
        contract, _ = make_contract(password="s3cret")
        assert _kind(check_contract_password, contract, "guess") == ErrorKind.UNAUTHORIZED

    def test_correct_password(self, make_contract):
        contract, _ = make_contract(password="s3cret")
        check_contract_password(contract, "s3cret")


class TestRateLimit:
    """Every verification counts toward the per-IP window."""

    def test_every_attempt_is_recorded(self, db, make_contract):
        contract, token = make_contract()

        authorize_public_access(db, token, "203.0.113.5")
        with pytest.raises(LifecycleError):
            authorize_public_access(db, "bad-token", "203.0.113.5")

        attempts = db.query(SigningAttempt).order_by(SigningAttempt.id).all()
        assert [a.success for a in attempts] == [True, False]
        assert attempts[0].contract_id == contract.id

    def test_blocks_after_limit(self, db, make_contract):
        _, token = make_contract()
        for _ in range(config.SIGNING_RATE_LIMIT_MAX_ATTEMPTS):
            with pytest.raises(LifecycleError):
                authorize_public_access(db, "bad-token", "203.0.113.9")

        assert _kind(authorize_public_access, db, token, "203.0.113.9") == ErrorKind.RATE_LIMITED

    def test_blocked_requests_are_recorded(self, db, make_contract):
        _, token = make_contract()
        for _ in range(config.SIGNING_RATE_LIMIT_MAX_ATTEMPTS):
            with pytest.raises(LifecycleError):
                authorize_public_access(db, "bad-token", "203.0.113.9")

        for _ in range(2):
            assert _kind(authorize_public_access, db, token, "203.0.113.9") == ErrorKind.RATE_LIMITED

        attempts = db.query(SigningAttempt).filter(SigningAttempt.ip_address == "203.0.113.9").all()
        assert len(attempts) == config.SIGNING_RATE_LIMIT_MAX_ATTEMPTS + 2
        assert not any(a.success for a in attempts)

    def test_other_ips_are_unaffected(self, db, make_contract):
        _, token = make_contract()
        for _ in range(config.SIGNING_RATE_LIMIT_MAX_ATTEMPTS):
            with pytest.raises(LifecycleError):
                authorize_public_access(db, "bad-token", "203.0.113.9")

        authorize_public_access(db, token, "198.51.100.7")

    def test_window_expires(self, db, make_contract):
        _, token = make_contract()
        earlier = datetime.utcnow() - timedelta(minutes=config.SIGNING_RATE_LIMIT_WINDOW_MINUTES + 1)
        for _ in range(config.SIGNING_RATE_LIMIT_MAX_ATTEMPTS):
            db.add(SigningAttempt(ip_address="203.0.113.9", success=False, created_at=earlier))
        db.commit()

        authorize_public_access(db, token, "203.0.113.9")


class TestPublicEndpoints:
    def test_expired_link_cannot_sign(self, client, db, make_contract):
        contract, token = make_contract(issued_at=datetime.utcnow() - timedelta(days=30))

        response = client.post(f"/public/contracts/{token}/sign", json={"fullName": "Jane Doe"})

        assert response.status_code == 410
        assert response.json()["error"] == "token_expired"
        assert db.query(Signature).filter(Signature.contract_id == contract.id).count() == 0

    def test_password_protected_view(self, client, make_contract):
        _, token = make_contract(password="s3cret")

        missing = client.get(f"/public/contracts/{token}")
        wrong = client.get(f"/public/contracts/{token}", headers={"X-Contract-Password": "nope"})
        ok = client.get(f"/public/contracts/{token}", headers={"X-Contract-Password": "s3cret"})

        assert missing.status_code == 401
        assert wrong.status_code == 401
        assert ok.status_code == 200
        assert ok.json()["title"] == "Weekly Office Cleaning"

    def test_rate_limited_response(self, client):
        for _ in range(config.SIGNING_RATE_LIMIT_MAX_ATTEMPTS):
            assert client.get("/public/contracts/not-a-real-token").status_code == 404

        response = client.get("/public/contracts/not-a-real-token")

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "900"
        assert response.json()["error"] == "rate_limited"


class TestPublicPdfDownload:
    """The client's copy of the contract, behind the same token and password gate."""

    def test_completed_contract_returns_presigned_link(self, client, make_contract, r2_client):
        contract, token = make_contract(
            status=ContractStatus.COMPLETED,
            pdf_key="company/c1/contracts/k1/final.pdf",
        )

        response = client.get(f"/public/contracts/{token}/pdf")

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "pdfUrl": "https://r2.example.com/presigned/final.pdf",
            "available": True,
        }
        assert r2_client.generate_presigned_url.call_args.kwargs["Params"]["Key"] == contract.pdf_key

    def test_signed_contract_without_pdf_yet(self, client, make_contract):
        _, token = make_contract(status=ContractStatus.SIGNED, signed_at=datetime.utcnow())

        response = client.get(f"/public/contracts/{token}/pdf")

        assert response.status_code == 200
        assert response.json()["available"] is False
        assert response.json()["pdfUrl"] is None

    def test_unsigned_contract_is_rejected(self, client, make_contract):
        _, token = make_contract()

        response = client.get(f"/public/contracts/{token}/pdf")

        assert response.status_code == 409
        assert response.json()["message"] == "Contract must be signed first"

    def test_password_gate_applies(self, client, make_contract):
        _, token = make_contract(
            status=ContractStatus.COMPLETED,
            password="s3cret",
            pdf_key="company/c1/contracts/k1/final.pdf",
        )

        missing = client.get(f"/public/contracts/{token}/pdf")
        ok = client.get(f"/public/contracts/{token}/pdf", headers={"X-Contract-Password": "s3cret"})

        assert missing.status_code == 401
        assert ok.status_code == 200
        assert ok.json()["available"] is True

    def test_cancelled_contract_link_is_revoked(self, client, make_contract):
        _, token = make_contract(status=ContractStatus.CANCELLED)

        response = client.get(f"/public/contracts/{token}/pdf")

        assert response.status_code == 410
