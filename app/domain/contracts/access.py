"""
Signing-link access protocol.

A sent contract carries a signing token. Only sha256(token + secret) is
stored; the plaintext lives in the signing URL alone. Verification order is
hash match, then expiry, then cancellation. Tokens stay usable after signing
so clients can come back to check status; expiry and cancellation are the
only ways a link is revoked.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from ... import config
from ...errors import ErrorKind, LifecycleError
from ...models import Contract, ContractStatus
from ...security_utils import (
    generate_signing_token,
    hash_signing_token,
    is_signing_token_expired,
    mask_sensitive_data,
    signing_token_expiry,
    verify_password_bcrypt,
    verify_signing_token_hash,
)
from .repository import ContractRepository

logger = logging.getLogger(__name__)


def build_signing_url(token: str) -> str:
    return f"{config.APP_BASE_URL}/sign/{token}"


def issue_signing_token(contract: Contract, now: Optional[datetime] = None) -> str:
    """
    Set a fresh token hash and expiry on the contract and return the plaintext.

    Issuing again rotates the link; the previous token stops matching.
    """
    token = generate_signing_token()
    contract.signing_token_hash = hash_signing_token(token)
    contract.signing_token_expires_at = signing_token_expiry(now)
    return token


def check_token(
    presented: str,
    stored_hash: Optional[str],
    expires_at: Optional[datetime],
    status,
    now: Optional[datetime] = None,
) -> None:
    """Pure verification of a presented token against stored contract state"""
    if not verify_signing_token_hash(presented, stored_hash):
        raise LifecycleError(ErrorKind.TOKEN_INVALID, "Invalid or unknown signing link")

    if is_signing_token_expired(expires_at, now):
        raise LifecycleError(
            ErrorKind.TOKEN_EXPIRED,
            "This signing link has expired. Please ask the sender for a new link.",
        )

    if status == ContractStatus.CANCELLED or status == ContractStatus.CANCELLED.value:
        raise LifecycleError(ErrorKind.CONTRACT_CANCELLED, "This contract has been cancelled")


def verify_signing_token(db: Session, token: str, now: Optional[datetime] = None) -> Contract:
    """Resolve a presented signing token to its contract"""
    if not token:
        raise LifecycleError(ErrorKind.TOKEN_INVALID, "Invalid or unknown signing link")

    contract = ContractRepository.get_contract_by_token_hash(db, hash_signing_token(token))
    if not contract:
        logger.info(f"Signing link lookup failed for token {mask_sensitive_data(token)}")
        raise LifecycleError(ErrorKind.TOKEN_INVALID, "Invalid or unknown signing link")

    check_token(
        token,
        contract.signing_token_hash,
        contract.signing_token_expires_at,
        contract.status,
        now,
    )
    return contract


def check_contract_password(contract: Contract, password: Optional[str]) -> None:
    """Secondary gate, checked after the token when the contractor set a password"""
    if not contract.password_hash:
        return

    if not password:
        raise LifecycleError(
            ErrorKind.UNAUTHORIZED, "This contract is password protected. Please enter the password."
        )

    if not verify_password_bcrypt(password, contract.password_hash):
        logger.info(f"Wrong password for contract {contract.id}")
        raise LifecycleError(ErrorKind.UNAUTHORIZED, "Incorrect password")


def enforce_signing_rate_limit(db: Session, ip_address: str, now: Optional[datetime] = None) -> None:
    """Allow a bounded number of signing-link verifications per IP per window"""
    now = now or datetime.utcnow()
    since = now - timedelta(minutes=config.SIGNING_RATE_LIMIT_WINDOW_MINUTES)
    attempts = ContractRepository.count_signing_attempts(db, ip_address, since)

    if attempts >= config.SIGNING_RATE_LIMIT_MAX_ATTEMPTS:
        # Blocked requests count too, so hammering keeps the window full
        ContractRepository.record_signing_attempt(db, ip_address, False, now)
        logger.warning(
            f"🚫 Signing rate limit exceeded for IP {ip_address} - "
            f"{attempts}/{config.SIGNING_RATE_LIMIT_MAX_ATTEMPTS} attempts"
        )
        raise LifecycleError(
            ErrorKind.RATE_LIMITED, "Too many attempts. Please try again in 15 minutes."
        )


def authorize_public_access(
    db: Session,
    token: str,
    ip_address: str,
    password: Optional[str] = None,
    require_password: bool = True,
    now: Optional[datetime] = None,
) -> Contract:
    """
    Rate limit, verify the token and check the password gate for a public request.

    Every verification is recorded as a SigningAttempt, successful or not.
    """
    now = now or datetime.utcnow()
    enforce_signing_rate_limit(db, ip_address, now)

    try:
        contract = verify_signing_token(db, token, now)
        if require_password:
            check_contract_password(contract, password)
    except LifecycleError:
        ContractRepository.record_signing_attempt(db, ip_address, False, now)
        raise

    ContractRepository.record_signing_attempt(db, ip_address, True, now, contract.id)
    return contract
