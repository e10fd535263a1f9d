"""
Security Utilities
Signing-link tokens, contract passwords and request fingerprinting
"""

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Request

# Password hashing
from passlib.context import CryptContext

from .config import SIGNING_TOKEN_EXPIRY_DAYS, SIGNING_TOKEN_SECRET

logger = logging.getLogger(__name__)

MAX_USER_AGENT_LENGTH = 500

# Password hashing context
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


# ============================================================================
# SIGNING TOKENS
# ============================================================================


def generate_signing_token() -> str:
    """Generate a 32-byte random signing token, hex encoded (64 chars)"""
    return secrets.token_hex(32)


def hash_signing_token(token: str, secret: Optional[str] = None) -> str:
    """Derive the stored form of a signing token: sha256(token + secret) as hex"""
    secret = SIGNING_TOKEN_SECRET if secret is None else secret
    return hashlib.sha256(f"{token}{secret}".encode()).hexdigest()


def verify_signing_token_hash(token: str, token_hash: Optional[str], secret: Optional[str] = None) -> bool:
    """Check a presented token against a stored hash in constant time"""
    if not token or not token_hash:
        return False
    return constant_time_compare(hash_signing_token(token, secret), token_hash)


def signing_token_expiry(now: Optional[datetime] = None, days: Optional[int] = None) -> datetime:
    """Absolute expiry for a freshly issued token"""
    now = now or datetime.utcnow()
    return now + timedelta(days=SIGNING_TOKEN_EXPIRY_DAYS if days is None else days)


def is_signing_token_expired(expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    # A token without an expiry is treated as expired
    if expires_at is None:
        return True
    return (now or datetime.utcnow()) > expires_at


# ============================================================================
# PASSWORD SECURITY
# ============================================================================


def hash_password_bcrypt(password: str) -> str:
    """Hash password using bcrypt (slower but very secure)"""
    return pwd_context.hash(password)


def verify_password_bcrypt(plain_password: str, hashed_password: str) -> bool:
    """Verify password against bcrypt hash"""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except Exception as e:
        logger.error(f"Password verification error: {e}")
        return False


# ============================================================================
# REQUEST CONTEXT
# ============================================================================


def get_client_ip(request: Request) -> str:
    """
    Resolve the caller IP: first hop of X-Forwarded-For, then X-Real-IP,
    then the socket peer, else "unknown".
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop

    real_ip = request.headers.get("X-Real-IP")
    if real_ip and real_ip.strip():
        return real_ip.strip()

    if request.client and request.client.host:
        return request.client.host

    return "unknown"


def truncate_user_agent(user_agent: Optional[str]) -> str:
    if not user_agent:
        return "unknown"
    return user_agent[:MAX_USER_AGENT_LENGTH]


def get_user_agent(request: Request) -> str:
    return truncate_user_agent(request.headers.get("User-Agent"))


# ============================================================================
# UTILITY FUNCTIONS
# ============================================================================


def constant_time_compare(a: str, b: str) -> bool:
    """
    Compare two strings in constant time to prevent timing attacks

    Args:
        a: First string
        b: Second string

    Returns:
        True if strings are equal, False otherwise
    """
    return hmac.compare_digest(a.encode(), b.encode())


def mask_sensitive_data(data: str, visible_chars: int = 4) -> str:
    """
    Mask sensitive data for logging/display

    Args:
        data: Sensitive data to mask
        visible_chars: Number of characters to show at the end

    Returns:
        Masked string
    """
    if len(data) <= visible_chars:
        return "*" * len(data)

    return "*" * (len(data) - visible_chars) + data[-visible_chars:]
