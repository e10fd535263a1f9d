import logging
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy.orm import Session, joinedload

from . import config
from .database import get_db
from .errors import ErrorKind, LifecycleError
from .models import Contractor

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

JWT_ALGORITHMS = ["HS256"]


def _unauthorized(message: str) -> LifecycleError:
    return LifecycleError(ErrorKind.UNAUTHORIZED, message)


def verify_session_token(token: str) -> dict:
    """
    Verify a Supabase Auth access token.

    Tokens are HS256 JWTs signed with the project JWT secret and carry the
    "authenticated" audience for signed-in users.
    """
    if not config.SUPABASE_JWT_SECRET:
        logger.error("❌ SUPABASE_JWT_SECRET not configured")
        raise LifecycleError(ErrorKind.INTERNAL_ERROR, "Authentication is not configured")

    try:
        claims = jwt.decode(
            token,
            config.SUPABASE_JWT_SECRET,
            algorithms=JWT_ALGORITHMS,
            audience=config.SUPABASE_JWT_AUDIENCE,
        )
    except ExpiredSignatureError as e:
        logger.info("Session token expired")
        raise _unauthorized("Session expired. Please sign in again.") from e
    except JWTError as e:
        logger.warning(f"⚠️ Session token verification failed: {e}")
        raise _unauthorized("Invalid authentication token") from e

    logger.debug("✅ Session token verified")
    return claims


async def get_current_contractor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> Contractor:
    """Get the signed-in contractor from the bearer token"""

    if not credentials or not credentials.credentials:
        raise _unauthorized(
            "Not authenticated. Please provide a valid Bearer token in the Authorization header."
        )

    token = credentials.credentials

    # Basic token format validation before processing
    if len(token.split(".")) != 3:
        logger.warning(f"⚠️ Malformed token received, token length: {len(token)}")
        raise _unauthorized("Invalid token format. Expected a valid JWT token.")

    claims = verify_session_token(token)

    auth_user_id = claims.get("sub")
    if not auth_user_id:
        logger.error(f"❌ Token missing user ID claim. Available claims: {list(claims.keys())}")
        raise _unauthorized("Invalid token claims")

    contractor = (
        db.query(Contractor)
        .filter(Contractor.auth_user_id == auth_user_id)
        .options(joinedload(Contractor.company))
        .first()
    )
    if not contractor:
        logger.warning(f"⚠️ No contractor profile for auth user {auth_user_id}")
        raise _unauthorized("No contractor account found for this session")

    logger.debug(f"✅ Contractor authenticated: {contractor.email}")
    return contractor
