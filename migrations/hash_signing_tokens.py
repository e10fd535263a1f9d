"""
Hash legacy plaintext signing tokens

- Contracts sent before token hashing kept the signing token in
  contracts.signing_token. This stores sha256(token + SIGNING_TOKEN_SECRET)
  in signing_token_hash, sets an expiry where none exists and clears the
  plaintext column. Links already emailed to clients keep working.
- Safe to run more than once; rows with no plaintext token are skipped.
"""

# Ensure this script can be run directly from repo root
import sys
from pathlib import Path

CURRENT_DIR = Path(__file__).resolve().parent
ROOT_DIR = CURRENT_DIR.parent
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from sqlalchemy import text  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from app.database import SessionLocal, engine  # noqa: E402
from app.models import Contract  # noqa: E402
from app.security_utils import hash_signing_token, signing_token_expiry  # noqa: E402


def hash_legacy_tokens(db: Session) -> int:
    """Hash every remaining plaintext token; returns the number of contracts migrated"""
    contracts = db.query(Contract).filter(Contract.signing_token.isnot(None)).all()

    migrated = 0
    for contract in contracts:
        if not contract.signing_token_hash:
            contract.signing_token_hash = hash_signing_token(contract.signing_token)
        if not contract.signing_token_expires_at:
            contract.signing_token_expires_at = signing_token_expiry()
        contract.signing_token = None
        migrated += 1

    db.commit()
    return migrated


def upgrade():
    with engine.connect() as conn:
        conn.execute(
            text(
                """
                ALTER TABLE contracts
                ADD COLUMN IF NOT EXISTS signing_token_hash VARCHAR(64);
                """
            )
        )
        conn.execute(
            text(
                """
                ALTER TABLE contracts
                ADD COLUMN IF NOT EXISTS signing_token_expires_at TIMESTAMP;
                """
            )
        )
        conn.execute(
            text(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS ix_contracts_signing_token_hash
                ON contracts (signing_token_hash);
                """
            )
        )
        conn.commit()

    db = SessionLocal()
    try:
        migrated = hash_legacy_tokens(db)
    finally:
        db.close()
    print(f"Migration hash_signing_tokens applied successfully ({migrated} contracts migrated)")


if __name__ == "__main__":
    upgrade()
