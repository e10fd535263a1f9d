"""
Add contracts.artifact_claimed_at

- Marks which finalize call is rendering a contract's final PDF so that
  overlapping calls do not render and upload it twice.
- Contracts already completed without a PDF start unclaimed and are picked
  up by the next finalize call.
"""

# Ensure this script can be run directly from repo root
import sys
from pathlib import Path

CURRENT_DIR = Path(__file__).resolve().parent
ROOT_DIR = CURRENT_DIR.parent
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from sqlalchemy import text  # noqa: E402

from app.database import engine  # noqa: E402


def upgrade():
    with engine.connect() as conn:
        conn.execute(
            text(
                """
                ALTER TABLE contracts
                ADD COLUMN IF NOT EXISTS artifact_claimed_at TIMESTAMP;
                """
            )
        )
        conn.commit()
    print("Migration add_artifact_claim applied successfully")


if __name__ == "__main__":
    upgrade()
