import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./contracts.db")

# Public base URL of the web app; signing links are built from it
APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:3000").rstrip("/")

# CORS - comma separated list of allowed origins
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",")

# Supabase Auth - bearer tokens are HS256 JWTs signed with the project JWT secret
SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_JWT_SECRET = os.getenv("SUPABASE_JWT_SECRET")
SUPABASE_JWT_AUDIENCE = os.getenv("SUPABASE_JWT_AUDIENCE", "authenticated")

# Signing links
DEFAULT_SIGNING_TOKEN_SECRET = "change-me-in-production-very-secure-secret-key"  # noqa: S105
SIGNING_TOKEN_SECRET = os.getenv("SIGNING_TOKEN_SECRET", DEFAULT_SIGNING_TOKEN_SECRET)
SIGNING_TOKEN_EXPIRY_DAYS = int(os.getenv("SIGNING_TOKEN_EXPIRY_DAYS", "7"))
SIGNING_RATE_LIMIT_WINDOW_MINUTES = int(os.getenv("SIGNING_RATE_LIMIT_WINDOW_MINUTES", "15"))
SIGNING_RATE_LIMIT_MAX_ATTEMPTS = int(os.getenv("SIGNING_RATE_LIMIT_MAX_ATTEMPTS", "5"))

# Stripe
STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY")
STRIPE_PUBLISHABLE_KEY = os.getenv("STRIPE_PUBLISHABLE_KEY")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET")
STRIPE_CURRENCY = os.getenv("STRIPE_CURRENCY", "usd")

# Resend Email Configuration
RESEND_API_KEY = os.getenv("RESEND_API_KEY")
EMAIL_FROM_ADDRESS = os.getenv("EMAIL_FROM_ADDRESS", "Contracts <noreply@example.com>")

# Cloudflare R2 Configuration (contract PDFs and signature images)
R2_ACCOUNT_ID = os.getenv("R2_ACCOUNT_ID")
R2_ACCESS_KEY_ID = os.getenv("R2_ACCESS_KEY_ID")
R2_SECRET_ACCESS_KEY = os.getenv("R2_SECRET_ACCESS_KEY")
R2_BUCKET_NAME = os.getenv("R2_BUCKET_NAME", "contracts")

# Variables that must be present for the service to do anything useful
REQUIRED_ENV_VARS = (
    "DATABASE_URL",
    "SUPABASE_JWT_SECRET",
    "STRIPE_SECRET_KEY",
    "APP_BASE_URL",
    "SIGNING_TOKEN_SECRET",
)


class EnvironmentValidationError(RuntimeError):
    """Raised at startup when production configuration is unusable"""


@dataclass
class EnvValidationResult:
    ok: bool
    missing: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def validate_environment(environ: Optional[Mapping[str, str]] = None) -> EnvValidationResult:
    """
    Check required environment variables and production-only security rules.

    Called explicitly from the application startup sequence. Returns the
    result instead of raising so callers decide how strict to be.
    """
    env = os.environ if environ is None else environ
    missing = [name for name in REQUIRED_ENV_VARS if not (env.get(name) or "").strip()]
    warnings = []

    is_production = (env.get("ENVIRONMENT") or "development").lower() == "production"
    if is_production:
        secret = env.get("SIGNING_TOKEN_SECRET") or ""
        if secret == DEFAULT_SIGNING_TOKEN_SECRET or len(secret) < 32:
            warnings.append(
                "SIGNING_TOKEN_SECRET must be a random string of at least 32 characters"
            )
        if (env.get("STRIPE_SECRET_KEY") or "").startswith("sk_test_"):
            warnings.append("Using Stripe test keys in production")
        if "localhost" in (env.get("APP_BASE_URL") or ""):
            warnings.append("APP_BASE_URL points to localhost in production")

    ok = not missing and not (is_production and any("SIGNING_TOKEN_SECRET" in w for w in warnings))
    return EnvValidationResult(ok=ok, missing=missing, warnings=warnings)
