import enum
import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def generate_public_id():
    """Generate a unique public ID for secure public access"""
    return str(uuid.uuid4())


class ContractStatus(str, enum.Enum):
    DRAFT = "draft"
    SENT = "sent"
    SIGNED = "signed"
    PAID = "paid"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SignatureParty(str, enum.Enum):
    CONTRACTOR = "contractor"
    CLIENT = "client"


class ContractEventType(str, enum.Enum):
    CREATED = "created"
    SENT = "sent"
    RESENT = "resent"
    VIEWED = "viewed"
    CONTRACTOR_SIGNED = "contractor_signed"
    CLIENT_SIGNED = "client_signed"
    PAYMENT_METHOD_SAVED = "payment_method_saved"
    PAYMENT_COMPLETED = "payment_completed"
    PAID = "paid"
    FINALIZED = "finalized"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    PASSWORD_SET = "password_set"
    PASSWORD_CLEARED = "password_cleared"
    BRANDING_UPDATED = "branding_updated"
    BALANCE_CHARGED = "balance_charged"


class ActorType(str, enum.Enum):
    CONTRACTOR = "contractor"
    CLIENT = "client"
    SYSTEM = "system"
    WEBHOOK = "webhook"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class Company(Base):
    __tablename__ = "companies"

    id = Column(String(36), primary_key=True, default=generate_public_id)
    name = Column(String(255), nullable=False)
    subscription_tier = Column(String(20), default="free", nullable=False)  # free, starter, pro, premium
    subscription_status = Column(String(50), nullable=True)  # active, trialing, past_due, canceled
    trial_tier = Column(String(20), nullable=True)
    trial_ends_at = Column(DateTime, nullable=True)
    stripe_customer_id = Column(String(255), nullable=True)
    stripe_subscription_id = Column(String(255), nullable=True)
    contracts_used = Column(Integer, default=0, nullable=False)  # Usage counter for tier limits
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    contractors = relationship("Contractor", back_populates="company")
    clients = relationship("Client", back_populates="company")


class Contractor(Base):
    __tablename__ = "contractors"

    id = Column(String(36), primary_key=True, default=generate_public_id)
    auth_user_id = Column(String(255), unique=True, index=True, nullable=False)  # Identity provider subject
    company_id = Column(String(36), ForeignKey("companies.id"), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=True)
    # Notification preferences
    notify_contract_signed = Column(Boolean, default=True, nullable=False)
    notify_contract_paid = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    company = relationship("Company", back_populates="contractors")
    contracts = relationship("Contract", back_populates="contractor")


class Client(Base):
    __tablename__ = "clients"
    __table_args__ = (UniqueConstraint("company_id", "email", name="uq_clients_company_email"),)

    id = Column(String(36), primary_key=True, default=generate_public_id)
    company_id = Column(String(36), ForeignKey("companies.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    company = relationship("Company", back_populates="clients")
    contracts = relationship("Contract", back_populates="client")


class Contract(Base):
    __tablename__ = "contracts"

    id = Column(String(36), primary_key=True, default=generate_public_id)
    company_id = Column(String(36), ForeignKey("companies.id"), nullable=False, index=True)
    contractor_id = Column(String(36), ForeignKey("contractors.id"), nullable=False)
    client_id = Column(String(36), ForeignKey("clients.id"), nullable=True)
    title = Column(String(500), nullable=False)
    content = Column(Text, nullable=False, default="")
    field_values = Column(JSON, default=dict, nullable=False)  # "_branding" and "_payment" are reserved
    status = Column(
        Enum(ContractStatus, values_callable=_enum_values, native_enum=False, length=20),
        default=ContractStatus.DRAFT,
        nullable=False,
        index=True,
    )
    deposit_amount = Column(Float, default=0.0, nullable=False)
    total_amount = Column(Float, default=0.0, nullable=False)
    currency = Column(String(10), default="usd")
    requires_contractor_signature = Column(Boolean, default=False, nullable=False)

    # Signing link - only the hash of the token is kept
    signing_token_hash = Column(String(64), unique=True, index=True, nullable=True)
    signing_token_expires_at = Column(DateTime, nullable=True)
    # Plaintext column from before hashing; read only by migrations/hash_signing_tokens.py
    signing_token = Column(String(255), nullable=True)
    password_hash = Column(String(255), nullable=True)
    first_viewed_at = Column(DateTime, nullable=True)

    signed_at = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    pdf_key = Column(String(500), nullable=True)  # Storage key for the final PDF
    pdf_hash = Column(String(64), nullable=True)  # SHA-256 of the final PDF
    # Set by whichever finalize call is rendering the PDF; expires after ARTIFACT_CLAIM_LEASE
    artifact_claimed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    contractor = relationship("Contractor", back_populates="contracts")
    client = relationship("Client", back_populates="contracts")
    signatures = relationship("Signature", back_populates="contract", order_by="Signature.signed_at")
    events = relationship("ContractEvent", back_populates="contract", order_by="ContractEvent.id")
    payments = relationship("Payment", back_populates="contract")


class Signature(Base):
    __tablename__ = "signatures"
    __table_args__ = (UniqueConstraint("contract_id", "party", name="uq_signatures_contract_party"),)

    id = Column(Integer, primary_key=True, index=True)
    contract_id = Column(String(36), ForeignKey("contracts.id"), nullable=False, index=True)
    party = Column(
        Enum(SignatureParty, values_callable=_enum_values, native_enum=False, length=20),
        nullable=False,
    )
    signer_id = Column(String(36), nullable=True)  # Contractor or client id
    full_name = Column(String(200), nullable=False)
    image_key = Column(String(500), nullable=True)  # Storage key for the rendered signature
    ip_address = Column(String(45), nullable=False, default="unknown")  # IPv4 or IPv6
    user_agent = Column(String(500), nullable=False, default="unknown")
    contract_hash = Column(String(64), nullable=False)  # SHA-256 of contract terms when signed
    signed_at = Column(DateTime, nullable=False)

    contract = relationship("Contract", back_populates="signatures")


class ContractEvent(Base):
    """Append-only audit log entry"""

    __tablename__ = "contract_events"

    id = Column(Integer, primary_key=True, index=True)
    contract_id = Column(String(36), ForeignKey("contracts.id"), nullable=False, index=True)
    event_type = Column(
        Enum(ContractEventType, values_callable=_enum_values, native_enum=False, length=40),
        nullable=False,
    )
    actor_type = Column(
        Enum(ActorType, values_callable=_enum_values, native_enum=False, length=20),
        nullable=False,
    )
    actor_id = Column(String(36), nullable=True)
    event_metadata = Column("metadata", JSON, default=dict, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    contract = relationship("Contract", back_populates="events")


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    contract_id = Column(String(36), ForeignKey("contracts.id"), nullable=False, index=True)
    company_id = Column(String(36), ForeignKey("companies.id"), nullable=False)
    amount = Column(Float, nullable=False)
    currency = Column(String(10), default="usd")
    status = Column(String(20), default="pending", nullable=False)  # pending, completed, failed
    kind = Column(String(30), default="deposit", nullable=False)  # deposit, remaining_balance
    # Stripe checkout session or payment intent id; unique so webhook replays are no-ops
    provider_reference = Column(String(255), unique=True, nullable=True)
    receipt_url = Column(String(500), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    completed_at = Column(DateTime, nullable=True)

    contract = relationship("Contract", back_populates="payments")


class SigningAttempt(Base):
    """Public signing-link access, used for per-IP rate limiting"""

    __tablename__ = "signing_attempts"

    id = Column(Integer, primary_key=True, index=True)
    ip_address = Column(String(45), nullable=False, index=True)
    contract_id = Column(String(36), nullable=True)
    success = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, nullable=False, index=True)
