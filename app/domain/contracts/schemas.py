"""Contract domain schemas - Pydantic models for validation"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator


class ContractCreate(BaseModel):
    """Schema for creating a new contract"""

    clientName: str = Field(..., min_length=1, max_length=255)
    clientEmail: EmailStr
    clientPhone: Optional[str] = Field(None, max_length=50)
    title: str = Field(..., min_length=1, max_length=500)
    content: str = Field(..., min_length=1)
    fieldValues: dict[str, Any] = Field(default_factory=dict)
    depositAmount: float = Field(0, ge=0)
    totalAmount: float = Field(0, ge=0)
    requiresContractorSignature: bool = False
    send: bool = True

    @field_validator("title", "clientName")
    @classmethod
    def strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Value cannot be empty")
        return v


class ContractUpdate(BaseModel):
    """Schema for editing contract terms before anyone signs"""

    title: Optional[str] = Field(None, min_length=1, max_length=500)
    content: Optional[str] = None
    fieldValues: Optional[dict[str, Any]] = None
    depositAmount: Optional[float] = Field(None, ge=0)
    totalAmount: Optional[float] = Field(None, ge=0)
    requiresContractorSignature: Optional[bool] = None


class ContractResponse(BaseModel):
    """Schema for contract response"""

    id: str
    title: str
    status: str
    clientId: Optional[str] = None
    clientName: Optional[str] = None
    clientEmail: Optional[str] = None
    depositAmount: float
    totalAmount: float
    requiresContractorSignature: bool
    hasPassword: bool
    signingTokenExpiresAt: Optional[datetime] = None
    signedAt: Optional[datetime] = None
    paidAt: Optional[datetime] = None
    completedAt: Optional[datetime] = None
    hasPdf: bool = False
    createdAt: Optional[datetime] = None

    class Config:
        from_attributes = True


class ContractStatusResponse(BaseModel):
    id: str
    status: str
    signedAt: Optional[datetime] = None
    paidAt: Optional[datetime] = None
    completedAt: Optional[datetime] = None
    signingTokenExpiresAt: Optional[datetime] = None
    hasPdf: bool = False


class SignatureRequest(BaseModel):
    """Signature submission from either party"""

    fullName: str = Field(..., max_length=200)
    signatureDataUrl: Optional[str] = None
    password: Optional[str] = None

    @field_validator("fullName")
    @classmethod
    def validate_full_name(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 2:
            raise ValueError("Full name must be at least 2 characters")
        return v


class PasswordRequest(BaseModel):
    password: str = Field(..., min_length=4, max_length=128)


class BrandingRequest(BaseModel):
    """Presentation settings stored under fieldValues._branding"""

    primaryColor: Optional[str] = Field(None, pattern=r"^#[0-9a-fA-F]{6}$")
    accentColor: Optional[str] = Field(None, pattern=r"^#[0-9a-fA-F]{6}$")
    fontFamily: Optional[str] = Field(None, max_length=100)
    logoUrl: Optional[str] = Field(None, max_length=1000)


class PublicAccessRequest(BaseModel):
    password: Optional[str] = None


class SignatureResponse(BaseModel):
    id: int
    party: str
    fullName: str
    signedAt: datetime
    ipAddress: str
    userAgent: str
    contractHash: str
    hasImage: bool
    matchesCurrentContent: bool


class ContractEventResponse(BaseModel):
    id: int
    eventType: str
    actorType: str
    actorId: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    createdAt: Optional[datetime] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)
