# certmanager/schemas/certificate.py
from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from certmanager.schemas.user import WALLET_PATTERN

CertificateTypeName = Literal["academic", "professional", "training", "achievement"]
CertificateStatusName = Literal["draft", "pending_verification", "verified", "issued", "revoked"]


class RecipientIn(BaseModel):
    student_id: str = Field(min_length=1, max_length=50)
    name: str = Field(min_length=2, max_length=100)
    email: Optional[EmailStr] = None
    wallet_address: Optional[str] = Field(default=None, pattern=WALLET_PATTERN)


class InstitutionIn(BaseModel):
    name: str = Field(min_length=2, max_length=200)
    department: Optional[str] = Field(default=None, max_length=100)
    address: Optional[str] = Field(default=None, max_length=300)


class CourseIn(BaseModel):
    subject: str = Field(min_length=2, max_length=100)
    grade: Optional[str] = Field(default=None, max_length=10)
    credits: Optional[int] = Field(default=None, ge=0, le=999)
    duration: Optional[str] = Field(default=None, max_length=50)


def _check_dates(completion: Optional[date], issue: Optional[date], expiry: Optional[date]) -> None:
    start = issue or completion
    if expiry and start and expiry < start:
        raise ValueError("expiry_date must not be before the issue/completion date")


class CertificateCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    type: CertificateTypeName = "academic"
    description: Optional[str] = Field(default=None, max_length=1000)
    recipient: RecipientIn
    institution: InstitutionIn
    course: CourseIn
    completion_date: date
    issue_date: Optional[date] = None
    expiry_date: Optional[date] = None
    batch_id: Optional[str] = Field(default=None, max_length=64)
    template_id: Optional[str] = Field(default=None, max_length=64)
    tags: List[str] = Field(default_factory=list)
    custom_fields: Dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _dates(self):
        _check_dates(self.completion_date, self.issue_date, self.expiry_date)
        return self


class CertificateUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    type: Optional[CertificateTypeName] = None
    description: Optional[str] = Field(default=None, max_length=1000)
    recipient: Optional[RecipientIn] = None
    institution: Optional[InstitutionIn] = None
    course: Optional[CourseIn] = None
    completion_date: Optional[date] = None
    issue_date: Optional[date] = None
    expiry_date: Optional[date] = None
    tags: Optional[List[str]] = None
    custom_fields: Optional[Dict[str, Any]] = None

    # omitir é "não mudar"; null explícito em coluna obrigatória é erro
    @field_validator("title", "type", "recipient", "institution", "course", "completion_date", mode="before")
    @classmethod
    def _not_null(cls, v):
        if v is None:
            raise ValueError("field cannot be null")
        return v

    @model_validator(mode="after")
    def _dates(self):
        _check_dates(self.completion_date, self.issue_date, self.expiry_date)
        return self


class BatchCreateRequest(BaseModel):
    certificates: List[CertificateCreate] = Field(min_length=1, max_length=100)


class VerifyDecision(BaseModel):
    approved: bool
    comments: Optional[str] = Field(default=None, max_length=500)


class IssueRequest(BaseModel):
    comments: Optional[str] = Field(default=None, max_length=500)


class RevokeRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


# ------------------------- saída -------------------------

class RecipientOut(BaseModel):
    student_id: str
    name: str
    email: Optional[str] = None
    wallet_address: Optional[str] = None


class InstitutionOut(BaseModel):
    name: str
    department: Optional[str] = None
    address: Optional[str] = None


class CourseOut(BaseModel):
    subject: str
    grade: Optional[str] = None
    credits: Optional[int] = None
    duration: Optional[str] = None


class ReviewOut(BaseModel):
    user_id: Optional[int] = None
    at: Optional[datetime] = None
    comments: Optional[str] = None


class BlockchainOut(BaseModel):
    certificate_hash: Optional[str] = None
    transaction_hash: Optional[str] = None
    block_number: Optional[int] = None
    contract_address: Optional[str] = None
    chain_certificate_id: Optional[int] = None
    network: Optional[str] = None
    anchored: bool = False


class IPFSOut(BaseModel):
    cid: Optional[str] = None
    gateway: Optional[str] = None
    url: Optional[str] = None
    is_encrypted: bool = True


class VerificationOut(BaseModel):
    verification_code: Optional[str] = None
    is_verified: bool = False
    verification_url: Optional[str] = None


class HistoryEntryOut(BaseModel):
    action: str
    performed_by: Optional[int] = None
    timestamp: datetime
    details: Optional[str] = None
    previous_status: Optional[str] = None
    new_status: Optional[str] = None


class CertificateOut(BaseModel):
    id: int
    certificate_id: str
    title: str
    type: str
    description: Optional[str] = None
    recipient: RecipientOut
    institution: InstitutionOut
    course: CourseOut
    completion_date: Optional[date] = None
    issue_date: Optional[date] = None
    expiry_date: Optional[date] = None
    status: CertificateStatusName
    creator_id: int
    verifier: ReviewOut
    issuer: ReviewOut
    revoked_at: Optional[datetime] = None
    revocation_reason: Optional[str] = None
    blockchain: BlockchainOut
    ipfs: IPFSOut
    verification: VerificationOut
    batch_id: Optional[str] = None
    template_id: Optional[str] = None
    tags: List[str] = []
    custom_fields: Dict[str, Any] = {}
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    history: Optional[List[HistoryEntryOut]] = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class CertificatePage(BaseModel):
    items: List[CertificateOut]
    pagination: Pagination


class BatchItemError(BaseModel):
    index: int
    error: str


class BatchCreateResult(BaseModel):
    batch_id: str
    created: List[CertificateOut]
    errors: List[BatchItemError]
    total: int
    successful: int
    failed: int
