# certmanager/schemas/verification.py
from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator


class PublicCertificate(BaseModel):
    """Subconjunto público de um certificado (sem e-mail, carteira, chave)."""

    certificate_id: str
    title: str
    type: str
    recipient_name: str
    institution_name: str
    institution_department: Optional[str] = None
    course_subject: str
    course_grade: Optional[str] = None
    completion_date: Optional[date] = None
    issue_date: Optional[date] = None
    expiry_date: Optional[date] = None
    status: str
    issued_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    revocation_reason: Optional[str] = None
    certificate_hash: Optional[str] = None
    transaction_hash: Optional[str] = None
    network: Optional[str] = None
    ipfs_cid: Optional[str] = None
    verification_url: Optional[str] = None


class VerificationResult(BaseModel):
    verified: bool
    reason: Optional[str] = None
    expired: bool = False
    certificate: PublicCertificate
    on_chain: Optional[bool] = None


class BulkVerifyRequest(BaseModel):
    verification_codes: List[str] = Field(default_factory=list)
    certificate_hashes: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _not_empty(self):
        total = len(self.verification_codes) + len(self.certificate_hashes)
        if total == 0:
            raise ValueError("Provide verification_codes and/or certificate_hashes")
        if total > 100:
            raise ValueError("At most 100 identifiers per request")
        return self


class BulkVerifyItem(BaseModel):
    type: str
    identifier: str
    verified: bool
    certificate_id: Optional[str] = None
    status: str
    recipient_name: Optional[str] = None


class BulkVerifyResult(BaseModel):
    results: List[BulkVerifyItem]
    total: int
    verified: int
    not_verified: int


class IntegrityCheck(BaseModel):
    name: str
    valid: bool
    message: str
    details: Dict[str, Any] = {}


class IntegrityReport(BaseModel):
    certificate_id: str
    status: str
    overall_valid: bool
    checks: List[IntegrityCheck]


class BatchValidateRequest(BaseModel):
    certificate_ids: List[str] = Field(min_length=1, max_length=100)


class AuditEntry(BaseModel):
    certificate_id: str
    action: str
    performed_by: Optional[int] = None
    timestamp: datetime
    details: Optional[str] = None
    previous_status: Optional[str] = None
    new_status: Optional[str] = None


class AuditLogPage(BaseModel):
    items: List[AuditEntry]
    page: int
    limit: int
    total: int
    pages: int
