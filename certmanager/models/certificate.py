# certmanager/models/certificate.py
from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Boolean, Date, DateTime, Enum as SAEnum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from certmanager.db.base import Base, utcnow
from certmanager.models.user import User


class CertificateStatus(str, Enum):
    draft = "draft"
    pending_verification = "pending_verification"
    verified = "verified"
    issued = "issued"
    revoked = "revoked"


class CertificateType(str, Enum):
    academic = "academic"
    professional = "professional"
    training = "training"
    achievement = "achievement"


def _enum(cls, length: int):
    return SAEnum(cls, native_enum=False, length=length, values_callable=lambda e: [m.value for m in e])


class Certificate(Base):
    __tablename__ = "certificates"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    certificate_id: Mapped[str] = mapped_column(String(40), unique=True, index=True)
    title: Mapped[str] = mapped_column(String(200))
    type: Mapped[CertificateType] = mapped_column(_enum(CertificateType, 16), default=CertificateType.academic)
    description: Mapped[Optional[str]] = mapped_column(String(1000))

    recipient_student_id: Mapped[str] = mapped_column(String(50), index=True)
    recipient_name: Mapped[str] = mapped_column(String(100), index=True)
    recipient_email: Mapped[Optional[str]] = mapped_column(String(160))
    recipient_wallet_address: Mapped[Optional[str]] = mapped_column(String(42))

    institution_name: Mapped[str] = mapped_column(String(200), index=True)
    institution_department: Mapped[Optional[str]] = mapped_column(String(100))
    institution_address: Mapped[Optional[str]] = mapped_column(String(300))

    course_subject: Mapped[str] = mapped_column(String(100), index=True)
    course_grade: Mapped[Optional[str]] = mapped_column(String(10))
    course_credits: Mapped[Optional[int]] = mapped_column(Integer)
    course_duration: Mapped[Optional[str]] = mapped_column(String(50))
    completion_date: Mapped[Optional[date]] = mapped_column(Date)
    issue_date: Mapped[Optional[date]] = mapped_column(Date)
    expiry_date: Mapped[Optional[date]] = mapped_column(Date)

    status: Mapped[CertificateStatus] = mapped_column(
        _enum(CertificateStatus, 32), default=CertificateStatus.draft, index=True
    )
    creator_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    verifier_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"))
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    verification_comments: Mapped[Optional[str]] = mapped_column(String(500))
    issuer_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"))
    issued_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    issuance_comments: Mapped[Optional[str]] = mapped_column(String(500))
    revoked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    revocation_reason: Mapped[Optional[str]] = mapped_column(String(500))

    # blockchain
    certificate_hash: Mapped[Optional[str]] = mapped_column(String(66), unique=True, index=True)
    transaction_hash: Mapped[Optional[str]] = mapped_column(String(66))
    block_number: Mapped[Optional[int]] = mapped_column(Integer)
    contract_address: Mapped[Optional[str]] = mapped_column(String(42))
    chain_certificate_id: Mapped[Optional[int]] = mapped_column(Integer)
    network: Mapped[str] = mapped_column(String(50), default="Ganache")

    # ipfs
    ipfs_cid: Mapped[Optional[str]] = mapped_column(String(100))
    ipfs_gateway: Mapped[Optional[str]] = mapped_column(String(255))
    ipfs_encryption_key: Mapped[Optional[str]] = mapped_column(String(128))
    ipfs_is_encrypted: Mapped[bool] = mapped_column(Boolean, default=True)

    verification_code: Mapped[Optional[str]] = mapped_column(String(32), unique=True, index=True)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False)

    batch_id: Mapped[Optional[str]] = mapped_column(String(64), index=True)
    template_id: Mapped[Optional[str]] = mapped_column(String(64))
    tags: Mapped[List[str]] = mapped_column(JSON, default=list)
    custom_fields: Mapped[Dict[str, Any]] = mapped_column(JSON, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    creator: Mapped[User] = relationship(foreign_keys=[creator_id])
    verifier: Mapped[Optional[User]] = relationship(foreign_keys=[verifier_id])
    issuer: Mapped[Optional[User]] = relationship(foreign_keys=[issuer_id])
    history: Mapped[List["CertificateEvent"]] = relationship(
        back_populates="certificate",
        cascade="all, delete-orphan",
        order_by="CertificateEvent.id",
    )


class CertificateEvent(Base):
    """Histórico append-only de cada certificado (auditoria)."""

    __tablename__ = "certificate_events"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    certificate_id: Mapped[int] = mapped_column(ForeignKey("certificates.id", ondelete="CASCADE"), index=True)
    action: Mapped[str] = mapped_column(String(30), index=True)
    performed_by_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"))
    details: Mapped[Optional[str]] = mapped_column(Text)
    previous_status: Mapped[Optional[str]] = mapped_column(String(32))
    new_status: Mapped[Optional[str]] = mapped_column(String(32))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, index=True)

    certificate: Mapped[Certificate] = relationship(back_populates="history")
    performed_by: Mapped[Optional[User]] = relationship()
