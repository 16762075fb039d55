from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from certmanager.crud.base import CRUDBase, paginate
from certmanager.models.certificate import Certificate, CertificateEvent, CertificateStatus, CertificateType
from certmanager.schemas.certificate import CertificateCreate, CertificateUpdate


class CRUDCertificate(CRUDBase[Certificate, CertificateCreate, CertificateUpdate]):
    def get_by_public_id(self, db: Session, certificate_id: str) -> Certificate | None:
        return db.execute(
            select(Certificate).where(Certificate.certificate_id == certificate_id.strip().upper())
        ).scalar_one_or_none()

    def get_by_code(self, db: Session, code: str) -> Certificate | None:
        return db.execute(
            select(Certificate).where(Certificate.verification_code == code.strip().upper())
        ).scalar_one_or_none()

    def get_by_hash(self, db: Session, certificate_hash: str) -> Certificate | None:
        return db.execute(
            select(Certificate).where(Certificate.certificate_hash == certificate_hash.strip().lower())
        ).scalar_one_or_none()

    def list_filtered(
        self,
        db: Session,
        *,
        status: Optional[str] = None,
        type: Optional[str] = None,
        institution: Optional[str] = None,
        subject: Optional[str] = None,
        creator_id: Optional[int] = None,
        batch_id: Optional[str] = None,
        q: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> Tuple[List[Certificate], int]:
        stmt = select(Certificate)
        if status:
            stmt = stmt.where(Certificate.status == CertificateStatus(status))
        if type:
            stmt = stmt.where(Certificate.type == CertificateType(type))
        if institution:
            stmt = stmt.where(Certificate.institution_name.ilike(f"%{institution.strip()}%"))
        if subject:
            stmt = stmt.where(Certificate.course_subject.ilike(f"%{subject.strip()}%"))
        if creator_id is not None:
            stmt = stmt.where(Certificate.creator_id == creator_id)
        if batch_id:
            stmt = stmt.where(Certificate.batch_id == batch_id)
        if q:
            like = f"%{q.strip()}%"
            stmt = stmt.where(
                (Certificate.recipient_name.ilike(like)) |
                (Certificate.recipient_student_id.ilike(like)) |
                (Certificate.title.ilike(like)) |
                (Certificate.certificate_id.ilike(like))
            )
        stmt = stmt.order_by(Certificate.created_at.desc(), Certificate.id.desc())
        return paginate(db, stmt, page=page, limit=limit)

    def count_by(self, db: Session, column, *, creator_id: Optional[int] = None) -> Dict[str, int]:
        stmt = select(column, func.count(Certificate.id)).group_by(column)
        if creator_id is not None:
            stmt = stmt.where(Certificate.creator_id == creator_id)
        return {getattr(k, "value", k): int(n) for k, n in db.execute(stmt).all()}

    def count_since(self, db: Session, since: datetime, *, creator_id: Optional[int] = None) -> int:
        stmt = select(func.count(Certificate.id)).where(Certificate.created_at >= since)
        if creator_id is not None:
            stmt = stmt.where(Certificate.creator_id == creator_id)
        return int(db.scalar(stmt) or 0)

    def created_since(self, db: Session, since: datetime) -> List[Tuple[datetime, CertificateStatus]]:
        rows = db.execute(
            select(Certificate.created_at, Certificate.status).where(Certificate.created_at >= since)
        ).all()
        return [(r[0], r[1]) for r in rows]

    def audit_log(
        self,
        db: Session,
        *,
        action: Optional[str] = None,
        certificate_id: Optional[str] = None,
        page: int = 1,
        limit: int = 50,
    ) -> Tuple[List[Tuple[CertificateEvent, str]], int]:
        stmt = select(CertificateEvent, Certificate.certificate_id).join(
            Certificate, Certificate.id == CertificateEvent.certificate_id
        )
        count_stmt = select(func.count(CertificateEvent.id)).join(
            Certificate, Certificate.id == CertificateEvent.certificate_id
        )
        if action:
            stmt = stmt.where(CertificateEvent.action == action)
            count_stmt = count_stmt.where(CertificateEvent.action == action)
        if certificate_id:
            stmt = stmt.where(Certificate.certificate_id == certificate_id.strip().upper())
            count_stmt = count_stmt.where(Certificate.certificate_id == certificate_id.strip().upper())
        total = int(db.scalar(count_stmt) or 0)
        rows = db.execute(
            stmt.order_by(CertificateEvent.created_at.desc(), CertificateEvent.id.desc())
            .offset((page - 1) * limit).limit(limit)
        ).all()
        return [(ev, cid) for ev, cid in rows], total


certificate_crud = CRUDCertificate(Certificate)
