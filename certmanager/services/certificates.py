# certmanager/services/certificates.py
from __future__ import annotations

import secrets
import string
import time
import uuid
import datetime as dt
from typing import Any, Dict, List, Optional, Tuple

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from certmanager.core import crypto
from certmanager.core.config import settings
from certmanager.core.errors import (
    AppError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
)
from certmanager.core.rbac import PERM_VIEW_ALL, has_permission, is_admin
from certmanager.crud.certificate import certificate_crud
from certmanager.models.certificate import (
    Certificate,
    CertificateEvent,
    CertificateStatus,
    CertificateType,
)
from certmanager.models.user import User
from certmanager.schemas.certificate import CertificateCreate, CertificateUpdate

logger = structlog.get_logger()

S = CertificateStatus

# ação -> (status de origem, status de destino)
TRANSITIONS: Dict[str, Tuple[CertificateStatus, CertificateStatus]] = {
    "submit": (S.draft, S.pending_verification),
    "approve": (S.pending_verification, S.verified),
    "reject": (S.pending_verification, S.draft),
    "issue": (S.verified, S.issued),
    "revoke": (S.issued, S.revoked),
}

TREND_PERIODS = {"7d": 7, "30d": 30, "90d": 90}

_BASE36 = string.digits + string.ascii_uppercase


# -------------------------- Utils --------------------------

def _now_tz() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def _base36(n: int) -> str:
    out = ""
    while n:
        n, r = divmod(n, 36)
        out = _BASE36[r] + out
    return out or "0"


def new_certificate_id() -> str:
    rand = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"CERT-{_base36(int(time.time() * 1000))}-{rand}"


def _new_code(db: Session) -> str:
    # 32 hex maiúsculos; repete em caso (improvável) de colisão
    while True:
        code = secrets.token_hex(16).upper()
        exists = db.execute(select(Certificate.id).where(Certificate.verification_code == code)).first()
        if not exists:
            return code


def verification_url(code: Optional[str]) -> Optional[str]:
    if not code:
        return None
    return f"{settings.FRONTEND_URL.rstrip('/')}/verify/{code}"


def is_expired(cert: Certificate, today: Optional[dt.date] = None) -> bool:
    return bool(cert.expiry_date and cert.expiry_date < (today or dt.date.today()))


def add_history(
    cert: Certificate,
    action: str,
    user: Optional[User],
    *,
    details: Optional[str] = None,
    previous_status: Optional[CertificateStatus] = None,
    new_status: Optional[CertificateStatus] = None,
) -> None:
    cert.history.append(CertificateEvent(
        action=action,
        performed_by_id=user.id if user else None,
        details=details,
        previous_status=previous_status.value if previous_status else None,
        new_status=new_status.value if new_status else None,
        created_at=_now_tz(),
    ))


# ----------------------- acesso / escopo -----------------------

def can_view(user: User, cert: Certificate) -> bool:
    return cert.creator_id == user.id or has_permission(user.role, PERM_VIEW_ALL)


def ensure_can_view(user: User, cert: Certificate) -> None:
    if not can_view(user, cert):
        raise PermissionDeniedError("You do not have access to this certificate")


def ensure_owner_or_admin(user: User, cert: Certificate) -> None:
    if cert.creator_id != user.id and not is_admin(user.role):
        raise PermissionDeniedError("Only the creator or an admin can change this certificate")


def get_or_404(db: Session, certificate_id: str) -> Certificate:
    cert = certificate_crud.get_by_public_id(db, certificate_id)
    if not cert:
        raise NotFoundError(f"Certificate not found: {certificate_id}")
    return cert


# ------------------- conteúdo (hash + IPFS) -------------------

def compute_hash(cert: Certificate) -> str:
    return crypto.certificate_hash(
        certificate_id=cert.certificate_id,
        student_id=cert.recipient_student_id,
        recipient_name=cert.recipient_name,
        institution_name=cert.institution_name,
        subject=cert.course_subject,
        grade=cert.course_grade,
        completion_date=cert.completion_date,
    )


def document_payload(cert: Certificate) -> Dict[str, Any]:
    """Documento completo que vai cifrado para o IPFS."""
    return {
        "certificateId": cert.certificate_id,
        "title": cert.title,
        "type": cert.type.value,
        "description": cert.description,
        "recipient": {
            "studentId": cert.recipient_student_id,
            "name": cert.recipient_name,
            "email": cert.recipient_email,
            "walletAddress": cert.recipient_wallet_address,
        },
        "institution": {
            "name": cert.institution_name,
            "department": cert.institution_department,
            "address": cert.institution_address,
        },
        "course": {
            "subject": cert.course_subject,
            "grade": cert.course_grade,
            "credits": cert.course_credits,
            "duration": cert.course_duration,
            "completionDate": cert.completion_date.isoformat() if cert.completion_date else None,
        },
        "issueDate": cert.issue_date.isoformat() if cert.issue_date else None,
        "expiryDate": cert.expiry_date.isoformat() if cert.expiry_date else None,
        "tags": list(cert.tags or []),
        "customFields": dict(cert.custom_fields or {}),
    }


def hash_from_document(doc: Dict[str, Any]) -> str:
    course = doc.get("course") or {}
    recipient = doc.get("recipient") or {}
    completion = course.get("completionDate")
    return crypto.certificate_hash(
        certificate_id=doc.get("certificateId"),
        student_id=recipient.get("studentId"),
        recipient_name=recipient.get("name"),
        institution_name=(doc.get("institution") or {}).get("name"),
        subject=course.get("subject"),
        grade=course.get("grade"),
        completion_date=dt.date.fromisoformat(completion) if completion else None,
    )


def _safe_unpin(ipfs, cid: Optional[str]) -> None:
    if not cid:
        return
    try:
        ipfs.unpin(cid)
    except AppError as exc:
        logger.warning("ipfs.unpin_failed", cid=cid, error=exc.message)


def store_content(ipfs, cert: Certificate) -> Optional[str]:
    """
    Recalcula o hash, cifra o documento e publica no IPFS.

    Devolve o CID anterior; quem chama só despina depois do commit.
    """
    cert.certificate_hash = compute_hash(cert)
    password = crypto.generate_secure_password(32)
    package = crypto.encrypt_certificate(document_payload(cert), password)
    pinned = ipfs.pin_json(
        {"certificateId": cert.certificate_id, "version": 1, "encrypted": package},
        name=f"certificate-{cert.certificate_id}",
        keyvalues={
            "certificateId": cert.certificate_id,
            "type": cert.type.value,
            "institution": cert.institution_name,
        },
    )
    old_cid = cert.ipfs_cid
    cert.ipfs_cid = pinned["cid"]
    cert.ipfs_gateway = ipfs.gateway_url
    cert.ipfs_encryption_key = password
    cert.ipfs_is_encrypted = True
    return old_cid


def load_document(ipfs, cert: Certificate) -> Dict[str, Any]:
    if not cert.ipfs_cid or not cert.ipfs_encryption_key:
        raise NotFoundError("Certificate has no stored document")
    content = ipfs.get_json(cert.ipfs_cid)
    return crypto.decrypt_certificate(content["encrypted"], cert.ipfs_encryption_key)


# ------------------------- criação -------------------------

def _apply_fields(cert: Certificate, data: Dict[str, Any]) -> None:
    recipient = data.pop("recipient", None)
    institution = data.pop("institution", None)
    course = data.pop("course", None)
    if recipient is not None:
        cert.recipient_student_id = recipient["student_id"]
        cert.recipient_name = recipient["name"]
        cert.recipient_email = str(recipient["email"]).lower() if recipient.get("email") else None
        cert.recipient_wallet_address = (recipient.get("wallet_address") or "").lower() or None
    if institution is not None:
        cert.institution_name = institution["name"]
        cert.institution_department = institution.get("department")
        cert.institution_address = institution.get("address")
    if course is not None:
        cert.course_subject = course["subject"]
        cert.course_grade = course.get("grade")
        cert.course_credits = course.get("credits")
        cert.course_duration = course.get("duration")
    if "type" in data and data["type"] is not None:
        cert.type = CertificateType(data.pop("type"))
    for name in ("title", "description", "completion_date", "issue_date", "expiry_date",
                 "tags", "custom_fields", "batch_id", "template_id"):
        if name in data:
            setattr(cert, name, data[name])


def build_certificate(data: CertificateCreate, creator: User) -> Certificate:
    cert = Certificate(
        certificate_id=new_certificate_id(),
        creator_id=creator.id,
        status=S.draft,
        network=settings.BLOCKCHAIN_NETWORK,
        tags=[],
        custom_fields={},
        history=[],
    )
    _apply_fields(cert, data.model_dump())
    return cert


def create_certificate(db: Session, ipfs, data: CertificateCreate, creator: User) -> Certificate:
    cert = build_certificate(data, creator)
    store_content(ipfs, cert)
    add_history(cert, "created", creator, details="Certificate created", new_status=S.draft)
    db.add(cert)
    try:
        db.commit()
    except Exception:
        db.rollback()
        _safe_unpin(ipfs, cert.ipfs_cid)
        raise
    db.refresh(cert)
    logger.info("certificate.created", certificate_id=cert.certificate_id, creator=creator.id)
    return cert


def new_batch_id() -> str:
    return f"batch_{int(time.time())}_{uuid.uuid4().hex[:8]}"


def ensure_batch_size(count: int) -> None:
    if count > settings.MAX_BATCH_SIZE:
        raise AppError(f"Maximum {settings.MAX_BATCH_SIZE} certificates per batch", code="BATCH_TOO_LARGE")


def batch_create(
    db: Session,
    ipfs,
    items: List[CertificateCreate],
    creator: User,
    *,
    batch_id: Optional[str] = None,
    start_index: int = 0,
) -> Tuple[str, List[Certificate], List[Dict[str, Any]]]:
    batch_id = batch_id or new_batch_id()
    created: List[Certificate] = []
    errors: List[Dict[str, Any]] = []
    for index, item in enumerate(items, start=start_index):
        try:
            created.append(create_certificate(db, ipfs, item.model_copy(update={"batch_id": batch_id}), creator))
        except AppError as exc:
            errors.append({"index": index, "error": exc.message})
    logger.info("certificate.batch_created", batch_id=batch_id, created=len(created), failed=len(errors))
    return batch_id, created, errors


# ------------------------- edição -------------------------

def _ensure_draft(cert: Certificate, action: str) -> None:
    if cert.status != S.draft:
        raise InvalidTransitionError(action, cert.status.value, S.draft.value)


def update_certificate(db: Session, ipfs, cert: Certificate, data: CertificateUpdate, user: User) -> Certificate:
    ensure_owner_or_admin(user, cert)
    _ensure_draft(cert, "update")
    changes = data.model_dump(exclude_unset=True)
    if not changes:
        return cert
    _apply_fields(cert, dict(changes))
    if cert.expiry_date and cert.expiry_date < (cert.issue_date or cert.completion_date or cert.expiry_date):
        raise AppError("expiry_date must not be before the issue/completion date", status_code=422, code="VALIDATION_FAILED")
    previous_hash = cert.certificate_hash
    old_cid = store_content(ipfs, cert)
    new_cid = cert.ipfs_cid
    details = f"Updated fields: {', '.join(sorted(changes))}"
    if cert.transaction_hash and cert.certificate_hash != previous_hash:
        # o hash registrado no contrato não vale mais; exige nova ancoragem
        details += f"; on-chain anchor {cert.transaction_hash} discarded"
        cert.transaction_hash = None
        cert.block_number = None
        cert.chain_certificate_id = None
        cert.contract_address = None
    add_history(cert, "updated", user, details=details)
    try:
        db.commit()
    except Exception:
        db.rollback()
        if new_cid != old_cid:
            _safe_unpin(ipfs, new_cid)
        raise
    if old_cid and old_cid != new_cid:
        _safe_unpin(ipfs, old_cid)
    db.refresh(cert)
    logger.info("certificate.updated", certificate_id=cert.certificate_id, fields=sorted(changes))
    return cert


def delete_certificate(db: Session, ipfs, cert: Certificate, user: User) -> None:
    ensure_owner_or_admin(user, cert)
    _ensure_draft(cert, "delete")
    cid = cert.ipfs_cid
    db.delete(cert)
    db.commit()
    _safe_unpin(ipfs, cid)
    logger.info("certificate.deleted", certificate_id=cert.certificate_id, user=user.id)


# ------------------------- workflow -------------------------

def _transition(db: Session, cert: Certificate, action: str, user: User, details: Optional[str]) -> Certificate:
    source, target = TRANSITIONS[action]
    if cert.status != source:
        raise InvalidTransitionError(action, cert.status.value, source.value)
    previous = cert.status
    cert.status = target
    history_action = {"submit": "submitted", "approve": "approved", "reject": "rejected",
                      "issue": "issued", "revoke": "revoked"}[action]
    add_history(cert, history_action, user, details=details, previous_status=previous, new_status=target)
    db.commit()
    db.refresh(cert)
    logger.info(
        "certificate.transition",
        certificate_id=cert.certificate_id,
        action=action,
        from_status=previous.value,
        to_status=target.value,
        user=user.id,
    )
    return cert


def submit_for_verification(db: Session, cert: Certificate, user: User) -> Certificate:
    ensure_owner_or_admin(user, cert)
    return _transition(db, cert, "submit", user, "Submitted for verification")


def review(db: Session, cert: Certificate, user: User, *, approved: bool, comments: Optional[str] = None) -> Certificate:
    action = "approve" if approved else "reject"
    source, _ = TRANSITIONS[action]
    if cert.status != source:
        raise InvalidTransitionError("verify", cert.status.value, source.value)
    cert.verifier_id = user.id
    cert.verification_comments = comments
    cert.verified_at = _now_tz() if approved else None
    return _transition(db, cert, action, user, comments or ("Approved" if approved else "Rejected"))


def issue(db: Session, cert: Certificate, user: User, *, comments: Optional[str] = None) -> Certificate:
    source, _ = TRANSITIONS["issue"]
    if cert.status != source:
        raise InvalidTransitionError("issue", cert.status.value, source.value)
    cert.issuer_id = user.id
    cert.issued_at = _now_tz()
    cert.issuance_comments = comments
    cert.issue_date = cert.issue_date or dt.date.today()
    cert.verification_code = _new_code(db)
    cert.is_verified = True
    return _transition(db, cert, "issue", user, comments or "Certificate issued")


def revoke(db: Session, cert: Certificate, user: User, *, reason: str) -> Certificate:
    if not reason or not reason.strip():
        raise AppError("A revocation reason is required", status_code=422, code="VALIDATION_FAILED")
    source, _ = TRANSITIONS["revoke"]
    if cert.status != source:
        raise InvalidTransitionError("revoke", cert.status.value, source.value)
    cert.revoked_at = _now_tz()
    cert.revocation_reason = reason.strip()
    cert.is_verified = False
    return _transition(db, cert, "revoke", user, f"Revoked: {reason.strip()}")


def mark_anchored(db: Session, cert: Certificate, result: Dict[str, Any], contract_address: str, user: User) -> Certificate:
    cert.transaction_hash = result["transaction_hash"]
    cert.block_number = result["block_number"]
    cert.chain_certificate_id = result.get("certificate_id")
    cert.contract_address = contract_address
    add_history(cert, "anchored", user, details=f"Anchored on-chain in tx {result['transaction_hash']}")
    db.commit()
    db.refresh(cert)
    logger.info("certificate.anchored", certificate_id=cert.certificate_id, tx=cert.transaction_hash)
    return cert


# ------------------------- análise -------------------------

def stats(db: Session, user: User) -> Dict[str, Any]:
    creator_id = None if has_permission(user.role, PERM_VIEW_ALL) else user.id
    by_status = {s.value: 0 for s in S}
    by_status.update(certificate_crud.count_by(db, Certificate.status, creator_id=creator_id))
    by_type = {t.value: 0 for t in CertificateType}
    by_type.update(certificate_crud.count_by(db, Certificate.type, creator_id=creator_id))
    month_start = _now_tz().replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return {
        "total": sum(by_status.values()),
        "by_status": by_status,
        "by_type": by_type,
        "this_month": certificate_crud.count_since(db, month_start, creator_id=creator_id),
        "scope": "own" if creator_id is not None else "all",
    }


def trends(db: Session, period: str = "30d") -> Dict[str, Any]:
    if period not in TREND_PERIODS:
        raise AppError(f"Invalid period '{period}'. Use one of: {', '.join(TREND_PERIODS)}", code="INVALID_PERIOD")
    days = TREND_PERIODS[period]
    today = _now_tz().date()
    first = today - dt.timedelta(days=days - 1)
    since = dt.datetime.combine(first, dt.time.min, tzinfo=dt.timezone.utc)
    buckets: Dict[str, Dict[str, Any]] = {
        (first + dt.timedelta(days=i)).isoformat(): {"total": 0, "by_status": {}} for i in range(days)
    }
    for created_at, status in certificate_crud.created_since(db, since):
        key = created_at.date().isoformat()
        bucket = buckets.get(key)
        if bucket is None:
            continue
        bucket["total"] += 1
        name = getattr(status, "value", status)
        bucket["by_status"][name] = bucket["by_status"].get(name, 0) + 1
    return {
        "period": period,
        "start": first.isoformat(),
        "end": today.isoformat(),
        "daily": [{"date": k, **v} for k, v in buckets.items()],
    }
