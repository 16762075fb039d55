# certmanager/api/v1/verification.py
from __future__ import annotations

from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from certmanager.api.deps import get_db, get_ipfs, get_optional_api_key
from certmanager.api.permissions import require_roles
from certmanager.core.config import settings
from certmanager.core.errors import AppError
from certmanager.crud.base import page_count
from certmanager.crud.certificate import certificate_crud
from certmanager.models.user import User
from certmanager.schemas.verification import (
    AuditEntry,
    AuditLogPage,
    BatchValidateRequest,
    BulkVerifyRequest,
    BulkVerifyResult,
    IntegrityReport,
    VerificationResult,
)
from certmanager.services import certificates as cert_svc
from certmanager.services import verification as verify_svc
from certmanager.services.blockchain import get_chain_client

router = APIRouter()
logger = structlog.get_logger()


def _optional_chain():
    # verificação pública funciona sem blockchain configurada
    if not settings.blockchain_configured:
        return None
    return get_chain_client()


# -------------------------- público --------------------------

@router.get("/code/{code}", response_model=VerificationResult)
def verify_by_code(code: str, db: Session = Depends(get_db)):
    return verify_svc.verify_by_code(db, code)


@router.get("/hash/{certificate_hash}", response_model=VerificationResult)
def verify_by_hash(
    certificate_hash: str,
    db: Session = Depends(get_db),
    chain=Depends(_optional_chain),
):
    return verify_svc.verify_by_hash(db, certificate_hash, chain=chain)


@router.post("/bulk", response_model=BulkVerifyResult)
def bulk_verify(
    payload: BulkVerifyRequest,
    db: Session = Depends(get_db),
    api_key: Optional[str] = Depends(get_optional_api_key),
):
    result = verify_svc.bulk_verify(db, payload.verification_codes, payload.certificate_hashes)
    logger.info("verify.bulk", total=result["total"], verified=result["verified"], integration=api_key is not None)
    return result


@router.get("/qr/{qr_data:path}", response_model=VerificationResult)
def verify_by_qr(qr_data: str, db: Session = Depends(get_db)):
    return verify_svc.verify_by_code(db, verify_svc.code_from_qr(qr_data))


# -------------------------- protegido --------------------------

@router.get("/validate/{certificate_id}", response_model=IntegrityReport)
def validate_certificate(
    certificate_id: str,
    db: Session = Depends(get_db),
    ipfs=Depends(get_ipfs),
    _user: User = Depends(require_roles("admin", "verifier", "issuer")),
):
    cert = cert_svc.get_or_404(db, certificate_id)
    return verify_svc.validate_integrity(ipfs, cert)


@router.get("/ipfs/{cid}")
def check_ipfs(
    cid: str,
    ipfs=Depends(get_ipfs),
    _user: User = Depends(require_roles("admin", "verifier", "issuer")),
):
    return verify_svc.ipfs_check(ipfs, cid)


@router.get("/stats")
def verification_stats(
    period: str = Query("30d"),
    db: Session = Depends(get_db),
    _user: User = Depends(require_roles("admin", "verifier")),
):
    return verify_svc.verification_stats(db, period)


@router.get("/audit-log", response_model=AuditLogPage)
def audit_log(
    action: Optional[str] = None,
    certificate_id: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    _admin: User = Depends(require_roles("admin")),
):
    rows, total = certificate_crud.audit_log(
        db, action=action, certificate_id=certificate_id, page=page, limit=limit
    )
    items = [
        AuditEntry(
            certificate_id=public_id,
            action=ev.action,
            performed_by=ev.performed_by_id,
            timestamp=ev.created_at,
            details=ev.details,
            previous_status=ev.previous_status,
            new_status=ev.new_status,
        )
        for ev, public_id in rows
    ]
    return AuditLogPage(items=items, page=page, limit=limit, total=total, pages=page_count(total, limit))


@router.post("/batch/validate")
def batch_validate(
    payload: BatchValidateRequest,
    db: Session = Depends(get_db),
    ipfs=Depends(get_ipfs),
    _admin: User = Depends(require_roles("admin")),
):
    results: List[dict] = []
    for certificate_id in payload.certificate_ids:
        try:
            cert = cert_svc.get_or_404(db, certificate_id)
            results.append(verify_svc.validate_integrity(ipfs, cert))
        except AppError as exc:
            results.append({"certificate_id": certificate_id, "overall_valid": False, "error": exc.message})
    valid = sum(1 for r in results if r.get("overall_valid"))
    return {"results": results, "total": len(results), "valid": valid, "invalid": len(results) - valid}
