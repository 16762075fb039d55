# certmanager/api/v1/certificates.py
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Response
from sqlalchemy.orm import Session

from certmanager.api.deps import get_current_user, get_db, get_ipfs
from certmanager.api.permissions import require_permissions, require_roles
from certmanager.core.rbac import PERM_CREATE, PERM_ISSUE, PERM_VERIFY, PERM_VIEW_ALL, has_permission
from certmanager.crud.base import page_count
from certmanager.crud.certificate import certificate_crud
from certmanager.models.certificate import Certificate, CertificateStatus
from certmanager.models.user import User
from certmanager.schemas.certificate import (
    BatchCreateRequest,
    BatchCreateResult,
    BlockchainOut,
    CertificateCreate,
    CertificateOut,
    CertificatePage,
    CertificateUpdate,
    CourseOut,
    HistoryEntryOut,
    InstitutionOut,
    IPFSOut,
    IssueRequest,
    Pagination,
    RecipientOut,
    ReviewOut,
    RevokeRequest,
    VerificationOut,
    VerifyDecision,
)
from certmanager.services import certificates as svc
from certmanager.services import documents

router = APIRouter()

STATUS_PATTERN = "^(draft|pending_verification|verified|issued|revoked)$"
TYPE_PATTERN = "^(academic|professional|training|achievement)$"


def _history_out(cert: Certificate) -> List[HistoryEntryOut]:
    return [
        HistoryEntryOut(
            action=ev.action,
            performed_by=ev.performed_by_id,
            timestamp=ev.created_at,
            details=ev.details,
            previous_status=ev.previous_status,
            new_status=ev.new_status,
        )
        for ev in cert.history
    ]


def _to_out(c: Certificate, *, with_history: bool = False) -> CertificateOut:
    return CertificateOut(
        id=c.id,
        certificate_id=c.certificate_id,
        title=c.title,
        type=c.type.value,
        description=c.description,
        recipient=RecipientOut(
            student_id=c.recipient_student_id,
            name=c.recipient_name,
            email=c.recipient_email,
            wallet_address=c.recipient_wallet_address,
        ),
        institution=InstitutionOut(
            name=c.institution_name,
            department=c.institution_department,
            address=c.institution_address,
        ),
        course=CourseOut(
            subject=c.course_subject,
            grade=c.course_grade,
            credits=c.course_credits,
            duration=c.course_duration,
        ),
        completion_date=c.completion_date,
        issue_date=c.issue_date,
        expiry_date=c.expiry_date,
        status=c.status.value,
        creator_id=c.creator_id,
        verifier=ReviewOut(user_id=c.verifier_id, at=c.verified_at, comments=c.verification_comments),
        issuer=ReviewOut(user_id=c.issuer_id, at=c.issued_at, comments=c.issuance_comments),
        revoked_at=c.revoked_at,
        revocation_reason=c.revocation_reason,
        blockchain=BlockchainOut(
            certificate_hash=c.certificate_hash,
            transaction_hash=c.transaction_hash,
            block_number=c.block_number,
            contract_address=c.contract_address,
            chain_certificate_id=c.chain_certificate_id,
            network=c.network,
            anchored=c.transaction_hash is not None,
        ),
        ipfs=IPFSOut(
            cid=c.ipfs_cid,
            gateway=c.ipfs_gateway,
            url=f"{c.ipfs_gateway}{c.ipfs_cid}" if c.ipfs_cid and c.ipfs_gateway else None,
            is_encrypted=c.ipfs_is_encrypted,
        ),
        verification=VerificationOut(
            verification_code=c.verification_code,
            is_verified=c.is_verified,
            verification_url=svc.verification_url(c.verification_code),
        ),
        batch_id=c.batch_id,
        template_id=c.template_id,
        tags=list(c.tags or []),
        custom_fields=dict(c.custom_fields or {}),
        created_at=c.created_at,
        updated_at=c.updated_at,
        history=_history_out(c) if with_history else None,
    )


def _page(items: List[Certificate], total: int, page: int, limit: int) -> CertificatePage:
    return CertificatePage(
        items=[_to_out(c) for c in items],
        pagination=Pagination(page=page, limit=limit, total=total, pages=page_count(total, limit)),
    )


def _scope(user: User) -> Optional[int]:
    # sem view_all o criador só enxerga os próprios
    return None if has_permission(user.role, PERM_VIEW_ALL) else user.id


def _viewable(db: Session, certificate_id: str, user: User) -> Certificate:
    cert = svc.get_or_404(db, certificate_id)
    svc.ensure_can_view(user, cert)
    return cert


# ----------------------- listagem / consulta -----------------------

@router.get("", response_model=CertificatePage)
def list_certificates(
    status: Optional[str] = Query(None, pattern=STATUS_PATTERN),
    type: Optional[str] = Query(None, pattern=TYPE_PATTERN),
    institution: Optional[str] = None,
    subject: Optional[str] = None,
    batch_id: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    items, total = certificate_crud.list_filtered(
        db,
        status=status,
        type=type,
        institution=institution,
        subject=subject,
        batch_id=batch_id,
        creator_id=_scope(user),
        page=page,
        limit=limit,
    )
    return _page(items, total, page, limit)


@router.get("/stats")
def certificate_stats(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return svc.stats(db, user)


@router.get("/trends", dependencies=[Depends(require_roles("admin"))])
def certificate_trends(period: str = Query("30d"), db: Session = Depends(get_db)):
    return svc.trends(db, period)


@router.get("/search", response_model=CertificatePage)
def search_certificates(
    q: str = Query(..., min_length=1, max_length=100),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    items, total = certificate_crud.list_filtered(db, q=q, creator_id=_scope(user), page=page, limit=limit)
    return _page(items, total, page, limit)


@router.get("/status/{status}", response_model=CertificatePage)
def certificates_by_status(
    status: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if status not in {s.value for s in CertificateStatus}:
        raise HTTPException(status_code=400, detail=f"Invalid status '{status}'")
    items, total = certificate_crud.list_filtered(
        db, status=status, creator_id=_scope(user), page=page, limit=limit
    )
    return _page(items, total, page, limit)


@router.get("/creator/{user_id}", response_model=CertificatePage)
def certificates_by_creator(
    user_id: int = Path(..., ge=1),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if user_id != user.id and not has_permission(user.role, PERM_VIEW_ALL):
        raise HTTPException(status_code=403, detail="You can only list your own certificates")
    items, total = certificate_crud.list_filtered(db, creator_id=user_id, page=page, limit=limit)
    return _page(items, total, page, limit)


# -------------------------- criação --------------------------

@router.post("/batch", response_model=BatchCreateResult, status_code=201)
def create_batch(
    payload: BatchCreateRequest,
    db: Session = Depends(get_db),
    ipfs=Depends(get_ipfs),
    user: User = Depends(require_permissions(PERM_CREATE)),
):
    svc.ensure_batch_size(len(payload.certificates))
    batch_id, created, errors = svc.batch_create(db, ipfs, payload.certificates, user)
    return BatchCreateResult(
        batch_id=batch_id,
        created=[_to_out(c) for c in created],
        errors=errors,
        total=len(payload.certificates),
        successful=len(created),
        failed=len(errors),
    )


@router.post("", response_model=CertificateOut, status_code=201)
def create_certificate(
    payload: CertificateCreate,
    db: Session = Depends(get_db),
    ipfs=Depends(get_ipfs),
    user: User = Depends(require_permissions(PERM_CREATE)),
):
    return _to_out(svc.create_certificate(db, ipfs, payload, user))


# ----------------------- item individual -----------------------

@router.get("/{certificate_id}", response_model=CertificateOut)
def get_certificate(certificate_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return _to_out(_viewable(db, certificate_id, user), with_history=True)


@router.put("/{certificate_id}", response_model=CertificateOut)
def update_certificate(
    certificate_id: str,
    payload: CertificateUpdate,
    db: Session = Depends(get_db),
    ipfs=Depends(get_ipfs),
    user: User = Depends(get_current_user),
):
    cert = svc.get_or_404(db, certificate_id)
    return _to_out(svc.update_certificate(db, ipfs, cert, payload, user))


@router.delete("/{certificate_id}", status_code=204)
def delete_certificate(
    certificate_id: str,
    db: Session = Depends(get_db),
    ipfs=Depends(get_ipfs),
    user: User = Depends(get_current_user),
):
    cert = svc.get_or_404(db, certificate_id)
    svc.delete_certificate(db, ipfs, cert, user)
    return Response(status_code=204)


# -------------------------- workflow --------------------------

@router.post("/{certificate_id}/submit", response_model=CertificateOut)
def submit_certificate(
    certificate_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions(PERM_CREATE)),
):
    cert = svc.get_or_404(db, certificate_id)
    return _to_out(svc.submit_for_verification(db, cert, user))


@router.post("/{certificate_id}/verify", response_model=CertificateOut)
def verify_certificate(
    certificate_id: str,
    payload: VerifyDecision,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions(PERM_VERIFY)),
):
    cert = svc.get_or_404(db, certificate_id)
    return _to_out(svc.review(db, cert, user, approved=payload.approved, comments=payload.comments))


@router.post("/{certificate_id}/issue", response_model=CertificateOut)
def issue_certificate(
    certificate_id: str,
    payload: Optional[IssueRequest] = None,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions(PERM_ISSUE)),
):
    cert = svc.get_or_404(db, certificate_id)
    comments = payload.comments if payload else None
    return _to_out(svc.issue(db, cert, user, comments=comments))


@router.post("/{certificate_id}/revoke", response_model=CertificateOut)
def revoke_certificate(
    certificate_id: str,
    payload: RevokeRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_permissions(PERM_ISSUE)),
):
    cert = svc.get_or_404(db, certificate_id)
    return _to_out(svc.revoke(db, cert, user, reason=payload.reason))


@router.get("/{certificate_id}/history", response_model=List[HistoryEntryOut])
def certificate_history(certificate_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    return _history_out(_viewable(db, certificate_id, user))


# -------------------------- documentos --------------------------

@router.get("/{certificate_id}/qr", response_class=Response)
def certificate_qr(certificate_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    cert = _viewable(db, certificate_id, user)
    return Response(content=documents.certificate_qr(cert), media_type="image/png")


@router.get("/{certificate_id}/pdf", response_class=Response)
def certificate_pdf(certificate_id: str, db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    cert = _viewable(db, certificate_id, user)
    return Response(
        content=documents.certificate_pdf(cert),
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="{cert.certificate_id}.pdf"'},
    )
