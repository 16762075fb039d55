# certmanager/services/uploads.py
"""Sessões de upload e criação de certificados a partir de linhas de planilha."""
from __future__ import annotations

import datetime as dt
import uuid
from typing import Any, Dict, List, Optional, Tuple

import structlog
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from certmanager.core.config import settings
from certmanager.core.errors import AppError, NotFoundError, PermissionDeniedError
from certmanager.core.rbac import is_admin
from certmanager.crud.base import paginate
from certmanager.models.certificate import Certificate
from certmanager.models.upload import UploadSession
from certmanager.models.user import User
from certmanager.schemas.certificate import CertificateCreate
from certmanager.services import certificates as cert_svc
from certmanager.services.spreadsheet import ParseResult

logger = structlog.get_logger()

STATUS_PROCESSED = "processed"
STATUS_FAILED = "failed"
STATUS_CONSUMED = "consumed"


def new_upload_id() -> str:
    return f"upload_{uuid.uuid4().hex}"


def record_session(
    db: Session, result: ParseResult, *, size_bytes: int, mime_type: Optional[str], user: User
) -> UploadSession:
    session = UploadSession(
        upload_id=new_upload_id(),
        filename=result.file_name,
        file_type=result.file_type,
        mime_type=mime_type,
        size_bytes=size_bytes,
        total_rows=result.total_rows,
        valid_rows=result.valid_rows,
        invalid_rows=result.invalid_rows,
        rows=result.results,
        errors=result.errors,
        status=STATUS_PROCESSED if result.valid_rows else STATUS_FAILED,
        uploaded_by_id=user.id,
    )
    db.add(session)
    db.commit()
    db.refresh(session)
    logger.info(
        "upload.recorded",
        upload_id=session.upload_id,
        file=session.filename,
        valid=session.valid_rows,
        invalid=session.invalid_rows,
        user=user.id,
    )
    return session


def get_session(db: Session, upload_id: str, user: User) -> UploadSession:
    session = db.execute(select(UploadSession).where(UploadSession.upload_id == upload_id)).scalar_one_or_none()
    if not session:
        raise NotFoundError(f"Upload not found: {upload_id}")
    if session.uploaded_by_id != user.id and not is_admin(user.role):
        raise PermissionDeniedError("You do not have access to this upload")
    return session


def list_sessions(db: Session, user: User, *, page: int, limit: int) -> Tuple[List[UploadSession], int]:
    stmt = select(UploadSession)
    if not is_admin(user.role):
        stmt = stmt.where(UploadSession.uploaded_by_id == user.id)
    stmt = stmt.order_by(UploadSession.created_at.desc(), UploadSession.id.desc())
    return paginate(db, stmt, page=page, limit=limit)


class _RowValues(dict):
    # coluna opcional ausente vira texto vazio
    def __missing__(self, key):
        return ""


def _title(template: str, data: Dict[str, Any]) -> str:
    values = _RowValues({k: v for k, v in data.items() if v is not None})
    try:
        return " ".join(template.format_map(values).split())
    except (IndexError, ValueError, TypeError) as exc:
        raise AppError(f"Invalid title template: {exc}", code="INVALID_TEMPLATE") from exc


def row_to_certificate(data: Dict[str, Any], title_template: str) -> CertificateCreate:
    credits = data.get("credits")
    completion = data.get("completionDate")
    return CertificateCreate(
        title=_title(title_template, data),
        type=data.get("certificateType") or "academic",
        recipient={
            "student_id": data["studentId"],
            "name": data["name"],
            "email": data.get("email"),
            "wallet_address": data.get("walletAddress"),
        },
        institution={"name": data["institution"], "department": data.get("department")},
        course={
            "subject": data["subject"],
            "grade": data.get("grade"),
            "credits": int(round(credits)) if credits is not None else None,
            "duration": data.get("duration"),
        },
        completion_date=dt.date.fromisoformat(completion) if completion else dt.date.today(),
    )


def create_from_rows(
    db: Session,
    ipfs,
    rows: List[Dict[str, Any]],
    user: User,
    *,
    title_template: str,
    batch_id: Optional[str] = None,
) -> Tuple[str, List[Certificate], List[Dict[str, Any]]]:
    """`rows` no formato {"row_index", "data"}; erros voltam indexados pela linha da planilha."""
    items: List[CertificateCreate] = []
    indexes: List[int] = []
    errors: List[Dict[str, Any]] = []
    for entry in rows:
        try:
            items.append(row_to_certificate(entry["data"], title_template))
            indexes.append(entry["row_index"])
        except ValidationError as exc:
            errors.append({"index": entry["row_index"], "error": str(exc.errors()[0].get("msg"))})
    if not items:
        raise AppError("No valid rows to create certificates from", code="NO_VALID_ROWS", details={"errors": errors})

    # planilhas grandes: lotes de MAX_BATCH_SIZE sob o mesmo batch_id
    batch_id = batch_id or cert_svc.new_batch_id()
    created: List[Certificate] = []
    step = max(settings.MAX_BATCH_SIZE, 1)
    for start in range(0, len(items), step):
        _, chunk, batch_errors = cert_svc.batch_create(
            db, ipfs, items[start:start + step], user, batch_id=batch_id, start_index=start
        )
        created.extend(chunk)
        errors.extend({"index": indexes[e["index"]], "error": e["error"]} for e in batch_errors)
    return batch_id, created, sorted(errors, key=lambda e: e["index"])


def _mark_failed(db: Session, session: UploadSession, reason: str) -> None:
    session.status = STATUS_FAILED
    db.commit()
    logger.warning("upload.creation_failed", upload_id=session.upload_id, reason=reason)


def create_from_session(
    db: Session, ipfs, session: UploadSession, user: User, *, title_template: str
) -> Tuple[str, List[Certificate], List[Dict[str, Any]]]:
    if session.status == STATUS_CONSUMED:
        raise AppError("Certificates were already created from this upload", status_code=409, code="UPLOAD_CONSUMED")
    try:
        batch_id, created, errors = create_from_rows(
            db, ipfs, list(session.rows or []), user, title_template=title_template
        )
    except AppError as exc:
        _mark_failed(db, session, exc.code)
        raise
    if not created:
        _mark_failed(db, session, "no certificate created")
        return batch_id, created, errors
    session.status = STATUS_CONSUMED
    session.batch_id = batch_id
    db.commit()
    logger.info("upload.certificates_created", upload_id=session.upload_id, batch_id=batch_id, created=len(created))
    return batch_id, created, errors
