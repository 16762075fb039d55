# certmanager/services/documents.py
from __future__ import annotations

import io
import base64
import datetime as dt
from typing import Dict

import qrcode  # type: ignore
from jinja2 import Environment, BaseLoader, select_autoescape
from xhtml2pdf import pisa  # type: ignore

from certmanager.core.errors import AppError
from certmanager.models.certificate import Certificate, CertificateStatus
from certmanager.services.certificates import verification_url

CERTIFICATE_TEMPLATE = """
<!doctype html>
<html>
  <body style="font-family: Helvetica, Arial, sans-serif; padding: 36px;">
    <div style="text-align:center;">
      <h3>{{ institution.name }}{% if institution.department %} · {{ institution.department }}{% endif %}</h3>
      <h1>{{ title }}</h1>
      <p>This certifies that <b>{{ recipient.name }}</b> (ID {{ recipient.student_id }})
         has completed <b>{{ course.subject }}</b>{% if course.grade %} with grade <b>{{ course.grade }}</b>{% endif %}
         {% if completion_date %}on {{ completion_date }}{% endif %}.</p>
      {% if course.credits or course.duration %}
      <p>{% if course.credits %}{{ course.credits }} credits{% endif %}
         {% if course.duration %}· {{ course.duration }}{% endif %}</p>
      {% endif %}
      <p>Issued on {{ issue_date }}{% if expiry_date %} · valid until {{ expiry_date }}{% endif %}</p>
      <p>Certificate {{ certificate_id }} · Verification code <b>{{ code }}</b></p>
      <img src="{{ qr_data_uri }}" style="height:120px">
      <div style="font-size: 10px; margin-top:8px">Verify at: {{ verify_url }}</div>
      {% if certificate_hash %}<div style="font-size: 8px; margin-top:4px">{{ certificate_hash }}</div>{% endif %}
    </div>
  </body>
</html>
""".strip()


def qr_png(text: str) -> bytes:
    img = qrcode.make(text)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def _qr_data_uri(text: str) -> str:
    b64 = base64.b64encode(qr_png(text)).decode("ascii")
    return f"data:image/png;base64,{b64}"


def _render_html(template: str, ctx: Dict) -> str:
    env = Environment(
        loader=BaseLoader(),
        autoescape=select_autoescape(["html", "xml"]),
        enable_async=False,
    )
    tpl = env.from_string(template)
    return tpl.render(**ctx)


def _html_to_pdf_bytes(html: str) -> bytes:
    out = io.BytesIO()
    status = pisa.CreatePDF(io.StringIO(html), dest=out)
    if status.err:
        raise AppError("PDF rendering failed", status_code=500, code="PDF_RENDER_FAILED")
    return out.getvalue()


def _require_code(cert: Certificate) -> str:
    if cert.status not in (CertificateStatus.issued, CertificateStatus.revoked) or not cert.verification_code:
        raise AppError("Only issued certificates have a verification code", status_code=409, code="NOT_ISSUED")
    return cert.verification_code


def certificate_qr(cert: Certificate) -> bytes:
    return qr_png(verification_url(_require_code(cert)))


def build_certificate_html(cert: Certificate) -> str:
    code = _require_code(cert)
    url = verification_url(code)
    ctx = dict(
        title=cert.title,
        certificate_id=cert.certificate_id,
        recipient=dict(name=cert.recipient_name, student_id=cert.recipient_student_id),
        institution=dict(name=cert.institution_name, department=cert.institution_department),
        course=dict(
            subject=cert.course_subject,
            grade=cert.course_grade,
            credits=cert.course_credits,
            duration=cert.course_duration,
        ),
        completion_date=cert.completion_date.isoformat() if cert.completion_date else "",
        issue_date=(cert.issue_date or dt.date.today()).isoformat(),
        expiry_date=cert.expiry_date.isoformat() if cert.expiry_date else "",
        code=code,
        verify_url=url,
        qr_data_uri=_qr_data_uri(url),
        certificate_hash=cert.certificate_hash,
    )
    return _render_html(CERTIFICATE_TEMPLATE, ctx)


def certificate_pdf(cert: Certificate) -> bytes:
    if cert.status != CertificateStatus.issued:
        raise AppError("Only issued certificates can be rendered", status_code=409, code="NOT_ISSUED")
    return _html_to_pdf_bytes(build_certificate_html(cert))
