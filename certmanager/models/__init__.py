# importa todos os models para registrar as tabelas no Base.metadata
from certmanager.models.user import User, UserRole
from certmanager.models.refresh_token import RefreshToken
from certmanager.models.certificate import Certificate, CertificateEvent, CertificateStatus, CertificateType
from certmanager.models.upload import UploadSession

__all__ = [
    "User",
    "UserRole",
    "RefreshToken",
    "Certificate",
    "CertificateEvent",
    "CertificateStatus",
    "CertificateType",
    "UploadSession",
]
