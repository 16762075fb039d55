# certmanager/core/crypto.py
"""
Hash de conteúdo (keccak256, compatível com o contrato) e criptografia
AES-256-GCM dos documentos enviados ao IPFS.

O payload cifrado é um dict JSON-serializável:
    {encrypted, iv, tag, aad, salt, iterations, algorithm, keyDerivation, hashFunction}
"""
from __future__ import annotations

import base64
import json
import os
import re
import secrets
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from web3 import Web3

from certmanager.core.errors import AppError

ALGORITHM = "aes-256-gcm"
KEY_LENGTH = 32
IV_LENGTH = 12
TAG_LENGTH = 16
SALT_LENGTH = 32
PBKDF2_ITERATIONS = 100_000
PASSWORD_CHARSET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789!@#$%^&*"

_HEX32 = re.compile(r"^0x[0-9a-fA-F]{64}$")


def _b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def _unb64(text: str) -> bytes:
    return base64.b64decode(text.encode("ascii"))


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def canonical_json(data: Any) -> str:
    return json.dumps(data, separators=(",", ":"), ensure_ascii=False, default=_json_default)


# -------------------------- hash --------------------------

def certificate_hash(
    *,
    certificate_id: str,
    student_id: str,
    recipient_name: str,
    institution_name: str,
    subject: str,
    grade: Optional[str],
    completion_date: Optional[date],
) -> str:
    """keccak256 determinístico dos campos que identificam o certificado."""
    hash_data = {
        "certificateId": certificate_id,
        "recipient": {"studentId": student_id, "name": recipient_name},
        "institution": institution_name,
        "course": {"subject": subject, "grade": grade},
        "completionDate": completion_date.isoformat() if completion_date else None,
    }
    digest = Web3.keccak(text=canonical_json(hash_data))
    return "0x" + bytes(digest).hex()


def is_certificate_hash(value: str) -> bool:
    return bool(_HEX32.match(value or ""))


# ----------------------- criptografia -----------------------

def derive_key(password: str, salt: bytes, iterations: int = PBKDF2_ITERATIONS) -> bytes:
    kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=KEY_LENGTH, salt=salt, iterations=iterations)
    return kdf.derive(password.encode("utf-8"))


def encrypt(data: bytes, key: bytes, aad: Optional[str] = None) -> Dict[str, str]:
    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(key).encrypt(iv, data, aad.encode("utf-8") if aad else None)
    # cryptography devolve ciphertext||tag
    result = {
        "encrypted": _b64(sealed[:-TAG_LENGTH]),
        "iv": _b64(iv),
        "tag": _b64(sealed[-TAG_LENGTH:]),
        "algorithm": ALGORITHM,
    }
    if aad:
        result["aad"] = aad
    return result


def decrypt(package: Dict[str, Any], key: bytes) -> bytes:
    try:
        sealed = _unb64(package["encrypted"]) + _unb64(package["tag"])
        aad = package.get("aad")
        return AESGCM(key).decrypt(_unb64(package["iv"]), sealed, aad.encode("utf-8") if aad else None)
    except (InvalidTag, KeyError, ValueError) as exc:
        raise AppError("Decryption failed - invalid key or corrupted data", status_code=400, code="DECRYPTION_FAILED") from exc


def encrypt_certificate(certificate_data: Dict[str, Any], password: str) -> Dict[str, Any]:
    salt = os.urandom(SALT_LENGTH)
    key = derive_key(password, salt)
    aad = canonical_json({
        "certificateId": certificate_data.get("certificateId"),
        "recipient": (certificate_data.get("recipient") or {}).get("name"),
        "institution": (certificate_data.get("institution") or {}).get("name"),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    })
    result = encrypt(canonical_json(certificate_data).encode("utf-8"), key, aad)
    result.update(
        salt=_b64(salt),
        iterations=PBKDF2_ITERATIONS,
        keyDerivation="pbkdf2",
        hashFunction="sha256",
    )
    return result


def decrypt_certificate(package: Dict[str, Any], password: str) -> Dict[str, Any]:
    try:
        salt = _unb64(package["salt"])
    except (KeyError, ValueError) as exc:
        raise AppError("Certificate decryption failed - invalid password", status_code=400, code="DECRYPTION_FAILED") from exc
    key = derive_key(password, salt, int(package.get("iterations") or PBKDF2_ITERATIONS))
    try:
        return json.loads(decrypt(package, key).decode("utf-8"))
    except AppError as exc:
        raise AppError("Certificate decryption failed - invalid password", status_code=400, code="DECRYPTION_FAILED") from exc


def generate_secure_password(length: int = 32) -> str:
    return "".join(secrets.choice(PASSWORD_CHARSET) for _ in range(length))
