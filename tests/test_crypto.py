import datetime as dt

import pytest

from certmanager.core import crypto
from certmanager.core.errors import AppError


def _hash(**overrides):
    fields = {
        "certificate_id": "CERT-ABC-123456",
        "student_id": "STU001",
        "recipient_name": "John Doe",
        "institution_name": "University of Technology",
        "subject": "Blockchain Fundamentals",
        "grade": "A",
        "completion_date": dt.date(2024, 1, 15),
    }
    fields.update(overrides)
    return crypto.certificate_hash(**fields)


def test_certificate_hash_is_deterministic_bytes32():
    first = _hash()
    assert first == _hash()
    assert crypto.is_certificate_hash(first)
    assert len(first) == 66


def test_certificate_hash_changes_with_content():
    assert _hash() != _hash(grade="B")
    assert _hash() != _hash(completion_date=None)


def test_is_certificate_hash_rejects_malformed_values():
    assert not crypto.is_certificate_hash("")
    assert not crypto.is_certificate_hash("0x1234")
    assert not crypto.is_certificate_hash("ab" * 32)
    assert not crypto.is_certificate_hash("0x" + "zz" * 32)


def test_encrypt_certificate_roundtrip():
    document = {
        "certificateId": "CERT-ABC-123456",
        "recipient": {"name": "John Doe"},
        "institution": {"name": "University of Technology"},
        "course": {"subject": "Blockchain Fundamentals", "completionDate": "2024-01-15"},
    }
    password = crypto.generate_secure_password()
    package = crypto.encrypt_certificate(document, password)

    assert package["algorithm"] == "aes-256-gcm"
    assert package["keyDerivation"] == "pbkdf2"
    assert package["iterations"] == crypto.PBKDF2_ITERATIONS
    assert "John Doe" not in package["encrypted"]
    assert crypto.decrypt_certificate(package, password) == document


def test_decrypt_with_wrong_password_fails():
    package = crypto.encrypt_certificate({"certificateId": "CERT-X"}, "correct-password")
    with pytest.raises(AppError) as exc:
        crypto.decrypt_certificate(package, "wrong-password")
    assert exc.value.code == "DECRYPTION_FAILED"


def test_decrypt_detects_tampered_aad():
    key = crypto.derive_key("secret", b"\x00" * crypto.SALT_LENGTH, iterations=1000)
    package = crypto.encrypt(b"payload", key, aad="original")
    assert crypto.decrypt(package, key) == b"payload"

    package["aad"] = "tampered"
    with pytest.raises(AppError):
        crypto.decrypt(package, key)


def test_generate_secure_password_uses_charset():
    password = crypto.generate_secure_password(48)
    assert len(password) == 48
    assert set(password) <= set(crypto.PASSWORD_CHARSET)
