# certmanager/core/errors.py
from __future__ import annotations

from typing import Any, Optional


class AppError(Exception):
    """Erro de domínio com status HTTP e código estável para o front."""

    status_code: int = 400
    code: str = "APP_ERROR"

    def __init__(self, message: str, *, details: Any = None, status_code: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"


class PermissionDeniedError(AppError):
    status_code = 403
    code = "FORBIDDEN"


class InvalidTransitionError(AppError):
    status_code = 409
    code = "INVALID_TRANSITION"

    def __init__(self, action: str, current: str, expected: str):
        super().__init__(
            f"Cannot {action} a certificate in status '{current}'",
            details={"action": action, "current_status": current, "expected_status": expected},
        )


class ValidationFailedError(AppError):
    status_code = 422
    code = "VALIDATION_FAILED"


class RateLimitedError(AppError):
    status_code = 429
    code = "RATE_LIMITED"


class IPFSError(AppError):
    status_code = 502
    code = "IPFS_ERROR"


class BlockchainError(AppError):
    status_code = 502
    code = "BLOCKCHAIN_ERROR"


class BlockchainUnavailableError(BlockchainError):
    status_code = 503
    code = "BLOCKCHAIN_UNAVAILABLE"
