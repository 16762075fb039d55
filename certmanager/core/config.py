# certmanager/core/config.py
import os
from typing import ClassVar, List

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


def _default_database_url() -> str:
    data_dir = os.path.abspath(os.getenv("DATA_DIR", "./data"))
    os.makedirs(data_dir, exist_ok=True)
    return os.getenv("DATABASE_URL", f"sqlite:///{os.path.join(data_dir, 'certificates.db')}")


def _csv_env(name: str, default: str = "") -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def _bool_env(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


class Settings(BaseModel):
    # Constante (não vira campo Pydantic)
    DATA_DIR: ClassVar[str] = os.path.abspath(os.getenv("DATA_DIR", "./data"))

    ENVIRONMENT: str = Field(default_factory=lambda: os.getenv("ENVIRONMENT", "production"))
    LOG_LEVEL: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    LOG_FORMAT: str = Field(default_factory=lambda: os.getenv("LOG_FORMAT", "console"))

    DATABASE_URL: str = Field(default_factory=_default_database_url)
    RUN_MIGRATIONS_ON_STARTUP: bool = Field(default_factory=lambda: _bool_env("RUN_MIGRATIONS_ON_STARTUP", "true"))
    ADMIN_EMAIL: str = Field(default_factory=lambda: os.getenv("ADMIN_EMAIL", "admin@example.com"))
    ADMIN_PASSWORD: str = Field(default_factory=lambda: os.getenv("ADMIN_PASSWORD", "ChangeMe123!"))

    SECRET_KEY: str = Field(default_factory=lambda: os.getenv("SECRET_KEY", "CHANGE_ME_SUPER_SECRET"))
    ALGORITHM: str = Field(default_factory=lambda: os.getenv("JWT_ALGORITHM", "HS256"))
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default_factory=lambda: int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30")))
    REFRESH_TOKEN_EXPIRE_DAYS: int = Field(default_factory=lambda: int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "7")))
    PASSWORD_RESET_EXPIRE_MINUTES: int = Field(default_factory=lambda: int(os.getenv("PASSWORD_RESET_EXPIRE_MINUTES", "10")))
    VALID_API_KEYS: List[str] = Field(default_factory=lambda: _csv_env("VALID_API_KEYS"))

    AUTH_RATE_LIMIT_ATTEMPTS: int = Field(default_factory=lambda: int(os.getenv("AUTH_RATE_LIMIT_ATTEMPTS", "5")))
    AUTH_RATE_LIMIT_WINDOW_SECONDS: int = Field(default_factory=lambda: int(os.getenv("AUTH_RATE_LIMIT_WINDOW_SECONDS", "900")))

    FRONTEND_URL: str = Field(default_factory=lambda: os.getenv("FRONTEND_URL", "http://localhost:3000"))
    CORS_ORIGINS: List[str] = Field(default_factory=lambda: _csv_env("CORS_ORIGINS", "*"))

    MAX_UPLOAD_BYTES: int = Field(default_factory=lambda: int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024))))
    MAX_UPLOAD_FILES: int = Field(default_factory=lambda: int(os.getenv("MAX_UPLOAD_FILES", "5")))
    MAX_BATCH_SIZE: int = Field(default_factory=lambda: int(os.getenv("MAX_BATCH_SIZE", "100")))

    PINATA_API_KEY: str = Field(default_factory=lambda: os.getenv("PINATA_API_KEY", ""))
    PINATA_SECRET_API_KEY: str = Field(default_factory=lambda: os.getenv("PINATA_SECRET_API_KEY", ""))
    PINATA_JWT: str = Field(default_factory=lambda: os.getenv("PINATA_JWT", ""))
    PINATA_API_URL: str = Field(default_factory=lambda: os.getenv("PINATA_API_URL", "https://api.pinata.cloud"))
    IPFS_GATEWAY_URL: str = Field(default_factory=lambda: os.getenv("IPFS_GATEWAY_URL", "https://gateway.pinata.cloud/ipfs/"))
    IPFS_TIMEOUT_SECONDS: float = Field(default_factory=lambda: float(os.getenv("IPFS_TIMEOUT_SECONDS", "30")))

    BLOCKCHAIN_RPC_URL: str = Field(default_factory=lambda: os.getenv("BLOCKCHAIN_RPC_URL", ""))
    BLOCKCHAIN_NETWORK: str = Field(default_factory=lambda: os.getenv("BLOCKCHAIN_NETWORK", "Ganache"))
    CONTRACT_ADDRESS: str = Field(default_factory=lambda: os.getenv("CONTRACT_ADDRESS", ""))
    PRIVATE_KEY: str = Field(default_factory=lambda: os.getenv("PRIVATE_KEY", ""))
    GAS_LIMIT_BUFFER_PCT: int = Field(default_factory=lambda: int(os.getenv("GAS_LIMIT_BUFFER_PCT", "20")))

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() in {"development", "dev", "local"}

    @property
    def pinata_configured(self) -> bool:
        return bool(self.PINATA_JWT or (self.PINATA_API_KEY and self.PINATA_SECRET_API_KEY))

    @property
    def blockchain_configured(self) -> bool:
        return bool(self.BLOCKCHAIN_RPC_URL and self.CONTRACT_ADDRESS)


settings = Settings()
