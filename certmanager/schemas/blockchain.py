# certmanager/schemas/blockchain.py
from typing import List, Literal, Optional
from pydantic import BaseModel, Field

from certmanager.schemas.user import WALLET_PATTERN

GasOperation = Literal["createCertificate", "verifyCertificate", "issueCertificate", "revokeCertificate"]


class EstimateGasRequest(BaseModel):
    operation: GasOperation
    certificate_id: Optional[str] = None


class BatchAnchorRequest(BaseModel):
    certificate_ids: List[str] = Field(min_length=1, max_length=50)


class RoleGrantRequest(BaseModel):
    role: Literal["creator", "verifier", "issuer"]
    account: str = Field(pattern=WALLET_PATTERN)
