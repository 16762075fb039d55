# certmanager/api/v1/router.py
from fastapi import APIRouter

from certmanager.api.v1 import auth, blockchain, certificates, upload, verification

api_router = APIRouter()

api_router.include_router(auth.router,          prefix="/auth",         tags=["auth"])
api_router.include_router(certificates.router,  prefix="/certificates", tags=["certificates"])
api_router.include_router(upload.router,        prefix="/upload",       tags=["upload"])
api_router.include_router(verification.router,  prefix="/verify",       tags=["verification"])
api_router.include_router(blockchain.router,    prefix="/blockchain",   tags=["blockchain"])
