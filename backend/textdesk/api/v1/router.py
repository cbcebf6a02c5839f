from fastapi import APIRouter

from textdesk.api.v1.endpoints import (
    audit,
    campaigns,
    compliance,
    text,
)

api_v1_router = APIRouter()

api_v1_router.include_router(text.router, prefix="/text", tags=["text"])
api_v1_router.include_router(campaigns.router, prefix="/campaigns", tags=["campaigns"])
api_v1_router.include_router(compliance.router, prefix="/compliance", tags=["compliance"])
api_v1_router.include_router(audit.router, prefix="/audit", tags=["audit"])
