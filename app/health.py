# app/health.py
from fastapi import APIRouter

from app.services.networks import NETWORKS

router = APIRouter()

@router.get("/health")
def health():
    return {"ok": True, "networks": sorted(NETWORKS)}
