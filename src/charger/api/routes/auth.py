"""LNURL-auth endpoints."""

from fastapi import APIRouter, Depends, Query

from charger.api.deps import get_services
from charger.services import Services

router = APIRouter()


@router.get("/login-challenge")
async def login_challenge(services: Services = Depends(get_services)) -> dict:
    """Start a login: returns the session id and its LNURL."""
    return services.auth.issue_challenge().to_response()


@router.get("/login-callback")
async def login_callback(
    k1: str = Query(..., description="Challenge (session id)"),
    sig: str = Query(..., description="DER signature over k1, hex"),
    key: str = Query(..., description="Linking public key, hex"),
    services: Services = Depends(get_services),
) -> dict:
    """Called by the wallet with its signed challenge."""
    await services.auth.verify_challenge(k1, sig, key)
    return {"status": "OK"}
