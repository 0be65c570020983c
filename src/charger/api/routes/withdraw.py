"""LNURL-withdraw endpoints."""

from fastapi import APIRouter, Depends, Query

from charger.api.deps import get_services
from charger.services import Services

router = APIRouter()


@router.get("/withdraw-request")
async def withdraw_request(
    session: str = Query(...),
    services: Services = Depends(get_services),
) -> dict:
    """First LNURL-withdraw call: the amount the wallet may pull."""
    params = await services.withdrawals.issue_withdraw_params(session)
    return params.to_response()


@router.get("/withdraw-callback")
async def withdraw_callback(
    session: str = Query(...),
    k1: str = Query(...),
    sig: str = Query(...),
    pr: str = Query(..., description="BOLT11 payment request to pay"),
    services: Services = Depends(get_services),
) -> dict:
    """Second LNURL-withdraw call: starts paying the wallet's invoice."""
    await services.withdrawals.execute_withdraw(session, k1, sig, pr)
    return {"status": "OK"}


@router.post("/cancel-intent")
async def cancel_intent(
    session: str = Query(...),
    services: Services = Depends(get_services),
) -> dict:
    """Drop the unpaid deposit invoice so the user can start over."""
    await services.withdrawals.cancel_intent(session)
    return {"status": "OK"}
