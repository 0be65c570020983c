"""Deposit intent endpoint."""

from fastapi import APIRouter, Depends, Form

from charger.api.deps import get_services
from charger.services import Services

router = APIRouter()


@router.post("/deposit-intent")
async def deposit_intent(
    amount: int = Form(..., gt=0, description="Amount in satoshi"),
    session: str = Form(...),
    services: Services = Depends(get_services),
) -> dict:
    """Create a deposit invoice; the address arrives on the event stream."""
    await services.deposits.issue_deposit_invoice(session, amount)
    return {"status": "OK"}
