"""Fee endpoints. Public, no actor required."""

from decimal import Decimal

from fastapi import APIRouter, Depends, Query

from marketplace.dependencies import get_fee_calculator
from marketplace.services.fees import FeeCalculator, PaymentMethod

router = APIRouter(tags=["fees"])


@router.get("/fees")
async def fee_schedule(fees: FeeCalculator = Depends(get_fee_calculator)) -> dict:
    """Current fee schedule. Both fees are clamped to the same floor and ceiling."""
    return fees.schedule()


@router.get("/escrow/fees")
async def calculate_fees(
    amount: Decimal = Query(..., gt=0, max_digits=12, decimal_places=2),
    payment_method: PaymentMethod = Query(...),
    fees: FeeCalculator = Depends(get_fee_calculator),
) -> dict:
    """Quote platform and payment fees and the nurse's net payout for an amount."""
    return fees.calculate(amount, payment_method).to_dict()
