"""
M-Pesa callback router: POST /v1/mpesa/callback
"""
import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from mobipay.database import get_db
from mobipay.errors import ValidationError
from mobipay.schemas.schemas import CallbackAck
from mobipay.services.reconciliation import handle_gateway_callback

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/mpesa", tags=["M-Pesa"])


@router.post("/callback", response_model=CallbackAck)
async def mpesa_callback(request: Request, db: AsyncSession = Depends(get_db)):
    """
    STK push result from Safaricom. Always acknowledged unless the envelope
    is malformed (400); duplicates and unknown checkout ids are no-ops.
    """
    try:
        payload = await request.json()
    except ValueError:
        logger.error("M-Pesa callback with invalid JSON body")
        raise ValidationError("Invalid JSON")

    return await handle_gateway_callback(db, payload)
