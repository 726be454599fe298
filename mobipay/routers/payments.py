"""
Payments router: POST /v1/payments, GET /v1/payments/{transaction_id},
                   GET /v1/payments/history/{vehicle_code}
"""
import logging

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy.ext.asyncio import AsyncSession

from mobipay.database import get_db
from mobipay.middleware.idempotency import check_idempotency, store_idempotency_result
from mobipay.redis_client import get_redis
from mobipay.schemas.schemas import (
    HistoryData, HistoryResponse, PaymentInitiateRequest, PaymentResponse,
)
from mobipay.services import payments
from mobipay.services.mpesa import MpesaGateway, get_gateway

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/payments", tags=["Payments"])


@router.post("", response_model=PaymentResponse)
async def initiate_payment(
    payload: PaymentInitiateRequest,
    db: AsyncSession = Depends(get_db),
    gateway: MpesaGateway = Depends(get_gateway),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    """
    Start a fare payment:
      - Idempotent when an Idempotency-Key header is sent (response replayed for 24h).
      - Charge and split are computed server-side; the client only sends the fare.
      - Returns PENDING; the outcome arrives by callback or status polling.
    """
    redis = None
    if idempotency_key:
        redis = await get_redis()
        cached = await check_idempotency(redis, idempotency_key)
        if cached:
            return cached

    summary = await payments.initiate_payment(
        db,
        gateway,
        vehicle_code=payload.vehicle_code,
        phone=payload.phone_number,
        amount=payload.amount,
    )
    response = PaymentResponse(message="Payment initiated successfully", data=summary)

    if idempotency_key:
        await store_idempotency_result(redis, idempotency_key, 200, response.model_dump(mode="json"))

    return response


@router.get("/history/{vehicle_code}", response_model=HistoryResponse)
async def payment_history(
    vehicle_code: str,
    limit: int = Query(default=50),
    db: AsyncSession = Depends(get_db),
):
    """Most recent transactions for a vehicle, newest first."""
    rows = await payments.get_history(db, vehicle_code, limit)
    return HistoryResponse(
        data=HistoryData(
            vehicle_code=vehicle_code,
            transactions=rows,
            total_transactions=len(rows),
        )
    )


@router.get("/{transaction_id}", response_model=PaymentResponse)
async def payment_status(
    transaction_id: str,
    db: AsyncSession = Depends(get_db),
    gateway: MpesaGateway = Depends(get_gateway),
):
    """Transaction status; a PENDING transaction is checked with M-Pesa first."""
    summary = await payments.get_status(db, gateway, transaction_id)
    return PaymentResponse(data=summary)
