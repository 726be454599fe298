"""
Payment lifecycle.

initiate_payment:
  1. Sanitize + validate vehicle code, phone and amount
  2. Resolve active vehicle, owner and platform accounts
  3. Compute service charge and split (settings read now, never retroactively)
  4. Insert PENDING ledger row
  5. STK push via the gateway; record provider ids, or mark FAILED
"""
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from mobipay.config import get_settings
from mobipay.errors import GatewayError, NotFoundError, ValidationError
from mobipay.schemas.schemas import TransactionSummary
from mobipay.services import ledger
from mobipay.services.fees import compute_service_charge
from mobipay.services.mpesa import MpesaGateway
from mobipay.services.reconciliation import reconcile_by_query
from mobipay.services.registry import resolve_payees
from mobipay.services.split import compute_split
from mobipay.services.system_settings import load_payment_settings
from mobipay.services.validation import clean_vehicle_code, validate_payment_request, vehicle_code_error

logger = logging.getLogger(__name__)
settings = get_settings()

MAX_HISTORY_LIMIT = 200


async def initiate_payment(
    db: AsyncSession,
    gateway: MpesaGateway,
    vehicle_code: Any,
    phone: Any,
    amount: Any,
) -> TransactionSummary:
    payment_settings = await load_payment_settings(db)
    request = validate_payment_request(
        vehicle_code,
        phone,
        amount,
        min_amount=payment_settings.min_amount,
        max_amount=settings.max_amount,
    )

    await resolve_payees(db, request.vehicle_code)

    service_charge = compute_service_charge(request.amount)
    split = compute_split(service_charge, payment_settings.developer_percentage)

    txn = await ledger.create_transaction(
        db,
        vehicle_code=request.vehicle_code,
        phone_number=request.phone_number,
        fare_amount=request.amount,
        service_charge=service_charge,
        split=split,
    )

    result = await gateway.initiate(
        phone=txn.phone_number,
        amount=txn.total_amount,
        reference=txn.transaction_id,
        description=f"MOBIPAY Payment - Matatu {txn.vehicle_code}",
    )
    if not result.success:
        await ledger.finalize(
            db,
            txn,
            ledger.FAILED,
            result_code=result.error_code,
            result_desc=result.error,
        )
        logger.error("Payment initiation failed txn=%s: %s", txn.transaction_id, result.error)
        raise GatewayError(f"Failed to initiate payment: {result.error}", error_code=result.error_code)

    await ledger.attach_gateway_ids(
        db,
        txn,
        merchant_request_id=result.merchant_request_id,
        checkout_request_id=result.checkout_request_id,
    )
    return TransactionSummary.from_transaction(txn, customer_message=result.customer_message)


async def get_status(
    db: AsyncSession,
    gateway: MpesaGateway,
    transaction_id: str,
) -> TransactionSummary:
    """Current state of a transaction; a PENDING one is first checked with the provider."""
    txn = await ledger.get_transaction(db, transaction_id)
    if txn is None:
        raise NotFoundError("Transaction not found")

    if txn.status == ledger.PENDING and txn.checkout_request_id:
        await reconcile_by_query(db, gateway, txn)

    return TransactionSummary.from_transaction(txn)


async def get_history(
    db: AsyncSession,
    vehicle_code: Any,
    limit: int = 50,
) -> list[TransactionSummary]:
    code = clean_vehicle_code(vehicle_code)
    error = vehicle_code_error(code)
    if error:
        raise ValidationError(error, errors=[{"field": "vehicle_code", "message": error}])
    if limit < 1 or limit > MAX_HISTORY_LIMIT:
        message = f"limit must be between 1 and {MAX_HISTORY_LIMIT}"
        raise ValidationError(message, errors=[{"field": "limit", "message": message}])

    rows = await ledger.list_for_vehicle(db, code, limit)
    return [TransactionSummary.from_transaction(txn) for txn in rows]
