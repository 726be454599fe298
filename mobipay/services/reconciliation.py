"""
Settlement reconciliation.

A PENDING transaction is finalized by whichever arrives first:
  - the provider callback (POST /v1/mpesa/callback), keyed by CheckoutRequestID
  - a status poll, which queries the provider for the same checkout id

Both paths end in ledger.finalize, whose UPDATE only matches PENDING rows.
The first writer wins; later or duplicate notifications are no-ops that
still report success.
"""
import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from mobipay.errors import UnknownTransactionError, ValidationError
from mobipay.models import Transaction
from mobipay.schemas.schemas import CallbackAck, CallbackEnvelope, StkCallback
from mobipay.services import ledger
from mobipay.services.mpesa import MpesaGateway, normalize_result_code, result_message

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconcileOutcome:
    transaction_id: str
    status: str
    applied: bool


def _outcome(txn: Transaction, applied: bool) -> ReconcileOutcome:
    return ReconcileOutcome(transaction_id=txn.transaction_id, status=txn.status, applied=applied)


async def apply_result(
    db: AsyncSession,
    txn: Transaction,
    result_code: Union[int, str, None],
    result_desc: Optional[str] = None,
    receipt_number: Optional[str] = None,
) -> ReconcileOutcome:
    """Result code 0 completes the transaction, anything else fails it."""
    if txn.status in ledger.TERMINAL_STATUSES:
        logger.info("Transaction %s already %s, notification ignored", txn.transaction_id, txn.status)
        return _outcome(txn, applied=False)

    code = normalize_result_code(result_code)
    status = ledger.COMPLETED if code == "0" else ledger.FAILED
    applied = await ledger.finalize(
        db,
        txn,
        status,
        receipt_number=receipt_number if status == ledger.COMPLETED else None,
        result_code=code,
        result_desc=result_desc or result_message(code),
    )
    return _outcome(txn, applied)


# ---------------------------------------------------------------------------
# Callback path
# ---------------------------------------------------------------------------

def parse_callback(payload: Any) -> StkCallback:
    """Validate the stkCallback envelope; raises ValidationError on a bad shape."""
    try:
        envelope = CallbackEnvelope.model_validate(payload)
    except SchemaValidationError as exc:
        errors = [
            {"field": ".".join(str(p) for p in err["loc"]), "message": err["msg"]}
            for err in exc.errors()
        ]
        message = f"Invalid callback structure: {errors[0]['field']}" if errors else "Invalid callback structure"
        raise ValidationError(message, errors=errors)
    return envelope.Body.stkCallback


async def reconcile_callback(db: AsyncSession, callback: StkCallback) -> ReconcileOutcome:
    txn = await ledger.get_by_checkout_id(db, callback.CheckoutRequestID)
    if txn is None:
        raise UnknownTransactionError(
            f"Transaction not found for checkout ID {callback.CheckoutRequestID}"
        )

    receipt = callback.metadata_value("MpesaReceiptNumber")
    paid = callback.metadata_value("Amount")
    if paid is not None and normalize_result_code(callback.ResultCode) == "0":
        try:
            if int(float(paid)) != txn.total_amount:
                logger.warning(
                    "Callback amount %s differs from ledger total %s for txn=%s",
                    paid, txn.total_amount, txn.transaction_id,
                )
        except (TypeError, ValueError):
            logger.warning("Unparseable callback amount %r for txn=%s", paid, txn.transaction_id)

    return await apply_result(
        db,
        txn,
        callback.ResultCode,
        result_desc=callback.ResultDesc,
        receipt_number=str(receipt) if receipt is not None else None,
    )


async def handle_gateway_callback(db: AsyncSession, payload: Any) -> CallbackAck:
    """
    Entry point for provider callbacks. Malformed envelopes raise
    ValidationError. Unknown checkout ids are logged and acknowledged so
    the provider stops retrying.
    """
    try:
        callback = parse_callback(payload)
    except ValidationError as exc:
        logger.error("Invalid M-Pesa callback: %s", exc.message)
        raise

    logger.info(
        "M-Pesa callback checkout=%s result=%s (%s)",
        callback.CheckoutRequestID, callback.ResultCode, callback.ResultDesc,
    )
    try:
        outcome = await reconcile_callback(db, callback)
    except UnknownTransactionError as exc:
        logger.error("%s; callback discarded", exc.message)
        return CallbackAck()

    logger.info(
        "Callback for txn=%s -> %s (applied=%s)", outcome.transaction_id, outcome.status, outcome.applied
    )
    return CallbackAck()


# ---------------------------------------------------------------------------
# Poll path
# ---------------------------------------------------------------------------

async def reconcile_by_query(
    db: AsyncSession,
    gateway: MpesaGateway,
    txn: Transaction,
) -> ReconcileOutcome:
    """
    Query the provider for a PENDING transaction. Gateway failures and
    still-processing answers leave the transaction PENDING.
    """
    if txn.status != ledger.PENDING or not txn.checkout_request_id:
        return _outcome(txn, applied=False)

    result = await gateway.query(txn.checkout_request_id)
    if not result.success:
        logger.info(
            "Status query for txn=%s not conclusive: %s", txn.transaction_id, result.error
        )
        return _outcome(txn, applied=False)
    if not result.is_final:
        return _outcome(txn, applied=False)

    return await apply_result(db, txn, result.result_code, result_desc=result.message)
