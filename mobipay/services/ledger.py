"""
Transaction ledger.

Rows are inserted once as PENDING and never deleted. Terminal transitions go
through `finalize`, a single UPDATE guarded by `status = 'PENDING'`, so two
writers racing on the same row cannot both apply.
"""
import logging
import secrets
import string
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mobipay.errors import PersistenceError
from mobipay.models import Transaction, Vehicle
from mobipay.services.split import SplitResult

logger = logging.getLogger(__name__)

PENDING = "PENDING"
COMPLETED = "COMPLETED"
FAILED = "FAILED"
TERMINAL_STATUSES = frozenset({COMPLETED, FAILED})

_ID_ALPHABET = string.ascii_uppercase + string.digits


def generate_transaction_id() -> str:
    """MOBI + epoch millis + 5 random uppercase alphanumerics."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(5))
    return f"MOBI{int(time.time() * 1000)}{suffix}"


@asynccontextmanager
async def persistence_guard(db: AsyncSession, action: str) -> AsyncIterator[None]:
    """Roll back and re-raise store failures as PersistenceError."""
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("Ledger failure during %s: %s", action, exc, exc_info=True)
        await db.rollback()
        raise PersistenceError("Internal server error") from exc


async def create_transaction(
    db: AsyncSession,
    vehicle_code: str,
    phone_number: str,
    fare_amount: int,
    service_charge: int,
    split: SplitResult,
) -> Transaction:
    txn = Transaction(
        transaction_id=generate_transaction_id(),
        vehicle_code=vehicle_code,
        phone_number=phone_number,
        fare_amount=fare_amount,
        service_charge=service_charge,
        total_amount=fare_amount + service_charge,
        owner_share=split.owner_share,
        platform_share=split.platform_share,
        status=PENDING,
    )
    async with persistence_guard(db, "create_transaction"):
        db.add(txn)
        await db.commit()
        await db.refresh(txn)
    logger.info(
        "Ledger insert txn=%s vehicle=%s fare=%s charge=%s split=%s",
        txn.transaction_id, vehicle_code, fare_amount, service_charge, split.split_ratio,
    )
    return txn


async def attach_gateway_ids(
    db: AsyncSession,
    txn: Transaction,
    merchant_request_id: Optional[str],
    checkout_request_id: str,
) -> bool:
    """Record provider ids. Set once: a row that already has a checkout id is left alone."""
    async with persistence_guard(db, "attach_gateway_ids"):
        result = await db.execute(
            update(Transaction)
            .where(
                Transaction.transaction_id == txn.transaction_id,
                Transaction.checkout_request_id.is_(None),
            )
            .values(
                merchant_request_id=merchant_request_id,
                checkout_request_id=checkout_request_id,
                updated_at=func.now(),
            )
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        await db.refresh(txn)
    return result.rowcount == 1


async def finalize(
    db: AsyncSession,
    txn: Transaction,
    status: str,
    receipt_number: Optional[str] = None,
    result_code: Optional[str] = None,
    result_desc: Optional[str] = None,
) -> bool:
    """
    Move a PENDING transaction to COMPLETED or FAILED.

    Returns True if this call made the transition, False if the row was
    already terminal. `txn` is refreshed either way so callers see the
    stored outcome.
    """
    if status not in TERMINAL_STATUSES:
        raise ValueError(f"{status} is not a terminal status")

    values = {
        "status": status,
        "result_code": result_code,
        "result_desc": result_desc,
        "updated_at": func.now(),
    }
    if status == COMPLETED:
        values["receipt_number"] = receipt_number

    async with persistence_guard(db, "finalize"):
        result = await db.execute(
            update(Transaction)
            .where(
                Transaction.transaction_id == txn.transaction_id,
                Transaction.status == PENDING,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        await db.refresh(txn)

    applied = result.rowcount == 1
    if applied:
        logger.info("Transaction %s updated to %s", txn.transaction_id, status)
    else:
        logger.info(
            "Transaction %s already %s, ignoring %s", txn.transaction_id, txn.status, status
        )
    return applied


async def get_transaction(db: AsyncSession, transaction_id: str) -> Optional[Transaction]:
    async with persistence_guard(db, "get_transaction"):
        result = await db.execute(
            select(Transaction).where(Transaction.transaction_id == transaction_id)
        )
        return result.scalar_one_or_none()


async def get_by_checkout_id(db: AsyncSession, checkout_request_id: str) -> Optional[Transaction]:
    async with persistence_guard(db, "get_by_checkout_id"):
        result = await db.execute(
            select(Transaction).where(Transaction.checkout_request_id == checkout_request_id)
        )
        return result.scalar_one_or_none()


async def list_for_vehicle(db: AsyncSession, vehicle_code: str, limit: int = 50) -> list[Transaction]:
    """Most recent first."""
    async with persistence_guard(db, "list_for_vehicle"):
        result = await db.execute(
            select(Transaction)
            .where(Transaction.vehicle_code == vehicle_code)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())


async def search_transactions(
    db: AsyncSession,
    status: Optional[str] = None,
    vehicle_code: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list, int]:
    """
    Filtered page of the ledger, newest first, joined to the vehicle's route
    and owner. `search` matches inside transaction id, phone or receipt.
    Returns (rows of (Transaction, route_name, owner_account), total matches).
    """
    filters = []
    if status:
        filters.append(Transaction.status == status)
    if vehicle_code:
        filters.append(Transaction.vehicle_code == vehicle_code)
    if search:
        filters.append(
            or_(
                Transaction.transaction_id.contains(search, autoescape=True),
                Transaction.phone_number.contains(search, autoescape=True),
                Transaction.receipt_number.contains(search, autoescape=True),
            )
        )

    async with persistence_guard(db, "search_transactions"):
        total = (
            await db.execute(select(func.count(Transaction.id)).where(*filters))
        ).scalar_one()
        result = await db.execute(
            select(Transaction, Vehicle.route_name, Vehicle.owner_account)
            .outerjoin(Vehicle, Vehicle.code == Transaction.vehicle_code)
            .where(*filters)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        )
        return list(result.all()), total
