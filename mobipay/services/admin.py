"""
Dashboard aggregates over the ledger.
"""
import math
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import case, extract, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from mobipay.errors import ValidationError
from mobipay.models import Transaction, Vehicle
from mobipay.schemas.schemas import (
    AdminTransaction, AnalyticsResponse, DailyTotal, HourlyTotal, OverviewResponse,
    Pagination, StatusCount, TransactionPage, TransactionSummary, VehicleRevenue,
)
from mobipay.services import ledger
from mobipay.services.ledger import persistence_guard
from mobipay.services.validation import clean_vehicle_code, vehicle_code_error

MAX_PAGE_SIZE = 200
TOP_VEHICLES = 10

PERIODS = {
    "7days": timedelta(days=7),
    "30days": timedelta(days=30),
    "1year": timedelta(days=365),
}


async def overview(db: AsyncSession) -> OverviewResponse:
    """Counts per status plus money totals over COMPLETED transactions only."""
    async with persistence_guard(db, "overview"):
        counts = dict(
            (
                await db.execute(
                    select(Transaction.status, func.count(Transaction.id)).group_by(Transaction.status)
                )
            ).all()
        )
        totals = (
            await db.execute(
                select(
                    func.coalesce(func.sum(Transaction.fare_amount), 0),
                    func.coalesce(func.sum(Transaction.service_charge), 0),
                    func.coalesce(func.sum(Transaction.owner_share), 0),
                    func.coalesce(func.sum(Transaction.platform_share), 0),
                ).where(Transaction.status == ledger.COMPLETED)
            )
        ).one()
        active_vehicles = (
            await db.execute(select(func.count(Vehicle.id)).where(Vehicle.is_active.is_(True)))
        ).scalar_one()

    return OverviewResponse(
        total_transactions=sum(counts.values()),
        completed_transactions=counts.get(ledger.COMPLETED, 0),
        pending_transactions=counts.get(ledger.PENDING, 0),
        failed_transactions=counts.get(ledger.FAILED, 0),
        total_revenue=int(totals[0]),
        total_commissions=int(totals[1]),
        owner_share=int(totals[2]),
        platform_share=int(totals[3]),
        active_vehicles=active_vehicles,
    )


async def list_transactions(
    db: AsyncSession,
    status: Optional[str] = None,
    vehicle_code: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 50,
) -> TransactionPage:
    if page < 1:
        message = "page must be at least 1"
        raise ValidationError(message, errors=[{"field": "page", "message": message}])
    if limit < 1 or limit > MAX_PAGE_SIZE:
        message = f"limit must be between 1 and {MAX_PAGE_SIZE}"
        raise ValidationError(message, errors=[{"field": "limit", "message": message}])

    code = None
    if vehicle_code:
        code = clean_vehicle_code(vehicle_code)
        message = vehicle_code_error(code)
        if message:
            raise ValidationError(message, errors=[{"field": "vehicle_code", "message": message}])

    rows, total = await ledger.search_transactions(
        db,
        status=status,
        vehicle_code=code,
        search=search.strip() if search else None,
        page=page,
        limit=limit,
    )
    items = [
        AdminTransaction(
            **TransactionSummary.from_transaction(txn).model_dump(),
            route_name=route_name,
            owner_account=owner_account,
            result_code=txn.result_code,
        )
        for txn, route_name, owner_account in rows
    ]
    return TransactionPage(
        transactions=items,
        pagination=Pagination(page=page, limit=limit, total=total, pages=math.ceil(total / limit)),
    )


async def analytics(db: AsyncSession, period: str = "7days") -> AnalyticsResponse:
    """
    Daily and hourly totals, status distribution and top vehicles for
    transactions created within `period`. Revenue counts COMPLETED fares only.
    """
    window = PERIODS.get(period)
    if window is None:
        message = f"period must be one of {', '.join(PERIODS)}"
        raise ValidationError(message, errors=[{"field": "period", "message": message}])
    since = datetime.now(timezone.utc) - window

    in_window = Transaction.created_at >= since
    revenue = func.coalesce(
        func.sum(case((Transaction.status == ledger.COMPLETED, Transaction.fare_amount), else_=0)), 0
    )
    day = func.date(Transaction.created_at)
    hour = extract("hour", Transaction.created_at)

    async with persistence_guard(db, "analytics"):
        daily = (
            await db.execute(
                select(day, func.count(Transaction.id), revenue)
                .where(in_window)
                .group_by(day)
                .order_by(day.desc())
            )
        ).all()
        hourly = (
            await db.execute(
                select(hour, func.count(Transaction.id), revenue)
                .where(in_window)
                .group_by(hour)
                .order_by(hour)
            )
        ).all()
        statuses = (
            await db.execute(
                select(Transaction.status, func.count(Transaction.id))
                .where(in_window)
                .group_by(Transaction.status)
                .order_by(Transaction.status)
            )
        ).all()
        top = (
            await db.execute(
                select(Transaction.vehicle_code, Vehicle.route_name, func.count(Transaction.id), revenue)
                .outerjoin(Vehicle, Vehicle.code == Transaction.vehicle_code)
                .where(in_window)
                .group_by(Transaction.vehicle_code, Vehicle.route_name)
                .order_by(revenue.desc(), Transaction.vehicle_code)
                .limit(TOP_VEHICLES)
            )
        ).all()

    return AnalyticsResponse(
        period=period,
        since=since,
        daily=[DailyTotal(date=str(d), transactions=n, revenue=int(r)) for d, n, r in daily],
        hourly=[HourlyTotal(hour=int(h), transactions=n, revenue=int(r)) for h, n, r in hourly],
        status_distribution=[StatusCount(status=s, count=n) for s, n in statuses],
        top_vehicles=[
            VehicleRevenue(vehicle_code=code, route_name=route, transactions=n, revenue=int(r))
            for code, route, n, r in top
        ],
    )
