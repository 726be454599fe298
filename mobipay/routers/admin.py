"""
Admin router (JWT, role=admin): overview, transactions, analytics, vehicles,
accounts, settings.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from mobipay.database import get_db
from mobipay.middleware.auth import get_current_admin
from mobipay.schemas.schemas import (
    AccountCreateRequest, AccountResponse, AnalyticsResponse, OverviewResponse,
    SettingResponse, SettingUpdateRequest, TransactionPage, TransactionStatusEnum,
    VehicleCreateRequest, VehicleResponse, VehicleStatusRequest,
)
from mobipay.services import admin, registry, system_settings

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/v1/admin",
    tags=["Admin"],
    dependencies=[Depends(get_current_admin)],
)


@router.get("/overview", response_model=OverviewResponse)
async def get_overview(db: AsyncSession = Depends(get_db)):
    return await admin.overview(db)


@router.get("/transactions", response_model=TransactionPage)
async def list_transactions(
    status_filter: Optional[TransactionStatusEnum] = Query(default=None, alias="status"),
    vehicle_code: Optional[str] = Query(default=None),
    search: Optional[str] = Query(default=None),
    page: int = Query(default=1),
    limit: int = Query(default=50),
    db: AsyncSession = Depends(get_db),
):
    """Ledger page, newest first. `search` matches transaction id, phone or receipt."""
    return await admin.list_transactions(
        db,
        status=status_filter.value if status_filter else None,
        vehicle_code=vehicle_code,
        search=search,
        page=page,
        limit=limit,
    )


@router.get("/analytics", response_model=AnalyticsResponse)
async def get_analytics(period: str = Query(default="7days"), db: AsyncSession = Depends(get_db)):
    """Daily/hourly totals, status distribution and top vehicles for 7days, 30days or 1year."""
    return await admin.analytics(db, period)


@router.get("/vehicles", response_model=list[VehicleResponse])
async def list_vehicles(db: AsyncSession = Depends(get_db)):
    vehicles = await registry.list_vehicles(db)
    return [VehicleResponse.model_validate(v) for v in vehicles]


@router.post("/vehicles", status_code=status.HTTP_201_CREATED, response_model=VehicleResponse)
async def create_vehicle(payload: VehicleCreateRequest, db: AsyncSession = Depends(get_db)):
    vehicle = await registry.create_vehicle(
        db, code=payload.code, route_name=payload.route_name, owner_account=payload.owner_account
    )
    return VehicleResponse.model_validate(vehicle)


@router.patch("/vehicles/{code}", response_model=VehicleResponse)
async def update_vehicle_status(
    code: str,
    payload: VehicleStatusRequest,
    db: AsyncSession = Depends(get_db),
):
    """Activate/deactivate a vehicle. Deactivated vehicles cannot take new payments."""
    vehicle = await registry.set_vehicle_active(db, code, payload.is_active)
    return VehicleResponse.model_validate(vehicle)


@router.post("/accounts", status_code=status.HTTP_201_CREATED, response_model=AccountResponse)
async def create_account(payload: AccountCreateRequest, db: AsyncSession = Depends(get_db)):
    account = await registry.create_account(
        db,
        account_number=payload.account_number,
        account_type=payload.account_type.value,
        account_name=payload.account_name,
    )
    return AccountResponse.model_validate(account)


@router.get("/settings", response_model=list[SettingResponse])
async def list_settings(db: AsyncSession = Depends(get_db)):
    rows = await system_settings.list_settings(db)
    return [SettingResponse.model_validate(r) for r in rows]


@router.put("/settings/{key}", response_model=SettingResponse)
async def update_setting(
    key: str,
    payload: SettingUpdateRequest,
    db: AsyncSession = Depends(get_db),
):
    """Takes effect for transactions created after the update."""
    row = await system_settings.update_setting(db, key, str(payload.value))
    return SettingResponse.model_validate(row)
