"""
Vehicles and payee accounts: lookups used by the payment flow plus the
registration helpers behind the admin API.
"""
import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from mobipay.errors import BusinessRuleError, NotFoundError
from mobipay.models import Account, Vehicle
from mobipay.services.ledger import persistence_guard

logger = logging.getLogger(__name__)

OWNER = "OWNER"
PLATFORM = "PLATFORM"


@dataclass(frozen=True)
class Payees:
    vehicle: Vehicle
    owner: Account
    platform: Account


async def resolve_payees(db: AsyncSession, vehicle_code: str) -> Payees:
    """
    Active vehicle, its active owner account and the active platform account.
    Raises BusinessRuleError when any of them is missing or inactive.
    """
    async with persistence_guard(db, "resolve_payees"):
        vehicle = (
            await db.execute(
                select(Vehicle).where(Vehicle.code == vehicle_code, Vehicle.is_active.is_(True))
            )
        ).scalar_one_or_none()
        if vehicle is None:
            raise BusinessRuleError("Invalid vehicle code or vehicle is not active")

        owner = (
            await db.execute(
                select(Account).where(
                    Account.account_number == vehicle.owner_account,
                    Account.account_type == OWNER,
                    Account.is_active.is_(True),
                )
            )
        ).scalar_one_or_none()
        if owner is None:
            raise BusinessRuleError("Vehicle owner account not found or inactive")

        platform = (
            await db.execute(
                select(Account)
                .where(Account.account_type == PLATFORM, Account.is_active.is_(True))
                .order_by(Account.id)
                .limit(1)
            )
        ).scalar_one_or_none()
        if platform is None:
            raise BusinessRuleError("Platform account not found or inactive")

    return Payees(vehicle=vehicle, owner=owner, platform=platform)


async def get_vehicle(db: AsyncSession, code: str) -> Vehicle:
    async with persistence_guard(db, "get_vehicle"):
        vehicle = (await db.execute(select(Vehicle).where(Vehicle.code == code))).scalar_one_or_none()
    if vehicle is None:
        raise NotFoundError("Vehicle not found")
    return vehicle


async def list_vehicles(db: AsyncSession) -> list[Vehicle]:
    async with persistence_guard(db, "list_vehicles"):
        result = await db.execute(select(Vehicle).order_by(Vehicle.code))
        return list(result.scalars().all())


async def _active_platform_exists(db: AsyncSession) -> bool:
    existing = (
        await db.execute(
            select(Account.id).where(Account.account_type == PLATFORM, Account.is_active.is_(True))
        )
    ).first()
    return existing is not None


async def create_account(
    db: AsyncSession,
    account_number: str,
    account_type: str,
    account_name: str,
) -> Account:
    """
    Register a payee account. At most one PLATFORM account may be active;
    the partial unique index on `accounts` enforces it when two
    registrations race past the check below.
    """
    if account_type == PLATFORM and await _active_platform_exists(db):
        raise BusinessRuleError("An active platform account already exists")

    account = Account(account_number=account_number, account_type=account_type, account_name=account_name)
    db.add(account)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        taken = (
            await db.execute(select(Account.id).where(Account.account_number == account_number))
        ).first()
        if taken is None and account_type == PLATFORM:
            raise BusinessRuleError("An active platform account already exists")
        raise BusinessRuleError(f"Account {account_number} already exists")
    await db.refresh(account)
    logger.info("Registered %s account %s", account_type, account_number)
    return account


async def create_vehicle(
    db: AsyncSession,
    code: str,
    route_name: str,
    owner_account: str,
) -> Vehicle:
    owner = (
        await db.execute(
            select(Account).where(
                Account.account_number == owner_account,
                Account.account_type == OWNER,
                Account.is_active.is_(True),
            )
        )
    ).scalar_one_or_none()
    if owner is None:
        raise BusinessRuleError("Owner account not found or inactive")

    vehicle = Vehicle(code=code, route_name=route_name, owner_account=owner_account)
    db.add(vehicle)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise BusinessRuleError(f"Vehicle code {code} is already registered")
    await db.refresh(vehicle)
    logger.info("Registered vehicle %s on route %s", code, route_name)
    return vehicle


async def set_vehicle_active(db: AsyncSession, code: str, is_active: bool) -> Vehicle:
    vehicle = await get_vehicle(db, code)
    vehicle.is_active = is_active
    await db.commit()
    await db.refresh(vehicle)
    logger.info("Vehicle %s active=%s", code, is_active)
    return vehicle
