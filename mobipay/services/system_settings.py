"""
Typed access to the key/value `system_settings` table.

Values are stored as text; they are parsed and range-checked here so the
calculators only ever see numbers.
"""
import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mobipay.config import get_settings
from mobipay.errors import NotFoundError, ValidationError
from mobipay.models import SystemSetting
from mobipay.services.ledger import persistence_guard

logger = logging.getLogger(__name__)
settings = get_settings()

DEVELOPER_PERCENTAGE = "developer_percentage"
MIN_AMOUNT = "min_amount"

DEFAULT_SETTINGS: dict[str, tuple[str, str]] = {
    DEVELOPER_PERCENTAGE: (
        str(settings.default_developer_percentage),
        "Percentage of transaction fee that goes to the platform",
    ),
    MIN_AMOUNT: (str(settings.default_min_amount), "Minimum transaction amount allowed"),
}


@dataclass(frozen=True)
class PaymentSettings:
    developer_percentage: float
    min_amount: int


def parse_percentage(raw: str | None) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"{DEVELOPER_PERCENTAGE} must be a number")
    if not 0 <= value <= 100:
        raise ValidationError(f"{DEVELOPER_PERCENTAGE} must be between 0 and 100")
    return value


def parse_min_amount(raw: str | None) -> int:
    try:
        value = int(str(raw).strip())
    except (TypeError, ValueError):
        raise ValidationError(f"{MIN_AMOUNT} must be a whole number")
    if value < 1 or value > settings.max_amount:
        raise ValidationError(f"{MIN_AMOUNT} must be between 1 and {settings.max_amount}")
    return value


PARSERS = {
    DEVELOPER_PERCENTAGE: parse_percentage,
    MIN_AMOUNT: parse_min_amount,
}


async def load_payment_settings(db: AsyncSession) -> PaymentSettings:
    """
    Read the split percentage and minimum fare. Missing or unparseable rows
    fall back to the configured defaults (logged).
    """
    async with persistence_guard(db, "load_payment_settings"):
        result = await db.execute(
            select(SystemSetting.setting_key, SystemSetting.setting_value).where(
                SystemSetting.setting_key.in_(list(PARSERS))
            )
        )
        raw = {row.setting_key: row.setting_value for row in result}

    percentage = settings.default_developer_percentage
    min_amount = settings.default_min_amount
    if DEVELOPER_PERCENTAGE in raw:
        try:
            percentage = parse_percentage(raw[DEVELOPER_PERCENTAGE])
        except ValidationError as exc:
            logger.warning("Ignoring stored %s: %s", DEVELOPER_PERCENTAGE, exc.message)
    if MIN_AMOUNT in raw:
        try:
            min_amount = parse_min_amount(raw[MIN_AMOUNT])
        except ValidationError as exc:
            logger.warning("Ignoring stored %s: %s", MIN_AMOUNT, exc.message)

    return PaymentSettings(developer_percentage=percentage, min_amount=min_amount)


async def list_settings(db: AsyncSession) -> list[SystemSetting]:
    result = await db.execute(select(SystemSetting).order_by(SystemSetting.setting_key))
    return list(result.scalars().all())


async def update_setting(db: AsyncSession, key: str, value: str) -> SystemSetting:
    """Validate and store a known setting. Applies to transactions created afterwards."""
    parser = PARSERS.get(key)
    if parser is None:
        raise NotFoundError(f"Unknown setting: {key}")
    parsed = parser(value)

    result = await db.execute(select(SystemSetting).where(SystemSetting.setting_key == key))
    row = result.scalar_one_or_none()
    if row is None:
        row = SystemSetting(setting_key=key, description=DEFAULT_SETTINGS[key][1], setting_value=str(parsed))
        db.add(row)
    else:
        row.setting_value = str(parsed)
    await db.commit()
    await db.refresh(row)
    logger.info("Setting %s updated to %s", key, row.setting_value)
    return row


async def seed_default_settings(db: AsyncSession) -> None:
    result = await db.execute(select(SystemSetting.setting_key))
    existing = set(result.scalars().all())
    for key, (value, description) in DEFAULT_SETTINGS.items():
        if key not in existing:
            db.add(SystemSetting(setting_key=key, setting_value=value, description=description))
    await db.commit()
