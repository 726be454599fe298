"""
Service charge calculation.
"""
from decimal import Decimal, ROUND_HALF_UP

# ---------------------------------------------------------------------------
# Tier table: (upper bound inclusive, percentage). First match wins.
# ---------------------------------------------------------------------------
CHARGE_TIERS: list[tuple[int | None, Decimal]] = [
    (500, Decimal("1.5")),
    (1000, Decimal("1.2")),
    (2000, Decimal("1.0")),
    (None, Decimal("0.8")),
]


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def charge_percentage(fare_amount: int) -> Decimal:
    for upper, percentage in CHARGE_TIERS:
        if upper is None or fare_amount <= upper:
            return percentage
    return CHARGE_TIERS[-1][1]


def compute_service_charge(fare_amount: int) -> int:
    """
    Returns the service charge for a fare, rounded half-up to whole shillings.
    Assumes a positive integer fare (validated upstream).
    """
    percentage = charge_percentage(fare_amount)
    return round_half_up(Decimal(fare_amount) * percentage / Decimal(100))
