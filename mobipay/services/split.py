"""
Service charge split between the vehicle owner and the platform account.
"""
from dataclasses import dataclass
from decimal import Decimal

from mobipay.errors import InvalidChargeError, InvalidPercentageError
from mobipay.services.fees import round_half_up


@dataclass(frozen=True)
class SplitResult:
    service_charge: int
    owner_share: int
    platform_share: int

    @property
    def owner_percentage(self) -> float:
        return round(self.owner_share / self.service_charge * 100, 2)

    @property
    def platform_percentage(self) -> float:
        return round(self.platform_share / self.service_charge * 100, 2)

    @property
    def split_ratio(self) -> str:
        return f"{self.owner_share}:{self.platform_share}"


def compute_split(service_charge: int, platform_percent: float) -> SplitResult:
    """
    platform = round(charge * percent / 100), owner gets the remainder.

    When that leaves the owner with nothing and more than one shilling is being
    split, one shilling moves back from the platform to the owner. No other
    owner minimum is applied.
    """
    if service_charge < 1:
        raise InvalidChargeError("Transaction charge must be at least KSh 1")
    if not 0 <= platform_percent <= 100:
        raise InvalidPercentageError("Developer percentage must be between 0 and 100")

    platform_share = round_half_up(
        Decimal(service_charge) * Decimal(str(platform_percent)) / Decimal(100)
    )
    owner_share = service_charge - platform_share

    if owner_share < 1 and service_charge > 1:
        platform_share -= 1
        owner_share = service_charge - platform_share

    return SplitResult(
        service_charge=service_charge,
        owner_share=owner_share,
        platform_share=platform_share,
    )
