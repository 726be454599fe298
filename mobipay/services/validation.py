"""
Input sanitization and validation for payment requests.

Sanitizers return a cleaned value or None; validators collect per-field
messages so a request with several problems reports all of them at once.
"""
import re
from dataclasses import dataclass
from typing import Any, Optional

from mobipay.errors import ValidationError

COUNTRY_CODE = "254"
PHONE_PATTERN = re.compile(r"^254[17]\d{8}$")
VEHICLE_CODE_PATTERN = re.compile(r"^\d{1,4}$")
_NON_DIGITS = re.compile(r"\D")
# Whole shillings only; "150" or "150.0", never "150.50" or "-100"
AMOUNT_PATTERN = re.compile(r"^(\d+)(?:\.0+)?$")


@dataclass(frozen=True)
class PaymentInput:
    vehicle_code: str
    phone_number: str
    amount: int


# ---------------------------------------------------------------------------
# Sanitizers
# ---------------------------------------------------------------------------

def normalize_phone(phone: Optional[str]) -> Optional[str]:
    """
    0712345678 / 712345678 / +254 712 345 678 -> 254712345678.
    Returns None when the number cannot be a Kenyan mobile MSISDN.
    """
    if not phone:
        return None
    cleaned = _NON_DIGITS.sub("", str(phone))

    if cleaned.startswith("0"):
        cleaned = COUNTRY_CODE + cleaned[1:]
    elif cleaned.startswith(("7", "1")):
        cleaned = COUNTRY_CODE + cleaned
    elif not cleaned.startswith(COUNTRY_CODE):
        return None

    if not PHONE_PATTERN.match(cleaned):
        return None
    return cleaned


def clean_vehicle_code(code: Any) -> Optional[str]:
    if code is None:
        return None
    cleaned = _NON_DIGITS.sub("", str(code))
    return cleaned or None


def clean_amount(amount: Any) -> Optional[int]:
    if amount is None or isinstance(amount, bool):
        return None
    if isinstance(amount, int):
        return amount
    if isinstance(amount, float):
        return int(amount) if amount.is_integer() else None
    match = AMOUNT_PATTERN.match(str(amount).strip())
    return int(match.group(1)) if match else None


# ---------------------------------------------------------------------------
# Validators
# ---------------------------------------------------------------------------

def vehicle_code_error(code: Optional[str]) -> Optional[str]:
    if not code:
        return "Vehicle code is required"
    if not VEHICLE_CODE_PATTERN.match(code):
        return "Vehicle code must be 1-4 digits only"
    return None


def amount_error(amount: Optional[int], min_amount: int, max_amount: int) -> Optional[str]:
    if amount is None:
        return "Amount is required"
    if amount < min_amount:
        return f"Amount must be at least KSh {min_amount}"
    if amount > max_amount:
        return f"Amount cannot exceed KSh {max_amount:,}"
    return None


def validate_payment_request(
    vehicle_code: Any,
    phone: Any,
    amount: Any,
    min_amount: int,
    max_amount: int,
) -> PaymentInput:
    """Sanitize then validate all three fields; raises ValidationError listing every failure."""
    clean_code = clean_vehicle_code(vehicle_code)
    clean_phone = normalize_phone(phone)
    clean_amt = clean_amount(amount)

    errors: list[dict] = []
    code_msg = vehicle_code_error(clean_code)
    if code_msg:
        errors.append({"field": "vehicle_code", "message": code_msg})
    if clean_phone is None:
        errors.append({"field": "phone_number", "message": "Phone number must be in format 254XXXXXXXXX"})
    if clean_amt is None and amount not in (None, ""):
        amount_msg = "Amount must be a whole number of shillings"
    else:
        amount_msg = amount_error(clean_amt, min_amount, max_amount)
    if amount_msg:
        errors.append({"field": "amount", "message": amount_msg})

    if errors:
        raise ValidationError(errors[0]["message"], errors=errors)

    return PaymentInput(vehicle_code=clean_code, phone_number=clean_phone, amount=clean_amt)
