from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional

from ..services.errors import ValidationError


# largest amount a Numeric(12, 2) column holds
MAX_MONEY = Decimal("9999999999.99")


def ensure_positive_int(value, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float) and not value.is_integer():
        raise ValidationError(f"{field} must be an integer")
    try:
        number = int(value)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError(f"{field} must be an integer")
    if number < 1:
        raise ValidationError(f"{field} must be at least 1")
    return number


def ensure_money(value, field: str, default: Optional[str] = None) -> Decimal:
    """Parse a non-negative currency amount, rounded half-up to cents."""
    if value is None or value == "":
        if default is None:
            raise ValidationError(f"{field} is required")
        value = default
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"{field} must be a number")
    if not amount.is_finite() or amount < 0:
        raise ValidationError(f"{field} must be >= 0")
    if amount > MAX_MONEY:
        raise ValidationError(f"{field} must be at most {MAX_MONEY}")
    return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def ensure_max_length(value: Optional[str], field: str, limit: int = 500) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    if len(text) > limit:
        raise ValidationError(f"{field} cannot exceed {limit} characters")
    return text or None
