"""Decimal parsing and arithmetic helpers shared by the engines."""
from decimal import Decimal, InvalidOperation

from mrp_ledger.exceptions import ValidationError

ZERO = Decimal('0')
HUNDRED = Decimal('100')
CENT = Decimal('0.01')

# Quantities, costs and percentages are stored with four decimal places
QUANTITY_PLACES = 4
QUANTITY_DIGITS = 14


def parse_decimal(value, field: str) -> Decimal:
    """
    Convert user input (str, int, float, Decimal) to Decimal.

    Floats go through str() so 0.1 becomes Decimal('0.1'), not its binary
    expansion. Booleans are rejected even though bool is an int subclass.

    Raises:
        ValidationError: if the value is missing or not a finite number.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f'{field} is required', field=field)

    if isinstance(value, Decimal):
        result = value
    else:
        text = str(value).strip()
        if not text:
            raise ValidationError(f'{field} is required', field=field)
        try:
            result = Decimal(text)
        except (InvalidOperation, ValueError):
            raise ValidationError(f'{field} must be a number', field=field, value=value)

    if not result.is_finite():
        raise ValidationError(f'{field} must be a finite number', field=field, value=value)
    return result


def parse_positive(value, field: str) -> Decimal:
    """Parse a strictly positive decimal."""
    result = parse_decimal(value, field)
    if result <= ZERO:
        raise ValidationError(f'{field} must be greater than 0', field=field, value=value)
    return result


def fit_scale(value: Decimal, field: str, places: int = QUANTITY_PLACES,
              digits: int = QUANTITY_DIGITS) -> Decimal:
    """
    Reject values the Numeric(digits, places) columns cannot store exactly.

    A value with more decimal places would be silently rounded on write, and
    the stored balance would no longer match the one held in memory.

    Raises:
        ValidationError: too many decimal places or integer digits.
    """
    if abs(value) >= Decimal(10) ** (digits - places):
        raise ValidationError(
            f'{field} must have at most {digits - places} integer digits',
            field=field,
            value=value,
        )
    if value != value.quantize(Decimal(1).scaleb(-places)):
        raise ValidationError(
            f'{field} must have at most {places} decimal places',
            field=field,
            value=value,
        )
    return value


def parse_quantity(value, field: str, places: int = QUANTITY_PLACES) -> Decimal:
    """Parse a strictly positive quantity that fits the stock columns."""
    return fit_scale(parse_positive(value, field), field, places)


def parse_percentage(value, field: str = 'waste_percentage') -> Decimal:
    """Parse a percentage in [0, 100]; None means 0."""
    if value is None:
        return ZERO
    result = parse_decimal(value, field)
    if result < ZERO or result > HUNDRED:
        raise ValidationError(f'{field} must be between 0 and 100', field=field, value=value)
    return fit_scale(result, field, digits=7)


def apply_percentage(value: Decimal, pct: Decimal) -> Decimal:
    """value * (1 + pct/100); pct == 0 returns value unchanged."""
    if not pct:
        return value
    return value * (1 + pct / HUNDRED)


def safe_divide(numerator: Decimal, denominator: Decimal) -> Decimal:
    """Divide, returning 0 when the denominator is 0."""
    if not denominator:
        return ZERO
    return numerator / denominator


def percentage_of(part: Decimal, total: Decimal) -> Decimal:
    """part / total * 100, or 0 for an empty total."""
    return safe_divide(part * HUNDRED, total)


def round2(value: Decimal) -> Decimal:
    """Round to two decimal places (cents, percentage points)."""
    return Decimal(value).quantize(CENT)


def parse_id(value, field: str) -> int:
    """Parse a database id (positive integer)."""
    if value is None or isinstance(value, bool):
        raise ValidationError(f'{field} is required', field=field)
    try:
        result = int(str(value).strip())
    except ValueError:
        raise ValidationError(f'{field} must be an integer', field=field, value=value)
    if result <= 0:
        raise ValidationError(f'{field} must be a positive integer', field=field, value=value)
    return result
