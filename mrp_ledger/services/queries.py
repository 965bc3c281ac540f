"""
Typed query parameters for the stock ledger read operations.

Each field documents its effect; None always means "no filter".
"""
from dataclasses import dataclass
from datetime import datetime, date, time, timedelta, timezone
from typing import Optional

from mrp_ledger.exceptions import ValidationError
from mrp_ledger.models import ProductType, MovementType, ReferenceType


def _parse_enum(enum_cls, raw, field):
    if raw is None or raw == '':
        return None
    try:
        return enum_cls(str(raw).lower())
    except ValueError:
        allowed = ', '.join(m.value for m in enum_cls)
        raise ValidationError(f'{field} must be one of: {allowed}', field=field, value=raw)


def _parse_day(raw, field) -> Optional[date]:
    if raw is None or str(raw).strip() == '':
        return None
    try:
        return datetime.strptime(str(raw).strip(), '%Y-%m-%d').date()
    except ValueError:
        raise ValidationError(f'{field} must be a date in YYYY-MM-DD format', field=field, value=raw)


def _parse_flag(raw) -> bool:
    return str(raw).lower() in ('1', 'true', 'yes', 'on')


@dataclass(frozen=True)
class DateRange:
    """Half-open [start, end) window on movement_date."""
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @classmethod
    def from_days(cls, start_day: Optional[date], end_day: Optional[date]):
        """Whole-day range: end_day is inclusive."""
        start = datetime.combine(start_day, time.min, tzinfo=timezone.utc) if start_day else None
        end = (
            datetime.combine(end_day + timedelta(days=1), time.min, tzinfo=timezone.utc)
            if end_day else None
        )
        if start and end and start >= end:
            raise ValidationError('start_date must not be after end_date', field='start_date')
        return cls(start=start, end=end)

    @classmethod
    def from_args(cls, args):
        return cls.from_days(
            _parse_day(args.get('start_date'), 'start_date'),
            _parse_day(args.get('end_date'), 'end_date'),
        )


@dataclass(frozen=True)
class StockLevelQuery:
    product_type: Optional[ProductType] = None  # only products of this type
    category: Optional[str] = None  # exact category match
    low_stock_only: bool = False  # current_stock <= reorder_level
    include_inactive: bool = False  # also list deactivated products

    @classmethod
    def from_args(cls, args):
        return cls(
            product_type=_parse_enum(ProductType, args.get('product_type'), 'product_type'),
            category=(args.get('category') or '').strip() or None,
            low_stock_only=_parse_flag(args.get('low_stock', '')),
            include_inactive=_parse_flag(args.get('include_inactive', '')),
        )


VALUATION_GROUPS = ('product_type', 'category')


@dataclass(frozen=True)
class ValuationQuery:
    product_type: Optional[ProductType] = None  # only products of this type
    category: Optional[str] = None  # exact category match
    group_by: str = 'product_type'  # 'product_type' or 'category'

    def __post_init__(self):
        if self.group_by not in VALUATION_GROUPS:
            raise ValidationError(
                f"group_by must be one of: {', '.join(VALUATION_GROUPS)}",
                field='group_by',
                value=self.group_by,
            )

    @classmethod
    def from_args(cls, args):
        return cls(
            product_type=_parse_enum(ProductType, args.get('product_type'), 'product_type'),
            category=(args.get('category') or '').strip() or None,
            group_by=args.get('group_by') or 'product_type',
        )

    @property
    def cache_key(self):
        product_type = self.product_type.value if self.product_type else 'all'
        return f"{product_type}:{self.category or 'all'}:{self.group_by}"


@dataclass(frozen=True)
class MovementQuery:
    product_id: Optional[int] = None  # one product's movements
    movement_type: Optional[MovementType] = None  # 'in' or 'out'
    reference_type: Optional[ReferenceType] = None  # e.g. manufacturing_order
    reference_id: Optional[str] = None  # e.g. the MO id
    date_range: DateRange = DateRange()  # window on movement_date

    @classmethod
    def from_args(cls, args):
        product_id = args.get('product_id')
        if product_id not in (None, ''):
            try:
                product_id = int(product_id)
            except (TypeError, ValueError):
                raise ValidationError('product_id must be an integer', field='product_id', value=product_id)
        else:
            product_id = None
        return cls(
            product_id=product_id,
            movement_type=_parse_enum(MovementType, args.get('movement_type'), 'movement_type'),
            reference_type=_parse_enum(ReferenceType, args.get('reference_type'), 'reference_type'),
            reference_id=(args.get('reference_id') or '').strip() or None,
            date_range=DateRange.from_args(args),
        )
