"""
Inventory analysis reports derived from the stock ledger (read only).

- Aging: receipts ('in' movements) bucketed by days since receipt.
- ABC: consumption ('out' movements) ranked by value or quantity and
  classified on the cumulative percentage curve.
"""
import logging
from datetime import datetime, date, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Any, Sequence

from flask import current_app, has_app_context

from mrp_ledger.models import Product, StockMovement, MovementType
from mrp_ledger.exceptions import ValidationError
from mrp_ledger.utils.number_format import ZERO, percentage_of, round2

logger = logging.getLogger(__name__)

DEFAULT_AGING_PERIODS = (30, 60, 90)
ABC_BASES = ('value', 'quantity')
DEFAULT_CLASS_A_THRESHOLD = Decimal('80')
DEFAULT_CLASS_B_THRESHOLD = Decimal('95')


def get_inventory_aging(session, periods: Sequence[int] = None, as_of=None) -> Dict[str, Any]:
    """
    Bucket 'in' movements of active products by age.

    Buckets are [0, p1], (p1, p2], ..., (pn, inf) in whole days, so a
    receipt exactly p1 days old lands in the first bucket. Value uses the
    unit cost recorded on the movement.

    Args:
        periods: Strictly ascending positive day boundaries (default from
            AGING_DEFAULT_PERIODS)
        as_of: Reference date (date or datetime, default today UTC);
            receipts after it are ignored
    """
    periods = _parse_periods(periods if periods is not None else _config('AGING_DEFAULT_PERIODS', DEFAULT_AGING_PERIODS))
    as_of = _as_date(as_of)
    labels = _bucket_labels(periods)

    rows = session.query(StockMovement, Product).join(
        Product, StockMovement.product_id == Product.id
    ).filter(
        StockMovement.movement_type == MovementType.IN,
        Product.is_active.is_(True),
    ).order_by(StockMovement.product_id, StockMovement.id).all()

    totals = {label: _empty_bucket() for label in labels}
    products: Dict[int, Dict[str, Any]] = {}

    for movement, product in rows:
        received = _utc_date(movement.movement_date)
        if received > as_of:
            continue
        days_old = (as_of - received).days
        label = labels[_bucket_index(days_old, periods)]
        value = Decimal(movement.quantity) * Decimal(movement.unit_cost)

        entry = products.get(product.id)
        if entry is None:
            entry = products[product.id] = {
                'product_id': product.id,
                'product_name': product.name,
                'sku': product.sku,
                'buckets': {lbl: _empty_bucket() for lbl in labels},
                'total_quantity': ZERO,
                'total_value': ZERO,
            }

        for bucket in (entry['buckets'][label], totals[label]):
            bucket['quantity'] += movement.quantity
            bucket['value'] += value
        entry['total_quantity'] += movement.quantity
        entry['total_value'] += value

    return {
        'as_of': as_of.isoformat(),
        'periods': list(periods),
        'buckets': labels,
        'products': [products[pid] for pid in sorted(products)],
        'totals': totals,
    }


def get_abc_analysis(session, period_days, basis: str) -> Dict[str, Any]:
    """
    Classify products by consumption over the last period_days.

    Products are sorted by the chosen basis descending, ties broken by
    product id, and labelled A while the cumulative percentage is within the
    A threshold, B within the B threshold, C otherwise.

    Args:
        period_days: Look-back window in days (positive)
        basis: 'value' (quantity * recorded unit cost) or 'quantity'
    """
    if basis not in ABC_BASES:
        raise ValidationError(
            f"basis must be one of: {', '.join(ABC_BASES)}",
            field='basis',
            value=basis,
        )
    period_days = _parse_period_days(period_days)
    threshold_a = Decimal(str(_config('ABC_CLASS_A_THRESHOLD', DEFAULT_CLASS_A_THRESHOLD)))
    threshold_b = Decimal(str(_config('ABC_CLASS_B_THRESHOLD', DEFAULT_CLASS_B_THRESHOLD)))
    since = datetime.now(timezone.utc) - timedelta(days=period_days)

    rows = session.query(StockMovement, Product).join(
        Product, StockMovement.product_id == Product.id
    ).filter(
        StockMovement.movement_type == MovementType.OUT,
        StockMovement.movement_date >= since,
    ).all()

    usage: Dict[int, Dict[str, Any]] = {}
    for movement, product in rows:
        entry = usage.setdefault(product.id, {
            'product_id': product.id,
            'product_name': product.name,
            'sku': product.sku,
            'total_quantity': ZERO,
            'total_value': ZERO,
        })
        entry['total_quantity'] += Decimal(movement.quantity)
        entry['total_value'] += Decimal(movement.quantity) * Decimal(movement.unit_cost)

    metric_key = 'total_value' if basis == 'value' else 'total_quantity'
    ranked = sorted(usage.values(), key=lambda e: (-e[metric_key], e['product_id']))
    grand_total = sum((e[metric_key] for e in ranked), ZERO)

    classes = {c: {'count': 0, 'total': ZERO} for c in ('A', 'B', 'C')}
    cumulative = ZERO
    classified = []
    for rank, entry in enumerate(ranked, start=1):
        share = percentage_of(entry[metric_key], grand_total)
        cumulative += share
        if grand_total == ZERO:
            abc_class = 'C'
        elif cumulative <= threshold_a:
            abc_class = 'A'
        elif cumulative <= threshold_b:
            abc_class = 'B'
        else:
            abc_class = 'C'

        classes[abc_class]['count'] += 1
        classes[abc_class]['total'] += entry[metric_key]
        classified.append({
            **entry,
            'rank': rank,
            'percentage': round2(share),
            'cumulative_percentage': round2(cumulative),
            'abc_class': abc_class,
        })

    for bucket in classes.values():
        bucket['percentage'] = round2(percentage_of(bucket['total'], grand_total))

    logger.debug(f"ABC analysis over {period_days} days by {basis}: {len(classified)} products")

    return {
        'summary': {
            'period_days': period_days,
            'basis': basis,
            'since': since.isoformat(),
            'total_products': len(classified),
            'grand_total': grand_total,
            'thresholds': {'A': threshold_a, 'B': threshold_b},
            'classes': classes,
        },
        'classified_products': classified,
    }


# =====================================================
# PRIVATE HELPERS
# =====================================================

def _empty_bucket():
    return {'quantity': ZERO, 'value': ZERO}


def _bucket_labels(periods: List[int]) -> List[str]:
    labels = []
    lower = 0
    for bound in periods:
        labels.append(f"{lower}-{bound}")
        lower = bound + 1
    labels.append(f"{periods[-1]}+")
    return labels


def _bucket_index(days_old: int, periods: List[int]) -> int:
    for idx, bound in enumerate(periods):
        if days_old <= bound:
            return idx
    return len(periods)


def _parse_periods(periods) -> List[int]:
    if isinstance(periods, str):
        periods = [p for p in periods.split(',') if p.strip()]
    try:
        parsed = [int(p) for p in periods]
    except (TypeError, ValueError):
        raise ValidationError('periods must be a list of integers', field='periods', value=periods)

    if not parsed:
        raise ValidationError('At least one aging period is required', field='periods')
    if any(p <= 0 for p in parsed):
        raise ValidationError('Aging periods must be positive', field='periods', value=parsed)
    if any(b <= a for a, b in zip(parsed, parsed[1:])):
        raise ValidationError('Aging periods must be strictly ascending', field='periods', value=parsed)
    return parsed


def _parse_period_days(period_days) -> int:
    try:
        value = int(period_days)
    except (TypeError, ValueError):
        raise ValidationError('period_days must be an integer', field='period_days', value=period_days)
    if value <= 0:
        raise ValidationError('period_days must be greater than 0', field='period_days', value=period_days)
    return value


def _as_date(value) -> date:
    if value is None:
        return datetime.now(timezone.utc).date()
    if isinstance(value, datetime):
        return _utc_date(value)
    return value


def _utc_date(moment: datetime) -> date:
    """Calendar date in UTC; naive timestamps are already UTC."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.date()


def _config(key, default):
    if has_app_context():
        return current_app.config.get(key, default)
    return default
