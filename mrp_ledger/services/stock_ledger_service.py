"""
Stock ledger service with transactional logic.

Every change to Product.current_stock goes through _apply_movement, which
locks the product row, writes the balance with a compare-and-swap UPDATE and
appends the ledger entry in the same transaction. Public operations commit
once, so multi-movement operations (transfers, material consumption) are
all-or-nothing.
"""
import logging
import uuid
from decimal import Decimal
from typing import List, Dict, Optional, Any

from flask import current_app, has_app_context
from sqlalchemy import update
from sqlalchemy.orm.attributes import set_committed_value

from mrp_ledger.models import (
    Product, StockMovement, MovementType, ReferenceType, AuditAction
)
from mrp_ledger.exceptions import (
    LedgerError, ValidationError, NotFoundError, InsufficientStockError, ConcurrencyConflictError
)
from mrp_ledger.services.audit_service import log_action
from mrp_ledger.services.queries import DateRange, StockLevelQuery, ValuationQuery, MovementQuery
from mrp_ledger.blueprints.metrics import stock_movements_total
from mrp_ledger.utils.number_format import ZERO, parse_decimal, parse_quantity, parse_id, fit_scale

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3

QUALITY_PASSED = 'passed'
QUALITY_STATUSES = ('passed', 'failed', 'rework')


def record_movement(
    session,
    product_id: int,
    movement_type,
    quantity,
    reference_type=None,
    reference_id=None,
    reason: str = None,
    recorded_by: str = None,
    notes: str = None,
    location: str = None
) -> Dict[str, Any]:
    """
    Record a single in/out movement and update the product balance.

    Raises:
        ValidationError: bad type or non-positive quantity
        NotFoundError: product missing or inactive
        InsufficientStockError: out movement larger than current stock
        ConcurrencyConflictError: balance kept changing under us
    """
    try:
        movement = _apply_movement(
            session, product_id, movement_type, quantity,
            reference_type=reference_type or ReferenceType.MANUAL,
            reference_id=reference_id,
            reason=reason,
            notes=notes,
            location=location,
            recorded_by=recorded_by,
        )
        result = movement.to_dict()
        _commit_movements(session, [movement])
        return result

    except LedgerError:
        session.rollback()
        raise
    except Exception as e:
        session.rollback()
        logger.error(f"Error recording movement for product {product_id}: {e}")
        raise


def perform_adjustment(
    session,
    product_id: int,
    delta,
    reason: str,
    notes: str = None,
    performed_by: str = None
) -> Dict[str, Any]:
    """Positive delta books an in movement, negative an out movement of |delta|."""
    delta = fit_scale(parse_decimal(delta, 'delta'), 'delta')
    if delta == ZERO:
        raise ValidationError('Adjustment delta must not be zero', field='delta', value=delta)
    if reason is not None and not isinstance(reason, str):
        raise ValidationError('reason must be text', field='reason', value=reason)
    if not reason or not reason.strip():
        raise ValidationError('An adjustment reason is required', field='reason')

    movement_type = MovementType.IN if delta > ZERO else MovementType.OUT
    result = record_movement(
        session, product_id, movement_type, abs(delta),
        reference_type=ReferenceType.ADJUSTMENT,
        reason=reason.strip(),
        notes=notes,
        recorded_by=performed_by,
    )

    log_action(
        session, AuditAction.STOCK_ADJUSTED,
        resource_type='product', resource_id=product_id,
        details={'delta': delta, 'reason': reason, 'movement_id': result['id']},
        performed_by=performed_by,
    )
    return result


def transfer_stock(
    session,
    product_id: int,
    from_location: str,
    to_location: str,
    quantity,
    performed_by: str = None
) -> Dict[str, Any]:
    """
    Move stock between locations as one atomic unit (out leg, then in leg).

    Both legs share a generated transfer reference; if either fails, neither
    is kept.
    """
    from_location = (from_location or '').strip()
    to_location = (to_location or '').strip()
    if not from_location or not to_location:
        raise ValidationError('Both from_location and to_location are required', field='from_location')
    if from_location == to_location:
        raise ValidationError(
            'Source and destination locations must differ',
            field='to_location',
            value=to_location,
        )
    quantity = parse_quantity(quantity, 'quantity')
    transfer_ref = f"TRF-{uuid.uuid4().hex[:12].upper()}"
    reason = f"Transfer {from_location} -> {to_location}"

    try:
        out_leg = _apply_movement(
            session, product_id, MovementType.OUT, quantity,
            reference_type=ReferenceType.TRANSFER, reference_id=transfer_ref,
            reason=reason, location=from_location, recorded_by=performed_by,
        )
        in_leg = _apply_movement(
            session, product_id, MovementType.IN, quantity,
            reference_type=ReferenceType.TRANSFER, reference_id=transfer_ref,
            reason=reason, location=to_location, recorded_by=performed_by,
        )
        result = {
            'transfer_reference': transfer_ref,
            'product_id': product_id,
            'from_location': from_location,
            'to_location': to_location,
            'quantity': quantity,
            'movements': [out_leg.to_dict(), in_leg.to_dict()],
        }
        _commit_movements(session, [out_leg, in_leg])

    except LedgerError:
        session.rollback()
        raise
    except Exception as e:
        session.rollback()
        logger.error(f"Transfer {transfer_ref} for product {product_id} rolled back: {e}")
        raise

    log_action(
        session, AuditAction.STOCK_TRANSFERRED,
        resource_type='product', resource_id=product_id,
        details={'reference': transfer_ref, 'from': from_location, 'to': to_location, 'quantity': quantity},
        performed_by=performed_by,
    )
    return result


def consume_materials(
    session,
    mo_id,
    lines: List[Dict[str, Any]],
    consumed_by: str = None
) -> Dict[str, Any]:
    """
    Issue materials to a manufacturing order: one out movement per line.

    All lines commit together or none do.

    Args:
        mo_id: Manufacturing order id, stored as reference_id
        lines: [{'product_id': int, 'quantity_consumed': Decimal}, ...]
    """
    if mo_id is None or str(mo_id).strip() == '':
        raise ValidationError('mo_id is required', field='mo_id')
    if not lines:
        raise ValidationError('At least one material line is required', field='lines')

    parsed = []
    for idx, line in enumerate(lines, start=1):
        product_id = parse_id(line.get('product_id'), f'lines[{idx}].product_id')
        qty = line.get('quantity_consumed', line.get('quantity'))
        parsed.append((product_id, parse_quantity(qty, f'lines[{idx}].quantity_consumed')))

    try:
        movements = []
        for product_id, qty in parsed:
            movements.append(_apply_movement(
                session, product_id, MovementType.OUT, qty,
                reference_type=ReferenceType.MANUFACTURING_ORDER,
                reference_id=mo_id,
                reason='Material consumption',
                recorded_by=consumed_by,
            ))
        result = {
            'mo_id': str(mo_id),
            'movements': [m.to_dict() for m in movements],
        }
        _commit_movements(session, movements)

    except LedgerError:
        session.rollback()
        raise
    except Exception as e:
        session.rollback()
        logger.error(f"Material consumption for MO {mo_id} rolled back: {e}")
        raise

    log_action(
        session, AuditAction.MATERIALS_CONSUMED,
        resource_type='manufacturing_order', resource_id=mo_id,
        details={'lines': [{'product_id': pid, 'quantity': qty} for pid, qty in parsed]},
        performed_by=consumed_by,
    )
    return result


def receive_production(
    session,
    mo_id,
    product_id: int,
    quantity_produced,
    quality_status: str,
    received_by: str = None
) -> Dict[str, Any]:
    """
    Receive finished output of a manufacturing order.

    Only output that passed quality control enters stock; failed or rework
    output is tracked in the returned record but never booked.
    """
    quantity_produced = parse_quantity(quantity_produced, 'quantity_produced')
    status = (quality_status or '').strip().lower()
    if status not in QUALITY_STATUSES:
        raise ValidationError(
            f"quality_status must be one of: {', '.join(QUALITY_STATUSES)}",
            field='quality_status',
            value=quality_status,
        )

    record = {
        'mo_id': str(mo_id),
        'product_id': product_id,
        'quantity_produced': quantity_produced,
        'quality_status': status,
        'stock_updated': False,
        'movement': None,
    }

    if status == QUALITY_PASSED:
        record['movement'] = record_movement(
            session, product_id, MovementType.IN, quantity_produced,
            reference_type=ReferenceType.MANUFACTURING_ORDER,
            reference_id=mo_id,
            reason='Production receipt',
            recorded_by=received_by,
        )
        record['stock_updated'] = True
        action = AuditAction.PRODUCTION_RECEIVED
    else:
        product = session.get(Product, product_id)
        if not product:
            raise NotFoundError(f'Product {product_id} not found', payload={'product_id': product_id})
        logger.info(f"MO {mo_id}: {quantity_produced} of product {product_id} held back ({status})")
        action = AuditAction.PRODUCTION_REJECTED

    log_action(
        session, action,
        resource_type='manufacturing_order', resource_id=mo_id,
        details={'product_id': product_id, 'quantity': quantity_produced, 'quality_status': status},
        performed_by=received_by,
    )
    return record


def check_availability(session, requirements: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Compare required quantities with current stock (no reservation).

    Args:
        requirements: [{'product_id': int, 'required_quantity': Decimal}, ...]
            ('scaled_qty' from a scaled BOM line is accepted as well)
    """
    lines = []
    for req in requirements:
        product_id = req.get('product_id', req.get('component_product_id'))
        required = parse_decimal(
            req.get('required_quantity', req.get('scaled_qty')), 'required_quantity'
        )
        product = session.get(Product, product_id)
        if not product:
            raise NotFoundError(f'Product {product_id} not found', payload={'product_id': product_id})
        available = Decimal(product.current_stock)
        lines.append({
            'product_id': product.id,
            'product_name': product.name,
            'required': required,
            'available': available,
            'shortage': max(required - available, ZERO),
            'sufficient': available >= required,
        })

    return {
        'lines': lines,
        'all_available': all(line['sufficient'] for line in lines),
    }


def get_movements(session, query: MovementQuery = MovementQuery()) -> List[Dict[str, Any]]:
    """List ledger entries matching the query, newest first."""
    q = session.query(StockMovement)
    if query.product_id is not None:
        q = q.filter(StockMovement.product_id == query.product_id)
    if query.movement_type:
        q = q.filter(StockMovement.movement_type == query.movement_type)
    if query.reference_type:
        q = q.filter(StockMovement.reference_type == query.reference_type)
    if query.reference_id:
        q = q.filter(StockMovement.reference_id == query.reference_id)
    q = _filter_range(q, query.date_range)

    movements = q.order_by(StockMovement.movement_date.desc(), StockMovement.id.desc()).all()
    return [m.to_dict() for m in movements]


def get_audit_trail(session, product_id: int, date_range: Optional[DateRange] = None) -> Dict[str, Any]:
    """
    Replay a product's movements in chronological order, folding a running
    balance from quantities alone, and compare it with the stored new_stock of
    every entry.

    With a date range, the opening balance is the signed sum of all movements
    before the range start.
    """
    product = session.get(Product, product_id)
    if not product:
        raise NotFoundError(f'Product {product_id} not found', payload={'product_id': product_id})
    date_range = date_range or DateRange()

    opening_balance = ZERO
    if date_range.start is not None:
        prior = session.query(StockMovement.movement_type, StockMovement.quantity).filter(
            StockMovement.product_id == product_id,
            StockMovement.movement_date < date_range.start,
        ).all()
        for movement_type, quantity in prior:
            opening_balance += quantity if movement_type == MovementType.IN else -quantity

    q = session.query(StockMovement).filter(StockMovement.product_id == product_id)
    q = _filter_range(q, date_range)
    movements = q.order_by(StockMovement.movement_date.asc(), StockMovement.id.asc()).all()

    running_balance = opening_balance
    entries = []
    for movement in movements:
        running_balance += movement.signed_quantity
        entry = movement.to_dict()
        entry['running_balance'] = running_balance
        entry['balance_matches'] = running_balance == movement.new_stock
        entries.append(entry)

    consistent = all(e['balance_matches'] for e in entries)
    if date_range.end is None:
        consistent = consistent and running_balance == product.current_stock

    return {
        'product_id': product.id,
        'product_name': product.name,
        'opening_balance': opening_balance,
        'closing_balance': running_balance,
        'current_stock': product.current_stock,
        'consistent': consistent,
        'movements': entries,
    }


def verify_ledger(session, product_id: Optional[int] = None) -> List[Dict[str, Any]]:
    """Replay the full history of one or all products against current_stock."""
    q = session.query(Product.id)
    if product_id is not None:
        q = q.filter(Product.id == product_id)

    report = []
    for (pid,) in q.order_by(Product.id).all():
        trail = get_audit_trail(session, pid)
        report.append({
            'product_id': pid,
            'product_name': trail['product_name'],
            'current_stock': trail['current_stock'],
            'replayed_balance': trail['closing_balance'],
            'consistent': trail['consistent'],
            'mismatched_movement_ids': [
                e['id'] for e in trail['movements'] if not e['balance_matches']
            ],
        })
    return report


def get_current_stock_levels(session, query: StockLevelQuery = StockLevelQuery()) -> List[Dict[str, Any]]:
    """Read current_stock per product with type/category/low-stock filters."""
    q = _filter_products(session.query(Product), query.product_type, query.category)
    if not query.include_inactive:
        q = q.filter(Product.is_active.is_(True))
    if query.low_stock_only:
        q = q.filter(Product.current_stock <= Product.reorder_level)

    levels = []
    for product in q.order_by(Product.name, Product.id).all():
        row = product.to_dict()
        row['is_low_stock'] = product.is_low_stock
        row['stock_value'] = Decimal(product.current_stock) * Decimal(product.cost_price)
        levels.append(row)
    return levels


def get_stock_valuation(session, query: ValuationQuery = ValuationQuery()) -> Dict[str, Any]:
    """Sum current_stock * cost_price over active products, grouped by type or category."""
    q = _filter_products(session.query(Product), query.product_type, query.category)
    products = q.filter(Product.is_active.is_(True)).order_by(Product.id).all()

    groups: Dict[str, Dict[str, Any]] = {}
    total_value = ZERO
    for product in products:
        if query.group_by == 'category':
            key = product.category or 'uncategorized'
        else:
            key = product.product_type.value
        value = Decimal(product.current_stock) * Decimal(product.cost_price)
        group = groups.setdefault(key, {
            'group': key,
            'product_count': 0,
            'total_quantity': ZERO,
            'total_value': ZERO,
        })
        group['product_count'] += 1
        group['total_quantity'] += Decimal(product.current_stock)
        group['total_value'] += value
        total_value += value

    return {
        'group_by': query.group_by,
        'total_value': total_value,
        'groups': [groups[k] for k in sorted(groups)],
    }


# =====================================================
# PRIVATE HELPERS
# =====================================================

def _apply_movement(
    session,
    product_id: int,
    movement_type,
    quantity,
    reference_type=ReferenceType.MANUAL,
    reference_id=None,
    reason: str = None,
    notes: str = None,
    location: str = None,
    recorded_by: str = None
) -> StockMovement:
    """
    Lock, check, write balance and append the movement. Does not commit.

    The balance write is guarded by current_stock == previous_stock, so a
    writer that read a stale balance retries instead of overwriting.
    """
    movement_type = _coerce(MovementType, movement_type, 'movement_type')
    reference_type = _coerce(ReferenceType, reference_type, 'reference_type')
    product_id = parse_id(product_id, 'product_id')
    quantity = parse_quantity(quantity, 'quantity')
    max_retries = _config('LEDGER_MAX_RETRIES', DEFAULT_MAX_RETRIES)

    for attempt in range(1, max_retries + 1):
        product = _lock_product(session, product_id)
        previous_stock = Decimal(product.current_stock)

        if movement_type == MovementType.OUT:
            if quantity > previous_stock:
                raise InsufficientStockError(product.id, product.name, quantity, previous_stock)
            new_stock = previous_stock - quantity
        else:
            new_stock = previous_stock + quantity

        result = session.execute(
            update(Product)
            .where(Product.id == product.id, Product.current_stock == previous_stock)
            .values(current_stock=new_stock)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            break
        logger.warning(
            f"Stock for product {product_id} changed during movement (attempt {attempt}/{max_retries})"
        )
    else:
        raise ConcurrencyConflictError(product_id, max_retries)

    set_committed_value(product, 'current_stock', new_stock)

    movement = StockMovement(
        product_id=product.id,
        movement_type=movement_type,
        quantity=quantity,
        previous_stock=previous_stock,
        new_stock=new_stock,
        unit_cost=product.cost_price,
        reference_type=reference_type,
        reference_id=str(reference_id) if reference_id is not None else None,
        location=location,
        reason=reason,
        notes=notes,
        recorded_by=recorded_by,
    )
    movement.product = product
    session.add(movement)
    session.flush()
    return movement


def _lock_product(session, product_id: int) -> Product:
    """SELECT ... FOR UPDATE on the product row, always re-reading the balance."""
    product = session.query(Product).filter(
        Product.id == product_id
    ).with_for_update().populate_existing().first()

    if not product or not product.is_active:
        raise NotFoundError(
            f'Product {product_id} not found or inactive',
            payload={'product_id': product_id},
        )
    return product


def _commit_movements(session, movements: List[StockMovement]):
    """Commit, then count and invalidate cached reports."""
    labels = [(m.movement_type.value, m.reference_type.value) for m in movements]
    session.commit()
    for movement_type, reference_type in labels:
        stock_movements_total.labels(movement_type=movement_type, reference_type=reference_type).inc()
    _invalidate_stock_cache()


def _filter_range(q, date_range: DateRange):
    if date_range.start is not None:
        q = q.filter(StockMovement.movement_date >= date_range.start)
    if date_range.end is not None:
        q = q.filter(StockMovement.movement_date < date_range.end)
    return q


def _filter_products(q, product_type, category):
    if product_type is not None:
        q = q.filter(Product.product_type == product_type)
    if category:
        q = q.filter(Product.category == category)
    return q


def _coerce(enum_cls, value, field):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).lower())
    except ValueError:
        allowed = ', '.join(m.value for m in enum_cls)
        raise ValidationError(f'{field} must be one of: {allowed}', field=field, value=value)


def _config(key, default):
    if has_app_context():
        return current_app.config.get(key, default)
    return default


def _invalidate_stock_cache():
    """Gracefully attempt to invalidate cached stock reports."""
    try:
        from mrp_ledger.services.cache_service import get_cache
        get_cache().invalidate_module('stock')
    except Exception as e:
        logger.debug(f"Stock cache not invalidated: {e}")
