"""
Product registry service.

Products are created with zero stock. An opening balance is booked through
the stock ledger as an 'opening_balance' movement in the same transaction,
so current_stock always has a ledger history behind it. Edits never touch
current_stock; deactivated products drop out of stock operations and reports.
"""
import logging
from decimal import Decimal
from typing import Dict, Any, List

from sqlalchemy.exc import IntegrityError

from mrp_ledger.models import Product, ProductType, MovementType, ReferenceType, AuditAction
from mrp_ledger.exceptions import LedgerError, ValidationError, NotFoundError
from mrp_ledger.services.audit_service import log_action
from mrp_ledger.services import stock_ledger_service
from mrp_ledger.utils.number_format import ZERO, QUANTITY_DIGITS, parse_decimal, parse_id, fit_scale

logger = logging.getLogger(__name__)

COST_DIGITS = 12
UPDATABLE_FIELDS = ('name', 'category', 'unit_of_measure', 'cost_price', 'reorder_level')


def create_product(
    session,
    name: str,
    sku: str,
    product_type=ProductType.RAW_MATERIAL,
    unit_of_measure: str = 'unit',
    category: str = None,
    cost_price=0,
    reorder_level=0,
    opening_stock=None,
    created_by: str = None
) -> Dict[str, Any]:
    """
    Register a product, optionally with an opening stock movement.

    The product row and its opening movement commit together.

    Raises:
        ValidationError: missing name/SKU, duplicate SKU, bad numbers or type
    """
    name = _required_text(name, 'name')
    sku = _required_text(sku, 'sku')

    product_type = _parse_product_type(product_type)
    cost_price = _non_negative(cost_price, 'cost_price', digits=COST_DIGITS)
    reorder_level = _non_negative(reorder_level, 'reorder_level')
    opening = _non_negative(opening_stock, 'opening_stock') if opening_stock not in (None, '') else ZERO

    if session.query(Product.id).filter(Product.sku == sku).first():
        raise ValidationError(f"SKU '{sku}' already exists", field='sku', value=sku)

    try:
        product = Product(
            name=name,
            sku=sku,
            product_type=product_type,
            unit_of_measure=(unit_of_measure or 'unit').strip(),
            category=(category or '').strip() or None,
            cost_price=cost_price,
            reorder_level=reorder_level,
            current_stock=ZERO,
            is_active=True,
        )
        session.add(product)
        session.flush()

        movements = []
        if opening > ZERO:
            movements.append(stock_ledger_service._apply_movement(
                session, product.id, MovementType.IN, opening,
                reference_type=ReferenceType.OPENING_BALANCE,
                reason='Opening balance',
                recorded_by=created_by,
            ))
        stock_ledger_service._commit_movements(session, movements)

    except IntegrityError as e:
        session.rollback()
        if 'sku' in str(e.orig).lower():
            raise ValidationError(f"SKU '{sku}' already exists", field='sku', value=sku)
        logger.error(f"Integrity error creating product {sku}: {e.orig}")
        raise
    except LedgerError:
        session.rollback()
        raise
    except Exception as e:
        session.rollback()
        logger.error(f"Error creating product {sku}: {e}")
        raise

    log_action(
        session, AuditAction.PRODUCT_CREATED,
        resource_type='product', resource_id=product.id,
        details={'sku': sku, 'opening_stock': opening},
        performed_by=created_by,
    )
    return product.to_dict()


def get_product(session, product_id) -> Dict[str, Any]:
    return _load_product(session, product_id).to_dict()


def list_products(session, product_type=None, include_inactive: bool = False) -> List[Dict[str, Any]]:
    query = session.query(Product)
    if product_type:
        query = query.filter(Product.product_type == _parse_product_type(product_type))
    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))
    return [p.to_dict() for p in query.order_by(Product.name, Product.id).all()]


def update_product(session, product_id, changes: Dict[str, Any], updated_by: str = None) -> Dict[str, Any]:
    """
    Edit descriptive fields and prices of an active product.

    current_stock is owned by the stock ledger and cannot be edited here.

    Raises:
        ValidationError: unknown or read-only field, bad values, no changes
        NotFoundError: product missing or inactive
    """
    if not isinstance(changes, dict) or not changes:
        raise ValidationError('No product fields to update', field='changes')
    if 'current_stock' in changes:
        raise ValidationError(
            'current_stock changes only through stock movements',
            field='current_stock',
        )
    unknown = sorted(set(changes) - set(UPDATABLE_FIELDS))
    if unknown:
        raise ValidationError(
            f"Fields cannot be updated: {', '.join(unknown)}",
            field=unknown[0],
        )

    product = _load_product(session, product_id)
    if not product.is_active:
        raise NotFoundError(f'Product {product.id} not found or inactive', payload={'product_id': product.id})

    values = {}
    if 'name' in changes:
        values['name'] = _required_text(changes['name'], 'name')
    if 'unit_of_measure' in changes:
        values['unit_of_measure'] = _required_text(changes['unit_of_measure'], 'unit_of_measure')
    if 'category' in changes:
        values['category'] = (str(changes['category']).strip() if changes['category'] is not None else '') or None
    if 'cost_price' in changes:
        values['cost_price'] = _non_negative(changes['cost_price'], 'cost_price', digits=COST_DIGITS)
    if 'reorder_level' in changes:
        values['reorder_level'] = _non_negative(changes['reorder_level'], 'reorder_level')

    try:
        for field, value in values.items():
            setattr(product, field, value)
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Error updating product {product.id}: {e}")
        raise

    stock_ledger_service._invalidate_stock_cache()
    log_action(
        session, AuditAction.PRODUCT_UPDATED,
        resource_type='product', resource_id=product.id,
        details={'changes': values},
        performed_by=updated_by,
    )
    return product.to_dict()


def deactivate_product(session, product_id, deactivated_by: str = None) -> Dict[str, Any]:
    """Mark a product inactive. Its ledger history and stock are kept."""
    product = _load_product(session, product_id)
    if not product.is_active:
        return product.to_dict()

    try:
        product.is_active = False
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Error deactivating product {product.id}: {e}")
        raise

    stock_ledger_service._invalidate_stock_cache()
    log_action(
        session, AuditAction.PRODUCT_DEACTIVATED,
        resource_type='product', resource_id=product.id,
        details={'sku': product.sku, 'current_stock': product.current_stock},
        performed_by=deactivated_by,
    )
    return product.to_dict()


def _load_product(session, product_id) -> Product:
    product_id = parse_id(product_id, 'product_id')
    product = session.get(Product, product_id)
    if not product:
        raise NotFoundError(f'Product {product_id} not found', payload={'product_id': product_id})
    return product


def _required_text(value, field: str) -> str:
    text = str(value).strip() if value is not None else ''
    if not text:
        raise ValidationError(f'{field} is required', field=field)
    return text


def _parse_product_type(value) -> ProductType:
    if isinstance(value, ProductType):
        return value
    try:
        return ProductType(str(value).lower())
    except ValueError:
        allowed = ', '.join(t.value for t in ProductType)
        raise ValidationError(f'product_type must be one of: {allowed}', field='product_type', value=value)


def _non_negative(value, field: str, digits: int = QUANTITY_DIGITS) -> Decimal:
    result = parse_decimal(value, field)
    if result < ZERO:
        raise ValidationError(f'{field} must not be negative', field=field, value=value)
    return fit_scale(result, field, digits=digits)
