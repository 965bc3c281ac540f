"""
BOM service: versioned bills of materials, scaling and material costing.

Quantities in a BOM are per one unit of the finished product. The effective
per-unit requirement of a component is quantity_required amplified by its
waste percentage; scaling multiplies that by the production quantity.
"""
import logging
from decimal import Decimal
from typing import List, Dict, Optional, Any

from sqlalchemy.exc import IntegrityError

from mrp_ledger.models import Product, BOM, BOMComponent, AuditAction
from mrp_ledger.exceptions import LedgerError, ValidationError, DuplicateVersionError, NotFoundError
from mrp_ledger.services.audit_service import log_action
from mrp_ledger.utils.number_format import (
    ZERO, parse_id, parse_positive, parse_quantity, parse_percentage, apply_percentage,
    safe_divide, percentage_of, round2
)

logger = logging.getLogger(__name__)

MAX_VERSION_LENGTH = 32


def create_bom(
    session,
    product_id,
    version: str,
    components: List[Dict[str, Any]],
    description: str = None,
    created_by: str = None
) -> Dict[str, Any]:
    """
    Create a BOM with its component lines in one transaction.

    Args:
        product_id: Product being manufactured
        version: Free-form version label, unique per product among active BOMs
        components: [{'component_product_id', 'quantity_required',
                      'waste_percentage' (optional), 'notes' (optional)}, ...]

    Raises:
        NotFoundError: product does not exist
        ValidationError: invalid version or component lines
        DuplicateVersionError: version already active for this product
    """
    product_id = parse_id(product_id, 'product_id')
    product = session.get(Product, product_id)
    if not product:
        raise NotFoundError(f'Product {product_id} not found', payload={'product_id': product_id})

    version = _parse_version(version)
    lines = _parse_components(session, product_id, components)

    if _active_version_exists(session, product_id, version):
        raise DuplicateVersionError(product_id, version)

    try:
        bom = BOM(
            product_id=product_id,
            version=version,
            description=description,
            is_active=True,
            created_by=created_by,
        )
        bom.components = [_new_component(line) for line in lines]
        session.add(bom)
        session.commit()

    except IntegrityError as e:
        session.rollback()
        # Concurrent creator committed the same version first
        if _is_version_conflict(e):
            raise DuplicateVersionError(product_id, version)
        logger.error(f"Integrity error creating BOM {version} for product {product_id}: {e.orig}")
        raise
    except Exception as e:
        session.rollback()
        logger.error(f"Error creating BOM {version} for product {product_id}: {e}")
        raise

    logger.info(f"BOM {bom.id} created: product {product_id} version {version} ({len(lines)} components)")
    log_action(
        session, AuditAction.BOM_CREATED,
        resource_type='bom', resource_id=bom.id,
        details={'product_id': product_id, 'version': version, 'components': len(lines)},
        performed_by=created_by,
    )
    return bom_to_dict(bom)


def get_bom(session, bom_id, include_inactive: bool = False) -> Dict[str, Any]:
    """BOM with resolved components. Inactive BOMs only with include_inactive=True."""
    return bom_to_dict(_load_bom(session, bom_id, include_inactive=include_inactive))


def list_boms(session, product_id=None, active: Optional[bool] = None) -> List[Dict[str, Any]]:
    """List BOMs, newest first, optionally by product and active flag."""
    query = session.query(BOM)
    if product_id is not None:
        query = query.filter(BOM.product_id == parse_id(product_id, 'product_id'))
    if active is not None:
        query = query.filter(BOM.is_active.is_(bool(active)))

    boms = query.order_by(BOM.created_at.desc(), BOM.id.desc()).all()
    return [bom_to_dict(bom) for bom in boms]


def update_components(
    session,
    bom_id,
    components: List[Dict[str, Any]],
    updated_by: str = None
) -> Dict[str, Any]:
    """Replace the whole component set of an active BOM. Never partial."""
    bom = _load_bom(session, bom_id)
    lines = _parse_components(session, bom.product_id, components)
    previous_count = len(bom.components)

    try:
        bom.components.clear()
        session.flush()
        bom.components.extend(_new_component(line) for line in lines)
        session.commit()

    except LedgerError:
        session.rollback()
        raise
    except Exception as e:
        session.rollback()
        logger.error(f"Error replacing components of BOM {bom_id}: {e}")
        raise

    log_action(
        session, AuditAction.BOM_COMPONENTS_REPLACED,
        resource_type='bom', resource_id=bom.id,
        details={'previous_components': previous_count, 'components': len(lines)},
        performed_by=updated_by,
    )
    return bom_to_dict(bom)


def scale_for_quantity(session, bom_id, target_quantity) -> Dict[str, Any]:
    """
    Scale an active BOM to a production quantity.

    Per line: effective_qty = quantity_required * (1 + waste/100),
    scaled_qty = effective_qty * target_quantity,
    component_cost = scaled_qty * cost_price and
    stock_sufficient = current_stock >= scaled_qty.

    Raises:
        ValidationError: target_quantity <= 0
    """
    bom = _load_bom(session, bom_id)
    quantity = parse_positive(target_quantity, 'target_quantity')
    return _scale(bom, quantity)


def material_cost_breakdown(session, bom_id, quantity) -> Dict[str, Any]:
    """scale_for_quantity plus each line's share of the total cost."""
    result = scale_for_quantity(session, bom_id, quantity)
    total_cost = result['total_cost']
    for line in result['components']:
        line['cost_percentage'] = round2(percentage_of(line['component_cost'], total_cost))
    return result


def get_material_requirements(session, product_id, quantity, version: str = None) -> Dict[str, Any]:
    """
    Scaled requirements for producing `quantity` of a product.

    Uses the active BOM with the given version, or the newest active BOM.
    """
    product_id = parse_id(product_id, 'product_id')
    quantity = parse_positive(quantity, 'quantity')

    query = session.query(BOM).filter(
        BOM.product_id == product_id,
        BOM.is_active.is_(True),
    )
    if version:
        query = query.filter(BOM.version == version.strip())
    bom = query.order_by(BOM.created_at.desc(), BOM.id.desc()).first()

    if not bom:
        detail = f" version '{version}'" if version else ''
        raise NotFoundError(
            f'No active BOM{detail} for product {product_id}',
            payload={'product_id': product_id},
        )
    return _scale(bom, quantity)


def clone_bom(
    session,
    bom_id,
    new_version: str,
    description: str = None,
    created_by: str = None
) -> Dict[str, Any]:
    """
    Copy a BOM (active or historical) and its components under a new version.

    Raises:
        DuplicateVersionError: new_version already active for the product;
            the source BOM is left untouched
    """
    source = _load_bom(session, bom_id, include_inactive=True)
    new_version = _parse_version(new_version)

    if _active_version_exists(session, source.product_id, new_version):
        raise DuplicateVersionError(source.product_id, new_version)

    try:
        clone = BOM(
            product_id=source.product_id,
            version=new_version,
            description=description if description is not None else source.description,
            is_active=True,
            created_by=created_by,
        )
        clone.components = [
            BOMComponent(
                component_product_id=c.component_product_id,
                quantity_required=c.quantity_required,
                waste_percentage=c.waste_percentage,
                notes=c.notes,
            )
            for c in source.components
        ]
        session.add(clone)
        session.commit()

    except IntegrityError as e:
        session.rollback()
        if _is_version_conflict(e):
            raise DuplicateVersionError(source.product_id, new_version)
        logger.error(f"Integrity error cloning BOM {bom_id} as {new_version}: {e.orig}")
        raise
    except Exception as e:
        session.rollback()
        logger.error(f"Error cloning BOM {bom_id} as {new_version}: {e}")
        raise

    log_action(
        session, AuditAction.BOM_CLONED,
        resource_type='bom', resource_id=clone.id,
        details={'source_bom_id': source.id, 'version': new_version},
        performed_by=created_by,
    )
    return bom_to_dict(clone)


def soft_delete_bom(session, bom_id, deleted_by: str = None) -> Dict[str, Any]:
    """Deactivate a BOM. Its version label becomes reusable."""
    bom = _load_bom(session, bom_id)

    try:
        bom.is_active = False
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Error deactivating BOM {bom_id}: {e}")
        raise

    log_action(
        session, AuditAction.BOM_DEACTIVATED,
        resource_type='bom', resource_id=bom.id,
        details={'product_id': bom.product_id, 'version': bom.version},
        performed_by=deleted_by,
    )
    return bom_to_dict(bom)


def bom_to_dict(bom: BOM) -> Dict[str, Any]:
    product = bom.product
    return {
        'id': bom.id,
        'product_id': bom.product_id,
        'product_name': product.name if product else None,
        'product_sku': product.sku if product else None,
        'version': bom.version,
        'description': bom.description,
        'is_active': bom.is_active,
        'status': bom.status,
        'created_by': bom.created_by,
        'created_at': bom.created_at.isoformat() if bom.created_at else None,
        'updated_at': bom.updated_at.isoformat() if bom.updated_at else None,
        'components': [_component_to_dict(c) for c in bom.components],
    }


# =====================================================
# PRIVATE HELPERS
# =====================================================

def _component_to_dict(component: BOMComponent) -> Dict[str, Any]:
    product = component.component_product
    return {
        'id': component.id,
        'component_product_id': component.component_product_id,
        'component_name': product.name,
        'component_sku': product.sku,
        'unit_of_measure': product.unit_of_measure,
        'cost_price': product.cost_price,
        'quantity_required': component.quantity_required,
        'waste_percentage': component.waste_percentage,
        'effective_qty': apply_percentage(
            Decimal(component.quantity_required), Decimal(component.waste_percentage)
        ),
        'notes': component.notes,
    }


def _scale(bom: BOM, quantity: Decimal) -> Dict[str, Any]:
    lines = []
    shortages = []
    total_cost = ZERO

    for component in bom.components:
        product = component.component_product
        effective_qty = apply_percentage(
            Decimal(component.quantity_required), Decimal(component.waste_percentage)
        )
        scaled_qty = effective_qty * quantity
        component_cost = scaled_qty * Decimal(product.cost_price)
        available = Decimal(product.current_stock)
        sufficient = available >= scaled_qty

        lines.append({
            'component_product_id': product.id,
            'component_name': product.name,
            'component_sku': product.sku,
            'unit_of_measure': product.unit_of_measure,
            'quantity_required': component.quantity_required,
            'waste_percentage': component.waste_percentage,
            'effective_qty': effective_qty,
            'scaled_qty': scaled_qty,
            'cost_price': product.cost_price,
            'component_cost': component_cost,
            'available_stock': available,
            'stock_sufficient': sufficient,
        })
        if not sufficient:
            shortages.append({
                'component_product_id': product.id,
                'component_name': product.name,
                'required': scaled_qty,
                'available': available,
                'shortage': scaled_qty - available,
            })
        total_cost += component_cost

    return {
        'bom_id': bom.id,
        'product_id': bom.product_id,
        'version': bom.version,
        'target_quantity': quantity,
        'components': lines,
        'total_cost': total_cost,
        'cost_per_unit': safe_divide(total_cost, quantity),
        'all_available': not shortages,
        'shortages': shortages,
    }


def _load_bom(session, bom_id, include_inactive: bool = False) -> BOM:
    bom_id = parse_id(bom_id, 'bom_id')
    bom = session.get(BOM, bom_id)
    if not bom or (not bom.is_active and not include_inactive):
        raise NotFoundError(f'BOM {bom_id} not found', payload={'bom_id': bom_id})
    return bom


def _active_version_exists(session, product_id: int, version: str) -> bool:
    return session.query(BOM.id).filter(
        BOM.product_id == product_id,
        BOM.version == version,
        BOM.is_active.is_(True),
    ).first() is not None


def _is_version_conflict(error: IntegrityError) -> bool:
    """True when the active (product_id, version) unique index rejected the row."""
    error_msg = str(error.orig).lower()
    # PostgreSQL names the index, SQLite lists its columns
    return 'uq_boms_product_version_active' in error_msg or 'boms.product_id, boms.version' in error_msg


def _parse_version(version) -> str:
    version = str(version).strip() if version is not None else ''
    if not version:
        raise ValidationError('version is required', field='version')
    if len(version) > MAX_VERSION_LENGTH:
        raise ValidationError(
            f'version must be at most {MAX_VERSION_LENGTH} characters',
            field='version',
            value=version,
        )
    return version


def _parse_components(session, product_id: int, components) -> List[Dict[str, Any]]:
    """Validate every line before anything is written."""
    if not components:
        raise ValidationError('A BOM needs at least one component', field='components')

    lines = []
    seen = set()
    for idx, raw in enumerate(components, start=1):
        if not isinstance(raw, dict):
            raise ValidationError(f'Component {idx} must be an object', field='components')

        component_id = parse_id(
            raw.get('component_product_id', raw.get('product_id')),
            'component_product_id',
        )
        if component_id == product_id:
            raise ValidationError(
                'A BOM cannot list its own product as a component',
                field='component_product_id',
                value=component_id,
            )
        if component_id in seen:
            raise ValidationError(
                f'Component product {component_id} appears more than once',
                field='component_product_id',
                value=component_id,
            )
        seen.add(component_id)

        if session.get(Product, component_id) is None:
            raise ValidationError(
                f'Component product {component_id} does not exist',
                field='component_product_id',
                value=component_id,
            )

        lines.append({
            'component_product_id': component_id,
            'quantity_required': parse_quantity(raw.get('quantity_required'), 'quantity_required'),
            'waste_percentage': parse_percentage(raw.get('waste_percentage')),
            'notes': raw.get('notes'),
        })
    return lines


def _new_component(line: Dict[str, Any]) -> BOMComponent:
    return BOMComponent(
        component_product_id=line['component_product_id'],
        quantity_required=line['quantity_required'],
        waste_percentage=line['waste_percentage'],
        notes=line['notes'],
    )
