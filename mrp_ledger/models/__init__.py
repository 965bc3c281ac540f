"""Models package - exports all SQLAlchemy models."""
# Product registry
from mrp_ledger.models.product import Product, ProductType

# Bills of materials
from mrp_ledger.models.bom import BOM
from mrp_ledger.models.bom_component import BOMComponent

# Stock ledger
from mrp_ledger.models.stock_movement import StockMovement, MovementType, ReferenceType

# Status history
from mrp_ledger.models.audit_log import AuditLog, AuditAction

__all__ = [
    'Product', 'ProductType',
    'BOM', 'BOMComponent',
    'StockMovement', 'MovementType', 'ReferenceType',
    'AuditLog', 'AuditAction',
]
