"""Stock Movement model (stock ledger entry)."""
import enum
import logging
from datetime import datetime, timezone

from sqlalchemy import Column, BigInteger, String, Numeric, DateTime, Text, Enum, ForeignKey, Index, CheckConstraint, event
from sqlalchemy.orm import relationship
from mrp_ledger.database import Base, BigIntPK
from mrp_ledger.exceptions import ImmutableRecordError

logger = logging.getLogger(__name__)


def _utcnow():
    return datetime.now(timezone.utc)


class MovementType(enum.Enum):
    """Stock movement direction."""
    IN = "in"
    OUT = "out"


class ReferenceType(enum.Enum):
    """What caused a movement."""
    MANUFACTURING_ORDER = "manufacturing_order"
    WORK_ORDER = "work_order"
    PURCHASE_ORDER = "purchase_order"
    ADJUSTMENT = "adjustment"
    TRANSFER = "transfer"
    OPENING_BALANCE = "opening_balance"
    MANUAL = "manual"


class StockMovement(Base):
    """
    Append-only ledger entry.

    previous_stock/new_stock capture the product balance around this
    movement; the latest new_stock of a product always equals
    Product.current_stock.
    """

    __tablename__ = 'stock_ledger'
    __table_args__ = (
        CheckConstraint('quantity > 0', name='ck_stock_ledger_qty_positive'),
        CheckConstraint('new_stock >= 0', name='ck_stock_ledger_new_stock_non_negative'),
        Index('ix_stock_ledger_product_date', 'product_id', 'movement_date'),
        Index('ix_stock_ledger_reference', 'reference_type', 'reference_id'),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    product_id = Column(BigInteger, ForeignKey('products.id'), nullable=False)
    movement_type = Column(
        Enum(MovementType, name='movement_type', values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    quantity = Column(Numeric(14, 4), nullable=False)
    previous_stock = Column(Numeric(14, 4), nullable=False)
    new_stock = Column(Numeric(14, 4), nullable=False)
    unit_cost = Column(Numeric(12, 4), nullable=False, default=0)
    reference_type = Column(
        Enum(ReferenceType, name='stock_reference_type', values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=ReferenceType.MANUAL,
    )
    reference_id = Column(String(64), nullable=True)
    location = Column(String(64), nullable=True)
    reason = Column(String(255), nullable=True)
    notes = Column(Text, nullable=True)
    recorded_by = Column(String(64), nullable=True)
    movement_date = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    # Relationships
    product = relationship('Product')

    def __repr__(self):
        return f"<StockMovement(id={self.id}, product_id={self.product_id}, type={self.movement_type.value}, qty={self.quantity})>"

    @property
    def signed_quantity(self):
        """+quantity for in, -quantity for out."""
        if self.movement_type == MovementType.IN:
            return self.quantity
        return -self.quantity

    def to_dict(self):
        product = self.product
        return {
            'id': self.id,
            'product_id': self.product_id,
            'product_name': product.name if product else None,
            'product_sku': product.sku if product else None,
            'unit_of_measure': product.unit_of_measure if product else None,
            'movement_type': self.movement_type.value,
            'quantity': self.quantity,
            'previous_stock': self.previous_stock,
            'new_stock': self.new_stock,
            'unit_cost': self.unit_cost,
            'reference_type': self.reference_type.value if self.reference_type else None,
            'reference_id': self.reference_id,
            'location': self.location,
            'reason': self.reason,
            'notes': self.notes,
            'recorded_by': self.recorded_by,
            'movement_date': self.movement_date.isoformat() if self.movement_date else None,
        }


@event.listens_for(StockMovement, 'before_update')
def _block_movement_update(mapper, connection, target):
    logger.error(f"Blocked UPDATE of stock movement {target.id}")
    raise ImmutableRecordError(f"Stock movement {target.id} is immutable and cannot be modified")


@event.listens_for(StockMovement, 'before_delete')
def _block_movement_delete(mapper, connection, target):
    logger.error(f"Blocked DELETE of stock movement {target.id}")
    raise ImmutableRecordError(f"Stock movement {target.id} is immutable and cannot be deleted")
