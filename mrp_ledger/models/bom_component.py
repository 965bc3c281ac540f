"""BOM Component model."""
from sqlalchemy import Column, BigInteger, Numeric, Text, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from mrp_ledger.database import Base, BigIntPK


class BOMComponent(Base):
    """BOM Component (one line of the recipe, per unit of finished product)."""

    __tablename__ = 'bom_components'
    __table_args__ = (
        CheckConstraint('quantity_required > 0', name='ck_bom_components_qty_positive'),
        CheckConstraint(
            'waste_percentage >= 0 AND waste_percentage <= 100',
            name='ck_bom_components_waste_range',
        ),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    bom_id = Column(BigInteger, ForeignKey('boms.id'), nullable=False, index=True)
    component_product_id = Column(BigInteger, ForeignKey('products.id'), nullable=False)
    quantity_required = Column(Numeric(14, 4), nullable=False)
    waste_percentage = Column(Numeric(7, 4), nullable=False, default=0)
    notes = Column(Text, nullable=True)

    # Relationships
    bom = relationship('BOM', back_populates='components')
    component_product = relationship('Product')

    def __repr__(self):
        return f"<BOMComponent(id={self.id}, component_product_id={self.component_product_id}, qty={self.quantity_required})>"
