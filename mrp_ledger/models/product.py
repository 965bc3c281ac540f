"""Product model."""
import enum

from sqlalchemy import Column, String, Boolean, Numeric, DateTime, Enum, CheckConstraint
from sqlalchemy.sql import func
from mrp_ledger.database import Base, BigIntPK


class ProductType(enum.Enum):
    """Product type enum."""
    RAW_MATERIAL = "raw_material"
    WORK_IN_PROGRESS = "work_in_progress"
    FINISHED_GOOD = "finished_good"


class Product(Base):
    """Product registry entry. current_stock is written only by the stock ledger."""

    __tablename__ = 'products'
    __table_args__ = (
        CheckConstraint('current_stock >= 0', name='ck_products_stock_non_negative'),
        CheckConstraint('cost_price >= 0', name='ck_products_cost_non_negative'),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    name = Column(String, nullable=False)
    sku = Column(String(64), nullable=False, unique=True)
    unit_of_measure = Column(String(16), nullable=False, default='unit')
    product_type = Column(
        Enum(ProductType, name='product_type', values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=ProductType.RAW_MATERIAL,
    )
    category = Column(String(64), nullable=True)
    cost_price = Column(Numeric(12, 4), nullable=False, default=0)
    current_stock = Column(Numeric(14, 4), nullable=False, default=0)
    reorder_level = Column(Numeric(14, 4), nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Product(id={self.id}, name='{self.name}', sku='{self.sku}')>"

    @property
    def is_low_stock(self):
        """Stock at or below the reorder level."""
        return (self.current_stock or 0) <= (self.reorder_level or 0)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'sku': self.sku,
            'unit_of_measure': self.unit_of_measure,
            'product_type': self.product_type.value if self.product_type else None,
            'category': self.category,
            'cost_price': self.cost_price,
            'current_stock': self.current_stock,
            'reorder_level': self.reorder_level,
            'is_active': self.is_active,
        }
