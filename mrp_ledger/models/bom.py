"""Bill of Materials model."""
from sqlalchemy import Column, BigInteger, String, Boolean, DateTime, Text, ForeignKey, Index
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from mrp_ledger.database import Base, BigIntPK


class BOM(Base):
    """BOM header. Versions are free-form strings unique per product among active BOMs."""

    __tablename__ = 'boms'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    product_id = Column(BigInteger, ForeignKey('products.id'), nullable=False, index=True)
    version = Column(String(32), nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    product = relationship('Product')
    components = relationship(
        'BOMComponent',
        back_populates='bom',
        cascade='all, delete-orphan',
        order_by='BOMComponent.id',
    )

    def __repr__(self):
        return f"<BOM(id={self.id}, product_id={self.product_id}, version='{self.version}')>"

    @property
    def status(self):
        return 'active' if self.is_active else 'inactive'


# (product_id, version) is unique among active BOMs
Index(
    'uq_boms_product_version_active',
    BOM.product_id,
    BOM.version,
    unique=True,
    postgresql_where=BOM.is_active.is_(True),
    sqlite_where=BOM.is_active.is_(True),
)
