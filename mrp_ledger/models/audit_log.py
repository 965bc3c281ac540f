"""
Audit Log model for the status history of BOM and stock operations.
"""
from sqlalchemy import Column, String, Text, DateTime, Enum as SQLEnum
from datetime import datetime, timezone
import enum


class AuditAction(enum.Enum):
    """Enumeration of auditable actions."""
    # Products
    PRODUCT_CREATED = "PRODUCT_CREATED"
    PRODUCT_UPDATED = "PRODUCT_UPDATED"
    PRODUCT_DEACTIVATED = "PRODUCT_DEACTIVATED"

    # BOMs
    BOM_CREATED = "BOM_CREATED"
    BOM_COMPONENTS_REPLACED = "BOM_COMPONENTS_REPLACED"
    BOM_CLONED = "BOM_CLONED"
    BOM_DEACTIVATED = "BOM_DEACTIVATED"

    # Stock
    STOCK_ADJUSTED = "STOCK_ADJUSTED"
    STOCK_TRANSFERRED = "STOCK_TRANSFERRED"
    MATERIALS_CONSUMED = "MATERIALS_CONSUMED"
    PRODUCTION_RECEIVED = "PRODUCTION_RECEIVED"
    PRODUCTION_REJECTED = "PRODUCTION_REJECTED"


from mrp_ledger.database import Base, BigIntPK

class AuditLog(Base):
    """
    Audit log for tracking engine operations.
    Writes are best effort: a failed entry never aborts the operation.
    """
    __tablename__ = 'audit_log'

    id = Column(BigIntPK, primary_key=True)
    action = Column(SQLEnum(AuditAction), nullable=False, index=True)
    resource_type = Column(String(50))  # e.g., 'bom', 'product', 'manufacturing_order'
    resource_id = Column(String(64))  # ID of the affected resource
    details = Column(Text)  # JSON with additional details
    performed_by = Column(String(64))
    ip_address = Column(String(45))  # IPv4 or IPv6
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog {self.action.value} by {self.performed_by} at {self.created_at}>"
