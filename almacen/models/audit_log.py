"""
Audit Log model for tracking catalog changes.
Stock changes are audited by the movement ledger itself.
"""
from sqlalchemy import Column, Integer, BigInteger, String, Text, DateTime, Enum as SQLEnum
from datetime import datetime
import enum

from almacen.database import Base


class AuditAction(enum.Enum):
    """Enumeration of auditable actions."""
    PRODUCT_CREATED = "PRODUCT_CREATED"
    PRODUCT_UPDATED = "PRODUCT_UPDATED"
    PRODUCT_DELETED = "PRODUCT_DELETED"
    PRODUCTS_IMPORTED = "PRODUCTS_IMPORTED"
    STOCK_ALERT_SENT = "STOCK_ALERT_SENT"


class AuditLog(Base):
    """Audit log for tracking user actions."""
    __tablename__ = 'audit_log'

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    user_id = Column(String(100), nullable=False)
    action = Column(SQLEnum(AuditAction), nullable=False, index=True)
    resource_type = Column(String(50))  # e.g., 'product', 'import'
    resource_id = Column(BigInteger)  # ID of the affected resource
    details = Column(Text)  # JSON with additional details
    ip_address = Column(String(45))  # IPv4 or IPv6
    user_agent = Column(String(255))
    created_at = Column(DateTime, default=datetime.now, nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog {self.action.value} by user {self.user_id} at {self.created_at}>"
