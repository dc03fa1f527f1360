"""Product model."""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Column, BigInteger, Integer, String, Boolean, Numeric, DateTime
from almacen.database import Base


UNIT_OPTIONS = [
    ('pza', 'Pieza (pza)'),
    ('kg', 'Kilogramo (kg)'),
    ('g', 'Gramo (g)'),
    ('l', 'Litro (l)'),
    ('ml', 'Mililitro (ml)'),
    ('m', 'Metro (m)'),
    ('cm', 'Centímetro (cm)'),
    ('mm', 'Milímetro (mm)'),
    ('caja', 'Caja'),
    ('paquete', 'Paquete'),
    ('rollo', 'Rollo'),
    ('par', 'Par'),
    ('docena', 'Docena'),
    ('unidad', 'Unidad'),
]

DEPARTMENT_OPTIONS = [
    ('ferreteria', 'Ferretería'),
    ('electronica', 'Electrónica'),
    ('herramientas', 'Herramientas'),
    ('otros', 'Otros'),
]


def _as_float(value):
    return float(value) if value is not None else None


class Product(Base):
    """Catalog item with its current balance."""

    __tablename__ = 'product'

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    code = Column(String(50), nullable=False, unique=True, index=True)
    description = Column(String(500), nullable=False)
    unit = Column(String(30), nullable=False, default='pza')
    department = Column(String(50), nullable=False, default='electronica', index=True)
    current_quantity = Column(Numeric(12, 2), nullable=False, default=0)
    min_quantity = Column(Numeric(12, 2), nullable=True)
    max_quantity = Column(Numeric(12, 2), nullable=True)
    total_movements = Column(Integer, nullable=False, default=0)
    imported_from_excel = Column(Boolean, nullable=False, default=False)
    created_by = Column(String(100), nullable=False, default='anonymous')
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)
    version = Column(Integer, nullable=False)

    # Optimistic locking: UPDATE ... WHERE version = :old raises StaleDataError
    __mapper_args__ = {'version_id_col': version}

    def __repr__(self):
        return f"<Product(id={self.id}, code='{self.code}', qty={self.current_quantity})>"

    @property
    def is_low_stock(self) -> bool:
        """True when a minimum is set and the balance is at or below it."""
        if not self.min_quantity:
            return False
        return self.current_quantity <= self.min_quantity

    def is_almost_out(self, factor=1.1) -> bool:
        """True when the balance is within `factor` times the minimum."""
        if not self.min_quantity:
            return False
        return self.current_quantity <= self.min_quantity * Decimal(str(factor))

    @property
    def is_excess_stock(self) -> bool:
        if not self.max_quantity:
            return False
        return self.current_quantity > self.max_quantity

    @property
    def alert_level(self):
        """
        Severity relative to the minimum.

        critical: at or below 50% of the minimum
        warning:  at or below the minimum
        ok:       above the minimum
        None:     no minimum configured
        """
        if not self.min_quantity:
            return None
        percentage = (self.current_quantity / self.min_quantity) * 100
        if percentage <= 50:
            return 'critical'
        if percentage <= 100:
            return 'warning'
        return 'ok'

    @property
    def stock_percentage(self):
        if not self.min_quantity:
            return None
        return round(float(self.current_quantity / self.min_quantity * 100), 1)

    def to_dict(self):
        return {
            'id': self.id,
            'code': self.code,
            'description': self.description,
            'unit': self.unit,
            'department': self.department,
            'current_quantity': _as_float(self.current_quantity),
            'min_quantity': _as_float(self.min_quantity),
            'max_quantity': _as_float(self.max_quantity),
            'total_movements': self.total_movements,
            'imported_from_excel': self.imported_from_excel,
            'created_by': self.created_by,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
            'is_low_stock': self.is_low_stock,
            'is_excess_stock': self.is_excess_stock,
            'alert_level': self.alert_level,
        }
