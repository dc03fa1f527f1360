"""Stock Movement model (ledger entry)."""
from datetime import datetime

from sqlalchemy import Column, BigInteger, Integer, String, Text, Boolean, Numeric, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
from almacen.database import Base
import enum


class MovementType(enum.Enum):
    """Movement type enum."""
    ENTRADA = "entrada"      # inbound
    SALIDA = "salida"        # outbound
    AJUSTE = "ajuste"        # absolute set
    REVERSION = "reversion"  # compensating entry

    @classmethod
    def from_value(cls, value):
        """Accept 'entrada', 'ENTRADA' or a MovementType."""
        if isinstance(value, cls):
            return value
        if value is None:
            raise ValueError('Tipo de movimiento requerido')
        normalized = str(value).strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        raise ValueError(f'Tipo de movimiento inválido: {value}')


MOVEMENT_LABELS = {
    MovementType.ENTRADA: 'Entrada',
    MovementType.SALIDA: 'Salida',
    MovementType.AJUSTE: 'Ajuste',
    MovementType.REVERSION: 'Reversión',
}


def _as_float(value):
    return float(value) if value is not None else None


def _iso(value):
    return value.isoformat() if value else None


class Movement(Base):
    """
    Immutable ledger entry for one product balance change.

    product_id is a soft reference: no foreign key, so history survives
    product deletion. product_code / product_description keep a snapshot.
    """

    __tablename__ = 'movement'

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    product_id = Column(BigInteger, nullable=False, index=True)
    product_code = Column(String(50), nullable=True)
    product_description = Column(String(500), nullable=True)
    type = Column(Enum(MovementType, name='movement_type'), nullable=False, index=True)
    previous_quantity = Column(Numeric(12, 2), nullable=False)
    new_quantity = Column(Numeric(12, 2), nullable=False)
    quantity = Column(Numeric(12, 2), nullable=True)  # NULL on reversion entries
    reason = Column(Text, nullable=True)
    reference = Column(String(255), nullable=True)
    user_id = Column(String(100), nullable=False, default='anonymous')
    user_name = Column(String(255), nullable=True)
    timestamp = Column(DateTime, nullable=False, default=datetime.now, index=True)

    # Terminal reversal flags, set once on the original entry
    reverted = Column(Boolean, nullable=False, default=False)
    reversed_by = Column(String(100), nullable=True)
    reversed_at = Column(DateTime, nullable=True)
    reversion_reason = Column(Text, nullable=True)

    # Only on REVERSION entries
    original_movement_id = Column(BigInteger, ForeignKey('movement.id'), nullable=True)

    original_movement = relationship('Movement', remote_side=[id], uselist=False)

    def __repr__(self):
        return (f"<Movement(id={self.id}, product_id={self.product_id}, type={self.type.value}, "
                f"{self.previous_quantity}->{self.new_quantity})>")

    @property
    def delta(self):
        """Signed balance change produced by this entry."""
        return self.new_quantity - self.previous_quantity

    @property
    def is_reversible(self) -> bool:
        return self.type != MovementType.REVERSION and not self.reverted

    def to_dict(self):
        return {
            'id': self.id,
            'product_id': self.product_id,
            'product_code': self.product_code,
            'product_description': self.product_description,
            'type': self.type.value,
            'type_label': MOVEMENT_LABELS[self.type],
            'previous_quantity': _as_float(self.previous_quantity),
            'new_quantity': _as_float(self.new_quantity),
            'quantity': _as_float(self.quantity),
            'delta': _as_float(self.delta),
            'reason': self.reason,
            'reference': self.reference,
            'user_id': self.user_id,
            'user_name': self.user_name,
            'timestamp': _iso(self.timestamp),
            'reverted': self.reverted,
            'reversed_by': self.reversed_by,
            'reversed_at': _iso(self.reversed_at),
            'reversion_reason': self.reversion_reason,
            'original_movement_id': self.original_movement_id,
        }
