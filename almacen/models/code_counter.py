"""Sequence used to generate product codes (PROD-1000, PROD-1001, ...)."""
from sqlalchemy import Column, String, Integer
from almacen.database import Base


class CodeCounter(Base):
    """Named counter row; `last_number` is the last value handed out."""

    __tablename__ = 'code_counter'

    name = Column(String(50), primary_key=True)
    last_number = Column(Integer, nullable=False)

    def __repr__(self):
        return f"<CodeCounter(name='{self.name}', last_number={self.last_number})>"
