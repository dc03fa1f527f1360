"""Models package - exports all SQLAlchemy models."""
from almacen.models.product import Product, UNIT_OPTIONS, DEPARTMENT_OPTIONS
from almacen.models.movement import Movement, MovementType, MOVEMENT_LABELS
from almacen.models.code_counter import CodeCounter
from almacen.models.audit_log import AuditLog, AuditAction

__all__ = [
    'Product', 'UNIT_OPTIONS', 'DEPARTMENT_OPTIONS',
    'Movement', 'MovementType', 'MOVEMENT_LABELS',
    'CodeCounter',
    'AuditLog', 'AuditAction',
]
