"""
Product Ledger Store.

Owns product identity, classification and thresholds. The balance
(current_quantity) is only ever changed through movement_service; this
module routes quantity edits there so every change leaves a ledger entry.
"""
import logging
from decimal import Decimal
from typing import Optional

from flask import current_app, has_app_context
from sqlalchemy.exc import IntegrityError, DBAPIError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from almacen.exceptions import (
    AlmacenError, ValidationError, NotFoundError, DuplicateCodeError,
    ConflictError, StoreUnavailableError
)
from almacen.middleware import ANONYMOUS
from almacen.models import Product, MovementType, CodeCounter, AuditAction
from almacen.services import movement_service
from almacen.services.audit_service import log_action
from almacen.services.cache_service import invalidate_stock_caches
from almacen.utils.number_format import parse_quantity, parse_optional_quantity

logger = logging.getLogger(__name__)

CODE_MAX_LENGTH = 50
DESCRIPTION_MAX_LENGTH = 500
CODE_COUNTER_NAME = 'products'
CODE_COUNTER_START = 1000

UPDATABLE_TEXT_FIELDS = ('description', 'unit', 'department')


def _config(key, default):
    if has_app_context():
        return current_app.config.get(key, default)
    return default


def normalize_code(code) -> str:
    """Codes are compared case-sensitively after trimming."""
    if code is None:
        return ''
    return str(code).strip()


def _clean_text(value, field_label: str, max_length: int, required: bool = False) -> Optional[str]:
    text = str(value).strip() if value is not None else ''
    if required and not text:
        raise ValidationError(f'{field_label} es requerido')
    if len(text) > max_length:
        raise ValidationError(f'{field_label}: máximo {max_length} caracteres')
    return text or None


def _quantity_field(value, field_label: str, optional: bool = False):
    try:
        if optional:
            return parse_optional_quantity(value)
        return parse_quantity(value)
    except ValueError as e:
        raise ValidationError(f'{field_label}: {e}')


def _validate_thresholds(min_quantity: Optional[Decimal], max_quantity: Optional[Decimal]) -> None:
    if min_quantity is not None and max_quantity is not None and max_quantity <= min_quantity:
        raise ValidationError('La cantidad máxima debe ser mayor que la cantidad mínima')


def exists_by_code(session: Session, code) -> bool:
    """Check whether a product with this code exists (trimmed, case-sensitive)."""
    normalized = normalize_code(code)
    if not normalized:
        return False
    return session.query(Product.id).filter(Product.code == normalized).first() is not None


def generate_product_code(session: Session) -> str:
    """
    Hand out the next PROD-<n> code.

    Runs inside the caller's transaction; the counter row is locked so two
    writers never receive the same number.
    """
    counter = session.query(CodeCounter).filter(
        CodeCounter.name == CODE_COUNTER_NAME
    ).with_for_update().first()

    if counter is None:
        counter = CodeCounter(name=CODE_COUNTER_NAME, last_number=CODE_COUNTER_START - 1)
        session.add(counter)

    while True:
        counter.last_number += 1
        code = f'PROD-{counter.last_number}'
        if not exists_by_code(session, code):
            break

    session.flush()
    logger.info(f"[PRODUCT] Generated code {code}")
    return code


def create_product(session: Session, data: dict, actor=ANONYMOUS, commit: bool = True) -> Product:
    """
    Create a catalog product.

    Args:
        session: SQLAlchemy session
        data: dict with code, description and optional unit, department,
            current_quantity, min_quantity, max_quantity, imported_from_excel,
            auto_code (generate PROD-<n> when code is blank)
        actor: Actor creating the product
        commit: commit the transaction (import runs inside a savepoint instead)

    Raises:
        ValidationError: missing/invalid fields
        DuplicateCodeError: code already present
    """
    try:
        code = normalize_code(data.get('code'))
        if not code and data.get('auto_code'):
            code = generate_product_code(session)
        if not code:
            raise ValidationError('El código es requerido')
        if len(code) > CODE_MAX_LENGTH:
            raise ValidationError(f'El código admite máximo {CODE_MAX_LENGTH} caracteres')

        description = _clean_text(data.get('description'), 'La descripción', DESCRIPTION_MAX_LENGTH, required=True)
        unit = _clean_text(data.get('unit'), 'La unidad', 30) or _config('DEFAULT_UNIT', 'pza')
        department = _clean_text(data.get('department'), 'El departamento', 50) or _config('DEFAULT_DEPARTMENT', 'electronica')

        current_quantity = _quantity_field(data.get('current_quantity'), 'Cantidad actual', optional=True) or Decimal('0')
        min_quantity = _quantity_field(data.get('min_quantity'), 'Cantidad mínima', optional=True)
        max_quantity = _quantity_field(data.get('max_quantity'), 'Cantidad máxima', optional=True)
        _validate_thresholds(min_quantity, max_quantity)

        if exists_by_code(session, code):
            raise DuplicateCodeError(code)

        product = Product(
            code=code,
            description=description,
            unit=unit,
            department=department,
            current_quantity=current_quantity,
            min_quantity=min_quantity,
            max_quantity=max_quantity,
            total_movements=0,
            imported_from_excel=bool(data.get('imported_from_excel', False)),
            created_by=actor.user_id,
        )
        session.add(product)
        session.flush()

        log_action(session, actor, AuditAction.PRODUCT_CREATED, 'product', product.id, {
            'code': code,
            'current_quantity': current_quantity,
        })

        if commit:
            session.commit()
            invalidate_stock_caches()
        logger.info(f"[PRODUCT] Created {code} (id={product.id}) by {actor.user_id}")
        return product

    except AlmacenError:
        if commit:
            session.rollback()
        raise
    except IntegrityError as e:
        if commit:
            session.rollback()
        # Unique index caught a concurrent insert of the same code
        raise DuplicateCodeError(normalize_code(data.get('code'))) from e
    except DBAPIError as e:
        if commit:
            session.rollback()
        raise StoreUnavailableError(f'Error de base de datos al crear producto: {e.__class__.__name__}') from e


def get_product(session: Session, product_id: int) -> Product:
    """Get a product or raise NotFoundError."""
    product = session.query(Product).filter(Product.id == product_id).first()
    if not product:
        raise NotFoundError(f'Producto con ID {product_id} no encontrado')
    return product


def update_product(session: Session, product_id: int, fields: dict, actor=ANONYMOUS) -> Product:
    """
    Partially update a product.

    code is immutable: resending the same value is ignored, a different
    value is rejected. A changed current_quantity is recorded as an
    'ajuste' movement in the same transaction.
    """
    try:
        product = get_product(session, product_id)
        changes = {}

        if 'code' in fields and fields['code'] is not None:
            if normalize_code(fields['code']) != product.code:
                raise ValidationError('El código no puede modificarse después de crear el producto')

        if 'description' in fields:
            product.description = _clean_text(fields['description'], 'La descripción', DESCRIPTION_MAX_LENGTH, required=True)
            changes['description'] = product.description
        if 'unit' in fields:
            product.unit = _clean_text(fields['unit'], 'La unidad', 30) or _config('DEFAULT_UNIT', 'pza')
            changes['unit'] = product.unit
        if 'department' in fields:
            product.department = _clean_text(fields['department'], 'El departamento', 50) or _config('DEFAULT_DEPARTMENT', 'electronica')
            changes['department'] = product.department

        min_quantity = product.min_quantity
        max_quantity = product.max_quantity
        if 'min_quantity' in fields:
            min_quantity = _quantity_field(fields['min_quantity'], 'Cantidad mínima', optional=True)
        if 'max_quantity' in fields:
            max_quantity = _quantity_field(fields['max_quantity'], 'Cantidad máxima', optional=True)
        _validate_thresholds(min_quantity, max_quantity)
        if 'min_quantity' in fields:
            product.min_quantity = min_quantity
            changes['min_quantity'] = min_quantity
        if 'max_quantity' in fields:
            product.max_quantity = max_quantity
            changes['max_quantity'] = max_quantity

        new_stock = fields.get('current_quantity')
        if new_stock is not None and not (isinstance(new_stock, str) and not new_stock.strip()):
            new_quantity = _quantity_field(new_stock, 'Cantidad actual')
            if new_quantity != product.current_quantity:
                movement_service.record_movement(
                    session, product, MovementType.AJUSTE, new_quantity,
                    reason=fields.get('reason') or 'Edición desde catálogo',
                    reference=None,
                    actor=actor
                )
                changes['current_quantity'] = new_quantity

        session.flush()
        log_action(session, actor, AuditAction.PRODUCT_UPDATED, 'product', product.id, changes)
        session.commit()
        invalidate_stock_caches()

        logger.info(f"[PRODUCT] Updated {product.code} fields={sorted(changes)} by {actor.user_id}")
        return product

    except AlmacenError:
        session.rollback()
        raise
    except StaleDataError as e:
        session.rollback()
        raise ConflictError() from e
    except DBAPIError as e:
        session.rollback()
        raise StoreUnavailableError(f'Error de base de datos al actualizar producto: {e.__class__.__name__}') from e


def delete_product(session: Session, product_id: int, actor=ANONYMOUS) -> dict:
    """
    Delete a product.

    Movements are kept: their product_id is a soft reference and they carry
    the product code/description snapshot for display.
    """
    try:
        product = get_product(session, product_id)
        summary = {
            'id': product.id,
            'code': product.code,
            'description': product.description,
            'total_movements': product.total_movements,
        }
        session.delete(product)
        log_action(session, actor, AuditAction.PRODUCT_DELETED, 'product', product_id, summary)
        session.commit()
        invalidate_stock_caches()

        logger.info(f"[PRODUCT] Deleted {summary['code']} (id={product_id}) by {actor.user_id}")
        return summary

    except AlmacenError:
        session.rollback()
        raise
    except StaleDataError as e:
        session.rollback()
        raise ConflictError() from e
    except DBAPIError as e:
        session.rollback()
        raise StoreUnavailableError(f'Error de base de datos al eliminar producto: {e.__class__.__name__}') from e


def list_products(session: Session, filters: Optional[dict] = None):
    """
    List products matching all given filters, ordered by description.

    Filters:
        department: equality
        description: prefix
        code: equality (trimmed)
        stock_status: 'low' | 'excess' | 'out'
    """
    filters = filters or {}
    query = session.query(Product)

    department = (filters.get('department') or '').strip()
    if department:
        query = query.filter(Product.department == department)

    description = (filters.get('description') or '').strip()
    if description:
        query = query.filter(Product.description.startswith(description, autoescape=True))

    code = normalize_code(filters.get('code'))
    if code:
        query = query.filter(Product.code == code)

    stock_status = (filters.get('stock_status') or '').strip().lower()
    if stock_status == 'low':
        query = query.filter(
            Product.min_quantity.isnot(None),
            Product.min_quantity > 0,
            Product.current_quantity <= Product.min_quantity
        )
    elif stock_status == 'excess':
        query = query.filter(
            Product.max_quantity.isnot(None),
            Product.max_quantity > 0,
            Product.current_quantity > Product.max_quantity
        )
    elif stock_status == 'out':
        query = query.filter(Product.current_quantity <= 0)
    elif stock_status:
        raise ValidationError(f'Filtro de stock inválido: {stock_status}')

    return query.order_by(Product.description, Product.id).all()


def search_by_code(session: Session, prefix: str, limit: int = 20):
    """Autocomplete: products whose code starts with prefix."""
    prefix = normalize_code(prefix)
    if not prefix:
        return []
    return session.query(Product).filter(
        Product.code.startswith(prefix, autoescape=True)
    ).order_by(Product.code, Product.created_at.desc()).limit(limit).all()


def list_departments(session: Session):
    """Distinct departments present in the catalog."""
    rows = session.query(Product.department).distinct().order_by(Product.department).all()
    return [row[0] for row in rows]
