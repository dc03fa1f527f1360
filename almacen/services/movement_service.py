"""
Movement Recorder - the only writer of Product.current_quantity.

Every balance change is paired with an immutable Movement row and both
writes are committed in one transaction:

- apply_movement: entrada / salida / ajuste
- reverse_movement: compensating 'reversion' entry, original flagged reverted
- quick_adjust: '+5' / '-3' / '12' parsed into the same validated request

Lost updates between concurrent writers are prevented by the row lock
(SELECT ... FOR UPDATE), the Product.version token and the optional
expected_quantity compare-and-swap; all three surface as ConflictError.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from almacen.blueprints.metrics import stock_movements_total
from almacen.exceptions import (
    AlmacenError, ValidationError, NotFoundError, InsufficientStockError,
    InvalidStateError, ConflictError, StoreUnavailableError
)
from almacen.middleware import ANONYMOUS
from almacen.models import Product, Movement, MovementType
from almacen.services.cache_service import invalidate_stock_caches
from almacen.utils.number_format import MAX_QUANTITY, parse_quantity, split_signed_quantity

logger = logging.getLogger(__name__)

APPLICABLE_TYPES = (MovementType.ENTRADA, MovementType.SALIDA, MovementType.AJUSTE)


def normalize_movement_request(movement_type, quantity) -> Tuple[MovementType, Decimal]:
    """
    Validate a (type, quantity) pair for apply_movement.

    entrada/salida need a quantity > 0; ajuste accepts 0 (empty the shelf).
    reversion entries are produced only by reverse_movement.

    Raises:
        ValidationError: unknown type, reversion, or invalid quantity
    """
    try:
        mtype = MovementType.from_value(movement_type)
    except ValueError as e:
        raise ValidationError(str(e))

    if mtype not in APPLICABLE_TYPES:
        raise ValidationError('Las reversiones solo pueden generarse revirtiendo un movimiento')

    try:
        qty = parse_quantity(quantity)
    except ValueError as e:
        raise ValidationError(str(e))

    if mtype != MovementType.AJUSTE and qty <= 0:
        raise ValidationError('La cantidad debe ser mayor a 0')

    return mtype, qty


def parse_quick_adjust(text) -> Tuple[MovementType, Decimal]:
    """
    Parse a quick-adjust string.

    '+5'  -> (ENTRADA, 5)
    '-3'  -> (SALIDA, 3)
    '12'  -> (AJUSTE, 12)   absolute set

    Raises:
        ValidationError: malformed input
    """
    try:
        sign, magnitude = split_signed_quantity(text)
    except ValueError as e:
        raise ValidationError(str(e))

    if sign == '+':
        mtype = MovementType.ENTRADA
    elif sign == '-':
        mtype = MovementType.SALIDA
    else:
        mtype = MovementType.AJUSTE

    return normalize_movement_request(mtype, magnitude)


def compute_new_quantity(product: Product, movement_type: MovementType, quantity: Decimal) -> Decimal:
    """New balance for a movement, raising InsufficientStockError below zero
    and ValidationError past the column capacity."""
    previous = product.current_quantity
    if movement_type == MovementType.ENTRADA:
        new_quantity = previous + quantity
        if new_quantity > MAX_QUANTITY:
            raise ValidationError('El stock resultante excede el máximo admitido')
        return new_quantity
    if movement_type == MovementType.SALIDA:
        new_quantity = previous - quantity
        if new_quantity < 0:
            raise InsufficientStockError(product.description or product.code, quantity, previous)
        return new_quantity
    if movement_type == MovementType.AJUSTE:
        return quantity
    raise ValidationError(f'Tipo de movimiento no aplicable: {movement_type.value}')


def _lock_product(session: Session, product_id) -> Product:
    product = session.query(Product).filter(
        Product.id == product_id
    ).with_for_update().first()
    if not product:
        raise NotFoundError(f'Producto con ID {product_id} no encontrado')
    return product


def record_movement(session: Session, product: Product, movement_type: MovementType, quantity: Decimal,
                    reason: Optional[str] = None, reference: Optional[str] = None,
                    actor=ANONYMOUS) -> Movement:
    """
    Stage the balance update and its ledger entry in the current transaction.

    Does not commit; callers (apply_movement, product_service.update_product)
    own the transaction boundary.
    """
    previous_quantity = product.current_quantity
    new_quantity = compute_new_quantity(product, movement_type, quantity)

    product.current_quantity = new_quantity
    product.total_movements = (product.total_movements or 0) + 1
    product.updated_at = datetime.now()

    movement = Movement(
        product_id=product.id,
        product_code=product.code,
        product_description=product.description,
        type=movement_type,
        previous_quantity=previous_quantity,
        new_quantity=new_quantity,
        quantity=quantity,
        reason=(reason or '').strip() or None,
        reference=(reference or '').strip() or None,
        user_id=actor.user_id,
        user_name=actor.user_name,
        timestamp=datetime.now(),
        reverted=False,
    )
    session.add(movement)
    return movement


def apply_movement(session: Session, product_id: int, movement_type, quantity,
                   reason: Optional[str] = None, reference: Optional[str] = None,
                   actor=ANONYMOUS, expected_quantity=None) -> Movement:
    """
    Apply a stock movement atomically.

    Args:
        session: SQLAlchemy session
        product_id: Product to move
        movement_type: 'entrada' | 'salida' | 'ajuste' (or MovementType)
        quantity: magnitude (absolute value for 'ajuste')
        reason, reference: audit metadata
        actor: Actor performing the change
        expected_quantity: optional balance the caller last saw; a mismatch
            raises ConflictError instead of overwriting a concurrent change

    Returns:
        The new Movement (committed)

    Raises:
        ValidationError, NotFoundError, InsufficientStockError,
        ConflictError, StoreUnavailableError
    """
    try:
        mtype, qty = normalize_movement_request(movement_type, quantity)

        expected = None
        if expected_quantity is not None and expected_quantity != '':
            try:
                expected = parse_quantity(expected_quantity)
            except ValueError as e:
                raise ValidationError(f'Cantidad esperada: {e}')

        product = _lock_product(session, product_id)

        if expected is not None and product.current_quantity != expected:
            raise ConflictError(payload={
                'expected_quantity': float(expected),
                'current_quantity': float(product.current_quantity),
            })

        movement = record_movement(session, product, mtype, qty, reason, reference, actor)
        session.commit()
        invalidate_stock_caches()

        stock_movements_total.labels(type=mtype.value).inc()
        logger.info(
            f"[MOVEMENT] {mtype.value} #{movement.id} product={product.code} "
            f"{movement.previous_quantity}->{movement.new_quantity} by {actor.user_id}"
        )
        return movement

    except AlmacenError:
        session.rollback()
        raise
    except StaleDataError as e:
        session.rollback()
        raise ConflictError() from e
    except DBAPIError as e:
        session.rollback()
        raise StoreUnavailableError(f'Error de base de datos al registrar movimiento: {e.__class__.__name__}') from e


def quick_adjust(session: Session, product_id: int, adjustment, reason: Optional[str] = None,
                 reference: Optional[str] = None, actor=ANONYMOUS, expected_quantity=None) -> Movement:
    """Parse a '+5' / '-3' / '12' adjustment and apply it."""
    mtype, qty = parse_quick_adjust(adjustment)
    return apply_movement(
        session, product_id, mtype, qty,
        reason=reason or f'Ajuste rápido ({str(adjustment).strip()})',
        reference=reference,
        actor=actor,
        expected_quantity=expected_quantity
    )


def get_movement(session: Session, movement_id: int) -> Movement:
    movement = session.query(Movement).filter(Movement.id == movement_id).first()
    if not movement:
        raise NotFoundError(f'Movimiento con ID {movement_id} no encontrado')
    return movement


def get_latest_live_movement(session: Session, product_id: int) -> Optional[Movement]:
    """Newest movement of a product that is neither a reversion nor reverted."""
    return session.query(Movement).filter(
        Movement.product_id == product_id,
        Movement.type != MovementType.REVERSION,
        Movement.reverted.is_(False)
    ).order_by(Movement.id.desc()).first()


def reverse_movement(session: Session, movement_id: int, reason: str, actor=ANONYMOUS) -> Movement:
    """
    Revert a movement with a compensating 'reversion' entry.

    Only the product's most recent live movement can be reverted, so
    reversals unwind the ledger in order and the balance always equals the
    new_quantity of the latest live entry.

    Returns:
        The reversion Movement (committed)

    Raises:
        NotFoundError: movement or its product missing
        InvalidStateError: reversion entry, already reverted, or not the latest
        ConflictError, StoreUnavailableError
    """
    try:
        reason = (reason or '').strip()
        if not reason:
            raise ValidationError('El motivo de la reversión es requerido')

        target = get_movement(session, movement_id)

        if target.type == MovementType.REVERSION:
            raise InvalidStateError('Un movimiento de reversión no puede revertirse')
        if target.reverted:
            raise InvalidStateError(f'El movimiento #{movement_id} ya fue revertido')

        product = _lock_product(session, target.product_id)

        latest = get_latest_live_movement(session, product.id)
        if latest is None or latest.id != target.id:
            raise InvalidStateError(
                'Solo puede revertirse el movimiento vigente más reciente del producto',
                payload={'latest_movement_id': latest.id if latest else None}
            )

        if product.current_quantity != target.new_quantity:
            raise ConflictError(payload={
                'expected_quantity': float(target.new_quantity),
                'current_quantity': float(product.current_quantity),
            })

        now = datetime.now()

        product.current_quantity = target.previous_quantity
        product.total_movements = (product.total_movements or 0) + 1
        product.updated_at = now

        reversal = Movement(
            product_id=product.id,
            product_code=product.code,
            product_description=product.description,
            type=MovementType.REVERSION,
            previous_quantity=target.new_quantity,
            new_quantity=target.previous_quantity,
            quantity=None,
            reason=f'Reversión: {reason}',
            reference=target.reference,
            user_id=actor.user_id,
            user_name=actor.user_name,
            timestamp=now,
            reverted=False,
            original_movement_id=target.id,
        )
        session.add(reversal)

        target.reverted = True
        target.reversed_by = actor.user_id
        target.reversed_at = now
        target.reversion_reason = reason

        session.commit()
        invalidate_stock_caches()

        stock_movements_total.labels(type=MovementType.REVERSION.value).inc()
        logger.info(
            f"[MOVEMENT] reversion #{reversal.id} of #{target.id} product={product.code} "
            f"{reversal.previous_quantity}->{reversal.new_quantity} by {actor.user_id}"
        )
        return reversal

    except AlmacenError:
        session.rollback()
        raise
    except StaleDataError as e:
        session.rollback()
        raise ConflictError() from e
    except DBAPIError as e:
        session.rollback()
        raise StoreUnavailableError(f'Error de base de datos al revertir movimiento: {e.__class__.__name__}') from e


def get_product_history(session: Session, product_id: int, limit: Optional[int] = None):
    """Ledger of a product, newest first. Works for deleted products too."""
    query = session.query(Movement).filter(
        Movement.product_id == product_id
    ).order_by(Movement.timestamp.desc(), Movement.id.desc())
    if limit:
        query = query.limit(limit)
    return query.all()


def list_movements(session: Session, start: Optional[datetime] = None, end: Optional[datetime] = None,
                   movement_type=None, limit: Optional[int] = None):
    """All movements, newest first, optionally within [start, end] and of one type."""
    query = session.query(Movement)

    if start is not None:
        query = query.filter(Movement.timestamp >= start)
    if end is not None:
        query = query.filter(Movement.timestamp <= end)
    if movement_type:
        try:
            query = query.filter(Movement.type == MovementType.from_value(movement_type))
        except ValueError as e:
            raise ValidationError(str(e))

    query = query.order_by(Movement.timestamp.desc(), Movement.id.desc())
    if limit:
        query = query.limit(limit)
    return query.all()


def ledger_balance(session: Session, product_id: int) -> Optional[Decimal]:
    """
    Balance implied by the ledger: new_quantity of the latest entry.

    None when the product has no movements (balance is the creation value).
    """
    latest = session.query(Movement).filter(
        Movement.product_id == product_id
    ).order_by(Movement.id.desc()).first()
    return latest.new_quantity if latest else None
