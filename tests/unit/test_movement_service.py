"""
Unit tests for the movement recorder: apply, reverse and quick-adjust.
"""

import pytest
from decimal import Decimal
from unittest.mock import patch

from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from almacen.exceptions import (
    ValidationError, NotFoundError, InsufficientStockError, InvalidStateError,
    ConflictError, DuplicateCodeError, StoreUnavailableError
)
from almacen.middleware import Actor
from almacen.models import Movement, MovementType, Product
from almacen.services import movement_service, product_service


def _signed_delta(movement):
    if movement.type == MovementType.ENTRADA:
        return movement.quantity
    if movement.type == MovementType.SALIDA:
        return -movement.quantity
    return movement.new_quantity - movement.previous_quantity


class TestApplyMovement:
    """Tests for apply_movement."""

    def test_entrada(self, session, product, actor):
        movement = movement_service.apply_movement(
            session, product.id, 'entrada', 10, reason='Compra', reference='FAC-1', actor=actor
        )

        assert movement.type == MovementType.ENTRADA
        assert movement.previous_quantity == Decimal('50')
        assert movement.new_quantity == Decimal('60')
        assert movement.quantity == Decimal('10')
        assert movement.reason == 'Compra'
        assert movement.reference == 'FAC-1'
        assert movement.user_id == 'user-1'
        assert movement.user_name == 'Ana Pérez'
        assert movement.product_code == 'P-001'
        assert movement.reverted is False
        assert product.current_quantity == Decimal('60')
        assert product.total_movements == 1

    def test_ajuste_sets_absolute_value(self, session, product, actor):
        movement = movement_service.apply_movement(session, product.id, 'ajuste', '12,5', actor=actor)

        assert movement.new_quantity == Decimal('12.5')
        assert product.current_quantity == Decimal('12.5')

    def test_ajuste_to_zero(self, session, product, actor):
        movement_service.apply_movement(session, product.id, 'ajuste', 0, actor=actor)
        assert product.current_quantity == Decimal('0')

    def test_salida_exact_balance_reaches_zero(self, session, product, actor):
        movement_service.apply_movement(session, product.id, 'salida', 50, actor=actor)
        assert product.current_quantity == Decimal('0')

    def test_insufficient_stock_leaves_balance(self, session, product, actor):
        with pytest.raises(InsufficientStockError) as exc_info:
            movement_service.apply_movement(session, product.id, 'salida', 51, actor=actor)

        assert exc_info.value.status_code == 409
        assert 'Tornillo 1/4' in exc_info.value.message
        session.expire_all()
        stored = session.get(Product, product.id)
        assert stored.current_quantity == Decimal('50')
        assert stored.total_movements == 0
        assert session.query(Movement).count() == 0

    def test_missing_product(self, session, actor):
        with pytest.raises(NotFoundError):
            movement_service.apply_movement(session, 404, 'entrada', 1, actor=actor)

    @pytest.mark.parametrize('movement_type, quantity', [
        ('entrada', 0),
        ('salida', -2),
        ('reversion', 1),
        ('otro', 1),
        ('entrada', 'muchos'),
        ('entrada', '0.004'),
        ('salida', '0,001'),
        ('entrada', '12345678901'),
        ('ajuste', Decimal('1E+12')),
    ])
    def test_invalid_requests(self, session, product, actor, movement_type, quantity):
        with pytest.raises(ValidationError):
            movement_service.apply_movement(session, product.id, movement_type, quantity, actor=actor)
        assert session.query(Movement).count() == 0

    def test_expected_quantity_match(self, session, product, actor):
        movement_service.apply_movement(session, product.id, 'salida', 5, actor=actor, expected_quantity='50')
        assert product.current_quantity == Decimal('45')

    def test_expected_quantity_conflict(self, session, product, actor):
        """A caller holding a stale balance gets ConflictError instead of a lost update."""
        movement_service.apply_movement(session, product.id, 'salida', 5, actor=actor)

        with pytest.raises(ConflictError) as exc_info:
            movement_service.apply_movement(session, product.id, 'salida', 5, actor=actor, expected_quantity=50)

        assert exc_info.value.payload['current_quantity'] == 45.0
        assert product.current_quantity == Decimal('45')
        assert session.query(Movement).count() == 1

    def test_balance_matches_ledger(self, session, product, actor):
        """Balance equals the last new_quantity and the creation value plus signed deltas."""
        operations = [('entrada', 10), ('salida', 25), ('ajuste', 40), ('salida', 3), ('entrada', '2.5')]
        last = None
        for movement_type, quantity in operations:
            last = movement_service.apply_movement(session, product.id, movement_type, quantity, actor=actor)

        history = movement_service.get_product_history(session, product.id)
        total_delta = sum((_signed_delta(m) for m in history), Decimal('0'))

        assert product.current_quantity == last.new_quantity == Decimal('39.5')
        assert product.current_quantity == Decimal('50') + total_delta
        assert product.total_movements == len(operations)
        assert movement_service.ledger_balance(session, product.id) == product.current_quantity

    def test_low_stock_scenario(self, session, product, actor):
        """50 units, min 20: salida 40 -> 10 and low stock; salida 20 then fails."""
        movement_service.apply_movement(session, product.id, 'salida', 40, actor=actor)

        assert product.current_quantity == Decimal('10')
        assert product.is_low_stock is True

        with pytest.raises(InsufficientStockError):
            movement_service.apply_movement(session, product.id, 'salida', 20, actor=actor)

        session.expire_all()
        assert session.get(Product, product.id).current_quantity == Decimal('10')

    def test_anonymous_actor_default(self, session, product):
        movement = movement_service.apply_movement(session, product.id, 'entrada', 1)
        assert movement.user_id == 'anonymous'

    def test_entrada_past_column_capacity(self, session, product, actor):
        movement_service.apply_movement(session, product.id, 'ajuste', '9999999999.99', actor=actor)

        with pytest.raises(ValidationError):
            movement_service.apply_movement(session, product.id, 'entrada', 1, actor=actor)

        session.expire_all()
        assert session.get(Product, product.id).current_quantity == Decimal('9999999999.99')
        assert session.query(Movement).count() == 1

    def test_stored_quantity_is_exact(self, session, product, actor):
        """Two-decimal quantities round-trip through the database unchanged."""
        movement = movement_service.apply_movement(session, product.id, 'entrada', '0,25', actor=actor)

        session.expire_all()
        stored = session.get(Movement, movement.id)
        assert stored.quantity == Decimal('0.25')
        assert stored.new_quantity == Decimal('50.25')


class TestQuickAdjust:
    """quick_adjust goes through the same validation as apply."""

    def test_plus(self, session, product, actor):
        movement = movement_service.quick_adjust(session, product.id, '+5', actor=actor)
        assert movement.type == MovementType.ENTRADA
        assert product.current_quantity == Decimal('55')

    def test_minus(self, session, product, actor):
        movement = movement_service.quick_adjust(session, product.id, '-3', actor=actor)
        assert movement.type == MovementType.SALIDA
        assert movement.reason == 'Ajuste rápido (-3)'
        assert product.current_quantity == Decimal('47')

    def test_absolute(self, session, product, actor):
        movement = movement_service.quick_adjust(session, product.id, '12', reason='Conteo', actor=actor)
        assert movement.type == MovementType.AJUSTE
        assert movement.reason == 'Conteo'
        assert product.current_quantity == Decimal('12')

    def test_minus_beyond_stock(self, session, product, actor):
        with pytest.raises(InsufficientStockError):
            movement_service.quick_adjust(session, product.id, '-60', actor=actor)

    def test_invalid_text(self, session, product, actor):
        with pytest.raises(ValidationError):
            movement_service.quick_adjust(session, product.id, 'cinco', actor=actor)


class TestReverseMovement:
    """Tests for reverse_movement."""

    def test_round_trip_entrada(self, session, product, actor):
        movement = movement_service.apply_movement(session, product.id, 'entrada', 10, actor=actor)

        reversal = movement_service.reverse_movement(session, movement.id, 'Carga duplicada', actor=actor)

        assert product.current_quantity == Decimal('50')
        assert reversal.type == MovementType.REVERSION
        assert reversal.previous_quantity == Decimal('60')
        assert reversal.new_quantity == Decimal('50')
        assert reversal.quantity is None
        assert reversal.original_movement_id == movement.id
        assert reversal.reason == 'Reversión: Carga duplicada'
        assert movement.reverted is True
        assert movement.reversed_by == 'user-1'
        assert movement.reversed_at is not None
        assert movement.reversion_reason == 'Carga duplicada'
        assert product.total_movements == 2

    def test_round_trip_salida_and_ajuste(self, session, product, actor):
        salida = movement_service.apply_movement(session, product.id, 'salida', 8, actor=actor)
        ajuste = movement_service.apply_movement(session, product.id, 'ajuste', 3, actor=actor)

        movement_service.reverse_movement(session, ajuste.id, 'Conteo erróneo', actor=actor)
        assert product.current_quantity == Decimal('42')

        movement_service.reverse_movement(session, salida.id, 'Devuelto', actor=actor)
        assert product.current_quantity == Decimal('50')

    def test_double_reverse_fails_and_keeps_first(self, session, product, actor):
        movement = movement_service.apply_movement(session, product.id, 'salida', 5, actor=actor)
        movement_service.reverse_movement(session, movement.id, 'Error', actor=actor)

        with pytest.raises(InvalidStateError):
            movement_service.reverse_movement(session, movement.id, 'Otra vez', actor=actor)

        session.expire_all()
        stored = session.get(Movement, movement.id)
        assert stored.reverted is True
        assert stored.reversion_reason == 'Error'
        assert session.get(Product, product.id).current_quantity == Decimal('50')
        assert session.query(Movement).filter(Movement.type == MovementType.REVERSION).count() == 1

    def test_reversion_cannot_be_reverted(self, session, product, actor):
        movement = movement_service.apply_movement(session, product.id, 'entrada', 4, actor=actor)
        reversal = movement_service.reverse_movement(session, movement.id, 'Error', actor=actor)

        with pytest.raises(InvalidStateError):
            movement_service.reverse_movement(session, reversal.id, 'Deshacer', actor=actor)

    def test_only_latest_live_movement(self, session, product, actor):
        """Reversals unwind the ledger newest first."""
        first = movement_service.apply_movement(session, product.id, 'entrada', 10, actor=actor)
        movement_service.apply_movement(session, product.id, 'salida', 5, actor=actor)

        with pytest.raises(InvalidStateError) as exc_info:
            movement_service.reverse_movement(session, first.id, 'Viejo', actor=actor)

        assert exc_info.value.status_code == 409
        assert product.current_quantity == Decimal('55')

    def test_reason_required(self, session, product, actor):
        movement = movement_service.apply_movement(session, product.id, 'entrada', 1, actor=actor)
        with pytest.raises(ValidationError):
            movement_service.reverse_movement(session, movement.id, '   ', actor=actor)

    def test_missing_movement(self, session, actor):
        with pytest.raises(NotFoundError):
            movement_service.reverse_movement(session, 999, 'x', actor=actor)

    def test_deleted_product(self, session, product, actor):
        movement = movement_service.apply_movement(session, product.id, 'entrada', 1, actor=actor)
        product_service.delete_product(session, product.id, actor=actor)

        with pytest.raises(NotFoundError):
            movement_service.reverse_movement(session, movement.id, 'x', actor=actor)

    def test_reverser_recorded(self, session, product, actor):
        movement = movement_service.apply_movement(session, product.id, 'entrada', 1, actor=actor)
        other = Actor('user-2', 'Luis')

        reversal = movement_service.reverse_movement(session, movement.id, 'x', actor=other)

        assert reversal.user_id == 'user-2'
        assert movement.reversed_by == 'user-2'


class TestAtomicity:
    """A failed commit leaves neither a ledger entry nor a balance change."""

    def _bump_version(self, session, product):
        """Simulate a concurrent writer: bump the row version behind the ORM's back."""
        assert product.version is not None
        session.execute(text('UPDATE product SET version = version + 1 WHERE id = :id'), {'id': product.id})

    def test_apply_commit_failure(self, session, product, actor):
        failure = OperationalError('COMMIT', {}, Exception('database is locked'))

        with patch.object(session, 'commit', side_effect=failure):
            with pytest.raises(StoreUnavailableError) as exc_info:
                movement_service.apply_movement(session, product.id, 'salida', 10, actor=actor)

        assert exc_info.value.status_code == 503
        session.expire_all()
        stored = session.get(Product, product.id)
        assert stored.current_quantity == Decimal('50')
        assert stored.total_movements == 0
        assert session.query(Movement).count() == 0

    def test_apply_concurrent_version_change(self, session, product, actor):
        self._bump_version(session, product)

        with pytest.raises(ConflictError):
            movement_service.apply_movement(session, product.id, 'entrada', 5, actor=actor)

        session.expire_all()
        assert session.get(Product, product.id).current_quantity == Decimal('50')
        assert session.query(Movement).count() == 0

    def test_reverse_commit_failure(self, session, product, actor):
        movement = movement_service.apply_movement(session, product.id, 'entrada', 10, actor=actor)
        failure = OperationalError('COMMIT', {}, Exception('server closed the connection'))

        with patch.object(session, 'commit', side_effect=failure):
            with pytest.raises(StoreUnavailableError):
                movement_service.reverse_movement(session, movement.id, 'Error', actor=actor)

        session.expire_all()
        assert session.get(Product, product.id).current_quantity == Decimal('60')
        stored = session.get(Movement, movement.id)
        assert stored.reverted is False
        assert stored.reversed_by is None
        assert session.query(Movement).filter(Movement.type == MovementType.REVERSION).count() == 0

    def test_reverse_concurrent_version_change(self, session, product, actor):
        movement = movement_service.apply_movement(session, product.id, 'salida', 5, actor=actor)
        self._bump_version(session, product)

        with pytest.raises(ConflictError):
            movement_service.reverse_movement(session, movement.id, 'Error', actor=actor)

        session.expire_all()
        assert session.get(Product, product.id).current_quantity == Decimal('45')
        assert session.get(Movement, movement.id).reverted is False
        assert session.query(Movement).count() == 1

    def test_retry_after_failure_succeeds(self, session, product, actor):
        failure = OperationalError('COMMIT', {}, Exception('database is locked'))
        with patch.object(session, 'commit', side_effect=failure):
            with pytest.raises(StoreUnavailableError):
                movement_service.apply_movement(session, product.id, 'entrada', 3, actor=actor)

        movement = movement_service.apply_movement(session, product.id, 'entrada', 3, actor=actor)

        assert movement.previous_quantity == Decimal('50')
        assert product.current_quantity == Decimal('53')
        assert session.query(Movement).count() == 1


class TestListMovements:
    """Tests for history and listing."""

    def test_history_newest_first(self, session, product, actor):
        a = movement_service.apply_movement(session, product.id, 'entrada', 1, actor=actor)
        b = movement_service.apply_movement(session, product.id, 'entrada', 2, actor=actor)

        history = movement_service.get_product_history(session, product.id)
        assert [m.id for m in history] == [b.id, a.id]
        assert movement_service.get_product_history(session, product.id, limit=1)[0].id == b.id

    def test_list_by_type(self, session, product, empty_product, actor):
        movement_service.apply_movement(session, product.id, 'entrada', 1, actor=actor)
        movement_service.apply_movement(session, empty_product.id, 'entrada', 3, actor=actor)
        movement_service.apply_movement(session, product.id, 'salida', 1, actor=actor)

        assert len(movement_service.list_movements(session)) == 3
        assert len(movement_service.list_movements(session, movement_type='entrada')) == 2
        assert len(movement_service.list_movements(session, limit=1)) == 1

    def test_list_invalid_type(self, session):
        with pytest.raises(ValidationError):
            movement_service.list_movements(session, movement_type='robo')

    def test_duplicate_create_scenario(self, session, actor):
        """Creating X1 twice leaves exactly one product."""
        product_service.create_product(session, {'code': 'X1', 'description': 'Widget'}, actor=actor)
        with pytest.raises(DuplicateCodeError):
            product_service.create_product(session, {'code': 'X1', 'description': 'Widget'}, actor=actor)

        assert session.query(Product).filter(Product.code == 'X1').count() == 1
