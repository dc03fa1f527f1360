"""
Unit tests for SQLAlchemy models.
"""

import pytest
from datetime import datetime
from decimal import Decimal

from almacen.models import Product, Movement, MovementType


def _product(current, minimum=None, maximum=None):
    return Product(
        code='X',
        description='X',
        current_quantity=Decimal(str(current)),
        min_quantity=Decimal(str(minimum)) if minimum is not None else None,
        max_quantity=Decimal(str(maximum)) if maximum is not None else None,
    )


class TestProductAlerts:
    """Derived stock flags on Product."""

    def test_low_stock_at_minimum(self):
        assert _product(20, minimum=20).is_low_stock is True

    def test_not_low_above_minimum(self):
        assert _product(21, minimum=20).is_low_stock is False

    def test_no_minimum_never_low(self):
        assert _product(0).is_low_stock is False
        assert _product(0, minimum=0).is_low_stock is False

    def test_almost_out_within_ten_percent(self):
        """min 20 -> threshold 22."""
        assert _product(22, minimum=20).is_almost_out() is True
        assert _product(23, minimum=20).is_almost_out() is False

    def test_almost_out_custom_factor(self):
        assert _product(29, minimum=20).is_almost_out(factor=1.5) is True

    def test_excess_stock(self):
        assert _product(101, maximum=100).is_excess_stock is True
        assert _product(100, maximum=100).is_excess_stock is False
        assert _product(1000).is_excess_stock is False

    @pytest.mark.parametrize('current, expected', [
        (0, 'critical'),
        (10, 'critical'),
        (11, 'warning'),
        (20, 'warning'),
        (21, 'ok'),
    ])
    def test_alert_level(self, current, expected):
        assert _product(current, minimum=20).alert_level == expected

    def test_alert_level_without_minimum(self):
        assert _product(5).alert_level is None

    def test_to_dict_serializes_quantities_as_floats(self):
        data = _product('12.5', minimum=10).to_dict()
        assert data['current_quantity'] == 12.5
        assert data['min_quantity'] == 10.0
        assert data['max_quantity'] is None
        assert data['is_low_stock'] is False
        assert data['alert_level'] == 'ok'


class TestProductPersistence:
    """Tests for Product persistence."""

    def test_create_product(self, session):
        product = _product(5)
        product.code = 'NEW-1'
        product.description = 'Nuevo'
        session.add(product)
        session.commit()

        assert product.id is not None
        assert product.unit == 'pza'
        assert product.total_movements == 0
        assert product.imported_from_excel is False
        assert product.version == 1

    def test_code_unique(self, session, product):
        duplicate = _product(1)
        duplicate.code = product.code
        session.add(duplicate)

        with pytest.raises(Exception):  # IntegrityError
            session.commit()

    def test_version_increments_on_update(self, session, product):
        assert product.version == 1
        product.description = 'Tornillo 3/8'
        session.commit()
        assert product.version == 2


class TestMovementType:
    """Tests for MovementType.from_value."""

    def test_accepts_any_case(self):
        assert MovementType.from_value('Salida') is MovementType.SALIDA

    def test_accepts_enum(self):
        assert MovementType.from_value(MovementType.AJUSTE) is MovementType.AJUSTE

    def test_rejects_unknown(self):
        with pytest.raises(ValueError):
            MovementType.from_value('robo')


class TestMovementModel:
    """Tests for Movement helpers."""

    def test_delta_and_to_dict(self):
        movement = Movement(
            id=1,
            product_id=7,
            product_code='P-7',
            product_description='Martillo',
            type=MovementType.SALIDA,
            previous_quantity=Decimal('10'),
            new_quantity=Decimal('7'),
            quantity=Decimal('3'),
            user_id='user-1',
            timestamp=datetime(2024, 5, 1, 10, 30),
            reverted=False,
        )

        data = movement.to_dict()

        assert movement.delta == Decimal('-3')
        assert movement.is_reversible is True
        assert data['type'] == 'salida'
        assert data['type_label'] == 'Salida'
        assert data['delta'] == -3.0
        assert data['timestamp'] == '2024-05-01T10:30:00'

    def test_reversion_not_reversible(self):
        movement = Movement(type=MovementType.REVERSION, reverted=False)
        assert movement.is_reversible is False
