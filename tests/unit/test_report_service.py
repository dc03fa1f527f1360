"""
Unit tests for report aggregation and exports.
"""

import pytest
from datetime import date, datetime, timedelta
from decimal import Decimal

import pandas as pd

from almacen.exceptions import ValidationError
from almacen.models import Movement, MovementType
from almacen.services import report_service, movement_service


def _movement(session, product, movement_type, when, previous=0, new=0):
    movement = Movement(
        product_id=product.id,
        product_code=product.code,
        product_description=product.description,
        type=movement_type,
        previous_quantity=Decimal(str(previous)),
        new_quantity=Decimal(str(new)),
        quantity=None if movement_type == MovementType.REVERSION else Decimal('1'),
        user_id='user-1',
        timestamp=when,
        reverted=False,
    )
    session.add(movement)
    session.commit()
    return movement


class TestParseReportRange:
    """Tests for parse_report_range."""

    def test_default_last_30_days(self):
        start, end = report_service.parse_report_range(None, None, today=date(2024, 3, 31))
        assert end == date(2024, 3, 31)
        assert start == date(2024, 3, 1)

    def test_explicit_range(self):
        start, end = report_service.parse_report_range('2024-01-01', '2024-01-07')
        assert (start, end) == (date(2024, 1, 1), date(2024, 1, 7))

    def test_invalid_format(self):
        with pytest.raises(ValidationError):
            report_service.parse_report_range('01/01/2024', None)

    def test_start_after_end(self):
        with pytest.raises(ValidationError):
            report_service.parse_report_range('2024-02-01', '2024-01-01')


class TestStatistics:
    """Tests for get_statistics and get_dashboard."""

    def test_statistics(self, session, product_factory, actor):
        low = product_factory('S-1', current=5, minimum=10)
        product_factory('S-2', current=30, maximum=20)
        product_factory('S-3', current=0)
        movement_service.apply_movement(session, low.id, 'entrada', 1, actor=actor)

        stats = report_service.get_statistics(session)

        assert stats == {
            'total_products': 3,
            'low_stock_count': 1,
            'excess_stock_count': 1,
            'out_of_stock_count': 1,
            'never_moved_count': 2,
        }

    def test_dashboard(self, session, product, actor):
        movement_service.apply_movement(session, product.id, 'salida', 35, actor=actor)

        dashboard = report_service.get_dashboard(session)

        assert dashboard['today_movements'] == 1
        assert dashboard['recent_movements'][0]['type'] == 'salida'
        assert [p['code'] for p in dashboard['low_stock_products']] == ['P-001']
        assert dashboard['statistics']['total_products'] == 1

    def test_dashboard_ignores_other_days(self, session, product):
        _movement(session, product, MovementType.ENTRADA, datetime.now() - timedelta(days=2))

        dashboard = report_service.get_dashboard(session)

        assert dashboard['today_movements'] == 0
        assert len(dashboard['recent_movements']) == 1


class TestRangeSummary:
    """Tests for get_range_summary."""

    @pytest.fixture
    def scenario(self, session, product_factory):
        tools = product_factory('R-1', description='Martillo', department='herramientas', current=5, minimum=10)
        cable = product_factory('R-2', description='Cable', department='electronica', current=40)
        idle = product_factory('R-3', description='Foco', department='electronica', current=2)

        day1 = datetime(2024, 1, 10, 9, 0)
        day2 = datetime(2024, 1, 11, 15, 30)
        _movement(session, tools, MovementType.ENTRADA, day1)
        _movement(session, tools, MovementType.SALIDA, day1 + timedelta(hours=1))
        _movement(session, cable, MovementType.AJUSTE, day2)
        _movement(session, cable, MovementType.REVERSION, day2 + timedelta(minutes=5))
        # Outside the range
        _movement(session, idle, MovementType.ENTRADA, datetime(2023, 12, 1, 8, 0))
        return {'tools': tools, 'cable': cable, 'idle': idle}

    def test_metrics(self, session, scenario):
        summary = report_service.get_range_summary(session, date(2024, 1, 1), date(2024, 1, 31))

        assert summary['range'] == {'start': '2024-01-01', 'end': '2024-01-31', 'days': 30}
        assert summary['metrics'] == {
            'total_products': 3,
            'total_movements': 4,
            'avg_daily_movements': round(4 / 30, 2),
        }

    def test_same_day_range_counts_one_day(self, session, scenario):
        summary = report_service.get_range_summary(session, date(2024, 1, 10), date(2024, 1, 10))

        assert summary['range']['days'] == 1
        assert summary['metrics']['total_movements'] == 2
        assert summary['metrics']['avg_daily_movements'] == 2.0

    def test_per_day_counts_newest_first(self, session, scenario):
        summary = report_service.get_range_summary(session, date(2024, 1, 1), date(2024, 1, 31))

        assert summary['movement_summary'] == [
            {'date': '2024-01-11', 'entries': 0, 'exits': 0, 'adjustments': 1, 'reversions': 1, 'total': 2},
            {'date': '2024-01-10', 'entries': 1, 'exits': 1, 'adjustments': 0, 'reversions': 0, 'total': 2},
        ]

    def test_department_summary(self, session, scenario):
        summary = report_service.get_range_summary(session, date(2024, 1, 1), date(2024, 1, 31))

        by_department = {row['department']: row for row in summary['inventory_summary']}
        assert list(by_department) == ['electronica', 'herramientas']
        assert by_department['electronica']['count'] == 2
        assert by_department['electronica']['total_quantity'] == 42.0
        assert by_department['electronica']['low_stock'] == 0
        assert by_department['herramientas']['low_stock'] == 1
        assert by_department['herramientas']['department_label'] == 'Herramientas'

    def test_never_moved_in_range(self, session, scenario):
        summary = report_service.get_range_summary(session, date(2024, 1, 1), date(2024, 1, 31))
        assert [p['code'] for p in summary['never_moved_products']] == ['R-3']

    def test_never_moved_capped_at_ten(self, session, product_factory):
        for i in range(12):
            product_factory(f'N-{i:02d}', description=f'Item {i:02d}')

        summary = report_service.get_range_summary(session, date(2024, 1, 1), date(2024, 1, 31))
        assert len(summary['never_moved_products']) == 10


class TestExports:
    """Tests for PDF and Excel exports."""

    def test_summary_pdf(self, session, product):
        summary = report_service.get_range_summary(session, date(2024, 1, 1), date(2024, 1, 31))

        buffer = report_service.render_summary_pdf(summary, 'Almacén Central')

        assert buffer.getvalue().startswith(b'%PDF')

    def test_products_xlsx_round_trips_through_pandas(self, session, product, empty_product):
        buffer = report_service.export_products_xlsx(session)

        df = pd.read_excel(buffer)

        assert list(df.columns)[:2] == ['Código', 'Producto']
        assert df['Código'].tolist() == ['P-002', 'P-001']
        assert df['Cantidad Actual'].tolist() == [0.0, 50.0]
