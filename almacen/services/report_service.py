"""
Report service: dashboard metrics, range summaries and PDF / Excel exports.
"""
import logging
from collections import OrderedDict
from datetime import datetime, date, time, timedelta
from decimal import Decimal
from io import BytesIO
from typing import Optional, Tuple

import pandas as pd
from reportlab.lib.pagesizes import A4
from reportlab.lib import colors
from reportlab.lib.units import inch
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.lib.enums import TA_CENTER
from sqlalchemy import func

from almacen.exceptions import ValidationError
from almacen.models import Product, Movement, MovementType, DEPARTMENT_OPTIONS, UNIT_OPTIONS
from almacen.services import movement_service

logger = logging.getLogger(__name__)

NO_DEPARTMENT_LABEL = 'Sin Departamento'
RECENT_MOVEMENTS_LIMIT = 10
NEVER_MOVED_LIMIT = 10

DEPARTMENT_LABELS = dict(DEPARTMENT_OPTIONS)
UNIT_LABELS = dict(UNIT_OPTIONS)


def _quantity(value) -> str:
    value = Decimal(value or 0)
    return str(int(value)) if value % 1 == 0 else f"{value:.2f}"


def parse_report_range(start: Optional[str], end: Optional[str], default_days: int = 30,
                       today: Optional[date] = None) -> Tuple[date, date]:
    """
    Parse YYYY-MM-DD bounds; missing start defaults to `default_days` before end.

    Raises:
        ValidationError: malformed date or start after end
    """
    today = today or date.today()
    try:
        end_date = datetime.strptime(end, '%Y-%m-%d').date() if end else today
        start_date = (
            datetime.strptime(start, '%Y-%m-%d').date() if start
            else end_date - timedelta(days=default_days)
        )
    except ValueError:
        raise ValidationError('Formato de fecha inválido (use AAAA-MM-DD)')

    if start_date > end_date:
        raise ValidationError('La fecha de inicio no puede ser posterior a la fecha de fin')

    return start_date, end_date


def get_statistics(session) -> dict:
    """Catalog totals."""
    total_products = session.query(func.count(Product.id)).scalar() or 0

    low_stock_count = session.query(func.count(Product.id)).filter(
        Product.min_quantity.isnot(None),
        Product.min_quantity > 0,
        Product.current_quantity <= Product.min_quantity
    ).scalar() or 0

    excess_stock_count = session.query(func.count(Product.id)).filter(
        Product.max_quantity.isnot(None),
        Product.max_quantity > 0,
        Product.current_quantity > Product.max_quantity
    ).scalar() or 0

    out_of_stock_count = session.query(func.count(Product.id)).filter(
        Product.current_quantity <= 0
    ).scalar() or 0

    never_moved_count = session.query(func.count(Product.id)).filter(
        Product.total_movements == 0
    ).scalar() or 0

    return {
        'total_products': total_products,
        'low_stock_count': low_stock_count,
        'excess_stock_count': excess_stock_count,
        'out_of_stock_count': out_of_stock_count,
        'never_moved_count': never_moved_count,
    }


def get_dashboard(session, today: Optional[date] = None) -> dict:
    """
    Dashboard data.

    Returns:
        dict with keys:
            - statistics: get_statistics()
            - today_movements: count of movements since midnight
            - recent_movements: last 10 movements (dicts)
            - low_stock_products: products at or below their minimum (dicts)
    """
    today = today or date.today()
    start_dt = datetime.combine(today, time.min)
    end_dt = start_dt + timedelta(days=1)

    today_movements = session.query(func.count(Movement.id)).filter(
        Movement.timestamp >= start_dt,
        Movement.timestamp < end_dt
    ).scalar() or 0

    recent = movement_service.list_movements(session, limit=RECENT_MOVEMENTS_LIMIT)

    low_stock = session.query(Product).filter(
        Product.min_quantity.isnot(None),
        Product.min_quantity > 0,
        Product.current_quantity <= Product.min_quantity
    ).order_by(Product.description, Product.id).all()

    return {
        'statistics': get_statistics(session),
        'today_movements': today_movements,
        'recent_movements': [m.to_dict() for m in recent],
        'low_stock_products': [p.to_dict() for p in low_stock],
    }


def get_range_summary(session, start_date: date, end_date: date) -> dict:
    """
    Inventory and movement summary for [start_date, end_date] (both inclusive).

    Returns:
        dict with keys:
            - range: {start, end, days}
            - metrics: total_products, total_movements, avg_daily_movements
            - inventory_summary: per department count / total_quantity / low_stock
            - movement_summary: per day entries / exits / adjustments / reversions / total, newest first
            - never_moved_products: first 10 products without movements in the range
    """
    start_dt = datetime.combine(start_date, time.min)
    end_dt = datetime.combine(end_date, time.max)

    products = session.query(Product).order_by(Product.description, Product.id).all()
    movements = movement_service.list_movements(session, start=start_dt, end=end_dt)

    days = (end_date - start_date).days or 1
    total_movements = len(movements)
    avg_daily = round(total_movements / days, 2)

    moved_ids = {m.product_id for m in movements}
    never_moved = [p for p in products if p.id not in moved_ids]

    departments = {}
    for product in products:
        dept = product.department or NO_DEPARTMENT_LABEL
        row = departments.setdefault(dept, {
            'department': dept,
            'department_label': DEPARTMENT_LABELS.get(dept, dept),
            'count': 0,
            'total_quantity': Decimal('0'),
            'low_stock': 0,
        })
        row['count'] += 1
        row['total_quantity'] += product.current_quantity or 0
        if product.is_low_stock:
            row['low_stock'] += 1

    inventory_summary = []
    for dept in sorted(departments):
        row = departments[dept]
        row['total_quantity'] = float(row['total_quantity'])
        inventory_summary.append(row)

    per_day = OrderedDict()
    counter_keys = {
        MovementType.ENTRADA: 'entries',
        MovementType.SALIDA: 'exits',
        MovementType.AJUSTE: 'adjustments',
        MovementType.REVERSION: 'reversions',
    }
    for movement in movements:
        day = movement.timestamp.strftime('%Y-%m-%d')
        row = per_day.setdefault(day, {
            'date': day, 'entries': 0, 'exits': 0, 'adjustments': 0, 'reversions': 0, 'total': 0
        })
        row[counter_keys[movement.type]] += 1
        row['total'] += 1

    movement_summary = sorted(per_day.values(), key=lambda r: r['date'], reverse=True)

    return {
        'range': {
            'start': start_date.isoformat(),
            'end': end_date.isoformat(),
            'days': days,
        },
        'metrics': {
            'total_products': len(products),
            'total_movements': total_movements,
            'avg_daily_movements': avg_daily,
        },
        'inventory_summary': inventory_summary,
        'movement_summary': movement_summary,
        'never_moved_products': [
            {
                'id': p.id,
                'code': p.code,
                'description': p.description,
                'department': p.department,
                'current_quantity': float(p.current_quantity or 0),
            }
            for p in never_moved[:NEVER_MOVED_LIMIT]
        ],
    }


def render_summary_pdf(summary: dict, business_name: str) -> BytesIO:
    """Render a range summary (get_range_summary) to an A4 PDF."""
    buffer = BytesIO()
    doc = SimpleDocTemplate(
        buffer,
        pagesize=A4,
        rightMargin=0.75*inch,
        leftMargin=0.75*inch,
        topMargin=0.75*inch,
        bottomMargin=0.75*inch
    )

    elements = []
    styles = getSampleStyleSheet()

    title_style = ParagraphStyle(
        'ReportTitle',
        parent=styles['Heading1'],
        fontSize=20,
        textColor=colors.HexColor('#2C3E50'),
        spaceAfter=12,
        alignment=TA_CENTER,
        fontName='Helvetica-Bold'
    )
    header_style = ParagraphStyle(
        'ReportHeader',
        parent=styles['Normal'],
        fontSize=10,
        textColor=colors.HexColor('#7F8C8D'),
        alignment=TA_CENTER,
        spaceAfter=6
    )
    section_style = ParagraphStyle(
        'ReportSection',
        parent=styles['Heading2'],
        fontSize=13,
        textColor=colors.HexColor('#34495E'),
        spaceBefore=12,
        spaceAfter=6
    )

    header_table_style = [
        ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor('#3498DB')),
        ('TEXTCOLOR', (0, 0), (-1, 0), colors.whitesmoke),
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('ALIGN', (1, 0), (-1, -1), 'CENTER'),
        ('FONTSIZE', (0, 0), (-1, -1), 9),
        ('GRID', (0, 0), (-1, -1), 0.5, colors.HexColor('#BDC3C7')),
        ('ROWBACKGROUNDS', (0, 1), (-1, -1), [colors.white, colors.HexColor('#ECF0F1')]),
    ]

    period = summary['range']
    metrics = summary['metrics']

    # 1. Title
    elements.append(Paragraph("REPORTE DE INVENTARIO", title_style))
    elements.append(Paragraph(f"<b>{business_name}</b>", header_style))
    elements.append(Paragraph(f"Período: {period['start']} a {period['end']}", header_style))
    elements.append(Paragraph(f"Generado: {datetime.now().strftime('%d/%m/%Y %H:%M')}", header_style))
    elements.append(Spacer(1, 0.2*inch))

    # 2. Metrics
    metrics_table = Table([
        ['Total de productos:', str(metrics['total_products'])],
        ['Movimientos en el período:', str(metrics['total_movements'])],
        ['Promedio diario:', f"{metrics['avg_daily_movements']:.2f}"],
    ], colWidths=[2.5*inch, 2*inch])
    metrics_table.setStyle(TableStyle([
        ('ALIGN', (0, 0), (0, -1), 'RIGHT'),
        ('FONTNAME', (0, 0), (0, -1), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, -1), 10),
        ('TEXTCOLOR', (0, 0), (-1, -1), colors.HexColor('#34495E')),
    ]))
    elements.append(metrics_table)

    # 3. Inventory by department
    elements.append(Paragraph("Inventario por Departamento", section_style))
    dept_data = [['Departamento', 'Productos', 'Cantidad Total', 'Stock Bajo']]
    for row in summary['inventory_summary']:
        dept_data.append([
            row['department_label'], str(row['count']), _quantity(row['total_quantity']), str(row['low_stock'])
        ])
    dept_table = Table(dept_data, colWidths=[2.5*inch, 1.2*inch, 1.5*inch, 1.2*inch])
    dept_table.setStyle(TableStyle(header_table_style))
    elements.append(dept_table)

    # 4. Movements per day
    elements.append(Paragraph("Movimientos por Día", section_style))
    if summary['movement_summary']:
        mov_data = [['Fecha', 'Entradas', 'Salidas', 'Ajustes', 'Reversiones', 'Total']]
        for row in summary['movement_summary']:
            mov_data.append([
                row['date'], str(row['entries']), str(row['exits']),
                str(row['adjustments']), str(row['reversions']), str(row['total'])
            ])
        mov_table = Table(mov_data, colWidths=[1.4*inch, 0.9*inch, 0.9*inch, 0.9*inch, 1.1*inch, 0.8*inch])
        mov_table.setStyle(TableStyle(header_table_style))
        elements.append(mov_table)
    else:
        elements.append(Paragraph("Sin movimientos en el período.", styles['Normal']))

    # 5. Never moved
    elements.append(Paragraph("Productos sin Movimiento", section_style))
    if summary['never_moved_products']:
        nm_data = [['Código', 'Producto', 'Cantidad']]
        for p in summary['never_moved_products']:
            nm_data.append([p['code'], p['description'][:60], _quantity(p['current_quantity'])])
        nm_table = Table(nm_data, colWidths=[1.3*inch, 4*inch, 1*inch])
        nm_table.setStyle(TableStyle(header_table_style))
        elements.append(nm_table)
    else:
        elements.append(Paragraph("Todos los productos tuvieron movimiento.", styles['Normal']))

    doc.build(elements)
    buffer.seek(0)

    logger.info(f"[REPORT] PDF summary rendered {period['start']}..{period['end']}")
    return buffer


EXPORT_COLUMNS = OrderedDict([
    ('code', 'Código'),
    ('description', 'Producto'),
    ('unit', 'Unidad'),
    ('department', 'Departamento'),
    ('current_quantity', 'Cantidad Actual'),
    ('min_quantity', 'Cantidad Mínima'),
    ('max_quantity', 'Cantidad Máxima'),
    ('total_movements', 'Movimientos'),
    ('alert_level', 'Nivel de Alerta'),
])


def build_products_dataframe(session) -> pd.DataFrame:
    """Catalog as a DataFrame with Spanish headers, ordered by description."""
    products = session.query(Product).order_by(Product.description, Product.id).all()
    rows = []
    for product in products:
        data = product.to_dict()
        rows.append({key: data.get(key) for key in EXPORT_COLUMNS})

    df = pd.DataFrame(rows, columns=list(EXPORT_COLUMNS))
    return df.rename(columns=EXPORT_COLUMNS)


def export_products_xlsx(session) -> BytesIO:
    """Catalog export in the same column layout the import reads."""
    df = build_products_dataframe(session)

    buffer = BytesIO()
    with pd.ExcelWriter(buffer, engine='openpyxl') as writer:
        df.to_excel(writer, index=False, sheet_name='Inventario')
    buffer.seek(0)

    logger.info(f"[REPORT] Excel export with {len(df)} products")
    return buffer
