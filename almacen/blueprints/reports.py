"""Reports blueprint: dashboard, statistics, range summary and exports."""
from datetime import date

from flask import Blueprint, request, jsonify, current_app, send_file

from almacen.database import get_session
from almacen.services import report_service
from almacen.services.cache_service import get_cache, REPORTS_MODULE

reports_bp = Blueprint('reports', __name__, url_prefix='/reports')

XLSX_MIMETYPE = 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'


def _requested_range():
    return report_service.parse_report_range(
        request.args.get('start', '').strip() or None,
        request.args.get('end', '').strip() or None,
        default_days=current_app.config.get('REPORT_DEFAULT_DAYS', 30)
    )


@reports_bp.route('/dashboard', methods=['GET'])
def dashboard():
    return jsonify(report_service.get_dashboard(get_session()))


@reports_bp.route('/statistics', methods=['GET'])
def statistics():
    stats = get_cache().cached(
        REPORTS_MODULE, 'statistics',
        lambda: report_service.get_statistics(get_session()),
        ttl=current_app.config.get('CACHE_REPORTS_TTL', 120)
    )
    return jsonify(stats)


@reports_bp.route('/summary', methods=['GET'])
def summary():
    """Range report; default is the last REPORT_DEFAULT_DAYS days."""
    start_date, end_date = _requested_range()
    return jsonify(report_service.get_range_summary(get_session(), start_date, end_date))


@reports_bp.route('/summary.pdf', methods=['GET'])
def summary_pdf():
    start_date, end_date = _requested_range()
    data = report_service.get_range_summary(get_session(), start_date, end_date)
    buffer = report_service.render_summary_pdf(data, current_app.config.get('BUSINESS_NAME', 'Almacén'))
    return send_file(
        buffer,
        mimetype='application/pdf',
        as_attachment=True,
        download_name=f"reporte_{start_date.isoformat()}_{end_date.isoformat()}.pdf"
    )


@reports_bp.route('/products.xlsx', methods=['GET'])
def products_xlsx():
    buffer = report_service.export_products_xlsx(get_session())
    return send_file(
        buffer,
        mimetype=XLSX_MIMETYPE,
        as_attachment=True,
        download_name=f"inventario_{date.today().isoformat()}.xlsx"
    )
