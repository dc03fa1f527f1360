"""Imports blueprint: preview and import products from the inventory workbook."""
from flask import Blueprint, request, jsonify

from almacen.database import get_session
from almacen.exceptions import ValidationError
from almacen.middleware import get_actor, require_actor
from almacen.services import import_service

imports_bp = Blueprint('imports', __name__, url_prefix='/imports')


@imports_bp.route('/preview', methods=['GET'])
@require_actor
def preview():
    """
    Parsed workbook rows with `exists` / `duplicate` flags.

    Triggers an outbound download, so it needs an identified user like the import.

    Query: url or object_name select the source; code narrows to one row.
    """
    rows = import_service.load_products_from_excel(
        url=request.args.get('url') or None,
        object_name=request.args.get('object_name') or None
    )

    code = request.args.get('code', '').strip()
    if code:
        row = import_service.find_row_by_code(rows, code)
        rows = [row] if row else []

    preview_rows = import_service.preview_import(get_session(), rows)
    return jsonify({
        'rows': preview_rows,
        'total': len(preview_rows),
        'new': sum(1 for r in preview_rows if not r['exists'] and not r['duplicate']),
    })


@imports_bp.route('/', methods=['POST'])
@require_actor
def run_import():
    """Import `{codes?, url?, object_name?}`; all rows when codes is omitted."""
    data = request.get_json(silent=True) or {}

    codes = data.get('codes')
    if codes is not None and not isinstance(codes, list):
        raise ValidationError('codes debe ser una lista de códigos')

    rows = import_service.load_products_from_excel(
        url=data.get('url') or None,
        object_name=data.get('object_name') or None
    )
    result = import_service.import_products(get_session(), rows, actor=get_actor(), selected_codes=codes)
    return jsonify(result)
