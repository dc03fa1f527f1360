"""Products blueprint: catalog CRUD, code lookups and product history."""
from flask import Blueprint, request, jsonify, current_app

from almacen.database import get_session
from almacen.middleware import get_actor, require_actor
from almacen.models import UNIT_OPTIONS, DEPARTMENT_OPTIONS
from almacen.services import product_service, movement_service
from almacen.services.cache_service import get_cache, PRODUCTS_MODULE

products_bp = Blueprint('products', __name__, url_prefix='/products')

LIST_FILTERS = ('department', 'description', 'code', 'stock_status')


@products_bp.route('/', methods=['GET'])
def list_products():
    """List products filtered by department, description prefix, code and stock_status."""
    filters = {key: request.args.get(key, '').strip() for key in LIST_FILTERS}
    cache_key = 'list:' + '|'.join(f"{key}={filters[key]}" for key in LIST_FILTERS)

    def load():
        products = product_service.list_products(get_session(), filters)
        return [p.to_dict() for p in products]

    products = get_cache().cached(
        PRODUCTS_MODULE, cache_key, load,
        ttl=current_app.config.get('CACHE_PRODUCTS_TTL', 60)
    )
    return jsonify({'products': products, 'count': len(products)})


@products_bp.route('/', methods=['POST'])
@require_actor
def create_product():
    data = request.get_json(silent=True) or {}
    product = product_service.create_product(get_session(), data, actor=get_actor())
    return jsonify({'product': product.to_dict()}), 201


@products_bp.route('/<int:product_id>', methods=['GET'])
def get_product(product_id):
    product = product_service.get_product(get_session(), product_id)
    return jsonify({'product': product.to_dict()})


@products_bp.route('/<int:product_id>', methods=['PATCH'])
@require_actor
def update_product(product_id):
    fields = request.get_json(silent=True) or {}
    product = product_service.update_product(get_session(), product_id, fields, actor=get_actor())
    return jsonify({'product': product.to_dict()})


@products_bp.route('/<int:product_id>', methods=['DELETE'])
@require_actor
def delete_product(product_id):
    summary = product_service.delete_product(get_session(), product_id, actor=get_actor())
    return jsonify({'status': 'deleted', 'product': summary})


@products_bp.route('/check-code', methods=['GET'])
def check_code():
    """Is this code already taken? Used by the create form."""
    code = request.args.get('code', '')
    return jsonify({
        'code': product_service.normalize_code(code),
        'exists': product_service.exists_by_code(get_session(), code),
    })


@products_bp.route('/search', methods=['GET'])
def search_products():
    """Autocomplete by code prefix."""
    prefix = request.args.get('code') or request.args.get('q', '')
    limit = request.args.get('limit', 20, type=int)
    products = product_service.search_by_code(get_session(), prefix, limit=max(1, min(limit, 100)))
    return jsonify({'products': [p.to_dict() for p in products]})


@products_bp.route('/next-code', methods=['GET'])
@require_actor
def next_code():
    """Reserve the next PROD-<n> code."""
    session = get_session()
    try:
        code = product_service.generate_product_code(session)
        session.commit()
    except Exception:
        session.rollback()
        raise
    return jsonify({'code': code})


@products_bp.route('/options', methods=['GET'])
def options():
    """Unit and department choices for product forms."""
    known = {value for value, _ in DEPARTMENT_OPTIONS}
    departments = [{'value': v, 'label': label} for v, label in DEPARTMENT_OPTIONS]
    for department in product_service.list_departments(get_session()):
        if department and department not in known:
            departments.append({'value': department, 'label': department.capitalize()})

    return jsonify({
        'units': [{'value': v, 'label': label} for v, label in UNIT_OPTIONS],
        'departments': departments,
    })


@products_bp.route('/<int:product_id>/movements', methods=['GET'])
def product_movements(product_id):
    """Ledger of one product, newest first. History of deleted products stays readable."""
    limit = request.args.get('limit', type=int)
    movements = movement_service.get_product_history(get_session(), product_id, limit=limit)
    return jsonify({
        'product_id': product_id,
        'movements': [m.to_dict() for m in movements],
    })
