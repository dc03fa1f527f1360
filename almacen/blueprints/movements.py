"""Movements blueprint: apply, quick-adjust, revert and list stock movements."""
from datetime import datetime, time

from flask import Blueprint, request, jsonify

from almacen.database import get_session
from almacen.exceptions import ValidationError
from almacen.middleware import get_actor, require_actor
from almacen.services import movement_service, product_service

movements_bp = Blueprint('movements', __name__, url_prefix='/movements')


def _date_arg(name, end_of_day=False):
    value = request.args.get(name, '').strip()
    if not value:
        return None
    try:
        day = datetime.strptime(value, '%Y-%m-%d').date()
    except ValueError:
        raise ValidationError(f'Fecha inválida en "{name}" (use AAAA-MM-DD)')
    return datetime.combine(day, time.max if end_of_day else time.min)


def _product_id(data):
    try:
        return int(data.get('product_id'))
    except (TypeError, ValueError):
        raise ValidationError('product_id es requerido')


def _movement_response(movement, status=201):
    session = get_session()
    product = product_service.get_product(session, movement.product_id)
    return jsonify({
        'movement': movement.to_dict(),
        'product': product.to_dict(),
    }), status


@movements_bp.route('/', methods=['GET'])
def list_movements():
    """Movements newest first; optional start/end (YYYY-MM-DD, inclusive), type and limit."""
    movements = movement_service.list_movements(
        get_session(),
        start=_date_arg('start'),
        end=_date_arg('end', end_of_day=True),
        movement_type=request.args.get('type', '').strip() or None,
        limit=request.args.get('limit', type=int)
    )
    return jsonify({'movements': [m.to_dict() for m in movements], 'count': len(movements)})


@movements_bp.route('/<int:movement_id>', methods=['GET'])
def get_movement(movement_id):
    movement = movement_service.get_movement(get_session(), movement_id)
    return jsonify({'movement': movement.to_dict()})


@movements_bp.route('/', methods=['POST'])
@require_actor
def apply_movement():
    data = request.get_json(silent=True) or {}
    movement = movement_service.apply_movement(
        get_session(),
        _product_id(data),
        data.get('type'),
        data.get('quantity'),
        reason=data.get('reason'),
        reference=data.get('reference'),
        actor=get_actor(),
        expected_quantity=data.get('expected_quantity')
    )
    return _movement_response(movement)


@movements_bp.route('/quick-adjust', methods=['POST'])
@require_actor
def quick_adjust():
    """Apply '+5' / '-3' / '12' to a product."""
    data = request.get_json(silent=True) or {}
    movement = movement_service.quick_adjust(
        get_session(),
        _product_id(data),
        data.get('adjustment'),
        reason=data.get('reason'),
        reference=data.get('reference'),
        actor=get_actor(),
        expected_quantity=data.get('expected_quantity')
    )
    return _movement_response(movement)


@movements_bp.route('/<int:movement_id>/revert', methods=['POST'])
@require_actor
def revert_movement(movement_id):
    data = request.get_json(silent=True) or {}
    reversal = movement_service.reverse_movement(
        get_session(), movement_id, data.get('reason'), actor=get_actor()
    )
    return _movement_response(reversal)
