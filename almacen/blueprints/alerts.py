"""Alerts blueprint: low stock, almost out and excess stock."""
from flask import Blueprint, request, jsonify

from almacen.database import get_session
from almacen.middleware import get_actor, require_actor
from almacen.services import alert_service

alerts_bp = Blueprint('alerts', __name__, url_prefix='/alerts')


@alerts_bp.route('/', methods=['GET'])
def list_alerts():
    return jsonify(alert_service.get_alert_digest(get_session()))


@alerts_bp.route('/send', methods=['POST'])
@require_actor
def send_alerts():
    """Email the digest to `to` (or ALERT_EMAIL_TO)."""
    data = request.get_json(silent=True) or {}
    result = alert_service.send_stock_alerts(get_session(), to=data.get('to'), actor=get_actor())
    return jsonify(result)
