"""Main blueprint with health check endpoints."""
from flask import Blueprint, jsonify, current_app
from sqlalchemy.exc import SQLAlchemyError

from almacen.database import ping

main_bp = Blueprint('main', __name__)


@main_bp.route('/health')
def health():
    """
    Health check endpoint that validates database connection.

    Returns:
        200: Healthy (DB connected)
        503: Unhealthy (DB error)
    """
    try:
        ping()
        return jsonify({
            'status': 'healthy',
            'database': 'connected',
        }), 200
    except SQLAlchemyError as e:
        current_app.logger.error(f"[HEALTH] Database ping failed: {e}")
        return jsonify({
            'status': 'unhealthy',
            'database': 'disconnected',
            'error': e.__class__.__name__,
        }), 503


@main_bp.route('/health/cache')
def health_cache():
    """Cache status; never fails, the app runs without Redis."""
    from almacen.services.cache_service import get_cache

    cache = get_cache()
    if cache.is_available():
        return jsonify({'status': 'ok', 'cache': 'connected'}), 200
    return jsonify({'status': 'degraded', 'cache': 'unavailable'}), 200
