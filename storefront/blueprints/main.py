"""Main blueprint with health check and CSRF token endpoints."""
from flask import Blueprint, jsonify
from flask_wtf.csrf import generate_csrf
from sqlalchemy import text
from storefront.database import get_session

main_bp = Blueprint('main', __name__)


@main_bp.route('/health')
def health():
    """
    Health check endpoint that validates database connection.

    Returns:
        200: Healthy (DB connected)
        500: Unhealthy (DB error)
    """
    try:
        session = get_session()
        row = session.execute(text("SELECT 1 as health_check")).fetchone()

        if row and row[0] == 1:
            return jsonify({
                'status': 'healthy',
                'database': 'connected',
            }), 200
        return jsonify({
            'status': 'unhealthy',
            'database': 'error',
            'message': 'Unexpected query result'
        }), 500

    except Exception as e:
        return jsonify({
            'status': 'unhealthy',
            'database': 'disconnected',
            'error': str(e),
        }), 500


@main_bp.route('/health/cache')
def health_cache():
    """
    Cache health check. Never 500: without Redis the service is degraded,
    not down.
    """
    from storefront.services.cache_service import get_cache
    cache = get_cache()

    if cache.is_available():
        return jsonify({'status': 'ok', 'cache': 'connected'}), 200
    return jsonify({'status': 'degraded', 'cache': 'unavailable'}), 200


@main_bp.route('/csrf-token')
def csrf_token():
    """Token for the JSON client; send it back in the X-CSRFToken header."""
    return jsonify({'csrfToken': generate_csrf()})
