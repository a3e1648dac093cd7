from datetime import datetime

from flask import Blueprint, current_app, jsonify

health_bp = Blueprint('health', __name__)


@health_bp.route('/health')
def health_check():
    """Health check endpoint for external monitoring"""
    store = current_app.extensions['record_store']
    return jsonify({
        'status': 'ok' if not store.last_persist_error else 'degraded',
        'service': 'edunexus-institute',
        'storage_key': store.storage_key,
        'last_persist_error': store.last_persist_error,
        'timestamp': datetime.utcnow().isoformat() + 'Z'
    })
