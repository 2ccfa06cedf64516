from flask import Blueprint, request, jsonify
from backend.auth_utils import (
    csrf_token_for_bearer, get_current_identity, is_admin, login_required,
)
from backend.services.bans import effective_ban_types

auth_bp = Blueprint('auth', __name__)


@auth_bp.route('/me', methods=['GET'])
@login_required
def get_me():
    identity = request.current_identity
    return jsonify({
        'user': {
            'id': identity.id,
            'name': identity.name,
            'email': identity.email,
            'display_name': identity.display_name,
            'roles': list(identity.roles),
        },
        'is_admin': is_admin(identity),
    })


@auth_bp.route('/csrf', methods=['GET'])
@login_required
def get_csrf_token():
    auth_header = request.headers.get('Authorization', '')
    token = csrf_token_for_bearer(auth_header)
    if not token:
        return jsonify({'error': 'Unable to generate CSRF token'}), 400
    return jsonify({'csrf_token': token})


@auth_bp.route('/ban-status', methods=['GET'])
def get_ban_status():
    identity = get_current_identity()
    if identity is None:
        return jsonify({'is_banned': False, 'bans': [], 'user_id': None})
    bans = effective_ban_types(identity.id)
    return jsonify({'is_banned': bool(bans), 'bans': bans, 'user_id': identity.id})
