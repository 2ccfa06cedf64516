from flask import Blueprint, request, jsonify
from backend.auth_utils import ban_check, login_required
from backend.services.suggestions import create_court_suggestion, list_user_suggestions

suggestions_bp = Blueprint('suggestions', __name__)


@suggestions_bp.route('', methods=['POST'])
@ban_check('suggestions')
def submit_court_suggestion():
    data = request.get_json(silent=True) or {}
    suggestion = create_court_suggestion(request.current_identity, data)
    return jsonify({
        'message': 'Court suggestion submitted for review',
        'suggestion': suggestion.to_dict(),
    }), 201


@suggestions_bp.route('', methods=['GET'])
@login_required
def get_my_court_suggestions():
    suggestions = list_user_suggestions(request.current_identity.id)
    return jsonify({'suggestions': [s.to_dict() for s in suggestions]})
