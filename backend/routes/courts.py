from flask import Blueprint, current_app, request, jsonify
from backend.models import Court
from backend.auth_utils import (
    admin_required, ban_check, get_current_identity, is_admin, login_required,
)
from backend.errors import NotFoundError
from backend.services.reviews import court_rating_stats
from backend.services.suggestions import (
    create_edit_suggestion, delete_edit_suggestion, list_edit_suggestions,
    review_edit_suggestion, serialize_edit_suggestion, update_edit_suggestion,
)
from backend.app import db

courts_bp = Blueprint('courts', __name__)


def _parse_flag(raw_value):
    return str(raw_value or '').strip().lower() in {'1', 'true', 'yes', 'on'}


def _court_with_stats(court, stats):
    court_dict = court.to_dict()
    average, count = stats.get(court.id, (None, 0))
    court_dict['average_rating'] = average
    court_dict['review_count'] = count
    return court_dict


@courts_bp.route('', methods=['GET'])
def get_courts():
    search = (request.args.get('search', '') or '').strip()
    city = (request.args.get('city', '') or '').strip()

    query = Court.query.filter(
        Court.is_public.is_(True),
        Court.latitude.isnot(None),
        Court.longitude.isnot(None),
    )
    if search:
        query = query.filter(
            Court.name.ilike(f'%{search}%') | Court.address.ilike(f'%{search}%')
            | Court.city.ilike(f'%{search}%')
        )
    if city:
        query = query.filter(Court.city.ilike(f'%{city}%'))

    courts = query.order_by(Court.name.asc()).all()
    stats = court_rating_stats([court.id for court in courts])
    return jsonify({'courts': [_court_with_stats(court, stats) for court in courts]})


@courts_bp.route('/<int:court_id>', methods=['GET'])
def get_court(court_id):
    cache = current_app.extensions['court_cache']
    cached = cache.get(court_id)
    if cached is None:
        court = db.session.get(Court, court_id)
        if not court:
            raise NotFoundError('Court not found')
        cached = _court_with_stats(court, court_rating_stats([court.id]))
        cache.set(court_id, cached)

    # hidden courts are only visible to admins
    if not cached.get('is_public', True) and not is_admin(get_current_identity()):
        raise NotFoundError('Court not found')
    return jsonify({'court': cached})


# ── Edit suggestions ─────────────────────────────────────────────────────

@courts_bp.route('/<int:court_id>/edit-suggestions', methods=['GET'])
@login_required
def get_edit_suggestions(court_id):
    suggestions = list_edit_suggestions(
        court_id,
        status=request.args.get('status'),
        user_id=request.args.get('user_id'),
        include_all=_parse_flag(request.args.get('include_all')),
        limit=request.args.get('limit', 50),
    )
    return jsonify({'suggestions': suggestions})


@courts_bp.route('/<int:court_id>/edit-suggestions', methods=['POST'])
@ban_check('suggestions')
def submit_edit_suggestion(court_id):
    data = request.get_json(silent=True) or {}
    suggestion = create_edit_suggestion(court_id, request.current_identity, data)
    return jsonify({
        'message': 'Edit suggestion submitted',
        'suggestion': suggestion.to_dict(),
    }), 201


@courts_bp.route('/<int:court_id>/edit-suggestions/<int:suggestion_id>', methods=['PATCH'])
@ban_check('suggestions')
def edit_edit_suggestion(court_id, suggestion_id):
    data = request.get_json(silent=True) or {}
    suggestion = update_edit_suggestion(court_id, suggestion_id, request.current_identity, data)
    return jsonify({'suggestion': suggestion.to_dict()})


@courts_bp.route('/<int:court_id>/edit-suggestions/<int:suggestion_id>', methods=['PUT'])
@admin_required
def review_edit_suggestion_route(court_id, suggestion_id):
    data = request.get_json(silent=True) or {}
    suggestion, applied = review_edit_suggestion(
        court_id,
        suggestion_id,
        reviewer=request.current_identity,
        status=data.get('status') or data.get('action'),
        note=data.get('review_note'),
        field=data.get('field'),
    )
    court = db.session.get(Court, suggestion.court_id)
    return jsonify({
        'message': f'Suggestion {suggestion.status}',
        'suggestion': serialize_edit_suggestion(suggestion, court, include_all=True),
        'applied_fields': applied,
        'court': court.to_dict() if court else None,
    })


@courts_bp.route('/<int:court_id>/edit-suggestions/<int:suggestion_id>', methods=['DELETE'])
@login_required
def remove_edit_suggestion(court_id, suggestion_id):
    identity = request.current_identity
    delete_edit_suggestion(court_id, suggestion_id, identity, is_admin=is_admin(identity))
    return jsonify({'message': 'Suggestion deleted'})
