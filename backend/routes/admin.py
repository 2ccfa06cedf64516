from flask import Blueprint, current_app, request, jsonify
from backend.app import db
from backend.auth_utils import admin_required, get_current_identity, is_admin
from backend.errors import ConflictError, ExternalDependencyError, NotFoundError, ValidationError
from backend.log_utils import get_logger
from backend.models import Court
from backend.services import bans, moderation
from backend.services.court_cache import invalidate_court
from backend.services.court_payloads import address_key, apply_court_changes, normalize_court_payload
from backend.services.suggestions import list_court_suggestions, review_court_suggestion

admin_bp = Blueprint('admin', __name__)
logger = get_logger(__name__)

ADMIN_COURT_REQUIRED_FIELDS = ('name', 'address', 'city', 'zip')
DEFAULT_COURT_STATE = 'IL'


def _required_id(data, key):
    try:
        value = int(data.get(key))
    except (TypeError, ValueError):
        raise ValidationError(f'{key} is required') from None
    if value <= 0:
        raise ValidationError(f'{key} is required')
    return value


@admin_bp.route('/check', methods=['GET'])
def check_admin():
    return jsonify({'is_admin': is_admin(get_current_identity())})


# ── Courts ───────────────────────────────────────────────────────────────

@admin_bp.route('/courts', methods=['POST'])
@admin_required
def add_court():
    data = request.get_json(silent=True) or {}
    court_data, errors = normalize_court_payload(data, required=ADMIN_COURT_REQUIRED_FIELDS)
    if errors:
        return jsonify({'error': errors[0], 'errors': errors}), 400
    court_data.setdefault('state', DEFAULT_COURT_STATE)

    key = address_key(court_data['address'], court_data['city'], court_data['state'], court_data['zip'])
    if Court.query.filter_by(address_key=key).first():
        raise ConflictError('A court with this address already exists')

    if 'latitude' not in court_data or 'longitude' not in court_data:
        location = current_app.extensions['geocoder'].geocode(
            court_data['address'], court_data['city'], court_data['state'], court_data['zip'],
        )
        if location is None:
            raise ExternalDependencyError('Invalid address')
        court_data['latitude'] = location.latitude
        court_data['longitude'] = location.longitude

    for flag in ('lighted', 'hitting_wall', 'membership_required', 'parking'):
        court_data.setdefault(flag, False)
    court = Court(address_key=key, **court_data)
    db.session.add(court)
    db.session.commit()
    logger.info('court_created', court_id=court.id, created_by=request.current_identity.id)
    return jsonify({'court': court.to_dict()}), 201


@admin_bp.route('/courts/<int:court_id>', methods=['PUT'])
@admin_required
def update_court(court_id):
    court = db.session.get(Court, court_id)
    if not court:
        return jsonify({'error': 'Court not found'}), 404
    data = request.get_json(silent=True) or {}
    court_data, errors = normalize_court_payload(data)
    if errors:
        return jsonify({'error': errors[0], 'errors': errors}), 400
    if not court_data:
        return jsonify({'error': 'No valid court fields were provided'}), 400

    applied = apply_court_changes(court, court_data)
    db.session.commit()
    invalidate_court(court.id)
    logger.info('court_updated', court_id=court.id, fields=applied, updated_by=request.current_identity.id)
    return jsonify({'court': court.to_dict()})


# ── Court suggestions ────────────────────────────────────────────────────

@admin_bp.route('/court-suggestions', methods=['GET'])
@admin_required
def get_court_suggestions():
    suggestions = list_court_suggestions(
        status=request.args.get('status', 'all'),
        limit=request.args.get('limit'),
    )
    return jsonify({'suggestions': [s.to_dict() for s in suggestions]})


@admin_bp.route('/court-suggestions/<int:suggestion_id>', methods=['POST'])
@admin_required
def review_court_suggestion_route(suggestion_id):
    data = request.get_json(silent=True) or {}
    suggestion, court = review_court_suggestion(
        suggestion_id,
        data.get('action'),
        reviewer=request.current_identity,
        note=data.get('review_note'),
    )
    return jsonify({
        'message': f'Suggestion {suggestion.status}',
        'suggestion': suggestion.to_dict(),
        'court': court.to_dict() if court else None,
    })


# ── Reports ──────────────────────────────────────────────────────────────

@admin_bp.route('/reports', methods=['GET'])
@admin_required
def get_reports():
    reports = moderation.list_reports(
        target_type=request.args.get('target_type'),
        status=request.args.get('status', 'pending'),
        limit=request.args.get('limit', 50),
    )
    return jsonify({'reports': reports})


@admin_bp.route('/reports', methods=['POST'])
@admin_required
def resolve_report():
    data = request.get_json(silent=True) or {}
    report_id = _required_id(data, 'report_id')

    action = data.get('action')
    if action in (None, '') and data.get('delete_review'):
        action = 'delete_review'
    report = moderation.resolve_report(
        report_id,
        action,
        resolver=request.current_identity,
        note=data.get('resolution_note'),
        reason=data.get('reason'),
    )
    return jsonify({
        'message': f'Report {report.status}',
        'report': moderation.serialize_report(report),
    })


@admin_bp.route('/clear-reports', methods=['POST'])
@admin_required
def clear_all_reports():
    count = moderation.clear_reports()
    return jsonify({'message': f'Cleared {count} reports', 'deleted_count': count})


# ── Photos ───────────────────────────────────────────────────────────────

@admin_bp.route('/photos', methods=['GET'])
@admin_required
def get_reported_review_photos():
    return jsonify({'photos': moderation.list_reported_review_photos()})


@admin_bp.route('/photos', methods=['POST'])
@admin_required
def delete_review_photo():
    data = request.get_json(silent=True) or {}
    photo_id = _required_id(data, 'photo_id')
    row = moderation.delete_review_photo(photo_id, request.current_identity, data.get('reason'))
    return jsonify({'message': 'Photo deleted', 'photo': row.to_dict()})


@admin_bp.route('/court-photos', methods=['GET'])
@admin_required
def get_court_photo_reports():
    reports = moderation.list_reports(
        target_type='photo',
        status=request.args.get('status', 'pending'),
        limit=request.args.get('limit', 50),
    )
    return jsonify({'reports': reports})


@admin_bp.route('/court-photos', methods=['POST'])
@admin_required
def moderate_court_photo():
    data = request.get_json(silent=True) or {}
    action = str(data.get('action') or '').strip().lower()
    if action == 'dismiss_report':
        report = moderation.resolve_report(
            _required_id(data, 'report_id'), 'dismiss',
            resolver=request.current_identity,
            note=data.get('resolution_note'),
        )
        return jsonify({'message': 'Report dismissed', 'report': report.to_dict()})
    if action == 'delete_photo':
        photo_id = _required_id(data, 'photo_id')
        photo, resolved = moderation.delete_court_photo_as_admin(
            photo_id, request.current_identity, data.get('reason'),
        )
        return jsonify({
            'message': 'Photo deleted',
            'photo': photo.to_dict(),
            'reports_resolved': resolved,
        })
    return jsonify({'error': 'Action must be dismiss_report or delete_photo'}), 400


# ── User bans ────────────────────────────────────────────────────────────

@admin_bp.route('/user-bans', methods=['GET'])
@admin_required
def get_user_bans():
    rows = bans.list_bans(user_id=request.args.get('user_id'))
    return jsonify({'bans': [ban.to_dict() for ban in rows]})


@admin_bp.route('/user-bans', methods=['POST'])
@admin_required
def create_user_ban():
    data = request.get_json(silent=True) or {}
    ban, created = bans.ban_user(
        data.get('user_id'),
        data.get('user_name'),
        admin=request.current_identity,
        user_email=data.get('user_email'),
        reason=data.get('ban_reason'),
        ban_type=data.get('ban_type') or 'full',
        expires_at=data.get('expires_at'),
    )
    return jsonify({'message': 'User banned', 'ban': ban.to_dict()}), 201 if created else 200


@admin_bp.route('/user-bans', methods=['PUT'])
@admin_required
def update_user_ban():
    data = request.get_json(silent=True) or {}
    ban_id = _required_id(data, 'ban_id')
    changes = {
        key: data[key] for key in ('ban_reason', 'expires_at', 'is_active') if key in data
    }
    ban = bans.update_ban(ban_id, changes)
    return jsonify({'message': 'Ban updated', 'ban': ban.to_dict()})


@admin_bp.route('/user-bans', methods=['DELETE'])
@admin_required
def remove_user_ban():
    data = request.get_json(silent=True) or {}
    user_id = data.get('user_id') or request.args.get('user_id')
    ban_type = data.get('ban_type') or request.args.get('ban_type')
    count = bans.unban_user(user_id, ban_type=ban_type)
    if not count:
        raise NotFoundError('No active ban found for this user')
    return jsonify({'message': 'User unbanned', 'deactivated_count': count})
