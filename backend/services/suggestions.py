"""Court suggestion workflow.

Two kinds of proposal share one lifecycle, ``pending -> approved | rejected``:

* ``CourtSuggestion`` proposes a court that is not in the catalogue yet.
  Approval inserts a new ``Court``.
* ``CourtEditSuggestion`` proposes a sparse patch to an existing court.
  Approval merges only the proposed (non-null) values onto the court, either
  all at once or one field at a time.

Leaving ``pending`` always goes through ``update_if_pending`` so concurrent
reviewers cannot both apply a decision.
"""

from flask import current_app

from backend.app import db
from backend.errors import (
    AuthorizationError, ConflictError, ExternalDependencyError,
    NotFoundError, ValidationError,
)
from backend.log_utils import get_logger
from backend.models import Court, CourtEditSuggestion, CourtSuggestion
from backend.services.court_cache import invalidate_court
from backend.services.court_payloads import (
    ADDRESS_FIELDS, CourtPatch, address_key, canonical_field_name,
    normalize_court_payload,
)
from backend.services.workflow import clamp_limit, commit_or_conflict, update_if_pending
from backend.time_utils import utcnow_naive

logger = get_logger(__name__)

REVIEW_STATUSES = ('pending', 'approved', 'rejected')
NEW_COURT_REQUIRED_FIELDS = ('name', 'address', 'city', 'state', 'zip')
NEW_COURT_OPTIONAL_FIELDS = (
    'court_type', 'number_of_courts', 'surface', 'court_condition',
    'hitting_wall', 'lighted', 'membership_required', 'parking',
)
MAX_EDIT_REASON_LENGTH = 100
MAX_REVIEW_NOTE_LENGTH = 500

# Court attribute -> CourtEditSuggestion column
EDIT_FIELD_COLUMNS = {
    'name': 'suggested_name',
    'address': 'suggested_address',
    'city': 'suggested_city',
    'state': 'suggested_state',
    'zip': 'suggested_zip',
    'court_type': 'suggested_court_type',
    'number_of_courts': 'suggested_number_of_courts',
    'surface': 'suggested_surface',
    'court_condition': 'suggested_condition',
    'hitting_wall': 'suggested_hitting_wall',
    'lighted': 'suggested_lights',
    'membership_required': 'suggested_membership_required',
    'parking': 'suggested_parking',
}
COORDINATE_COLUMNS = {
    'latitude': 'suggested_latitude',
    'longitude': 'suggested_longitude',
}

DUPLICATE_COURT_MESSAGE = 'A court with this address already exists'
DUPLICATE_SUGGESTION_MESSAGE = 'Someone has already suggested a court with this address'
DUPLICATE_EDIT_MESSAGE = 'You already have a pending suggestion for this court'
NOT_PENDING_MESSAGE = 'Can only review pending suggestions'


def _geocoder():
    return current_app.extensions['geocoder']


def _clean_note(raw_note):
    note = str(raw_note or '').strip()[:MAX_REVIEW_NOTE_LENGTH]
    return note or None


def _normalize_decision(raw, accepted):
    value = str(raw or '').strip().lower()
    value = {'approve': 'approved', 'reject': 'rejected'}.get(value, value)
    return value if value in accepted else None


def _values_differ(current, proposed):
    if isinstance(current, str) or isinstance(proposed, str):
        return str(current or '').strip().lower() != str(proposed or '').strip().lower()
    return current != proposed


def _court_exists_at(key):
    return Court.query.filter_by(address_key=key).first() is not None


# ── New-court suggestions ────────────────────────────────────────────────

def create_court_suggestion(identity, raw_data):
    data, errors = normalize_court_payload(
        raw_data,
        required=NEW_COURT_REQUIRED_FIELDS,
        allowed=NEW_COURT_REQUIRED_FIELDS + NEW_COURT_OPTIONAL_FIELDS,
    )
    if errors:
        raise ValidationError(errors[0], errors=errors)

    key = address_key(data['address'], data['city'], data['state'], data['zip'])
    if _court_exists_at(key):
        raise ConflictError(DUPLICATE_COURT_MESSAGE)
    if CourtSuggestion.query.filter_by(address_key=key, status='pending').first():
        raise ConflictError(DUPLICATE_SUGGESTION_MESSAGE)

    location = _geocoder().geocode(data['address'], data['city'], data['state'], data['zip'])
    if location is None:
        raise ExternalDependencyError('Invalid address')

    suggestion = CourtSuggestion(
        address_key=key,
        latitude=location.latitude,
        longitude=location.longitude,
        suggested_by=identity.id,
        suggested_by_user_name=identity.display_name,
        status='pending',
        **data,
    )
    db.session.add(suggestion)
    commit_or_conflict(DUPLICATE_SUGGESTION_MESSAGE)
    logger.info(
        'court_suggestion_created',
        suggestion_id=suggestion.id, user_id=identity.id, address_key=key,
    )
    return suggestion


def list_user_suggestions(user_id):
    return CourtSuggestion.query.filter_by(suggested_by=str(user_id)).order_by(
        CourtSuggestion.created_at.desc(), CourtSuggestion.id.desc()
    ).all()


def list_court_suggestions(status='all', limit=None):
    status = str(status or 'all').strip().lower()
    if status not in REVIEW_STATUSES + ('all',):
        raise ValidationError('Invalid status filter')

    query = CourtSuggestion.query
    if status != 'all':
        query = query.filter_by(status=status)
    query = query.order_by(CourtSuggestion.created_at.desc(), CourtSuggestion.id.desc())
    if limit is not None:
        query = query.limit(clamp_limit(limit, default=100, maximum=500))
    return query.all()


def _court_from_suggestion(suggestion):
    return Court(
        name=suggestion.name,
        address=suggestion.address,
        city=suggestion.city,
        state=suggestion.state,
        zip=suggestion.zip,
        address_key=suggestion.address_key,
        latitude=suggestion.latitude,
        longitude=suggestion.longitude,
        number_of_courts=suggestion.number_of_courts,
        surface=suggestion.surface or '',
        court_condition=suggestion.court_condition or '',
        court_type=suggestion.court_type or '',
        lighted=bool(suggestion.lighted),
        hitting_wall=bool(suggestion.hitting_wall),
        membership_required=bool(suggestion.membership_required),
        parking=bool(suggestion.parking),
        is_public=True,
    )


def review_court_suggestion(suggestion_id, action, reviewer, note=None):
    """Approve or reject a new-court suggestion. Approval creates the court."""
    suggestion = db.session.get(CourtSuggestion, suggestion_id)
    if not suggestion:
        raise NotFoundError('Suggestion not found')

    decision = _normalize_decision(action, ('approved', 'rejected'))
    if decision is None:
        raise ValidationError('Action must be approve or reject')
    if suggestion.status != 'pending':
        raise ValidationError(NOT_PENDING_MESSAGE)
    if decision == 'approved' and _court_exists_at(suggestion.address_key):
        raise ConflictError(DUPLICATE_COURT_MESSAGE)

    now = utcnow_naive()
    won = update_if_pending(
        CourtSuggestion, suggestion.id,
        status=decision,
        reviewed_by=reviewer.id,
        reviewed_by_user_name=reviewer.display_name,
        review_note=_clean_note(note),
        reviewed_at=now,
        updated_at=now,
    )
    if not won:
        db.session.rollback()
        raise ValidationError(NOT_PENDING_MESSAGE)
    db.session.refresh(suggestion)

    court = None
    if decision == 'approved':
        court = _court_from_suggestion(suggestion)
        db.session.add(court)
        db.session.flush()
        suggestion.court_id = court.id

    db.session.commit()
    logger.info(
        'court_suggestion_reviewed',
        suggestion_id=suggestion.id, status=decision,
        reviewed_by=reviewer.id, court_id=court.id if court else None,
    )
    return suggestion, court


# ── Edit suggestions ─────────────────────────────────────────────────────

def _patch_from_suggestion(suggestion, only=None):
    values = {}
    columns = dict(EDIT_FIELD_COLUMNS)
    columns.update(COORDINATE_COLUMNS)
    for attr, column in columns.items():
        if only is not None and attr not in only:
            continue
        values[attr] = getattr(suggestion, column)
    return CourtPatch.from_mapping(values)


def _patch_columns(patch):
    """Full column set for a suggestion row. Absent fields become NULL."""
    changes = patch.changes()
    columns = dict(EDIT_FIELD_COLUMNS)
    columns.update(COORDINATE_COLUMNS)
    return {column: changes.get(attr) for attr, column in columns.items()}


def changed_fields(suggestion, court):
    """Proposed fields whose value still differs from the court."""
    fields = []
    for attr, column in EDIT_FIELD_COLUMNS.items():
        proposed = getattr(suggestion, column)
        if proposed is None:
            continue
        if _values_differ(getattr(court, attr), proposed):
            fields.append(attr)
    return fields


def _build_edit_patch(court, raw_data):
    """Validate an edit payload and keep only the values that change the court."""
    if not isinstance(raw_data, dict):
        raise ValidationError('Invalid JSON payload')

    reason = str(raw_data.get('reason') or '').strip()
    if not reason:
        raise ValidationError('Reason is required')
    if len(reason) > MAX_EDIT_REASON_LENGTH:
        raise ValidationError(f'Reason must be {MAX_EDIT_REASON_LENGTH} characters or less')

    data, errors = normalize_court_payload(raw_data, allowed=tuple(EDIT_FIELD_COLUMNS))
    if errors:
        raise ValidationError(errors[0], errors=errors)

    diff = {
        field: value for field, value in data.items()
        if _values_differ(getattr(court, field), value)
    }
    if not diff:
        raise ValidationError('No changes detected')

    if any(field in diff for field in ADDRESS_FIELDS):
        merged = [diff.get(field, getattr(court, field)) for field in ADDRESS_FIELDS]
        location = _geocoder().geocode(*merged)
        if location is None:
            raise ExternalDependencyError('Invalid address')
        diff['latitude'] = location.latitude
        diff['longitude'] = location.longitude

    return reason, CourtPatch.from_mapping(diff)


def _get_court(court_id):
    court = db.session.get(Court, court_id)
    if not court:
        raise NotFoundError('Court not found')
    return court


def _get_edit_suggestion(suggestion_id, court_id=None):
    suggestion = db.session.get(CourtEditSuggestion, suggestion_id)
    if not suggestion or (court_id is not None and suggestion.court_id != court_id):
        raise NotFoundError('Suggestion not found')
    return suggestion


def create_edit_suggestion(court_id, identity, raw_data):
    court = _get_court(court_id)
    reason, patch = _build_edit_patch(court, raw_data)

    existing = CourtEditSuggestion.query.filter_by(
        court_id=court.id, suggested_by=identity.id, status='pending',
    ).first()
    if existing:
        raise ConflictError(DUPLICATE_EDIT_MESSAGE, suggestion_id=existing.id)

    suggestion = CourtEditSuggestion(
        court_id=court.id,
        suggested_by=identity.id,
        suggested_by_user_name=identity.display_name,
        reason=reason,
        status='pending',
        **_patch_columns(patch),
    )
    db.session.add(suggestion)
    commit_or_conflict(DUPLICATE_EDIT_MESSAGE)
    logger.info(
        'court_edit_suggestion_created',
        suggestion_id=suggestion.id, court_id=court.id,
        user_id=identity.id, fields=sorted(patch.changes()),
    )
    return suggestion


def serialize_edit_suggestion(suggestion, court, include_all=False):
    payload = suggestion.to_dict()
    fields = changed_fields(suggestion, court)
    payload['changed_fields'] = fields
    if not include_all:
        for attr, column in EDIT_FIELD_COLUMNS.items():
            if attr not in fields:
                payload[column] = None
    return payload


def list_edit_suggestions(court_id, status=None, user_id=None, include_all=False, limit=50):
    """Edit suggestions for a court, newest first.

    Unless ``include_all`` is set, pending suggestions that no longer change
    anything (the court already matches) are left out.
    """
    court = _get_court(court_id)
    query = CourtEditSuggestion.query.filter_by(court_id=court.id)
    if status:
        status = str(status).strip().lower()
        if status not in REVIEW_STATUSES:
            raise ValidationError('Invalid status filter')
        query = query.filter_by(status=status)
    if user_id:
        query = query.filter_by(suggested_by=str(user_id))
    suggestions = query.order_by(
        CourtEditSuggestion.created_at.desc(), CourtEditSuggestion.id.desc()
    ).limit(clamp_limit(limit)).all()

    results = []
    for suggestion in suggestions:
        payload = serialize_edit_suggestion(suggestion, court, include_all=include_all)
        if not include_all and suggestion.status == 'pending' and not payload['changed_fields']:
            continue
        results.append(payload)
    return results


def update_edit_suggestion(court_id, suggestion_id, identity, raw_data):
    suggestion = _get_edit_suggestion(suggestion_id, court_id)
    if suggestion.suggested_by != identity.id:
        raise AuthorizationError('You can only edit your own suggestions')
    if suggestion.status != 'pending':
        raise ValidationError('Only pending suggestions can be edited')

    court = _get_court(suggestion.court_id)
    reason, patch = _build_edit_patch(court, raw_data)

    values = _patch_columns(patch)
    values['reason'] = reason
    values['updated_at'] = utcnow_naive()
    if not update_if_pending(CourtEditSuggestion, suggestion.id, **values):
        db.session.rollback()
        raise ValidationError('Only pending suggestions can be edited')
    db.session.commit()
    db.session.refresh(suggestion)
    logger.info('court_edit_suggestion_updated', suggestion_id=suggestion.id, user_id=identity.id)
    return suggestion


def delete_edit_suggestion(court_id, suggestion_id, identity, is_admin=False):
    suggestion = _get_edit_suggestion(suggestion_id, court_id)
    if suggestion.suggested_by != identity.id and not is_admin:
        raise AuthorizationError('You can only delete your own suggestions')
    db.session.delete(suggestion)
    db.session.commit()
    logger.info('court_edit_suggestion_deleted', suggestion_id=suggestion_id, deleted_by=identity.id)


def _remaining_fields(suggestion):
    return [
        attr for attr, column in EDIT_FIELD_COLUMNS.items()
        if getattr(suggestion, column) is not None
    ]


def review_edit_suggestion(court_id, suggestion_id, reviewer, status, note=None, field=None):
    """Approve or reject an edit suggestion, whole or one field at a time.

    Returns ``(suggestion, applied_fields)``.
    """
    suggestion = _get_edit_suggestion(suggestion_id, court_id)
    if suggestion.suggested_by == reviewer.id:
        raise AuthorizationError('You cannot review your own suggestion')

    decision = _normalize_decision(status, ('approved', 'rejected'))
    if decision is None:
        raise ValidationError('Status must be approved or rejected')
    if suggestion.status != 'pending':
        raise ValidationError(NOT_PENDING_MESSAGE)

    court = _get_court(suggestion.court_id)
    now = utcnow_naive()
    review_values = {
        'status': decision,
        'reviewed_by': reviewer.id,
        'reviewed_by_user_name': reviewer.display_name,
        'review_note': _clean_note(note),
        'reviewed_at': now,
        'updated_at': now,
    }

    if field:
        applied = _review_single_field(suggestion, court, decision, field, review_values)
    else:
        if not update_if_pending(CourtEditSuggestion, suggestion.id, **review_values):
            db.session.rollback()
            raise ValidationError(NOT_PENDING_MESSAGE)
        db.session.refresh(suggestion)
        applied = []
        if decision == 'approved':
            applied = _patch_from_suggestion(suggestion).apply_to(court)

    db.session.commit()
    if applied:
        invalidate_court(court.id)
    logger.info(
        'court_edit_suggestion_reviewed',
        suggestion_id=suggestion.id, court_id=court.id, decision=decision,
        field=field, status=suggestion.status, applied=applied,
        reviewed_by=reviewer.id,
    )
    return suggestion, applied


def _review_single_field(suggestion, court, decision, raw_field, review_values):
    attr = canonical_field_name(str(raw_field).strip())
    column = EDIT_FIELD_COLUMNS.get(attr)
    if column is None:
        raise ValidationError(f'Unknown field: {raw_field}')
    if getattr(suggestion, column) is None:
        raise ValidationError(f'No proposed value for field: {raw_field}')

    applied = []
    if decision == 'approved':
        only = {attr}
        if attr in ADDRESS_FIELDS:
            only.update(COORDINATE_COLUMNS)
        applied = _patch_from_suggestion(suggestion, only=only).apply_to(court)

    setattr(suggestion, column, None)
    if attr in ADDRESS_FIELDS and not any(
        getattr(suggestion, EDIT_FIELD_COLUMNS[f]) is not None for f in ADDRESS_FIELDS
    ):
        for coordinate_column in COORDINATE_COLUMNS.values():
            setattr(suggestion, coordinate_column, None)

    if _remaining_fields(suggestion):
        values = {'updated_at': review_values['updated_at']}
    else:
        values = review_values
    if not update_if_pending(CourtEditSuggestion, suggestion.id, **values):
        db.session.rollback()
        raise ValidationError(NOT_PENDING_MESSAGE)
    db.session.refresh(suggestion)
    return applied
