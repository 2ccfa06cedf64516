import json
from sqlalchemy import text
from backend.app import db
from backend.time_utils import utcnow_naive, isoformat_or_none

PENDING_ONLY = text("status = 'pending'")


def _safe_json(raw_value, fallback=None):
    if fallback is None:
        fallback = {}
    if not raw_value:
        return fallback
    try:
        return json.loads(raw_value)
    except (TypeError, ValueError):
        return fallback


def _pending_unique_index(name, *columns):
    """Unique index that only covers rows still awaiting review."""
    return db.Index(
        name, *columns, unique=True,
        sqlite_where=PENDING_ONLY, postgresql_where=PENDING_ONLY,
    )


class Court(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    address = db.Column(db.String(255), nullable=False)
    city = db.Column(db.String(100), default='')
    state = db.Column(db.String(50), default='')
    zip = db.Column(db.String(20), default='')
    # Lowercased "address|city|state|zip" used for duplicate detection
    address_key = db.Column(db.String(500), nullable=False, index=True)
    latitude = db.Column(db.Float, nullable=True)
    longitude = db.Column(db.Float, nullable=True)
    number_of_courts = db.Column(db.Integer, nullable=True)
    surface = db.Column(db.String(50), default='')
    court_condition = db.Column(db.String(50), default='')
    court_type = db.Column(db.String(50), default='')
    lighted = db.Column(db.Boolean, default=False)
    hitting_wall = db.Column(db.Boolean, default=False)
    membership_required = db.Column(db.Boolean, default=False)
    parking = db.Column(db.Boolean, default=False)
    is_public = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())
    updated_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self):
        return {
            'id': self.id, 'name': self.name, 'address': self.address,
            'city': self.city, 'state': self.state, 'zip': self.zip,
            'latitude': self.latitude, 'longitude': self.longitude,
            'number_of_courts': self.number_of_courts, 'surface': self.surface,
            'court_condition': self.court_condition, 'court_type': self.court_type,
            'lighted': self.lighted, 'hitting_wall': self.hitting_wall,
            'membership_required': self.membership_required,
            'parking': self.parking, 'is_public': self.is_public,
            'created_at': isoformat_or_none(self.created_at),
            'updated_at': isoformat_or_none(self.updated_at),
        }


# ── Suggestions ──────────────────────────────────────────────────────────

class CourtSuggestion(db.Model):
    """A user's proposal for a court that is not yet in the catalogue."""
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    address = db.Column(db.String(255), nullable=False)
    city = db.Column(db.String(100), nullable=False)
    state = db.Column(db.String(50), nullable=False)
    zip = db.Column(db.String(20), nullable=False)
    address_key = db.Column(db.String(500), nullable=False)
    latitude = db.Column(db.Float, nullable=True)
    longitude = db.Column(db.Float, nullable=True)
    # Nullable attributes mean "not stated by the submitter"
    court_type = db.Column(db.String(50), nullable=True)
    number_of_courts = db.Column(db.Integer, nullable=True)
    surface = db.Column(db.String(50), nullable=True)
    court_condition = db.Column(db.String(50), nullable=True)
    hitting_wall = db.Column(db.Boolean, nullable=True)
    lighted = db.Column(db.Boolean, nullable=True)
    membership_required = db.Column(db.Boolean, nullable=True)
    parking = db.Column(db.Boolean, nullable=True)
    suggested_by = db.Column(db.String(255), nullable=False, index=True)
    suggested_by_user_name = db.Column(db.String(255), nullable=False)
    status = db.Column(db.String(20), default='pending', nullable=False)  # pending, approved, rejected
    reviewed_by = db.Column(db.String(255), nullable=True)
    reviewed_by_user_name = db.Column(db.String(255), nullable=True)
    review_note = db.Column(db.String(500), nullable=True)
    reviewed_at = db.Column(db.DateTime, nullable=True)
    court_id = db.Column(db.Integer, db.ForeignKey('court.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())
    updated_at = db.Column(db.DateTime, nullable=True)

    __table_args__ = (
        _pending_unique_index('uq_court_suggestion_pending_address', 'address_key'),
        db.Index('ix_court_suggestion_status_created', 'status', 'created_at'),
    )

    def to_dict(self):
        return {
            'id': self.id, 'name': self.name, 'address': self.address,
            'city': self.city, 'state': self.state, 'zip': self.zip,
            'latitude': self.latitude, 'longitude': self.longitude,
            'court_type': self.court_type,
            'number_of_courts': self.number_of_courts,
            'surface': self.surface, 'court_condition': self.court_condition,
            'hitting_wall': self.hitting_wall, 'lighted': self.lighted,
            'membership_required': self.membership_required,
            'parking': self.parking,
            'suggested_by': self.suggested_by,
            'suggested_by_user_name': self.suggested_by_user_name,
            'status': self.status,
            'reviewed_by': self.reviewed_by,
            'reviewed_by_user_name': self.reviewed_by_user_name,
            'review_note': self.review_note,
            'reviewed_at': isoformat_or_none(self.reviewed_at),
            'court_id': self.court_id,
            'created_at': isoformat_or_none(self.created_at),
        }


class CourtEditSuggestion(db.Model):
    """Sparse patch proposed against an existing court. NULL means no change."""
    id = db.Column(db.Integer, primary_key=True)
    court_id = db.Column(db.Integer, db.ForeignKey('court.id'), nullable=False)
    suggested_by = db.Column(db.String(255), nullable=False)
    suggested_by_user_name = db.Column(db.String(255), nullable=False)
    reason = db.Column(db.String(100), nullable=False)
    status = db.Column(db.String(20), default='pending', nullable=False)
    reviewed_by = db.Column(db.String(255), nullable=True)
    reviewed_by_user_name = db.Column(db.String(255), nullable=True)
    review_note = db.Column(db.String(500), nullable=True)
    reviewed_at = db.Column(db.DateTime, nullable=True)
    suggested_name = db.Column(db.String(255), nullable=True)
    suggested_address = db.Column(db.String(255), nullable=True)
    suggested_city = db.Column(db.String(100), nullable=True)
    suggested_state = db.Column(db.String(50), nullable=True)
    suggested_zip = db.Column(db.String(20), nullable=True)
    suggested_court_type = db.Column(db.String(50), nullable=True)
    suggested_number_of_courts = db.Column(db.Integer, nullable=True)
    suggested_surface = db.Column(db.String(50), nullable=True)
    suggested_condition = db.Column(db.String(50), nullable=True)
    suggested_hitting_wall = db.Column(db.Boolean, nullable=True)
    suggested_lights = db.Column(db.Boolean, nullable=True)
    suggested_membership_required = db.Column(db.Boolean, nullable=True)
    suggested_parking = db.Column(db.Boolean, nullable=True)
    suggested_latitude = db.Column(db.Float, nullable=True)
    suggested_longitude = db.Column(db.Float, nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())
    updated_at = db.Column(db.DateTime, nullable=True)

    court = db.relationship('Court', backref=db.backref('edit_suggestions', lazy='dynamic'))

    __table_args__ = (
        _pending_unique_index('uq_court_edit_suggestion_pending_author', 'court_id', 'suggested_by'),
        db.Index('ix_court_edit_suggestion_court_status', 'court_id', 'status'),
    )

    def to_dict(self):
        return {
            'id': self.id, 'court_id': self.court_id,
            'suggested_by': self.suggested_by,
            'suggested_by_user_name': self.suggested_by_user_name,
            'reason': self.reason, 'status': self.status,
            'reviewed_by': self.reviewed_by,
            'reviewed_by_user_name': self.reviewed_by_user_name,
            'review_note': self.review_note,
            'reviewed_at': isoformat_or_none(self.reviewed_at),
            'suggested_name': self.suggested_name,
            'suggested_address': self.suggested_address,
            'suggested_city': self.suggested_city,
            'suggested_state': self.suggested_state,
            'suggested_zip': self.suggested_zip,
            'suggested_court_type': self.suggested_court_type,
            'suggested_number_of_courts': self.suggested_number_of_courts,
            'suggested_surface': self.suggested_surface,
            'suggested_condition': self.suggested_condition,
            'suggested_hitting_wall': self.suggested_hitting_wall,
            'suggested_lights': self.suggested_lights,
            'suggested_membership_required': self.suggested_membership_required,
            'suggested_parking': self.suggested_parking,
            'suggested_latitude': self.suggested_latitude,
            'suggested_longitude': self.suggested_longitude,
            'created_at': isoformat_or_none(self.created_at),
            'updated_at': isoformat_or_none(self.updated_at),
        }


# ── Reviews & Photos ─────────────────────────────────────────────────────

class Review(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    court_id = db.Column(db.Integer, db.ForeignKey('court.id'), nullable=False, index=True)
    user_id = db.Column(db.String(255), nullable=False)
    user_name = db.Column(db.String(255), nullable=False)
    rating = db.Column(db.Integer, nullable=False)  # 1-5
    text = db.Column(db.String(2000), default='')
    photos = db.Column(db.Text, default='[]')  # JSON list of photo URLs
    is_deleted = db.Column(db.Boolean, default=False, nullable=False)
    deleted_by = db.Column(db.String(255), nullable=True)
    deletion_reason = db.Column(db.String(500), nullable=True)
    deleted_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())
    updated_at = db.Column(db.DateTime, nullable=True)

    @property
    def photo_urls(self):
        urls = _safe_json(self.photos, [])
        return [url for url in urls if isinstance(url, str)] if isinstance(urls, list) else []

    @photo_urls.setter
    def photo_urls(self, urls):
        self.photos = json.dumps(list(urls or []))

    def to_dict(self, photos=None):
        return {
            'id': self.id, 'court_id': self.court_id,
            'user_id': self.user_id, 'user_name': self.user_name,
            'rating': self.rating, 'text': self.text,
            'photos': self.photo_urls if photos is None else photos,
            'created_at': isoformat_or_none(self.created_at),
            'updated_at': isoformat_or_none(self.updated_at),
        }


class PhotoModeration(db.Model):
    """Moderation state for one photo embedded in a review.

    ``review_id`` is a plain column so rows survive hard deletion of the
    review they belonged to.
    """
    id = db.Column(db.Integer, primary_key=True)
    photo_url = db.Column(db.String(500), nullable=False)
    review_id = db.Column(db.Integer, nullable=False, index=True)
    court_id = db.Column(db.Integer, nullable=False)
    uploaded_by = db.Column(db.String(255), nullable=False)
    is_deleted = db.Column(db.Boolean, default=False, nullable=False)
    deleted_by = db.Column(db.String(255), nullable=True)
    deletion_reason = db.Column(db.String(500), nullable=True)
    deleted_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())
    updated_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self):
        return {
            'id': self.id, 'photo_url': self.photo_url,
            'review_id': self.review_id, 'court_id': self.court_id,
            'uploaded_by': self.uploaded_by, 'is_deleted': self.is_deleted,
            'deleted_by': self.deleted_by,
            'deletion_reason': self.deletion_reason,
            'deleted_at': isoformat_or_none(self.deleted_at),
            'created_at': isoformat_or_none(self.created_at),
        }


class CourtPhoto(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    court_id = db.Column(db.Integer, db.ForeignKey('court.id'), nullable=False, index=True)
    photo_url = db.Column(db.String(500), nullable=False)
    uploaded_by = db.Column(db.String(255), nullable=False)
    uploaded_by_user_name = db.Column(db.String(255), nullable=False)
    caption = db.Column(db.String(500), nullable=True)
    is_deleted = db.Column(db.Boolean, default=False, nullable=False)
    deleted_by = db.Column(db.String(255), nullable=True)
    deletion_reason = db.Column(db.String(500), nullable=True)
    deleted_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())
    updated_at = db.Column(db.DateTime, nullable=True)

    def to_dict(self):
        return {
            'id': self.id, 'court_id': self.court_id,
            'photo_url': self.photo_url, 'uploaded_by': self.uploaded_by,
            'uploaded_by_user_name': self.uploaded_by_user_name,
            'caption': self.caption, 'is_deleted': self.is_deleted,
            'created_at': isoformat_or_none(self.created_at),
            'updated_at': isoformat_or_none(self.updated_at),
        }


# ── Moderation ───────────────────────────────────────────────────────────

class Report(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    target_type = db.Column(db.String(20), nullable=False)  # review, photo
    target_id = db.Column(db.Integer, nullable=False)
    court_id = db.Column(db.Integer, nullable=True)
    reported_by = db.Column(db.String(255), nullable=False)
    reported_by_user_name = db.Column(db.String(255), nullable=False)
    reason = db.Column(db.String(500), nullable=False)
    status = db.Column(db.String(20), default='pending', nullable=False)  # pending, dismissed, resolved
    resolved_by = db.Column(db.String(255), nullable=True)
    resolution_note = db.Column(db.String(500), nullable=True)
    resolved_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())
    updated_at = db.Column(db.DateTime, nullable=True)

    __table_args__ = (
        _pending_unique_index(
            'uq_report_pending_target_reporter', 'target_type', 'target_id', 'reported_by'
        ),
        db.Index('ix_report_target', 'target_type', 'target_id'),
    )

    def to_dict(self):
        return {
            'id': self.id, 'target_type': self.target_type,
            'target_id': self.target_id, 'court_id': self.court_id,
            'reported_by': self.reported_by,
            'reported_by_user_name': self.reported_by_user_name,
            'reason': self.reason, 'status': self.status,
            'resolved_by': self.resolved_by,
            'resolution_note': self.resolution_note,
            'resolved_at': isoformat_or_none(self.resolved_at),
            'created_at': isoformat_or_none(self.created_at),
        }


class UserBan(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(255), nullable=False, index=True)
    user_name = db.Column(db.String(255), nullable=False)
    user_email = db.Column(db.String(255), nullable=True)
    banned_by = db.Column(db.String(255), nullable=False)
    banned_by_user_name = db.Column(db.String(255), nullable=False)
    ban_reason = db.Column(db.String(500), nullable=True)
    ban_type = db.Column(db.String(20), default='full', nullable=False)  # full, reviews, suggestions, photos
    expires_at = db.Column(db.DateTime, nullable=True)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: utcnow_naive())
    updated_at = db.Column(db.DateTime, nullable=True)

    def is_effective(self, now=None):
        """Active and not yet expired. Expiry needs no separate unban."""
        if not self.is_active:
            return False
        if self.expires_at is None:
            return True
        return self.expires_at > (now or utcnow_naive())

    def to_dict(self):
        return {
            'id': self.id, 'user_id': self.user_id,
            'user_name': self.user_name, 'user_email': self.user_email,
            'banned_by': self.banned_by,
            'banned_by_user_name': self.banned_by_user_name,
            'ban_reason': self.ban_reason, 'ban_type': self.ban_type,
            'expires_at': isoformat_or_none(self.expires_at),
            'is_active': self.is_active,
            'is_effective': self.is_effective(),
            'created_at': isoformat_or_none(self.created_at),
            'updated_at': isoformat_or_none(self.updated_at),
        }
