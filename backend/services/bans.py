"""User bans: scoped, optionally expiring restrictions on submitting content."""

from sqlalchemy import or_

from backend.app import db
from backend.errors import NotFoundError, ValidationError
from backend.log_utils import get_logger
from backend.models import UserBan
from backend.time_utils import parse_iso_datetime, utcnow_naive

logger = get_logger(__name__)

BAN_TYPES = ('full', 'reviews', 'suggestions', 'photos')


def _effective_bans_query(user_id, now=None):
    now = now or utcnow_naive()
    return UserBan.query.filter(
        UserBan.user_id == str(user_id),
        UserBan.is_active.is_(True),
        or_(UserBan.expires_at.is_(None), UserBan.expires_at > now),
    )


def is_banned(user_id, scope=None, now=None):
    """True while an active, unexpired ban covers ``scope`` (or any scope if None)."""
    if not user_id:
        return False
    query = _effective_bans_query(user_id, now)
    if scope:
        query = query.filter(UserBan.ban_type.in_([scope, 'full']))
    return db.session.query(query.exists()).scalar()


def effective_ban_types(user_id, now=None):
    if not user_id:
        return []
    rows = _effective_bans_query(user_id, now).with_entities(UserBan.ban_type).distinct().all()
    return sorted(row[0] for row in rows)


def _parse_ban_type(raw):
    ban_type = str(raw or 'full').strip().lower()
    if ban_type not in BAN_TYPES:
        raise ValidationError(f'ban_type must be one of: {", ".join(BAN_TYPES)}')
    return ban_type


def _parse_expires_at(raw):
    if raw is None or raw == '':
        return None
    if hasattr(raw, 'isoformat'):
        return raw
    try:
        return parse_iso_datetime(raw)
    except ValueError as exc:
        raise ValidationError('expires_at must be an ISO-8601 timestamp') from exc


def ban_user(user_id, user_name, admin, user_email=None, reason=None,
             ban_type='full', expires_at=None):
    """Ban a user for one scope. An existing active ban of that scope is updated."""
    user_id = str(user_id or '').strip()
    user_name = str(user_name or '').strip()
    if not user_id or not user_name:
        raise ValidationError('user_id and user_name are required')
    ban_type = _parse_ban_type(ban_type)
    expires = _parse_expires_at(expires_at)
    reason = str(reason or '').strip()[:500] or None

    existing = UserBan.query.filter_by(
        user_id=user_id, ban_type=ban_type, is_active=True,
    ).first()
    if existing:
        existing.ban_reason = reason
        existing.expires_at = expires
        existing.banned_by = admin.id
        existing.banned_by_user_name = admin.display_name
        existing.updated_at = utcnow_naive()
        ban, created = existing, False
    else:
        ban = UserBan(
            user_id=user_id,
            user_name=user_name,
            user_email=(str(user_email).strip() or None) if user_email else None,
            banned_by=admin.id,
            banned_by_user_name=admin.display_name,
            ban_reason=reason,
            ban_type=ban_type,
            expires_at=expires,
            is_active=True,
        )
        db.session.add(ban)
        created = True

    db.session.commit()
    logger.info(
        'user_banned', user_id=user_id, ban_type=ban_type,
        banned_by=admin.id, created=created,
        expires_at=expires.isoformat() if expires else None,
    )
    return ban, created


def unban_user(user_id, ban_type=None):
    """Deactivate matching active bans. Returns how many rows changed."""
    user_id = str(user_id or '').strip()
    if not user_id:
        raise ValidationError('user_id is required')

    query = UserBan.query.filter(UserBan.user_id == user_id, UserBan.is_active.is_(True))
    if ban_type:
        query = query.filter(UserBan.ban_type == _parse_ban_type(ban_type))
    count = query.update(
        {'is_active': False, 'updated_at': utcnow_naive()},
        synchronize_session=False,
    )
    db.session.commit()
    logger.info('user_unbanned', user_id=user_id, ban_type=ban_type or 'all', count=count)
    return count


def list_bans(user_id=None):
    query = UserBan.query
    if user_id:
        query = query.filter(UserBan.user_id == str(user_id))
    return query.order_by(UserBan.created_at.desc(), UserBan.id.desc()).all()


def update_ban(ban_id, changes):
    """Patch reason, expiry or active flag. Only keys present in ``changes`` apply."""
    ban = db.session.get(UserBan, ban_id)
    if not ban:
        raise NotFoundError('Ban not found')

    if 'ban_reason' in changes:
        ban.ban_reason = str(changes['ban_reason'] or '').strip()[:500] or None
    if 'expires_at' in changes:
        ban.expires_at = _parse_expires_at(changes['expires_at'])
    if 'is_active' in changes:
        raw_active = changes['is_active']
        if not isinstance(raw_active, bool):
            raise ValidationError('is_active must be true or false')
        ban.is_active = raw_active
    ban.updated_at = utcnow_naive()
    db.session.commit()
    logger.info('user_ban_updated', ban_id=ban.id, fields=sorted(changes))
    return ban
