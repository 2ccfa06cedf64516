import hashlib
import hmac
from dataclasses import dataclass, field
from functools import wraps
from flask import request, jsonify, current_app
import jwt
from backend.config import parse_csv_setting
from backend.log_utils import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Identity:
    """Caller identity as asserted by the auth provider's token."""
    id: str
    name: str = ''
    email: str = ''
    roles: tuple = field(default_factory=tuple)

    @property
    def display_name(self):
        return self.name or self.email or self.id


def _jwt_secret():
    return str(
        current_app.config.get('AUTH_JWT_SECRET')
        or current_app.config.get('SECRET_KEY')
        or ''
    )


def generate_token(user_id, name='', email='', roles=()):
    """Issue a token in the same shape the auth provider uses.

    Only meant for local development tools and tests.
    """
    from datetime import datetime, timedelta, timezone
    payload = {
        'sub': str(user_id),
        'name': name,
        'email': email,
        'roles': list(roles or []),
        'exp': datetime.now(timezone.utc) + timedelta(
            hours=current_app.config.get('AUTH_TOKEN_EXPIRATION_HOURS', 24)
        ),
    }
    return jwt.encode(
        payload, _jwt_secret(),
        algorithm=current_app.config.get('AUTH_JWT_ALGORITHM', 'HS256'),
    )


def _normalize_bearer_token(raw_token):
    token = str(raw_token or '').strip()
    if token.startswith('Bearer '):
        token = token.split(' ', 1)[1].strip()
    return token


def _roles_from_claims(payload):
    raw = payload.get('roles')
    if raw is None:
        raw = payload.get('role')
    if isinstance(raw, str):
        raw = [raw]
    if not isinstance(raw, (list, tuple)):
        return ()
    return tuple(str(role).strip().lower() for role in raw if str(role).strip())


def _decode_identity_from_token(token):
    normalized = _normalize_bearer_token(token)
    if not normalized:
        return None, 'Authentication required'
    try:
        payload = jwt.decode(
            normalized, _jwt_secret(),
            algorithms=[current_app.config.get('AUTH_JWT_ALGORITHM', 'HS256')],
        )
    except jwt.ExpiredSignatureError:
        return None, 'Token expired'
    except jwt.InvalidTokenError:
        return None, 'Invalid token'

    subject = str(payload.get('sub') or '').strip()
    if not subject:
        return None, 'Invalid token'
    return Identity(
        id=subject,
        name=str(payload.get('name') or '').strip(),
        email=str(payload.get('email') or '').strip().lower(),
        roles=_roles_from_claims(payload),
    ), None


def get_current_identity():
    """Resolve the caller from the Authorization header, or None if anonymous."""
    identity, _ = _decode_identity_from_token(request.headers.get('Authorization', ''))
    return identity


def is_admin(identity, app_config=None):
    if identity is None:
        return False
    cfg = app_config if app_config is not None else current_app.config

    if identity.id.lower() in parse_csv_setting(cfg.get('ADMIN_USER_IDS')):
        return True

    email = identity.email or ''
    if '@' in email:
        domain = email.rsplit('@', 1)[1]
        if domain in parse_csv_setting(cfg.get('ADMIN_EMAIL_DOMAINS')):
            return True

    admin_role = str(cfg.get('ADMIN_ROLE') or '').strip().lower()
    return bool(admin_role) and admin_role in identity.roles


def csrf_token_for_bearer(token):
    """Build deterministic CSRF token tied to bearer token."""
    normalized = _normalize_bearer_token(token)
    if not normalized:
        return ''
    secret = str(current_app.config.get('SECRET_KEY') or '')
    if not secret:
        return ''
    return hmac.new(
        secret.encode('utf-8'),
        normalized.encode('utf-8'),
        hashlib.sha256,
    ).hexdigest()


def csrf_token_matches(token, candidate):
    expected = csrf_token_for_bearer(token)
    provided = str(candidate or '').strip()
    if not expected or not provided:
        return False
    return hmac.compare_digest(expected, provided)


def login_required(f):
    """Decorator to require an authenticated identity on a route."""
    @wraps(f)
    def decorated(*args, **kwargs):
        auth_header = request.headers.get('Authorization', '')
        identity, error = _decode_identity_from_token(auth_header)
        if error:
            return jsonify({'error': error}), 401
        request.current_identity = identity
        return f(*args, **kwargs)
    return decorated


def admin_required(f):
    """Decorator to require an authenticated admin on a route."""
    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        if not is_admin(request.current_identity):
            logger.info('admin_access_denied', user_id=request.current_identity.id)
            return jsonify({'error': 'Admin access required'}), 403
        return f(*args, **kwargs)
    return decorated


def ban_check(scope):
    """Decorator rejecting callers holding an effective ban for ``scope``."""
    def decorator(f):
        @wraps(f)
        @login_required
        def decorated(*args, **kwargs):
            from backend.services.bans import is_banned
            if is_banned(request.current_identity.id, scope):
                return jsonify({
                    'error': 'You are banned from this action',
                    'ban_type': scope,
                }), 403
            return f(*args, **kwargs)
        return decorated
    return decorator
