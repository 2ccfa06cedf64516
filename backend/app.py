import os
from flask import Flask, g, request, jsonify, send_from_directory
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from backend.config import config

db = SQLAlchemy()


def _parse_allowed_origins(raw_origins):
    if not raw_origins:
        return '*'

    if isinstance(raw_origins, (list, tuple, set)):
        cleaned = [origin for origin in raw_origins if origin]
        return cleaned or '*'

    raw_text = str(raw_origins).strip()
    if not raw_text or raw_text == '*':
        return '*'

    origins = [origin.strip() for origin in raw_text.split(',') if origin.strip()]
    return origins or '*'


def _init_extensions(app):
    """Attach the external collaborators. Tests replace these in app.extensions."""
    from backend.services.court_cache import CourtCache
    from backend.services.geocoding import build_geocoder
    from backend.services.storage import build_storage

    app.extensions['geocoder'] = build_geocoder(app.config)
    app.extensions['storage'] = build_storage(app.config)
    app.extensions['court_cache'] = CourtCache(app.config.get('COURT_CACHE_TTL_SECONDS', 60))


def create_app(config_name='development'):
    app = Flask(__name__)
    app.config.from_object(config[config_name])

    from backend.log_utils import (
        bind_request_context, clear_request_context, configure_logging,
        get_logger, new_request_id,
    )
    configure_logging(app)
    logger = get_logger(__name__)

    allowed_origins = _parse_allowed_origins(app.config.get('CORS_ALLOWED_ORIGINS', '*'))
    if str(config_name).strip().lower() == 'production':
        secret_key = str(app.config.get('SECRET_KEY') or '').strip()
        if not secret_key or secret_key == 'dev-secret-key-change-in-prod':
            raise RuntimeError('SECRET_KEY must be set to a non-default value in production')
        if allowed_origins == '*':
            raise RuntimeError('CORS_ALLOWED_ORIGINS must be explicitly set in production')

    db.init_app(app)
    CORS(app, resources={r'/api/*': {'origins': allowed_origins}})
    _init_extensions(app)

    from backend.errors import register_error_handlers
    register_error_handlers(app)

    @app.before_request
    def _bind_request_id():
        request_id = str(request.headers.get('X-Request-ID') or '').strip()[:64] or new_request_id()
        g.request_id = request_id
        bind_request_context(request_id, method=request.method, path=request.path)

    @app.before_request
    def _enforce_origin_for_mutating_api_requests():
        if request.method in {'GET', 'HEAD', 'OPTIONS'}:
            return None
        if not request.path.startswith('/api/'):
            return None

        origin = str(request.headers.get('Origin') or '').strip()
        if not origin:
            return None

        configured_origins = _parse_allowed_origins(
            app.config.get('CORS_ALLOWED_ORIGINS', '*')
        )
        if configured_origins != '*' and origin not in configured_origins:
            logger.warning('request_origin_rejected', origin=origin)
            return jsonify({'error': 'Invalid request origin'}), 403

        auth_header = str(request.headers.get('Authorization') or '').strip()
        if not auth_header:
            return None

        csrf_header = request.headers.get('X-CSRF-Token')
        from backend.auth_utils import csrf_token_matches
        if not csrf_token_matches(auth_header, csrf_header):
            return jsonify({'error': 'Invalid CSRF token'}), 403
        return None

    @app.after_request
    def _echo_request_id(response):
        request_id = g.get('request_id')
        if request_id:
            response.headers['X-Request-ID'] = request_id
        return response

    @app.teardown_request
    def _clear_request_context(_exc):
        clear_request_context()

    from backend.routes.admin import admin_bp
    from backend.routes.auth import auth_bp
    from backend.routes.courts import courts_bp
    from backend.routes.reviews import reviews_bp, uploads_bp
    from backend.routes.suggestions import suggestions_bp

    app.register_blueprint(auth_bp, url_prefix='/api/auth')
    app.register_blueprint(courts_bp, url_prefix='/api/courts')
    app.register_blueprint(reviews_bp, url_prefix='/api/courts')
    app.register_blueprint(suggestions_bp, url_prefix='/api/court-suggestions')
    app.register_blueprint(uploads_bp, url_prefix='/api/uploads')
    app.register_blueprint(admin_bp, url_prefix='/api/admin')

    if str(app.config.get('STORAGE_TYPE', 'local')).lower() == 'local':
        public_prefix = str(app.config.get('STORAGE_PUBLIC_URL') or '/uploads').rstrip('/')
        if public_prefix.startswith('/'):
            @app.route(f'{public_prefix}/<path:filename>')
            def uploaded_file(filename):
                return send_from_directory(os.path.abspath(app.config['STORAGE_PATH']), filename)

    with app.app_context():
        from backend import models  # noqa: F401
        db.create_all()

    logger.info('app_created', config=config_name)
    return app
