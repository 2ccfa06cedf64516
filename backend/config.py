import os

basedir = os.path.abspath(os.path.dirname(__file__))


def _env_bool(name, default=False):
    raw = os.environ.get(name)
    if raw is None:
        return default
    return str(raw).strip().lower() in {'1', 'true', 'yes', 'on'}


def _env_int(name, default):
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def _env_float(name, default):
    raw = os.environ.get(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        return default


def _normalize_database_url(raw_url):
    if not raw_url:
        return raw_url
    if raw_url.startswith('postgres://'):
        return raw_url.replace('postgres://', 'postgresql://', 1)
    return raw_url


def parse_csv_setting(raw_value):
    """Split a comma separated setting into a lowercased set."""
    if not raw_value:
        return set()
    if isinstance(raw_value, (list, tuple, set)):
        items = raw_value
    else:
        items = str(raw_value).split(',')
    return {str(item).strip().lower() for item in items if str(item).strip()}


class BaseConfig:
    SECRET_KEY = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-prod')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    CORS_ALLOWED_ORIGINS = os.environ.get('CORS_ALLOWED_ORIGINS', '*')

    # Identity tokens are issued by the external auth provider.
    AUTH_JWT_SECRET = os.environ.get('AUTH_JWT_SECRET', '')
    AUTH_JWT_ALGORITHM = os.environ.get('AUTH_JWT_ALGORITHM', 'HS256')
    AUTH_TOKEN_EXPIRATION_HOURS = _env_int('AUTH_TOKEN_EXPIRATION_HOURS', 24)

    ADMIN_USER_IDS = os.environ.get('ADMIN_USER_IDS', '')
    ADMIN_EMAIL_DOMAINS = os.environ.get('ADMIN_EMAIL_DOMAINS', '')
    ADMIN_ROLE = os.environ.get('ADMIN_ROLE', 'admin')

    GEOCODING_PROVIDERS = os.environ.get('GEOCODING_PROVIDERS', 'nominatim')
    GEOCODING_TIMEOUT_SECONDS = _env_float('GEOCODING_TIMEOUT_SECONDS', 10.0)
    NOMINATIM_URL = os.environ.get(
        'NOMINATIM_URL', 'https://nominatim.openstreetmap.org/search'
    )
    NOMINATIM_USER_AGENT = os.environ.get(
        'NOMINATIM_USER_AGENT', 'TennisCourtFinder/1.0 (contact@tenniscourtfinder.app)'
    )
    NOMINATIM_COUNTRY_CODES = os.environ.get('NOMINATIM_COUNTRY_CODES', 'us')
    NOMINATIM_MIN_INTERVAL_SECONDS = _env_float('NOMINATIM_MIN_INTERVAL_SECONDS', 1.0)
    GOOGLE_MAPS_API_KEY = os.environ.get('GOOGLE_MAPS_API_KEY', '')
    GOOGLE_GEOCODING_URL = os.environ.get(
        'GOOGLE_GEOCODING_URL', 'https://maps.googleapis.com/maps/api/geocode/json'
    )

    STORAGE_TYPE = os.environ.get('STORAGE_TYPE', 'local')
    STORAGE_PATH = os.environ.get('STORAGE_PATH', os.path.join(basedir, '..', 'uploads'))
    STORAGE_PUBLIC_URL = os.environ.get('STORAGE_PUBLIC_URL', '/uploads')
    S3_BUCKET = os.environ.get('S3_BUCKET', '')
    S3_ACCESS_KEY = os.environ.get('S3_ACCESS_KEY', '')
    S3_SECRET_KEY = os.environ.get('S3_SECRET_KEY', '')
    S3_ENDPOINT = os.environ.get('S3_ENDPOINT', '')
    S3_REGION = os.environ.get('S3_REGION', 'us-east-1')

    UPLOAD_MAX_FILES = _env_int('UPLOAD_MAX_FILES', 5)
    UPLOAD_MAX_BYTES = _env_int('UPLOAD_MAX_BYTES', 5 * 1024 * 1024)
    UPLOAD_FOLDER = os.environ.get('UPLOAD_FOLDER', 'tennis-courts')

    COURT_CACHE_TTL_SECONDS = _env_float('COURT_CACHE_TTL_SECONDS', 60.0)

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_JSON = _env_bool('LOG_JSON', False)


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _normalize_database_url(
        os.environ.get(
            'DATABASE_URL',
            'sqlite:///' + os.path.join(basedir, '..', 'tennis_courts_dev.db')
        )
    )
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'DEBUG')


class TestingConfig(BaseConfig):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'
    ADMIN_USER_IDS = 'admin-1'
    ADMIN_EMAIL_DOMAINS = 'courtfinder-staff.org'
    GEOCODING_PROVIDERS = ''
    STORAGE_TYPE = 'local'
    COURT_CACHE_TTL_SECONDS = 60.0
    LOG_LEVEL = 'WARNING'


class ProductionConfig(BaseConfig):
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = _normalize_database_url(os.environ.get('DATABASE_URL'))
    LOG_JSON = _env_bool('LOG_JSON', True)


config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
}
