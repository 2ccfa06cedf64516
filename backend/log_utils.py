"""Structured logging setup built on structlog.

Console output in development, JSON lines in production. Each request binds
``request_id``, ``method`` and ``path`` into the structlog context so every
event logged while handling it carries them.
"""

import logging
import sys
import uuid

import structlog

_configured = False


def configure_logging(app):
    """Configure structlog and stdlib logging from the app config."""
    global _configured

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt='iso'),
        structlog.processors.StackInfoRenderer(),
    ]

    if app.config.get('LOG_JSON'):
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=False),
        ]

    level_name = str(app.config.get('LOG_LEVEL') or 'INFO').upper()
    level = getattr(logging, level_name, logging.INFO)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(logging.NOTSET),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if not _configured:
        logging.basicConfig(format='%(message)s', stream=sys.stdout, level=level)
        _configured = True
    logging.getLogger().setLevel(level)
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)
    logging.getLogger('botocore').setLevel(logging.WARNING)


def get_logger(name):
    """Return a structlog logger, e.g. ``get_logger(__name__)``."""
    return structlog.get_logger(name)


def new_request_id():
    return uuid.uuid4().hex[:16]


def bind_request_context(request_id, **kwargs):
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, **kwargs)


def clear_request_context():
    structlog.contextvars.clear_contextvars()
