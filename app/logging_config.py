import logging
from logging.config import dictConfig
from pathlib import Path

from app.config import settings


def setup_logging() -> None:
    handlers: dict = {
        'console': {
            'class': 'logging.StreamHandler',
            'formatter': 'default',
        },
    }
    if settings.log_dir:
        log_dir = Path(settings.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers['file'] = {
            'class': 'logging.handlers.RotatingFileHandler',
            'formatter': 'default',
            'filename': str(log_dir / 'almox_portal.log'),
            'maxBytes': 5 * 1024 * 1024,
            'backupCount': 5,
            'encoding': 'utf-8',
        }

    dictConfig(
        {
            'version': 1,
            'disable_existing_loggers': False,
            'formatters': {
                'default': {
                    'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                },
            },
            'handlers': handlers,
            'root': {
                'level': settings.log_level.upper(),
                'handlers': list(handlers),
            },
        }
    )


logger = logging.getLogger('almox_portal')
