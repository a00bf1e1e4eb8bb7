import json
import logging
import re
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Dict, Any, Optional
from contextvars import ContextVar

# Context variables for correlation
run_id_var: ContextVar[Optional[str]] = ContextVar('run_id', default=None)
playlist_id_var: ContextVar[Optional[str]] = ContextVar('playlist_id', default=None)
stage_var: ContextVar[Optional[str]] = ContextVar('stage', default=None)

LOGGER_NAME = 'dailypick'

# Credentials this service holds: the Spotify token pair, the Spotify client
# secret, the Last.fm API key and the OAuth authorization code.
SECRET_NAMES = ('access_token', 'refresh_token', 'client_secret', 'api_key', 'code')

_NAMED_SECRET = re.compile(
    r'(?i)\b(%s)(["\']?\s*[:=]\s*["\']?)([A-Za-z0-9\-_.~+/]{8,})' % '|'.join(SECRET_NAMES))
_BEARER = re.compile(r'(?i)\b(Bearer)(\s+)([A-Za-z0-9\-_.~+/]{8,})')


def mask_value(secret: str) -> str:
    """Keep the first and last 4 characters of long secrets, hide short ones entirely."""
    if len(secret) > 8:
        return secret[:4] + '*' * (len(secret) - 8) + secret[-4:]
    return '*' * len(secret)


class SecretMasker:
    """Masks credentials in log messages and structured fields."""

    def mask_secrets(self, text: str) -> str:
        if not text:
            return text

        def replace_match(match):
            return match.group(1) + match.group(2) + mask_value(match.group(3))

        for pattern in (_NAMED_SECRET, _BEARER):
            text = pattern.sub(replace_match, text)
        return text

    def mask_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Mask values stored under credential names and secrets embedded in strings."""
        if not data:
            return data

        masked_data = {}

        for key, value in data.items():
            if isinstance(value, str) and str(key).lower() in SECRET_NAMES:
                masked_data[key] = mask_value(value)
            elif isinstance(value, str):
                masked_data[key] = self.mask_secrets(value)
            elif isinstance(value, dict):
                masked_data[key] = self.mask_dict(value)
            elif isinstance(value, list):
                masked_data[key] = [self.mask_dict(item) if isinstance(item, dict)
                                    else self.mask_secrets(item) if isinstance(item, str)
                                    else item for item in value]
            else:
                masked_data[key] = value

        return masked_data


class StructuredFormatter(logging.Formatter):
    """One JSON object per line, carrying the run correlation fields when set."""

    correlation_fields = (
        ('runId', run_id_var),
        ('playlistId', playlist_id_var),
        ('stage', stage_var),
    )

    def __init__(self):
        super().__init__()
        self.masker = SecretMasker()

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            'ts': datetime.now(timezone.utc).strftime('%Y-%m-%dT%H:%M:%S.%fZ'),
            'level': record.levelname,
            'logger': record.name,
            'message': self.masker.mask_secrets(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        for name, var in self.correlation_fields:
            value = var.get()
            if value:
                log_entry[name] = value

        if record.exc_info:
            log_entry['exception'] = self.masker.mask_secrets(self.formatException(record.exc_info))

        fields = getattr(record, 'fields', None)
        if fields:
            log_entry['fields'] = self.masker.mask_dict(fields)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class MaskingFormatter(logging.Formatter):
    """Plain-text formatter that still masks secrets."""

    def __init__(self, fmt: str = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'):
        super().__init__(fmt)
        self.masker = SecretMasker()

    def format(self, record: logging.LogRecord) -> str:
        return self.masker.mask_secrets(super().format(record))


class CorrelationContext:
    """Context manager for correlation data."""

    def __init__(self, run_id: Optional[str] = None,
                 playlist_id: Optional[str] = None,
                 stage: Optional[str] = None):
        """Initialize correlation context."""
        self.run_id = run_id
        self.playlist_id = playlist_id
        self.stage = stage
        self._tokens = []

    def __enter__(self):
        """Set correlation context."""
        if self.run_id is not None:
            self._tokens.append((run_id_var, run_id_var.set(self.run_id)))
        if self.playlist_id is not None:
            self._tokens.append((playlist_id_var, playlist_id_var.set(self.playlist_id)))
        if self.stage is not None:
            self._tokens.append((stage_var, stage_var.set(self.stage)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Restore correlation context."""
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens = []


def setup_logging(level: str = 'INFO',
                  log_file: Optional[str] = None,
                  json_format: bool = False) -> logging.Logger:
    """Configure the ``dailypick`` logger hierarchy."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper()))

    logger.handlers.clear()

    formatter = StructuredFormatter() if json_format else MaskingFormatter()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        # Rotate at ~10MB with up to 7 backups
        file_handler = RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=7)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def log_with_fields(logger: logging.Logger, level: str, message: str,
                    fields: Optional[Dict[str, Any]] = None, **kwargs):
    """Log message with additional fields."""
    record = logger.makeRecord(
        logger.name, getattr(logging, level.upper()),
        '', 0, message, (), None
    )

    if fields:
        record.fields = dict(fields)
    if kwargs:
        if not hasattr(record, 'fields'):
            record.fields = {}
        record.fields.update(kwargs)

    logger.handle(record)


def log_run_start(logger: logging.Logger, run_id: str, user: str, playlist_id: str, **kwargs):
    """Log run start."""
    with CorrelationContext(run_id=run_id, playlist_id=playlist_id, stage='start'):
        log_with_fields(logger, 'INFO', 'Daily selection started', {
            'user': user,
            **kwargs
        })


def log_run_complete(logger: logging.Logger, run_id: str, status: str, **kwargs):
    """Log run completion."""
    with CorrelationContext(run_id=run_id, stage='complete'):
        log_with_fields(logger, 'INFO', 'Daily selection completed', {
            'status': status,
            **kwargs
        })


def log_error(logger: logging.Logger, message: str, error: Exception, **kwargs):
    """Log error with exception details."""
    log_with_fields(logger, 'ERROR', message, {
        'error_type': type(error).__name__,
        'error_message': str(error),
        **kwargs
    })
