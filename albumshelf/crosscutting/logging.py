import json
import logging
import re
import sys
from datetime import datetime
from typing import Dict, Any, Optional
from contextvars import ContextVar

# Context variables for correlation
user_id_var: ContextVar[Optional[str]] = ContextVar('user_id', default=None)
device_id_var: ContextVar[Optional[str]] = ContextVar('device_id', default=None)
shelf_id_var: ContextVar[Optional[str]] = ContextVar('shelf_id', default=None)
stage_var: ContextVar[Optional[str]] = ContextVar('stage', default=None)


class SecretMasker:
    """Masks sensitive information in log messages."""

    def __init__(self):
        """Initialize secret masker with patterns."""
        self.patterns = [
            # Access and refresh tokens
            r'(?i)(access_token|refresh_token|accessToken|refreshToken)[\s]*[:=][\s]*["\']?([a-zA-Z0-9\-_\.]{10,})["\']?',
            # Generic tokens and keys
            r'(?i)(token|key|secret|password)[\s]*[:=][\s]*["\']?([a-zA-Z0-9\-_\.]{10,})["\']?',
            # Client secrets
            r'(?i)(client_secret)[\s]*[:=][\s]*["\']?([a-zA-Z0-9\-_\.]{20,})["\']?',
            # Bearer credentials in headers
            r'(?i)(bearer)[\s]+["\']?([a-zA-Z0-9\-_\.]{20,})["\']?',
            # OAuth codes
            r'(?i)(code|authorization_code)[\s]*[:=][\s]*["\']?([a-zA-Z0-9\-_\.]{20,})["\']?',
        ]

        self.compiled_patterns = [re.compile(pattern) for pattern in self.patterns]

    def mask_secrets(self, text: str) -> str:
        """Mask sensitive information in text."""
        if not text:
            return text

        masked_text = text

        for pattern in self.compiled_patterns:
            def replace_match(match):
                prefix = match.group(1)
                secret = match.group(2)
                # Keep first 4 and last 4 characters
                if len(secret) > 8:
                    masked_secret = secret[:4] + '*' * (len(secret) - 8) + secret[-4:]
                else:
                    masked_secret = '*' * len(secret)
                return f"{prefix}: {masked_secret}"

            masked_text = pattern.sub(replace_match, masked_text)

        return masked_text

    def mask_dict(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Mask sensitive values in a dictionary of log fields.

        Values under credential-like keys are masked wholesale, string values
        elsewhere go through the text patterns.
        """
        if not data:
            return data

        masked_data = {}

        for key, value in data.items():
            if isinstance(value, str) and _is_secret_key(key):
                masked_data[key] = _mask_value(value)
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


_SECRET_KEYS = ('token', 'secret', 'password', 'authorization')


def _is_secret_key(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in _SECRET_KEYS)


def _mask_value(value: str) -> str:
    if len(value) > 8:
        return value[:4] + '*' * (len(value) - 8) + value[-4:]
    return '*' * len(value)


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(self):
        """Initialize formatter."""
        super().__init__()
        self.masker = SecretMasker()

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        user_id = user_id_var.get()
        device_id = device_id_var.get()
        shelf_id = shelf_id_var.get()
        stage = stage_var.get()

        log_entry = {
            'ts': datetime.utcnow().isoformat() + 'Z',
            'level': record.levelname,
            'logger': record.name,
            'message': self.mask_secrets(record.getMessage()),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        if user_id:
            log_entry['userId'] = user_id
        if device_id:
            log_entry['deviceId'] = device_id
        if shelf_id:
            log_entry['shelfId'] = shelf_id
        if stage:
            log_entry['stage'] = stage

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        if getattr(record, 'fields', None):
            log_entry['fields'] = self.masker.mask_dict(record.fields)

        return json.dumps(log_entry, ensure_ascii=False)

    def mask_secrets(self, text: str) -> str:
        """Mask secrets in text."""
        return self.masker.mask_secrets(text)


class CorrelationContext:
    """Context manager for correlation data."""

    def __init__(self, user_id: Optional[str] = None,
                 device_id: Optional[str] = None,
                 shelf_id: Optional[str] = None,
                 stage: Optional[str] = None):
        """Initialize correlation context."""
        self.user_id = user_id
        self.device_id = device_id
        self.shelf_id = shelf_id
        self.stage = stage
        self._tokens = []

    def __enter__(self):
        """Set correlation context."""
        for var, value in ((user_id_var, self.user_id),
                           (device_id_var, self.device_id),
                           (shelf_id_var, self.shelf_id),
                           (stage_var, self.stage)):
            if value is not None:
                self._tokens.append((var, var.set(value)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Restore correlation context."""
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)


def setup_logging(level: str = 'INFO',
                  log_file: Optional[str] = None) -> logging.Logger:
    """Setup structured logging for the albumshelf logger tree."""
    logger = logging.getLogger('albumshelf')
    logger.setLevel(getattr(logging, level.upper()))

    logger.handlers.clear()

    formatter = StructuredFormatter()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def log_with_fields(logger: logging.Logger, level: str, message: str,
                    fields: Optional[Dict[str, Any]] = None,
                    exc_info: bool = False, **kwargs):
    """Log message with additional fields."""
    numeric_level = getattr(logging, level.upper())
    if not logger.isEnabledFor(numeric_level):
        return

    record = logger.makeRecord(
        logger.name, numeric_level,
        '', 0, message, (), None
    )
    if exc_info:
        record.exc_info = sys.exc_info() if sys.exc_info()[0] else None

    merged: Dict[str, Any] = {}
    if fields:
        merged.update(fields)
    if kwargs:
        merged.update(kwargs)
    if merged:
        record.fields = merged

    logger.handle(record)


def log_error(logger: logging.Logger, message: str, error: Exception, **kwargs):
    """Log error with exception details."""
    log_with_fields(logger, 'ERROR', message, {
        'error_type': type(error).__name__,
        'error_message': str(error),
        **kwargs
    }, exc_info=True)
