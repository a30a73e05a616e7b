# logging_config.py

import os
import re
import sys
import logging
import logging.handlers
from pathlib import Path
from typing import Dict, Optional

from pythonjsonlogger import jsonlogger

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
LOG_DIR = Path(os.getenv("LOG_DIR", "logs"))

ENVIRONMENT = os.getenv("ENVIRONMENT", "development")

CONTEXT_FIELDS = ("service_name", "audit_id", "website_id", "draft_id", "issue_id")


class SensitiveDataFilter(logging.Filter):

    SENSITIVE_KEYS = [
        'password', 'token', 'api_key', 'secret', 'authorization',
        'bearer', 'llm_api_key', 'openai_api_key', 'rabbitmq_url', 'database_url',
    ]

    PATTERNS = [
        (r'(api[_-]?key\s*[=:]\s*)[^\s&]+', r'\1***MASKED***'),
        (r'(token\s*[=:]\s*)[^\s&]+', r'\1***MASKED***'),
        (r'(password\s*[=:]\s*)[^\s&]+', r'\1***MASKED***'),
        (r'(sk-[a-zA-Z0-9_-]{20,})', r'sk-***MASKED***'),
        (r'(Bearer\s+)[^\s]+', r'\1***MASKED***'),
        (r'(://[^:/\s]+:)[^@\s]+(@)', r'\1***MASKED***\2'),
    ]

    def filter(self, record):
        if hasattr(record, 'msg'):
            msg = str(record.msg)
            lowered = msg.lower()
            if any(key in lowered for key in self.SENSITIVE_KEYS) or 'sk-' in msg or '://' in msg:
                record.msg = self._mask_sensitive_data(msg)

        if hasattr(record, 'args') and record.args and isinstance(record.args, tuple):
            record.args = tuple(
                self._mask_if_sensitive(arg) for arg in record.args
            )

        return True

    def _mask_sensitive_data(self, text):
        for pattern, replacement in self.PATTERNS:
            text = re.sub(pattern, replacement, text, flags=re.IGNORECASE)
        return text

    def _mask_if_sensitive(self, value):
        if isinstance(value, str):
            return self._mask_sensitive_data(value)
        return value


class CustomJsonFormatter(jsonlogger.JsonFormatter):

    def add_fields(self, log_record, record, message_dict):
        super(CustomJsonFormatter, self).add_fields(log_record, record, message_dict)

        log_record['timestamp'] = self.formatTime(record, self.datefmt)
        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        log_record['module'] = record.module
        log_record['function'] = record.funcName
        log_record['line'] = record.lineno

        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                key = 'service' if field == 'service_name' else field
                log_record[key] = value

        if record.exc_info:
            log_record['exception'] = self.formatException(record.exc_info)


class MetricsLogger:

    _metrics = {
        'api_calls_success': 0,
        'api_calls_failed': 0,
    }

    @classmethod
    def increment(cls, metric_name: str, value: int = 1):
        if metric_name in cls._metrics:
            cls._metrics[metric_name] += value

    @classmethod
    def get_metrics(cls) -> Dict[str, int]:
        return cls._metrics.copy()

    @classmethod
    def reset_metrics(cls):
        for key in cls._metrics:
            cls._metrics[key] = 0


def _build_formatter() -> logging.Formatter:
    if ENVIRONMENT == "production":
        return CustomJsonFormatter('%(timestamp)s %(level)s %(name)s %(message)s')
    return logging.Formatter(
        '[%(asctime)s] %(levelname)-8s [%(name)s.%(funcName)s:%(lineno)d] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def setup_logging(service_name="site_audit", log_to_file: Optional[bool] = None):
    """Configure the root logger for one service process.

    Console output is always enabled. Rotating file handlers (``<service>.log``
    and ``<service>_error.log``) are added unless ``log_to_file`` is False;
    by default they are enabled outside of the ``test`` environment.
    """
    logger = logging.getLogger()
    logger.setLevel(LOG_LEVEL)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)

    sensitive_filter = SensitiveDataFilter()
    formatter = _build_formatter()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(LOG_LEVEL)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(sensitive_filter)
    logger.addHandler(console_handler)

    if log_to_file is None:
        log_to_file = ENVIRONMENT != "test"

    if log_to_file:
        LOG_DIR.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            LOG_DIR / f"{service_name}.log",
            maxBytes=50 * 1024 * 1024,
            backupCount=10,
            encoding='utf-8'
        )
        file_handler.setLevel(LOG_LEVEL)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(sensitive_filter)
        logger.addHandler(file_handler)

        error_handler = logging.handlers.RotatingFileHandler(
            LOG_DIR / f"{service_name}_error.log",
            maxBytes=50 * 1024 * 1024,
            backupCount=10,
            encoding='utf-8'
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(formatter)
        error_handler.addFilter(sensitive_filter)
        logger.addHandler(error_handler)

    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("aio_pika").setLevel(logging.WARNING)
    logging.getLogger("aiormq").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)

    return logger


def get_logger(name, service_name=None):
    logger = logging.getLogger(name)

    if service_name:
        logger = logging.LoggerAdapter(logger, {'service_name': service_name})

    return logger


def log_external_api_call(logger, service_name, endpoint, duration, status_code, error=None):
    extra = {
        'api_service': service_name,
        'endpoint': endpoint,
        'duration_ms': round(duration * 1000, 2),
        'status_code': status_code,
    }

    if error:
        logger.error(
            f"External API call failed: {service_name} - {endpoint}",
            extra={**extra, 'error': str(error)},
        )
        MetricsLogger.increment('api_calls_failed')
    else:
        logger.info(
            f"External API call: {service_name} - {endpoint}",
            extra=extra
        )
        MetricsLogger.increment('api_calls_success')
