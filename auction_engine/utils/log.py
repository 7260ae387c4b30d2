import json
import logging
import os
import sys
from datetime import datetime
from typing import Optional

_JSON_ENVIRONMENTS = ("production", "prod", "staging")


class ColoredFormatter(logging.Formatter):
    """Human-readable formatter for development."""

    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[35m',   # Magenta
        'ENDC': '\033[0m',
    }

    def format(self, record):
        level_color = self.COLORS.get(record.levelname, '')
        end_color = self.COLORS['ENDC']
        timestamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S')
        colored_level = f"{level_color}{record.levelname:8s}{end_color}"
        module_name = record.name if record.name != '__main__' else 'main'
        line = f"[{timestamp}] {colored_level} [{module_name}] {record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


class JsonFormatter(logging.Formatter):
    """JSON formatter for production/staging."""

    def format(self, record):
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'module': record.name,
            'message': record.getMessage(),
            'environment': os.getenv('ENVIRONMENT', 'unknown'),
        }
        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)
        if hasattr(record, 'extra') and record.extra:
            log_entry.update(record.extra)
        return json.dumps(log_entry, default=str)


def get_formatter(environment: Optional[str] = None) -> logging.Formatter:
    environment = (environment or os.getenv('ENVIRONMENT', 'development')).lower()
    if environment in _JSON_ENVIRONMENTS:
        return JsonFormatter()
    return ColoredFormatter()


def init(level: str = "INFO", environment: Optional[str] = None) -> None:
    """Install a single stdout handler on the root logger.

    Safe to call more than once; the previous handler installed here is
    replaced rather than duplicated.
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, "_auction_engine", False):
            root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(get_formatter(environment))
    handler._auction_engine = True
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # APScheduler logs every job run at INFO
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
