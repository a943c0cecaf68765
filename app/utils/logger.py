"""
Logger configuration for the knowledge base service.

Centralized logging used by the API, the services and the indexing workers.
Supports console output with colors, rotating file output, a separate error
log and JSON structured logging.
"""

import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional
import json

from app.core.config import settings


class ColoredFormatter(logging.Formatter):
    """Custom formatter with colors for console output."""

    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[35m',   # Magenta
        'RESET': '\033[0m'
    }

    def format(self, record):
        # Work on a copy so file handlers don't receive escape codes
        record = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(record.levelname, self.COLORS['RESET'])
        record.levelname = f"{color}{record.levelname}{self.COLORS['RESET']}"
        return super().format(record)


_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename', 'module',
    'exc_info', 'exc_text', 'stack_info', 'lineno', 'funcName', 'created', 'msecs',
    'relativeCreated', 'thread', 'threadName', 'processName', 'process', 'getMessage',
    'taskName', 'message', 'asctime',
}


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record):
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
        }

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        # Extra fields passed through `extra=`
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_entry[key] = value

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class LoggerConfig:
    """Centralized logger configuration."""

    def __init__(self, log_dir: str = "logs"):
        self.log_dir = Path(log_dir)
        self.config = {
            'level': logging.INFO,
            'console': True,
            'file': True,
            'json_format': False,
            'max_file_size': 10 * 1024 * 1024,  # 10MB
            'backup_count': 5,
            'log_file': 'app.log',
            'error_file': 'error.log'
        }

    def configure(self,
                  level: str = 'INFO',
                  console: bool = True,
                  file: bool = True,
                  json_format: bool = False,
                  log_file: Optional[str] = None,
                  error_file: Optional[str] = None,
                  max_file_size: int = 10 * 1024 * 1024,
                  backup_count: int = 5) -> None:
        """
        Configure the logging system.

        Args:
            level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            console: Enable console logging
            file: Enable file logging
            json_format: Use JSON format for structured logging
            log_file: Custom log file name
            error_file: Custom error log file name
            max_file_size: Maximum file size before rotation
            backup_count: Number of backup files to keep
        """
        self.config.update({
            'level': getattr(logging, level.upper()),
            'console': console,
            'file': file,
            'json_format': json_format,
            'log_file': log_file or self.config['log_file'],
            'error_file': error_file or self.config['error_file'],
            'max_file_size': max_file_size,
            'backup_count': backup_count
        })

        root_logger = logging.getLogger()
        for handler in list(root_logger.handlers):
            if getattr(handler, "_kb_managed", False):
                root_logger.removeHandler(handler)
                handler.close()

        root_logger.setLevel(self.config['level'])
        plain_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

        if self.config['console']:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setLevel(self.config['level'])
            if self.config['json_format']:
                console_handler.setFormatter(JSONFormatter())
            else:
                console_handler.setFormatter(ColoredFormatter(plain_format, datefmt='%Y-%m-%d %H:%M:%S'))
            self._add(root_logger, console_handler)

        if self.config['file']:
            self.log_dir.mkdir(parents=True, exist_ok=True)

            file_handler = logging.handlers.RotatingFileHandler(
                self.log_dir / self.config['log_file'],
                maxBytes=self.config['max_file_size'],
                backupCount=self.config['backup_count']
            )
            file_handler.setLevel(self.config['level'])
            if self.config['json_format']:
                file_handler.setFormatter(JSONFormatter())
            else:
                file_handler.setFormatter(logging.Formatter(plain_format, datefmt='%Y-%m-%d %H:%M:%S'))
            self._add(root_logger, file_handler)

            # ERROR and CRITICAL only
            error_handler = logging.handlers.RotatingFileHandler(
                self.log_dir / self.config['error_file'],
                maxBytes=self.config['max_file_size'],
                backupCount=self.config['backup_count']
            )
            error_handler.setLevel(logging.ERROR)
            if self.config['json_format']:
                error_handler.setFormatter(JSONFormatter())
            else:
                error_handler.setFormatter(logging.Formatter(
                    '%(asctime)s - %(name)s - %(levelname)s - %(message)s\n%(pathname)s:%(lineno)d',
                    datefmt='%Y-%m-%d %H:%M:%S'
                ))
            self._add(root_logger, error_handler)

    @staticmethod
    def _add(root_logger: logging.Logger, handler: logging.Handler) -> None:
        handler._kb_managed = True
        root_logger.addHandler(handler)

    def get_logger(self, name: str) -> logging.Logger:
        return logging.getLogger(name)

    def set_level(self, level: str) -> None:
        level_value = getattr(logging, level.upper())
        logging.getLogger().setLevel(level_value)
        for handler in logging.getLogger().handlers:
            handler.setLevel(level_value)


logger_config = LoggerConfig(log_dir=settings.LOG_DIR)


def setup_logging(level: str = 'INFO',
                  console: bool = True,
                  file: bool = True,
                  json_format: bool = False,
                  **kwargs) -> None:
    """
    Setup logging configuration.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        console: Enable console logging
        file: Enable file logging
        json_format: Use JSON format for structured logging
        **kwargs: Additional configuration options
    """
    logger_config.configure(
        level=level,
        console=console,
        file=file,
        json_format=json_format,
        **kwargs
    )


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance.

    Args:
        name: Logger name (usually the component name, e.g. "services.chunk_store")

    Returns:
        Logger instance
    """
    return logger_config.get_logger(name)


def log_database_operation(logger: logging.Logger, operation: str, table: str,
                           record_id: str = None, **extra):
    """Log database operations."""
    message = f"DB {operation} on {table}"
    if record_id:
        message += f" (ID: {record_id})"
    logger.debug(message, extra=extra)


def log_kafka_message(logger: logging.Logger, action: str, topic: str,
                      message_id: str = None, **extra):
    """Log Kafka message operations."""
    message = f"Kafka {action} on topic {topic}"
    if message_id:
        message += f" (ID: {message_id})"
    logger.info(message, extra=extra)


def log_embedding_operation(logger: logging.Logger, operation: str,
                            subject_id: str, tenant_id: str, **extra):
    """Log embedding operations."""
    logger.info(f"Embedding {operation} for {subject_id} (tenant: {tenant_id})", extra=extra)


def log_indexing_transition(logger: logging.Logger, document_id: str,
                            from_status: str, to_status: str, **extra):
    """Log a document lifecycle transition."""
    logger.info(f"Document {document_id}: {from_status} -> {to_status}", extra=extra)
