"""
Logging and Error Handling System

This module provides centralized logging configuration and the per-run
error/warning ledger used by the archival pipeline.
"""

import logging
import logging.handlers
import os
import sys
from datetime import datetime
from typing import Optional, Dict, Any, List
import traceback
from pathlib import Path


APP_LOGGER_NAME = "stackarchive"


class ArchiveLogger:
    """
    Centralized logging setup for the application.

    Attaches rotating file handlers and a console handler to the package
    logger so every ``logging.getLogger(__name__)`` inside the package
    inherits them.
    """

    def __init__(self, log_dir: str = "logs", app_name: str = APP_LOGGER_NAME):
        """
        Args:
            log_dir: Directory to store log files
            app_name: Name of the root logger for the application
        """
        self.log_dir = Path(log_dir)
        self.app_name = app_name

    def setup_logger(self, level: int = logging.INFO) -> logging.Logger:
        """
        Set up the application logger with file and console handlers.

        Args:
            level: Console logging level (default: INFO)

        Returns:
            Configured logger instance
        """
        logger = logging.getLogger(self.app_name)
        logger.setLevel(logging.DEBUG)

        # Prevent duplicate handlers
        if logger.handlers:
            return logger

        self.log_dir.mkdir(parents=True, exist_ok=True)

        detailed_formatter = logging.Formatter(
            '%(asctime)s | %(name)s | %(levelname)s | %(funcName)s:%(lineno)d | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        console_formatter = logging.Formatter(
            '%(asctime)s | %(levelname)s | %(message)s',
            datefmt='%H:%M:%S'
        )

        file_handler = logging.handlers.RotatingFileHandler(
            self.log_dir / f"{self.app_name}.log",
            maxBytes=10*1024*1024,  # 10MB
            backupCount=5,
            encoding='utf-8'
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(detailed_formatter)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(console_formatter)

        error_handler = logging.handlers.RotatingFileHandler(
            self.log_dir / f"{self.app_name}_errors.log",
            maxBytes=5*1024*1024,  # 5MB
            backupCount=3,
            encoding='utf-8'
        )
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(detailed_formatter)

        logger.addHandler(file_handler)
        logger.addHandler(console_handler)
        logger.addHandler(error_handler)
        return logger

    def log_system_info(self):
        """Log environment details for debugging."""
        logger = get_logger('system')
        logger.info("=== StackArchive started ===")
        logger.info(f"Python version: {sys.version.split()[0]}")
        logger.info(f"Platform: {sys.platform}")
        logger.info(f"Working directory: {os.getcwd()}")
        logger.info(f"Log directory: {self.log_dir.absolute()}")


class ErrorTracker:
    """
    Tracks errors and warnings raised during one run.

    Item-level failures land here instead of aborting the run, so the caller
    can report them once the archive is built.
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self.errors: List[Dict[str, Any]] = []
        self.warnings: List[Dict[str, Any]] = []

    def log_error(self,
                  error: Exception,
                  context: str = None,
                  url: str = None) -> str:
        """
        Record an error with context information.

        Args:
            error: The exception that occurred
            context: Where the error occurred (e.g. "fetch", "image")
            url: URL being processed when the error occurred

        Returns:
            Error ID for tracking
        """
        error_id = f"ERR_{datetime.now().strftime('%Y%m%d_%H%M%S')}_{len(self.errors):03d}"

        self.errors.append({
            'id': error_id,
            'timestamp': datetime.now(),
            'type': type(error).__name__,
            'message': str(error),
            'context': context,
            'url': url,
            'traceback': ''.join(traceback.format_exception(type(error), error, error.__traceback__)),
        })

        log_message = f"[{error_id}] {type(error).__name__}: {error}"
        if context:
            log_message += f" (Context: {context})"
        if url:
            log_message += f" (URL: {url})"
        self.logger.error(log_message)
        return error_id

    def log_warning(self,
                    message: str,
                    context: str = None,
                    url: str = None) -> str:
        """
        Record a warning with context information.

        Returns:
            Warning ID for tracking
        """
        warning_id = f"WARN_{datetime.now().strftime('%Y%m%d_%H%M%S')}_{len(self.warnings):03d}"

        self.warnings.append({
            'id': warning_id,
            'timestamp': datetime.now(),
            'message': message,
            'context': context,
            'url': url,
        })

        log_message = f"[{warning_id}] {message}"
        if context:
            log_message += f" (Context: {context})"
        if url:
            log_message += f" (URL: {url})"
        self.logger.warning(log_message)
        return warning_id

    def get_error_summary(self) -> Dict[str, Any]:
        """Summary of all errors and warnings recorded so far."""
        type_counts: Dict[str, int] = {}
        for error in self.errors:
            type_counts[error['type']] = type_counts.get(error['type'], 0) + 1
        return {
            'total_errors': len(self.errors),
            'total_warnings': len(self.warnings),
            'error_types': type_counts,
            'recent_errors': self.errors[-5:],
            'recent_warnings': self.warnings[-5:],
        }

    def save_error_report(self, output_path: str):
        """
        Write a plain-text report of errors and warnings.

        Args:
            output_path: Path where the report should be saved
        """
        with open(output_path, 'w', encoding='utf-8') as f:
            f.write("STACKARCHIVE ERROR REPORT\n")
            f.write("=" * 50 + "\n\n")
            f.write(f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}\n")
            f.write(f"Total Errors: {len(self.errors)}\n")
            f.write(f"Total Warnings: {len(self.warnings)}\n\n")

            if self.errors:
                f.write("ERRORS:\n")
                f.write("-" * 30 + "\n")
                for error in self.errors:
                    f.write(f"\n[{error['id']}] {error['timestamp']}\n")
                    f.write(f"Type: {error['type']}\n")
                    f.write(f"Message: {error['message']}\n")
                    if error['context']:
                        f.write(f"Context: {error['context']}\n")
                    if error['url']:
                        f.write(f"URL: {error['url']}\n")
                    f.write(f"Traceback:\n{error['traceback']}\n")
                    f.write("-" * 50 + "\n")

            if self.warnings:
                f.write("\nWARNINGS:\n")
                f.write("-" * 30 + "\n")
                for warning in self.warnings:
                    f.write(f"\n[{warning['id']}] {warning['timestamp']}\n")
                    f.write(f"Message: {warning['message']}\n")
                    if warning['context']:
                        f.write(f"Context: {warning['context']}\n")
                    if warning['url']:
                        f.write(f"URL: {warning['url']}\n")
                    f.write("-" * 30 + "\n")

        self.logger.info(f"Error report saved to: {output_path}")


# Global logger configuration
_logger_instance: Optional[ArchiveLogger] = None


def get_logger(name: str = None) -> logging.Logger:
    """
    Get a logger under the application namespace.

    Args:
        name: Component name (optional)
    """
    if name:
        return logging.getLogger(f"{APP_LOGGER_NAME}.{name}")
    return logging.getLogger(APP_LOGGER_NAME)


def initialize_logging(log_dir: str = "logs", level: int = logging.INFO):
    """
    Initialize the global logging system.

    Args:
        log_dir: Directory for log files
        level: Console logging level
    """
    global _logger_instance
    _logger_instance = ArchiveLogger(log_dir)
    _logger_instance.setup_logger(level)
    _logger_instance.log_system_info()


def create_error_tracker(logger_name: str = None) -> ErrorTracker:
    """
    Create an error tracker bound to a named logger.

    Args:
        logger_name: Name of the logger to use
    """
    return ErrorTracker(get_logger(logger_name))
