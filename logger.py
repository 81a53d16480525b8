"""Logging setup with verbosity levels, colored console output and progress tracking."""

import copy
import logging
import logging.handlers
import time
from typing import Any, Dict, Optional

import colorlog

ROOT_LOGGER_NAME = 'onenote_markdown_migrator'

SENSITIVE_FIELDS = {
    'secret', 'password', 'refresh_token', 'access_token', 'auth_code', 'code_verifier'
}


def setup_logging(
    verbosity: int = 0,
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
    date_format: Optional[str] = None,
    level: Optional[str] = None
) -> logging.Logger:
    """
    Set up logging for the migrator.

    Args:
        verbosity: Verbosity level (0=WARNING, 1=INFO, 2+=DEBUG)
        log_file: Optional path to a rotating log file
        log_format: Optional custom log format string
        date_format: Optional custom date format string
        level: Optional explicit log level, overrides verbosity

    Returns:
        The package root logger

    Raises:
        ValueError: If level is not a known log level name
    """
    if level:
        allowed_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        level_upper = level.upper()
        if level_upper not in allowed_levels:
            raise ValueError(
                f"Invalid log level '{level}'. Must be one of: {sorted(allowed_levels)}"
            )
        log_level = getattr(logging, level_upper)
    elif verbosity >= 2:
        log_level = logging.DEBUG
    elif verbosity >= 1:
        log_level = logging.INFO
    else:
        log_level = logging.WARNING

    if log_format is None:
        log_format = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    if date_format is None:
        date_format = '%Y-%m-%d %H:%M:%S'

    # Dependencies (urllib3, requests) stay at WARNING
    logging.basicConfig(level=logging.WARNING, format=log_format, datefmt=date_format)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(log_level)
    logger.handlers.clear()
    logger.propagate = False

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(colorlog.ColoredFormatter(
        fmt='%(log_color)s' + log_format,
        datefmt=date_format,
        log_colors={
            'DEBUG': 'cyan',
            'INFO': 'green',
            'WARNING': 'yellow',
            'ERROR': 'red',
            'CRITICAL': 'red,bg_white',
        }
    ))
    logger.addHandler(console_handler)

    if log_file:
        try:
            file_handler = logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
                encoding='utf-8'
            )
            file_handler.setLevel(log_level)
            file_handler.setFormatter(logging.Formatter(fmt=log_format, datefmt=date_format))
            logger.addHandler(file_handler)
            logger.info(f"Logging to file: {log_file}")
        except OSError as e:
            logger.warning(f"Failed to set up file logging: {e}")

    logger.debug(f"Log level: {logging.getLevelName(log_level)}")
    return logger


class ProgressTracker:
    """Context manager counting processed items and logging a summary on exit."""

    def __init__(self, total_items: int, item_type: str = "items", log_every: int = 10):
        self.total_items = total_items
        self.item_type = item_type
        self.log_every = log_every
        self.processed_items = 0
        self.successful_items = 0
        self.failed_items = 0
        self.start_time: Optional[float] = None
        self.logger = logging.getLogger(ROOT_LOGGER_NAME)

    def __enter__(self) -> 'ProgressTracker':
        self.start_time = time.time()
        self.logger.info(f"Starting processing of {self.total_items} {self.item_type}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is None:
            return

        elapsed = time.time() - self.start_time
        if exc_type is not None or (self.failed_items and self.failed_items == self.processed_items):
            log_method = self.logger.error
        elif self.failed_items:
            log_method = self.logger.warning
        else:
            log_method = self.logger.info

        log_method(
            f"{self.item_type.capitalize()}: {self.successful_items} succeeded, "
            f"{self.failed_items} failed, {self.total_items - self.processed_items} not processed "
            f"in {self._format_elapsed(elapsed)}"
        )

    def increment(self, success: bool = True) -> None:
        """
        Count one processed item.

        Args:
            success: Whether the item was processed successfully
        """
        self.processed_items += 1
        if success:
            self.successful_items += 1
        else:
            self.failed_items += 1

        if self.processed_items % self.log_every == 0 or not success:
            remaining = self.total_items - self.processed_items
            status = "Success" if success else "Failed"
            self.logger.info(
                f"Processed {self.processed_items}/{self.total_items} {self.item_type} "
                f"({remaining} remaining) - Last: {status}"
            )

    def get_stats(self) -> Dict[str, Any]:
        elapsed = 0.0 if self.start_time is None else time.time() - self.start_time
        return {
            'total': self.total_items,
            'processed': self.processed_items,
            'successful': self.successful_items,
            'failed': self.failed_items,
            'elapsed_time': elapsed,
            'elapsed_time_formatted': self._format_elapsed(elapsed)
        }

    @staticmethod
    def _format_elapsed(seconds: float) -> str:
        if seconds < 60:
            return f"{seconds:.1f}s"

        minutes = int(seconds // 60)
        seconds = int(seconds % 60)
        if minutes < 60:
            return f"{minutes}m {seconds}s"

        hours = minutes // 60
        minutes = minutes % 60
        return f"{hours}h {minutes}m {seconds}s"


def log_section(title: str) -> None:
    """Log a section header."""
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    separator = "=" * 60
    logger.info(separator)
    logger.info(f"  {title.upper()}")
    logger.info(separator)


def log_config(config: Dict[str, Any]) -> None:
    """
    Log the effective configuration with credentials masked.

    Args:
        config: Configuration dictionary to log
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    sanitized = sanitize_config(config)

    log_section("Configuration")

    graph = sanitized.get('graph', {})
    logger.info(f"Client ID: {graph.get('client_id', 'Not Set')}")
    logger.info(f"Tenant: {graph.get('tenant', 'common')}")
    logger.info(f"Scopes: {', '.join(graph.get('scopes', []))}")
    logger.info(f"Remember sign-in: {graph.get('remember_sign_in', True)}")

    import_settings = sanitized.get('import', {})
    logger.info(f"Vault: {import_settings.get('vault_path', 'Not Set')}")
    logger.info(f"Output folder: {import_settings.get('output_folder', 'OneNote')}")
    logger.info(f"Attachment folder: {import_settings.get('attachment_folder') or 'next to pages'}")
    logger.info(f"Sections: {import_settings.get('sections') or 'Not Set'}")
    logger.info(f"Skip previously imported: {import_settings.get('skip_previously_imported', True)}")
    logger.info(f"Incompatible attachments: {import_settings.get('import_incompatible_attachments', False)}")
    logger.info(f"Frontmatter: {import_settings.get('frontmatter', False)}")

    advanced = sanitized.get('advanced', {})
    logger.info(f"Stall timeout: {advanced.get('stall_timeout', 600)}s")
    logger.info(f"Failure threshold: {advanced.get('failure_threshold', 5)}")
    logger.info(f"Page batch: {advanced.get('page_batch_size', 50)} pages / {advanced.get('page_batch_pause', 5.0)}s")
    logger.info(
        f"Attachment batch: {advanced.get('attachment_batch_size', 7)} files / "
        f"{advanced.get('attachment_batch_pause', 7.5)}s"
    )


def sanitize_config(config: Dict[str, Any]) -> Dict[str, Any]:
    """Deep copy of config with every credential-like string value masked."""

    def mask_sensitive(data: Any) -> Any:
        if isinstance(data, dict):
            masked = {}
            for key, value in data.items():
                is_sensitive = any(field in str(key).lower() for field in SENSITIVE_FIELDS)
                if is_sensitive and isinstance(value, str) and value:
                    masked[key] = "***REDACTED***"
                else:
                    masked[key] = mask_sensitive(value)
            return masked
        if isinstance(data, list):
            return [mask_sensitive(item) for item in data]
        return data

    return mask_sensitive(copy.deepcopy(config))


__all__ = [
    'setup_logging',
    'ProgressTracker',
    'log_section',
    'log_config',
    'sanitize_config'
]
