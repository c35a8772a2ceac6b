"""
Logging setup for Directory Sync.

Configures a rotating log file with retention, an optional console handler,
a filter that masks secrets (bind passwords, SMTP passwords, password hashes)
and an audit logger recording every write made to the directory.
"""

import os
import re
import glob
import logging
import logging.handlers
from typing import Dict, Any, List
from datetime import datetime, timedelta

LOG_FILE_NAME = 'sync.log'


class SensitiveDataFilter(logging.Filter):
    """Filter to mask secrets in log messages."""

    SENSITIVE_KEYWORDS = [
        'password', 'bind_password', 'smtp_password', 'password_hash', 'userPassword',
        'token', 'secret', 'credential', 'pwd',
    ]

    _PATTERNS = []
    for _keyword in SENSITIVE_KEYWORDS:
        # key=value
        _PATTERNS.append((re.compile(rf'({_keyword}\s*=\s*)[^\s,}}\]]+(\s|,|$)', re.IGNORECASE),
                          r'\1****\2'))
        # "key": "value"
        _PATTERNS.append((re.compile(rf'("{_keyword}"\s*:\s*")[^"]*(")', re.IGNORECASE),
                          r'\1****\2'))
        # 'key': 'value' as printed by a dict repr
        _PATTERNS.append((re.compile(rf"('{_keyword}'\s*:\s*')[^']*(')", re.IGNORECASE),
                          r'\1****\2'))
    # LDAP password schemes such as {SSHA}base64
    _PATTERNS.append((re.compile(r'(\{(?:SSHA|SHA|SMD5|MD5|CRYPT|SSHA512|SHA512)\})\S+', re.IGNORECASE),
                      r'\1****'))
    del _keyword

    def filter(self, record):
        """Mask sensitive data in the record message. Never drops the record."""
        if hasattr(record, 'msg'):
            msg = str(record.msg)
            for pattern, replacement in self._PATTERNS:
                msg = pattern.sub(replacement, msg)
            record.msg = msg
        return True


class LoggingManager:
    """
    Manages logging configuration for Directory Sync.

    Provides file logging with rotation and retention and console output for
    interactive and container runs.
    """

    def __init__(self):
        self.configured = False
        self.log_dir = None
        self.retention_days = 7

    def setup_logging(self, config: Dict[str, Any]) -> None:
        """
        Set up logging based on configuration.

        Args:
            config: The ``logging`` section of the configuration
        """
        if self.configured:
            return

        logging_config = config if config else {}

        log_level = logging_config.get('level', 'INFO').upper()
        self.log_dir = logging_config.get('log_dir', 'logs')
        rotation = logging_config.get('rotation', 'daily')
        self.retention_days = logging_config.get('retention_days', 7)
        console_enabled = logging_config.get('console_output', True)
        console_level = logging_config.get('console_level', 'WARNING').upper()

        self._ensure_log_directory()

        root_logger = logging.getLogger()
        root_logger.setLevel(getattr(logging, log_level, logging.INFO))
        root_logger.handlers.clear()

        detailed_formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        console_formatter = logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%H:%M:%S'
        )

        sensitive_filter = SensitiveDataFilter()

        file_handler = self._create_file_handler(rotation)
        file_handler.setLevel(getattr(logging, log_level, logging.INFO))
        file_handler.setFormatter(detailed_formatter)
        file_handler.addFilter(sensitive_filter)
        root_logger.addHandler(file_handler)

        if console_enabled:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(getattr(logging, console_level, logging.WARNING))
            console_handler.setFormatter(console_formatter)
            console_handler.addFilter(sensitive_filter)
            root_logger.addHandler(console_handler)

        self._cleanup_old_logs()

        self.configured = True

        logger = logging.getLogger(__name__)
        logger.info(f"Logging configured: level={log_level}, dir={self.log_dir}, "
                    f"retention={self.retention_days} days, console={console_enabled}")

    def reset(self) -> None:
        """Remove installed handlers so logging can be configured again."""
        root_logger = logging.getLogger()
        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)
            handler.close()
        self.configured = False

    def _ensure_log_directory(self) -> None:
        """Ensure the log directory exists, falling back to the working directory."""
        if self.log_dir and not os.path.exists(self.log_dir):
            try:
                os.makedirs(self.log_dir, exist_ok=True)
            except OSError as e:
                print(f"Warning: Could not create log directory {self.log_dir}: {e}")
                print("Falling back to current directory for logs")
                self.log_dir = '.'

    def _create_file_handler(self, rotation: str) -> logging.Handler:
        """
        Create the file handler for the rotation setting.

        Args:
            rotation: ``daily``/``midnight`` for timed rotation, anything else for none

        Returns:
            Configured logging handler
        """
        log_file = os.path.join(self.log_dir, LOG_FILE_NAME)

        if rotation.lower() in ['daily', 'midnight']:
            handler = logging.handlers.TimedRotatingFileHandler(
                filename=log_file,
                when='midnight',
                interval=1,
                backupCount=self.retention_days,
                encoding='utf-8'
            )
            handler.suffix = '%Y-%m-%d'
        else:
            handler = logging.FileHandler(log_file, encoding='utf-8')

        return handler

    def _cleanup_old_logs(self) -> None:
        """Remove rotated log files older than the retention period."""
        if not self.log_dir or self.retention_days <= 0:
            return

        cutoff_date = datetime.now() - timedelta(days=self.retention_days)

        for log_file in glob.glob(os.path.join(self.log_dir, LOG_FILE_NAME + '*')):
            if log_file.endswith(LOG_FILE_NAME):
                continue
            try:
                file_time = datetime.fromtimestamp(os.path.getmtime(log_file))
                if file_time < cutoff_date:
                    os.remove(log_file)
                    print(f"Removed old log file: {log_file}")
            except (OSError, ValueError) as e:
                print(f"Warning: Could not remove old log file {log_file}: {e}")

    def get_log_files(self) -> List[str]:
        """Return the current log files, sorted."""
        if not self.log_dir:
            return []
        return sorted(glob.glob(os.path.join(self.log_dir, LOG_FILE_NAME + '*')))


# Global logging manager instance
_logging_manager = LoggingManager()


def setup_logging(config: Dict[str, Any]) -> None:
    """
    Convenience function to set up logging.

    Args:
        config: Logging configuration dictionary
    """
    _logging_manager.setup_logging(config)


def reset_logging() -> None:
    """Undo ``setup_logging``; used between runs in one process."""
    _logging_manager.reset()


class AuditLogger:
    """Records every write made to the directory on the ``audit`` logger."""

    def __init__(self):
        self.logger = logging.getLogger('audit')

    def log_directory_write(self, operation: str, kind: str, key: str, directory: str,
                            success: bool, details: str = ''):
        """
        Record one directory write.

        Args:
            operation: ``add``, ``update`` or ``delete``
            kind: Entity noun, ``group`` or ``user``
            key: Identity key of the entity
            directory: Name of the directory written to
            success: Whether the write succeeded
            details: Optional extra text (changed attributes, error)
        """
        status = "SUCCESS" if success else "FAILURE"
        message = f"Directory write {status}: {operation} {kind}={key} directory={directory}"
        if details:
            message += f" - {details}"
        if success:
            self.logger.info(message)
        else:
            self.logger.warning(message)


# Global audit logger instance
audit_logger = AuditLogger()
