#!/usr/bin/env python3
"""
Tests for logging setup: secret masking, log files and retention, and the
audit logger.
"""

import os
import sys
import time
import shutil
import logging
import logging.handlers
import tempfile
import unittest

# Add the project directory to the path so we can import our modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from directory_sync.logging_setup import (
    SensitiveDataFilter, LoggingManager, AuditLogger, LOG_FILE_NAME
)


def _filtered(message):
    record = logging.LogRecord('test', logging.INFO, __file__, 1, message, None, None)
    SensitiveDataFilter().filter(record)
    return record.msg


class TestSensitiveDataFilter(unittest.TestCase):
    """Test cases for masking secrets."""

    def test_key_value(self):
        masked = _filtered('bind with bind_password=hunter2 now')
        self.assertNotIn('hunter2', masked)
        self.assertIn('bind_password=****', masked)

    def test_json_style(self):
        masked = _filtered('{"smtp_password": "hunter2"}')
        self.assertEqual(masked, '{"smtp_password": "****"}')

    def test_dict_repr(self):
        masked = _filtered(str({'cid': 'alice', 'password_hash': 'abc123'}))
        self.assertNotIn('abc123', masked)
        self.assertIn("'cid': 'alice'", masked)

    def test_password_scheme(self):
        masked = _filtered('userPassword {SSHA}c2VjcmV0c2FsdA== written')
        self.assertNotIn('c2VjcmV0c2FsdA', masked)
        self.assertIn('{SSHA}****', masked)

    def test_ordinary_messages_untouched(self):
        message = '(Groups) Performing additions: 3 to do'
        self.assertEqual(_filtered(message), message)

    def test_never_drops_records(self):
        record = logging.LogRecord('test', logging.INFO, __file__, 1, 'password=x', None, None)
        self.assertTrue(SensitiveDataFilter().filter(record))


class TestLoggingManager(unittest.TestCase):
    """Test cases for LoggingManager."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.log_dir = os.path.join(self.temp_dir, 'logs')
        self.manager = LoggingManager()
        self.saved_handlers = logging.getLogger().handlers[:]
        self.saved_level = logging.getLogger().level

    def tearDown(self):
        self.manager.reset()
        root_logger = logging.getLogger()
        for handler in self.saved_handlers:
            root_logger.addHandler(handler)
        root_logger.setLevel(self.saved_level)
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _setup(self, **overrides):
        config = {'level': 'DEBUG', 'log_dir': self.log_dir, 'rotation': 'daily',
                  'retention_days': 7, 'console_output': False}
        config.update(overrides)
        self.manager.setup_logging(config)

    def test_creates_directory_and_writes_log(self):
        self._setup()

        logging.getLogger('directory_sync.test').info('connecting with password=hunter2')
        for handler in logging.getLogger().handlers:
            handler.flush()

        log_file = os.path.join(self.log_dir, LOG_FILE_NAME)
        self.assertTrue(os.path.exists(log_file))
        with open(log_file, encoding='utf-8') as f:
            content = f.read()
        self.assertIn('password=****', content)
        self.assertNotIn('hunter2', content)

    def test_daily_rotation_uses_timed_handler(self):
        self._setup()
        handlers = logging.getLogger().handlers
        self.assertEqual(len(handlers), 1)
        self.assertIsInstance(handlers[0], logging.handlers.TimedRotatingFileHandler)
        self.assertEqual(handlers[0].backupCount, 7)

    def test_plain_file_without_rotation(self):
        self._setup(rotation='none')
        handler = logging.getLogger().handlers[0]
        self.assertNotIsInstance(handler, logging.handlers.TimedRotatingFileHandler)
        self.assertIsInstance(handler, logging.FileHandler)

    def test_console_handler(self):
        self._setup(console_output=True)
        self.assertEqual(len(logging.getLogger().handlers), 2)

    def test_configured_only_once(self):
        self._setup()
        self._setup(rotation='none')
        self.assertIsInstance(logging.getLogger().handlers[0], logging.handlers.TimedRotatingFileHandler)

    def test_old_rotated_logs_removed(self):
        os.makedirs(self.log_dir)
        old_file = os.path.join(self.log_dir, LOG_FILE_NAME + '.2020-01-01')
        recent_file = os.path.join(self.log_dir, LOG_FILE_NAME + '.recent')
        for path in (old_file, recent_file):
            with open(path, 'w') as f:
                f.write('old entries\n')
        ten_days_ago = time.time() - 10 * 24 * 3600
        os.utime(old_file, (ten_days_ago, ten_days_ago))

        self._setup()

        self.assertFalse(os.path.exists(old_file))
        self.assertTrue(os.path.exists(recent_file))
        self.assertIn(recent_file, self.manager.get_log_files())


class TestAuditLogger(unittest.TestCase):

    def test_success_and_failure(self):
        audit = AuditLogger()
        with self.assertLogs('audit', level='INFO') as captured:
            audit.log_directory_write('update', 'group', 'board@example.org', 'ldap', True, 'type, members')
            audit.log_directory_write('delete', 'user', 'alice', 'ldap', False, 'no such object')

        self.assertEqual(captured.records[0].levelno, logging.INFO)
        self.assertEqual(captured.records[0].getMessage(),
                         'Directory write SUCCESS: update group=board@example.org directory=ldap - type, members')
        self.assertEqual(captured.records[1].levelno, logging.WARNING)
        self.assertIn('FAILURE: delete user=alice', captured.records[1].getMessage())


if __name__ == '__main__':
    unittest.main()
