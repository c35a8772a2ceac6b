#!/usr/bin/env python3
"""
Unit tests for email notifications.
"""

import os
import sys
import smtplib
import unittest
from unittest.mock import patch

# Add the project directory to the path so we can import our modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from directory_sync.notifications import (
    send_email, send_failure_notification, send_action_errors_report, send_success_summary,
    send_connection_failure, format_runtime, test_notification_config, MAX_LISTED_ERRORS
)


class TestSendEmail(unittest.TestCase):
    """Test cases for send_email."""

    def setUp(self):
        self.config = {
            'enable_email': True,
            'smtp_server': 'smtp.example.org',
            'smtp_port': 587,
            'smtp_username': 'sync@example.org',
            'smtp_password': 'secret',
            'smtp_tls': True,
            'email_from': 'sync@example.org',
            'email_to': ['admin@example.org', 'ops@example.org'],
        }

    def test_disabled(self):
        self.config['enable_email'] = False
        with patch('smtplib.SMTP') as mock_smtp:
            self.assertFalse(send_email('subject', 'body', self.config))
        mock_smtp.assert_not_called()

    def test_missing_server_or_recipients(self):
        self.assertFalse(send_email('subject', 'body', dict(self.config, smtp_server=None)))
        self.assertFalse(send_email('subject', 'body', dict(self.config, email_to=[])))

    @patch('smtplib.SMTP')
    def test_send_with_starttls_and_login(self, mock_smtp):
        server = mock_smtp.return_value

        self.assertTrue(send_email('subject', 'body', self.config))

        mock_smtp.assert_called_once_with('smtp.example.org', 587)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with('sync@example.org', 'secret')
        from_address, recipients, message = server.sendmail.call_args[0]
        self.assertEqual(from_address, 'sync@example.org')
        self.assertEqual(recipients, ['admin@example.org', 'ops@example.org'])
        self.assertIn('Subject: subject', message)
        server.quit.assert_called_once()

    @patch('smtplib.SMTP_SSL')
    def test_implicit_tls_port(self, mock_smtp_ssl):
        self.config['smtp_port'] = 465
        self.assertTrue(send_email('subject', 'body', self.config))
        mock_smtp_ssl.assert_called_once_with('smtp.example.org', 465)

    @patch('smtplib.SMTP')
    def test_single_recipient_string(self, mock_smtp):
        self.config['email_to'] = 'admin@example.org'
        self.assertTrue(send_email('subject', 'body', self.config))
        self.assertEqual(mock_smtp.return_value.sendmail.call_args[0][1], ['admin@example.org'])

    @patch('smtplib.SMTP')
    def test_smtp_failure_returns_false(self, mock_smtp):
        mock_smtp.return_value.sendmail.side_effect = smtplib.SMTPException('rejected')
        self.assertFalse(send_email('subject', 'body', self.config))

    @patch('smtplib.SMTP')
    def test_connection_refused_returns_false(self, mock_smtp):
        mock_smtp.side_effect = ConnectionRefusedError('refused')
        self.assertFalse(send_email('subject', 'body', self.config))


class TestReports(unittest.TestCase):
    """Test cases for the report builders."""

    def setUp(self):
        self.config = {'enable_email': True, 'email_on_failure': True, 'email_on_success': True}

    @patch('directory_sync.notifications.send_email', return_value=True)
    def test_action_errors_report(self, mock_send):
        lines = [f'Addition of group "g{i}@x" failed with error refused' for i in range(MAX_LISTED_ERRORS + 2)]

        self.assertTrue(send_action_errors_report('Groups', lines, 40, self.config))

        subject, body, _ = mock_send.call_args[0]
        self.assertEqual(subject, f'Directory Sync Alert: {len(lines)} Groups actions failed')
        self.assertIn(f'Failed actions: {len(lines)} of 40', body)
        self.assertIn('1. Addition of group "g0@x" failed with error refused', body)
        self.assertNotIn(f'"g{MAX_LISTED_ERRORS}@x"', body)
        self.assertIn('... and 2 more failures', body)

    @patch('directory_sync.notifications.send_email', return_value=True)
    def test_failure_emails_can_be_disabled(self, mock_send):
        self.config['email_on_failure'] = False
        self.assertFalse(send_action_errors_report('Users', ['x'], 1, self.config))
        self.assertFalse(send_failure_notification('Title', 'message', self.config))
        mock_send.assert_not_called()

    @patch('directory_sync.notifications.send_email', return_value=True)
    def test_connection_failure(self, mock_send):
        send_connection_failure('bind refused', self.config, retry_count=3)

        subject, body, _ = mock_send.call_args[0]
        self.assertEqual(subject, 'Directory Sync Alert: Directory Connection Failed')
        self.assertIn('Error Message: bind refused', body)
        self.assertIn('Connection Attempts: 3', body)

    @patch('directory_sync.notifications.send_email', return_value=True)
    def test_success_summary(self, mock_send):
        stats = {
            'runtime_seconds': 75.5,
            'dry_run': False,
            'kinds': {'Users': {'additions': 2, 'updates': 1, 'deletions': 0, 'failed': 0}},
        }

        self.assertTrue(send_success_summary(stats, self.config))

        body = mock_send.call_args[0][1]
        self.assertIn('Total runtime: 1m 15.5s', body)
        self.assertIn('Users:', body)
        self.assertIn('  Additions: 2', body)

    @patch('directory_sync.notifications.send_email', return_value=True)
    def test_success_summary_off_by_default(self, mock_send):
        self.assertFalse(send_success_summary({}, {'enable_email': True}))
        mock_send.assert_not_called()

    @patch('directory_sync.notifications.send_email', return_value=False)
    def test_notification_config_check(self, mock_send):
        self.assertFalse(test_notification_config({'smtp_server': 'smtp.example.org',
                                                   'email_to': 'admin@example.org'}))
        self.assertIn('SMTP Server: smtp.example.org', mock_send.call_args[0][1])


class TestFormatRuntime(unittest.TestCase):

    def test_format(self):
        self.assertEqual(format_runtime(2.5), '2.50 seconds')
        self.assertEqual(format_runtime(125), '2m 5.0s')


if __name__ == '__main__':
    unittest.main()
