#!/usr/bin/env python3
"""
Unit tests for progress reporters.
"""

import io
import os
import sys
import unittest

# Add the project directory to the path so we can import our modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from directory_sync.progress import (
    ProgressReporter, LoggingProgressReporter, ConsoleProgressReporter, create_progress_reporter
)


class TestConsoleProgressReporter(unittest.TestCase):
    """Test cases for the console progress line."""

    def test_renders_progress_line(self):
        stream = io.StringIO()
        reporter = ConsoleProgressReporter(stream=stream, width=10)

        reporter.phase_started('Groups', 'deletions', 2)
        reporter.action_completed('Groups', 'deletions', 1, 2, 0)
        reporter.action_completed('Groups', 'deletions', 2, 2, 1)

        output = stream.getvalue()
        self.assertIn('(Groups) Performing deletions\n', output)
        self.assertIn('\r[          ] 0/2', output)
        self.assertIn('\r[#####     ] 1/2', output)
        self.assertIn('\r[##########] 2/2 (1 failed)', output)
        self.assertTrue(output.endswith('\n'))


class TestLoggingProgressReporter(unittest.TestCase):
    """Test cases for logging progress."""

    def test_logs_phase_and_completion(self):
        reporter = LoggingProgressReporter()

        with self.assertLogs('directory_sync.progress', level='INFO') as captured:
            reporter.phase_started('Users', 'additions', 3)
            reporter.action_completed('Users', 'additions', 1, 3, 0)
            reporter.action_completed('Users', 'additions', 3, 3, 1)

        self.assertEqual(len(captured.records), 2)
        self.assertIn('(Users) Performing additions: 3 to do', captured.output[0])
        self.assertIn('2 succeeded, 1 failed', captured.output[1])


class TestCreateProgressReporter(unittest.TestCase):

    def test_styles(self):
        self.assertIsInstance(create_progress_reporter('console'), ConsoleProgressReporter)
        self.assertIsInstance(create_progress_reporter('log'), LoggingProgressReporter)
        self.assertIsInstance(create_progress_reporter(None), LoggingProgressReporter)

        silent = create_progress_reporter('none')
        self.assertIs(type(silent), ProgressReporter)
        silent.phase_started('Groups', 'updates', 1)
        silent.action_completed('Groups', 'updates', 1, 1, 0)


if __name__ == '__main__':
    unittest.main()
