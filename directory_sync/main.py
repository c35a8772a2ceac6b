"""
Main orchestrator for Directory Sync.

Loads the desired state, reads the current state from the directory,
computes the required actions per entity kind and commits them, then reports
what failed.
"""

import sys
import json
import logging
import argparse
from datetime import datetime
from typing import Dict, Any, List, Optional, Tuple

from directory_sync.config import load_config, ConfigurationError, PROGRESS_STYLES
from directory_sync.logging_setup import setup_logging
from directory_sync.sources import load_desired_state, SourceError
from directory_sync.actions import Actions, ActionErrors, EntityKind, GROUPS, USERS, actions_required
from directory_sync.progress import ProgressReporter, create_progress_reporter
from directory_sync.services.base import UpdateService, UpdateServiceError
from directory_sync.services.ldap_service import LDAPDirectoryService
from directory_sync.services.file_service import FileDirectoryService
from directory_sync.notifications import (
    send_failure_notification,
    send_action_errors_report,
    send_connection_failure,
    send_success_summary,
    format_runtime
)

logger = logging.getLogger(__name__)

EXIT_SUCCESS = 0
EXIT_ACTIONS_FAILED = 1
EXIT_CONFIGURATION_ERROR = 2
EXIT_DIRECTORY_ERROR = 3
EXIT_UNEXPECTED_ERROR = 4


def create_service(config: Dict[str, Any]) -> UpdateService:
    """
    Create the update service described by the ``directory`` section.

    Raises:
        ConfigurationError: If the directory type is unknown
    """
    directory = config['directory']
    directory_type = directory.get('type', 'ldap')
    if directory_type == 'ldap':
        return LDAPDirectoryService(directory['ldap'], config.get('error_handling', {}))
    if directory_type == 'file':
        return FileDirectoryService(directory['path'])
    raise ConfigurationError(f"Unknown directory type: {directory_type}")


class SyncOrchestrator:
    """
    Runs one reconciliation pass.

    Users are reconciled before groups so that group members added in the
    same pass already exist in the directory when the groups are written.
    """

    def __init__(self, config_path: Optional[str] = None, dry_run: Optional[bool] = None,
                 progress: Optional[str] = None):
        """
        Args:
            config_path: Path to configuration file
            dry_run: Overrides ``sync.dry_run`` when not None
            progress: Overrides ``sync.progress`` when not None
        """
        self.config = None
        self.config_path = config_path
        self.dry_run_override = dry_run
        self.progress_override = progress
        self.service = None

        self.sync_stats = {
            'start_time': None,
            'end_time': None,
            'runtime_seconds': 0,
            'dry_run': False,
            'kinds': {}
        }
        self.action_errors: List[ActionErrors] = []

    def run(self) -> int:
        """
        Run the complete synchronization process.

        Returns:
            Exit code (0 for success, non-zero for failure)
        """
        self.sync_stats['start_time'] = datetime.now()
        try:
            self._load_configuration()
            setup_logging(self.config.get('logging', {}))

            logger.info("Starting Directory Sync")

            desired_groups, desired_users = load_desired_state(self.config['source']['path'])
            self._connect()

            sync_config = self.config['sync']
            self.sync_stats['dry_run'] = sync_config['dry_run']
            progress = create_progress_reporter(sync_config['progress'])

            if sync_config['users']:
                self._sync_kind(USERS, self.service.get_users, desired_users, progress)
            if sync_config['groups']:
                self._sync_kind(GROUPS, self.service.get_groups, desired_groups, progress)

            self.sync_stats['end_time'] = datetime.now()
            self.sync_stats['runtime_seconds'] = (
                self.sync_stats['end_time'] - self.sync_stats['start_time']
            ).total_seconds()

            self._log_sync_summary()

            failed = sum(errors.amount() for errors in self.action_errors)
            if failed:
                logger.warning(f"Sync completed with {failed} failed actions")
                return EXIT_ACTIONS_FAILED

            self._send_success_notification()
            logger.info("Sync completed successfully")
            return EXIT_SUCCESS

        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            return EXIT_CONFIGURATION_ERROR
        except UpdateServiceError as e:
            logger.error(f"Directory error: {e}")
            self._send_connection_failure(str(e))
            return EXIT_DIRECTORY_ERROR
        except SourceError as e:
            logger.error(f"Source error: {e}")
            self._send_failure_notification("Source Error", str(e))
            return EXIT_UNEXPECTED_ERROR
        except Exception as e:
            logger.error(f"Unexpected error: {e}", exc_info=True)
            self._send_failure_notification("Sync Failed", f"Unexpected error: {e}")
            return EXIT_UNEXPECTED_ERROR
        finally:
            self._cleanup()

    def _load_configuration(self):
        """Load and validate configuration, then apply command line overrides."""
        try:
            self.config = load_config(self.config_path)
        except ConfigurationError:
            raise
        except Exception as e:
            raise ConfigurationError(f"Failed to load configuration: {e}")

        if self.dry_run_override is not None:
            self.config['sync']['dry_run'] = self.dry_run_override
        if self.progress_override is not None:
            self.config['sync']['progress'] = self.progress_override
        logger.debug("Configuration loaded successfully")

    def _connect(self):
        """Create the update service and connect it when it needs a connection."""
        self.service = create_service(self.config)
        if isinstance(self.service, LDAPDirectoryService):
            error_config = self.config.get('error_handling', {})
            self.service.connect(
                max_retries=error_config.get('max_retries', 3),
                retry_wait=error_config.get('retry_wait_seconds', 5)
            )

    def _sync_kind(self, kind: EntityKind, read_current, desired: List,
                   progress: ProgressReporter) -> Tuple[Actions, Optional[ActionErrors]]:
        """Reconcile one entity kind."""
        current = read_current()
        actions = actions_required(current, desired, kind)
        logger.info(f"({kind.label}) {len(current)} current, {len(desired)} desired: {actions.summary()}")

        stats = {
            'additions': len(actions.additions),
            'updates': len(actions.updates),
            'deletions': len(actions.deletions),
            'failed': 0
        }
        self.sync_stats['kinds'][kind.label] = stats

        if self.config['sync']['dry_run']:
            for line in actions.lines():
                logger.info(f"({kind.label}) Planned: {line}")
            return actions, None

        if not actions.amount():
            logger.info(f"({kind.label}) Already in sync, nothing to do")
            return actions, None

        errors = actions.commit(self.service, progress)
        stats['failed'] = errors.amount()
        self.action_errors.append(errors)

        if errors.amount():
            logger.error(f"({kind.label}) {errors.amount()} actions failed:\n{errors}")
            self._send_action_errors_report(kind, errors, actions.amount())

        return actions, errors

    def _send_action_errors_report(self, kind: EntityKind, errors: ActionErrors, attempted: int):
        notifications_config = self.config.get('notifications', {})
        send_action_errors_report(kind.label, errors.lines(), attempted, notifications_config)

    def _send_failure_notification(self, title: str, error_message: str):
        """Send email notification for failures."""
        if not self.config:
            return
        send_failure_notification(title, error_message, self.config.get('notifications', {}))

    def _send_connection_failure(self, error_message: str):
        """Send email notification for a directory connection failure."""
        if not self.config:
            return
        retry_count = self.config.get('error_handling', {}).get('max_retries', 3)
        send_connection_failure(error_message, self.config.get('notifications', {}), retry_count)

    def _send_success_notification(self):
        """Send email notification for a successful sync."""
        send_success_summary(self.sync_stats, self.config.get('notifications', {}))

    def _log_sync_summary(self):
        """Log final synchronization statistics."""
        stats = self.sync_stats

        logger.info("=== Sync Summary ===")
        logger.info(f"Total runtime: {format_runtime(stats['runtime_seconds'])}")
        if stats['dry_run']:
            logger.info("Dry run: no changes were made")
        for label, kind_stats in stats['kinds'].items():
            logger.info(f"--- {label} ---")
            logger.info(f"  Additions: {kind_stats['additions']}")
            logger.info(f"  Updates: {kind_stats['updates']}")
            logger.info(f"  Deletions: {kind_stats['deletions']}")
            logger.info(f"  Failed: {kind_stats['failed']}")

    def health_check(self) -> Dict[str, Any]:
        """
        Perform a health check of the sync system.

        Returns:
            Dictionary containing health status and details
        """
        health_status = {
            'status': 'healthy',
            'timestamp': datetime.now().isoformat(),
            'checks': {}
        }

        try:
            self._load_configuration()
            health_status['checks']['configuration'] = {
                'status': 'pass',
                'message': 'Configuration loaded successfully'
            }
        except ConfigurationError as e:
            health_status['checks']['configuration'] = {
                'status': 'fail',
                'message': f'Configuration error: {e}'
            }
            health_status['status'] = 'unhealthy'
            return health_status

        try:
            groups, users = load_desired_state(self.config['source']['path'])
            health_status['checks']['source'] = {
                'status': 'pass',
                'message': f'{len(groups)} groups and {len(users)} users'
            }
        except SourceError as e:
            health_status['checks']['source'] = {
                'status': 'fail',
                'message': f'Source error: {e}'
            }
            health_status['status'] = 'unhealthy'

        try:
            service = create_service(self.config)
            if isinstance(service, LDAPDirectoryService):
                service.connect(max_retries=1, retry_wait=0)
                service.disconnect()
            health_status['checks']['directory'] = {
                'status': 'pass',
                'message': f'{service.name} directory reachable'
            }
        except UpdateServiceError as e:
            health_status['checks']['directory'] = {
                'status': 'fail',
                'message': f'Directory unavailable: {e}'
            }
            health_status['status'] = 'unhealthy'

        notifications_config = self.config.get('notifications', {})
        if notifications_config.get('enable_email', False):
            required_fields = ['smtp_server', 'email_from', 'email_to']
            missing_fields = [f for f in required_fields if not notifications_config.get(f)]
            if missing_fields:
                health_status['checks']['notifications'] = {
                    'status': 'fail',
                    'message': f'Missing notification config: {missing_fields}'
                }
                health_status['status'] = 'unhealthy'
            else:
                health_status['checks']['notifications'] = {
                    'status': 'pass',
                    'message': 'Email notification configuration valid'
                }
        else:
            health_status['checks']['notifications'] = {
                'status': 'skip',
                'message': 'Email notifications disabled'
            }

        return health_status

    def _cleanup(self):
        """Release the update service."""
        if self.service:
            try:
                self.service.close()
            except (UpdateServiceError, OSError) as e:
                logger.error(f"Failed to close {self.service.name} directory: {e}")
            self.service = None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Directory Sync: reconcile groups and users with a directory')
    parser.add_argument('--config', '-c', help='Path to configuration file')
    parser.add_argument('--dry-run', action='store_true', default=None,
                        help='Compute and log the required actions without applying them')
    parser.add_argument('--progress', choices=PROGRESS_STYLES,
                        help='How to report commit progress')
    parser.add_argument('--health-check', action='store_true',
                        help='Perform health check instead of sync')
    parser.add_argument('--test-email', action='store_true',
                        help='Send test email notification')
    return parser


def main(argv: Optional[List[str]] = None):
    """Main entry point for the application."""
    args = build_parser().parse_args(argv)

    orchestrator = SyncOrchestrator(config_path=args.config, dry_run=args.dry_run,
                                    progress=args.progress)

    if args.health_check:
        health_status = orchestrator.health_check()
        print(json.dumps(health_status, indent=2))
        sys.exit(0 if health_status['status'] == 'healthy' else 1)

    elif args.test_email:
        try:
            orchestrator._load_configuration()
        except ConfigurationError as e:
            print(f"Error testing email: {e}")
            sys.exit(1)

        from directory_sync.notifications import test_notification_config
        if test_notification_config(orchestrator.config.get('notifications', {})):
            print("Test email sent successfully")
            sys.exit(0)
        print("Failed to send test email")
        sys.exit(1)

    else:
        sys.exit(orchestrator.run())


if __name__ == "__main__":
    main()
