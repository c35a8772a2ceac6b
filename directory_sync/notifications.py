"""
Email notifications for Directory Sync.

Sends reports for failed actions, connection failures and, optionally, a
summary of successful runs. A notification that cannot be sent is logged and
reported as ``False``; it never interrupts a sync.
"""

import smtplib
import logging
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Dict, List, Any, Optional
from datetime import datetime

logger = logging.getLogger(__name__)

MAX_LISTED_ERRORS = 25


def send_email(subject: str, body: str, config: Dict[str, Any]) -> bool:
    """
    Send email notification using SMTP.

    Args:
        subject: Email subject line
        body: Email body content
        config: Notification configuration dictionary

    Returns:
        True if email sent successfully, False otherwise
    """
    if not config.get('enable_email', False):
        logger.debug("Email notifications disabled")
        return False

    smtp_server = config.get('smtp_server')
    smtp_port = config.get('smtp_port', 587)
    smtp_username = config.get('smtp_username')
    smtp_password = config.get('smtp_password')
    smtp_tls = config.get('smtp_tls', True)

    email_from = config.get('email_from', smtp_username)
    email_to = config.get('email_to', [])

    if not smtp_server:
        logger.error("SMTP server not configured")
        return False

    if not email_to:
        logger.error("No email recipients configured")
        return False

    if isinstance(email_to, str):
        email_to = [email_to]

    logger.debug(f"Sending email to {len(email_to)} recipients via {smtp_server}:{smtp_port}")

    msg = MIMEMultipart()
    msg['From'] = email_from
    msg['To'] = ', '.join(email_to)
    msg['Subject'] = subject
    msg.attach(MIMEText(body, 'plain'))

    try:
        if smtp_port == 465:
            server = smtplib.SMTP_SSL(smtp_server, smtp_port)
        else:
            server = smtplib.SMTP(smtp_server, smtp_port)
            if smtp_tls:
                server.starttls()

        if smtp_username and smtp_password:
            server.login(smtp_username, smtp_password)

        server.sendmail(email_from, email_to, msg.as_string())
        server.quit()
    except (smtplib.SMTPException, OSError) as e:
        logger.error(f"Failed to send email notification: {e}")
        return False

    logger.info(f"Email notification sent successfully: {subject}")
    return True


def send_failure_notification(
    title: str,
    error_message: str,
    config: Dict[str, Any],
    additional_info: Optional[Dict[str, Any]] = None
) -> bool:
    """
    Send notification for sync failures.

    Args:
        title: Failure title/type
        error_message: Error description
        config: Notification configuration
        additional_info: Optional additional context

    Returns:
        True if notification sent successfully
    """
    if not config.get('email_on_failure', True):
        logger.debug("Failure email notifications disabled")
        return False

    timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')

    body_lines = [
        "Directory Sync Failure Report",
        f"Timestamp: {timestamp}",
        "",
        f"Failure Type: {title}",
        f"Error Message: {error_message}",
        ""
    ]

    if additional_info:
        body_lines.append("Additional Information:")
        for key, value in additional_info.items():
            body_lines.append(f"  {key}: {value}")
        body_lines.append("")

    body_lines.extend([
        "Please check the application logs for more detailed information.",
        "",
        "This is an automated message from Directory Sync."
    ])

    return send_email(f"Directory Sync Alert: {title}", '\n'.join(body_lines), config)


def send_action_errors_report(label: str, error_lines: List[str], attempted: int,
                              config: Dict[str, Any]) -> bool:
    """
    Send the list of actions that failed for one entity kind.

    Args:
        label: Entity kind label, e.g. ``Groups``
        error_lines: Rendered failures, one per line
        attempted: Number of actions attempted
        config: Notification configuration

    Returns:
        True if notification sent successfully
    """
    if not config.get('email_on_failure', True):
        logger.debug("Failure email notifications disabled")
        return False

    timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')

    body_lines = [
        "Directory Sync Action Error Report",
        f"Timestamp: {timestamp}",
        "",
        f"Entity kind: {label}",
        f"Failed actions: {len(error_lines)} of {attempted}",
        "",
        "Failures:"
    ]

    for i, line in enumerate(error_lines[:MAX_LISTED_ERRORS], 1):
        body_lines.append(f"  {i}. {line}")

    if len(error_lines) > MAX_LISTED_ERRORS:
        body_lines.append(f"  ... and {len(error_lines) - MAX_LISTED_ERRORS} more failures")

    body_lines.extend([
        "",
        "The remaining actions were applied. Running the sync again retries only",
        "the actions that are still outstanding.",
        "",
        "This is an automated message from Directory Sync."
    ])

    return send_email(f"Directory Sync Alert: {len(error_lines)} {label} actions failed",
                      '\n'.join(body_lines), config)


def send_success_summary(sync_stats: Dict[str, Any], config: Dict[str, Any]) -> bool:
    """
    Send summary notification for a successful sync.

    Args:
        sync_stats: Dictionary containing sync statistics
        config: Notification configuration

    Returns:
        True if notification sent successfully
    """
    if not config.get('email_on_success', False):
        logger.debug("Success email notifications disabled")
        return False

    timestamp = datetime.now().strftime('%Y-%m-%d %H:%M:%S')

    body_lines = [
        "Directory Sync Summary Report",
        f"Timestamp: {timestamp}",
        "",
        f"Total runtime: {format_runtime(sync_stats.get('runtime_seconds', 0))}",
        f"Dry run: {'yes' if sync_stats.get('dry_run') else 'no'}",
        ""
    ]

    for label, kind_stats in sync_stats.get('kinds', {}).items():
        body_lines.extend([
            f"{label}:",
            f"  Additions: {kind_stats.get('additions', 0)}",
            f"  Updates: {kind_stats.get('updates', 0)}",
            f"  Deletions: {kind_stats.get('deletions', 0)}",
            f"  Failed: {kind_stats.get('failed', 0)}",
            ""
        ])

    body_lines.append("This is an automated message from Directory Sync.")

    return send_email("Directory Sync: Successful Completion", '\n'.join(body_lines), config)


def send_connection_failure(error_message: str, config: Dict[str, Any], retry_count: int = 0) -> bool:
    """
    Send notification for directory connection failures.

    Args:
        error_message: Connection error description
        config: Notification configuration
        retry_count: Number of connection attempts made

    Returns:
        True if notification sent successfully
    """
    additional_info = {
        'Component': 'Directory Connection',
        'Connection Attempts': retry_count,
        'Impact': 'Sync aborted - no actions applied'
    }

    return send_failure_notification("Directory Connection Failed", error_message, config, additional_info)


def format_runtime(runtime_seconds: float) -> str:
    """Format a duration as seconds, or minutes and seconds above one minute."""
    if runtime_seconds > 60:
        minutes = int(runtime_seconds // 60)
        seconds = runtime_seconds % 60
        return f"{minutes}m {seconds:.1f}s"
    return f"{runtime_seconds:.2f} seconds"


def test_notification_config(config: Dict[str, Any]) -> bool:
    """
    Test email notification configuration by sending a test email.

    Args:
        config: Notification configuration to test

    Returns:
        True if test email sent successfully
    """
    recipients = config.get('email_to', [])
    if isinstance(recipients, str):
        recipients = [recipients]

    test_body = """This is a test email from Directory Sync.

If you receive this message, your email notification configuration is working correctly.

Test details:
- SMTP Server: {}
- SMTP Port: {}
- From Address: {}
- Recipients: {}

This is an automated test message.""".format(
        config.get('smtp_server', 'not configured'),
        config.get('smtp_port', 'not configured'),
        config.get('email_from', 'not configured'),
        ', '.join(recipients)
    )

    result = send_email("Directory Sync: Configuration Test", test_body, config)
    if result:
        logger.info("Test notification sent successfully")
    else:
        logger.error("Test notification failed")
    return result


# Not a test case
test_notification_config.__test__ = False
