"""
Configuration loading and management for Directory Sync.

This module loads configuration from a YAML file, applies environment
variable overrides for secrets, validates it and fills in defaults.
"""

import os
import yaml
import logging
from typing import Dict, Any, Optional

logger = logging.getLogger(__name__)

DIRECTORY_TYPES = ('ldap', 'file')
PROGRESS_STYLES = ('log', 'console', 'none')


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required fields."""
    pass


class ConfigLoader:
    """Handles loading and validation of application configuration."""

    # Environment variable mappings for sensitive fields
    ENV_OVERRIDES = {
        'directory.ldap.bind_password': 'LDAP_BIND_PASSWORD',
        'notifications.smtp_password': 'SMTP_PASSWORD',
    }

    LDAP_DEFAULTS = {
        'group_base_dn': '',
        'group_filter': '(objectClass=groupOfNames)',
        'group_email_attribute': 'mail',
        'group_type_attribute': 'businessCategory',
        'group_alias_attribute': 'mailAlternateAddress',
        'group_object_classes': ['top', 'groupOfNames', 'extensibleObject'],
        'user_base_dn': '',
        'user_filter': '(objectClass=inetOrgPerson)',
        'user_id_attribute': 'uid',
        'user_gdpr_attribute': 'employeeType',
        'user_object_classes': ['top', 'person', 'organizationalPerson', 'inetOrgPerson'],
        'use_ssl': None,
        'start_tls': False,
        'verify_ssl': True,
        'connection_timeout': 10,
        'receive_timeout': 10,
        'page_size': 500,
    }

    def __init__(self, config_path: Optional[str] = None):
        """
        Initialize config loader.

        Args:
            config_path: Path to config file. If None, uses CONFIG_PATH env var or 'config.yaml'
        """
        self.config_path = config_path or os.getenv('CONFIG_PATH', 'config.yaml')
        self.config = {}

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from file and apply environment overrides.

        Returns:
            Parsed and validated configuration dictionary

        Raises:
            ConfigurationError: If config file not found or validation fails
        """
        try:
            with open(self.config_path, 'r') as f:
                self.config = yaml.safe_load(f)
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {self.config_path}")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in config file: {e}")

        if not isinstance(self.config, dict):
            raise ConfigurationError(f"Configuration file {self.config_path} must contain a mapping")

        self._apply_env_overrides()
        self._validate()
        self._apply_defaults()

        logger.info(f"Configuration loaded successfully from {self.config_path}")
        return self.config

    def _apply_env_overrides(self):
        """Apply environment variable overrides for sensitive fields."""
        for config_key, env_var in self.ENV_OVERRIDES.items():
            env_value = os.getenv(env_var)
            if env_value:
                self._set_nested_value(self.config, config_key, env_value)
                logger.debug(f"Applied environment override for {config_key}")

    def _set_nested_value(self, config: Dict, key_path: str, value: Any):
        """Set a nested configuration value using dot notation."""
        keys = key_path.split('.')
        current = config
        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]
        current[keys[-1]] = value

    def _validate(self):
        """Validate required configuration fields, reporting every problem at once."""
        errors = []

        source = self.config.get('source') or {}
        if not source.get('path'):
            errors.append("Missing required source field: path")

        directory = self.config.get('directory') or {}
        directory_type = directory.get('type', 'ldap')
        if directory_type not in DIRECTORY_TYPES:
            errors.append(f"Unknown directory type '{directory_type}', "
                          f"expected one of {', '.join(DIRECTORY_TYPES)}")
        elif directory_type == 'ldap':
            ldap_config = directory.get('ldap') or {}
            for field in ['server_url', 'bind_dn', 'bind_password']:
                if not ldap_config.get(field):
                    errors.append(f"Missing required LDAP field: directory.ldap.{field}")
        elif directory_type == 'file' and not directory.get('path'):
            errors.append("Missing required field directory.path for file directory")

        sync_config = self.config.get('sync') or {}
        progress = sync_config.get('progress', 'log')
        if progress not in PROGRESS_STYLES:
            errors.append(f"Unknown progress style '{progress}', "
                          f"expected one of {', '.join(PROGRESS_STYLES)}")
        if sync_config.get('groups') is False and sync_config.get('users') is False:
            errors.append("At least one of sync.groups and sync.users must be enabled")

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"  - {error}" for error in errors))

    def _apply_defaults(self):
        """Apply default values for optional configuration fields."""
        directory = self.config.setdefault('directory', {}) or {}
        self.config['directory'] = directory
        directory.setdefault('type', 'ldap')
        if directory['type'] == 'ldap':
            ldap_config = directory.setdefault('ldap', {})
            for key, value in self.LDAP_DEFAULTS.items():
                ldap_config.setdefault(key, value)

        sync_defaults = {
            'groups': True,
            'users': True,
            'dry_run': False,
            'progress': 'log'
        }
        sync_config = self.config.setdefault('sync', {}) or {}
        self.config['sync'] = sync_config
        for key, value in sync_defaults.items():
            sync_config.setdefault(key, value)

        logging_defaults = {
            'level': 'INFO',
            'log_dir': 'logs',
            'rotation': 'daily',
            'retention_days': 7
        }
        logging_config = self.config.setdefault('logging', {}) or {}
        self.config['logging'] = logging_config
        for key, value in logging_defaults.items():
            logging_config.setdefault(key, value)

        # Retries apply to establishing the directory connection only
        error_defaults = {
            'max_retries': 3,
            'retry_wait_seconds': 5
        }
        error_config = self.config.setdefault('error_handling', {}) or {}
        self.config['error_handling'] = error_config
        for key, value in error_defaults.items():
            error_config.setdefault(key, value)

        notification_defaults = {
            'enable_email': False,
            'email_on_failure': True,
            'email_on_success': False,
            'smtp_port': 587,
            'smtp_tls': True
        }
        notification_config = self.config.setdefault('notifications', {}) or {}
        self.config['notifications'] = notification_config
        for key, value in notification_defaults.items():
            notification_config.setdefault(key, value)


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Convenience function to load configuration.

    Args:
        config_path: Path to config file

    Returns:
        Loaded configuration dictionary
    """
    loader = ConfigLoader(config_path)
    return loader.load()
