#!/usr/bin/env python3
"""
Unit tests for configuration loading and validation.

Covers YAML parsing, environment overrides for secrets, validation of
required fields and the defaults applied to optional sections.
"""

import os
import sys
import shutil
import tempfile
import unittest
from unittest.mock import patch

import yaml

# Add the project directory to the path so we can import our modules
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from directory_sync.config import ConfigLoader, ConfigurationError, load_config


class TestConfigLoader(unittest.TestCase):
    """Test cases for ConfigLoader."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.config_path = os.path.join(self.temp_dir, 'config.yaml')
        self.valid_config = {
            'source': {'path': 'desired_state.yaml'},
            'directory': {
                'type': 'ldap',
                'ldap': {
                    'server_url': 'ldaps://ldap.example.org',
                    'bind_dn': 'cn=sync,dc=example,dc=org',
                    'bind_password': 'from-file',
                    'group_base_dn': 'ou=groups,dc=example,dc=org',
                    'user_base_dn': 'ou=people,dc=example,dc=org',
                }
            }
        }

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config):
        with open(self.config_path, 'w') as f:
            yaml.dump(config, f)

    def test_load_valid_config(self):
        self._write_config(self.valid_config)

        config = ConfigLoader(self.config_path).load()

        self.assertEqual(config['source']['path'], 'desired_state.yaml')
        self.assertEqual(config['directory']['ldap']['server_url'], 'ldaps://ldap.example.org')

    def test_defaults_applied(self):
        self._write_config(self.valid_config)

        config = load_config(self.config_path)

        ldap_config = config['directory']['ldap']
        self.assertEqual(ldap_config['group_filter'], '(objectClass=groupOfNames)')
        self.assertEqual(ldap_config['user_id_attribute'], 'uid')
        self.assertEqual(ldap_config['page_size'], 500)
        self.assertEqual(config['sync'], {'groups': True, 'users': True, 'dry_run': False, 'progress': 'log'})
        self.assertEqual(config['logging']['level'], 'INFO')
        self.assertEqual(config['error_handling']['max_retries'], 3)
        self.assertFalse(config['notifications']['enable_email'])

    def test_explicit_values_kept(self):
        self.valid_config['directory']['ldap']['page_size'] = 50
        self.valid_config['sync'] = {'users': False, 'progress': 'console'}
        self._write_config(self.valid_config)

        config = load_config(self.config_path)

        self.assertEqual(config['directory']['ldap']['page_size'], 50)
        self.assertFalse(config['sync']['users'])
        self.assertTrue(config['sync']['groups'])
        self.assertEqual(config['sync']['progress'], 'console')

    @patch.dict(os.environ, {'LDAP_BIND_PASSWORD': 'from-env', 'SMTP_PASSWORD': 'smtp-secret'})
    def test_environment_overrides(self):
        del self.valid_config['directory']['ldap']['bind_password']
        self._write_config(self.valid_config)

        config = load_config(self.config_path)

        self.assertEqual(config['directory']['ldap']['bind_password'], 'from-env')
        self.assertEqual(config['notifications']['smtp_password'], 'smtp-secret')

    def test_missing_file(self):
        with self.assertRaises(ConfigurationError) as context:
            load_config(os.path.join(self.temp_dir, 'missing.yaml'))
        self.assertIn('not found', str(context.exception))

    def test_invalid_yaml(self):
        with open(self.config_path, 'w') as f:
            f.write('source: [unclosed')
        with self.assertRaises(ConfigurationError) as context:
            load_config(self.config_path)
        self.assertIn('Invalid YAML', str(context.exception))

    def test_non_mapping(self):
        with open(self.config_path, 'w') as f:
            f.write('- just\n- a list\n')
        with self.assertRaises(ConfigurationError):
            load_config(self.config_path)

    @patch.dict(os.environ, {}, clear=True)
    def test_all_problems_reported_together(self):
        self._write_config({'directory': {'ldap': {'server_url': 'ldap://x'}},
                            'sync': {'progress': 'fancy'}})

        with self.assertRaises(ConfigurationError) as context:
            load_config(self.config_path)

        message = str(context.exception)
        self.assertIn('source field: path', message)
        self.assertIn('directory.ldap.bind_dn', message)
        self.assertIn('directory.ldap.bind_password', message)
        self.assertIn("Unknown progress style 'fancy'", message)

    def test_unknown_directory_type(self):
        self.valid_config['directory'] = {'type': 'database'}
        self._write_config(self.valid_config)
        with self.assertRaises(ConfigurationError) as context:
            load_config(self.config_path)
        self.assertIn("Unknown directory type 'database'", str(context.exception))

    def test_file_directory_requires_path(self):
        self.valid_config['directory'] = {'type': 'file'}
        self._write_config(self.valid_config)
        with self.assertRaises(ConfigurationError):
            load_config(self.config_path)

        self.valid_config['directory']['path'] = 'directory.yaml'
        self._write_config(self.valid_config)
        config = load_config(self.config_path)
        self.assertNotIn('ldap', config['directory'])

    def test_nothing_to_sync(self):
        self.valid_config['sync'] = {'groups': False, 'users': False}
        self._write_config(self.valid_config)
        with self.assertRaises(ConfigurationError):
            load_config(self.config_path)

    @patch.dict(os.environ, {'CONFIG_PATH': '/etc/directory-sync/config.yaml'})
    def test_config_path_from_environment(self):
        self.assertEqual(ConfigLoader().config_path, '/etc/directory-sync/config.yaml')


if __name__ == '__main__':
    unittest.main()
