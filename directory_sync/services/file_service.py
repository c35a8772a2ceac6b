"""
File-backed directory service.

Keeps a directory in a YAML (or JSON) document using the same format as the
desired state source. Useful for offline runs and for rehearsing a sync.
"""

import os
import logging
from typing import Dict, List

import yaml

from directory_sync.models import Group, User, normalize_key
from directory_sync.actions import Update
from directory_sync.logging_setup import audit_logger
from directory_sync.services.base import UpdateService, UpdateServiceError
from directory_sync.sources import SourceError, parse_state, dump_state

logger = logging.getLogger(__name__)


class FileDirectoryService(UpdateService):
    """Update service storing groups and users in a single file."""

    name = 'file'

    def __init__(self, path: str, create: bool = True):
        """
        Args:
            path: Path of the directory file
            create: Start from an empty directory if the file does not exist
        """
        self.path = path
        self._groups: Dict[str, Group] = {}
        self._users: Dict[str, User] = {}
        self._dirty = False
        self._load(create)

    def _load(self, create: bool):
        if not os.path.exists(self.path):
            if not create:
                raise UpdateServiceError(f"Directory file not found: {self.path}")
            logger.info(f"Directory file {self.path} does not exist, starting empty")
            return
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                groups, users = parse_state(yaml.safe_load(f), self.path)
        except (yaml.YAMLError, SourceError) as e:
            raise UpdateServiceError(f"Cannot read directory file {self.path}: {e}")

        for group in groups:
            self._groups.setdefault(normalize_key(group.email), group)
        for user in users:
            self._users.setdefault(normalize_key(user.cid), user)
        logger.info(f"Loaded directory file {self.path}: {len(self._groups)} groups, {len(self._users)} users")

    def get_groups(self) -> List[Group]:
        return list(self._groups.values())

    def get_users(self) -> List[User]:
        return list(self._users.values())

    def _add(self, store: Dict, kind: str, key: str, entity):
        if normalize_key(key) in store:
            audit_logger.log_directory_write('add', kind, key, self.name, False, 'already exists')
            raise UpdateServiceError(f"{kind.capitalize()} {key} already exists")
        store[normalize_key(key)] = entity
        self._dirty = True
        audit_logger.log_directory_write('add', kind, key, self.name, True)

    def _replace(self, store: Dict, kind: str, update: Update):
        old_key = normalize_key(update.before.key)
        if old_key not in store:
            audit_logger.log_directory_write('update', kind, update.key, self.name, False, 'not found')
            raise UpdateServiceError(f"{kind.capitalize()} {update.before.key} does not exist")
        new_key = normalize_key(update.after.key)
        if new_key != old_key:
            del store[old_key]
        store[new_key] = update.after
        self._dirty = True
        audit_logger.log_directory_write('update', kind, update.key, self.name, True,
                                         f"changed: {', '.join(update.changed_fields())}")

    def _delete(self, store: Dict, kind: str, key: str):
        if normalize_key(key) not in store:
            audit_logger.log_directory_write('delete', kind, key, self.name, False, 'not found')
            raise UpdateServiceError(f"{kind.capitalize()} {key} does not exist")
        del store[normalize_key(key)]
        self._dirty = True
        audit_logger.log_directory_write('delete', kind, key, self.name, True)

    def add_group(self, group: Group) -> None:
        self._add(self._groups, 'group', group.email, group)

    def update_group(self, update: Update) -> None:
        self._replace(self._groups, 'group', update)

    def delete_group(self, group: Group) -> None:
        self._delete(self._groups, 'group', group.email)

    def add_user(self, user: User) -> None:
        self._add(self._users, 'user', user.cid, user)

    def update_user(self, update: Update) -> None:
        self._replace(self._users, 'user', update)

    def delete_user(self, user: User) -> None:
        self._delete(self._users, 'user', user.cid)

    def save(self) -> None:
        """Write the directory back to its file if it changed."""
        if not self._dirty:
            logger.debug(f"Directory file {self.path} unchanged, not writing")
            return
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, 'w', encoding='utf-8') as f:
            f.write(dump_state(self.get_groups(), self.get_users()))
        self._dirty = False
        logger.info(f"Wrote directory file {self.path}")

    def close(self) -> None:
        self.save()
