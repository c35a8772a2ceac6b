"""
Update service interface.

An update service is the directory the reconciliation engine writes to. It
reports the current groups and users and performs one add, update or delete
per call. A call that cannot be performed raises; the engine records the
failure and moves on to the next action.
"""

import logging
from abc import ABC, abstractmethod
from typing import List

from directory_sync.models import Group, User
from directory_sync.actions import GroupUpdate, UserUpdate

logger = logging.getLogger(__name__)


class UpdateServiceError(Exception):
    """Base exception for update service errors."""
    pass


class UpdateService(ABC):
    """
    Abstract base class for directories that can be synchronized.

    Implementations must provide the read methods used to determine the
    current state and the six write methods the action executor calls.
    """

    name = 'directory'

    @abstractmethod
    def get_groups(self) -> List[Group]:
        """Return all groups currently in the directory."""
        pass

    @abstractmethod
    def get_users(self) -> List[User]:
        """Return all users currently in the directory."""
        pass

    @abstractmethod
    def add_group(self, group: Group) -> None:
        """
        Create a group.

        Raises:
            UpdateServiceError: If the group could not be created
        """
        pass

    @abstractmethod
    def update_group(self, update: GroupUpdate) -> None:
        """
        Apply a group update. Only ``update.changed_fields()`` need be written.

        Raises:
            UpdateServiceError: If the group could not be updated
        """
        pass

    @abstractmethod
    def delete_group(self, group: Group) -> None:
        """
        Remove a group.

        Raises:
            UpdateServiceError: If the group could not be deleted
        """
        pass

    @abstractmethod
    def add_user(self, user: User) -> None:
        """Create a user, including its password hash when one is set."""
        pass

    @abstractmethod
    def update_user(self, update: UserUpdate) -> None:
        """Apply a user update."""
        pass

    @abstractmethod
    def delete_user(self, user: User) -> None:
        """Remove a user."""
        pass

    def close(self) -> None:
        """Release any resources held by the service."""
        pass

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
