"""
Loading of the desired directory state.

The source of truth is a YAML (or JSON, which YAML accepts) document with a
``groups`` list and a ``users`` list. The same record conversions are used by
the file-backed directory service.
"""

import logging
from typing import Any, Dict, List, Tuple

import yaml

from directory_sync.models import Group, User

logger = logging.getLogger(__name__)

TRUE_VALUES = ('true', 'yes', 'on', '1')
FALSE_VALUES = ('false', 'no', 'off', '0', '')


class SourceError(Exception):
    """Raised when the desired state cannot be read or is malformed."""
    pass


def _string_list(value: Any, field_name: str, owner: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        raise SourceError(f"Field {field_name} of {owner} must be a list")
    return [str(item) for item in value]


def _flag(value: Any, field_name: str, owner: str) -> bool:
    if value is None or isinstance(value, bool):
        return bool(value)
    text = str(value).strip().lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    raise SourceError(f"Field {field_name} of {owner} must be a boolean, got {value!r}")


def group_from_dict(data: Dict[str, Any]) -> Group:
    """
    Build a group from its mapping form.

    Raises:
        SourceError: If the mapping has no email or malformed lists
    """
    if not isinstance(data, dict):
        raise SourceError(f"Group entry must be a mapping, got {type(data).__name__}")
    email = data.get('email')
    if not email:
        raise SourceError(f"Group entry without email: {data}")
    return Group(
        email=str(email),
        type=str(data.get('type') or ''),
        members=_string_list(data.get('members'), 'members', email),
        aliases=_string_list(data.get('aliases'), 'aliases', email),
    )


def user_from_dict(data: Dict[str, Any]) -> User:
    """
    Build a user from its mapping form.

    Raises:
        SourceError: If the mapping has no cid or an unreadable flag
    """
    if not isinstance(data, dict):
        raise SourceError(f"User entry must be a mapping, got {type(data).__name__}")
    cid = data.get('cid')
    if not cid:
        raise SourceError(f"User entry without cid: {data.get('nick') or data.get('mail') or data}")
    return User(
        cid=str(cid),
        first_name=str(data.get('first_name') or ''),
        second_name=str(data.get('second_name') or ''),
        nick=str(data.get('nick') or ''),
        mail=str(data.get('mail') or ''),
        gdpr_education=_flag(data.get('gdpr_education'), 'gdpr_education', cid),
        password_hash=str(data.get('password_hash') or ''),
        hash_function=str(data.get('hash_function') or ''),
    )


def parse_state(document: Any, origin: str = '<document>') -> Tuple[List[Group], List[User]]:
    """
    Convert a parsed document into groups and users.

    Args:
        document: Result of ``yaml.safe_load``
        origin: Name used in error messages

    Returns:
        Tuple of (groups, users)
    """
    if document is None:
        document = {}
    if not isinstance(document, dict):
        raise SourceError(f"{origin}: top level must be a mapping with 'groups' and 'users'")

    groups_data = document.get('groups') or []
    users_data = document.get('users') or []
    if not isinstance(groups_data, list) or not isinstance(users_data, list):
        raise SourceError(f"{origin}: 'groups' and 'users' must be lists")

    groups = []
    for i, entry in enumerate(groups_data):
        try:
            groups.append(group_from_dict(entry))
        except SourceError as e:
            raise SourceError(f"{origin}: groups[{i}]: {e}")

    users = []
    for i, entry in enumerate(users_data):
        try:
            users.append(user_from_dict(entry))
        except SourceError as e:
            raise SourceError(f"{origin}: users[{i}]: {e}")

    return groups, users


def load_desired_state(path: str) -> Tuple[List[Group], List[User]]:
    """
    Load the desired groups and users from a file.

    Args:
        path: Path to a YAML or JSON document

    Returns:
        Tuple of (groups, users)

    Raises:
        SourceError: If the file is missing, unparsable or malformed
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            document = yaml.safe_load(f)
    except FileNotFoundError:
        raise SourceError(f"Source file not found: {path}")
    except yaml.YAMLError as e:
        raise SourceError(f"Invalid YAML in source file {path}: {e}")

    groups, users = parse_state(document, path)
    logger.info(f"Loaded desired state from {path}: {len(groups)} groups, {len(users)} users")
    return groups, users


def dump_state(groups: List[Group], users: List[User]) -> str:
    """Serialize groups and users into the source document format."""
    document = {
        'groups': [group.to_dict() for group in groups],
        'users': [user.to_dict() for user in users],
    }
    return yaml.safe_dump(document, sort_keys=False, allow_unicode=True)
