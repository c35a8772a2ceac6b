"""
Entity models for Directory Sync.

Groups and users are plain records. Each class names the attributes that take
part in synchronization in ``SYNC_FIELDS``; the equality predicate and the
update services both read that list, so an attribute is compared exactly when
it is written.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Tuple


def normalize_key(value: str) -> str:
    """Return the identity form of a key (case-insensitive)."""
    return (value or '').lower()


def _folded_set(values: Iterable[str]) -> frozenset:
    return frozenset(normalize_key(value) for value in values or ())


def unique_folded(values: Iterable[str], key: Callable[[str], str] = normalize_key) -> List[str]:
    """Drop values equal to an earlier one under ``key``, keeping the first spelling."""
    seen = set()
    unique = []
    for value in values or ():
        folded = key(value)
        if folded not in seen:
            seen.add(folded)
            unique.append(value)
    return unique


@dataclass
class Group:
    """
    A directory group identified by its email address.

    Attributes:
        email: Group address, the identity key
        type: Free-form group type (committee, alias, ...)
        members: Member email addresses
        aliases: Alternative addresses of the group
    """
    email: str
    type: str = ''
    members: List[str] = field(default_factory=list)
    aliases: List[str] = field(default_factory=list)

    SYNC_FIELDS = ('type', 'members', 'aliases')

    # Set-valued attributes compare without regard to order or letter case
    SET_FIELDS = ('members', 'aliases')

    @property
    def key(self) -> str:
        return self.email

    def equals(self, other: 'Group') -> bool:
        """Check whether two groups are equal for synchronization purposes."""
        if normalize_key(self.email) != normalize_key(other.email):
            return False
        return not self.differing_fields(other)

    def differing_fields(self, other: 'Group') -> Tuple[str, ...]:
        """Return the synchronized attributes whose values differ."""
        differing = []
        for name in self.SYNC_FIELDS:
            mine = getattr(self, name)
            theirs = getattr(other, name)
            if name in self.SET_FIELDS:
                if _folded_set(mine) != _folded_set(theirs):
                    differing.append(name)
            elif mine != theirs:
                differing.append(name)
        return tuple(differing)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'email': self.email,
            'type': self.type,
            'members': list(self.members),
            'aliases': list(self.aliases),
        }

    def __str__(self) -> str:
        return self.email


@dataclass
class User:
    """
    A directory user identified by campus id (cid).

    ``password_hash`` and ``hash_function`` are write-only: they are sent when
    a user is created but never compared, since the directory does not hand
    them back in a comparable form.
    """
    cid: str
    first_name: str = ''
    second_name: str = ''
    nick: str = ''
    mail: str = ''
    gdpr_education: bool = False
    password_hash: str = field(default='', repr=False)
    hash_function: str = ''

    SYNC_FIELDS = ('first_name', 'second_name', 'nick', 'mail', 'gdpr_education')

    @property
    def key(self) -> str:
        return self.cid

    def equals(self, other: 'User') -> bool:
        """Check whether two users are equal for synchronization purposes."""
        if normalize_key(self.cid) != normalize_key(other.cid):
            return False
        return not self.differing_fields(other)

    def differing_fields(self, other: 'User') -> Tuple[str, ...]:
        """Return the synchronized attributes whose values differ."""
        return tuple(
            name for name in self.SYNC_FIELDS
            if getattr(self, name) != getattr(other, name)
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'cid': self.cid,
            'first_name': self.first_name,
            'second_name': self.second_name,
            'nick': self.nick,
            'mail': self.mail,
            'gdpr_education': self.gdpr_education,
        }
        if self.password_hash:
            data['password_hash'] = self.password_hash
            data['hash_function'] = self.hash_function
        return data

    def __str__(self) -> str:
        return self.cid
