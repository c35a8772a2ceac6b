"""
Reconciliation engine for Directory Sync.

This module computes the actions needed to turn the current directory state
into the desired state and commits them to an update service. The logic is
written once and bound to an entity type through an ``EntityKind``; groups
and users are the two kinds shipped here.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from directory_sync.models import Group, User, normalize_key
from directory_sync.progress import ProgressReporter, LoggingProgressReporter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EntityKind:
    """
    Binds an entity type to the reconciliation engine.

    Attributes:
        label: Plural display label used in progress output, e.g. ``Groups``
        noun: Singular noun used in error messages, e.g. ``group``
        key: Extracts the identity key of an entity
        equals: Semantic equality predicate ``equals(new, old)``
        add: Name of the update service method that creates an entity
        update: Name of the update service method that applies an ``Update``
        delete: Name of the update service method that removes an entity
    """
    label: str
    noun: str
    key: Callable[[Any], str]
    equals: Callable[[Any, Any], bool]
    add: str
    update: str
    delete: str


GROUPS = EntityKind(
    label='Groups',
    noun='group',
    key=lambda group: group.email,
    equals=Group.equals,
    add='add_group',
    update='update_group',
    delete='delete_group',
)

USERS = EntityKind(
    label='Users',
    noun='user',
    key=lambda user: user.cid,
    equals=User.equals,
    add='add_user',
    update='update_user',
    delete='delete_user',
)


@dataclass(frozen=True)
class Update:
    """
    How an entity looks now and how it should look after the update.

    Lets a service send only the attributes that changed instead of
    re-uploading the whole entity.
    """
    before: Any
    after: Any

    @property
    def key(self) -> str:
        return self.after.key

    def changed_fields(self) -> Tuple[str, ...]:
        """Return the synchronized attributes that differ between before and after."""
        return self.after.differing_fields(self.before)


# GroupUpdate and UserUpdate share one shape
GroupUpdate = Update
UserUpdate = Update


@dataclass(frozen=True)
class ActionError:
    """An action that could not be performed, with the error it raised."""
    action: Any
    error: Exception

    @property
    def key(self) -> str:
        return self.action.key


class ActionErrors:
    """
    Actions that failed during a commit, grouped like the action set.

    Each failing action appears once, in the order it was attempted.
    """

    def __init__(self, kind: EntityKind):
        self.kind = kind
        self.deletions: List[ActionError] = []
        self.updates: List[ActionError] = []
        self.additions: List[ActionError] = []

    def amount(self) -> int:
        return len(self.additions) + len(self.deletions) + len(self.updates)

    def __len__(self) -> int:
        return self.amount()

    def lines(self) -> List[str]:
        """Return one human readable line per failure: deletions, updates, then additions."""
        noun = self.kind.noun
        lines = []
        for failure in self.deletions:
            lines.append(f'Deletion of {noun} "{failure.key}" failed with error {failure.error}')
        for failure in self.updates:
            lines.append(f'Update of {noun} "{failure.key}" failed with error {failure.error}')
        for failure in self.additions:
            lines.append(f'Addition of {noun} "{failure.key}" failed with error {failure.error}')
        return lines

    def __str__(self) -> str:
        return ''.join(f"{line}\n" for line in self.lines())

    def __repr__(self) -> str:
        return (f"ActionErrors({self.kind.label}: {len(self.deletions)} deletions, "
                f"{len(self.updates)} updates, {len(self.additions)} additions)")


class Actions:
    """
    The set of actions to perform on one entity kind.

    Built once by ``actions_required`` and consumed by ``commit``. The three
    sequences are stored as tuples and are not modified afterwards.
    """

    def __init__(self, kind: EntityKind, additions: Iterable = (),
                 updates: Iterable[Update] = (), deletions: Iterable = ()):
        self.kind = kind
        self.additions = tuple(additions)
        self.updates = tuple(updates)
        self.deletions = tuple(deletions)

    def amount(self) -> int:
        return len(self.additions) + len(self.deletions) + len(self.updates)

    def __len__(self) -> int:
        return self.amount()

    def summary(self) -> str:
        return (f"{len(self.additions)} additions, {len(self.updates)} updates, "
                f"{len(self.deletions)} deletions")

    def lines(self) -> List[str]:
        """Describe every planned action, in commit order."""
        noun = self.kind.noun
        lines = [f'Delete {noun} "{self.kind.key(entity)}"' for entity in self.deletions]
        for update in self.updates:
            changed = ', '.join(update.changed_fields())
            lines.append(f'Update {noun} "{update.key}" ({changed})')
        lines.extend(f'Add {noun} "{self.kind.key(entity)}"' for entity in self.additions)
        return lines

    def commit(self, service, progress: Optional[ProgressReporter] = None) -> ActionErrors:
        """
        Commit the actions to an update service.

        Deletions run first, then updates, then additions, so identity keys
        freed by a deletion can be claimed by an addition in the same pass.
        Within a phase actions run one at a time in stored order. An action
        fails when the service raises; the failure is recorded and the commit
        moves on.

        Args:
            service: Update service exposing the kind's add/update/delete methods
            progress: Progress reporter, defaults to logging progress

        Returns:
            The actions that failed; empty when everything succeeded
        """
        progress = progress or LoggingProgressReporter()
        errors = ActionErrors(self.kind)

        self._run_phase('deletions', self.deletions,
                        getattr(service, self.kind.delete), errors.deletions, progress)
        self._run_phase('updates', self.updates,
                        getattr(service, self.kind.update), errors.updates, progress)
        self._run_phase('additions', self.additions,
                        getattr(service, self.kind.add), errors.additions, progress)

        if errors.amount():
            logger.warning(f"({self.kind.label}) {errors.amount()} of {self.amount()} actions failed")
        else:
            logger.info(f"({self.kind.label}) All {self.amount()} actions committed")
        return errors

    def _run_phase(self, phase: str, actions: Sequence, operation: Callable,
                   failures: List[ActionError], progress: ProgressReporter):
        if not actions:
            return

        total = len(actions)
        label = self.kind.label
        self._notify(progress.phase_started, label, phase, total)

        for index, action in enumerate(actions, 1):
            try:
                operation(action)
            except Exception as e:
                failures.append(ActionError(action=action, error=e))
                logger.error(f"({label}) {phase[:-1].capitalize()} of {self.kind.noun} "
                             f"\"{self._key_of(action)}\" failed: {e}")
            self._notify(progress.action_completed, label, phase, index, total, len(failures))

    def _key_of(self, action) -> str:
        if isinstance(action, Update):
            return action.key
        return self.kind.key(action)

    @staticmethod
    def _notify(callback: Callable, *args):
        try:
            callback(*args)
        except Exception as callback_error:
            logger.warning(f"Progress callback failed: {callback_error}")

    def __repr__(self) -> str:
        return f"Actions({self.kind.label}: {self.summary()})"


def _index_by_key(entities: Sequence, kind: EntityKind, side: str) -> Dict[str, Any]:
    """Map normalized identity keys to entities; the first occurrence of a key wins."""
    index = {}
    for entity in entities:
        key = normalize_key(kind.key(entity))
        if key in index:
            logger.warning(f"Duplicate {kind.noun} key \"{kind.key(entity)}\" in {side} state, "
                           f"using the first occurrence")
            continue
        index[key] = entity
    return index


def actions_required(old: Iterable, new: Iterable, kind: EntityKind) -> Actions:
    """
    Determine the actions required to make ``old`` look like ``new``.

    Entities are matched on their identity key, ignoring letter case. A new
    entity without a match is an addition, a matched pair that is not equal
    under the kind's predicate is an update (old as ``before``, new as
    ``after``), and an old entity without a match is a deletion. Additions
    and updates follow the order of ``new``; deletions follow ``old``.

    Args:
        old: Current state, as read from the directory
        new: Desired state

    Returns:
        The required actions, possibly empty
    """
    old = tuple(old)
    new = tuple(new)

    old_by_key = _index_by_key(old, kind, 'current')
    new_by_key = _index_by_key(new, kind, 'desired')

    additions = []
    updates = []
    for entity in new:
        existing = old_by_key.get(normalize_key(kind.key(entity)))
        if existing is None:
            additions.append(entity)
        elif not kind.equals(entity, existing):
            updates.append(Update(before=existing, after=entity))

    deletions = [entity for entity in old if normalize_key(kind.key(entity)) not in new_by_key]

    actions = Actions(kind, additions=additions, updates=updates, deletions=deletions)
    logger.debug(f"({kind.label}) Required actions: {actions.summary()}")
    return actions


def group_actions_required(old: Iterable[Group], new: Iterable[Group]) -> Actions:
    """Determine the actions required to make the old group list look like the new one."""
    return actions_required(old, new, GROUPS)


def user_actions_required(old: Iterable[User], new: Iterable[User]) -> Actions:
    """Determine the actions required to make the old user list look like the new one."""
    return actions_required(old, new, USERS)
