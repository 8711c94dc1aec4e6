"""
Unit lifecycle state machine.

    idle -> extracting -> extracted -> scripting -> scripted -> shooting -> completed

Extraction and scripting roll back to the status they started from when they
fail. A completed unit can go back to shooting when scenes without images are
added to it (duplicate, undo, import).
"""

from contextlib import contextmanager
from typing import Dict, FrozenSet, Hashable, Iterator, Set

from core.models.storyboard import UnitStatus


TRANSITIONS: Dict[UnitStatus, FrozenSet[UnitStatus]] = {
    UnitStatus.IDLE: frozenset({UnitStatus.EXTRACTING}),
    UnitStatus.EXTRACTING: frozenset({UnitStatus.EXTRACTED, UnitStatus.IDLE}),
    UnitStatus.EXTRACTED: frozenset({UnitStatus.EXTRACTING, UnitStatus.SCRIPTING}),
    UnitStatus.SCRIPTING: frozenset({UnitStatus.SCRIPTED, UnitStatus.EXTRACTED}),
    UnitStatus.SCRIPTED: frozenset({UnitStatus.SCRIPTING, UnitStatus.SHOOTING}),
    UnitStatus.SHOOTING: frozenset({UnitStatus.SHOOTING, UnitStatus.COMPLETED}),
    UnitStatus.COMPLETED: frozenset({UnitStatus.SHOOTING, UnitStatus.COMPLETED}),
}

# Statuses from which each operation may start
EXTRACT_FROM = frozenset({UnitStatus.IDLE, UnitStatus.EXTRACTED})
SCRIPT_FROM = frozenset({UnitStatus.EXTRACTED, UnitStatus.SCRIPTED})
SHOOT_FROM = frozenset({UnitStatus.SCRIPTED, UnitStatus.SHOOTING, UnitStatus.COMPLETED})


class InvalidTransitionError(Exception):
    """Raised when an operation would move a unit along an undefined edge"""

    def __init__(self, current: UnitStatus, target: UnitStatus, reason: str = ""):
        self.current = current
        self.target = target
        message = f"Cannot move unit from '{current.value}' to '{target.value}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


def can_transition(current: UnitStatus, target: UnitStatus) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def validate_transition(current: UnitStatus, target: UnitStatus) -> UnitStatus:
    """Return target if the edge exists, raise InvalidTransitionError otherwise"""
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target)
    return target


def derive_shoot_status(all_scenes_have_images: bool) -> UnitStatus:
    """A shooting unit is completed exactly when every scene has an image"""
    return UnitStatus.COMPLETED if all_scenes_have_images else UnitStatus.SHOOTING


class InFlightGuard:
    """
    Set of keys with an operation currently running.

    Used per operation type (extract, script, shoot...) so a second
    invocation for the same unit is refused instead of racing the first.
    """

    def __init__(self, name: str):
        self.name = name
        self._keys: Set[Hashable] = set()

    def __contains__(self, key: Hashable) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def try_acquire(self, key: Hashable) -> bool:
        if key in self._keys:
            return False
        self._keys.add(key)
        return True

    def release(self, key: Hashable) -> None:
        self._keys.discard(key)

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        """Hold key for the duration of the block (caller already acquired it)"""
        try:
            yield
        finally:
            self.release(key)
