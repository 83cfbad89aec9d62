"""
Handle memory of an activation record.

Maps storage locations of one frame to the synchronization primitives they
hold. There is one map per handle kind plus a map for lock guards, since a
mutex and a guard on it are live at the same time.

Tracking is local and best effort: a map is refreshed at each operation known
to introduce an alias (copy, move, reference, clone, deref, aggregate
capture). Dereferences are dropped from locations, so `(*_2)` is `_2`.
It is not a whole-program alias analysis.
"""

import logging
from dataclasses import dataclass
from typing import Generic, Iterator, Optional, TypeVar

from .errors import UnlinkedLocationError
from .mir_model import HandleKind, Location

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MutexRef:
    """Index into MutexManager.mutexes."""
    index: int


@dataclass(frozen=True)
class ThreadRef:
    """Index into ThreadManager.threads."""
    index: int


@dataclass(frozen=True)
class CondvarRef:
    """Index into CondvarManager.condvars."""
    index: int


H = TypeVar("H", MutexRef, ThreadRef, CondvarRef)


class HandleMap(Generic[H]):
    """Location -> handle for one kind of handle."""

    def __init__(self, kind: str):
        self.kind = kind
        self._entries: dict[Location, H] = {}

    def __contains__(self, location: Location) -> bool:
        return location.normalized() in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[tuple[Location, H]]:
        return iter(list(self._entries.items()))

    def link(self, location: Location, handle: H) -> None:
        """Mark a location as holding a handle. Relinking models a reassignment."""
        key = location.normalized()
        old = self._entries.get(key)
        self._entries[key] = handle
        if old is None:
            logger.debug("LINK %s TO %s %s", key, self.kind, handle.index)
        elif old == handle:
            logger.debug("LOCATION %s LINKED AGAIN TO SAME %s", key, self.kind)
        else:
            logger.debug("LOCATION %s LINKED TO A DIFFERENT %s", key, self.kind)

    def get(self, location: Location) -> H:
        """Handle held by the location. The location must have been linked."""
        handle = self._entries.get(location.normalized())
        if handle is None:
            raise UnlinkedLocationError(self.kind, location)
        return handle

    def get_optional(self, location: Location) -> Optional[H]:
        return self._entries.get(location.normalized())

    def link_alias(self, target: Location, source: Location) -> None:
        """After this, target holds the same handle as source."""
        self.link(target, self.get(source))
        logger.debug("SAME %s: %s = %s", self.kind, target, source)

    def find_by_root(self, location: Location) -> list[H]:
        """Handles in every location sharing the root local, fields ignored, in link order."""
        return [h for loc, h in self._entries.items() if loc.root == location.root]

    def remove_by_root(self, location: Location) -> list[tuple[Location, H]]:
        """
        Entries of every location sharing the root local, removed (moved out).
        The locations are kept so the caller can rebuild the field structure.
        """
        found = [(loc, h) for loc, h in self._entries.items() if loc.root == location.root]
        for loc, _ in found:
            del self._entries[loc]
        return found

    def find_within(self, location: Location) -> list[H]:
        """Handles held by the location itself or any of its fields."""
        prefix = location.normalized()
        return [h for loc, h in self._entries.items() if _suffix(loc, prefix) is not None]

    def copy_within(
        self,
        target: Location,
        source: Location,
        into: Optional["HandleMap[H]"] = None,
    ) -> int:
        """
        Copy every entry held by source or its fields to the matching fields of target.
        into selects the destination map (another frame's memory); default self.
        Returns the number of copied entries.
        """
        destination = self if into is None else into
        source_key = source.normalized()
        target_key = target.normalized()
        copied = 0
        for loc, handle in list(self._entries.items()):
            suffix = _suffix(loc, source_key)
            if suffix is None:
                continue
            new_loc = Location(target_key.local, target_key.projection + suffix)
            if destination is self:
                self.link_alias(new_loc, loc)
            else:
                destination.link(new_loc, handle)
            copied += 1
        return copied


def _suffix(location: Location, prefix: Location) -> Optional[tuple]:
    if location.local != prefix.local:
        return None
    n = len(prefix.projection)
    if location.projection[:n] != prefix.projection:
        return None
    return location.projection[n:]


class Memory:
    """Per-frame handle memory."""

    def __init__(self) -> None:
        self.mutexes: HandleMap[MutexRef] = HandleMap("mutex")
        self.lock_guards: HandleMap[MutexRef] = HandleMap("lock guard")
        self.join_handles: HandleMap[ThreadRef] = HandleMap("join handle")
        self.condvars: HandleMap[CondvarRef] = HandleMap("condvar")

    def maps(self) -> list[HandleMap]:
        return [self.mutexes, self.lock_guards, self.join_handles, self.condvars]

    def map_for(self, kind: HandleKind) -> HandleMap:
        return {
            HandleKind.MUTEX: self.mutexes,
            HandleKind.CONDVAR: self.condvars,
            HandleKind.THREAD: self.join_handles,
        }[kind]

    def copy_handles(self, target: Location, source: Location) -> None:
        """Alias every handle of any kind held by source (or its fields) into target."""
        for handle_map in self.maps():
            handle_map.copy_within(target, source)

    def transfer(self, source: Location, other: "Memory", target: Location) -> None:
        """Copy every handle held by source in this memory to target in another frame."""
        for mine, theirs in zip(self.maps(), other.maps()):
            mine.copy_within(target, source, into=theirs)
