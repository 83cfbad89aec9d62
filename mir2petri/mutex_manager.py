"""
Central structure to keep track of the mutexes in the code.

Each mutex is modeled by two places:
- MUTEX_<i>_UNLOCKED, holding one token while nobody holds the lock.
- MUTEX_<i>_LOCKED, holding one token while a lock guard is alive.

A lock transition moves the token from unlocked to locked and only fires if
the mutex is unlocked. Dropping the guard moves it back. The unwind
alternative of a lock call does not touch the mutex: a panic while holding
the lock leaves it locked forever (poisoning).
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .function_call import FunctionPlaces, call_foreign_function
from .memory import Memory, MutexRef
from .mir_model import Location
from .naming import mutex_locked_place_label, mutex_unlocked_place_label, sync_transition_label
from .pn_model import PetriNet, Place, Transition

logger = logging.getLogger(__name__)

MUTEX_NEW = "std::sync::Mutex::new"
MUTEX_LOCK = "std::sync::Mutex::lock"


@dataclass
class Mutex:
    index: int
    unlocked: Place
    locked: Place

    @classmethod
    def create(cls, index: int, net: PetriNet) -> "Mutex":
        unlocked = net.add_place(mutex_unlocked_place_label(index), "mutex_unlocked")
        net.add_token(unlocked, 1)
        locked = net.add_place(mutex_locked_place_label(index), "mutex_locked")
        return cls(index=index, unlocked=unlocked, locked=locked)

    def add_lock(self, transition: Transition, net: PetriNet) -> None:
        net.add_arc(self.unlocked, transition)
        net.add_arc(transition, self.locked)

    def add_unlock(self, transition: Transition, net: PetriNet) -> None:
        net.add_arc(self.locked, transition)
        net.add_arc(transition, self.unlocked)


class MutexManager:
    def __init__(self) -> None:
        self.mutexes: list[Mutex] = []
        self.lock_counter = 0

    def get(self, mutex_ref: MutexRef) -> Mutex:
        return self.mutexes[mutex_ref.index]

    def translate_call_new(
        self,
        places: FunctionPlaces,
        destination: Optional[Location],
        net: PetriNet,
        memory: Memory,
    ) -> Transition:
        """
        Translate a call to std::sync::Mutex::new: an opaque call numbered after
        the new mutex, which is linked to the return value.
        """
        index = len(self.mutexes)
        transition = call_foreign_function(
            places, sync_transition_label(MUTEX_NEW, index), net
        )
        mutex = Mutex.create(index, net)
        self.mutexes.append(mutex)
        if destination is not None:
            memory.mutexes.link(destination, MutexRef(index))
        return transition

    def translate_call_lock(
        self,
        places: FunctionPlaces,
        self_ref: Location,
        destination: Optional[Location],
        net: PetriNet,
        memory: Memory,
    ) -> Transition:
        """
        Translate a call to std::sync::Mutex::lock. The mutex is looked up from
        the location of the self reference; the return value becomes a lock guard.
        """
        mutex_ref = memory.mutexes.get(self_ref)
        transition = call_foreign_function(
            places, sync_transition_label(MUTEX_LOCK, self.lock_counter), net, kind="lock"
        )
        self.lock_counter += 1
        self.get(mutex_ref).add_lock(transition, net)
        if destination is not None:
            memory.lock_guards.link(destination, mutex_ref)
        return transition

    def translate_unlock(
        self,
        dropped: Location,
        transition: Transition,
        net: PetriNet,
        memory: Memory,
    ) -> bool:
        """
        Translate the side effect of dropping a location: if it holds lock
        guards, the transition releases their mutexes.
        Returns True if anything was released.
        """
        guards = memory.lock_guards.find_within(dropped)
        for mutex_ref in guards:
            logger.debug("DROP OF %s RELEASES MUTEX %s", dropped, mutex_ref.index)
            self.get(mutex_ref).add_unlock(transition, net)
        if guards:
            transition.kind = "unlock"
        return bool(guards)
