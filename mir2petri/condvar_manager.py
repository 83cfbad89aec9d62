"""
Central structure to keep track of the condition variables in the code.

Each condition variable has two places:
- CONDVAR_<i>_WAITING: one token per thread parked in wait().
- CONDVAR_<i>_NOTIFIED: one token per notification delivered to a waiter.

wait(guard) is split in two transitions. The first one parks the thread: it
consumes the guard's token from the mutex locked place and returns it to the
unlocked place. The second one resumes the thread once a notification is
available and the mutex can be locked again, restoring the locked token.

notify has two alternatives: deliver the notification to a waiting thread, or
lose it. A notification sent while nobody waits is lost, which is what makes
lost signals show up as deadlocks in the net.

notify_all is translated like notify_one and wakes at most one waiter. With
several threads waiting on the same condition variable the net can show a
deadlock that the program does not have.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .function_call import FunctionPlaces, call_foreign_function
from .memory import CondvarRef, Memory
from .mir_model import Location
from .mutex_manager import MutexManager
from .naming import (
    condvar_notified_place_label,
    condvar_parked_place_label,
    condvar_waiting_place_label,
    lost_label,
    resume_label,
    sync_transition_label,
    unwind_label,
)
from .pn_model import PetriNet, Place, Transition

logger = logging.getLogger(__name__)

CONDVAR_NEW = "std::sync::Condvar::new"
CONDVAR_WAIT = "std::sync::Condvar::wait"
CONDVAR_NOTIFY = "std::sync::Condvar::notify"


@dataclass
class Condvar:
    index: int
    waiting: Place
    notified: Place

    @classmethod
    def create(cls, index: int, net: PetriNet) -> "Condvar":
        waiting = net.add_place(condvar_waiting_place_label(index), "condvar")
        notified = net.add_place(condvar_notified_place_label(index), "condvar")
        return cls(index=index, waiting=waiting, notified=notified)


class CondvarManager:
    def __init__(self) -> None:
        self.condvars: list[Condvar] = []
        self.wait_counter = 0
        self.notify_counter = 0

    def get(self, condvar_ref: CondvarRef) -> Condvar:
        return self.condvars[condvar_ref.index]

    def translate_call_new(
        self,
        places: FunctionPlaces,
        destination: Optional[Location],
        net: PetriNet,
        memory: Memory,
    ) -> Transition:
        index = len(self.condvars)
        transition = call_foreign_function(
            places, sync_transition_label(CONDVAR_NEW, index), net
        )
        self.condvars.append(Condvar.create(index, net))
        if destination is not None:
            memory.condvars.link(destination, CondvarRef(index))
        return transition

    def translate_call_wait(
        self,
        places: FunctionPlaces,
        self_ref: Location,
        guard: Location,
        destination: Optional[Location],
        net: PetriNet,
        memory: Memory,
        mutex_manager: MutexManager,
    ) -> Transition:
        """
        Translate a call to std::sync::Condvar::wait. Returns the park transition.
        The guard returned by wait is linked to the mutex of the guard passed in.
        """
        condvar = self.get(memory.condvars.get(self_ref))
        mutex_ref = memory.lock_guards.get(guard)
        mutex = mutex_manager.get(mutex_ref)

        label = sync_transition_label(CONDVAR_WAIT, self.wait_counter)
        parked = net.add_place(condvar_parked_place_label(self.wait_counter), "condvar")
        self.wait_counter += 1

        park = net.add_transition(label, "wait")
        net.add_arc(places.start, park)
        net.add_arc(park, parked)
        net.add_arc(park, condvar.waiting)
        mutex.add_unlock(park, net)

        resume = net.add_transition(resume_label(label), "wait")
        net.add_arc(parked, resume)
        net.add_arc(condvar.notified, resume)
        mutex.add_lock(resume, net)
        net.add_arc(resume, places.end)

        if places.cleanup is not None:
            unwind = net.add_transition(unwind_label(label), "unwind")
            net.add_arc(places.start, unwind)
            net.add_arc(unwind, places.cleanup)

        if destination is not None:
            memory.lock_guards.link(destination, mutex_ref)
        logger.debug("WAIT ON CONDVAR %s WITH MUTEX %s", condvar.index, mutex_ref.index)
        return park

    def translate_call_notify(
        self,
        places: FunctionPlaces,
        self_ref: Location,
        net: PetriNet,
        memory: Memory,
    ) -> Transition:
        """Translate notify_one / notify_all (one delivery). Returns the delivering transition."""
        condvar = self.get(memory.condvars.get(self_ref))
        label = sync_transition_label(CONDVAR_NOTIFY, self.notify_counter)
        self.notify_counter += 1

        deliver = call_foreign_function(places, label, net, kind="notify")
        net.add_arc(condvar.waiting, deliver)
        net.add_arc(deliver, condvar.notified)

        lost = net.add_transition(lost_label(label), "notify")
        net.add_arc(places.start, lost)
        net.add_arc(lost, places.end)
        return deliver
