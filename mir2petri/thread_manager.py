"""
Central structure to keep track of the threads in the code.

A spawned thread connects to the net of the spawning thread at two points:
- The spawn transition produces a second token into THREAD_START_<i>.
- THREAD_END_<i> is consumed by the join transition, if the thread is joined.

The join may be found long after the spawn, so the body of the thread is not
translated at the spawn site. The thread is queued here instead and drained
by the Translator once the main call stack is empty. A thread that is never
joined keeps an end place without outgoing arcs (detached).
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Optional

from .errors import UnsupportedCallError
from .function_call import FunctionPlaces, call_foreign_function
from .memory import Memory, ThreadRef
from .mir_model import HandleKind, Location, Operand
from .naming import sync_transition_label, thread_end_place_label, thread_start_place_label
from .pn_model import PetriNet, Place, Transition

logger = logging.getLogger(__name__)

THREAD_SPAWN = "std::thread::spawn"
THREAD_JOIN = "std::thread::JoinHandle::join"
# A closure body receives its environment as the first argument
CLOSURE_ARGUMENT = 1


@dataclass
class Thread:
    """A thread waiting to be translated."""
    index: int
    function: str
    spawn_transition: Transition
    # Handles moved into the closure, keyed by their projection inside it
    handles: dict[HandleKind, list[tuple[tuple, object]]] = field(default_factory=dict)
    join_transition: Optional[Transition] = None
    start_place: Optional[Place] = None
    end_place: Optional[Place] = None

    def set_join_transition(self, transition: Transition, net: PetriNet) -> None:
        self.join_transition = transition
        # Already drained: wire it now
        if self.end_place is not None:
            net.add_arc(self.end_place, transition)

    def prepare_for_translation(self, net: PetriNet) -> tuple[Place, Place]:
        """
        Add the start and end places of the thread. Connect the spawn transition
        to the start place and the end place to the join transition, if known.
        """
        self.start_place = net.add_place(thread_start_place_label(self.index), "thread")
        self.end_place = net.add_place(thread_end_place_label(self.index), "thread")
        net.add_arc(self.spawn_transition, self.start_place)
        if self.join_transition is not None:
            net.add_arc(self.end_place, self.join_transition)
        return self.start_place, self.end_place

    def move_handles(self, memory: Memory, captures: dict[HandleKind, list[Location]]) -> None:
        """
        Link the handles moved into the closure to the closure argument `_1`.
        A handle found at field N of the closure value lands on `_1.N`, with the
        rest of its projection kept, so `Arc<(Mutex, Condvar)>` stays a tuple.
        Every declared capture field must have received a handle of its kind.
        """
        for kind, entries in self.handles.items():
            declared = {c.normalized().projection[:1] for c in captures.get(kind, [])}
            moved = {projection[:1] for projection, _ in entries}
            missing = sorted(str(Location(CLOSURE_ARGUMENT, f)) for f in declared - moved)
            if missing:
                raise UnsupportedCallError(
                    f"thread function {self.function} captures a {kind.value} in "
                    f"{', '.join(missing)} but none was moved into it"
                )
            handle_map = memory.map_for(kind)
            for projection, handle in entries:
                if projection[:1] not in declared:
                    logger.warning(
                        "thread %s: %s moved into %s is not a declared capture",
                        self.index, kind.value, Location(CLOSURE_ARGUMENT, projection[:1]),
                    )
                handle_map.link(Location(CLOSURE_ARGUMENT, projection), handle)


class ThreadManager:
    def __init__(self) -> None:
        self.threads: list[Thread] = []
        self.pending: deque[Thread] = deque()
        self.join_counter = 0

    def get(self, thread_ref: ThreadRef) -> Thread:
        return self.threads[thread_ref.index]

    def translate_call_spawn(
        self,
        places: FunctionPlaces,
        args: list[Operand],
        destination: Optional[Location],
        net: PetriNet,
        memory: Memory,
    ) -> Transition:
        """
        Translate a call to std::thread::spawn. The transition continues the
        caller; the thread start token is added when the thread is drained.
        The handles captured by the closure are moved out of the caller memory.
        """
        closure = args[0] if args else None
        if closure is None or closure.function is None:
            raise UnsupportedCallError("std::thread::spawn should receive the function to run")

        index = len(self.threads)
        transition = call_foreign_function(
            places, sync_transition_label(THREAD_SPAWN, index), net, kind="spawn"
        )
        handles: dict[HandleKind, list] = {}
        if closure.location is not None:
            for kind in (HandleKind.MUTEX, HandleKind.CONDVAR, HandleKind.THREAD):
                moved = memory.map_for(kind).remove_by_root(closure.location)
                handles[kind] = [(loc.projection, handle) for loc, handle in moved]
        thread = Thread(
            index=index,
            function=closure.function,
            spawn_transition=transition,
            handles=handles,
        )
        self.threads.append(thread)
        self.pending.append(thread)
        logger.debug("NEW THREAD %s RUNNING %s", index, closure.function)
        if destination is not None:
            memory.join_handles.link(destination, ThreadRef(index))
        return transition

    def translate_call_join(
        self,
        places: FunctionPlaces,
        self_ref: Location,
        net: PetriNet,
        memory: Memory,
    ) -> Transition:
        """
        Translate a call to std::thread::JoinHandle::join. The transition is
        recorded as the join transition of the thread behind the join handle.
        """
        thread_ref = memory.join_handles.get(self_ref)
        transition = call_foreign_function(
            places, sync_transition_label(THREAD_JOIN, self.join_counter), net, kind="join"
        )
        self.join_counter += 1
        self.get(thread_ref).set_join_transition(transition, net)
        return transition

    def pop_thread(self) -> Optional[Thread]:
        """Next thread to translate, or None when the queue is empty."""
        if not self.pending:
            return None
        return self.pending.popleft()
