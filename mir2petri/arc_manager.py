"""
Central structure to keep track of std::sync::Arc in the code.

Arc is transparent for the translation: new, clone and deref are opaque calls
that pass the handles held by the argument on to the return value, so a mutex
or condvar wrapped in an Arc can still be found when it is locked or waited on.
"""

from typing import Optional

from .function_call import FunctionPlaces, call_foreign_function
from .memory import Memory
from .mir_model import CalleeKind, Location
from .naming import sync_transition_label
from .pn_model import PetriNet, Transition

ARC_NEW = "std::sync::Arc::new"
ARC_CLONE = "std::sync::Arc::clone"
ARC_DEREF = "std::sync::Arc::deref"

_FUNCTION_NAMES = {
    CalleeKind.ARC_NEW: ARC_NEW,
    CalleeKind.ARC_CLONE: ARC_CLONE,
    CalleeKind.ARC_DEREF: ARC_DEREF,
}


class ArcManager:
    def __init__(self) -> None:
        self.counters = {kind: 0 for kind in _FUNCTION_NAMES}

    def translate_call(
        self,
        kind: CalleeKind,
        places: FunctionPlaces,
        argument: Optional[Location],
        destination: Optional[Location],
        net: PetriNet,
        memory: Memory,
    ) -> Transition:
        """
        Translate Arc::new, Arc::clone or Deref::deref on an Arc.
        A separate counter per function keeps the labels unique.
        """
        index = self.counters[kind]
        self.counters[kind] += 1
        transition = call_foreign_function(
            places, sync_transition_label(_FUNCTION_NAMES[kind], index), net
        )
        if argument is not None and destination is not None:
            memory.copy_handles(destination, argument)
        return transition
