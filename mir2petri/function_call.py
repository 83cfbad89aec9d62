"""
Net fragments for calls whose body is not translated.

A foreign call is a single transition from the start place to the end place.
If the call has a cleanup edge, a second transition from the start place to
the cleanup place models the callee panicking; exactly one of the two fires.
"""

from dataclasses import dataclass
from typing import Optional

from .naming import unwind_label
from .pn_model import PetriNet, Place, Transition


@dataclass(frozen=True)
class FunctionPlaces:
    """Boundary places of a call site."""
    start: Place
    end: Place
    cleanup: Optional[Place] = None


def call_foreign_function(
    places: FunctionPlaces,
    label: str,
    net: PetriNet,
    kind: str = "call",
) -> Transition:
    """Translate an opaque call. Returns the transition for the normal return."""
    transition = net.add_transition(label, kind)
    net.add_arc(places.start, transition)
    net.add_arc(transition, places.end)
    if places.cleanup is not None:
        unwind = net.add_transition(unwind_label(label), "unwind")
        net.add_arc(places.start, unwind)
        net.add_arc(unwind, places.cleanup)
    return transition


def call_without_return(
    start: Place,
    end: Place,
    label: str,
    net: PetriNet,
    kind: str = "call",
) -> Transition:
    """
    A call that never returns to the caller: a diverging function (end is
    PROGRAM_END) or a panic (end is PROGRAM_PANIC).
    """
    transition = net.add_transition(label, kind)
    net.add_arc(start, transition)
    net.add_arc(transition, end)
    return transition
