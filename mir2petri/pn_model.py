"""
Petri net data structures for mir2petri.
Bipartite graph: Place <-> Transition only.

The net grows monotonically: places, transitions, arcs and tokens are added,
never removed. Labels are unique per node type.
"""

from dataclasses import dataclass, field
from typing import Any, Optional, Union

from .errors import DuplicateLabelError, ForeignNodeError


@dataclass(eq=False)
class Place:
    """Place in the Petri net."""
    label: str
    kind: str = "cfg"  # program, cfg, thread, mutex_unlocked, mutex_locked, condvar
    tokens: int = 0


@dataclass(eq=False)
class Transition:
    """Transition in the Petri net."""
    label: str
    kind: str = "cfg"  # cfg, call, lock, unlock, spawn, join, wait, notify, panic


@dataclass
class Arc:
    """Arc between place and transition (place->transition or transition->place)."""
    source: str
    target: str
    weight: int = 1


Node = Union[Place, Transition]


@dataclass
class PetriNet:
    """Petri net with places, transitions, arcs, and optional warnings."""
    places: dict[str, Place] = field(default_factory=dict)
    transitions: dict[str, Transition] = field(default_factory=dict)
    arcs: list[Arc] = field(default_factory=list)
    warnings: list[dict[str, Any]] = field(default_factory=list)
    # (source, target) -> arc, so merging a repeated arc does not scan the list
    _arc_index: dict[tuple[str, str], Arc] = field(default_factory=dict, repr=False)

    def add_place(self, label: str, kind: str = "cfg") -> Place:
        if label in self.places:
            raise DuplicateLabelError("place", label)
        place = Place(label=label, kind=kind)
        self.places[label] = place
        return place

    def add_transition(self, label: str, kind: str = "cfg") -> Transition:
        if label in self.transitions:
            raise DuplicateLabelError("transition", label)
        transition = Transition(label=label, kind=kind)
        self.transitions[label] = transition
        return transition

    def add_arc(self, source: Node, target: Node, weight: int = 1) -> Arc:
        """
        Add an arc from source to target.
        Adding an arc that already exists increases its weight.
        """
        if weight < 1:
            raise ForeignNodeError(f"arc weight must be positive, got {weight}")
        if isinstance(source, Place) == isinstance(target, Place):
            raise ForeignNodeError(
                f"arc {source.label} -> {target.label} must connect a place and a transition"
            )
        self._check_owned(source)
        self._check_owned(target)
        key = (source.label, target.label)
        arc = self._arc_index.get(key)
        if arc is not None:
            arc.weight += weight
            return arc
        arc = Arc(source=source.label, target=target.label, weight=weight)
        self.arcs.append(arc)
        self._arc_index[key] = arc
        return arc

    def arc_between(self, source: str, target: str) -> Optional[Arc]:
        return self._arc_index.get((source, target))

    def add_token(self, place: Place, n: int = 1) -> None:
        self._check_owned(place)
        place.tokens += n

    def _check_owned(self, node: Node) -> None:
        table = self.places if isinstance(node, Place) else self.transitions
        if table.get(node.label) is not node:
            raise ForeignNodeError(f"{node.label} is not part of this net")

    @property
    def initial_marking(self) -> dict[str, int]:
        return {p.label: p.tokens for p in self.places.values() if p.tokens > 0}

    def place_by_label(self, label: str) -> Optional[Place]:
        return self.places.get(label)

    def transition_by_label(self, label: str) -> Optional[Transition]:
        return self.transitions.get(label)

    def preset(self, label: str) -> dict[str, int]:
        """Input nodes of a node with the arc weights."""
        return {a.source: a.weight for a in self.arcs if a.target == label}

    def postset(self, label: str) -> dict[str, int]:
        """Output nodes of a node with the arc weights."""
        return {a.target: a.weight for a in self.arcs if a.source == label}
