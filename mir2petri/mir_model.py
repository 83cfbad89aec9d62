"""
MIR data structures for mir2petri.

This is the control-flow graph handed over by a CFG provider: ordered basic
blocks, each with a statement list and exactly one terminator. Only the parts
the translator needs are modeled: storage locations, the assignments that
create aliases, and the call terminators.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Protocol, Union

DEREF = "*"


@dataclass(frozen=True)
class Location:
    """Storage location: a local plus an optional projection (field indices and derefs)."""
    local: int
    projection: tuple[Union[int, str], ...] = ()

    @property
    def root(self) -> int:
        return self.local

    def field(self, index: int) -> "Location":
        return Location(self.local, self.projection + (index,))

    def deref(self) -> "Location":
        return Location(self.local, self.projection + (DEREF,))

    def normalized(self) -> "Location":
        """Same location with the dereferences dropped (best-effort aliasing)."""
        return Location(self.local, tuple(p for p in self.projection if p != DEREF))

    def __str__(self) -> str:
        text = f"_{self.local}"
        for p in self.projection:
            text = f"(*{text})" if p == DEREF else f"{text}.{p}"
        return text


@dataclass(frozen=True)
class Operand:
    """Call argument or right-hand side: copy/move of a location, or a constant."""
    kind: str  # copy, move, const
    location: Optional[Location] = None
    constant: Optional[str] = None
    # Function item or closure body the operand evaluates to, if known
    function: Optional[str] = None


# Right-hand sides of an assignment

@dataclass
class Use:
    """_a = move _b / copy _b"""
    operand: Operand


@dataclass
class Ref:
    """_a = &_b / &mut _b"""
    location: Location


@dataclass
class Aggregate:
    """_a = (move _b, move _c) or a closure environment {closure@...} { x: move _b }"""
    operands: list[Operand]


Rvalue = Use | Ref | Aggregate


@dataclass
class Assign:
    target: Location
    rvalue: Rvalue
    text: str = ""


@dataclass
class Nop:
    """Any statement without an effect on synchronization handles."""
    text: str = ""


Statement = Assign | Nop


# Terminators

@dataclass
class TerminatorGoto:
    """goto -> bbN;"""
    target: int


@dataclass
class TerminatorSwitch:
    """switchInt(...) -> [targets...];"""
    targets: list[int]


@dataclass
class TerminatorCall:
    """dest = callee(args) -> [return: bbN, unwind: bbM];"""
    callee: str
    args: list[Operand] = field(default_factory=list)
    destination: Optional[Location] = None
    target: Optional[int] = None  # None: the call never returns
    cleanup: Optional[int] = None


@dataclass
class TerminatorDrop:
    """drop(location) -> [return: bbN, unwind: bbM];"""
    location: Location
    target: int
    cleanup: Optional[int] = None


@dataclass
class TerminatorReturn:
    """return;"""
    pass


@dataclass
class TerminatorUnwind:
    """resume; Continue unwinding into the caller."""
    pass


@dataclass
class TerminatorUnreachable:
    """unreachable;"""
    pass


Terminator = (
    TerminatorGoto
    | TerminatorSwitch
    | TerminatorCall
    | TerminatorDrop
    | TerminatorReturn
    | TerminatorUnwind
    | TerminatorUnreachable
)


@dataclass
class BasicBlock:
    """Basic block with statements and terminator."""
    index: int
    statements: list[Statement] = field(default_factory=list)
    terminator: Terminator = field(default_factory=TerminatorReturn)
    is_cleanup: bool = False
    line_start: int = 0  # approximate line for error reporting


class HandleKind(Enum):
    MUTEX = "mutex"
    CONDVAR = "condvar"
    THREAD = "join handle"


@dataclass
class MirFunction:
    """Function body: basic blocks in index order plus the closure captures."""
    name: str
    basic_blocks: list[BasicBlock] = field(default_factory=list)
    # Declared environment slots (_1.N) holding a primitive, in declaration order
    captures: dict[HandleKind, list[Location]] = field(default_factory=dict)
    locals: dict[int, str] = field(default_factory=dict)

    def block(self, index: int) -> BasicBlock:
        return self.basic_blocks[index]


class CalleeKind(Enum):
    FUNCTION = "function"  # has a body, translated inline
    FOREIGN = "foreign"  # opaque, a single transition
    PANIC = "panic"
    DROP = "drop"  # std::mem::drop
    UNWRAP = "unwrap"  # opaque, passes handles from the argument to the result
    MUTEX_NEW = "mutex_new"
    MUTEX_LOCK = "mutex_lock"
    THREAD_SPAWN = "thread_spawn"
    THREAD_JOIN = "thread_join"
    CONDVAR_NEW = "condvar_new"
    CONDVAR_WAIT = "condvar_wait"
    CONDVAR_NOTIFY = "condvar_notify"
    ARC_NEW = "arc_new"
    ARC_CLONE = "arc_clone"
    ARC_DEREF = "arc_deref"


class CfgProvider(Protocol):
    """What the translator needs from the outside world."""

    def entry_function(self, name: str) -> Optional[str]:
        """Identity of the entry function, or None if the program has none."""

    def body(self, function: str) -> MirFunction:
        """Control-flow graph of a function classified as CalleeKind.FUNCTION."""

    def classify(self, callee: str) -> CalleeKind:
        """What kind of callee this is."""
