"""
Activation record: the translation state of one call frame.

A frame is bound to three places of the caller: the start place holding the
token when the call begins, the end place receiving it on return, and the
place unwinding continues into (the caller's cleanup block, or PROGRAM_PANIC).
Each frame has its own handle memory, dropped when the frame is popped.
"""

from dataclasses import dataclass, field
from typing import Optional

from .errors import InvariantViolation
from .memory import Memory
from .mir_model import Location, MirFunction
from .naming import basic_block_place_label
from .pn_model import PetriNet, Place


@dataclass
class ActivationRecord:
    function: MirFunction
    prefix: str
    start_place: Place
    end_place: Place
    cleanup_place: Place
    # Where the caller expects the return value, for handles returned by the callee
    destination: Optional[Location] = None
    memory: Memory = field(default_factory=Memory)
    block_places: dict[int, Place] = field(default_factory=dict)
    next_block: int = 0

    @property
    def name(self) -> str:
        return self.function.name

    def add_block_places(self, net: PetriNet) -> None:
        for block in self.function.basic_blocks:
            self.block_places[block.index] = net.add_place(
                basic_block_place_label(self.prefix, block.index)
            )

    def block_place(self, index: int) -> Place:
        try:
            return self.block_places[index]
        except KeyError:
            raise InvariantViolation(
                f"function {self.name} has no basic block bb{index}"
            ) from None

    def is_finished(self) -> bool:
        return self.next_block >= len(self.function.basic_blocks)
