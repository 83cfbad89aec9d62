"""
Labels for the places and transitions of the net.

Every label is a pure function of the kind of element, the label prefix of
the enclosing activation (see Translator) and a local discriminator: a block
index, a statement index or a per-primitive counter. Asking twice for the
same element yields the same label, which lets separate passes agree on names.
"""

import re

PROGRAM_START = "PROGRAM_START"
PROGRAM_END = "PROGRAM_END"
PROGRAM_PANIC = "PROGRAM_PANIC"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_]+")


def sanitize(name: str) -> str:
    """Turn a qualified name like std::sync::Mutex::<T>::new into std_sync_Mutex_T_new."""
    return _UNSAFE_CHARS.sub("_", name).strip("_")


def activation_prefix(function_name: str, activation: int) -> str:
    """Prefix for the labels of one activation; the first one has no suffix."""
    if activation == 0:
        return sanitize(function_name)
    return f"{sanitize(function_name)}_{activation}"


class PrefixRegistry:
    """
    Hands out the label prefix of each function activation.

    Two qualified names can sanitize to the same text (a::b and a_b), and the
    second activation of foo is spelled like the first activation of foo_1.
    Every prefix handed out is remembered, and a taken one is skipped by
    counting the activation suffix on.
    """

    def __init__(self) -> None:
        self._activations: dict[str, int] = {}
        self._taken: set[str] = set()

    def next_prefix(self, function_name: str) -> str:
        activation = self._activations.get(function_name, 0)
        prefix = activation_prefix(function_name, activation)
        while prefix in self._taken:
            activation += 1
            prefix = activation_prefix(function_name, activation)
        self._activations[function_name] = activation + 1
        self._taken.add(prefix)
        return prefix


# Basic blocks and statements

def start_transition_label(prefix: str) -> str:
    return f"{prefix}_START"


def basic_block_place_label(prefix: str, block: int) -> str:
    return f"{prefix}_BASIC_BLOCK_{block}"


def basic_block_end_place_label(prefix: str, block: int) -> str:
    return f"{prefix}_BASIC_BLOCK_END_PLACE_{block}"


def statement_transition_label(prefix: str, block: int, statement: int) -> str:
    return f"{prefix}_BLOCK_{block}_STATEMENT_{statement}"


def statement_end_place_label(prefix: str, block: int, statement: int) -> str:
    return f"{prefix}_BLOCK_{block}_STATEMENT_{statement}_END"


# Terminators

def goto_transition_label(prefix: str, block: int) -> str:
    return f"{prefix}_GOTO_{block}"


def switch_transition_label(prefix: str, block: int, target: int) -> str:
    return f"{prefix}_SWITCH_{block}_TO_{target}"


def drop_transition_label(prefix: str, block: int) -> str:
    return f"{prefix}_DROP_{block}"


def drop_unwind_transition_label(prefix: str, block: int) -> str:
    return f"{prefix}_DROP_UNWIND_{block}"


def return_transition_label(prefix: str, block: int) -> str:
    return f"{prefix}_RETURN_{block}"


def unwind_transition_label(prefix: str, block: int) -> str:
    return f"{prefix}_UNWIND_{block}"


def unreachable_transition_label(prefix: str, block: int) -> str:
    return f"{prefix}_UNREACHABLE_{block}"


# Calls without a translated body

def foreign_call_transition_label(prefix: str, block: int, callee: str) -> str:
    return f"{prefix}_BLOCK_{block}_CALL_{sanitize(callee)}"


def diverging_call_transition_label(prefix: str, block: int, callee: str) -> str:
    return f"{prefix}_BLOCK_{block}_DIVERGING_CALL_{sanitize(callee)}"


def panic_transition_label(prefix: str, block: int) -> str:
    return f"{prefix}_BLOCK_{block}_PANIC"


def unwind_label(transition_label: str) -> str:
    """Label of the unwind alternative of a call transition."""
    return f"{transition_label}_UNWIND"


# Synchronization primitives, numbered by the owning manager

def sync_transition_label(function_name: str, index: int) -> str:
    return f"{sanitize(function_name)}_{index}"


def mutex_unlocked_place_label(index: int) -> str:
    return f"MUTEX_{index}_UNLOCKED"


def mutex_locked_place_label(index: int) -> str:
    return f"MUTEX_{index}_LOCKED"


def thread_start_place_label(index: int) -> str:
    return f"THREAD_START_{index}"


def thread_end_place_label(index: int) -> str:
    return f"THREAD_END_{index}"


def condvar_waiting_place_label(index: int) -> str:
    return f"CONDVAR_{index}_WAITING"


def condvar_notified_place_label(index: int) -> str:
    return f"CONDVAR_{index}_NOTIFIED"


def condvar_parked_place_label(wait_index: int) -> str:
    return f"CONDVAR_WAIT_{wait_index}_PARKED"


def resume_label(transition_label: str) -> str:
    return f"{transition_label}_RESUME"


def lost_label(transition_label: str) -> str:
    return f"{transition_label}_LOST"
