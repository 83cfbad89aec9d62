"""
mir2petri: translate the MIR of a Rust program into a Petri net that models
its control flow and its use of Mutex, Condvar, Arc and threads, for deadlock
detection with an external model checker.
"""

from .errors import (
    DuplicateLabelError,
    ForeignNodeError,
    InvariantViolation,
    TranslationError,
    UnlinkedLocationError,
    UnsupportedCallError,
)
from .mir_parser import MirProgram, ParseError, parse_mir
from .pn_model import Arc, PetriNet, Place, Transition
from .pnml_writer import net_to_dict, write_dot, write_lola, write_pnml
from .translator import Translator, translate

__version__ = "0.1.0"
