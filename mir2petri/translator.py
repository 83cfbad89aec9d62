"""
Translate the MIR of a program into a Petri net.

The translator walks the functions in the order they are called, using an
explicit call stack like a processor would: a call to a function with a body
pushes a new activation record, the walker continues with the callee's basic
blocks, and the record is popped once all its blocks are translated.
Calls without a body (foreign functions, panics, synchronization primitives)
become local net fragments.

Spawned threads are translated last. The spawn site only queues the thread;
once the call stack of the entry function is empty, the queue is drained and
each thread body is spliced into the same net between its spawn and join
transitions. Threads spawned by threads join the queue.

Places for the program:
  PROGRAM_START (one token), PROGRAM_END, PROGRAM_PANIC
Per activation <fn>:
  <fn>_START: frame start place -> <fn>_BASIC_BLOCK_0
  <fn>_BASIC_BLOCK_<b> -> statements -> <fn>_BASIC_BLOCK_END_PLACE_<b> -> terminator
"""

import logging
from typing import Optional

from .activation import ActivationRecord
from .arc_manager import ArcManager
from .condvar_manager import CondvarManager
from .errors import TranslationError, UnsupportedCallError
from .function_call import FunctionPlaces, call_foreign_function, call_without_return
from .mir_model import (
    Aggregate,
    Assign,
    BasicBlock,
    CalleeKind,
    CfgProvider,
    Location,
    Ref,
    Statement,
    TerminatorCall,
    TerminatorDrop,
    TerminatorGoto,
    TerminatorReturn,
    TerminatorSwitch,
    TerminatorUnreachable,
    TerminatorUnwind,
    Use,
)
from .mutex_manager import MutexManager
from .naming import (
    PROGRAM_END,
    PROGRAM_PANIC,
    PROGRAM_START,
    PrefixRegistry,
    basic_block_end_place_label,
    diverging_call_transition_label,
    drop_transition_label,
    drop_unwind_transition_label,
    foreign_call_transition_label,
    goto_transition_label,
    panic_transition_label,
    return_transition_label,
    start_transition_label,
    statement_end_place_label,
    statement_transition_label,
    switch_transition_label,
    unreachable_transition_label,
    unwind_transition_label,
)
from .pn_model import PetriNet, Place, Transition
from .stack import Stack
from .thread_manager import ThreadManager

logger = logging.getLogger(__name__)

RETURN_VALUE = Location(0)

_ARC_CALLS = (CalleeKind.ARC_NEW, CalleeKind.ARC_CLONE, CalleeKind.ARC_DEREF)


class Translator:
    """
    One translation of one program. Usage:

        translator = Translator(provider, entry_fn="main")
        translator.run()
        net = translator.get_result()
    """

    def __init__(self, provider: CfgProvider, entry_fn: str = "main"):
        self.provider = provider
        self.entry_fn = entry_fn
        self.net = PetriNet()
        self.program_panic = self.net.add_place(PROGRAM_PANIC, "program")
        self.program_end = self.net.add_place(PROGRAM_END, "program")
        self.program_start = self.net.add_place(PROGRAM_START, "program")
        self.net.add_token(self.program_start, 1)

        self.call_stack: Stack[ActivationRecord] = Stack()
        self.mutex_manager = MutexManager()
        self.thread_manager = ThreadManager()
        self.condvar_manager = CondvarManager()
        self.arc_manager = ArcManager()
        self._prefixes = PrefixRegistry()
        self._error: Optional[str] = None

    def run(self) -> None:
        """
        Translate the program, starting from the entry function.
        A missing entry function is reported by get_result(); any other
        failure raises an InvariantViolation right away.
        """
        entry = self.provider.entry_function(self.entry_fn)
        if entry is None:
            self._error = f"no entry function {self.entry_fn!r} found in the program"
            logger.error("translation failed: %s", self._error)
            return
        logger.info("translating program from entry function %s", entry)
        self.push_function(entry, self.program_start, self.program_end, self.program_panic)
        self.translate_call_stack()
        self.translate_threads()
        logger.info(
            "translation finished: %d places, %d transitions, %d arcs",
            len(self.net.places), len(self.net.transitions), len(self.net.arcs),
        )

    def get_result(self) -> PetriNet:
        """The translated net. Raises TranslationError if the translation failed."""
        if self._error is not None:
            raise TranslationError(self._error)
        return self.net

    # Call stack

    def push_function(
        self,
        function: str,
        start_place: Place,
        end_place: Place,
        cleanup_place: Place,
        destination: Optional[Location] = None,
    ) -> ActivationRecord:
        """Push a new activation record for the function and wire its start transition."""
        body = self.provider.body(function)
        if not body.basic_blocks:
            raise UnsupportedCallError(f"function {function} has no basic blocks")
        frame = ActivationRecord(
            function=body,
            prefix=self._prefixes.next_prefix(function),
            start_place=start_place,
            end_place=end_place,
            cleanup_place=cleanup_place,
            destination=destination,
        )
        frame.add_block_places(self.net)
        start = self.net.add_transition(start_transition_label(frame.prefix))
        self.net.add_arc(start_place, start)
        self.net.add_arc(start, frame.block_place(body.basic_blocks[0].index))

        self.call_stack.push(frame)
        logger.debug("PUSH %s (depth %d)", frame.prefix, len(self.call_stack))
        return frame

    def pop_function(self) -> None:
        """Pop the finished top frame, handing returned handles to the caller."""
        frame = self.call_stack.pop()
        logger.debug("POP %s", frame.prefix)
        if frame.destination is None or self.call_stack.is_empty():
            return
        caller = self.call_stack.peek()
        frame.memory.transfer(RETURN_VALUE, caller.memory, frame.destination)

    def translate_call_stack(self) -> None:
        """
        Main translation loop. Translates the next block of the frame on top
        of the stack until the stack is empty. A call to a function with a body
        pushes a frame, so the walk continues in the callee and comes back to
        the remaining blocks of the caller once the callee is popped.
        """
        while not self.call_stack.is_empty():
            frame = self.call_stack.peek()
            if frame.is_finished():
                self.pop_function()
                continue
            block = frame.function.basic_blocks[frame.next_block]
            frame.next_block += 1
            self.translate_block(frame, block)

    def translate_threads(self) -> None:
        """Drain the queue of spawned threads, translating each thread function."""
        thread = self.thread_manager.pop_thread()
        while thread is not None:
            logger.debug("TRANSLATING THREAD %s (%s)", thread.index, thread.function)
            start_place, end_place = thread.prepare_for_translation(self.net)
            frame = self.push_function(thread.function, start_place, end_place, self.program_panic)
            thread.move_handles(frame.memory, frame.function.captures)
            self.translate_call_stack()
            thread = self.thread_manager.pop_thread()

        for thread in self.thread_manager.threads:
            if thread.join_transition is None:
                logger.warning("thread %s running %s is never joined", thread.index, thread.function)
                self.net.warnings.append({
                    "thread": thread.index,
                    "function": thread.function,
                    "reason": "thread is never joined (detached)",
                })

    # Basic blocks

    def translate_block(self, frame: ActivationRecord, block: BasicBlock) -> None:
        """Chain the statements of the block, then wire its terminator."""
        place = frame.block_place(block.index)
        last = len(block.statements) - 1
        for i, statement in enumerate(block.statements):
            transition = self.net.add_transition(
                statement_transition_label(frame.prefix, block.index, i)
            )
            if i == last:
                next_place = self.net.add_place(
                    basic_block_end_place_label(frame.prefix, block.index)
                )
            else:
                next_place = self.net.add_place(
                    statement_end_place_label(frame.prefix, block.index, i)
                )
            self.net.add_arc(place, transition)
            self.net.add_arc(transition, next_place)
            self.translate_statement_side_effects(frame, statement)
            place = next_place
        self.translate_terminator(frame, block, place)

    def translate_statement_side_effects(self, frame: ActivationRecord, statement: Statement) -> None:
        """Refresh the handle memory for assignments that create aliases."""
        if not isinstance(statement, Assign):
            return
        memory = frame.memory
        rvalue = statement.rvalue
        if isinstance(rvalue, Use):
            if rvalue.operand.location is not None:
                memory.copy_handles(statement.target, rvalue.operand.location)
        elif isinstance(rvalue, Ref):
            memory.copy_handles(statement.target, rvalue.location)
        elif isinstance(rvalue, Aggregate):
            for i, operand in enumerate(rvalue.operands):
                if operand.location is not None:
                    memory.copy_handles(statement.target.field(i), operand.location)

    def translate_terminator(self, frame: ActivationRecord, block: BasicBlock, start: Place) -> None:
        term = block.terminator
        prefix = frame.prefix
        b = block.index

        if isinstance(term, TerminatorGoto):
            self._connect(start, goto_transition_label(prefix, b), frame.block_place(term.target))
        elif isinstance(term, TerminatorSwitch):
            # One transition per distinct target, all competing for the same token
            for target in dict.fromkeys(term.targets):
                self._connect(
                    start, switch_transition_label(prefix, b, target), frame.block_place(target)
                )
        elif isinstance(term, TerminatorReturn):
            self._connect(start, return_transition_label(prefix, b), frame.end_place)
        elif isinstance(term, TerminatorUnwind):
            self._connect(start, unwind_transition_label(prefix, b), frame.cleanup_place, "unwind")
        elif isinstance(term, TerminatorUnreachable):
            self._connect(start, unreachable_transition_label(prefix, b), self.program_end)
        elif isinstance(term, TerminatorDrop):
            transition = self._connect(
                start, drop_transition_label(prefix, b), frame.block_place(term.target)
            )
            self.mutex_manager.translate_unlock(term.location, transition, self.net, frame.memory)
            if term.cleanup is not None:
                self._connect(
                    start, drop_unwind_transition_label(prefix, b),
                    frame.block_place(term.cleanup), "unwind",
                )
        elif isinstance(term, TerminatorCall):
            self.translate_call(frame, b, term, start)
        else:
            raise UnsupportedCallError(f"unsupported terminator {term!r} in {frame.name} bb{b}")

    def _connect(self, source: Place, label: str, target: Place, kind: str = "cfg") -> Transition:
        transition = self.net.add_transition(label, kind)
        self.net.add_arc(source, transition)
        self.net.add_arc(transition, target)
        return transition

    # Calls

    def translate_call(
        self,
        frame: ActivationRecord,
        block: int,
        call: TerminatorCall,
        start: Place,
    ) -> None:
        """
        Classify the callee and translate the call. Functions with a body are
        pushed to the call stack; everything else is a local fragment.
        """
        kind = self.provider.classify(call.callee)
        prefix = frame.prefix

        if kind is CalleeKind.PANIC:
            call_without_return(
                start, self.program_panic, panic_transition_label(prefix, block), self.net, "panic"
            )
            return
        if call.target is None:
            call_without_return(
                start, self.program_end,
                diverging_call_transition_label(prefix, block, call.callee), self.net,
            )
            return

        places = FunctionPlaces(
            start=start,
            end=frame.block_place(call.target),
            cleanup=frame.block_place(call.cleanup) if call.cleanup is not None else None,
        )
        memory = frame.memory
        destination = call.destination

        if kind is CalleeKind.FUNCTION:
            # Without a cleanup edge, unwinding continues where the caller's would
            cleanup = places.cleanup if places.cleanup is not None else frame.cleanup_place
            callee = self.push_function(call.callee, places.start, places.end, cleanup, destination)
            for i, arg in enumerate(call.args):
                if arg.location is not None:
                    memory.transfer(arg.location, callee.memory, Location(i + 1))
        elif kind is CalleeKind.FOREIGN:
            call_foreign_function(
                places, foreign_call_transition_label(prefix, block, call.callee), self.net
            )
        elif kind is CalleeKind.UNWRAP:
            call_foreign_function(
                places, foreign_call_transition_label(prefix, block, call.callee), self.net
            )
            argument = _optional_argument_location(call, 0)
            if argument is not None and destination is not None:
                memory.copy_handles(destination, argument)
        elif kind is CalleeKind.DROP:
            transition = call_foreign_function(
                places, foreign_call_transition_label(prefix, block, call.callee), self.net
            )
            argument = _optional_argument_location(call, 0)
            if argument is not None:
                self.mutex_manager.translate_unlock(argument, transition, self.net, memory)
        elif kind is CalleeKind.MUTEX_NEW:
            self.mutex_manager.translate_call_new(places, destination, self.net, memory)
        elif kind is CalleeKind.MUTEX_LOCK:
            self.mutex_manager.translate_call_lock(
                places, _argument_location(call, 0), destination, self.net, memory
            )
        elif kind is CalleeKind.THREAD_SPAWN:
            self.thread_manager.translate_call_spawn(places, call.args, destination, self.net, memory)
        elif kind is CalleeKind.THREAD_JOIN:
            self.thread_manager.translate_call_join(
                places, _argument_location(call, 0), self.net, memory
            )
        elif kind is CalleeKind.CONDVAR_NEW:
            self.condvar_manager.translate_call_new(places, destination, self.net, memory)
        elif kind is CalleeKind.CONDVAR_WAIT:
            self.condvar_manager.translate_call_wait(
                places,
                _argument_location(call, 0),
                _argument_location(call, 1),
                destination,
                self.net,
                memory,
                self.mutex_manager,
            )
        elif kind is CalleeKind.CONDVAR_NOTIFY:
            self.condvar_manager.translate_call_notify(
                places, _argument_location(call, 0), self.net, memory
            )
        elif kind in _ARC_CALLS:
            argument = _optional_argument_location(call, 0)
            self.arc_manager.translate_call(kind, places, argument, destination, self.net, memory)
        else:
            raise UnsupportedCallError(f"unsupported callee kind {kind} for {call.callee}")


def _argument_location(call: TerminatorCall, n: int) -> Location:
    if len(call.args) <= n or call.args[n].location is None:
        raise UnsupportedCallError(f"{call.callee} should receive a location as argument {n}")
    return call.args[n].location


def _optional_argument_location(call: TerminatorCall, n: int) -> Optional[Location]:
    if len(call.args) <= n:
        return None
    return call.args[n].location


def translate(provider: CfgProvider, entry_fn: str = "main") -> PetriNet:
    """Translate a program in one go. Raises TranslationError on failure."""
    translator = Translator(provider, entry_fn=entry_fn)
    translator.run()
    return translator.get_result()
