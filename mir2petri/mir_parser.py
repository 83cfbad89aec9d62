"""
MIR text parser for mir2petri.
Regex-driven parser for the rustc MIR dump format (rustc -Z unpretty=mir).

parse_mir() turns the text into MirFunction objects; MirProgram wraps them as
the CFG provider used by the Translator, classifying callees by their
qualified names.
"""

import logging
import re
from typing import Optional

from .errors import InvariantViolation
from .mir_model import (
    Aggregate,
    Assign,
    BasicBlock,
    CalleeKind,
    HandleKind,
    Location,
    MirFunction,
    Nop,
    Operand,
    Ref,
    Statement,
    Terminator,
    TerminatorCall,
    TerminatorDrop,
    TerminatorGoto,
    TerminatorReturn,
    TerminatorSwitch,
    TerminatorUnreachable,
    TerminatorUnwind,
    Use,
)

logger = logging.getLogger(__name__)


class ParseError(Exception):
    """Raised when MIR parsing fails."""

    def __init__(self, message: str, function: str = "", basic_block: str = "", line: int = 0):
        self.function = function
        self.basic_block = basic_block
        self.line = line
        parts = []
        if function:
            parts.append(f"function {function}")
        if basic_block:
            parts.append(f"basic block {basic_block}")
        if line:
            parts.append(f"near line {line}")
        if parts:
            full_msg = f"{message} (in {' / '.join(parts)})"
        else:
            full_msg = message
        super().__init__(full_msg)


_FN_HEADER = re.compile(r"^fn\s+([^\s(]+)\s*\(", re.MULTILINE)
_CLOSURE_TYPE = re.compile(r"\{closure@[^}]*\}")
_LET = re.compile(r"^let\s+(mut\s+)?_(\d+)\s*:\s*(.+);$")
_DEBUG_CAPTURE = re.compile(r"^debug\s+\w+\s*=>\s*(\(.*\));$")
_BB = re.compile(r"^bb(\d+)\s*(\(cleanup\))?\s*:\s*\{$")
_GOTO = re.compile(r"^goto\s*->\s*bb(\d+)\s*;$")
_SWITCH = re.compile(r"^switchInt\s*\(.*\)\s*->\s*\[([^\]]*)\]\s*;$")
_FALSE_EDGE = re.compile(r"^false(?:Edge|Unwind)\s*->\s*\[([^\]]*)\]\s*;$")
_ASSERT = re.compile(r"^assert\s*\(.*\)\s*->\s*(.+);$")
_DROP = re.compile(r"^drop\s*\((.+?)\)\s*->\s*(.+);$")
_RETURN_TARGET = re.compile(r"(?:return|success):\s*bb(\d+)")
_UNWIND_TARGET = re.compile(r"unwind:?\s*bb(\d+)")
_PLAIN_TARGET = re.compile(r"^\s*bb(\d+)\s*$")
_LOCAL = re.compile(r"^_(\d+)$")
_FIELD = re.compile(r"^(.*)\.(\d+)$")
_STRUCT_AGGREGATE = re.compile(r"^(?:\{closure@[^}]*\}|[\w:]+(?:::<.*>)?)\s*\{(.*)\}$")

_CAPTURE_KINDS = (
    ("Mutex<", HandleKind.MUTEX),
    ("Condvar", HandleKind.CONDVAR),
    ("JoinHandle<", HandleKind.THREAD),
)

# Checked in order against the callee name without generic arguments
CALLEE_PATTERNS = [
    (re.compile(r"^(core|std)::panicking::|begin_panic|_failed$|^(core|std)::process::abort$"),
     CalleeKind.PANIC),
    (re.compile(r"\bMutex::new$"), CalleeKind.MUTEX_NEW),
    (re.compile(r"\bMutex::lock$"), CalleeKind.MUTEX_LOCK),
    (re.compile(r"\bthread::spawn$"), CalleeKind.THREAD_SPAWN),
    (re.compile(r"\bJoinHandle::join$"), CalleeKind.THREAD_JOIN),
    (re.compile(r"\bCondvar::new$"), CalleeKind.CONDVAR_NEW),
    (re.compile(r"\bCondvar::wait$"), CalleeKind.CONDVAR_WAIT),
    (re.compile(r"\bCondvar::notify_(one|all)$"), CalleeKind.CONDVAR_NOTIFY),
    (re.compile(r"\bArc::new$"), CalleeKind.ARC_NEW),
    (re.compile(r"Arc<.*Clone>::clone$"), CalleeKind.ARC_CLONE),
    (re.compile(r"Arc<.*Deref>::deref$"), CalleeKind.ARC_DEREF),
    (re.compile(r"\b(Result|Option)::(unwrap|expect)$"), CalleeKind.UNWRAP),
    (re.compile(r"^(core|std)::mem::drop$"), CalleeKind.DROP),
]


def parse_mir(text: str, max_fns: Optional[int] = None) -> list[MirFunction]:
    """
    Parse MIR text and return the list of MirFunction.
    Closure bodies are parsed like any function; spawn calls get their first
    argument resolved to the closure body that runs in the new thread.
    """
    headers = list(_FN_HEADER.finditer(text))
    if max_fns is not None:
        headers = headers[:max_fns]

    known_functions = {m.group(1) for m in headers}
    closure_bodies: dict[str, str] = {}
    for m in headers:
        params_end = _matching(text, m.end() - 1, "(", ")")
        closure_type = _CLOSURE_TYPE.search(text, m.end(), params_end)
        if closure_type:
            closure_bodies[closure_type.group(0)] = m.group(1)

    functions: list[MirFunction] = []
    for m in headers:
        fn_name = m.group(1)
        fn_start = text[: m.start()].count("\n") + 1
        header_end = text.find("\n", m.start())
        if header_end == -1:
            header_end = len(text)
        brace = text.rfind("{", m.start(), header_end)
        if brace == -1:
            raise ParseError("function header without body", function=fn_name, line=fn_start)
        end = _matching(text, brace, "{", "}")
        body = text[brace + 1: end]
        try:
            func = _parse_function_body(
                fn_name, body, fn_start, known_functions, closure_bodies
            )
        except ParseError:
            raise
        except Exception as e:
            raise ParseError(str(e), function=fn_name, line=fn_start) from e
        functions.append(func)
    return functions


def _matching(text: str, pos: int, open_ch: str, close_ch: str) -> int:
    """Index of the bracket closing the one at pos. String literals are skipped."""
    depth = 0
    i = pos
    in_string = False
    while i < len(text):
        ch = text[i]
        if in_string:
            if ch == "\\":
                i += 1
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == open_ch:
            depth += 1
        elif ch == close_ch:
            depth -= 1
            if depth == 0:
                return i
        i += 1
    raise ParseError(f"unbalanced {open_ch!r}")


def _parse_function_body(
    fn_name: str,
    body: str,
    fn_start_line: int,
    known_functions: set[str],
    closure_bodies: dict[str, str],
) -> MirFunction:
    """Parse function body: locals, captures, basic blocks."""
    func = MirFunction(name=fn_name)
    lines = body.split("\n")
    i = 0
    while i < len(lines):
        stripped = lines[i].strip()

        let_m = _LET.match(stripped)
        if let_m:
            func.locals[int(let_m.group(2))] = let_m.group(3).strip()
            i += 1
            continue

        debug_m = _DEBUG_CAPTURE.match(stripped)
        if debug_m:
            _add_capture(func, debug_m.group(1))
            i += 1
            continue

        bb_m = _BB.match(stripped)
        if not bb_m:
            i += 1
            continue

        bb_id = int(bb_m.group(1))
        line_start = fn_start_line + i + 1
        block_lines: list[str] = []
        j = i + 1
        while j < len(lines):
            bl = lines[j].strip()
            if bl == "}" or _BB.match(bl):
                break
            if bl and not bl.startswith("//"):
                block_lines.append(bl)
            j += 1
        i = j + 1 if j < len(lines) and lines[j].strip() == "}" else j

        if not block_lines:
            raise ParseError("no terminator found", fn_name, f"bb{bb_id}", line_start)
        try:
            terminator = _parse_terminator(block_lines[-1], known_functions, closure_bodies)
        except ValueError as e:
            raise ParseError(str(e), fn_name, f"bb{bb_id}", line_start) from None
        func.basic_blocks.append(
            BasicBlock(
                index=bb_id,
                statements=[_parse_statement(s) for s in block_lines[:-1]],
                terminator=terminator,
                is_cleanup=bb_m.group(2) is not None,
                line_start=line_start,
            )
        )

    func.basic_blocks.sort(key=lambda bb: bb.index)
    return func


def _add_capture(func: MirFunction, place_text: str) -> None:
    """debug data => (_1.0: std::sync::Arc<std::sync::Mutex<i32>>);"""
    location = parse_location(place_text)
    if location is None or location.local != 1 or not location.projection:
        return
    ty = _type_annotation(place_text)
    for marker, kind in _CAPTURE_KINDS:
        if marker in ty:
            func.captures.setdefault(kind, []).append(location)


def _type_annotation(place_text: str) -> str:
    text = place_text.strip()
    if text.startswith("(") and text.endswith(")"):
        parts = _split_top_level(text[1:-1], ":", maxsplit=1)
        if len(parts) == 2:
            return parts[1].strip()
    return ""


# Locations and operands

def parse_location(text: str) -> Optional[Location]:
    """
    Parse a MIR place: _1, _1.0, (*_2), (_1.0: T), ((*_2).0: T).
    Returns None for anything that is not a place.
    """
    text = text.strip()
    m = _LOCAL.match(text)
    if m:
        return Location(int(m.group(1)))
    if text.startswith("(") and text.endswith(")") and _matching(text, 0, "(", ")") == len(text) - 1:
        inner = text[1:-1].strip()
        if inner.startswith("*"):
            base = parse_location(inner[1:])
            return base.deref() if base is not None else None
        head = _split_top_level(inner, ":", maxsplit=1)[0]
        if head.strip() == inner:
            return None
        return parse_location(head)
    m = _FIELD.match(text)
    if m:
        base = parse_location(m.group(1))
        return base.field(int(m.group(2))) if base is not None else None
    return None


def parse_operand(text: str, known_functions: set[str] = frozenset()) -> Operand:
    text = text.strip()
    for kind in ("move", "copy"):
        if text.startswith(kind + " "):
            return Operand(kind=kind, location=parse_location(text[len(kind) + 1:]))
    if text.startswith("const "):
        constant = text[len("const "):].strip()
        name = _strip_generics(constant)
        return Operand(
            kind="const",
            constant=constant,
            function=name if name in known_functions else None,
        )
    location = parse_location(text)
    if location is not None:
        return Operand(kind="copy", location=location)
    return Operand(kind="const", constant=text)


def _split_top_level(text: str, sep: str = ",", maxsplit: int = -1) -> list[str]:
    """Split on sep outside (), [], {}, <> and string literals."""
    parts: list[str] = []
    depth = 0
    in_string = False
    current = ""
    i = 0
    while i < len(text):
        ch = text[i]
        if in_string:
            if ch == "\\" and i + 1 < len(text):
                current += ch
                i += 1
                ch = text[i]
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch in "([{" or (ch == "<" and not text.startswith("<-", i)):
            depth += 1
        elif ch in ")]}" or (ch == ">" and i > 0 and text[i - 1] != "-"):
            depth -= 1
        elif ch == sep and depth == 0 and (sep != ":" or not _is_path_colon(text, i)):
            if maxsplit < 0 or len(parts) < maxsplit:
                parts.append(current)
                current = ""
                i += 1
                continue
        current += ch
        i += 1
    parts.append(current)
    return parts


def _is_path_colon(text: str, i: int) -> bool:
    return text.startswith("::", i) or (i > 0 and text[i - 1] == ":")


def _strip_generics(name: str) -> str:
    """std::sync::Mutex::<i32>::new -> std::sync::Mutex::new"""
    result = ""
    i = 0
    while i < len(name):
        if name.startswith("::<", i):
            depth = 0
            j = i + 2
            while j < len(name):
                if name[j] == "<":
                    depth += 1
                elif name[j] == ">" and name[j - 1] != "-":
                    depth -= 1
                    if depth == 0:
                        break
                j += 1
            i = j + 1
            continue
        result += name[i]
        i += 1
    return result


# Statements

def _parse_statement(line: str) -> Statement:
    text = line.rstrip(";").strip()
    parts = _split_top_level(text, "=", maxsplit=1)
    if len(parts) != 2 or parts[1].startswith("="):
        return Nop(text=line)
    target = parse_location(parts[0])
    if target is None:
        return Nop(text=line)
    rvalue_text = parts[1].strip()

    for prefix in ("&mut ", "&raw mut ", "&raw const ", "&"):
        if rvalue_text.startswith(prefix):
            location = parse_location(rvalue_text[len(prefix):])
            if location is not None:
                return Assign(target=target, rvalue=Ref(location), text=line)
            return Nop(text=line)

    operand = parse_operand(rvalue_text)
    if operand.location is not None:
        return Assign(target=target, rvalue=Use(operand), text=line)

    m = _STRUCT_AGGREGATE.match(rvalue_text)
    if m:
        operands = []
        for field_text in _split_top_level(m.group(1)):
            if not field_text.strip():
                continue
            value = _split_top_level(field_text, ":", maxsplit=1)[-1]
            operands.append(parse_operand(value))
        return Assign(target=target, rvalue=Aggregate(operands), text=line)
    if rvalue_text.startswith("(") and rvalue_text.endswith(")"):
        operands = [parse_operand(p) for p in _split_top_level(rvalue_text[1:-1]) if p.strip()]
        return Assign(target=target, rvalue=Aggregate(operands), text=line)
    return Nop(text=line)


# Terminators

def _parse_targets(tail: str) -> tuple[Optional[int], Optional[int]]:
    """Return and unwind targets from '[return: bb1, unwind: bb2]', 'bb1', 'unwind continue'..."""
    ret = _RETURN_TARGET.search(tail) or _PLAIN_TARGET.match(tail)
    unwind = _UNWIND_TARGET.search(tail)
    return (
        int(ret.group(1)) if ret else None,
        int(unwind.group(1)) if unwind else None,
    )


def _parse_terminator(
    line: str,
    known_functions: set[str],
    closure_bodies: dict[str, str],
) -> Terminator:
    if line == "return;":
        return TerminatorReturn()
    if line == "resume;":
        return TerminatorUnwind()
    if line == "unreachable;":
        return TerminatorUnreachable()
    m = _GOTO.match(line)
    if m:
        return TerminatorGoto(target=int(m.group(1)))
    m = _SWITCH.match(line) or _FALSE_EDGE.match(line)
    if m:
        return TerminatorSwitch(targets=[int(x) for x in re.findall(r"bb(\d+)", m.group(1))])
    m = _ASSERT.match(line)
    if m:
        success, unwind = _parse_targets(m.group(1))
        if success is None:
            raise ValueError(f"assert without success target: {line}")
        return TerminatorSwitch(targets=[success] + ([unwind] if unwind is not None else []))
    m = _DROP.match(line)
    if m:
        location = parse_location(m.group(1))
        target, unwind = _parse_targets(m.group(2))
        if location is None or target is None:
            raise ValueError(f"unsupported drop: {line}")
        return TerminatorDrop(location=location, target=target, cleanup=unwind)
    if ") -> " in line:
        return _parse_call(line, known_functions, closure_bodies)
    raise ValueError(f"unrecognized terminator: {line}")


def _parse_call(
    line: str,
    known_functions: set[str],
    closure_bodies: dict[str, str],
) -> TerminatorCall:
    """_2 = std::sync::Mutex::<i32>::lock(move _3) -> [return: bb1, unwind: bb4];"""
    text = line.rstrip(";").strip()
    destination = None
    parts = _split_top_level(text, "=", maxsplit=1)
    if len(parts) == 2:
        destination = parse_location(parts[0])
        if destination is not None:
            text = parts[1].strip()

    arrow = text.rfind(") -> ")
    call_text, tail = text[: arrow + 1], text[arrow + len(") -> "):]
    depth = 0
    open_paren = -1
    for k in range(len(call_text) - 1, -1, -1):
        if call_text[k] == ")":
            depth += 1
        elif call_text[k] == "(":
            depth -= 1
            if depth == 0:
                open_paren = k
                break
    if open_paren <= 0:
        raise ValueError(f"unsupported call: {line}")

    raw_callee = call_text[:open_paren].strip()
    args = [
        parse_operand(a, known_functions)
        for a in _split_top_level(call_text[open_paren + 1: -1])
        if a.strip()
    ]
    closure_type = _CLOSURE_TYPE.search(raw_callee)
    if closure_type and args and closure_type.group(0) in closure_bodies:
        first = args[0]
        args[0] = Operand(
            kind=first.kind,
            location=first.location,
            constant=first.constant,
            function=closure_bodies[closure_type.group(0)],
        )
    target, unwind = _parse_targets(tail)
    return TerminatorCall(
        callee=_strip_generics(raw_callee),
        args=args,
        destination=destination,
        target=target,
        cleanup=unwind,
    )


class MirProgram:
    """CFG provider over parsed MIR functions."""

    def __init__(self, functions: list[MirFunction]):
        self.functions = {f.name: f for f in functions}

    @classmethod
    def from_text(cls, text: str, max_fns: Optional[int] = None) -> "MirProgram":
        return cls(parse_mir(text, max_fns=max_fns))

    def entry_function(self, name: str) -> Optional[str]:
        return name if name in self.functions else None

    def body(self, function: str) -> MirFunction:
        try:
            return self.functions[function]
        except KeyError:
            raise InvariantViolation(f"no MIR body for function {function}") from None

    def classify(self, callee: str) -> CalleeKind:
        for pattern, kind in CALLEE_PATTERNS:
            if pattern.search(callee):
                return kind
        if callee in self.functions:
            return CalleeKind.FUNCTION
        logger.debug("FOREIGN FUNCTION %s", callee)
        return CalleeKind.FOREIGN
