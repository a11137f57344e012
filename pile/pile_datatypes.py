"""
Defines the core data types for the PILE language runtime.

This module provides the value model (the closed set of value kinds a
program can hold on its stack), the captured instruction blocks used as
function values, the operand stack, the function register file, and the
error taxonomy raised by the interpreter.
"""

import enum
import collections.abc
from typing import List, Dict, Any, Optional, Tuple, Iterable


# =================================================================
# Errors
# =================================================================

class PileError(Exception):
    """Base class for every error that aborts a PILE program.

    The evaluator fills in `instruction` (the innermost failing
    instruction), `position` (index of the failing top-level instruction)
    and `frames` (the enclosing combinator instructions, innermost first)
    as the error propagates outward.
    """
    def __init__(self, message: str, loc: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self._loc = loc
        self.instruction: Optional['Instruction'] = None
        self.position: Optional[int] = None
        self.frames: List['Instruction'] = []

    @property
    def kind(self) -> str:
        return type(self).__name__

    @property
    def loc(self) -> Optional[Dict[str, Any]]:
        if self._loc is not None:
            return self._loc
        return getattr(self.instruction, 'loc', None)


class StackUnderflow(PileError):
    """An instruction required operands that were not present."""


class TypeMismatch(PileError):
    """An operand had the wrong value kind for the operation."""


class UndefinedRegister(PileError):
    """A function register was referenced before being defined."""
    def __init__(self, register: int):
        super().__init__(f"function register {register} is not defined")
        self.register = register


class ArityMismatch(PileError):
    """A block invocation did not leave exactly one value on its stack."""


class HostFailure(PileError):
    """The host bridge rejected a `query` or `info` request."""


class DivisionByZero(PileError):
    """A `/` or `%` had a zero divisor."""


class RecursionLimit(PileError):
    """Block invocations nested deeper than the evaluator allows."""


class ParseError(PileError):
    """Malformed script text or instruction stream."""


# =================================================================
# Value model
# =================================================================

class ValueKind(enum.Enum):
    NULL = "null"
    BOOL = "bool"
    NUMBER = "number"
    STRING = "string"
    LIST = "list"
    HANDLE = "handle"
    BLOCK = "block"


class HostHandle:
    """An opaque reference to a host-owned object.

    The interpreter never looks inside; it only hands `obj` back to the
    host bridge. Two handles are equal when they wrap the same object.
    """
    __slots__ = ("obj",)

    def __init__(self, obj: Any):
        self.obj = obj

    def __eq__(self, other):
        if not isinstance(other, HostHandle):
            return NotImplemented
        return self.obj is other.obj

    def __hash__(self):
        return id(self.obj)

    def __repr__(self) -> str:
        return f"<handle {type(self.obj).__name__}@{id(self.obj):x}>"


class Instruction:
    """One decoded instruction.

    `op` is the instruction word (e.g. 'push', 'map', '+'). `args` carries
    the inline operands: the literal for `push`, `(register, block)` for
    `iload`, and nothing for everything else. `loc` holds the source
    position of the instruction word when it was parsed from text.
    """
    __slots__ = ("op", "args", "loc")

    def __init__(self, op: str, args: Tuple[Any, ...] = (), loc: Optional[Dict[str, Any]] = None):
        self.op = op
        self.args = tuple(args)
        self.loc = loc

    def __eq__(self, other):
        if not isinstance(other, Instruction):
            return NotImplemented
        # Source position is not part of an instruction's identity.
        return self.op == other.op and _args_equal(self.args, other.args)

    def __hash__(self):
        return hash(self.op)

    def __repr__(self) -> str:
        from pile.pile_printer import Printer
        return Printer().pformat(self)


class Block:
    """A function value: an immutable captured instruction sequence.

    Blocks close over nothing. When invoked they read only from the fresh
    stack their caller prepares.
    """
    __slots__ = ("instructions",)

    def __init__(self, instructions: Iterable[Instruction]):
        self.instructions: Tuple[Instruction, ...] = tuple(instructions)

    def __len__(self) -> int:
        return len(self.instructions)

    def __iter__(self):
        return iter(self.instructions)

    def __eq__(self, other):
        if not isinstance(other, Block):
            return NotImplemented
        return self.instructions == other.instructions

    def __hash__(self):
        return hash(self.instructions)

    def __repr__(self) -> str:
        from pile.pile_printer import Printer
        return Printer().pformat(self)


class Code(collections.abc.MutableSequence):
    """A decoded top-level program: an ordered list of Instructions."""
    def __init__(self, instructions: Iterable[Instruction] = ()):
        self.nodes = list(instructions)

    def __getitem__(self, index):
        return self.nodes[index]

    def __setitem__(self, index, value):
        self.nodes[index] = value

    def __delitem__(self, index):
        del self.nodes[index]

    def __len__(self) -> int:
        return len(self.nodes)

    def insert(self, index, value):
        self.nodes.insert(index, value)

    def __eq__(self, other):
        if isinstance(other, Code):
            return self.nodes == other.nodes
        if isinstance(other, list):
            return self.nodes == other
        return NotImplemented

    def __repr__(self) -> str:
        from pile.pile_printer import Printer
        return Printer().pformat_program(self)


def kind_of(value: Any) -> ValueKind:
    """Classifies a runtime value. Raises TypeMismatch for foreign objects."""
    # bool is a subclass of int, so check it before numbers
    if value is None:
        return ValueKind.NULL
    if isinstance(value, bool):
        return ValueKind.BOOL
    if isinstance(value, (int, float)):
        return ValueKind.NUMBER
    if isinstance(value, str):
        return ValueKind.STRING
    if isinstance(value, list):
        return ValueKind.LIST
    if isinstance(value, HostHandle):
        return ValueKind.HANDLE
    if isinstance(value, Block):
        return ValueKind.BLOCK
    raise TypeMismatch(f"not a PILE value: {type(value).__name__}")


def values_equal(a: Any, b: Any) -> bool:
    """Structural equality across value kinds (1 and true are not equal)."""
    ka, kb = kind_of(a), kind_of(b)
    if ka is not kb:
        return False
    match ka:
        case ValueKind.LIST:
            return len(a) == len(b) and all(values_equal(x, y) for x, y in zip(a, b))
        case ValueKind.NUMBER:
            return float(a) == float(b)
        case ValueKind.NULL:
            return True
        case _:
            return a == b


def _args_equal(a: Tuple[Any, ...], b: Tuple[Any, ...]) -> bool:
    if len(a) != len(b):
        return False
    for x, y in zip(a, b):
        if isinstance(x, Block) or isinstance(y, Block):
            if x != y:
                return False
        elif not values_equal(x, y):
            return False
    return True


def from_host(value: Any) -> Any:
    """Normalises a value returned by the host into the PILE value model.

    Ints become floats, tuples become lists, and anything that is not a
    PILE value is wrapped in a HostHandle.
    """
    if value is None or isinstance(value, (bool, str, HostHandle, Block)):
        return value
    if isinstance(value, (int, float)):
        try:
            return float(value)
        except OverflowError as e:
            raise HostFailure("host returned a number too large to represent") from e
    if isinstance(value, (list, tuple)):
        return [from_host(v) for v in value]
    return HostHandle(value)


def as_register(value: Any) -> int:
    """Interprets a stack value as a function register index."""
    if kind_of(value) is not ValueKind.NUMBER:
        raise TypeMismatch(f"register index must be a number, got {kind_of(value).value}")
    f = float(value)
    if f < 0 or not f.is_integer():
        raise TypeMismatch(f"register index must be a non-negative integer, got {value}")
    return int(f)


# =================================================================
# Operand stack and register file
# =================================================================

class Stack:
    """A last-in-first-out sequence of PILE values."""
    def __init__(self, values: Optional[Iterable[Any]] = None):
        self._items: List[Any] = list(values or [])

    def push(self, value: Any):
        self._items.append(value)

    def pop(self) -> Any:
        if not self._items:
            raise StackUnderflow("pop from an empty stack")
        return self._items.pop()

    def peek(self) -> Any:
        if not self._items:
            raise StackUnderflow("peek at an empty stack")
        return self._items[-1]

    def pop_many(self, n: int) -> List[Any]:
        """Removes the top n values and returns them bottom-to-top.

        Raises StackUnderflow without touching the stack if fewer than n
        values are present.
        """
        if n == 0:
            return []
        if len(self._items) < n:
            raise StackUnderflow(f"needs {n} operand(s), stack has {len(self._items)}")
        taken = self._items[-n:]
        del self._items[-n:]
        return taken

    def extend(self, values: Iterable[Any]):
        self._items.extend(values)

    def snapshot(self) -> List[Any]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(self._items)

    def __repr__(self) -> str:
        from pile.pile_printer import Printer
        p = Printer()
        return "<stack " + " ".join(p.pformat(v) for v in self._items) + ">"


class RegisterFile:
    """A flat mapping of register index to Block."""
    def __init__(self):
        self._slots: Dict[int, Block] = {}

    def define(self, register: int, block: Block):
        if not isinstance(block, Block):
            raise TypeMismatch(f"register {register} can only hold a block")
        self._slots[register] = block

    def resolve(self, register: int) -> Block:
        try:
            return self._slots[register]
        except KeyError:
            raise UndefinedRegister(register) from None

    def __contains__(self, register: int) -> bool:
        return register in self._slots

    def __len__(self) -> int:
        return len(self._slots)


# =================================================================
# Instruction set
# =================================================================

# Input arity of every instruction word. The evaluator pops exactly this
# many operands before dispatching, so arity is enforced uniformly.
INSTRUCTION_ARITY: Dict[str, int] = {
    # inline operands, nothing popped
    'push': 0,
    'iload': 0,
    # stack shuffling
    'dup': 1,
    'swap': 2,
    'drop': 1,
    # registers and invocation
    'load': 1,
    'call': 2,
    'map': 2,
    'filter': 2,
    'reduce': 3,
    # host bridge
    'query': 1,
    'info': 2,
    # conversions
    'tonum': 1,
    'tostr': 1,
    # arithmetic
    '+': 2,
    '-': 2,
    '*': 2,
    '/': 2,
    '%': 2,
    # comparison
    '=': 2,
    '!=': 2,
    '>': 2,
    '>=': 2,
    '<': 2,
    '<=': 2,
    # logic
    'and': 2,
    'or': 2,
    'not': 1,
    # strings and lists
    'concat': 2,
    'match': 2,
    'split': 2,
    'reverse': 1,
    'iota': 1,
}

OPCODES = frozenset(INSTRUCTION_ARITY)
