# pile_runtime.py

import re
import math
import inspect
import collections.abc
from pathlib import Path
from typing import Any, List, Optional, Literal, Dict
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from koine import Parser
from pile.pile_transformer import PileTransformer
from pile.pile_interpreter import Evaluator
from pile.pile_printer import Printer, format_number
from pile.pile_datatypes import (
    Code, PileError, ParseError, TypeMismatch, DivisionByZero,
    ValueKind, kind_of, values_equal, OPCODES
)

# ===================================================================
# 1. The Host Bridge
# ===================================================================


class PileHost(ABC):
    """The required base class for the host bridge a PILE embedder supplies.

    The interpreter never inspects host objects. `query` hands out
    collections of them and `info` reads attributes back off them. Any
    exception raised here aborts the script with a HostFailure.
    """

    @abstractmethod
    def query(self, name: str) -> list:
        """Returns the named collection as a list of host objects or values."""
        raise NotImplementedError

    @abstractmethod
    def info(self, obj: Any, name: str) -> Any:
        """Returns the named attribute of one host object."""
        raise NotImplementedError


class MappingHost(PileHost):
    """A host over plain data: collection name -> list of records.

    Records may be mappings (attributes are keys) or arbitrary objects
    (attributes are public Python attributes).
    """
    def __init__(self, collections: Optional[collections.abc.Mapping] = None):
        self.collections: Dict[str, list] = dict(collections or {})

    def query(self, name: str) -> list:
        if name not in self.collections:
            raise LookupError(f"unknown collection {name!r}")
        return list(self.collections[name])

    def info(self, obj: Any, name: str) -> Any:
        if isinstance(obj, collections.abc.Mapping):
            if name not in obj:
                raise LookupError(f"no attribute {name!r}")
            return obj[name]
        if name.startswith('_') or not hasattr(obj, name):
            raise LookupError(f"no attribute {name!r}")
        return getattr(obj, name)


# ===================================================================
# 2. The Standard Library
# ===================================================================

# Instruction words that are not valid Python identifiers.
OPERATOR_NAMES = {
    '+': 'add', '-': 'sub', '*': 'mul', '/': 'div', '%': 'mod',
    '=': 'eq', '!=': 'neq', '>': 'gt', '>=': 'gte', '<': 'lt', '<=': 'lte',
    'and': 'and', 'or': 'or', 'not': 'not',
}

_NUMBER_RE = re.compile(r'[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?')


def _kind(value) -> str:
    return kind_of(value).value


class StdLib:
    """Contains Python implementations of the value-level PILE instructions.

    Each method `_name` backs the instruction `name`, or the operator that
    OPERATOR_NAMES maps to `name`. Instantiating StdLib registers every
    primitive into the evaluator it is given.
    """
    def __init__(self, evaluator: Evaluator):
        self.evaluator = evaluator
        aliases = {v: k for k, v in OPERATOR_NAMES.items()}
        for name, member in inspect.getmembers(self):
            if not (name.startswith('_') and not name.startswith('__') and callable(member)):
                continue
            base = name[1:].rstrip('_')
            word = aliases.get(base, base)
            if word in OPCODES:
                evaluator.primitives[word] = member

    def _numbers(self, op: str, a, b):
        if kind_of(a) is not ValueKind.NUMBER or kind_of(b) is not ValueKind.NUMBER:
            raise TypeMismatch(f"`{op}` expects two numbers, got {_kind(a)} and {_kind(b)}")
        return float(a), float(b)

    def _ordered(self, op: str, a, b):
        ka, kb = kind_of(a), kind_of(b)
        if ka is not kb or ka not in (ValueKind.NUMBER, ValueKind.STRING):
            raise TypeMismatch(f"`{op}` compares two numbers or two strings, got {ka.value} and {kb.value}")
        return a, b

    def _bools(self, op: str, *values):
        for v in values:
            if kind_of(v) is not ValueKind.BOOL:
                raise TypeMismatch(f"`{op}` expects bools, got {_kind(v)}")
        return values

    # --- Math ---
    def _add(self, a, b):
        x, y = self._numbers('+', a, b)
        return x + y

    def _sub(self, a, b):
        x, y = self._numbers('-', a, b)
        return x - y

    def _mul(self, a, b):
        x, y = self._numbers('*', a, b)
        return x * y

    def _div(self, a, b):
        x, y = self._numbers('/', a, b)
        if y == 0:
            raise DivisionByZero("division by zero")
        return x / y

    def _mod(self, a, b):
        x, y = self._numbers('%', a, b)
        if y == 0:
            raise DivisionByZero("modulo by zero")
        # Remainder takes the sign of the dividend
        return math.fmod(x, y)

    # --- Comparison and Logic ---
    def _eq(self, a, b): return values_equal(a, b)
    def _neq(self, a, b): return not values_equal(a, b)

    def _gt(self, a, b):
        x, y = self._ordered('>', a, b)
        return x > y

    def _gte(self, a, b):
        x, y = self._ordered('>=', a, b)
        return x >= y

    def _lt(self, a, b):
        x, y = self._ordered('<', a, b)
        return x < y

    def _lte(self, a, b):
        x, y = self._ordered('<=', a, b)
        return x <= y

    def _and_(self, a, b):
        x, y = self._bools('and', a, b)
        return x and y

    def _or_(self, a, b):
        x, y = self._bools('or', a, b)
        return x or y

    def _not_(self, a):
        (x,) = self._bools('not', a)
        return not x

    # --- Conversion ---
    def _tonum(self, value):
        """Parses a value to a number. Never raises: failures yield nil."""
        try:
            kind = kind_of(value)
        except TypeMismatch:
            return None
        match kind:
            case ValueKind.NUMBER:
                return float(value)
            case ValueKind.STRING:
                if not _NUMBER_RE.fullmatch(value):
                    return None
                number = float(value)
                # "1e400" overflows to inf
                return number if math.isfinite(number) else None
            case _:
                return None

    def _tostr(self, value):
        match kind_of(value):
            case ValueKind.STRING:
                return value
            case ValueKind.NUMBER:
                return format_number(value)
            case _:
                return Printer().pformat(value)

    # --- String and List Utilities ---
    def _concat(self, a, b):
        ka, kb = kind_of(a), kind_of(b)
        if ka is kb and ka in (ValueKind.STRING, ValueKind.LIST):
            return a + b
        raise TypeMismatch(f"`concat` joins two strings or two lists, got {ka.value} and {kb.value}")

    def _match(self, string, pattern):
        if kind_of(string) is not ValueKind.STRING or kind_of(pattern) is not ValueKind.STRING:
            raise TypeMismatch(f"`match` expects a string and a pattern, got {_kind(string)} and {_kind(pattern)}")
        try:
            return re.search(pattern, string) is not None
        except re.error as e:
            raise TypeMismatch(f"`match` got an invalid pattern {pattern!r}: {e}") from e

    def _split(self, string, separator):
        if kind_of(string) is not ValueKind.STRING or kind_of(separator) is not ValueKind.STRING:
            raise TypeMismatch(f"`split` expects two strings, got {_kind(string)} and {_kind(separator)}")
        if not separator:
            raise TypeMismatch("`split` separator must not be empty")
        return string.split(separator)

    def _reverse(self, items):
        if kind_of(items) is not ValueKind.LIST:
            raise TypeMismatch(f"`reverse` expects a list, got {_kind(items)}")
        return list(reversed(items))

    def _iota(self, n):
        if kind_of(n) is not ValueKind.NUMBER or n < 0 or not float(n).is_integer():
            raise TypeMismatch(f"`iota` expects a non-negative integer, got {Printer().pformat(n)}")
        return [float(i) for i in range(int(n))]


# ===================================================================
# 3. Script Execution
# ===================================================================

Token = Dict[str, Any]

@dataclass
class ExecutionResult:
    """The structured result of a script execution."""
    status: Literal['success', 'error']
    value: List[Any] = field(default_factory=list)
    error_message: Optional[str] = None
    error_token: Optional[Token] = None
    error: Optional[PileError] = None
    side_effects: List[Dict] = field(default_factory=list)

    def format_error(self) -> str:
        """Prefixes the error message with where it happened: line, column
        and, for runtime errors, the index of the failing top-level instruction."""
        if self.status != 'error':
            return ""
        msg = str(self.error_message or "Unknown error")
        token = self.error_token or {}
        if token.get('line') is None:
            return msg
        where = [f"line {token['line']}"]
        if token.get('col') is not None:
            where.append(f"col {token['col']}")
        if token.get('position') is not None:
            where.append(f"instruction {token['position']}")
        return f"Error on {', '.join(where)}: {msg}"


class ScriptRunner:
    """Parses, transforms, and executes PILE code."""

    _parser: Optional[Parser] = None
    _transformer: Optional[PileTransformer] = None

    def __init__(self, host_object: Optional[PileHost] = None, trace: bool = False):
        self.host_object = host_object
        self.trace = trace

        if ScriptRunner._parser is None:
            grammar_path = Path(__file__).parent / "grammar" / "pile_grammar.yaml"
            ScriptRunner._parser = Parser.from_file(str(grammar_path))

        if ScriptRunner._transformer is None:
            ScriptRunner._transformer = PileTransformer()

        self.parser = ScriptRunner._parser
        self.transformer = ScriptRunner._transformer
        # Evaluator of the most recent run, kept for inspection
        self.evaluator: Optional[Evaluator] = None

    def new_evaluator(self) -> Evaluator:
        """Builds a fresh evaluator (empty stack and registers) with the stdlib loaded."""
        evaluator = Evaluator(self.host_object)
        evaluator.trace = self.trace
        StdLib(evaluator)
        return evaluator

    def parse(self, source_code: str) -> Code:
        """Parses and decodes script text. Raises ParseError."""
        try:
            parse_out = self.parser.parse(source_code)
        except Exception as e:
            raise ParseError(f"parse failed: {e}") from e

        if isinstance(parse_out, dict) and 'status' in parse_out:
            if parse_out.get('status') != 'success':
                node = parse_out.get('error_node') or parse_out
                base = parse_out.get('error_message') or parse_out.get('message') or "parse failed"
                loc = None
                if node.get('line') is not None:
                    loc = {'line': node.get('line'), 'col': node.get('col')}
                raise ParseError(str(base), loc)
            ast_node = parse_out.get('ast')
            if ast_node is None:
                raise ParseError("missing AST in parser result")
        else:
            ast_node = parse_out

        return self.transformer.transform(ast_node)

    def handle_script(self, source_code: str) -> ExecutionResult:
        """The main entry point to execute a script."""
        evaluator = self.new_evaluator()
        self.evaluator = evaluator
        try:
            code = self.parse(source_code)
            value = evaluator.run(code)
        except PileError as e:
            msg = self._format_error(e, source_code)
            evaluator.side_effects.append({'topics': ['stderr'], 'message': msg})
            return ExecutionResult(
                status='error',
                error_message=msg,
                error_token=self._error_token(e),
                error=e,
                side_effects=evaluator.side_effects
            )
        return ExecutionResult(
            status='success',
            value=value,
            side_effects=evaluator.side_effects
        )

    def _error_token(self, e: PileError) -> Optional[Token]:
        loc = e.loc
        if not loc:
            return None
        return {'line': loc.get('line'), 'col': loc.get('col'), 'position': e.position}

    def _format_error(self, e: PileError, source: str) -> str:
        msg = f"{e.kind}: {e.message}"
        if e.instruction is not None:
            msg += f"\nIn {Printer().pformat(e.instruction)}"
        loc = e.loc
        if loc and loc.get('line') is not None:
            line = loc.get('line'); col = loc.get('col')
            context = self._source_context(source, line, col)
            msg = f"{msg}\n(line {line}, col {col})"
            if context:
                msg += "\n" + context
        if e.frames:
            # frames are innermost first; print outermost first
            frames = [f"({f.op})" for f in reversed(e.frames)]
            if len(frames) > 8:
                frames = frames[:3] + [f"... {len(frames) - 6} more ..."] + frames[-3:]
            msg += f"\nPILE stacktrace: {' '.join(frames)} ({e.instruction.op})"
        return msg

    def _source_context(self, source: str, line: int, col: Optional[int], radius: int = 2) -> str:
        lines = source.splitlines()
        if not 1 <= line <= len(lines):
            return ""
        first = max(1, line - radius)
        last = min(len(lines), line + radius)
        gutter = len(str(last))
        out = []
        for number, text in enumerate(lines[first - 1:last], start=first):
            marker = ">" if number == line else " "
            out.append(f"{marker} {number:>{gutter}} | {text}")
            if number == line and col:
                out.append(f"  {'':>{gutter}} | {'^':>{col}}")
        return "\n".join(out)
