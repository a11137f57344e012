"""
The core PILE interpreter: the instruction executor and combinator engine.
"""
import os
import sys
from typing import Any, List, Optional, Dict, Callable

from pile.pile_datatypes import (
    Stack, RegisterFile, Block, Instruction,
    PileError, TypeMismatch, ArityMismatch, HostFailure, RecursionLimit,
    ValueKind, kind_of, from_host, as_register, INSTRUCTION_ARITY
)


class Evaluator:
    """The PILE execution engine.

    One Evaluator owns one operand stack and one function register file,
    so independent programs never share state. Value-level primitives
    (arithmetic, comparison, `tonum`, ...) are registered into
    `primitives` by StdLib; stack, register, host and combinator
    instructions are handled here.
    """
    # Deepest nesting of block invocations before a script is stopped
    max_depth = 100

    def __init__(self, host_object: Optional[Any] = None):
        self.stack = Stack()
        self.registers = RegisterFile()
        self.host_object = host_object
        self.primitives: Dict[str, Callable[..., Any]] = {}
        self.side_effects: List[Dict[str, Any]] = []
        # Enclosing combinator instructions of the block currently running
        self.call_stack: List[Instruction] = []
        self.current_instruction: Optional[Instruction] = None
        self.trace: bool = False
        self._handlers = {
            'push': self._push,
            'iload': self._iload,
            'dup': self._dup,
            'swap': self._swap,
            'drop': self._drop,
            'load': self._load,
            'call': self._call,
            'map': self._map,
            'filter': self._filter,
            'reduce': self._reduce,
            'query': self._query,
            'info': self._info,
        }

    def _dbg(self, *parts):
        if os.environ.get("PILE_DEBUG"):
            print("[DBG]", *parts, file=sys.stderr)

    def _emit(self, topic: str, message: str):
        self.side_effects.append({'topics': [topic], 'message': message})

    # -----------------------------------------------------------------
    # Execution
    # -----------------------------------------------------------------

    def run(self, instructions) -> List[Any]:
        """Executes a top-level program against the shared stack.

        Returns the final stack contents, bottom to top.
        """
        for position, instr in enumerate(instructions):
            try:
                self.step(instr, self.stack)
            except PileError as e:
                if e.position is None:
                    e.position = position
                raise
        return self.stack.snapshot()

    def execute(self, instructions, stack: Stack):
        """Executes instructions against an arbitrary stack."""
        for instr in instructions:
            self.step(instr, stack)

    def step(self, instr: Instruction, stack: Stack):
        """Executes one instruction.

        Operands are popped up front according to the instruction's arity.
        If the instruction fails they are pushed back, so a failed
        instruction never leaves the stack half-consumed.
        """
        self.current_instruction = instr
        arity = INSTRUCTION_ARITY.get(instr.op)
        if arity is None:
            raise self._located(PileError(f"unknown instruction `{instr.op}`"), instr)
        try:
            operands = stack.pop_many(arity)
        except PileError as e:
            raise self._located(e, instr)
        try:
            results = self._dispatch(instr, operands)
        except PileError as e:
            stack.extend(operands)
            raise self._located(e, instr)
        stack.extend(results)
        if self.trace:
            indent = "  " * len(self.call_stack)
            self._emit('trace', f"{indent}{instr!r} -> {stack!r}")
        self._dbg("STEP", instr.op, len(stack))

    def _located(self, e: PileError, instr: Instruction) -> PileError:
        if e.instruction is None:
            e.instruction = instr
        return e

    def _dispatch(self, instr: Instruction, operands: List[Any]) -> List[Any]:
        handler = self._handlers.get(instr.op)
        if handler is not None:
            return handler(instr, *operands)
        primitive = self.primitives.get(instr.op)
        if primitive is None:
            raise PileError(f"instruction `{instr.op}` is not available")
        return [primitive(*operands)]

    # -----------------------------------------------------------------
    # Combinator engine
    # -----------------------------------------------------------------

    def resolve_block(self, ref: Any) -> Block:
        """A combinator's function operand: a register index or a Block."""
        if isinstance(ref, Block):
            return ref
        return self.registers.resolve(as_register(ref))

    def invoke(self, block: Block, *args: Any) -> Any:
        """Runs a block on a fresh isolated stack and returns its one result."""
        if len(self.call_stack) >= self.max_depth:
            raise RecursionLimit(f"blocks nested more than {self.max_depth} deep")
        sub_stack = Stack(args)
        self.call_stack.append(self.current_instruction)
        try:
            self.execute(block.instructions, sub_stack)
        except PileError as e:
            if self.call_stack[-1] is not None:
                e.frames.append(self.call_stack[-1])
            raise
        finally:
            self.current_instruction = self.call_stack.pop()
        if len(sub_stack) != 1:
            raise ArityMismatch(
                f"block given {len(args)} argument(s) must leave exactly 1 value, left {len(sub_stack)}"
            )
        return sub_stack.pop()

    def _require_list(self, value: Any, op: str) -> List[Any]:
        if kind_of(value) is not ValueKind.LIST:
            raise TypeMismatch(f"{op} expects a list, got {kind_of(value).value}")
        return value

    def _map(self, instr, items, ref):
        items = self._require_list(items, 'map')
        block = self.resolve_block(ref)
        return [[self.invoke(block, item) for item in items]]

    def _filter(self, instr, items, ref):
        items = self._require_list(items, 'filter')
        block = self.resolve_block(ref)
        kept = []
        for item in items:
            keep = self.invoke(block, item)
            if kind_of(keep) is not ValueKind.BOOL:
                raise TypeMismatch(f"filter block must return a bool, got {kind_of(keep).value}")
            if keep:
                kept.append(item)
        return [kept]

    def _reduce(self, instr, items, ref, init):
        items = self._require_list(items, 'reduce')
        block = self.resolve_block(ref)
        acc = init
        for item in items:
            acc = self.invoke(block, acc, item)
        return [acc]

    def _call(self, instr, arg, ref):
        block = self.resolve_block(ref)
        return [self.invoke(block, arg)]

    # -----------------------------------------------------------------
    # Stack and register instructions
    # -----------------------------------------------------------------

    def _push(self, instr):
        return [instr.args[0]]

    def _iload(self, instr):
        register, block = instr.args
        self.registers.define(register, block)
        return []

    def _load(self, instr, ref):
        return [self.registers.resolve(as_register(ref))]

    def _dup(self, instr, a):
        return [a, a]

    def _swap(self, instr, a, b):
        return [b, a]

    def _drop(self, instr, a):
        return []

    # -----------------------------------------------------------------
    # Host bridge
    # -----------------------------------------------------------------

    def _host(self, op: str):
        if self.host_object is None:
            raise HostFailure(f"{op}: no host bridge installed")
        return self.host_object

    def _query(self, instr, name):
        if kind_of(name) is not ValueKind.STRING:
            raise TypeMismatch(f"query expects a string name, got {kind_of(name).value}")
        host = self._host('query')
        try:
            result = host.query(name)
        except Exception as e:
            raise HostFailure(f"query {name!r} failed: {e}") from e
        if not isinstance(result, (list, tuple)):
            raise HostFailure(f"query {name!r} returned {type(result).__name__}, not a list")
        return [from_host(list(result))]

    def _info(self, instr, handle, name):
        if kind_of(handle) is not ValueKind.HANDLE:
            raise TypeMismatch(f"info expects a host handle, got {kind_of(handle).value}")
        if kind_of(name) is not ValueKind.STRING:
            raise TypeMismatch(f"info expects a string name, got {kind_of(name).value}")
        host = self._host('info')
        try:
            value = host.info(handle.obj, name)
        except Exception as e:
            raise HostFailure(f"info {name!r} failed: {e}") from e
        return [from_host(value)]
