from pile.pile_runtime import ScriptRunner, ExecutionResult, PileHost, MappingHost, StdLib
from pile.pile_interpreter import Evaluator
from pile.pile_datatypes import (
    Block, Instruction, Code, HostHandle, Stack, RegisterFile, ValueKind, kind_of,
    PileError, StackUnderflow, TypeMismatch, UndefinedRegister, ArityMismatch,
    HostFailure, DivisionByZero, RecursionLimit, ParseError
)

__all__ = [
    "ScriptRunner", "ExecutionResult", "PileHost", "MappingHost", "StdLib", "Evaluator",
    "Block", "Instruction", "Code", "HostHandle", "Stack", "RegisterFile", "ValueKind", "kind_of",
    "PileError", "StackUnderflow", "TypeMismatch", "UndefinedRegister", "ArityMismatch",
    "HostFailure", "DivisionByZero", "RecursionLimit", "ParseError",
]
