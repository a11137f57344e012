"""
A pretty-printer for PILE values and programs.
"""
from pile.pile_datatypes import Block, Instruction, HostHandle, Code, Stack


def format_number(n) -> str:
    """Formats a number the way scripts write it: 3 not 3.0."""
    f = float(n)
    if f.is_integer() and abs(f) < 1e16:
        return str(int(f))
    return repr(f)


class Printer:
    """Formats PILE objects into readable, valid PILE source strings."""

    def __init__(self, indent_width=2):
        self._indent_char = " " * indent_width
        self._handlers = self._create_handlers()

    def pformat(self, obj, level=0):
        """Public entry point to format an object."""
        handler = self._get_handler(obj)
        return handler(obj, level)

    def pformat_program(self, code, level=0):
        """Formats a decoded program, one instruction per line."""
        indent = self._indent_char * level
        return "\n".join(indent + self.pformat(instr, level) for instr in code)

    def _get_handler(self, obj):
        """Dispatcher to find the correct formatting method."""
        obj_type = type(obj)
        if obj_type in self._handlers:
            return self._handlers[obj_type]
        if isinstance(obj, Code): return lambda o, l: self.pformat_program(o, l)
        if isinstance(obj, list): return self._pformat_list
        # Default to Python's repr for unknown types
        return lambda o, l: repr(o)

    def _create_handlers(self):
        return {
            str: self._pformat_str,
            int: self._pformat_number,
            float: self._pformat_number,
            bool: self._pformat_bool,
            type(None): self._pformat_none,
            list: self._pformat_list,
            Block: self._pformat_block,
            Instruction: self._pformat_instruction,
            HostHandle: self._pformat_handle,
            Stack: self._pformat_stack,
        }

    def _pformat_number(self, obj, level):
        return format_number(obj)

    def _pformat_str(self, obj, level):
        # Strings have no escape syntax
        return f'"{obj}"'

    def _pformat_bool(self, obj, level):
        return 'true' if obj else 'false'

    def _pformat_none(self, obj, level):
        return 'nil'

    def _pformat_list(self, obj, level):
        return "[" + " ".join(self.pformat(v, level) for v in obj) + "]"

    def _pformat_handle(self, obj, level):
        return repr(obj)

    def _pformat_stack(self, obj, level):
        return self._pformat_list(obj.snapshot(), level)

    def _pformat_block(self, obj, level):
        if not obj.instructions:
            return "{}"
        body = [self.pformat(instr, level + 1) for instr in obj.instructions]
        flat = "{" + " ".join(body) + "}"
        if len(flat) <= 60 and '\n' not in flat:
            return flat
        indent = self._indent_char * (level + 1)
        closing = self._indent_char * level
        return "{\n" + "\n".join(indent + line for line in body) + "\n" + closing + "}"

    def _pformat_instruction(self, obj, level):
        match obj.op:
            case 'push':
                return f"push {self.pformat(obj.args[0], level)}"
            case 'iload':
                register, block = obj.args
                return f"iload {register} {self.pformat(block, level)}"
        return obj.op
