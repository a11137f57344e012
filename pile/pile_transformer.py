"""
Transforms the raw parser AST into a decoded PILE program.

The koine grammar only recognises words, literals, blocks and list
literals. This module turns that tree into tokens, then decodes the token
stream into Instructions: `push` takes the following literal as its
operand and `iload` takes a register number and a block.
"""

from typing import Any, List, Optional, Dict

from pile.pile_datatypes import (
    Code, Block, Instruction, ParseError, OPCODES
)

CONSTANTS = {'nil': None, 'true': True, 'false': False}


class Word:
    """A bare word: an instruction name or a constant such as `nil`."""
    def __init__(self, text: str, loc: Optional[Dict[str, Any]] = None):
        self.text = text
        self.loc = loc

    def __repr__(self) -> str:
        return f"Word({self.text!r})"

    def __eq__(self, other):
        return isinstance(other, Word) and self.text == other.text


class Literal:
    """A string or number literal."""
    def __init__(self, value: Any, loc: Optional[Dict[str, Any]] = None):
        self.value = value
        self.loc = loc

    def __repr__(self) -> str:
        return f"Literal({self.value!r})"

    def __eq__(self, other):
        return isinstance(other, Literal) and self.value == other.value


class BlockLiteral:
    """The tokens between `{` and `}`, not yet decoded."""
    def __init__(self, items: List[Any], loc: Optional[Dict[str, Any]] = None):
        self.items = list(items)
        self.loc = loc

    def __repr__(self) -> str:
        return f"BlockLiteral({self.items!r})"

    def __eq__(self, other):
        return isinstance(other, BlockLiteral) and self.items == other.items


class ListLiteral:
    """The tokens between `[` and `]`."""
    def __init__(self, items: List[Any], loc: Optional[Dict[str, Any]] = None):
        self.items = list(items)
        self.loc = loc

    def __repr__(self) -> str:
        return f"ListLiteral({self.items!r})"

    def __eq__(self, other):
        return isinstance(other, ListLiteral) and self.items == other.items


def _describe(token) -> str:
    match token:
        case Word():
            return f"`{token.text}`"
        case Literal() if isinstance(token.value, str):
            return f'"{token.value}"'
        case Literal():
            return f"`{token.value:g}`"
        case BlockLiteral():
            return "block"
        case ListLiteral():
            return "list literal"
        case None:
            return "end of input"
    return repr(token)


class PileTransformer:
    def _loc(self, node: dict) -> Optional[Dict[str, Any]]:
        line = node.get('line'); col = node.get('col')
        if line is None or col is None:
            return None
        return {'line': line, 'col': col, 'tag': node.get('tag'), 'text': node.get('text')}

    def _children(self, node: dict) -> List[Any]:
        children = node.get('children', [])
        if isinstance(children, dict):
            children = list(children.values())
        if not isinstance(children, list):
            children = [children]
        return children

    def transform(self, node: Any) -> Code:
        """Transforms a whole-program parse tree into a Code object."""
        if isinstance(node, dict) and 'ast' in node and 'tag' not in node:
            node = node['ast']
        return Code(self.decode(self.tokens(node)))

    def tokens(self, node: Any) -> List[Any]:
        """Flattens a raw parse tree into a list of tokens."""
        # Lists: transform each item, flattening anonymous sequences
        if isinstance(node, list):
            out: List[Any] = []
            for n in node:
                out.extend(self.tokens(n))
            return out

        if not isinstance(node, dict):
            return []

        tag = node.get('tag')
        match tag:
            case 'program':
                return self.tokens(self._children(node))
            case 'block':
                return [BlockLiteral(self.tokens(self._children(node)), self._loc(node))]
            case 'list':
                return [ListLiteral(self.tokens(self._children(node)), self._loc(node))]
            case 'string':
                text = node.get('text', '')
                if len(text) >= 2 and text[0] == text[-1] == '"':
                    text = text[1:-1]
                return [Literal(text, self._loc(node))]
            case 'number':
                return [Literal(float(node['text']), self._loc(node))]
            case 'word':
                return [Word(node['text'], self._loc(node))]
            case _:
                # Wrapper nodes (e.g. an unpromoted `term`): unwrap
                return self.tokens(self._children(node))

    # -----------------------------------------------------------------
    # Instruction decoding
    # -----------------------------------------------------------------

    def decode(self, tokens: List[Any]) -> List[Instruction]:
        """Decodes a flat token sequence into Instructions."""
        out: List[Instruction] = []
        i = 0
        n = len(tokens)
        while i < n:
            tok = tokens[i]
            if not isinstance(tok, Word):
                raise ParseError(f"Unexpected {_describe(tok)}; expected an instruction", getattr(tok, 'loc', None))
            match tok.text:
                case 'push':
                    operand = tokens[i + 1] if i + 1 < n else None
                    if operand is None:
                        raise ParseError("`push` needs an operand", tok.loc)
                    out.append(Instruction('push', (self.literal_value(operand),), tok.loc))
                    i += 2
                case 'iload':
                    reg_tok = tokens[i + 1] if i + 1 < n else None
                    body_tok = tokens[i + 2] if i + 2 < n else None
                    register = self.register_number(reg_tok, tok)
                    if not isinstance(body_tok, BlockLiteral):
                        raise ParseError(f"`iload {register}` needs a block, got {_describe(body_tok)}",
                                         getattr(body_tok, 'loc', None) or tok.loc)
                    block = Block(self.decode(body_tok.items))
                    out.append(Instruction('iload', (register, block), tok.loc))
                    i += 3
                case op if op in OPCODES:
                    out.append(Instruction(op, (), tok.loc))
                    i += 1
                case other:
                    raise ParseError(f"Unknown instruction `{other}`", tok.loc)
        return out

    def literal_value(self, token) -> Any:
        """Converts an operand token into a PILE value."""
        match token:
            case Literal():
                return token.value
            case Word() if token.text in CONSTANTS:
                return CONSTANTS[token.text]
            case ListLiteral():
                return [self.literal_value(t) for t in token.items]
            case BlockLiteral():
                return Block(self.decode(token.items))
        raise ParseError(f"Expected a literal, got {_describe(token)}", getattr(token, 'loc', None))

    def register_number(self, token, at: Word) -> int:
        if token is None:
            raise ParseError("`iload` needs a register number", at.loc)
        if not (isinstance(token, Literal) and isinstance(token.value, float)):
            raise ParseError(f"`iload` needs a register number, got {_describe(token)}", getattr(token, 'loc', None))
        value = token.value
        if value < 0 or not value.is_integer():
            raise ParseError(f"Register number must be a non-negative integer, got {value:g}", token.loc)
        return int(value)
