# -*- coding: utf-8 -*-
"""
Bytecode loader: lark grammar + Transformer + assemble (2nd pass)
Turns line-oriented bytecode text into a validated Program.
Required package: pip install lark
"""

import logging
import re
from types import MappingProxyType
from typing import Any, Iterable, List, Mapping, NamedTuple, Optional, Tuple, Union

from lark import Lark, Transformer, v_args
from lark.exceptions import UnexpectedInput, VisitError

log = logging.getLogger(__name__)

# -----------------------------
# 1) Instruction set
# -----------------------------
INT_MIN = -2 ** 31
INT_MAX = 2 ** 31 - 1

OPERAND_INT = 'int'
OPERAND_VAR = 'var'
OPERAND_LABEL = 'label'

# opcode -> operand kind (None: no operand)
OPCODES = {
    'LOAD_VAL': OPERAND_INT,
    'WRITE_VAR': OPERAND_VAR,
    'READ_VAR': OPERAND_VAR,
    'CMP': OPERAND_INT,
    'JMP': OPERAND_LABEL,
    'JMP_LE': OPERAND_LABEL,
    'ADD': None,
    'SUB': None,
    'MULTIPLY': None,
    'DIVIDE': None,
    'RETURN_VALUE': None,
}
JUMPS = ('JMP', 'JMP_LE')
RETURN = 'RETURN_VALUE'
LABEL = 'LABEL'


class Instruction(NamedTuple):
    op: str
    arg: Any = None

    def __str__(self):
        if self.arg is None:
            return self.op
        if OPCODES.get(self.op) == OPERAND_VAR:
            return f"{self.op} '{self.arg}'"
        return f"{self.op} {self.arg}"


class Program(NamedTuple):
    """Flat instruction sequence plus label -> instruction index."""
    instructions: Tuple[Instruction, ...]
    labels: Mapping[str, int]


class LoadError(ValueError):
    def __init__(self, message: str, lineno: Optional[int] = None):
        self.message = message
        self.lineno = lineno
        super().__init__(f"line {lineno}: {message}" if lineno else message)


# -----------------------------
# 2) Grammar
# -----------------------------
# Only the line/word structure lives in the grammar; opcode, arity and
# operand checks happen in the Transformer so every fault gets its own message.
GRAMMAR = r"""
start: line*
line: WORD* _NL

WORD: /\S+/
_NL: /\n/
_WS: /[^\S\n]+/
%ignore _WS
"""

_parser = Lark(GRAMMAR, parser="lalr", start="start", lexer="basic")

_INT_RE = re.compile(r'[+-]?[0-9]+')


# -----------------------------
# 3) Operand checks
# -----------------------------
def parse_int(token: str) -> int:
    if not _INT_RE.fullmatch(token):
        raise LoadError(f"Unable to parse {token!r} as an integer")
    value = int(token)
    if not INT_MIN <= value <= INT_MAX:
        raise LoadError(f"Integer {token} is out of the 32-bit range")
    return value


def valid_variable(token: str) -> str:
    """Check a quoted variable token (e.g. 'x') and return its lowercased name."""
    if len(token) < 3:
        raise LoadError(f"Variable {token} is shorter than 3 characters")
    if not token.isascii():
        raise LoadError(f"Variable {token} is not ASCII")
    if token[0] != "'" or token[-1] != "'":
        raise LoadError(f"Variable {token} must be wrapped in single quotes")
    name = token[1:-1]
    if not (name[0].isalpha() or name[0] == '_'):
        raise LoadError(f"Variable {token} should start with a letter or _")
    if not all(c.isalnum() or c == '_' for c in name):
        raise LoadError(f"Variable {token} should contain only letters, digits or _")
    return name.lower()


# -----------------------------
# 4) Transformer (one tuple per non-blank line)
# -----------------------------
@v_args(inline=True)
class BytecodeTransformer(Transformer):
    def start(self, *lines):
        return [ln for ln in lines if ln is not None]

    def line(self, *words):
        if not words:
            return None  # blank line
        lineno = words[0].line
        op = str(words[0])
        operands = [str(w) for w in words[1:]]
        try:
            return (lineno, self._decode(op, operands))
        except LoadError as e:
            raise LoadError(e.message, lineno) from None

    def _decode(self, op: str, operands: List[str]):
        if op == LABEL:
            self._check_arity(op, operands, 1)
            return (LABEL, operands[0])
        if op not in OPCODES:
            raise LoadError(f"Undefined instruction {op!r}")
        kind = OPCODES[op]
        self._check_arity(op, operands, 0 if kind is None else 1)
        if kind is None:
            return Instruction(op)
        token = operands[0]
        if kind == OPERAND_INT:
            return Instruction(op, parse_int(token))
        if kind == OPERAND_VAR:
            return Instruction(op, valid_variable(token))
        return Instruction(op, token)

    @staticmethod
    def _check_arity(op: str, operands: List[str], expected: int):
        if len(operands) != expected:
            raise LoadError(f"{op} should have exactly {expected} parameter(s), got {operands}")


# -----------------------------
# 5) Assemble (2nd pass)
# -----------------------------
LineItem = Tuple[int, Union[Instruction, Tuple[str, str]]]


def assemble(items: List[LineItem]) -> Program:
    instructions: List[Instruction] = []
    labels = {}
    for lineno, item in items:
        if isinstance(item, Instruction):
            instructions.append(item)
            continue
        _, name = item
        if name in labels:
            log.warning("line %d: label %r redefined, previous target %d dropped",
                        lineno, name, labels[name])
        # a label names the next real instruction
        labels[name] = len(instructions)

    returns = [i for i, ins in enumerate(instructions) if ins.op == RETURN]
    if not returns:
        raise LoadError("Unable to find RETURN_VALUE")
    if len(returns) > 1 or returns[0] != len(instructions) - 1:
        raise LoadError("Should have exactly one RETURN_VALUE and it should be "
                        "the last instruction of the bytecode")
    return Program(tuple(instructions), MappingProxyType(labels))


# -----------------------------
# 6) Entry points
# -----------------------------
def load_program(source: Union[str, Iterable[str]]) -> Program:
    """Parse, decode and assemble bytecode. All-or-nothing: raises LoadError."""
    if isinstance(source, str):
        text = source
    else:
        text = "\n".join(line.rstrip("\r\n") for line in source)
    if not text.endswith("\n"):
        text += "\n"

    try:
        tree = _parser.parse(text)
    except UnexpectedInput as e:
        raise LoadError(f"Unable to parse: {e}", getattr(e, 'line', None)) from e

    try:
        items = BytecodeTransformer().transform(tree)
    except VisitError as e:
        if isinstance(e.orig_exc, LoadError):
            raise e.orig_exc from None
        raise

    program = assemble(items)
    log.debug("loaded %d instructions, %d labels",
              len(program.instructions), len(program.labels))
    return program


def load_file(path) -> Program:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            lines = f.readlines()
    except (OSError, UnicodeDecodeError) as e:
        raise LoadError(f"Unable to open file {path}: {e}") from e
    return load_program(lines)


def format_program(program: Program) -> List[str]:
    """Listing with label directives placed before the instruction they name."""
    by_index = {}
    for name, idx in sorted(program.labels.items(), key=lambda kv: kv[1]):
        by_index.setdefault(idx, []).append(name)
    out = []
    for idx, ins in enumerate(program.instructions):
        for name in by_index.get(idx, ()):
            out.append(f"      {LABEL} {name}")
        out.append(f"{idx:5d} {ins}")
    for name in by_index.get(len(program.instructions), ()):
        out.append(f"      {LABEL} {name}")
    return out
