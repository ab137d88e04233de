from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable, Iterator, Tuple

from .errors import InvalidOffset, MalformedInstruction, NotFlippable
from .utils import hash_text

_LINE_RE = re.compile(r"(nop|acc|jmp)\s+(\S+)")
_OFFSET_RE = re.compile(r"[+-][0-9]+")


class Op(str, Enum):
    NOP = "nop"
    ACC = "acc"
    JMP = "jmp"


FLIPS = {Op.NOP: Op.JMP, Op.JMP: Op.NOP}


@dataclass(frozen=True)
class Instruction:
    op: Op
    delta: int

    @property
    def flippable(self) -> bool:
        return self.op in FLIPS

    def render(self) -> str:
        return f"{self.op.value} {self.delta:+d}"

    def to_json(self) -> dict[str, object]:
        return {"op": self.op.value, "delta": self.delta}


def nop(delta: int) -> Instruction:
    return Instruction(Op.NOP, delta)


def acc(delta: int) -> Instruction:
    return Instruction(Op.ACC, delta)


def jmp(delta: int) -> Instruction:
    return Instruction(Op.JMP, delta)


def flip(instruction: Instruction) -> Instruction:
    """Swap a jump for a no-op of the same offset, or the reverse."""
    try:
        return Instruction(FLIPS[instruction.op], instruction.delta)
    except KeyError:
        raise NotFlippable(f"cannot flip {instruction.render()}") from None


@dataclass(frozen=True)
class Program:
    """Immutable instruction listing.

    Hypothetical repairs never touch a Program in place: the engine takes an
    override for a single position, and ``with_instruction`` builds a copy.
    """

    instructions: Tuple[Instruction, ...]
    program_hash: str = field(init=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "instructions", tuple(self.instructions))
        object.__setattr__(self, "program_hash", compute_program_hash(self.render()))

    def __len__(self) -> int:
        return len(self.instructions)

    def __getitem__(self, position: int) -> Instruction:
        return self.instructions[position]

    def __iter__(self) -> Iterator[Instruction]:
        return iter(self.instructions)

    def candidates(self) -> Iterator[int]:
        for position, instruction in enumerate(self.instructions):
            if instruction.flippable:
                yield position

    def with_instruction(self, position: int, instruction: Instruction) -> "Program":
        replaced = list(self.instructions)
        replaced[position] = instruction
        return Program(tuple(replaced))

    def render(self) -> str:
        return "".join(f"{instruction.render()}\n" for instruction in self.instructions)


def compute_program_hash(text: str) -> str:
    return hash_text(text)


def _strip_terminator(text: str) -> str:
    if text.endswith("\r\n"):
        return text[:-2]
    if text.endswith("\n"):
        return text[:-1]
    return text


def parse_instruction(text: str, line_number: int = 0) -> Instruction:
    line = _strip_terminator(text)
    match = _LINE_RE.fullmatch(line)
    if not match:
        raise MalformedInstruction(line_number, line, "malformed instruction")
    opcode, offset = match.groups()
    if not _OFFSET_RE.fullmatch(offset):
        raise InvalidOffset(line_number, line, "invalid offset")
    return Instruction(Op(opcode), int(offset))


def parse(lines: Iterable[str]) -> Program:
    return Program(
        tuple(parse_instruction(line, idx) for idx, line in enumerate(lines))
    )


def parse_text(text: str) -> Program:
    return parse(text.splitlines())


def _decode_lines(data: bytes) -> Iterator[str]:
    for idx, raw in enumerate(data.splitlines(keepends=True)):
        try:
            yield raw.decode("utf-8")
        except UnicodeDecodeError:
            text = _strip_terminator(raw.decode("utf-8", errors="backslashreplace"))
            raise MalformedInstruction(idx, text, "invalid utf-8") from None


def read_program(path: Path) -> Program:
    """Parse a program file. Lines that are not UTF-8 are malformed."""
    return parse(_decode_lines(path.read_bytes()))
