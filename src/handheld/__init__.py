from .engine import Engine, ExecutionState, Looped, RunOutcome, Terminated, run
from .errors import (
    HandheldError,
    InvalidOffset,
    MalformedInstruction,
    NoFixFound,
    NotFlippable,
    ParseError,
    ProgramAlreadyTerminates,
    ProgramCounterOutOfBounds,
)
from .locator import NaiveLocator, Repair, SpeculativeLocator, locate, verify_repair
from .program import (
    Instruction,
    Op,
    Program,
    acc,
    flip,
    jmp,
    nop,
    parse,
    parse_instruction,
    read_program,
)

__all__ = [
    "Engine",
    "ExecutionState",
    "Looped",
    "RunOutcome",
    "Terminated",
    "run",
    "HandheldError",
    "InvalidOffset",
    "MalformedInstruction",
    "NoFixFound",
    "NotFlippable",
    "ParseError",
    "ProgramAlreadyTerminates",
    "ProgramCounterOutOfBounds",
    "NaiveLocator",
    "Repair",
    "SpeculativeLocator",
    "locate",
    "verify_repair",
    "Instruction",
    "Op",
    "Program",
    "acc",
    "flip",
    "jmp",
    "nop",
    "parse",
    "parse_instruction",
    "read_program",
]
