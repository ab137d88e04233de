from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import List, Optional, Set, Tuple, Union

from .errors import ProgramCounterOutOfBounds
from .program import Instruction, Op, Program
from .utils import stable_hash

ENGINE_VERSION = "v1"
ENGINE_HASH = stable_hash({"version": ENGINE_VERSION, "ops": [op.value for op in Op]})

Override = Tuple[int, Instruction]


@dataclass(frozen=True)
class Terminated:
    accumulator: int
    steps: int = field(default=0, compare=False)

    @property
    def terminated(self) -> bool:
        return True


@dataclass(frozen=True)
class Looped:
    accumulator: int
    position: int
    steps: int = field(default=0, compare=False)

    @property
    def terminated(self) -> bool:
        return False


RunOutcome = Union[Terminated, Looped]


@dataclass
class ExecutionState:
    position: int = 0
    accumulator: int = 0
    visited: Set[int] = field(default_factory=set)

    def fork(self) -> "ExecutionState":
        return ExecutionState(self.position, self.accumulator, set(self.visited))


@dataclass
class TraceStep:
    step: int
    position: int
    op: str
    accumulator: int


def effective_instruction(
    program: Program, position: int, override: Optional[Override] = None
) -> Instruction:
    if override is not None and override[0] == position:
        return override[1]
    return program[position]


@dataclass
class Engine:
    """Runs programs until they fall off the end or revisit a position.

    A run never executes more than ``len(program)`` instructions: every step
    adds a new position to ``visited`` and a repeat ends the run.
    """

    record_trace: bool = False
    steps: int = 0
    trace: List[TraceStep] = field(default_factory=list)

    def reset(self) -> None:
        self.steps = 0
        self.trace = []

    def check(self, program: Program, state: ExecutionState) -> Optional[RunOutcome]:
        length = len(program)
        if state.position == length:
            return Terminated(state.accumulator)
        if state.position < 0 or state.position > length:
            raise ProgramCounterOutOfBounds(state.position, length)
        if state.position in state.visited:
            return Looped(state.accumulator, state.position)
        return None

    def execute(
        self,
        program: Program,
        state: ExecutionState,
        override: Optional[Override] = None,
    ) -> None:
        position = state.position
        state.visited.add(position)
        instruction = effective_instruction(program, position, override)
        if instruction.op is Op.JMP:
            state.position += instruction.delta
        else:
            if instruction.op is Op.ACC:
                state.accumulator += instruction.delta
            state.position += 1
        self.steps += 1
        if self.record_trace:
            self.trace.append(
                TraceStep(
                    step=self.steps,
                    position=position,
                    op=instruction.op.value,
                    accumulator=state.accumulator,
                )
            )

    def run(
        self,
        program: Program,
        state: Optional[ExecutionState] = None,
        override: Optional[Override] = None,
    ) -> RunOutcome:
        state = state if state is not None else ExecutionState()
        start = self.steps
        while True:
            outcome = self.check(program, state)
            if outcome is not None:
                return replace(outcome, steps=self.steps - start)
            self.execute(program, state, override)

    def trace_hash(self) -> str:
        return stable_hash([step.__dict__ for step in self.trace])


def run(
    program: Program,
    start_position: int = 0,
    start_accumulator: int = 0,
    start_visited: Optional[Set[int]] = None,
    override: Optional[Override] = None,
) -> RunOutcome:
    state = ExecutionState(
        position=start_position,
        accumulator=start_accumulator,
        visited=set(start_visited or ()),
    )
    return Engine().run(program, state, override)
