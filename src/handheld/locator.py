"""Single-flip repair search for looping programs.

Only positions on the unmodified execution path can matter: a flip at a
position the program never reaches leaves the run unchanged, so it still
loops. Both locators therefore see the same set of fixes, and with the
``lowest_index`` tie-break they return the same one.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, Optional, Type

import structlog

from .engine import Engine, ExecutionState, Looped, RunOutcome, Terminated, run
from .errors import NoFixFound, ProgramAlreadyTerminates, ProgramCounterOutOfBounds
from .program import Instruction, Program, flip

logger = structlog.get_logger(__name__)

TIE_BREAKS = ("lowest_index", "execution_order")


@dataclass
class SearchStats:
    runs: int = 0
    steps: int = 0
    candidates_tried: int = 0
    out_of_bounds: int = 0


@dataclass(frozen=True)
class Repair:
    position: int
    original: Instruction
    replacement: Instruction
    accumulator: int
    strategy: str
    tie_break: str
    stats: SearchStats = field(default_factory=SearchStats, compare=False)


@dataclass
class Locator(ABC):
    tie_break: str = "lowest_index"
    name = "base"

    def __post_init__(self) -> None:
        if self.tie_break not in TIE_BREAKS:
            raise ValueError(f"unknown tie break: {self.tie_break}")

    def locate(self, program: Program) -> Repair:
        if next(program.candidates(), None) is None:
            raise NoFixFound("program has no jmp or nop instruction to flip")
        engine = Engine()
        stats = SearchStats()
        repair = self._search(program, engine, stats)
        stats.steps = engine.steps
        logger.info(
            "repair_found",
            strategy=self.name,
            position=repair.position,
            replacement=repair.replacement.render(),
            accumulator=repair.accumulator,
            runs=stats.runs,
            steps=stats.steps,
        )
        return repair

    @abstractmethod
    def _search(self, program: Program, engine: Engine, stats: SearchStats) -> Repair:
        """Walk candidates and return the chosen repair, counting work in ``stats``."""

    def _try_flip(
        self,
        program: Program,
        engine: Engine,
        stats: SearchStats,
        position: int,
        state: ExecutionState,
    ) -> Optional[Terminated]:
        override = (position, flip(program[position]))
        stats.candidates_tried += 1
        stats.runs += 1
        try:
            outcome = engine.run(program, state, override)
        except ProgramCounterOutOfBounds as exc:
            stats.out_of_bounds += 1
            logger.debug(
                "candidate_rejected", position=position, reason="out_of_bounds", pc=exc.position
            )
            return None
        if isinstance(outcome, Terminated):
            return outcome
        logger.debug(
            "candidate_rejected",
            position=position,
            reason="looped",
            loop_position=outcome.position,
        )
        return None

    def _repair(
        self, program: Program, position: int, outcome: Terminated, stats: SearchStats
    ) -> Repair:
        original = program[position]
        return Repair(
            position=position,
            original=original,
            replacement=flip(original),
            accumulator=outcome.accumulator,
            strategy=self.name,
            tie_break=self.tie_break,
            stats=stats,
        )


@dataclass
class NaiveLocator(Locator):
    """Reruns the whole program once per candidate, in ascending index order.

    The ascending scan already yields the lowest-index fix, so both tie-breaks
    give the same answer here.
    """

    name = "naive"

    def _search(self, program: Program, engine: Engine, stats: SearchStats) -> Repair:
        stats.runs += 1
        base = engine.run(program)
        if isinstance(base, Terminated):
            raise ProgramAlreadyTerminates(
                f"program terminates unmodified with accumulator {base.accumulator}"
            )
        for position in program.candidates():
            outcome = self._try_flip(program, engine, stats, position, ExecutionState())
            if outcome is not None:
                return self._repair(program, position, outcome, stats)
        raise NoFixFound(f"no single flip of {stats.candidates_tried} candidates terminates")


@dataclass
class SpeculativeLocator(Locator):
    """Walks the unmodified run once and branches at each jmp/nop it reaches.

    A branch starts from a fork of the walk's state, so it never revalidates
    the prefix already executed and the walk never sees the branch's visits.
    With ``lowest_index`` the walk keeps going after a fix and only branches
    at positions below the best fix so far; with ``execution_order`` the first
    fix reached wins.
    """

    name = "speculative"

    def _search(self, program: Program, engine: Engine, stats: SearchStats) -> Repair:
        state = ExecutionState()
        stats.runs += 1
        best: Optional[Repair] = None
        searching = True
        while True:
            outcome = engine.check(program, state)
            if outcome is not None:
                break
            position = state.position
            if (
                searching
                and program[position].flippable
                and (best is None or position < best.position)
            ):
                found = self._try_flip(program, engine, stats, position, state.fork())
                if found is not None:
                    best = self._repair(program, position, found, stats)
                    searching = self.tie_break != "execution_order"
            engine.execute(program, state)
        if isinstance(outcome, Terminated):
            raise ProgramAlreadyTerminates(
                f"program terminates unmodified with accumulator {outcome.accumulator}"
            )
        if best is None:
            raise NoFixFound(f"no single flip of {stats.candidates_tried} candidates terminates")
        return best


LOCATORS: Dict[str, Type[Locator]] = {
    NaiveLocator.name: NaiveLocator,
    SpeculativeLocator.name: SpeculativeLocator,
}


def locate(
    program: Program, strategy: str = "speculative", tie_break: str = "lowest_index"
) -> Repair:
    try:
        locator_cls = LOCATORS[strategy]
    except KeyError:
        raise ValueError(f"unknown strategy: {strategy}") from None
    return locator_cls(tie_break=tie_break).locate(program)


def verify_repair(program: Program, repair: Repair) -> bool:
    """Rerun from scratch with only the repaired position flipped."""
    outcome: RunOutcome = run(program, override=(repair.position, repair.replacement))
    return not isinstance(outcome, Looped) and outcome.accumulator == repair.accumulator
