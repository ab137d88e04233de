from typing import Optional, Tuple

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from hypothesis.strategies import composite

from handheld.engine import Engine, Looped, Terminated, run
from handheld.errors import HandheldError, NoFixFound
from handheld.locator import locate, verify_repair
from handheld.program import Instruction, Op, Program, flip

ops_strategy = st.sampled_from([Op.NOP, Op.ACC, Op.JMP])


@composite
def programs(draw, max_size: int = 12):
    length = draw(st.integers(min_value=1, max_value=max_size))
    instructions = []
    for _ in range(length):
        op = draw(ops_strategy)
        delta = draw(st.integers(min_value=-length, max_value=length))
        instructions.append(Instruction(op, delta))
    return Program(tuple(instructions))


def _outcome_or_error(program: Program, strategy: str) -> Tuple[str, Optional[int], Optional[int]]:
    try:
        repair = locate(program, strategy=strategy)
    except HandheldError as exc:
        return exc.failure_atom, None, None
    return "FIXED", repair.position, repair.accumulator


def _lowest_fix(program: Program) -> Optional[Tuple[int, int]]:
    for position in program.candidates():
        variant = program.with_instruction(position, flip(program[position]))
        try:
            outcome = run(variant)
        except HandheldError:
            continue
        if isinstance(outcome, Terminated):
            return position, outcome.accumulator
    return None


@settings(max_examples=200, deadline=None)
@given(program=programs())
def test_runs_are_deterministic(program: Program) -> None:
    try:
        first = run(program)
    except HandheldError as exc:
        with pytest.raises(type(exc)):
            run(program)
        return
    second = run(program)
    assert first == second
    assert first.steps == second.steps
    assert first.steps <= len(program)


@settings(max_examples=200, deadline=None)
@given(program=programs())
def test_loop_reported_at_first_revisited_position(program: Program) -> None:
    engine = Engine(record_trace=True)
    try:
        outcome = engine.run(program)
    except HandheldError:
        return
    positions = [step.position for step in engine.trace]
    assert len(positions) == len(set(positions))
    if isinstance(outcome, Looped):
        assert outcome.position in positions


@given(op=st.sampled_from([Op.NOP, Op.JMP]), delta=st.integers(-1000, 1000))
def test_flip_is_an_involution(op: Op, delta: int) -> None:
    instruction = Instruction(op, delta)
    assert flip(instruction) != instruction
    assert flip(flip(instruction)) == instruction


@settings(max_examples=300, deadline=None)
@given(program=programs())
def test_strategies_agree_on_lowest_index(program: Program) -> None:
    assert _outcome_or_error(program, "naive") == _outcome_or_error(program, "speculative")


@settings(max_examples=300, deadline=None)
@given(program=programs())
def test_repairs_are_sound_and_minimal(program: Program) -> None:
    try:
        base = run(program)
    except HandheldError:
        return
    if not isinstance(base, Looped):
        return
    expected = _lowest_fix(program)
    for strategy in ("naive", "speculative"):
        if expected is None:
            with pytest.raises(NoFixFound):
                locate(program, strategy=strategy)
            continue
        repair = locate(program, strategy=strategy)
        assert (repair.position, repair.accumulator) == expected
        assert verify_repair(program, repair)


@settings(max_examples=200, deadline=None)
@given(program=programs())
def test_execution_order_repair_is_sound(program: Program) -> None:
    try:
        repair = locate(program, strategy="speculative", tie_break="execution_order")
    except HandheldError:
        return
    assert verify_repair(program, repair)
    lowest = locate(program, strategy="speculative")
    assert lowest.position <= repair.position


@composite
def acc_only_programs(draw):
    deltas = draw(st.lists(st.integers(-50, 50), min_size=0, max_size=30))
    return Program(tuple(Instruction(Op.ACC, delta) for delta in deltas))


@given(program=acc_only_programs())
def test_loop_free_programs_terminate_with_their_sum(program: Program) -> None:
    outcome = run(program)
    assert outcome == Terminated(sum(instruction.delta for instruction in program))
    with pytest.raises(NoFixFound):
        locate(program, strategy="naive")
    with pytest.raises(NoFixFound):
        locate(program, strategy="speculative")


@pytest.mark.slow
@settings(max_examples=2000, deadline=None)
@given(program=programs(max_size=60))
def test_strategies_agree_on_large_programs(program: Program) -> None:
    assert _outcome_or_error(program, "naive") == _outcome_or_error(program, "speculative")
