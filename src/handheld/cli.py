from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import structlog
import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import Settings
from .engine import Engine, Terminated
from .errors import (
    HandheldError,
    NoFixFound,
    NotFlippable,
    ParseError,
    ProgramAlreadyTerminates,
    ProgramCounterOutOfBounds,
)
from .journal import Journal
from .locator import LOCATORS, TIE_BREAKS, locate, verify_repair
from .log import configure_logging
from .program import Program, read_program
from .schemas import (
    BenchReport,
    RepairReport,
    Report,
    RunReport,
    StrategyTiming,
    export_schemas,
)
from .utils import canonical_dumps, read_json

app = typer.Typer(help="Handheld self-healing program interpreter")
journal_app = typer.Typer(help="Journal commands")
schema_app = typer.Typer(help="Schema utilities")
console = Console()
err_console = Console(stderr=True)
logger = structlog.get_logger(__name__)

PROGRAM_ARGUMENT = typer.Argument(..., exists=True, dir_okay=False)
JOURNAL_PATH_ARGUMENT = typer.Argument(..., exists=True, dir_okay=False)
CONFIG_OPTION = typer.Option(None, "--config", exists=True, dir_okay=False)
LOG_LEVEL_OPTION = typer.Option(None, "--log-level")
JSON_OPTION = typer.Option(False, "--json", help="Emit canonical JSON instead of text.")
JOURNAL_OPTION = typer.Option(None, "--journal", dir_okay=False)
STRATEGY_OPTION = typer.Option(None, "--strategy", help="naive or speculative")
TIE_BREAK_OPTION = typer.Option(None, "--tie-break", help="lowest_index or execution_order")
TRACE_OPTION = typer.Option(False, "--trace")
VERIFY_OPTION = typer.Option(False, "--verify")
REPEATS_OPTION = typer.Option(None, "--repeats", min=1)
SCHEMA_OUT_OPTION = typer.Option(Path("schemas"), "--out-dir")

# Looked up along the exception MRO, so subclasses must precede their bases.
EXIT_CODES = {
    ParseError: 2,
    ProgramCounterOutOfBounds: 3,
    ProgramAlreadyTerminates: 5,
    NoFixFound: 4,
    NotFlippable: 70,
}


@dataclass
class CliState:
    settings: Settings
    json_output: bool = False


def _load_settings(config: Optional[Path]) -> Settings:
    if config is None:
        return Settings()
    data = read_json(config)
    return Settings(**data)


def _exit_code(exc: HandheldError) -> int:
    for cls in type(exc).__mro__:
        if cls in EXIT_CODES:
            return EXIT_CODES[cls]
    return 1


def _state(ctx: typer.Context) -> CliState:
    if ctx.obj is None:
        ctx.obj = CliState(settings=Settings())
    return ctx.obj


def _open_journal(path: Optional[Path]) -> Optional[Journal]:
    if path is None:
        return None
    return Journal(path)


def _record(journal: Optional[Journal], report: Report) -> None:
    if journal is not None:
        journal.record(report)


def _record_start(
    journal: Optional[Journal], command: str, path: Path, settings: Settings
) -> None:
    if journal is not None:
        journal.start(command, path, settings)


@contextmanager
def _handled(journal: Optional[Journal]) -> Iterator[None]:
    try:
        yield
    except HandheldError as exc:
        logger.error("command_failed", failure_atom=exc.failure_atom, error=exc.message)
        if journal is not None:
            journal.failure(exc)
        err_console.print(f"[red]{exc.failure_atom}[/red] {escape(exc.message)}")
        raise typer.Exit(code=_exit_code(exc)) from exc


def _load_program(path: Path) -> Program:
    return read_program(path)


def _emit_json(payload: Any) -> None:
    print(canonical_dumps(payload).decode("utf-8"))


def _summary_table(title: str, rows: Dict[str, Any]) -> Table:
    table = Table(title=title)
    table.add_column("Field")
    table.add_column("Value")
    for key, value in rows.items():
        table.add_row(key, str(value))
    return table


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = CONFIG_OPTION,
    log_level: Optional[str] = LOG_LEVEL_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    settings = _load_settings(config)
    if log_level:
        settings = settings.model_copy(update={"log_level": log_level})
    try:
        configure_logging(settings.log_level, settings.log_json)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    ctx.obj = CliState(settings=settings, json_output=json_output)


@app.command("run")
def run_cmd(
    ctx: typer.Context,
    program_path: Path = PROGRAM_ARGUMENT,
    journal_path: Optional[Path] = JOURNAL_OPTION,
) -> None:
    """Report the accumulator when the program loops, then after repairing it."""
    state = _state(ctx)
    settings = state.settings
    journal = _open_journal(journal_path)
    _record_start(journal, "run", program_path, state.settings)
    with _handled(journal):
        program = _load_program(program_path)
        outcome = Engine().run(program)
        run_report = RunReport.from_outcome(program, outcome)
        _record(journal, run_report)
        if not state.json_output:
            label = "terminated" if isinstance(outcome, Terminated) else "looped"
            console.print(f"{label} value {outcome.accumulator}")
        repair = locate(program, settings.strategy, settings.tie_break)
        repair_report = RepairReport.from_repair(program, repair)
        _record(journal, repair_report)
    if state.json_output:
        _emit_json({"run": run_report.model_dump(), "repair": repair_report.model_dump()})
    else:
        console.print(f"terminated value {repair.accumulator}")


@app.command("loop")
def loop_cmd(
    ctx: typer.Context,
    program_path: Path = PROGRAM_ARGUMENT,
    trace: bool = TRACE_OPTION,
    journal_path: Optional[Path] = JOURNAL_OPTION,
) -> None:
    """Run the unmodified program until it terminates or revisits a position."""
    state = _state(ctx)
    record_trace = trace or state.settings.record_trace
    journal = _open_journal(journal_path)
    _record_start(journal, "loop", program_path, state.settings)
    engine = Engine(record_trace=record_trace)
    with _handled(journal):
        program = _load_program(program_path)
        outcome = engine.run(program)
    trace_hash = engine.trace_hash() if record_trace else None
    report = RunReport.from_outcome(program, outcome, trace_hash=trace_hash)
    _record(journal, report)
    if state.json_output:
        payload: Dict[str, Any] = report.model_dump()
        if record_trace:
            payload["trace"] = [step.__dict__ for step in engine.trace]
        _emit_json(payload)
        return
    if record_trace:
        table = Table(title="Trace")
        for column in ("step", "position", "op", "accumulator"):
            table.add_column(column)
        for step in engine.trace:
            table.add_row(str(step.step), str(step.position), step.op, str(step.accumulator))
        console.print(table)
    if report.outcome == "LOOPED":
        console.print(
            f"looped value {report.accumulator} (revisited position {report.loop_position})"
        )
    else:
        console.print(f"terminated value {report.accumulator}")


@app.command("repair")
def repair_cmd(
    ctx: typer.Context,
    program_path: Path = PROGRAM_ARGUMENT,
    strategy: Optional[str] = STRATEGY_OPTION,
    tie_break: Optional[str] = TIE_BREAK_OPTION,
    verify: bool = VERIFY_OPTION,
    journal_path: Optional[Path] = JOURNAL_OPTION,
) -> None:
    """Find the single jmp/nop flip that makes the program terminate."""
    state = _state(ctx)
    settings = state.settings
    strategy = strategy or settings.strategy
    tie_break = tie_break or settings.tie_break
    if strategy not in LOCATORS:
        raise typer.BadParameter(f"unknown strategy: {strategy}")
    if tie_break not in TIE_BREAKS:
        raise typer.BadParameter(f"unknown tie break: {tie_break}")
    journal = _open_journal(journal_path)
    _record_start(journal, "repair", program_path, settings)
    with _handled(journal):
        program = _load_program(program_path)
        repair = locate(program, strategy, tie_break)
        verified = verify_repair(program, repair) if verify else None
    report = RepairReport.from_repair(program, repair, verified=verified)
    _record(journal, report)
    if state.json_output:
        _emit_json({**report.model_dump(), "report_hash": report.report_hash()})
    else:
        rows = {
            "position": report.position,
            "original": report.original,
            "replacement": report.replacement,
            "accumulator": report.accumulator,
            "strategy": report.strategy,
            "tie_break": report.tie_break,
            "runs": report.runs,
            "steps": report.steps,
            "candidates_tried": report.candidates_tried,
        }
        if verified is not None:
            rows["verified"] = verified
        console.print(_summary_table("Repair", rows))
    if verified is False:
        raise typer.Exit(code=1)


@app.command("bench")
def bench_cmd(
    ctx: typer.Context,
    program_path: Path = PROGRAM_ARGUMENT,
    repeats: Optional[int] = REPEATS_OPTION,
    tie_break: Optional[str] = TIE_BREAK_OPTION,
    journal_path: Optional[Path] = JOURNAL_OPTION,
) -> None:
    """Time every locator strategy on the same program."""
    state = _state(ctx)
    settings = state.settings
    repeats = repeats or settings.bench_repeats
    tie_break = tie_break or settings.tie_break
    if tie_break not in TIE_BREAKS:
        raise typer.BadParameter(f"unknown tie break: {tie_break}")
    journal = _open_journal(journal_path)
    _record_start(journal, "bench", program_path, state.settings)
    timings: List[StrategyTiming] = []
    with _handled(journal):
        program = _load_program(program_path)
        for strategy in LOCATORS:
            durations: List[int] = []
            for _ in range(repeats):
                start = time.perf_counter_ns()
                repair = locate(program, strategy, tie_break)
                durations.append(time.perf_counter_ns() - start)
            timings.append(
                StrategyTiming(
                    strategy=strategy,
                    repeats=repeats,
                    best_ms=min(durations) / 1e6,
                    mean_ms=sum(durations) / len(durations) / 1e6,
                    runs=repair.stats.runs,
                    steps=repair.stats.steps,
                    position=repair.position,
                    accumulator=repair.accumulator,
                )
            )
    agreed = len({(timing.position, timing.accumulator) for timing in timings}) == 1
    report = BenchReport(
        program_hash=program.program_hash,
        length=len(program),
        tie_break=tie_break,
        timings=timings,
        agreed=agreed,
    )
    _record(journal, report)
    if state.json_output:
        _emit_json(report.model_dump())
        return
    table = Table(title=f"Bench ({repeats} repeats, tie break {tie_break})")
    for column in ("strategy", "best ms", "mean ms", "runs", "steps", "position", "accumulator"):
        table.add_column(column)
    for timing in timings:
        table.add_row(
            timing.strategy,
            f"{timing.best_ms:.3f}",
            f"{timing.mean_ms:.3f}",
            str(timing.runs),
            str(timing.steps),
            str(timing.position),
            str(timing.accumulator),
        )
    console.print(table)
    console.print({"agreed": agreed})


@journal_app.command("verify")
def journal_verify_cmd(journal_path: Path = JOURNAL_PATH_ARGUMENT) -> None:
    ok, message = Journal.verify_chain(journal_path)
    console.print({"ok": ok, "message": message})
    if not ok:
        raise typer.Exit(code=1)


@schema_app.command("export")
def schema_export_cmd(out_dir: Path = SCHEMA_OUT_OPTION) -> None:
    export_schemas(str(out_dir))
    console.print({"schemas": str(out_dir)})


app.add_typer(journal_app, name="journal")
app.add_typer(schema_app, name="schema")

if __name__ == "__main__":
    app()
